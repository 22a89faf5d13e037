from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value
