"""Periodic wake-up of sleeping and stalled workflow runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .persistence import WorkflowRepository, WorkflowRun
from .workflows.engine import WorkflowEngine

logger = logging.getLogger(__name__)


class Scheduler:
    """Resume due runs on a fixed interval.

    Several schedulers may poll the same repository; the engine's lease
    acquisition decides which one advances a given run.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        repository: Optional[WorkflowRepository] = None,
        interval: float = 5.0,
        batch_size: int = 100,
        stale_after: float = 600.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._engine = engine
        self._repository = repository or engine.repository
        self.interval = interval
        self.batch_size = batch_size
        self.stale_after = stale_after
        self._clock = clock or engine.now
        self._stop = asyncio.Event()
        self.ticks = 0

    async def _candidates(self, now: datetime) -> List[WorkflowRun]:
        due = await self._repository.list_due_runs(now, limit=self.batch_size)
        stalled = await self._repository.list_stalled_runs(
            now, now - timedelta(seconds=self.stale_after), limit=self.batch_size
        )
        seen = set()
        runs = []
        for run in [*due, *stalled]:
            if run.id not in seen:
                seen.add(run.id)
                runs.append(run)
        return runs

    async def _resume(self, run_id: str) -> Optional[WorkflowRun]:
        try:
            return await self._engine.resume(run_id)
        except Exception as e:
            logger.error(f"Failed to resume run {run_id}: {e}")
            return None

    async def tick(self) -> int:
        """Resume every due run once; returns how many this scheduler advanced."""
        now = self._clock()
        runs = await self._candidates(now)
        self.ticks += 1
        if not runs:
            return 0
        results = await asyncio.gather(*(self._resume(run.id) for run in runs))
        resumed = sum(1 for result in results if result is not None)
        logger.info(f"Scheduler tick: {len(runs)} candidate(s), {resumed} resumed")
        return resumed

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Tick every ``interval`` seconds until :meth:`stop` or ``lifespan`` elapses."""
        self._stop.clear()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None
        logger.info(f"Scheduler started (interval={self.interval}s)")
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")
            timeout = self.interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                timeout = min(timeout, remaining)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stop.set()
