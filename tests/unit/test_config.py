"""Tests for configuration loading."""

import pytest

from intentflow.config import load_config
from intentflow.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository, get_repository
from intentflow.transports import InMemoryTransport, get_transport
from intentflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
engine:
  lease_seconds: 60
scheduler:
  interval: 2.5
bridge:
  business_id: biz_42
"""
    )
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.engine.lease_seconds == 60
    assert config.engine.max_concurrency == 16
    assert config.scheduler.interval == 2.5
    assert config.bridge.business_id == "biz_42"


def test_missing_config_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("INTENTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("INTENTFLOW_TRANSPORT", raising=False)

    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.database_url is None
    assert config.bridge.delivery == "direct"


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("INTENTFLOW_DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("INTENTFLOW_TRANSPORT", "REDIS")

    config = load_config()
    assert config.database_url == "sqlite:///from-env.db"
    assert config.transport.backend == "redis"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("INTENTFLOW_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_get_transport_defaults_to_inmemory(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("INTENTFLOW_TRANSPORT", raising=False)
    assert isinstance(get_transport(), InMemoryTransport)


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("INTENTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert isinstance(get_repository(), InMemoryWorkflowRepository)

    db_path = tmp_path / "runs.db"
    repo = get_repository(f"sqlite://{db_path}")
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert repo.db_path == str(db_path)
    repo.close()

    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://nope")


def test_get_transport_rejects_unknown_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("INTENTFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("INTENTFLOW_TRANSPORT", raising=False)
    with pytest.raises(ValueError, match="Unsupported transport backend: kafka"):
        get_transport("kafka")
