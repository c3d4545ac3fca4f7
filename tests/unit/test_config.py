"""Tests for configuration loading."""

from followup.config import load_config
from followup.engine import WorkflowEngine, get_engine
from followup.persistence import SQLiteWorkflowRepository
from followup.transports.http import HttpTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/ignored.db
providers:
  whatsapp:
    backend: http
    url: https://wa.test/send
    max_attempts: 5
dispatch:
  batch_size: 25
backfill:
  concurrency: 4
log_level: DEBUG
"""
    )
    monkeypatch.setenv("FOLLOWUP_CONFIG", str(config_path))
    monkeypatch.delenv("FOLLOWUP_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.database_url == "sqlite:///tmp/ignored.db"
    assert config.providers.whatsapp.backend == "http"
    assert config.providers.whatsapp.max_attempts == 5
    assert config.providers.email.backend == "inmemory"
    assert config.dispatch.batch_size == 25
    assert config.backfill.concurrency == 4
    assert config.log_level == "DEBUG"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///tmp/from-file.db\n")
    monkeypatch.setenv("FOLLOWUP_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")

    config = load_config(str(config_path))
    assert config.database_url == f"sqlite://{tmp_path / 'env.db'}"


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("FOLLOWUP_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "nope.yaml"))
    assert config.database_url is None
    assert config.bookings.backend == "inmemory"
    assert config.dispatch.batch_size == 100


def test_get_engine_builds_from_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{tmp_path / 'engine.db'}
providers:
  email:
    backend: http
    url: https://mail.test/send
"""
    )
    monkeypatch.setenv("FOLLOWUP_CONFIG", str(config_path))
    monkeypatch.delenv("FOLLOWUP_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    engine = get_engine()
    assert isinstance(engine, WorkflowEngine)
    assert isinstance(engine.repository, SQLiteWorkflowRepository)
    assert isinstance(engine.dispatcher._transports["email"], HttpTransport)
    assert get_engine() is engine
    engine.repository.close()
