"""Storage for workflow definitions and the execution log."""

from __future__ import annotations

from typing import Optional

from ..config import FollowupConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_repository_instance: WorkflowRepository | None = None

_POSTGRES_SCHEMES = ("postgres://", "postgresql://")


def _configured_url(database_url: Optional[str], config: Optional[FollowupConfig]) -> Optional[str]:
    if database_url:
        return database_url
    # load_config applies the FOLLOWUP_DATABASE_URL / DATABASE_URL override
    return (config or load_config()).database_url


def _open(database_url: Optional[str]) -> WorkflowRepository:
    if not database_url or database_url == "memory://":
        return InMemoryWorkflowRepository()
    if database_url.startswith("sqlite://"):
        # sqlite:///abs/path.db and sqlite://relative.db are both accepted
        return SQLiteWorkflowRepository(database_url[len("sqlite://") :])
    if database_url.startswith(_POSTGRES_SCHEMES):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[FollowupConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository for definitions and log entries.

    The first call (or any call with an explicit ``database_url`` or
    ``config``) opens the backend named by the URL: ``sqlite://...``,
    ``postgres(ql)://...``, or in-memory when nothing is configured. The URL
    comes from the argument, otherwise from ``database_url`` in the given or
    loaded configuration.
    """

    global _repository_instance
    if _repository_instance is None or database_url is not None or config is not None:
        _repository_instance = _open(_configured_url(database_url, config))
    return _repository_instance


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
