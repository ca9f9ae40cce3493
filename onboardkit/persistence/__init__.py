"""Session store for onboardkit."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OnboardkitConfig, load_config
from .inmemory import InMemorySessionRepository
from .models import SessionRecord
from .repository import SessionRepository
from .sqlite import SQLiteSessionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresSessionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresSessionRepository = None  # type: ignore

_repository_instance: SessionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[OnboardkitConfig] = None
) -> SessionRepository:
    """Factory function to obtain a session repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``ONBOARDKIT_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("ONBOARDKIT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemorySessionRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteSessionRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresSessionRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresSessionRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "SessionRecord",
    "SessionRepository",
    "SQLiteSessionRepository",
    "PostgresSessionRepository",
    "InMemorySessionRepository",
    "get_repository",
]
