"""Database URL normalization and dialect-specific statement builders."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import Session

# Dialects whose INSERT construct supports ON CONFLICT upserts.
_UPSERT_BUILDERS: dict[str, Callable[[Any], Any]] = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _sqlite_file_url(path: Path) -> str:
    return f"sqlite:///{path.expanduser().resolve()}"


def _absolute_sqlite_url(url: URL) -> str:
    database = url.database or ""
    if database in {"", ":memory:"} or Path(database).is_absolute():
        return url.render_as_string(hide_password=False)
    return url.set(database=str((Path.cwd() / database).resolve())).render_as_string(hide_password=False)


def normalize_database_url(target: str | Path) -> str:
    """Return an absolute SQLAlchemy URL for a SQLite path or any database URL.

    Relative SQLite locations are anchored at the working directory so that
    API processes and Celery workers share one engine cache key per file.
    Server URLs are returned untouched.
    """

    if isinstance(target, Path):
        return _sqlite_file_url(target)

    raw = str(target).strip()
    if not raw:
        raise ValueError("database target cannot be empty")
    if "://" not in raw:
        return _sqlite_file_url(Path(raw))

    url = make_url(raw)
    if url.get_backend_name() == "sqlite":
        return _absolute_sqlite_url(url)
    return raw


def dialect_insert(session: Session, table: Any) -> Any:
    """Return an INSERT for ``table`` that offers ``on_conflict_do_*`` on the bound dialect."""

    bind = session.get_bind()
    if bind is None:
        raise RuntimeError("Session is not bound to an engine.")

    builder = _UPSERT_BUILDERS.get(bind.dialect.name)
    if builder is None:
        raise NotImplementedError(f"Unsupported dialect for upsert: {bind.dialect.name}")
    return builder(table)


def chunked(values: list[Any], size: int = 400) -> list[list[Any]]:
    """Split ``values`` to stay under per-statement parameter limits."""

    return [values[offset : offset + size] for offset in range(0, len(values), size)]


__all__ = [
    "normalize_database_url",
    "dialect_insert",
    "chunked",
]
