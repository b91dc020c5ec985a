"""
Engine, session factory and declarative base for the bookings database.

SQLite is the default store for local runs and tests; any SQLAlchemy URL
works through ``DATABASE_URL``.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# OperationalError messages worth a second attempt
_TRANSIENT_MARKERS = ("database is locked", "server closed the connection")


def _engine_options(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        # request threads and the reconciliation thread share connections
        return {"connect_args": {"check_same_thread": False}, "future": True}
    return {"pool_size": 5, "max_overflow": 5, "pool_pre_ping": True, "future": True}


engine: Engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; services commit their own units of work."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """Run ``func``, retrying lock contention and dropped connections with jittered backoff."""

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except OperationalError as exc:
            transient = any(marker in str(exc).lower() for marker in _TRANSIENT_MARKERS)
            if attempt == max_attempts or not transient:
                raise
            delay = 0.05 * 2 ** (attempt - 1) + random.uniform(0, 0.02)
            logger.warning(
                "Transient database error during %s, retrying in %.2fs",
                op_name,
                delay,
                extra={"op": op_name, "attempt": attempt, "error": str(exc)},
            )
            time.sleep(delay)
    raise RuntimeError("unreachable")


__all__ = ["Base", "SessionLocal", "engine", "get_db", "with_db_retry"]
