from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from jury.errors import StorageQuotaExceeded
from jury.models import Base, StoredRecord

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"

# Same order of magnitude as a browser's local-storage quota.
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            db_path = DATA_DIR / "jury.db"
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope(factory: Callable[[], Session] = get_session) -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Commits on a clean exit, rolls back on any exception::

        with session_scope() as session:
            ...
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def quota_from_env() -> int:
    raw = os.environ.get("JURY_STORAGE_QUOTA_BYTES", "")
    try:
        return int(raw) if raw else DEFAULT_QUOTA_BYTES
    except ValueError:
        return DEFAULT_QUOTA_BYTES


class RecordStorage:
    """Keyed string storage on top of the ``records`` table.

    Each write replaces one row inside a single transaction, so readers see
    either the previous value or the new one.  Values larger than
    ``quota_bytes`` (UTF-8 encoded) are refused with ``StorageQuotaExceeded``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        quota_bytes: int | None = None,
    ):
        self._session_factory = session_factory
        self.quota_bytes = quota_from_env() if quota_bytes is None else quota_bytes

    def read(self, key: str) -> str | None:
        with session_scope(self._session_factory) as session:
            row = session.execute(select(StoredRecord).where(StoredRecord.key == key)).scalars().first()
            return row.value if row is not None else None

    def write(self, key: str, value: str) -> None:
        size = len(value.encode("utf-8"))
        if size > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Value for {key!r} is {size} bytes, quota is {self.quota_bytes}"
            )
        with session_scope(self._session_factory) as session:
            row = session.get(StoredRecord, key)
            if row is None:
                session.add(StoredRecord(key=key, value=value))
            else:
                row.value = value
