"""
Key-Value Storage Primitives
Plain string get/set stores used underneath the result cache: an in-memory
store and a SQLAlchemy-backed store for persistence across runs.
"""

import time
from typing import Dict, List, Optional

from sqlalchemy import Float, String, Text, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.pool import StaticPool


class StorageError(Exception):
    """A storage primitive failed to read or write"""


class StorageQuotaExceeded(StorageError):
    """A write would exceed the store's quota"""


class KeyValueStore:
    """Interface of a string key-value store with no structure awareness"""

    quota_bytes: Optional[int] = None

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = '') -> List[str]:
        raise NotImplementedError

    def _check_quota(self, key, value):
        if self.quota_bytes is None:
            return
        size = len(value.encode('utf-8'))
        if size > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Writing {key} ({size} bytes) exceeds quota of {self.quota_bytes} bytes"
            )


class MemoryStore(KeyValueStore):
    """Dictionary-backed store; contents live as long as the process"""

    def __init__(self, quota_bytes=None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._check_quota(key, value)
        self._data[key] = value

    def delete(self, key):
        self._data.pop(key, None)

    def keys(self, prefix=''):
        return [key for key in self._data if key.startswith(prefix)]


class Base(DeclarativeBase):
    pass


class CacheRow(Base):
    __tablename__ = 'scan_cache'

    key: Mapped[str] = mapped_column(String(4096), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[float] = mapped_column(Float)


class SQLAlchemyStore(KeyValueStore):
    """Store rows in any SQLAlchemy database (SQLite by default)"""

    def __init__(self, url='sqlite:///data/scan_cache.db', quota_bytes=None):
        self.url = url
        self.quota_bytes = quota_bytes
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # Single shared connection, otherwise every connection gets an empty database
            self.engine = create_engine(url, poolclass=StaticPool,
                                        connect_args={'check_same_thread': False})
        else:
            self.engine = create_engine(url)
        Base.metadata.create_all(self.engine)

    def get(self, key):
        try:
            with Session(self.engine) as session:
                row = session.get(CacheRow, key)
                return row.value if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Read of {key} failed: {e}") from e

    def set(self, key, value):
        self._check_quota(key, value)
        try:
            with Session(self.engine) as session:
                session.merge(CacheRow(key=key, value=value, updated_at=time.time()))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Write of {key} failed: {e}") from e

    def delete(self, key):
        try:
            with Session(self.engine) as session:
                session.execute(delete(CacheRow).where(CacheRow.key == key))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Delete of {key} failed: {e}") from e

    def keys(self, prefix=''):
        try:
            with Session(self.engine) as session:
                stmt = select(CacheRow.key)
                if prefix:
                    stmt = stmt.where(CacheRow.key.startswith(prefix, autoescape=True))
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise StorageError(f"Key listing failed: {e}") from e

    def close(self):
        self.engine.dispose()


def open_store(url=None, quota_bytes=None) -> KeyValueStore:
    """MemoryStore when no URL is configured, SQLAlchemyStore otherwise"""
    if not url:
        return MemoryStore(quota_bytes=quota_bytes)
    return SQLAlchemyStore(url, quota_bytes=quota_bytes)
