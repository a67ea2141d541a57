import logging
import math
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Optional

import redis
from cachetools import TLRUCache
from pydantic import ValidationError

from app.errors import InfrastructureError
from app.models.job import JobRecord

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Durable key-value store with per-entry expiry.

    Reads may be stale relative to concurrent writes. Only backends that
    override ``put_if_absent`` with a conditional write make admission atomic.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Write only when the key is absent. Returns True if written."""
        if self.get(key) is not None:
            return False
        self.put(key, value, ttl)
        return True


class MemoryKeyValueStore(KeyValueStore):
    """Thread-safe in-process store backed by a cachetools TLRUCache."""

    def __init__(self, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic):
        self._cache = TLRUCache(maxsize=maxsize, ttu=self._expires_at, timer=timer)
        self._lock = Lock()

    @staticmethod
    def _expires_at(_key, value, now):
        _, ttl = value
        return now + ttl if ttl else math.inf

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(key)
        return entry[0] if entry is not None else None

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._cache[key] = (value, ttl)

    def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        with self._lock:
            if key in self._cache:
                return False
            self._cache[key] = (value, ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)


class RedisKeyValueStore(KeyValueStore):
    """Redis backend. ``SET NX EX`` gives an atomic conditional put."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except redis.exceptions.RedisError as e:
            raise InfrastructureError(f"Key-value store unavailable: {e}") from e

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            self._client.set(key, value, ex=ttl)
        except redis.exceptions.RedisError as e:
            raise InfrastructureError(f"Key-value store unavailable: {e}") from e

    def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            return bool(self._client.set(key, value, ex=ttl, nx=True))
        except redis.exceptions.RedisError as e:
            raise InfrastructureError(f"Key-value store unavailable: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.exceptions.RedisError as e:
            raise InfrastructureError(f"Key-value store unavailable: {e}") from e


class JobRecordStore:
    """Typed access to JobRecords kept in a KeyValueStore."""

    def __init__(self, kv: KeyValueStore, processing_ttl: int, completed_ttl: int):
        self._kv = kv
        self.processing_ttl = processing_ttl
        self.completed_ttl = completed_ttl

    def ttl_for(self, record: JobRecord) -> int:
        return self.processing_ttl if record.processing else self.completed_ttl

    def get(self, key: str) -> Optional[JobRecord]:
        raw = self._kv.get(key)
        if raw is None:
            return None
        try:
            return JobRecord.model_validate_json(raw)
        except ValidationError as e:
            raise InfrastructureError(f"Corrupt job record for {key}") from e

    def put(self, key: str, record: JobRecord, ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self.ttl_for(record)
        self._kv.put(key, record.model_dump_json(), ttl)
        logger.info(f"Job {key} -> {record.status} (ttl={ttl}s)")

    def admit(self, key: str, record: JobRecord) -> bool:
        """Create the record if no other invocation holds the key."""
        admitted = self._kv.put_if_absent(key, record.model_dump_json(), self.ttl_for(record))
        if admitted:
            logger.info(f"Job {key} admitted as {record.status}")
        return admitted
