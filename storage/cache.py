"""
Cache
In-process TTL cache backing ephemeral state such as analysis progress
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Dict, Optional
import logging


logger = logging.getLogger(__name__)


class BaseCache(ABC):
    """Cache interface"""

    def __init__(self, ttl: Optional[int] = None):
        """
        Args:
            ttl: default expiry in seconds, None = never expires
        """
        self.ttl = ttl

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryCache(BaseCache):
    """
    Dictionary cache with per-entry expiry and a size bound.

    Contents live only in this process and are lost on restart.
    """

    def __init__(self, ttl: Optional[int] = None, max_size: int = 1000):
        """
        Args:
            ttl: default expiry in seconds
            max_size: entry limit, oldest entries are evicted first
        """
        super().__init__(ttl)
        self.max_size = max_size
        self._cache: Dict[str, Dict] = {}
        self._lock = RLock()

    def _is_expired(self, entry: Dict) -> bool:
        if entry.get("expires_at") is None:
            return False
        return datetime.now() > entry["expires_at"]

    def _cleanup(self) -> None:
        expired_keys = [k for k, v in self._cache.items() if self._is_expired(v)]
        for key in expired_keys:
            del self._cache[key]

        if len(self._cache) >= self.max_size:
            sorted_keys = sorted(self._cache.keys(), key=lambda k: self._cache[k]["created_at"])
            for key in sorted_keys[: len(self._cache) - self.max_size + 1]:
                del self._cache[key]
                logger.debug("Evicted cache entry %s", key)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._cache[key]
                return None
            return entry["value"]

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            if key not in self._cache:
                self._cleanup()
            ttl = ttl or self.ttl
            now = datetime.now()
            previous = self._cache.get(key)
            self._cache[key] = {
                "value": value,
                "created_at": previous["created_at"] if previous else now,
                "expires_at": now + timedelta(seconds=ttl) if ttl else None,
            }

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)
