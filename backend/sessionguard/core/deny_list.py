"""TTL-bounded deny-list for access tokens revoked before their expiry."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from sessionguard.config import Settings, settings

logger = logging.getLogger(__name__)


class AccessDenyList(ABC):
    """Shared ephemeral state: token ids that must be refused until they expire anyway."""

    def init(self) -> None:
        """Acquire backing resources. Called on application startup."""

    def close(self) -> None:
        """Release backing resources. Called on application shutdown."""

    @abstractmethod
    def add(self, token_id: str, ttl_seconds: int) -> bool:
        """Record the id for ttl_seconds; False when nothing was stored."""

    @abstractmethod
    def contains(self, token_id: str) -> bool:
        ...


class InMemoryDenyList(AccessDenyList):
    """Process-local deny-list suitable for single-node deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, float] = {}

    def _prune(self, now: float) -> None:
        expired = [key for key, expires in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]

    def add(self, token_id: str, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            return False
        now = time.monotonic()
        with self._lock:
            self._prune(now)
            self._entries[token_id] = now + ttl_seconds
        return True

    def contains(self, token_id: str) -> bool:
        now = time.monotonic()
        with self._lock:
            expires = self._entries.get(token_id)
            if expires is None:
                return False
            if expires <= now:
                del self._entries[token_id]
                return False
            return True

    def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._prune(time.monotonic())
            return len(self._entries)


class RedisDenyList(AccessDenyList):
    """Cluster-shared deny-list; Redis expiry does the cleanup."""

    def __init__(self, redis_url: str, *, key_prefix: str, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._socket_timeout = socket_timeout
        self.client: Optional[Redis] = None

    def init(self) -> None:
        if self.client is not None:
            return
        self.client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self._socket_timeout,
            socket_connect_timeout=self._socket_timeout,
        )
        self.client.ping()
        logger.info("Redis deny-list connected")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def _key(self, token_id: str) -> str:
        return f"{self.key_prefix}{token_id}"

    def add(self, token_id: str, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            return False
        self.init()
        try:
            self.client.set(self._key(token_id), "1", ex=int(ttl_seconds))
        except RedisError as exc:
            logger.error("Deny-list write failed for %s: %s", token_id, exc)
            return False
        return True

    def contains(self, token_id: str) -> bool:
        self.init()
        try:
            return bool(self.client.exists(self._key(token_id)))
        except RedisError as exc:
            # Readers only need eventual visibility; an unreachable store must not
            # lock every caller out.
            logger.error("Deny-list lookup failed: %s", exc)
            return False


def build_deny_list(config: Settings = settings) -> AccessDenyList:
    backend = config.DENY_LIST_BACKEND.lower().strip()
    if backend == "memory":
        return InMemoryDenyList()
    if backend == "redis":
        return RedisDenyList(
            config.REDIS_URL,
            key_prefix=config.REDIS_KEY_PREFIX,
            socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        )
    raise RuntimeError(f"Unknown DENY_LIST_BACKEND: {config.DENY_LIST_BACKEND}")


access_deny_list = build_deny_list()
