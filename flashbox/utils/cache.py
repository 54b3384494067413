"""Small key/value store for review sessions, backed by Redis.

With a Redis URL configured Redis is the only copy: a failing call is retried
and then surfaces as ``PersistenceUnavailableError`` so the request can be
repeated once Redis is back. Without a URL values live in process memory,
which is enough for a single-process deployment and the test suite.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import redis
from loguru import logger
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from flashbox.config import settings
from flashbox.utils.exceptions import PersistenceUnavailableError


def _json_default(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "hex") and not isinstance(value, (bytes, bytearray)):
        return str(value)
    raise TypeError(f"Object of type {type(value)!r} is not JSON serializable")


@dataclass
class _CacheEntry:
    expires_at: float | None
    payload: str

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at < now


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Redis call failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class CacheBackend:
    """Namespaced JSON values with per-key TTL."""

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        client: redis.Redis | None = None,
        attempts: int | None = None,
        wait_seconds: float | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._local: dict[str, _CacheEntry] = {}
        self._redis: redis.Redis | None = client
        if client is None and redis_url:
            self._redis = redis.Redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
        self._attempts = attempts or settings.SESSION_STORE_RETRY_ATTEMPTS
        self._wait_seconds = settings.SESSION_STORE_RETRY_WAIT_SECONDS if wait_seconds is None else wait_seconds

    @staticmethod
    def _compose(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._wait_seconds, max=2),
            retry=retry_if_exception_type(redis.RedisError),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            return retrying(func, *args, **kwargs)
        except redis.RedisError as exc:
            logger.error("Session store unavailable", operation=operation, error=str(exc))
            raise PersistenceUnavailableError(
                "Session store is unavailable", details={"operation": operation}
            ) from exc

    def get(self, namespace: str, key: str) -> Any | None:
        namespaced = self._compose(namespace, key)
        if self._redis is not None:
            value = self._call("get", self._redis.get, namespaced)
            return json.loads(value) if value is not None else None
        with self._lock:
            entry = self._local.get(namespaced)
            if entry is None:
                return None
            if entry.expired(time.time()):
                del self._local[namespaced]
                return None
            return json.loads(entry.payload)

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: int | None) -> None:
        namespaced = self._compose(namespace, key)
        payload = json.dumps(value, default=_json_default)
        if self._redis is not None:
            self._call("set", self._redis.set, namespaced, payload, ex=ttl_seconds or None)
            return
        with self._lock:
            expires_at = time.time() + ttl_seconds if ttl_seconds else None
            self._local[namespaced] = _CacheEntry(expires_at=expires_at, payload=payload)

    def delete(self, namespace: str, key: str) -> None:
        namespaced = self._compose(namespace, key)
        if self._redis is not None:
            self._call("delete", self._redis.delete, namespaced)
            return
        with self._lock:
            self._local.pop(namespaced, None)

    def clear(self) -> None:
        """Forget every in-process value; Redis keys expire on their own."""

        with self._lock:
            self._local.clear()


cache_backend = CacheBackend(str(settings.REDIS_URL) if settings.REDIS_URL else None)


__all__ = ["cache_backend", "CacheBackend"]
