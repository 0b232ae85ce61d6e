from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import redis

from core.config import settings
from core.errors import PurchaseInProgressError


# In-process stand-in used while TESTING
class _FakeRedis:
    def __init__(self):
        self._store = {}
        self._exp = {}

    def _cleanup(self, key):
        exp = self._exp.get(key)
        if exp is not None and datetime.utcnow().timestamp() > exp:
            self._store.pop(key, None)
            self._exp.pop(key, None)

    def set(self, key, value, nx=False, ex=None):
        self._cleanup(key)
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._exp[key] = datetime.utcnow().timestamp() + int(ex)
        else:
            self._exp.pop(key, None)
        return True

    def get(self, key):
        self._cleanup(key)
        return self._store.get(key)

    def exists(self, key):
        self._cleanup(key)
        return 1 if key in self._store else 0

    def delete(self, key):
        self._store.pop(key, None)
        self._exp.pop(key, None)

    def flushall(self):
        self._store.clear()
        self._exp.clear()


redis_client = _FakeRedis() if settings.TESTING else redis.from_url(settings.REDIS_URL, decode_responses=True)

INFLIGHT_PREFIX = "purchase:inflight:"


class SubmissionGuard:
    """One paid action in flight per user.

    The key expires on its own so a crashed worker cannot lock a user out.
    """

    def __init__(self, client=None, ttl_seconds: int | None = None):
        self.client = client if client is not None else redis_client
        self.ttl_seconds = ttl_seconds or settings.PURCHASE_INFLIGHT_TTL_SECONDS

    def _key(self, user_id: int) -> str:
        return f"{INFLIGHT_PREFIX}{user_id}"

    def is_locked(self, user_id: int) -> bool:
        return bool(self.client.exists(self._key(user_id)))

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        key = self._key(user_id)
        if not self.client.set(key, datetime.utcnow().isoformat(), nx=True, ex=self.ttl_seconds):
            raise PurchaseInProgressError()
        try:
            yield
        finally:
            self.client.delete(key)
