import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import redis

from core.config import settings
from services.checkout_errors import CheckoutInProgress

logger = logging.getLogger(__name__)


class _FakeRedis:
    """In-process stand-in used when TESTING is set; supports the calls the lock makes."""

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
        return True

    def get(self, key):
        self._cleanup(key)
        return self._store.get(key)

    def delete(self, key):
        existed = key in self._store
        self._store.pop(key, None)
        self._exp.pop(key, None)
        return 1 if existed else 0


redis_client = _FakeRedis() if settings.TESTING else redis.from_url(settings.REDIS_URL, decode_responses=True)

LOCK_PREFIX = "checkout:"


def lock_key(user_id: str, reference: str) -> str:
    return f"{LOCK_PREFIX}{user_id}:{reference}"


@contextmanager
def checkout_lock(user_id: str, reference: str) -> Iterator[None]:
    """Single-writer guard for one (user, payment reference) checkout.

    A Redis outage does not block checkout: the payment has already been
    captured, so the saga runs unguarded and the failure is logged.
    """
    if not settings.CHECKOUT_LOCK_ENABLED:
        yield
        return

    key = lock_key(user_id, reference)
    token = uuid.uuid4().hex
    try:
        acquired = redis_client.set(key, token, nx=True, ex=settings.CHECKOUT_LOCK_TTL_SECONDS)
    except redis.RedisError as exc:
        logger.warning("Checkout lock unavailable for %s, continuing unguarded: %s", key, exc)
        token = None
    else:
        if not acquired:
            raise CheckoutInProgress("Checkout already in progress for this payment reference")

    try:
        yield
    finally:
        if token is not None:
            _release(key, token)


def _release(key: str, token: str) -> None:
    try:
        if redis_client.get(key) == token:
            redis_client.delete(key)
    except redis.RedisError as exc:
        logger.warning("Failed to release checkout lock %s (expires on its own): %s", key, exc)
