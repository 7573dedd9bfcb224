"""
Reward lock: short-lived mutual exclusion per referee, so one distribution runs at a time.

The TTL is what protects against a holder that crashed before releasing; release is
best effort.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod

import redis

from referral_rewards.core.config import settings


class RewardLock(ABC):
    @abstractmethod
    def acquire(self, referee_id: int) -> bool:
        """Take the lock if nobody holds it. False = contended."""
        raise NotImplementedError

    @abstractmethod
    def release(self, referee_id: int) -> None:
        """Drop the lock unconditionally. May raise; callers log and move on."""
        raise NotImplementedError


class RedisRewardLock(RewardLock):
    """Shared across processes: SET NX EX + DEL."""

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None, prefix: str | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.referral_lock_ttl_seconds
        self.prefix = prefix if prefix is not None else settings.referral_lock_prefix

    def _key(self, referee_id: int) -> str:
        return f"{self.prefix}{referee_id}"

    def acquire(self, referee_id: int) -> bool:
        created = self.client.set(self._key(referee_id), "1", nx=True, ex=self.ttl)
        return bool(created)

    def release(self, referee_id: int) -> None:
        self.client.delete(self._key(referee_id))


class MemoryRewardLock(RewardLock):
    """Single-process deployments and tests: deadlines in a dict, guarded by a mutex."""

    def __init__(self, ttl_seconds: int | None = None, clock=time.monotonic) -> None:
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.referral_lock_ttl_seconds
        self._clock = clock
        self._deadlines: dict[int, float] = {}
        self._mutex = threading.Lock()

    def acquire(self, referee_id: int) -> bool:
        with self._mutex:
            now = self._clock()
            deadline = self._deadlines.get(referee_id)
            if deadline is not None and deadline > now:
                return False
            self._deadlines[referee_id] = now + self.ttl
            return True

    def release(self, referee_id: int) -> None:
        with self._mutex:
            self._deadlines.pop(referee_id, None)

    def is_held(self, referee_id: int) -> bool:
        with self._mutex:
            deadline = self._deadlines.get(referee_id)
            return deadline is not None and deadline > self._clock()


_memory_lock: MemoryRewardLock | None = None


def build_reward_lock() -> RewardLock:
    """Lock backend from settings. The in-memory lock is a process-wide singleton."""
    global _memory_lock
    if settings.referral_lock_backend == "memory":
        if _memory_lock is None:
            _memory_lock = MemoryRewardLock()
        return _memory_lock
    return RedisRewardLock()
