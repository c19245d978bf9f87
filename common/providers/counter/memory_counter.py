import asyncio
import time
from typing import Dict, Tuple

from .interface import CounterInterface
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


class MemoryCounter(CounterInterface):
    """
    In-process counter.

    Only correct for a single process; multi-instance deployments use RedisCounter.
    """

    def __init__(self, clock=time.time):
        # key -> (value, expires_at)
        self._counts: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        logger.info("Memory counter provider initialized")

    def _live_entry(self, key: str) -> Tuple[int, float]:
        value, expires_at = self._counts.get(key, (0, 0.0))
        if expires_at <= self._clock():
            self._counts.pop(key, None)
            return 0, 0.0
        return value, expires_at

    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        async with self._lock:
            value, _ = self._live_entry(key)
            value += amount
            self._counts[key] = (value, self._clock() + ttl_seconds)
            return value

    async def decrement(self, key: str, amount: int = 1) -> int:
        async with self._lock:
            value, expires_at = self._live_entry(key)
            value -= amount
            if value <= 0:
                self._counts.pop(key, None)
                return 0
            self._counts[key] = (value, expires_at)
            return value

    async def get(self, key: str) -> int:
        async with self._lock:
            value, _ = self._live_entry(key)
            return value
