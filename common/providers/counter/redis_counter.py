from typing import Optional
import redis.asyncio as redis

from common.core.config import settings
from .interface import CounterInterface
from common.core.otel_axiom_exporter import get_logger, trace_span

logger = get_logger(__name__)


class RedisCounter(CounterInterface):
    """Redis-backed expiring counter (INCRBY + EXPIRE on one key per counter)."""

    def __init__(self):
        self.host = settings.redis_host
        self.port = settings.redis_port
        self.password = settings.redis_password
        self.db = settings.redis_db
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._key_prefix = "counter:"

    async def connect(self) -> None:
        """Connect to Redis. Unlike the cache, counter failures are not swallowed."""
        self._client = redis.Redis(
            host=self.host,
            port=self.port,
            password=self.password,
            db=self.db,
            decode_responses=True,
        )
        await self._client.ping()
        self._connected = True
        logger.info("Redis counter provider connected")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.close()
            self._connected = False
            logger.info("Redis counter provider disconnected")

    async def _ensure_connected(self) -> None:
        if not self._connected:
            await self.connect()

    def _counter_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    @trace_span
    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        await self._ensure_connected()
        counter_key = self._counter_key(key)

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incrby(counter_key, amount)
            pipe.expire(counter_key, ttl_seconds)
            value, _ = await pipe.execute()
        return int(value)

    @trace_span
    async def decrement(self, key: str, amount: int = 1) -> int:
        await self._ensure_connected()

        # Decrement and drop-at-zero must be one step, or a concurrent
        # increment could be deleted along with the emptied key
        lua_script = """
        local value = redis.call("decrby", KEYS[1], ARGV[1])
        if value <= 0 then
            redis.call("del", KEYS[1])
            return 0
        end
        return value
        """

        value = await self._client.eval(lua_script, 1, self._counter_key(key), amount)
        return int(value)

    @trace_span
    async def get(self, key: str) -> int:
        await self._ensure_connected()
        value = await self._client.get(self._counter_key(key))
        return int(value) if value is not None else 0
