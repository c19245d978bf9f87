from typing import Optional

from common.core.config import settings
from common.core.constants import CounterProvider
from common.core.otel_axiom_exporter import get_logger

from .interface import CounterInterface
from .memory_counter import MemoryCounter
from .redis_counter import RedisCounter

logger = get_logger(__name__)

# Global instance
_counter_provider: Optional[CounterInterface] = None


def get_counter_provider() -> CounterInterface:
    """
    Get the configured counter provider.

    Returns:
        CounterInterface: The counter provider instance
    """
    global _counter_provider

    if _counter_provider is None:
        if settings.counter_provider == CounterProvider.MEMORY:
            _counter_provider = MemoryCounter()
        else:
            _counter_provider = RedisCounter()
        logger.info(f"Initialized {settings.counter_provider.value} counter provider")

    return _counter_provider
