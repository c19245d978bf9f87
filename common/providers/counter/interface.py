from abc import ABC, abstractmethod


class CounterInterface(ABC):
    """
    Interface for expiring counters shared across service instances.

    A key is a single counter. Every increment pushes its expiry out to
    ``ttl_seconds`` from now, so a count only disappears once the key has been
    idle that long.
    """

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        """
        Atomically add ``amount`` to the counter and refresh its expiry.

        Args:
            key: Counter key (e.g. "quota:inflight:acct_1:api_calls")
            ttl_seconds: Seconds the key lives after this increment
            amount: Amount to add

        Returns:
            The counter value after the increment
        """
        pass

    @abstractmethod
    async def decrement(self, key: str, amount: int = 1) -> int:
        """
        Atomically subtract ``amount`` from the counter, flooring at zero.

        The expiry is left unchanged; a counter reaching zero is removed.

        Returns:
            The counter value after the decrement
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> int:
        """
        Read the counter.

        Returns:
            Current value, 0 if the key is missing or expired
        """
        pass
