from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class QuotaEnforcementMode(str, Enum):
    """How strictly concurrent usage recording is serialized."""

    SOFT = "soft"  # check-then-append, bounded over-admission under contention
    HARD = "hard"  # shared reservation counter closes the check/append window


class CounterProvider(str, Enum):
    """Backing store for shared windowed counters."""

    REDIS = "redis"
    MEMORY = "memory"  # single-process only (local dev, tests)
