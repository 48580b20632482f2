"""
Configuration provider.

Serves the active routing configuration from a store through a short-lived
cache. A failed or slow fetch never blocks lead processing: the provider falls
back to the last configuration it saw, or to the built-in default.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from redis.asyncio import Redis

from leadroute.schemas import DEFAULT_CONFIGURATION, Configuration, utcnow

logger = logging.getLogger(__name__)


class ConfigurationStore(ABC):
    """Abstract persistent store for the active configuration."""

    @abstractmethod
    async def load(self) -> Optional[Configuration]:
        """Returns the stored configuration, or None if none was saved yet."""
        pass

    @abstractmethod
    async def save(self, config: Configuration) -> None:
        pass


class RedisConfigurationStore(ConfigurationStore):
    """Keeps the active configuration as a JSON document under one Redis key."""

    def __init__(self, redis: Redis, key: str):
        self.redis = redis
        self.key = key

    async def load(self) -> Optional[Configuration]:
        raw = await self.redis.get(self.key)
        if not raw:
            return None
        return Configuration.model_validate_json(raw)

    async def save(self, config: Configuration) -> None:
        await self.redis.set(self.key, config.model_dump_json())


class ConfigurationProvider:
    """
    TTL cache in front of a ConfigurationStore.

    Usage:
        provider = ConfigurationProvider(RedisConfigurationStore(redis, key), ttl_seconds=60)
        config = await provider.get()
        await provider.update(new_config, updated_by="ops")   # saves and invalidates
    """

    def __init__(
        self,
        store: ConfigurationStore,
        ttl_seconds: float = 60.0,
        fetch_timeout: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        default: Configuration = DEFAULT_CONFIGURATION,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.fetch_timeout = fetch_timeout
        self.default = default
        self._clock = clock
        self._cached: Optional[Configuration] = None
        self._fetched_at: Optional[float] = None
        self._last_known: Optional[Configuration] = None

    def _is_fresh(self, now: float) -> bool:
        return (
            self._cached is not None
            and self._fetched_at is not None
            and now - self._fetched_at < self.ttl_seconds
        )

    async def get(self) -> Configuration:
        """Returns the active configuration, refreshing it when the cache expired."""
        now = self._clock()
        if self._is_fresh(now):
            return self._cached

        try:
            config = await asyncio.wait_for(self.store.load(), timeout=self.fetch_timeout)
        except Exception as e:
            fallback = self._last_known or self.default
            logger.warning(
                "Configuration fetch failed (%s: %s), using %s configuration",
                type(e).__name__, e,
                "last known" if self._last_known else "built-in default",
            )
            return fallback

        if config is None:
            logger.warning("No configuration stored, using built-in default")
            config = self.default

        self._cached = config
        self._fetched_at = now
        self._last_known = config
        return config

    def invalidate(self) -> None:
        """Drops the cached value; the next get() goes to the store."""
        self._cached = None
        self._fetched_at = None

    async def update(self, config: Configuration, updated_by: str) -> Configuration:
        """Saves a new configuration and invalidates the cache."""
        stamped = config.model_copy(update={"updated_at": utcnow(), "updated_by": updated_by})
        await self.store.save(stamped)
        self.invalidate()
        logger.info("Configuration updated by %s", updated_by)
        return stamped
