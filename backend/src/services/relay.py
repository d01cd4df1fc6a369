"""Process-wide service graph: history + broker + fanout + registry.

Built once per process from ``Settings`` and shut down explicitly; the app
keeps it on ``app.state`` instead of module globals.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import structlog

from models import Broker, HistoryStore, InMemoryBroker, InMemoryHistoryStore, RedisBroker, RedisHistoryStore
from services.fanout import FanoutService
from services.registry import ConnectionRegistry
from utilities.config import Settings

logger = structlog.get_logger()


@dataclass
class Relay:
    history: HistoryStore
    broker: Broker
    fanout: FanoutService
    registry: ConnectionRegistry
    redis: Optional[aioredis.Redis] = None

    def start(self) -> None:
        """Attach the registry to the broker; needs a running event loop."""
        self.broker.listen(self.registry.deliver)

    async def close(self) -> None:
        await self.registry.close()
        await self.broker.close()
        if self.redis is not None:
            await self.redis.aclose()
        logger.info("relay.closed")


def build_relay(settings: Settings, redis: Optional[aioredis.Redis] = None) -> Relay:
    """Wire the service graph for ``settings.backend``.

    A redis client may be passed in (tests do); otherwise one is created from
    ``settings.redis_url`` when the redis backend is selected.
    """
    history: HistoryStore
    broker: Broker
    if settings.backend == "redis":
        if redis is None:
            redis = aioredis.from_url(settings.redis_url)
        history = RedisHistoryStore(redis, size=settings.history_size, key_prefix=settings.redis_key_prefix)
        broker = RedisBroker(redis, channel=settings.redis_channel, retry_seconds=settings.redis_retry_seconds)
    else:
        history = InMemoryHistoryStore(size=settings.history_size)
        broker = InMemoryBroker(queue_size=settings.broker_queue_size)

    fanout = FanoutService(history, broker)
    registry = ConnectionRegistry(fanout, queue_size=settings.subscriber_queue_size)
    return Relay(history=history, broker=broker, fanout=fanout, registry=registry, redis=redis)
