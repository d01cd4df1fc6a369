"""Publish pictures into history and out to live viewers.

A picture for a city is written to two histories, the city's and the
universe's, and then published as a single broker event tagged with the city.
Viewers in the universe room get it from that same event, so there is never a
second live publish for the universe.
"""

import structlog

from models import Broker, HistorySnapshot, HistoryStore, LiveEvent
from utilities import TransportError, UNIVERSE

logger = structlog.get_logger()


class FanoutService:
    def __init__(self, history: HistoryStore, broker: Broker):
        self.history = history
        self.broker = broker
        self.published = 0
        self.failures = 0

    async def publish(self, city: str, pic_ref: str) -> None:
        """Fire-and-forget: failures are logged, never raised to the caller."""
        logger.debug("relay.publish", city=city, pic_ref=pic_ref)
        seq = global_seq = 0
        try:
            if city != UNIVERSE:
                seq = await self.history.push(city, pic_ref)
            global_seq = await self.history.push(UNIVERSE, pic_ref)
        except TransportError as e:
            # live viewers still get the picture even if it can't be cached
            self.failures += 1
            logger.error("relay.history_write_failed", city=city, error=str(e))

        event = LiveEvent(city=city, pic_ref=pic_ref, seq=seq, global_seq=global_seq)
        try:
            await self.broker.publish(city, event)
        except TransportError as e:
            self.failures += 1
            logger.error("relay.broadcast_failed", city=city, error=str(e))
            return
        self.published += 1

    async def replay(self, key: str) -> HistorySnapshot:
        """History for ``key`` oldest first; the caller decides what to do on failure."""
        return await self.history.range(key)
