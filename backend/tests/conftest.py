"""Shared fixtures: in-memory service graph with a small history cap."""

import pytest_asyncio

from models import InMemoryBroker, InMemoryHistoryStore
from services import ConnectionRegistry, FanoutService

TEST_HISTORY_SIZE = 3


@pytest_asyncio.fixture()
async def history():
    return InMemoryHistoryStore(size=TEST_HISTORY_SIZE)


@pytest_asyncio.fixture()
async def broker():
    b = InMemoryBroker(queue_size=100)
    yield b
    await b.close()


@pytest_asyncio.fixture()
async def fanout(history, broker):
    return FanoutService(history, broker)


@pytest_asyncio.fixture()
async def registry(fanout, broker):
    """Registry listening on the broker, closed after the test."""
    r = ConnectionRegistry(fanout, queue_size=50)
    broker.listen(r.deliver)
    yield r
    await r.close()
