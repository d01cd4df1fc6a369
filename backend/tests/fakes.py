"""Small stand-ins for the websocket and redis client used in tests."""

import asyncio
import fnmatch
import json

from redis.exceptions import ConnectionError as RedisConnectionError


class FakeWebSocket:
    """Records every JSON frame the relay sends."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.closed = False
        self.fail = fail

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("websocket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000):
        self.closed = True

    def pics(self, *types):
        types = types or ("history", "live")
        return [m["picRef"] for m in self.sent if m["type"] in types]


class GatedWebSocket(FakeWebSocket):
    """A viewer that reads nothing until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def send_text(self, text: str):
        await self.gate.wait()
        await super().send_text(text)


async def wait_until(predicate, timeout: float = 1.0):
    """Poll ``predicate`` while background tasks run."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class _FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def lpush(self, key, value):
        self.ops.append(("lpush", key, value))
        return self

    def ltrim(self, key, start, stop):
        self.ops.append(("ltrim", key, start, stop))
        return self

    async def execute(self):
        self.redis._check()
        results = []
        for op, key, *args in self.ops:
            results.append(await getattr(self.redis, op)(key, *args))
        self.ops = []
        return results


class _FakePubSub:
    def __init__(self, redis):
        self.redis = redis
        self.queue = asyncio.Queue()
        self.channels = set()

    async def subscribe(self, channel):
        self.redis._check()
        self.channels.add(channel)
        self.redis.subscriptions += 1
        self.redis.pubsubs.append(self)
        await self.queue.put({"type": "subscribe", "channel": channel, "data": 1})

    async def listen(self):
        while True:
            message = await self.queue.get()
            if isinstance(message, Exception):
                raise message
            yield message

    async def aclose(self):
        if self in self.redis.pubsubs:
            self.redis.pubsubs.remove(self)


class FakeRedis:
    """The handful of redis.asyncio.Redis commands the relay uses, in memory."""

    def __init__(self):
        self.data = {}
        self.pubsubs = []
        self.subscriptions = 0
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def incr(self, key):
        self._check()
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def lpush(self, key, value):
        self._check()
        self.data.setdefault(key, []).insert(0, value.encode())
        return len(self.data[key])

    async def ltrim(self, key, start, stop):
        self._check()
        self.data[key] = self.data.get(key, [])[start:stop + 1]
        return True

    async def lrange(self, key, start, stop):
        self._check()
        return list(self.data.get(key, [])[start:stop + 1])

    async def llen(self, key):
        self._check()
        return len(self.data.get(key, []))

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode()

    def pipeline(self, transaction=True):
        return _FakePipeline(self)

    def pubsub(self):
        return _FakePubSub(self)

    async def publish(self, channel, message):
        self._check()
        receivers = [p for p in self.pubsubs if channel in p.channels]
        for p in receivers:
            await p.queue.put({"type": "message", "channel": channel.encode(), "data": message.encode()})
        return len(receivers)

    def drop_subscribers(self):
        """Simulate the server closing every subscriber connection."""
        for p in list(self.pubsubs):
            p.queue.put_nowait(RedisConnectionError("connection lost"))

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True
