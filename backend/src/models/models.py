import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog
from fastapi import WebSocket

from models.broker import LiveEvent
from utilities import make_error, SUBSCRIBER_QUEUE_SIZE

logger = structlog.get_logger()

_ids = itertools.count(1)


# ------------ In-memory structures ------------
@dataclass
class Room:
    ''' One channel key a connection joined.'''

    key: str
    # sequence number of the newest replayed picture; live events at or
    # below it were already sent as history
    floor: int = 0
    # while replaying, live events for this room wait in pending
    replaying: bool = True
    pending: List[LiveEvent] = field(default_factory=list)


class Connection:
    ''' Represents a live viewer session.'''

    def __init__(self, websocket: WebSocket, queue_size: int = SUBSCRIBER_QUEUE_SIZE, replay_headroom: int = 0):

        # initialize fields
        self.id = next(_ids)
        self.websocket = websocket
        self.rooms: Dict[str, Room] = {}

        # per connection message buffer
        # publisher should never wait for a slow viewer
        # if viewer is slow messages accumulate up to queue_size
        # if queue is full, oldest message is dropped and SLOW_CONSUMER error is enqueued
        # replay_headroom leaves room for a full history replay on top of that
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + replay_headroom)

        # background async task that pops from queue and sends via WebSocket
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True
        self.messages_dropped = 0

    def __repr__(self):
        return f"<Connection {self.id} rooms={sorted(self.rooms)}>"

    def start(self):
        self.sender_task = asyncio.create_task(self._sender_loop())

    def offer(self, message: dict) -> bool:
        ''' Enqueue without ever blocking. Returns False once disconnected.'''
        if not self.connected:
            return False
        if self.queue.full():
            # drop oldest, leaving space for the SLOW_CONSUMER notice and the message
            keep = max(self.queue.maxsize - 2, 0)
            while self.queue.qsize() > keep:
                self.queue.get_nowait()
                self.messages_dropped += 1
            if self.queue.maxsize > 1:
                err = make_error(None, "SLOW_CONSUMER", "Connection queue overflow; oldest messages dropped")
                self.queue.put_nowait(err)
        self.queue.put_nowait(message)
        return True

    async def replay(self, messages: List[dict]) -> bool:
        ''' Enqueue history frames, waiting for room instead of dropping anything.'''
        for message in messages:
            if not self.connected:
                return False
            await self.queue.put(message)
        return self.connected

    async def _sender_loop(self):
        """
        Background task per connection: read from queue and send over websocket.
        """
        try:
            while self.connected:
                item = await self.queue.get()
                try:
                    await self.websocket.send_text(json.dumps(item))
                except Exception as e:
                    # (broken pipe / closed) -> stop
                    logger.info("connection.send_failed", connection=self.id, error=str(e))
                    break
        except asyncio.CancelledError:
            # Graceful cancellation
            pass
        finally:
            self.connected = False
            self._release()

    def _release(self):
        # nothing will be sent any more; wake anyone blocked in replay()
        while not self.queue.empty():
            self.queue.get_nowait()

    # graceful cleanup
    async def stop(self):
        self.connected = False
        if self.sender_task:
            self.sender_task.cancel()
            try:
                await self.sender_task
            except asyncio.CancelledError:
                pass
        self._release()
