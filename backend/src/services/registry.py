"""Live viewer connections and the rooms they joined.

The registry is the broker's only listener. Each event is matched against the
city room and the universe room and handed to every member once, even when a
connection sits in both rooms.

Joining replays history before the room goes live. The room is registered
first, in replaying state, so events published while the history read is in
flight are held back on the connection instead of being lost. Once the
snapshot is sent, held events newer than the snapshot go out as live ones and
anything the snapshot already covered is skipped.
"""

import weakref
from typing import Dict, Optional, Set

import structlog
from fastapi import WebSocket

from models import Connection, HistorySnapshot, LiveEvent, Room
from services.fanout import FanoutService
from utilities import make_history, make_live, SUBSCRIBER_QUEUE_SIZE, TransportError, UNIVERSE

logger = structlog.get_logger()


class ConnectionRegistry:
    def __init__(self, fanout: FanoutService, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.fanout = fanout
        self.queue_size = queue_size
        self.connections: Set[Connection] = set()
        # channel key -> member connections; entries vanish with the connection
        self.rooms: Dict[str, weakref.WeakSet] = {}

    def connect(self, websocket: WebSocket) -> Connection:
        # headroom so a full history replay never trips the slow-consumer drop
        conn = Connection(websocket, self.queue_size, replay_headroom=self.fanout.history.size)
        conn.start()
        self.connections.add(conn)
        logger.debug("relay.connect", connection=conn.id, total=len(self.connections))
        return conn

    async def join(self, conn: Connection, key: str) -> Optional[int]:
        """Replay ``key`` history to ``conn`` then deliver its live events.

        Returns how many history frames were queued. Joining a room the
        connection is already in does nothing and returns None; so does
        joining after disconnect.
        """
        if not conn.connected or key in conn.rooms:
            return None

        room = Room(key)
        conn.rooms[key] = room
        self.rooms.setdefault(key, weakref.WeakSet()).add(conn)

        try:
            snapshot = await self.fanout.replay(key)
        except TransportError as e:
            logger.error("relay.replay_failed", channel=key, connection=conn.id, error=str(e))
            snapshot = HistorySnapshot()

        if conn.rooms.get(key) is not room:
            # disconnected while the history was being read
            return None

        # the room keeps holding live events while replay waits for queue space
        room.floor = snapshot.last_seq
        sent = await conn.replay([make_history(key, pic_ref) for pic_ref in snapshot.items])
        if not sent or conn.rooms.get(key) is not room:
            return None

        # nothing below awaits, so no delivery can interleave with going live
        pending, room.pending = room.pending, []
        room.replaying = False
        for event in pending:
            self._send_live(conn, room, event)

        logger.info(
            "relay.join",
            channel=key,
            connection=conn.id,
            replayed=len(snapshot.items),
            held=len(pending),
        )
        return len(snapshot.items)

    def deliver(self, topic: str, event: LiveEvent) -> None:
        """Broker handler: push ``event`` to the city room and the universe room."""
        targets: Dict[Connection, str] = {}
        for key in (topic, UNIVERSE):
            for conn in list(self.rooms.get(key, ())):
                # first matching room wins, so nobody gets the same publish twice
                targets.setdefault(conn, key)

        for conn, key in targets.items():
            room = conn.rooms.get(key)
            if room is None:
                continue
            if room.replaying:
                room.pending.append(event)
                continue
            self._send_live(conn, room, event)

    def _send_live(self, conn: Connection, room: Room, event: LiveEvent) -> None:
        seq = event.global_seq if room.key == UNIVERSE else event.seq
        # seq 0 means the history write failed; nothing was replayed for it
        if seq and seq <= room.floor:
            return
        conn.offer(make_live(event.city, event.pic_ref))

    async def disconnect(self, conn: Connection) -> None:
        self.connections.discard(conn)
        for key in list(conn.rooms):
            members = self.rooms.get(key)
            if members is None:
                continue
            members.discard(conn)
            if not members:
                self.rooms.pop(key, None)
        conn.rooms.clear()
        await conn.stop()
        logger.debug("relay.disconnect", connection=conn.id, total=len(self.connections))

    async def close(self) -> None:
        """Shut every connection down; used when the process stops."""
        conns = list(self.connections)
        for conn in conns:
            await self.disconnect(conn)
            try:
                await conn.websocket.close(code=1001)
            except Exception as e:
                # already closed by the peer
                logger.debug("relay.close_failed", connection=conn.id, error=str(e))
        logger.info("relay.registry_closed", connections=len(conns))

    def stats(self) -> dict:
        return {
            "connections": len(self.connections),
            "rooms": {key: len(members) for key, members in list(self.rooms.items())},
        }
