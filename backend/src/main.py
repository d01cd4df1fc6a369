import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from schemas import SubmitEventRequest, WSIncoming
from services import build_relay, Relay
from utilities import make_error, make_join_ack, make_pong, TransportError
from utilities.config import Settings
from utilities.log_config import configure_logging

logger = structlog.get_logger()


def create_app(settings: Optional[Settings] = None, redis: Optional[aioredis.Redis] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level, settings.json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay = build_relay(settings, redis=redis)
        relay.start()
        app.state.relay = relay
        app.state.started_at = datetime.now(timezone.utc)
        logger.info(
            "relay.starting",
            backend=settings.backend,
            history_size=settings.history_size,
        )
        yield
        logger.info("relay.shutdown")
        await relay.close()

    app = FastAPI(title="City picture relay", lifespan=lifespan)
    app.state.settings = settings

    # -------------- WebSocket handling --------------
    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        relay: Relay = ws.app.state.relay
        await ws.accept()
        # everything for this viewer, replies included, goes through its queue
        # so acks always follow the history they confirm
        conn = relay.registry.connect(ws)
        try:
            while True:
                data = await ws.receive_text()
                try:
                    payload = WSIncoming.model_validate(json.loads(data))
                except json.JSONDecodeError:
                    conn.offer(make_error(None, "BAD_REQUEST", "invalid json"))
                    continue
                except ValidationError:
                    conn.offer(make_error(None, "BAD_REQUEST", "type required"))
                    continue
                request_id = payload.request_id

                # ping
                if payload.type == "ping":
                    conn.offer(make_pong(request_id))
                    continue

                if payload.type == "join":
                    city = (payload.city or "").strip()
                    if not city:
                        conn.offer(make_error(request_id, "BAD_REQUEST", "city required"))
                        continue
                    replayed = await relay.registry.join(conn, city)
                    conn.offer(make_join_ack(request_id, city, replayed))
                    continue

                # unknown type
                conn.offer(make_error(request_id, "BAD_REQUEST", f"unknown type: {payload.type}"))
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("relay.websocket_error", connection=conn.id)
        finally:
            await relay.registry.disconnect(conn)

    # -------------- REST endpoints --------------
    @app.post("/events", status_code=202)
    async def rest_submit_event(req: SubmitEventRequest, request: Request):
        relay: Relay = request.app.state.relay
        await relay.fanout.publish(req.city, req.pic_ref)
        return {"status": "accepted", "city": req.city}

    @app.get("/health")
    async def rest_health(request: Request):
        relay: Relay = request.app.state.relay
        now = datetime.now(timezone.utc)
        checks = {
            "uptime_sec": int((now - request.app.state.started_at).total_seconds()),
            "backend": settings.backend,
            "connections": len(relay.registry.connections),
        }
        if relay.redis is not None:
            try:
                await relay.redis.ping()
                checks["redis"] = "ok"
            except Exception as e:
                checks["redis"] = f"error: {e}"
        status = "degraded" if checks.get("redis", "ok") != "ok" else "healthy"
        return {"status": status, **checks}

    @app.get("/stats")
    async def rest_stats(request: Request):
        relay: Relay = request.app.state.relay
        try:
            history = await relay.history.lengths()
        except TransportError as e:
            logger.warning("relay.stats_history_failed", error=str(e))
            history = {}
        return {
            **relay.registry.stats(),
            "history": history,
            "published": relay.fanout.published,
            "failures": relay.fanout.failures,
        }

    return app


app = create_app()
