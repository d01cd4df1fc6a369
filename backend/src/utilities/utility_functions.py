from datetime import datetime, timezone
from typing import Optional

def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat()

# Server -> client messages are built as dicts
# confirms a join once its history is queued; replayed counts the history frames before it
def make_join_ack(request_id: Optional[str], channel: str, replayed: Optional[int]):
    status = "already_joined" if replayed is None else "ok"
    return {"type": "ack", "request_id": request_id, "channel": channel, "status": status, "replayed": replayed or 0, "ts": now_ts()}

def make_pong(request_id: Optional[str]):
    return {"type": "pong", "request_id": request_id, "ts": now_ts()}

# one per replayed item, oldest first, only at join time
def make_history(channel: str, pic_ref: str):
    return {"type": "history", "channel": channel, "picRef": pic_ref, "ts": now_ts()}

# pushed as city/global events occur
def make_live(channel: str, pic_ref: str):
    return {"type": "live", "channel": channel, "picRef": pic_ref, "ts": now_ts()}

def make_error(request_id: Optional[str], code: str, message: str, channel: Optional[str] = None):
    return {"type": "error", "request_id": request_id, "channel": channel, "error": {"code": code, "message": message}, "ts": now_ts()}
