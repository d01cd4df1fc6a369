import asyncio
import json
import sys
import uuid
import websockets  # lightweight client; to install: pip install websockets

async def main(city: str):
    uri = "ws://localhost:8000/ws"
    async with websockets.connect(uri) as ws:
        join = {
            "type": "join",
            "city": city,  # "universe" for every city
            "request_id": str(uuid.uuid4())
        }
        await ws.send(json.dumps(join))
        # history arrives first, then the ack, then live pictures
        print("Awaiting pictures... (press Ctrl+C to exit)")
        async for raw in ws:
            msg = json.loads(raw)
            if msg["type"] in ("history", "live"):
                print(f"[{msg['type']}] {msg['channel']}: {msg['picRef']}")
            else:
                print("Received:", msg)

if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "nyc"))
    except KeyboardInterrupt:
        pass
