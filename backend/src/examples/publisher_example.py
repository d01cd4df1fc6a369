import asyncio
import uuid
import httpx  # to install: pip install httpx

async def main():
    url = "http://localhost:8000/events"
    async with httpx.AsyncClient() as client:
        # submit a test picture for city 'nyc'
        event = {
            "city": "nyc",
            "picRef": f"https://example.com/pics/{uuid.uuid4()}.jpg",
        }
        print("Client Event: ", event)
        resp = await client.post(url, json=event)
        print("Server:", resp.status_code, resp.json())

if __name__ == "__main__":
    asyncio.run(main())
