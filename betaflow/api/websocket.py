# betaflow/api/websocket.py
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from betaflow.core.redis import job_channel, redis_client

router = APIRouter()


@router.websocket("/ws/job/{job_id}")
async def job_progress(websocket: WebSocket, job_id: int):
    await websocket.accept()
    pubsub = redis_client.pubsub()
    await pubsub.subscribe(job_channel(job_id))
    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            await websocket.send_text(message["data"])
            if json.loads(message["data"]).get("final"):
                await websocket.close()
                break
    except WebSocketDisconnect:
        pass
    finally:
        await pubsub.unsubscribe(job_channel(job_id))
        await pubsub.aclose()
