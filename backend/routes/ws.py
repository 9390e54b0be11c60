import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from errors import RoomNotFound
from routes.stream import fetch_summary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _listen(websocket: WebSocket) -> None:
    # We mostly push FROM server; the client may send "ping" heartbeats.
    while True:
        data = await websocket.receive_text()
        if data == "ping":
            await websocket.send_text("pong")


async def _push(websocket: WebSocket, updates: asyncio.Queue, code: str, keepalive_seconds: float) -> None:
    store = websocket.app.state.store
    while True:
        try:
            await asyncio.wait_for(updates.get(), timeout=keepalive_seconds)
        except asyncio.TimeoutError:
            await websocket.send_text(json.dumps({"type": "keepalive"}))
            continue
        summary = await fetch_summary(store, code)
        await websocket.send_text(json.dumps({"type": "summary", "summary": summary}))


@router.websocket("/ws/{code}")
async def websocket_endpoint(websocket: WebSocket, code: str):
    code = code.upper()
    store = websocket.app.state.store
    broker = websocket.app.state.broker
    keepalive_seconds = websocket.app.state.settings.keepalive_seconds

    try:
        summary = await fetch_summary(store, code)
    except RoomNotFound:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    async with broker.subscribe(code) as updates:
        tasks = set()
        try:
            await websocket.send_text(json.dumps({"type": "connected"}))
            await websocket.send_text(json.dumps({"type": "summary", "summary": summary}))

            tasks = {
                asyncio.create_task(_listen(websocket)),
                asyncio.create_task(_push(websocket, updates, code, keepalive_seconds)),
            }
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        except WebSocketDisconnect:
            logger.debug("WebSocket for room %s disconnected", code)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
