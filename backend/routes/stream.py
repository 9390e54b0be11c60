import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from config import Settings
from connection_manager import UpdateBroker
from database import Store
from deps import get_app_settings, get_broker, load_room
import voting

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["stream"])

KEEPALIVE_FRAME = ": keepalive\n\n"


def sse_frame(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def fetch_summary(store: Store, code: str) -> dict:
    """Load a fresh summary in its own session; streams outlive any request session."""
    async with store.session() as db:
        room = await load_room(db, code)
        summary = await voting.summarize_room(db, room)
    return summary.model_dump(mode="json", by_alias=True)


async def summary_events(
    store: Store,
    broker: UpdateBroker,
    code: str,
    keepalive_seconds: float,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncIterator[str]:
    """Yield SSE frames for one dashboard until the client goes away."""
    async with broker.subscribe(code) as updates:
        yield sse_frame({"type": "connected"})
        yield sse_frame({"type": "summary", "summary": await fetch_summary(store, code)})

        while not await is_disconnected():
            try:
                await asyncio.wait_for(updates.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            yield sse_frame({"type": "summary", "summary": await fetch_summary(store, code)})


@router.get("/{code}/stream")
async def stream_room(
    code: str,
    request: Request,
    broker: UpdateBroker = Depends(get_broker),
    settings: Settings = Depends(get_app_settings),
):
    store: Store = request.app.state.store
    code = code.upper()
    # 404 before any bytes are streamed
    async with store.session() as db:
        await load_room(db, code)

    return StreamingResponse(
        summary_events(store, broker, code, settings.keepalive_seconds, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
        },
    )
