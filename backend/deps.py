import json
import logging

from fastapi import Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from connection_manager import UpdateBroker
from database import get_db
from errors import RoomNotFound
from models import Room

logger = logging.getLogger(__name__)


def get_broker(request: Request) -> UpdateBroker:
    return request.app.state.broker


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def read_json_body(request: Request) -> dict:
    """Parse the request body as JSON; anything unparseable counts as ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        logger.debug("Ignoring malformed JSON body on %s", request.url.path)
        return {}
    return body if isinstance(body, dict) else {}


async def load_room(db: AsyncSession, code: str) -> Room:
    room = await db.get(Room, code.upper())
    if room is None:
        raise RoomNotFound()
    return room


async def get_room_by_code(
    code: str = Path(...),
    db: AsyncSession = Depends(get_db),
) -> Room:
    """Dependency to fetch a room by code; 404 if it does not exist."""
    return await load_room(db, code)
