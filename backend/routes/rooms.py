from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from connection_manager import UpdateBroker
from database import get_db
from deps import get_app_settings, get_broker, get_room_by_code, read_json_body
from models import Room
from schemas import (
    CloseResponse,
    MergeRequest,
    MergeResponse,
    RoomCreate,
    RoomCreatedResponse,
    RoomResponse,
    RoomSummary,
    parse_body,
)
from utils import generate_qr_code_base64
import voting

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


@router.post("", response_model=RoomCreatedResponse)
async def create_room(
    body: dict = Depends(read_json_body),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    room_in = parse_body(RoomCreate, body)
    new_room = await voting.create_room(db, room_in)

    join_url = f"{settings.join_base_url}/room/{new_room.code}"
    return RoomCreatedResponse(
        **voting.room_to_response(new_room).model_dump(),
        join_url=join_url,
        qr_code=generate_qr_code_base64(join_url),
    )


@router.get("/{code}", response_model=RoomResponse)
async def get_room(room: Room = Depends(get_room_by_code)):
    return voting.room_to_response(room)


@router.post("/{code}/close", response_model=CloseResponse)
async def close_room(
    room: Room = Depends(get_room_by_code),
    db: AsyncSession = Depends(get_db),
    broker: UpdateBroker = Depends(get_broker),
):
    closed_at = await voting.close_room(db, room)
    broker.publish(room.code)
    return CloseResponse(closed_at=closed_at)


@router.get("/{code}/summary", response_model=RoomSummary)
async def get_summary(
    room: Room = Depends(get_room_by_code),
    db: AsyncSession = Depends(get_db),
):
    return await voting.summarize_room(db, room)


@router.post("/{code}/merge", response_model=MergeResponse)
async def merge_candidates(
    room: Room = Depends(get_room_by_code),
    body: dict = Depends(read_json_body),
    db: AsyncSession = Depends(get_db),
    broker: UpdateBroker = Depends(get_broker),
):
    merge_in = parse_body(MergeRequest, body)
    merged_into = await voting.merge_candidates(db, room, merge_in)
    broker.publish(room.code)
    return MergeResponse(merged_into=merged_into)
