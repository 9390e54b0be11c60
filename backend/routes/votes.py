from typing import Union

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from connection_manager import UpdateBroker
from database import get_db
from deps import get_broker, get_room_by_code, read_json_body
from models import Room
from schemas import BallotResponse, VoteResponse, VoteSubmit, VoteUpdate, parse_body
import voting

router = APIRouter(prefix="/api/rooms/{code}/votes", tags=["votes"])


@router.post("", response_model=Union[BallotResponse, VoteResponse])
async def submit_votes(
    room: Room = Depends(get_room_by_code),
    body: dict = Depends(read_json_body),
    db: AsyncSession = Depends(get_db),
    broker: UpdateBroker = Depends(get_broker),
):
    ballot = parse_body(VoteSubmit, body)
    voter_name, votes = await voting.submit_votes(db, room, ballot)
    broker.publish(room.code)

    if ballot.is_legacy:
        return voting.vote_to_response(votes[0])
    return BallotResponse(
        voter_name=voter_name,
        votes=[voting.vote_to_response(vote) for vote in votes],
    )


@router.put("", response_model=BallotResponse)
async def update_votes(
    room: Room = Depends(get_room_by_code),
    body: dict = Depends(read_json_body),
    db: AsyncSession = Depends(get_db),
    broker: UpdateBroker = Depends(get_broker),
):
    ballot = parse_body(VoteUpdate, body)
    voter_name, votes = await voting.update_votes(db, room, ballot)
    broker.publish(room.code)

    return BallotResponse(
        voter_name=voter_name,
        votes=[voting.vote_to_response(vote) for vote in votes],
    )
