"""
Room, vote, tally and merge operations.

Every function works on a session handed in by the caller and commits once,
so multi-row changes (a ballot, an edit, a merge) land in a single
transaction. Publishing the "room changed" signal is left to the route,
after the commit succeeded.
"""
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

import utils
from candidates import (
    FlatCandidates,
    PerRoleCandidates,
    decode_candidates,
    encode_candidates,
    match_role,
    parse_stored,
    sanitize_candidate_input,
    sanitize_roles,
    stored_form,
)
from errors import RoomClosed, RoomCodeExhausted, StaleVoteIds, VoteValidationError
from models import Room, Vote
from schemas import (
    MergeRequest,
    RoleTally,
    RoomCreate,
    RoomResponse,
    RoomSummary,
    TallyEntry,
    VoteResponse,
    VoteSubmit,
    VoteUpdate,
)

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 50


# --- Rooms ---

def room_roles(room: Room) -> List[str]:
    if not room.roles_json:
        return [utils.DEFAULT_ROLE]
    parsed = json.loads(room.roles_json)
    return sanitize_roles(parsed if isinstance(parsed, list) else None)


def room_to_response(room: Room) -> RoomResponse:
    roles = room_roles(room)
    return RoomResponse(
        code=room.code,
        created_at=room.created_at,
        closed_at=room.closed_at,
        candidates=stored_form(room.candidates_json),
        role_candidates=decode_candidates(room.candidates_json, roles),
        roles=roles,
        allow_write_ins=room.allow_write_ins is not False,
        allow_anonymous=room.allow_anonymous is not False,
    )


async def generate_unique_code(db: AsyncSession) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = utils.generate_room_code()
        if await db.get(Room, code) is None:
            return code
    logger.error("Gave up generating a room code after %d attempts", MAX_CODE_ATTEMPTS)
    raise RoomCodeExhausted()


async def create_room(db: AsyncSession, room_in: RoomCreate) -> Room:
    roles = sanitize_roles(room_in.roles)
    raw_candidates = room_in.role_candidates if room_in.role_candidates is not None else room_in.candidates
    role_candidates = sanitize_candidate_input(raw_candidates, roles)

    new_room = Room(
        code=await generate_unique_code(db),
        created_at=utils.get_utc_now(),
        closed_at=None,
        candidates_json=encode_candidates(role_candidates, roles),
        roles_json=json.dumps(roles),
        allow_write_ins=room_in.allow_write_ins,
        allow_anonymous=room_in.allow_anonymous,
    )
    db.add(new_room)
    await db.commit()

    logger.info("Created room %s with roles %s", new_room.code, roles)
    return new_room


async def close_room(db: AsyncSession, room: Room) -> datetime:
    """Stop voting in ``room``. Closing twice keeps the first timestamp."""
    if room.closed_at is None:
        room.closed_at = utils.get_utc_now()
        await db.commit()
        logger.info("Closed room %s", room.code)
    return room.closed_at


# --- Votes ---

def _check_open(room: Room) -> None:
    if room.closed_at is not None:
        logger.warning("Rejected vote for closed room %s", room.code)
        raise RoomClosed()


def resolve_ballot(room: Room, ballot: VoteSubmit) -> Tuple[str, List[Tuple[str, str]]]:
    """Validate a ballot against the room.

    Returns the normalized voter name and ``(role, candidate)`` pairs, with
    the role in the room's spelling and the candidate as the voter typed it
    (trimmed).
    """
    roles = room_roles(room)

    raw_voter = ballot.voter_name.strip() if ballot.voter_name else ""
    if not raw_voter and room.allow_anonymous is False:
        raise VoteValidationError("Voter name is required")
    voter_name = utils.normalize_voter_name(raw_voter)

    pairs = []
    for entry in ballot.entries():
        candidate = entry.candidate_name.strip() if entry.candidate_name else ""
        if not candidate:
            continue
        if entry.role_name is None or not entry.role_name.strip():
            role = roles[0]
        else:
            role = match_role(entry.role_name, roles)
            if role is None:
                raise VoteValidationError(f"Unknown role: {entry.role_name.strip()}")
        pairs.append((role, candidate))

    if not pairs:
        raise VoteValidationError("At least one candidate is required")

    if room.allow_write_ins is False:
        role_candidates = decode_candidates(room.candidates_json, roles) or {}
        for role, candidate in pairs:
            allowed = {utils.normalize_name(name) for name in role_candidates.get(role, [])}
            if utils.normalize_name(candidate) not in allowed:
                raise VoteValidationError("Write-in candidates are not allowed for this room")

    return voter_name, pairs


def _new_votes(room: Room, voter_name: str, pairs: List[Tuple[str, str]]) -> List[Vote]:
    return [
        Vote(
            id=utils.generate_uuid(),
            room_code=room.code,
            voter_name=voter_name,
            role_name=role,
            candidate_name=candidate,
            created_at=utils.get_utc_now(),
        )
        for role, candidate in pairs
    ]


async def submit_votes(db: AsyncSession, room: Room, ballot: VoteSubmit) -> Tuple[str, List[Vote]]:
    _check_open(room)
    voter_name, pairs = resolve_ballot(room, ballot)

    votes = _new_votes(room, voter_name, pairs)
    db.add_all(votes)
    await db.commit()

    logger.info("Recorded %d vote(s) in room %s", len(votes), room.code)
    return voter_name, votes


async def update_votes(db: AsyncSession, room: Room, ballot: VoteUpdate) -> Tuple[str, List[Vote]]:
    """Replace a voter's earlier votes with a new ballot in one transaction."""
    _check_open(room)
    voter_name, pairs = resolve_ballot(room, ballot)

    vote_ids = set(ballot.vote_ids)
    if not vote_ids:
        raise StaleVoteIds("No votes to update")

    # The DELETE opens the write transaction, so its row count is the
    # existence check: a concurrent edit of the same ids deletes nothing here.
    result = await db.execute(
        delete(Vote)
        .where(Vote.id.in_(list(vote_ids)), Vote.room_code == room.code)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(vote_ids):
        await db.rollback()
        logger.warning("Stale vote ids for room %s", room.code)
        raise StaleVoteIds()

    votes = _new_votes(room, voter_name, pairs)
    db.add_all(votes)
    await db.commit()

    logger.info("Replaced %d vote(s) with %d in room %s", len(vote_ids), len(votes), room.code)
    return voter_name, votes


def vote_to_response(vote: Vote) -> VoteResponse:
    return VoteResponse(
        id=vote.id,
        voter_name=vote.voter_name,
        role_name=vote.role_name,
        candidate_name=vote.candidate_name,
        created_at=vote.created_at,
    )


# --- Tally ---

def tally_votes(roles: List[str], votes: List[Vote]) -> List[RoleTally]:
    """Group votes per role and candidate and rank them by count.

    ``votes`` must be oldest first: a candidate's display name is its
    earliest spelling, equal counts keep the order in which candidates got
    their first vote, and voter lists come out newest first. Every declared
    role is listed even with no votes; roles found only on votes follow.
    """
    grouped: Dict[str, dict] = {
        utils.normalize_name(role): {"role": role, "candidates": {}} for role in roles
    }

    for vote in votes:
        role_name = (vote.role_name or "").strip() or utils.DEFAULT_ROLE
        role_entry = grouped.setdefault(
            utils.normalize_name(role_name), {"role": role_name, "candidates": {}}
        )
        candidate = vote.candidate_name.strip()
        entry = role_entry["candidates"].setdefault(
            utils.normalize_name(candidate), {"name": candidate, "count": 0, "voters": []}
        )
        entry["count"] += 1
        entry["voters"].insert(0, vote.voter_name)

    role_tallies = []
    for role_entry in grouped.values():
        # sorted() is stable, so ties stay in first-vote order
        tally = sorted(
            (
                TallyEntry(candidate=c["name"], count=c["count"], voters=c["voters"])
                for c in role_entry["candidates"].values()
            ),
            key=lambda item: item.count,
            reverse=True,
        )
        role_tallies.append(
            RoleTally(
                role=role_entry["role"],
                tally=tally,
                winner=tally[0] if tally else None,
                total_votes=sum(item.count for item in tally),
            )
        )
    return role_tallies


async def summarize_room(db: AsyncSession, room: Room) -> RoomSummary:
    result = await db.execute(
        select(Vote)
        .where(Vote.room_code == room.code)
        .order_by(Vote.created_at, Vote.id)
    )
    votes = result.scalars().all()

    return RoomSummary(
        room=room_to_response(room),
        role_tallies=tally_votes(room_roles(room), votes),
        total_votes=len(votes),
    )


# --- Merge ---

def _normalized_sql(db: AsyncSession):
    """SQL counterpart of ``utils.normalize_name`` for the session's dialect."""
    if db.bind.dialect.name == "sqlite":
        return lambda column: func.normalize_name(column)
    return lambda column: func.lower(func.trim(column))


def _merge_names(names: List[str], source_keys: set, target: str) -> List[str]:
    merged = [name for name in names if utils.normalize_name(name) not in source_keys]
    if utils.normalize_name(target) not in {utils.normalize_name(name) for name in merged}:
        merged.append(target)
    return merged


async def merge_candidates(db: AsyncSession, room: Room, merge_in: MergeRequest) -> str:
    """Rewrite recorded votes so every source spelling becomes ``target``.

    Scoped to one role when ``role_name`` is given. The room's candidate list
    drops the sources and gains the target; a flat list is rewritten as a
    whole since every role shares it.
    """
    sources = [s.strip() for s in merge_in.source_candidates if s and s.strip()]
    target = merge_in.target_candidate.strip()
    if len(sources) < 2 or not target:
        raise VoteValidationError("Need at least two source candidates and a target")

    roles = room_roles(room)
    scope: Optional[str] = None
    if merge_in.role_name and merge_in.role_name.strip():
        scope = match_role(merge_in.role_name, roles)
        if scope is None:
            raise VoteValidationError(f"Unknown role: {merge_in.role_name.strip()}")

    source_keys = {utils.normalize_name(s) for s in sources}
    scope_key = utils.normalize_name(scope) if scope else None

    normalized = _normalized_sql(db)
    stmt = (
        update(Vote)
        .where(
            Vote.room_code == room.code,
            normalized(Vote.candidate_name).in_(sorted(source_keys)),
        )
        .values(candidate_name=target)
        .execution_options(synchronize_session=False)
    )
    if scope_key:
        stmt = stmt.where(
            normalized(func.coalesce(Vote.role_name, utils.DEFAULT_ROLE)) == scope_key
        )
    # The UPDATE opens the write transaction; the candidate list is re-read
    # under it so a concurrent merge's list is not overwritten.
    result = await db.execute(stmt)
    rewritten = result.rowcount
    await db.refresh(room)

    stored = parse_stored(room.candidates_json)
    if isinstance(stored, FlatCandidates):
        room.candidates_json = json.dumps(_merge_names(stored.names, source_keys, target))
    elif isinstance(stored, PerRoleCandidates):
        by_role = {
            role: (
                _merge_names(names, source_keys, target)
                if scope_key is None or utils.normalize_name(role) == scope_key
                else names
            )
            for role, names in stored.by_role.items()
        }
        room.candidates_json = encode_candidates(by_role, roles)

    await db.commit()

    logger.info(
        "Merged %s into %r in room %s (%d votes rewritten)",
        sources, target, room.code, rewritten,
    )
    return target
