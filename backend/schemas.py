from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_serializer
from pydantic.alias_generators import to_camel

from errors import VoteValidationError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---

class RoomCreate(CamelModel):
    roles: Optional[List[str]] = None
    candidates: Optional[Union[List[str], Dict[str, List[str]]]] = None
    role_candidates: Optional[Dict[str, List[str]]] = None
    allow_write_ins: bool = True
    allow_anonymous: bool = True


class VoteEntry(BaseModel):
    role_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("roleName", "role", "role_name")
    )
    candidate_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("candidateName", "candidate", "candidate_name")
    )


class VoteSubmit(CamelModel):
    voter_name: Optional[str] = None
    votes: Optional[List[VoteEntry]] = None
    # Single-vote body used by clients that predate roles
    role_name: Optional[str] = None
    candidate_name: Optional[str] = None

    @property
    def is_legacy(self) -> bool:
        return self.votes is None

    def entries(self) -> List[VoteEntry]:
        if self.votes is not None:
            return list(self.votes)
        return [VoteEntry(role_name=self.role_name, candidate_name=self.candidate_name)]


class VoteUpdate(VoteSubmit):
    vote_ids: List[str] = Field(default_factory=list)


class MergeRequest(CamelModel):
    source_candidates: List[str] = Field(default_factory=list)
    target_candidate: str = ""
    role_name: Optional[str] = None


def parse_body(model, body):
    """Validate a leniently-parsed JSON body, mapping pydantic errors to a 400."""
    if not isinstance(body, dict):
        body = {}
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise VoteValidationError(f"Invalid fields: {fields}") from exc


# --- Responses ---

class TimestampModel(CamelModel):
    @field_serializer("created_at", "closed_at", check_fields=False)
    def serialize_dt(self, dt: Optional[datetime], _info):
        if dt is None:
            return None
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt.isoformat() + "Z"


class RoomResponse(TimestampModel):
    code: str
    created_at: datetime
    closed_at: Optional[datetime] = None
    candidates: Optional[Union[List[str], Dict[str, List[str]]]] = None
    role_candidates: Optional[Dict[str, List[str]]] = None
    roles: List[str]
    allow_write_ins: bool
    allow_anonymous: bool


class RoomCreatedResponse(RoomResponse):
    join_url: str
    qr_code: str


class CloseResponse(TimestampModel):
    closed_at: datetime


class VoteResponse(TimestampModel):
    id: str
    voter_name: str
    role_name: str
    candidate_name: str
    created_at: datetime


class BallotResponse(CamelModel):
    voter_name: str
    votes: List[VoteResponse]


class MergeResponse(CamelModel):
    merged_into: str


class TallyEntry(CamelModel):
    candidate: str
    count: int
    voters: List[str]


class RoleTally(CamelModel):
    role: str
    tally: List[TallyEntry]
    winner: Optional[TallyEntry] = None
    total_votes: int


class RoomSummary(CamelModel):
    room: RoomResponse
    role_tallies: List[RoleTally]
    total_votes: int
