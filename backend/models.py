from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text

from database import Base
import utils


class Room(Base):
    __tablename__ = "rooms"

    code = Column(String(6), primary_key=True)
    created_at = Column(DateTime, nullable=False, default=utils.get_utc_now)
    closed_at = Column(DateTime, nullable=True)
    # Either a JSON array shared by every role or a JSON object keyed by role.
    candidates_json = Column(Text, nullable=True)
    roles_json = Column(Text, nullable=True)
    allow_write_ins = Column(Boolean, nullable=False, default=True)
    allow_anonymous = Column(Boolean, nullable=False, default=True)


class Vote(Base):
    __tablename__ = "votes"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    room_code = Column(String(6), ForeignKey("rooms.code"), nullable=False, index=True)
    voter_name = Column(String, nullable=False)
    role_name = Column(String, nullable=False, default=utils.DEFAULT_ROLE)
    candidate_name = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utils.get_utc_now)
