from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, String
from sqlmodel import Column, Field, SQLModel

from slotswap.models.types import UTCDateTime, utcnow


class SlotState(str, Enum):
    OCCUPIED = "BUSY"
    OFFERED = "SWAPPABLE"
    LOCKED = "SWAP_PENDING"


# States an owner may set directly; LOCKED is reached only through a proposal.
OWNER_SETTABLE_STATES = frozenset({SlotState.OCCUPIED, SlotState.OFFERED})


class Slot(SQLModel, table=True):
    __tablename__ = "slots"
    __table_args__ = (CheckConstraint("end_time > start_time", name="ck_slots_valid_time_range"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    title: str = Field(max_length=255)
    start_time: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    end_time: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    state: SlotState = Field(
        default=SlotState.OCCUPIED, sa_column=Column(String(16), nullable=False, index=True)
    )
    # Bumped on every write; guarded UPDATEs compare against the version that was read.
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
