from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel

from slotswap.models.types import UTCDateTime, utcnow


class ProposalState(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


def pair_key(slot_a_id: int, slot_b_id: int) -> str:
    """Direction-independent key for a pair of slots."""
    low, high = sorted((slot_a_id, slot_b_id))
    return f"{low}:{high}"


class SwapProposal(SQLModel, table=True):
    __tablename__ = "swap_proposals"
    __table_args__ = (
        # NULL once resolved, so only PENDING rows compete for the pair
        SAUniqueConstraint("pending_pair_key", name="uq_swap_proposals_pending_pair"),
        CheckConstraint("proposer_slot_id <> counterparty_slot_id", name="ck_swap_proposals_distinct_slots"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    proposer_id: int = Field(foreign_key="users.id", index=True)
    proposer_slot_id: int = Field(foreign_key="slots.id", index=True)
    counterparty_id: int = Field(foreign_key="users.id", index=True)
    counterparty_slot_id: int = Field(foreign_key="slots.id", index=True)
    state: ProposalState = Field(
        default=ProposalState.PENDING, sa_column=Column(String(16), nullable=False, index=True)
    )
    pending_pair_key: Optional[str] = Field(default=None, max_length=41)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))

    def slot_ids(self) -> tuple:
        return (self.proposer_slot_id, self.counterparty_slot_id)
