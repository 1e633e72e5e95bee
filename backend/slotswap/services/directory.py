"""
Directory / Query Service

Read-only projections over slots and swap proposals. Each projection is built
from a single SELECT so it reflects one consistent snapshot of the rows,
never a half-applied swap.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from slotswap.models.slot import Slot, SlotState
from slotswap.models.swap_proposal import SwapProposal
from slotswap.models.user import User
from slotswap.services import slot_store


@dataclass
class SlotSummary:
    id: int
    title: str
    start_time: datetime
    end_time: datetime


@dataclass
class MarketplaceSlot:
    id: int
    title: str
    start_time: datetime
    end_time: datetime
    owner_id: int
    owner_name: str


@dataclass
class Party:
    id: int
    name: str


@dataclass
class ProposalView:
    """A proposal as seen by one of its parties: "my" and "their" are relative to the viewer."""

    id: int
    state: str
    created_at: datetime
    my_slot: SlotSummary
    their_slot: SlotSummary
    other_party: Party


@dataclass
class ProposalInbox:
    incoming: List[ProposalView] = field(default_factory=list)
    outgoing: List[ProposalView] = field(default_factory=list)


def _summary(slot: Slot) -> SlotSummary:
    return SlotSummary(id=slot.id, title=slot.title, start_time=slot.start_time, end_time=slot.end_time)


def list_user_slots(session: Session, user_id: int) -> List[Slot]:
    """All slots the user currently owns, earliest first."""
    return slot_store.list_by_owner(session, user_id)


def list_marketplace(session: Session, user_id: int) -> List[MarketplaceSlot]:
    """OFFERED slots owned by anyone but ``user_id``, earliest first, with owner names."""
    rows = session.exec(
        select(Slot, User)
        .join(User, User.id == Slot.owner_id)
        .where(Slot.state == SlotState.OFFERED.value, Slot.owner_id != user_id)
        .order_by(Slot.start_time, Slot.id)
    ).all()
    return [
        MarketplaceSlot(
            id=slot.id,
            title=slot.title,
            start_time=slot.start_time,
            end_time=slot.end_time,
            owner_id=owner.id,
            owner_name=owner.name,
        )
        for slot, owner in rows
    ]


def list_user_proposals(session: Session, user_id: int) -> ProposalInbox:
    """
    Proposals the user takes part in, newest first.

    incoming: the user is the counterparty; my_slot is the counterparty slot
    and other_party is the proposer. outgoing: the reverse.
    """
    proposer_slot = aliased(Slot)
    counterparty_slot = aliased(Slot)
    proposer = aliased(User)
    counterparty = aliased(User)

    rows = session.exec(
        select(SwapProposal, proposer_slot, counterparty_slot, proposer, counterparty)
        .join(proposer_slot, proposer_slot.id == SwapProposal.proposer_slot_id)
        .join(counterparty_slot, counterparty_slot.id == SwapProposal.counterparty_slot_id)
        .join(proposer, proposer.id == SwapProposal.proposer_id)
        .join(counterparty, counterparty.id == SwapProposal.counterparty_id)
        .where(or_(SwapProposal.proposer_id == user_id, SwapProposal.counterparty_id == user_id))
        .order_by(SwapProposal.created_at.desc(), SwapProposal.id.desc())
    ).all()

    inbox = ProposalInbox()
    for proposal, p_slot, c_slot, p_user, c_user in rows:
        if proposal.counterparty_id == user_id:
            inbox.incoming.append(
                ProposalView(
                    id=proposal.id,
                    state=proposal.state,
                    created_at=proposal.created_at,
                    my_slot=_summary(c_slot),
                    their_slot=_summary(p_slot),
                    other_party=Party(id=p_user.id, name=p_user.name),
                )
            )
        if proposal.proposer_id == user_id:
            inbox.outgoing.append(
                ProposalView(
                    id=proposal.id,
                    state=proposal.state,
                    created_at=proposal.created_at,
                    my_slot=_summary(p_slot),
                    their_slot=_summary(c_slot),
                    other_party=Party(id=c_user.id, name=c_user.name),
                )
            )
    return inbox
