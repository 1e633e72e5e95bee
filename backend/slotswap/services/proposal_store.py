"""
Swap Proposal Store: persistence operations for swap proposals.

A PENDING proposal carries ``pending_pair_key``; the unique constraint on that
column rejects a second PENDING proposal for the same unordered slot pair even
if two writers get past the engine's own check at the same time.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from slotswap.models.slot import Slot
from slotswap.models.swap_proposal import ProposalState, SwapProposal, pair_key
from slotswap.services.errors import ConflictError, InvalidOperationError, StaleRecordError

TERMINAL_STATES = frozenset({ProposalState.ACCEPTED, ProposalState.REJECTED})


def create_proposal(session: Session, proposer_slot: Slot, counterparty_slot: Slot) -> SwapProposal:
    """
    Insert a PENDING proposal pairing the two slots with their current owners.

    Raises:
        ConflictError: another PENDING proposal already holds this slot pair
    """
    proposal = SwapProposal(
        proposer_id=proposer_slot.owner_id,
        proposer_slot_id=proposer_slot.id,
        counterparty_id=counterparty_slot.owner_id,
        counterparty_slot_id=counterparty_slot.id,
        state=ProposalState.PENDING,
        pending_pair_key=pair_key(proposer_slot.id, counterparty_slot.id),
    )
    session.add(proposal)
    try:
        session.flush()
    except IntegrityError as e:
        if "pending_pair" in str(e.orig):
            raise ConflictError("A swap request already exists for these slots") from e
        raise
    return proposal


def get_proposal(session: Session, proposal_id: int) -> Optional[SwapProposal]:
    return session.get(SwapProposal, proposal_id)


def lock_proposal(session: Session, proposal_id: int) -> Optional[SwapProposal]:
    """Load a proposal under an exclusive row hold, bypassing the identity map."""
    return session.exec(
        select(SwapProposal)
        .where(SwapProposal.id == proposal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()


def find_pending_between(session: Session, slot_a_id: int, slot_b_id: int) -> Optional[SwapProposal]:
    """PENDING proposal pairing the two slots, in either direction."""
    return session.exec(
        select(SwapProposal).where(
            SwapProposal.state == ProposalState.PENDING.value,
            or_(
                and_(SwapProposal.proposer_slot_id == slot_a_id, SwapProposal.counterparty_slot_id == slot_b_id),
                and_(SwapProposal.proposer_slot_id == slot_b_id, SwapProposal.counterparty_slot_id == slot_a_id),
            ),
        )
    ).first()


def find_pending_referencing(session: Session, slot_id: int) -> Optional[SwapProposal]:
    return session.exec(
        select(SwapProposal).where(
            SwapProposal.state == ProposalState.PENDING.value,
            or_(SwapProposal.proposer_slot_id == slot_id, SwapProposal.counterparty_slot_id == slot_id),
        )
    ).first()


def list_by_receiver(session: Session, user_id: int) -> List[SwapProposal]:
    return list(
        session.exec(
            select(SwapProposal)
            .where(SwapProposal.counterparty_id == user_id)
            .order_by(SwapProposal.created_at.desc(), SwapProposal.id.desc())
        ).all()
    )


def list_by_proposer(session: Session, user_id: int) -> List[SwapProposal]:
    return list(
        session.exec(
            select(SwapProposal)
            .where(SwapProposal.proposer_id == user_id)
            .order_by(SwapProposal.created_at.desc(), SwapProposal.id.desc())
        ).all()
    )


def resolve(session: Session, proposal: SwapProposal, outcome: ProposalState) -> SwapProposal:
    """
    Move a PENDING proposal to ACCEPTED or REJECTED and release its pair key.

    The UPDATE only matches a row that is still PENDING at the version read,
    so a proposal can never be resolved twice.
    """
    outcome = ProposalState(outcome)
    if outcome not in TERMINAL_STATES:
        raise InvalidOperationError(f"Cannot resolve a proposal to '{outcome.value}'")

    expected_version = proposal.version
    result = session.execute(
        update(SwapProposal)
        .where(
            SwapProposal.id == proposal.id,
            SwapProposal.version == expected_version,
            SwapProposal.state == ProposalState.PENDING.value,
        )
        .values(
            state=outcome.value,
            pending_pair_key=None,
            version=expected_version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleRecordError("swap_proposal", proposal.id, expected_version)
    session.refresh(proposal)
    return proposal


def delete_resolved_referencing(session: Session, slot_id: int) -> int:
    """Remove ACCEPTED/REJECTED proposals naming a slot that is about to be deleted."""
    result = session.execute(
        delete(SwapProposal)
        .where(
            SwapProposal.state != ProposalState.PENDING.value,
            or_(SwapProposal.proposer_slot_id == slot_id, SwapProposal.counterparty_slot_id == slot_id),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
