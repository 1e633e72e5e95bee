"""
Swap Transaction Engine

Every write to slots or swap proposals goes through this module. Each public
function is one atomic unit of work (see ``unit_of_work.run_unit_of_work``):

1. Take exclusive holds: the proposal row first (accept/reject), then slot
   rows in ascending id order.
2. Re-read state under those holds and check preconditions in a fixed order,
   raising on the first failure before anything is written.
3. Apply version-guarded writes through the stores.
4. Re-derive "slot is LOCKED iff a PENDING proposal references it" for the
   touched slots, then commit.

Slot state machine:
    OCCUPIED <-> OFFERED            owner, only while not LOCKED
    OFFERED  ->  LOCKED             propose_swap, both slots
    LOCKED   ->  OFFERED            reject_swap, both slots
    LOCKED   ->  OCCUPIED + owners  accept_swap, both slots
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from slotswap.models.slot import OWNER_SETTABLE_STATES, Slot, SlotState
from slotswap.models.swap_proposal import ProposalState, SwapProposal
from slotswap.services import proposal_store, slot_store
from slotswap.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
)
from slotswap.services.unit_of_work import run_unit_of_work

logger = logging.getLogger(__name__)


# ============================================================================
# Guards
# ============================================================================


def _require_owned_slot(slot: Optional[Slot], slot_id: int, requester_id: int) -> Slot:
    if slot is None:
        raise NotFoundError(f"Slot {slot_id} not found")
    if slot.owner_id != requester_id:
        raise ForbiddenError("You do not own this slot")
    return slot


def _require_not_committed(session: Session, slot: Slot, action: str) -> None:
    """Reject direct mutation of a slot that is tied up in a swap.

    The PENDING lookup is redundant with the LOCKED state while the invariant
    holds, and is checked anyway.
    """
    if slot.state == SlotState.LOCKED:
        raise InvalidStateError(f"Cannot {action} slot {slot.id} while a swap is pending")
    pending = proposal_store.find_pending_referencing(session, slot.id)
    if pending is not None:
        raise InvalidStateError(f"Cannot {action} slot {slot.id}: swap request {pending.id} is pending")


def _require_pending_for_responder(proposal: Optional[SwapProposal], proposal_id: int, responder_id: int) -> SwapProposal:
    if proposal is None:
        raise NotFoundError(f"Swap request {proposal_id} not found")
    if proposal.counterparty_id != responder_id:
        raise ForbiddenError("You are not authorized to respond to this request")
    if proposal.state != ProposalState.PENDING:
        raise InvalidStateError("This swap request has already been responded to")
    return proposal


def _lock_proposal_slots(session: Session, proposal: SwapProposal):
    """Hold both slots of a PENDING proposal and confirm they still look the way it recorded."""
    slots = slot_store.lock_slots(session, proposal.slot_ids())
    proposer_slot = slots.get(proposal.proposer_slot_id)
    counterparty_slot = slots.get(proposal.counterparty_slot_id)
    expected = (
        (proposer_slot, proposal.proposer_slot_id, proposal.proposer_id),
        (counterparty_slot, proposal.counterparty_slot_id, proposal.counterparty_id),
    )
    for slot, slot_id, owner_id in expected:
        if slot is None or slot.state != SlotState.LOCKED or slot.owner_id != owner_id:
            logger.error("Swap request %s: slot %s drifted from its pending state", proposal.id, slot_id)
            raise InvalidStateError(f"Slot {slot_id} is no longer locked to swap request {proposal.id}")
    return proposer_slot, counterparty_slot


def _verify_lock_invariant(session: Session, slot_ids: Iterable[int]) -> None:
    """LOCKED iff referenced by a PENDING proposal, for each given slot."""
    for slot_id in slot_ids:
        slot = session.get(Slot, slot_id)
        if slot is None:
            continue
        referenced = (
            session.exec(
                select(SwapProposal.id).where(
                    SwapProposal.state == ProposalState.PENDING.value,
                    or_(SwapProposal.proposer_slot_id == slot_id, SwapProposal.counterparty_slot_id == slot_id),
                )
            ).first()
            is not None
        )
        if (slot.state == SlotState.LOCKED) != referenced:
            logger.error("Lock invariant violated for slot %s (state=%s, pending=%s)", slot_id, slot.state, referenced)
            raise InvalidStateError(f"Slot {slot_id} state is inconsistent with its swap requests")


# ============================================================================
# Slot lifecycle
# ============================================================================


def create_slot(session: Session, owner_id: int, title: str, start_time: datetime, end_time: datetime) -> Slot:
    """Create a slot owned by ``owner_id`` in OCCUPIED state."""

    def work() -> Slot:
        return slot_store.create_slot(session, owner_id, title, start_time, end_time)

    slot = run_unit_of_work(session, "create_slot", work)
    logger.info("User %s created slot %s", owner_id, slot.id)
    return slot


def set_slot_state(session: Session, requester_id: int, slot_id: int, new_state: SlotState) -> Slot:
    """
    Toggle a slot between OCCUPIED and OFFERED.

    Raises:
        InvalidOperationError: new_state is not OCCUPIED or OFFERED
        NotFoundError / ForbiddenError: slot missing or not owned by requester
        InvalidStateError: slot is LOCKED or referenced by a PENDING proposal
    """
    try:
        target = SlotState(new_state)
    except ValueError:
        raise InvalidOperationError(f"Unknown slot state '{new_state}'")
    if target not in OWNER_SETTABLE_STATES:
        raise InvalidOperationError("Status must be BUSY or SWAPPABLE")

    def work() -> Slot:
        slot = _require_owned_slot(slot_store.lock_slots(session, [slot_id]).get(slot_id), slot_id, requester_id)
        _require_not_committed(session, slot, "change status of")
        if slot.state != target:
            slot_store.set_state(session, slot, target)
        return slot

    slot = run_unit_of_work(session, "set_slot_state", work)
    logger.info("User %s set slot %s to %s", requester_id, slot_id, target.value)
    return slot


def delete_slot(session: Session, requester_id: int, slot_id: int) -> None:
    """
    Delete a slot owned by the requester.

    Resolved proposals naming the slot are removed with it; a LOCKED slot or
    one referenced by a PENDING proposal cannot be deleted.
    """

    def work() -> None:
        slot = _require_owned_slot(slot_store.lock_slots(session, [slot_id]).get(slot_id), slot_id, requester_id)
        _require_not_committed(session, slot, "delete")
        proposal_store.delete_resolved_referencing(session, slot.id)
        slot_store.delete_slot(session, slot)

    run_unit_of_work(session, "delete_slot", work)
    logger.info("User %s deleted slot %s", requester_id, slot_id)


# ============================================================================
# Swap operations
# ============================================================================


def propose_swap(session: Session, requester_id: int, my_slot_id: int, their_slot_id: int) -> SwapProposal:
    """
    Propose exchanging ``my_slot_id`` for ``their_slot_id``.

    Checks, in order:
    1. my slot exists (NotFound) and is the requester's (Forbidden)
    2. my slot is OFFERED (InvalidState)
    3. their slot exists (NotFound)
    4. their slot is not the requester's (InvalidOperation)
    5. their slot is OFFERED (InvalidState)
    6. no PENDING proposal pairs the two slots (Conflict)

    Both slots become LOCKED and the new PENDING proposal is returned.
    """

    def work() -> SwapProposal:
        slots = slot_store.lock_slots(session, [my_slot_id, their_slot_id])

        my_slot = slots.get(my_slot_id)
        if my_slot is None:
            raise NotFoundError("Your slot not found")
        if my_slot.owner_id != requester_id:
            raise ForbiddenError("You do not own this slot")
        if my_slot.state != SlotState.OFFERED:
            raise InvalidStateError("Your slot must be SWAPPABLE")

        their_slot = slots.get(their_slot_id)
        if their_slot is None:
            raise NotFoundError("Their slot not found")
        if their_slot.owner_id == requester_id:
            raise InvalidOperationError("Cannot swap with your own slot")
        if their_slot.state != SlotState.OFFERED:
            raise InvalidStateError("Their slot must be SWAPPABLE")

        if proposal_store.find_pending_between(session, my_slot_id, their_slot_id) is not None:
            raise ConflictError("A swap request already exists for these slots")

        for slot in sorted((my_slot, their_slot), key=lambda s: s.id):
            slot_store.set_state(session, slot, SlotState.LOCKED)
        proposal = proposal_store.create_proposal(session, my_slot, their_slot)

        _verify_lock_invariant(session, (my_slot_id, their_slot_id))
        return proposal

    proposal = run_unit_of_work(session, "propose_swap", work)
    logger.info(
        "Swap request %s: user %s offered slot %s for slot %s of user %s",
        proposal.id,
        proposal.proposer_id,
        proposal.proposer_slot_id,
        proposal.counterparty_slot_id,
        proposal.counterparty_id,
    )
    return proposal


def reject_swap(session: Session, responder_id: int, proposal_id: int) -> SwapProposal:
    """Counterparty declines: proposal REJECTED, both slots back to OFFERED, owners unchanged."""

    def work() -> SwapProposal:
        proposal = _require_pending_for_responder(
            proposal_store.lock_proposal(session, proposal_id), proposal_id, responder_id
        )
        proposer_slot, counterparty_slot = _lock_proposal_slots(session, proposal)

        proposal_store.resolve(session, proposal, ProposalState.REJECTED)
        for slot in sorted((proposer_slot, counterparty_slot), key=lambda s: s.id):
            slot_store.set_state(session, slot, SlotState.OFFERED)

        _verify_lock_invariant(session, proposal.slot_ids())
        return proposal

    proposal = run_unit_of_work(session, "reject_swap", work)
    logger.info("Swap request %s rejected by user %s", proposal_id, responder_id)
    return proposal


def accept_swap(session: Session, responder_id: int, proposal_id: int) -> SwapProposal:
    """
    Counterparty accepts: the proposal is ACCEPTED and, in the same commit,
    the proposer's slot goes to the counterparty, the counterparty's slot goes
    to the proposer, and both slots become OCCUPIED.
    """

    def work() -> SwapProposal:
        proposal = _require_pending_for_responder(
            proposal_store.lock_proposal(session, proposal_id), proposal_id, responder_id
        )
        proposer_slot, counterparty_slot = _lock_proposal_slots(session, proposal)

        proposal_store.resolve(session, proposal, ProposalState.ACCEPTED)
        transfers = (
            (proposer_slot, proposal.counterparty_id),
            (counterparty_slot, proposal.proposer_id),
        )
        for slot, new_owner_id in sorted(transfers, key=lambda t: t[0].id):
            slot_store.reassign_owner(session, slot, new_owner_id, state=SlotState.OCCUPIED)

        _verify_lock_invariant(session, proposal.slot_ids())
        return proposal

    proposal = run_unit_of_work(session, "accept_swap", work)
    logger.info(
        "Swap request %s accepted by user %s: slots %s and %s exchanged",
        proposal_id,
        responder_id,
        proposal.proposer_slot_id,
        proposal.counterparty_slot_id,
    )
    return proposal


def respond_to_swap(session: Session, responder_id: int, proposal_id: int, accept: bool) -> SwapProposal:
    if accept:
        return accept_swap(session, responder_id, proposal_id)
    return reject_swap(session, responder_id, proposal_id)
