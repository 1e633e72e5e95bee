"""
Slot Store: persistence operations for calendar slots.

Writes are version-guarded: every UPDATE/DELETE names the version the caller
read, and a zero-row result raises StaleRecordError. Cross-slot rules (the
Locked-iff-pending invariant, ownership checks) belong to the swap engine,
not here.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session, select

from slotswap.models.slot import Slot, SlotState
from slotswap.models.types import utcnow
from slotswap.models.user import User
from slotswap.services.errors import InvalidOperationError, NotFoundError, StaleRecordError


def _as_utc(value: datetime) -> datetime:
    """Naive input is taken to be UTC; aware input is converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_slot(session: Session, owner_id: int, title: str, start_time: datetime, end_time: datetime) -> Slot:
    """
    Insert a new slot in OCCUPIED state.

    Raises:
        InvalidOperationError: empty title or end_time not after start_time
        NotFoundError: owner does not exist
    """
    title = (title or "").strip()
    if not title:
        raise InvalidOperationError("Title is required")

    start = _as_utc(start_time)
    end = _as_utc(end_time)
    if end <= start:
        raise InvalidOperationError("End time must be after start time")

    if session.get(User, owner_id) is None:
        raise NotFoundError(f"User {owner_id} not found")

    slot = Slot(
        owner_id=owner_id,
        title=title,
        start_time=start,
        end_time=end,
        state=SlotState.OCCUPIED,
    )
    session.add(slot)
    session.flush()
    return slot


def get_slot(session: Session, slot_id: int) -> Optional[Slot]:
    return session.get(Slot, slot_id)


def list_by_owner(session: Session, owner_id: int) -> List[Slot]:
    return list(
        session.exec(
            select(Slot).where(Slot.owner_id == owner_id).order_by(Slot.start_time, Slot.id)
        ).all()
    )


def list_offered(session: Session, excluding_owner_id: int) -> List[Slot]:
    """OFFERED slots not owned by the given user, earliest first."""
    return list(
        session.exec(
            select(Slot)
            .where(Slot.state == SlotState.OFFERED.value, Slot.owner_id != excluding_owner_id)
            .order_by(Slot.start_time, Slot.id)
        ).all()
    )


def lock_slots(session: Session, slot_ids: Iterable[int]) -> Dict[int, Slot]:
    """
    Load slots under exclusive row holds, one row at a time in ascending id order.

    The fixed order keeps two units of work contending for the same pair from
    deadlocking. Rows are re-read from the database even if already in the
    identity map. Missing ids are simply absent from the result.
    """
    locked: Dict[int, Slot] = {}
    for slot_id in sorted(set(slot_ids)):
        slot = session.exec(
            select(Slot)
            .where(Slot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if slot is not None:
            locked[slot_id] = slot
    return locked


def _guarded_update(session: Session, slot: Slot, **values) -> Slot:
    expected_version = slot.version
    values["version"] = expected_version + 1
    values["updated_at"] = utcnow()
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot.id, Slot.version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleRecordError("slot", slot.id, expected_version)
    session.refresh(slot)
    return slot


def set_state(session: Session, slot: Slot, new_state: SlotState) -> Slot:
    try:
        state = SlotState(new_state)
    except ValueError:
        raise InvalidOperationError(f"Unknown slot state '{new_state}'")
    return _guarded_update(session, slot, state=state.value)


def reassign_owner(session: Session, slot: Slot, new_owner_id: int, state: Optional[SlotState] = None) -> Slot:
    """Move ownership, optionally landing the state change in the same guarded write."""
    values = {"owner_id": new_owner_id}
    if state is not None:
        values["state"] = SlotState(state).value
    return _guarded_update(session, slot, **values)


def delete_slot(session: Session, slot: Slot) -> None:
    expected_version = slot.version
    result = session.execute(
        delete(Slot)
        .where(Slot.id == slot.id, Slot.version == expected_version)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleRecordError("slot", slot.id, expected_version)
    session.expunge(slot)
