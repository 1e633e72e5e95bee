"""
Slot (calendar event) endpoints for the acting user.

Request bodies are validated here; ownership and lock rules are enforced by
the swap engine.
"""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlmodel import Session

from slotswap.database import get_session
from slotswap.models.slot import OWNER_SETTABLE_STATES, SlotState
from slotswap.models.user import User
from slotswap.services import directory, swap_engine
from slotswap.services.errors import SwapError
from slotswap.utils.error_mapping import to_http_exception
from slotswap.utils.identity import get_current_user

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class SlotCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @model_validator(mode="after")
    def end_after_start(self):
        if (self.start_time.tzinfo is None) != (self.end_time.tzinfo is None):
            raise ValueError("start_time and end_time must both carry a timezone or neither")
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class SlotStatusUpdate(BaseModel):
    status: SlotState

    @field_validator("status")
    @classmethod
    def owner_settable(cls, v: SlotState) -> SlotState:
        if v not in OWNER_SETTABLE_STATES:
            raise ValueError("Status must be BUSY or SWAPPABLE")
        return v


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    title: str
    start_time: datetime
    end_time: datetime
    state: SlotState
    created_at: datetime


class MarketplaceSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    start_time: datetime
    end_time: datetime
    owner_id: int
    owner_name: str


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/events", response_model=List[SlotResponse])
def get_my_events(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Slots owned by the acting user, earliest first."""
    return directory.list_user_slots(session, current_user.id)


@router.post("/events", response_model=SlotResponse, status_code=201)
def create_event(
    request: SlotCreateRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    try:
        return swap_engine.create_slot(session, current_user.id, request.title, request.start_time, request.end_time)
    except SwapError as e:
        raise to_http_exception(e)


@router.patch("/events/{slot_id}/status", response_model=SlotResponse)
def update_event_status(
    slot_id: int,
    request: SlotStatusUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Toggle BUSY <-> SWAPPABLE. Rejected with 409 while the slot is part of a pending swap."""
    try:
        return swap_engine.set_slot_state(session, current_user.id, slot_id, request.status)
    except SwapError as e:
        raise to_http_exception(e)


@router.delete("/events/{slot_id}", status_code=204)
def delete_event(
    slot_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    try:
        swap_engine.delete_slot(session, current_user.id, slot_id)
    except SwapError as e:
        raise to_http_exception(e)
    return None


@router.get("/swappable-slots", response_model=List[MarketplaceSlotResponse])
def get_swappable_slots(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Marketplace: SWAPPABLE slots of other users, earliest first."""
    return directory.list_marketplace(session, current_user.id)
