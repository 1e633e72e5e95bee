"""
Swap request endpoints: propose, respond, and list.
"""

import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlmodel import Session

from slotswap.database import get_session
from slotswap.models.swap_proposal import ProposalState
from slotswap.models.user import User
from slotswap.services import directory, swap_engine
from slotswap.services.errors import SwapError
from slotswap.utils.error_mapping import to_http_exception
from slotswap.utils.identity import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / response models ───────────────────────────────────────────


class SwapRequestCreate(BaseModel):
    my_slot_id: int = Field(gt=0)
    their_slot_id: int = Field(gt=0)

    @model_validator(mode="after")
    def distinct_slots(self):
        if self.my_slot_id == self.their_slot_id:
            raise ValueError("Cannot swap a slot with itself")
        return self


class SwapResponseRequest(BaseModel):
    accept: bool


class SwapProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    proposer_id: int
    proposer_slot_id: int
    counterparty_id: int
    counterparty_slot_id: int
    state: ProposalState
    created_at: datetime
    updated_at: datetime


class SlotSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    start_time: datetime
    end_time: datetime


class PartyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ProposalViewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    state: ProposalState
    created_at: datetime
    my_slot: SlotSummaryResponse
    their_slot: SlotSummaryResponse
    other_party: PartyResponse


class ProposalInboxResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    incoming: List[ProposalViewResponse]
    outgoing: List[ProposalViewResponse]


# ── Endpoints ───────────────────────────────────────────────────────────


@router.post("/swap-request", response_model=SwapProposalResponse, status_code=201)
def create_swap_request(
    request: SwapRequestCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Offer one of my SWAPPABLE slots for another user's SWAPPABLE slot. Both become SWAP_PENDING."""
    try:
        return swap_engine.propose_swap(session, current_user.id, request.my_slot_id, request.their_slot_id)
    except SwapError as e:
        logger.info("Swap request by user %s refused: %s", current_user.id, e.code)
        raise to_http_exception(e)


@router.post("/swap-response/{proposal_id}", response_model=SwapProposalResponse)
def respond_to_swap_request(
    proposal_id: int,
    request: SwapResponseRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """
    Accept or reject an incoming swap request.

    accept=true exchanges the two slots' owners and marks both BUSY;
    accept=false returns both slots to SWAPPABLE.
    """
    try:
        return swap_engine.respond_to_swap(session, current_user.id, proposal_id, request.accept)
    except SwapError as e:
        logger.info("Response to swap request %s by user %s refused: %s", proposal_id, current_user.id, e.code)
        raise to_http_exception(e)


@router.get("/my-requests", response_model=ProposalInboxResponse)
def get_my_swap_requests(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return directory.list_user_proposals(session, current_user.id)
