"""
User registration and lookup.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from slotswap.database import get_session
from slotswap.models.user import User
from slotswap.services.errors import SwapError
from slotswap.services.users import register_user
from slotswap.utils.error_mapping import to_http_exception
from slotswap.utils.identity import get_current_user

router = APIRouter()


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: datetime


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: UserCreateRequest, session: Session = Depends(get_session)):
    """Register a user. Email must be unique (case-insensitive)."""
    try:
        return register_user(session, request.name, request.email)
    except SwapError as e:
        raise to_http_exception(e)


@router.get("/users/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user
