"""
Acting-user resolution for the HTTP shell.

Authentication is handled upstream; requests carry the already-authenticated
user id in the ``X-User-Id`` header and this dependency only checks that the
user is registered.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlmodel import Session

from slotswap.database import get_session
from slotswap.models.user import User
from slotswap.services.users import get_user


def get_current_user(
    x_user_id: Optional[int] = Header(default=None),
    session: Session = Depends(get_session),
) -> User:
    """
    Raises:
        HTTPException 401: header missing or names an unknown user
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="UNAUTHENTICATED: X-User-Id header is required")

    user = get_user(session, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail=f"UNAUTHENTICATED: Unknown user {x_user_id}")
    return user
