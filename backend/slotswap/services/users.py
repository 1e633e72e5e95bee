"""
User directory: the registered identities that own slots and take part in swaps.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from slotswap.models.user import User
from slotswap.services.errors import ConflictError, InvalidOperationError
from slotswap.services.unit_of_work import run_unit_of_work


def register_user(session: Session, name: str, email: str) -> User:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise InvalidOperationError("Name is required")
    if not email:
        raise InvalidOperationError("Email is required")

    def work() -> User:
        if session.exec(select(User).where(User.email == email)).first() is not None:
            raise ConflictError("User with this email already exists")
        user = User(name=name, email=email)
        session.add(user)
        try:
            session.flush()
        except IntegrityError as e:
            raise ConflictError("User with this email already exists") from e
        return user

    return run_unit_of_work(session, "register_user", work)


def get_user(session: Session, user_id: int) -> Optional[User]:
    return session.get(User, user_id)
