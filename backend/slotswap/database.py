import os
from pathlib import Path
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotswap.db")

_is_sqlite = DATABASE_URL.startswith("sqlite")
_echo = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")
_busy_timeout = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))
_connect_args = {"check_same_thread": False, "timeout": _busy_timeout} if _is_sqlite else {}

if _is_sqlite and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite:///", "", 1)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine: Engine = create_engine(
    DATABASE_URL,
    echo=_echo,
    connect_args=_connect_args,
)


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(engine) as session:
        yield session


def init_db(bind: Engine = engine) -> None:
    """Initialize database - create all tables"""
    # Import all models to ensure they're registered with SQLModel metadata
    from slotswap.models.slot import Slot  # noqa: F401
    from slotswap.models.swap_proposal import SwapProposal  # noqa: F401
    from slotswap.models.user import User  # noqa: F401

    SQLModel.metadata.create_all(bind)
