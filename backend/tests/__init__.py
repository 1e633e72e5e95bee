# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from slotswap.models.slot import Slot  # noqa: F401
from slotswap.models.swap_proposal import SwapProposal  # noqa: F401
from slotswap.models.user import User  # noqa: F401
