from slotswap.models.slot import OWNER_SETTABLE_STATES, Slot, SlotState
from slotswap.models.swap_proposal import ProposalState, SwapProposal, pair_key
from slotswap.models.user import User

__all__ = [
    "User",
    "Slot",
    "SlotState",
    "OWNER_SETTABLE_STATES",
    "SwapProposal",
    "ProposalState",
    "pair_key",
]
