"""
Swap engine error taxonomy.

Every failure raised by the stores or the engine is a SwapError subclass with a
stable ``code``. Routes turn them into HTTP responses via
``slotswap.utils.error_mapping``.
"""


class SwapError(Exception):
    """Base exception for slot/proposal operations"""

    code = "SWAP_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SwapError):
    """Referenced user, slot or proposal does not exist"""

    code = "NOT_FOUND"


class ForbiddenError(SwapError):
    """Actor is not the owner/responder the operation requires"""

    code = "FORBIDDEN"


class InvalidStateError(SwapError):
    """Entity is not in the state the transition requires (locked, already responded, ...)"""

    code = "INVALID_STATE"


class ConflictError(SwapError):
    """A pending proposal already exists for the slot pair, or a unique value is taken"""

    code = "CONFLICT"


class InvalidOperationError(SwapError):
    """Structurally nonsensical request, e.g. swapping a slot with yourself"""

    code = "INVALID_OPERATION"


class TransientStorageError(SwapError):
    """Unit of work aborted by contention or connectivity; nothing was committed, safe to retry"""

    code = "TRANSIENT_STORAGE_FAILURE"


class StaleRecordError(Exception):
    """A version-guarded write matched no row: someone else changed it first.

    Internal to the stores and the engine; the engine re-runs the unit of work.
    """

    def __init__(self, table: str, record_id: int, expected_version: int):
        super().__init__(f"{table} {record_id} changed since version {expected_version} was read")
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
