# mlm_engine/errors.py
"""
Engine exception hierarchy.

Every error is raised before any state is mutated for the unit of work it
belongs to. Batch operations (ROI run, level walk, matching walk, purchase
handlers) catch these per unit and report them in their result dicts.
"""


class EngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(EngineError):
    code = "validation_error"


class DuplicateNodeError(ValidationError):
    code = "duplicate_node"


class NotFoundError(EngineError):
    code = "not_found"


class ParentNotFoundError(NotFoundError):
    code = "parent_not_found"


class CapacityError(EngineError):
    code = "capacity_error"


class PositionOccupiedError(CapacityError):
    code = "position_occupied"


class DailyMatchLimitError(CapacityError):
    code = "daily_match_limit"


class InsufficientFundsError(EngineError):
    code = "insufficient_funds"


class ReconciliationError(EngineError):
    """Ledger and balances diverged. Operational monitoring only."""

    code = "reconciliation_error"
