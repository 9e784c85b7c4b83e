"""
Ledger Error Taxonomy

Every error raised by the ledger engine derives from BudgetLedgerError and
carries the values a caller needs to show a specific message.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class BudgetLedgerError(Exception):
    """Base class for all ledger errors"""

    code = "ledger_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for API responses"""
        return {
            "error": self.code,
            "message": self.message,
            "details": {
                k: v if v is None or isinstance(v, (str, int, float, bool)) else str(v)
                for k, v in self.details.items()
            },
        }


class ValidationError(BudgetLedgerError, ValueError):
    """Caller-correctable input error (missing field, bad amount, ceiling exceeded)"""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        if field is not None:
            details["field"] = field
        super().__init__(message, **details)
        self.field = field


class InsufficientBalanceError(ValidationError):
    """Expenditure amount exceeds the fund's remaining balance"""

    code = "insufficient_balance"

    def __init__(self, fund_code: str, available: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient fund balance in {fund_code}. "
            f"Available: {available:,.2f}, requested: {requested:,.2f}",
            field="amount",
            fund_code=fund_code,
            available=available,
            requested=requested,
        )
        self.fund_code = fund_code
        self.available = available
        self.requested = requested


class InvalidStateError(BudgetLedgerError):
    """Operation not allowed in the entity's current state"""

    code = "invalid_state"

    def __init__(self, message: str, current_state: Optional[str] = None,
                 attempted_action: Optional[str] = None, **details: Any):
        super().__init__(message, current_state=current_state,
                         attempted_action=attempted_action, **details)
        self.current_state = current_state
        self.attempted_action = attempted_action


class InvalidTransitionError(InvalidStateError):
    """Requested status change is not in the transition table"""

    code = "invalid_transition"

    def __init__(self, entity: str, current_status: str, requested_status: str):
        super().__init__(
            f"Cannot change {entity} status from '{current_status}' to '{requested_status}'",
            current_state=current_status,
            attempted_action=f"transition to {requested_status}",
            requested_status=requested_status,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class NotFoundError(BudgetLedgerError, LookupError):
    """Unknown id"""

    code = "not_found"

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type.replace('_', ' ').capitalize()} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConflictError(BudgetLedgerError):
    """Unique-value collision that survived every retry"""

    code = "conflict"

    def __init__(self, message: str, table: str, field: str, value: Any, attempts: int = 1):
        super().__init__(message, table=table, field=field, value=value, attempts=attempts)
        self.table = table
        self.field = field
        self.value = value
        self.attempts = attempts
