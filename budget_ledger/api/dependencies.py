"""
Shared API dependencies
"""

from typing import Optional

from fastapi import Header

from ..system import BudgetLedgerSystem


# Global ledger system instance, created on first request
_ledger_system: Optional[BudgetLedgerSystem] = None


def get_ledger_system() -> BudgetLedgerSystem:
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = BudgetLedgerSystem()
    return _ledger_system


def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Optional[str]:
    """Acting user, taken from the X-User-Id header when present"""
    return x_user_id
