"""
Audit trail endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system
from ..system import BudgetLedgerSystem


router = APIRouter()


@router.get("/integrity")
async def verify_integrity(system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Verify the hash chain of the audit trail"""
    return system.audit_trail.verify_integrity()


@router.get("/{entity_type}/{entity_id}")
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    limit: Optional[int] = None,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    events = system.audit_trail.get_events_for_entity(entity_type, entity_id, limit)
    return {"events": [event.to_dict() for event in events], "count": len(events)}
