"""
Fund particular endpoints addressed by particular id
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system, get_user_id
from .schemas import ParticularUpdateRequest, particular_response
from ..system import BudgetLedgerSystem


router = APIRouter()


@router.get("/{particular_id}")
async def get_particular(particular_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return particular_response(system.allocations.get_particular(particular_id))


@router.patch("/{particular_id}")
async def update_particular(
    particular_id: str,
    request: ParticularUpdateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    particular = system.allocations.update_particular(
        particular_id, user_id=user_id, **request.model_dump(exclude_unset=True)
    )
    return particular_response(particular)


@router.delete("/{particular_id}")
async def delete_particular(
    particular_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Delete a particular; ones referenced by transactions are deactivated"""
    outcome = system.allocations.delete_particular(particular_id, user_id=user_id)
    return {"particular_id": particular_id, "outcome": outcome.value}
