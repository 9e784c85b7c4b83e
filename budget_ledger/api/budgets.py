"""
Fiscal-year budget endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system, get_user_id
from .schemas import BudgetCreateRequest, BudgetUpdateRequest, budget_response
from ..budgets import required_allocations
from ..errors import NotFoundError
from ..system import BudgetLedgerSystem


router = APIRouter()


@router.post("", status_code=201)
async def create_budget(
    request: BudgetCreateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Create the budget for a fiscal year"""
    budget = system.budgets.create_budget(
        fiscal_year=request.fiscal_year,
        total_ira=request.total_ira,
        estimated_local_income=request.estimated_local_income,
        other_income=request.other_income,
        description=request.description,
        user_id=user_id
    )
    return budget_response(budget)


@router.get("")
async def list_budgets(system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """List budgets, latest fiscal year first"""
    budgets = system.budgets.list_budgets()
    return {"budgets": [budget_response(b) for b in budgets], "count": len(budgets)}


@router.get("/required-allocations")
async def preview_required_allocations(total_ira: str):
    """Mandated minimum allocations for a given IRA"""
    return {
        "total_ira": total_ira,
        "required": {category.value: str(amount) for category, amount in required_allocations(total_ira).items()}
    }


@router.get("/year/{fiscal_year}")
async def get_budget_for_year(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    budget = system.budgets.get_budget_for_year(fiscal_year)
    if budget is None:
        raise NotFoundError("fiscal_year_budget", str(fiscal_year))
    return budget_response(budget)


@router.get("/year/{fiscal_year}/mandated-allocations")
async def get_mandated_allocations(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Required vs. allocated amount for each mandated category"""
    checks = system.budgets.mandated_allocation_status(fiscal_year)
    return {
        "fiscal_year": fiscal_year,
        "compliant": all(check.compliant for check in checks),
        "checks": [check.to_dict() for check in checks],
        "violations": [str(check) for check in checks if not check.compliant],
    }


@router.get("/{budget_id}")
async def get_budget(budget_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return budget_response(system.budgets.get_budget(budget_id))


@router.patch("/{budget_id}")
async def update_budget(
    budget_id: str,
    request: BudgetUpdateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    budget = system.budgets.update_budget(budget_id, user_id=user_id, **request.model_dump(exclude_unset=True))
    return budget_response(budget)


@router.delete("/{budget_id}")
async def delete_budget(
    budget_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    system.budgets.delete_budget(budget_id, user_id=user_id)
    return {"budget_id": budget_id, "deleted": True}
