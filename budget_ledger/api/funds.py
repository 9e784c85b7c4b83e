"""
Fund and fund-particular endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system, get_user_id
from .schemas import (
    FundCreateRequest, FundUpdateRequest, ParticularCreateRequest,
    fund_response, particular_response, transaction_response
)
from ..enums import FundCategory
from ..errors import NotFoundError
from ..system import BudgetLedgerSystem


router = APIRouter()


@router.post("", status_code=201)
async def create_fund(
    request: FundCreateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Create a fund; the code is generated when not supplied"""
    fund = system.allocations.create_fund(
        fund_name=request.fund_name,
        category=request.category,
        fiscal_year=request.fiscal_year,
        allocated_amount=request.allocated_amount,
        fund_code=request.fund_code,
        description=request.description,
        fiscal_year_budget_id=request.fiscal_year_budget_id,
        user_id=user_id
    )
    return fund_response(fund)


@router.get("")
async def list_funds(
    fiscal_year: Optional[int] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    """List funds ordered by category then name"""
    funds = system.allocations.list_funds(fiscal_year, include_inactive=include_inactive)
    if category is not None:
        wanted = FundCategory.parse(category, "category")
        funds = [f for f in funds if f.category == wanted]
    return {"funds": [fund_response(f) for f in funds], "count": len(funds)}


@router.get("/categories")
async def list_categories():
    """Fund categories with their code prefixes and mandated shares"""
    return {
        "categories": [
            {
                "value": category.value,
                "code_prefix": category.code_prefix,
                "description": category.description,
                "mandated_percentage": str(category.mandated_percentage) if category.mandated_percentage > 0 else None,
                "is_aip": category.is_aip,
            }
            for category in FundCategory
        ]
    }


@router.get("/next-code")
async def next_fund_code(
    category: str,
    fiscal_year: int,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    """Preview the next fund code for a category and year"""
    return {"fund_code": system.allocations.next_fund_code(category, fiscal_year)}


@router.get("/summary/{fiscal_year}")
async def get_fund_summary(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return system.allocations.get_fund_summary(fiscal_year).to_dict()


@router.get("/summary/{fiscal_year}/categories")
async def get_category_summary(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    summaries = system.allocations.get_category_summary(fiscal_year)
    return {"fiscal_year": fiscal_year, "categories": [s.to_dict() for s in summaries]}


@router.get("/low-balance/{fiscal_year}")
async def get_low_balance_funds(
    fiscal_year: int,
    threshold: Optional[float] = None,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    """Funds whose remaining balance is below the threshold percentage"""
    funds = system.allocations.get_low_balance_funds(fiscal_year, threshold)
    return {"funds": [fund_response(f) for f in funds], "count": len(funds)}


@router.get("/by-code/{fund_code}")
async def get_fund_by_code(fund_code: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    fund = system.allocations.get_fund_by_code(fund_code)
    if fund is None:
        raise NotFoundError("fund", fund_code)
    return fund_response(fund)


@router.get("/{fund_id}")
async def get_fund(fund_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return fund_response(system.allocations.get_fund(fund_id))


@router.patch("/{fund_id}")
async def update_fund(
    fund_id: str,
    request: FundUpdateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    fund = system.allocations.update_fund(fund_id, user_id=user_id, **request.model_dump(exclude_unset=True))
    return fund_response(fund)


@router.delete("/{fund_id}")
async def delete_fund(
    fund_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Delete a fund; funds with history are deactivated instead"""
    outcome = system.allocations.delete_fund(fund_id, user_id=user_id)
    return {"fund_id": fund_id, "outcome": outcome.value}


@router.post("/{fund_id}/recompute")
async def recompute_utilization(
    fund_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Recompute utilized amounts from committed expenditures"""
    return fund_response(system.allocations.recompute_utilization(fund_id, user_id=user_id))


@router.get("/{fund_id}/transactions")
async def list_fund_transactions(fund_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    system.allocations.get_fund(fund_id)
    transactions = system.ledger.list_for_fund(fund_id)
    return {
        "fund_id": fund_id,
        "transactions": [transaction_response(t) for t in transactions],
        "count": len(transactions)
    }


@router.get("/{fund_id}/monthly-summary/{year}")
async def get_monthly_summary(fund_id: str, year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Committed expenditure per month for one fund"""
    system.allocations.get_fund(fund_id)
    months = system.ledger.get_monthly_summary(fund_id, year)
    return {"fund_id": fund_id, "year": year, "months": [m.to_dict() for m in months]}


@router.get("/{fund_id}/particulars")
async def list_particulars(
    fund_id: str,
    include_inactive: bool = False,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    particulars = system.allocations.list_particulars(fund_id, include_inactive=include_inactive)
    return {"particulars": [particular_response(p) for p in particulars], "count": len(particulars)}


@router.get("/{fund_id}/particulars/next-code")
async def next_particular_code(fund_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return {"particular_code": system.allocations.next_particular_code(fund_id)}


@router.post("/{fund_id}/particulars", status_code=201)
async def create_particular(
    fund_id: str,
    request: ParticularCreateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Add a line item; allocations may not exceed the fund's"""
    particular = system.allocations.create_particular(
        fund_id=fund_id,
        particular_name=request.particular_name,
        allocated_amount=request.allocated_amount,
        particular_code=request.particular_code,
        description=request.description,
        unit_of_measure=request.unit_of_measure,
        quantity=request.quantity,
        unit_cost=request.unit_cost,
        user_id=user_id
    )
    return particular_response(particular)
