"""
Pydantic schemas for API requests, plus helpers that shape responses
"""

from datetime import date
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..budgets import FiscalYearBudget
from ..funds import Fund, FundParticular
from ..reporting import COAReport
from ..transactions import Transaction


# Budget schemas

class BudgetCreateRequest(BaseModel):
    fiscal_year: int = Field(..., description="Fiscal year (2000-2100)")
    total_ira: str = Field(..., description="Internal revenue allotment as decimal string")
    estimated_local_income: str = Field("0", description="Decimal amount as string")
    other_income: str = Field("0", description="Decimal amount as string")
    description: Optional[str] = None


class BudgetUpdateRequest(BaseModel):
    total_ira: Optional[str] = None
    estimated_local_income: Optional[str] = None
    other_income: Optional[str] = None
    status: Optional[str] = Field(None, description="Draft, Approved or Closed")
    description: Optional[str] = None


# Fund schemas

class FundCreateRequest(BaseModel):
    fund_name: str
    category: str = Field(..., description="Fund category, e.g. MOOE or '20% Development Fund'")
    fiscal_year: int
    allocated_amount: str = Field(..., description="Decimal amount as string")
    fund_code: Optional[str] = Field(None, description="Generated when omitted")
    description: Optional[str] = None
    fiscal_year_budget_id: Optional[str] = None


class FundUpdateRequest(BaseModel):
    fund_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    allocated_amount: Optional[str] = None


class ParticularCreateRequest(BaseModel):
    particular_name: str
    allocated_amount: str = Field(..., description="Decimal amount as string")
    particular_code: Optional[str] = Field(None, description="Generated when omitted")
    description: Optional[str] = None
    unit_of_measure: Optional[str] = None
    quantity: Optional[str] = None
    unit_cost: Optional[str] = None


class ParticularUpdateRequest(BaseModel):
    particular_name: Optional[str] = None
    description: Optional[str] = None
    allocated_amount: Optional[str] = None
    unit_of_measure: Optional[str] = None
    quantity: Optional[str] = None
    unit_cost: Optional[str] = None
    sort_order: Optional[int] = None


# Transaction schemas

class TransactionCreateRequest(BaseModel):
    fund_id: str
    transaction_type: str = Field(..., description="Expenditure, Appropriation, Adjustment, Transfer or Reversal")
    amount: str = Field(..., description="Decimal amount as string")
    description: str
    transaction_date: Optional[date] = None
    fund_particular_id: Optional[str] = None
    payee: Optional[str] = None
    pr_number: Optional[str] = None
    po_number: Optional[str] = None
    dv_number: Optional[str] = None
    check_number: Optional[str] = None
    check_date: Optional[date] = None
    remarks: Optional[str] = None


class TransactionUpdateRequest(BaseModel):
    fund_id: Optional[str] = None
    fund_particular_id: Optional[str] = None
    transaction_type: Optional[str] = None
    description: Optional[str] = None
    payee: Optional[str] = None
    amount: Optional[str] = None
    transaction_date: Optional[date] = None
    pr_number: Optional[str] = None
    po_number: Optional[str] = None
    dv_number: Optional[str] = None
    check_number: Optional[str] = None
    check_date: Optional[date] = None
    remarks: Optional[str] = None


class StatusChangeRequest(BaseModel):
    status: str
    reason: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


# Report schemas

class MonthlyReportRequest(BaseModel):
    fiscal_year: int
    month: int = Field(..., ge=1, le=12)


class QuarterlyReportRequest(BaseModel):
    fiscal_year: int
    quarter: int = Field(..., ge=1, le=4)


class AnnualReportRequest(BaseModel):
    fiscal_year: int


class SpecialReportRequest(BaseModel):
    fiscal_year: int
    period_start: date
    period_end: date
    title: Optional[str] = None


class ReportStatusRequest(BaseModel):
    status: str = Field(..., description="Generated, Reviewed, Submitted or Archived")


class ReportNotesRequest(BaseModel):
    notes: Optional[str] = None


# Response shaping

def budget_response(budget: FiscalYearBudget) -> Dict[str, Any]:
    return {
        "id": budget.id,
        "fiscal_year": budget.fiscal_year,
        "total_ira": str(budget.total_ira),
        "estimated_local_income": str(budget.estimated_local_income),
        "other_income": str(budget.other_income),
        "total_budget": str(budget.total_budget),
        "status": budget.status.value,
        "description": budget.description,
        "created_by": budget.created_by,
        "created_at": budget.created_at.isoformat(),
        "updated_at": budget.updated_at.isoformat(),
    }


def fund_response(fund: Fund) -> Dict[str, Any]:
    return {
        "id": fund.id,
        "fund_code": fund.fund_code,
        "fund_name": fund.fund_name,
        "category": fund.category.value,
        "fiscal_year": fund.fiscal_year,
        "allocated_amount": str(fund.allocated_amount),
        "utilized_amount": str(fund.utilized_amount),
        "remaining_balance": str(fund.remaining_balance),
        "utilization_percentage": round(fund.utilization_percentage, 2),
        "description": fund.description,
        "fiscal_year_budget_id": fund.fiscal_year_budget_id,
        "is_active": fund.is_active,
        "created_by": fund.created_by,
        "created_at": fund.created_at.isoformat(),
        "updated_at": fund.updated_at.isoformat(),
    }


def particular_response(particular: FundParticular) -> Dict[str, Any]:
    return {
        "id": particular.id,
        "fund_id": particular.fund_id,
        "particular_code": particular.particular_code,
        "particular_name": particular.particular_name,
        "allocated_amount": str(particular.allocated_amount),
        "utilized_amount": str(particular.utilized_amount),
        "remaining_balance": str(particular.remaining_balance),
        "utilization_percentage": round(particular.utilization_percentage, 2),
        "description": particular.description,
        "unit_of_measure": particular.unit_of_measure,
        "quantity": str(particular.quantity) if particular.quantity is not None else None,
        "unit_cost": str(particular.unit_cost) if particular.unit_cost is not None else None,
        "sort_order": particular.sort_order,
        "is_active": particular.is_active,
    }


def transaction_response(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "transaction_number": transaction.transaction_number,
        "fund_id": transaction.fund_id,
        "fund_particular_id": transaction.fund_particular_id,
        "transaction_type": transaction.transaction_type.value,
        "description": transaction.description,
        "amount": str(transaction.amount),
        "transaction_date": transaction.transaction_date.isoformat(),
        "status": transaction.status.value,
        "payee": transaction.payee,
        "pr_number": transaction.pr_number,
        "po_number": transaction.po_number,
        "dv_number": transaction.dv_number,
        "check_number": transaction.check_number,
        "check_date": transaction.check_date.isoformat() if transaction.check_date else None,
        "remarks": transaction.remarks,
        "created_by": transaction.created_by,
        "approved_by": transaction.approved_by,
        "approved_at": transaction.approved_at.isoformat() if transaction.approved_at else None,
        "created_at": transaction.created_at.isoformat(),
        "updated_at": transaction.updated_at.isoformat(),
    }


def report_summary_response(report: COAReport) -> Dict[str, Any]:
    """Report header without per-fund details"""
    return {
        "id": report.id,
        "report_number": report.report_number,
        "report_title": report.report_title,
        "report_type": report.report_type.value,
        "fiscal_year": report.fiscal_year,
        "period_start": report.period_start.isoformat(),
        "period_end": report.period_end.isoformat(),
        "total_appropriation": str(report.total_appropriation),
        "total_obligations": str(report.total_obligations),
        "total_disbursements": str(report.total_disbursements),
        "unobligated_balance": str(report.unobligated_balance),
        "status": report.status.value,
        "generated_at": report.generated_at.isoformat() if report.generated_at else None,
        "submitted_at": report.submitted_at.isoformat() if report.submitted_at else None,
    }
