"""
COA report endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from .dependencies import get_ledger_system, get_user_id
from .schemas import (
    AnnualReportRequest, MonthlyReportRequest, QuarterlyReportRequest,
    ReportNotesRequest, ReportStatusRequest, SpecialReportRequest,
    report_summary_response
)
from ..errors import ValidationError
from ..reporting import ReportFormat
from ..system import BudgetLedgerSystem


router = APIRouter()


@router.post("/monthly", status_code=201)
async def generate_monthly_report(
    request: MonthlyReportRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.generate_monthly_report(request.fiscal_year, request.month, generated_by=user_id)
    return system.reports.export_report(report, ReportFormat.DICT)


@router.post("/quarterly", status_code=201)
async def generate_quarterly_report(
    request: QuarterlyReportRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.generate_quarterly_report(request.fiscal_year, request.quarter, generated_by=user_id)
    return system.reports.export_report(report, ReportFormat.DICT)


@router.post("/annual", status_code=201)
async def generate_annual_report(
    request: AnnualReportRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.generate_annual_report(request.fiscal_year, generated_by=user_id)
    return system.reports.export_report(report, ReportFormat.DICT)


@router.post("/special", status_code=201)
async def generate_special_report(
    request: SpecialReportRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.generate_special_report(
        request.fiscal_year, request.period_start, request.period_end,
        title=request.title, generated_by=user_id
    )
    return system.reports.export_report(report, ReportFormat.DICT)


@router.get("")
async def list_reports(
    fiscal_year: int,
    report_type: Optional[str] = None,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    reports = system.reports.list_reports(fiscal_year, report_type)
    return {"reports": [report_summary_response(r) for r in reports], "count": len(reports)}


@router.get("/utilization/{fiscal_year}")
async def get_budget_utilization(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Live utilization per fund and category"""
    return system.reports.budget_utilization_snapshot(fiscal_year).to_dict()


@router.get("/cash-flow/{fiscal_year}")
async def get_cash_flow(fiscal_year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Monthly inflows and outflows for the year"""
    return system.reports.cash_flow_snapshot(fiscal_year).to_dict()


@router.get("/{report_id}")
async def get_report(report_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    report = system.reports.get_report(report_id)
    return system.reports.export_report(report, ReportFormat.DICT)


@router.get("/{report_id}/export")
async def export_report(
    report_id: str,
    format: str = "csv",
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    """Download a report as CSV or JSON"""
    try:
        report_format = ReportFormat(format.lower())
    except ValueError:
        raise ValidationError(f"Unsupported export format: {format}", field="format", value=format)
    report = system.reports.get_report(report_id)
    content = system.reports.export_report(report, report_format)
    if report_format == ReportFormat.DICT:
        return content

    media_type = "text/csv" if report_format == ReportFormat.CSV else "application/json"
    filename = f"{report.report_number}.{report_format.value}"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.patch("/{report_id}/status")
async def update_report_status(
    report_id: str,
    request: ReportStatusRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.update_report_status(report_id, request.status, user_id=user_id)
    return report_summary_response(report)


@router.patch("/{report_id}/notes")
async def update_report_notes(
    report_id: str,
    request: ReportNotesRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    report = system.reports.update_report_notes(report_id, request.notes, user_id=user_id)
    return dict(report_summary_response(report), notes=report.notes)


@router.delete("/{report_id}")
async def delete_report(
    report_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    system.reports.delete_report(report_id, user_id=user_id)
    return {"report_id": report_id, "deleted": True}
