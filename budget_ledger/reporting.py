"""
Report Aggregation Module

Builds COA (Commission on Audit) budget-execution reports from current
ledger state and persists them as snapshots. A report holds one detail row
per active fund of the fiscal year:

    obligations   = Expenditures dated in the period, Approved or Completed
    disbursements = Expenditures dated in the period, Completed
    balance       = allocated amount - obligations

Header totals are the sums of the detail rows. Regenerating a period always
creates a new report. Submitted and archived reports cannot be edited or
deleted.

Also provides derived (not persisted) utilization and cash-flow snapshots.
"""

import calendar
import csv
import io
import json
from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .amounts import ZERO, total, percentage
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .enums import ReportStatus, ReportType, TransactionStatus, TransactionType
from .errors import InvalidStateError, InvalidTransitionError, NotFoundError, ValidationError
from .events import DomainEvent, NotificationHub
from .funds import AllocationStore, Fund, validate_fiscal_year
from .logging_config import get_logger, log_action
from .sequences import SequenceGenerator, REPORTS_TABLE, REPORT_NUMBER_WIDTH, report_number_prefix
from .storage import StorageInterface, StorageRecord
from .transactions import Transaction, TransactionFilter, TransactionLedger


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class COAReportDetail:
    """One fund's figures within a report"""
    fund_id: str
    fund_code: str
    fund_name: str
    appropriation: Decimal
    obligations: Decimal
    disbursements: Decimal
    balance: Decimal

    @property
    def utilization_rate(self) -> float:
        return percentage(self.obligations, self.appropriation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "fund_code": self.fund_code,
            "fund_name": self.fund_name,
            "appropriation": str(self.appropriation),
            "obligations": str(self.obligations),
            "disbursements": str(self.disbursements),
            "balance": str(self.balance),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'COAReportDetail':
        return cls(
            fund_id=data["fund_id"],
            fund_code=data["fund_code"],
            fund_name=data["fund_name"],
            appropriation=Decimal(data["appropriation"]),
            obligations=Decimal(data["obligations"]),
            disbursements=Decimal(data["disbursements"]),
            balance=Decimal(data["balance"]),
        )


@dataclass
class COAReport(StorageRecord):
    """
    Persisted budget-execution report for a period
    """
    report_number: str
    report_title: str
    report_type: ReportType
    fiscal_year: int
    period_start: date
    period_end: date
    month: Optional[int] = None
    quarter: Optional[int] = None
    total_appropriation: Decimal = ZERO
    total_obligations: Decimal = ZERO
    total_disbursements: Decimal = ZERO
    unobligated_balance: Decimal = ZERO
    status: ReportStatus = ReportStatus.GENERATED
    generated_by: Optional[str] = None
    generated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    notes: Optional[str] = None
    details: List[COAReportDetail] = field(default_factory=list)

    @property
    def is_locked(self) -> bool:
        return self.status.is_locked


@dataclass
class UtilizationItem:
    fund_code: str
    fund_name: str
    category: str
    appropriation: Decimal
    utilized: Decimal
    remaining: Decimal

    @property
    def utilization_rate(self) -> float:
        return percentage(self.utilized, self.appropriation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fund_code": self.fund_code,
            "fund_name": self.fund_name,
            "category": self.category,
            "appropriation": str(self.appropriation),
            "utilized": str(self.utilized),
            "remaining": str(self.remaining),
            "utilization_rate": round(self.utilization_rate, 2),
        }


@dataclass
class BudgetUtilizationSnapshot:
    """Per-fund and per-category utilization for a fiscal year"""
    fiscal_year: int
    generated_at: datetime
    items: List[UtilizationItem]
    categories: List[Dict[str, Any]]

    @property
    def total_appropriation(self) -> Decimal:
        return total(item.appropriation for item in self.items)

    @property
    def total_utilized(self) -> Decimal:
        return total(item.utilized for item in self.items)

    @property
    def total_remaining(self) -> Decimal:
        return total(item.remaining for item in self.items)

    @property
    def overall_utilization_rate(self) -> float:
        return percentage(self.total_utilized, self.total_appropriation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fiscal_year": self.fiscal_year,
            "generated_at": self.generated_at.isoformat(),
            "total_appropriation": str(self.total_appropriation),
            "total_utilized": str(self.total_utilized),
            "total_remaining": str(self.total_remaining),
            "overall_utilization_rate": round(self.overall_utilization_rate, 2),
            "items": [item.to_dict() for item in self.items],
            "categories": self.categories,
        }


@dataclass
class MonthlyCashFlow:
    month: int
    month_name: str
    inflows: Decimal
    outflows: Decimal

    @property
    def net_flow(self) -> Decimal:
        return self.inflows - self.outflows

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "month_name": self.month_name,
            "inflows": str(self.inflows),
            "outflows": str(self.outflows),
            "net_flow": str(self.net_flow),
        }


@dataclass
class CashFlowSnapshot:
    """Monthly inflows (appropriations) and outflows (disbursements) for a year"""
    fiscal_year: int
    generated_at: datetime
    monthly_flows: List[MonthlyCashFlow]

    @property
    def total_inflows(self) -> Decimal:
        return total(m.inflows for m in self.monthly_flows)

    @property
    def total_outflows(self) -> Decimal:
        return total(m.outflows for m in self.monthly_flows)

    @property
    def net_flow(self) -> Decimal:
        return self.total_inflows - self.total_outflows

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fiscal_year": self.fiscal_year,
            "generated_at": self.generated_at.isoformat(),
            "total_inflows": str(self.total_inflows),
            "total_outflows": str(self.total_outflows),
            "net_flow": str(self.net_flow),
            "monthly_flows": [m.to_dict() for m in self.monthly_flows],
        }


class ReportAggregator:
    """
    Generates, stores and exports COA reports
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocations: AllocationStore,
        ledger: TransactionLedger,
        audit_trail: AuditTrail,
        notification_hub: Optional[NotificationHub] = None,
        sequences: Optional[SequenceGenerator] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.allocations = allocations
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.sequences = sequences or allocations.sequences
        self.table_name = REPORTS_TABLE
        self.logger = get_logger("budget_ledger.reporting")

        self._notification_hub = notification_hub

        storage.register_unique(self.table_name, "report_number")

    # Generation

    def generate_monthly_report(self, fiscal_year: int, month: int,
                                generated_by: Optional[str] = None) -> COAReport:
        fiscal_year = validate_fiscal_year(fiscal_year)
        if not 1 <= int(month) <= 12:
            raise ValidationError(f"Invalid month: {month}", field="month", value=month)
        month = int(month)
        period_start = date(fiscal_year, month, 1)
        period_end = date(fiscal_year, month, calendar.monthrange(fiscal_year, month)[1])
        return self._generate(
            ReportType.MONTHLY, fiscal_year, period_start, period_end,
            title=f"Monthly Budget Utilization Report - {period_start:%B %Y}",
            period_code=f"{month:02d}",
            generated_by=generated_by,
            month=month
        )

    def generate_quarterly_report(self, fiscal_year: int, quarter: int,
                                  generated_by: Optional[str] = None) -> COAReport:
        fiscal_year = validate_fiscal_year(fiscal_year)
        if not 1 <= int(quarter) <= 4:
            raise ValidationError(f"Invalid quarter: {quarter}", field="quarter", value=quarter)
        quarter = int(quarter)
        start_month = (quarter - 1) * 3 + 1
        end_month = start_month + 2
        period_start = date(fiscal_year, start_month, 1)
        period_end = date(fiscal_year, end_month, calendar.monthrange(fiscal_year, end_month)[1])
        return self._generate(
            ReportType.QUARTERLY, fiscal_year, period_start, period_end,
            title=f"Quarterly Budget Utilization Report - Q{quarter} {fiscal_year}",
            period_code=f"Q{quarter}",
            generated_by=generated_by,
            quarter=quarter
        )

    def generate_annual_report(self, fiscal_year: int, generated_by: Optional[str] = None) -> COAReport:
        fiscal_year = validate_fiscal_year(fiscal_year)
        return self._generate(
            ReportType.ANNUAL, fiscal_year, date(fiscal_year, 1, 1), date(fiscal_year, 12, 31),
            title=f"Annual Budget Execution Report - {fiscal_year}",
            period_code="ANNUAL",
            generated_by=generated_by
        )

    def generate_special_report(self, fiscal_year: int, period_start: date, period_end: date,
                                title: Optional[str] = None,
                                generated_by: Optional[str] = None) -> COAReport:
        """Report over an arbitrary date range within the fiscal year"""
        fiscal_year = validate_fiscal_year(fiscal_year)
        if period_end < period_start:
            raise ValidationError("period_end is before period_start", field="period_end", value=period_end)
        if period_start.year != fiscal_year or period_end.year != fiscal_year:
            raise ValidationError(f"Period must fall within fiscal year {fiscal_year}",
                                  field="period_start", value=period_start)
        return self._generate(
            ReportType.SPECIAL, fiscal_year, period_start, period_end,
            title=title or f"Special Budget Report - {period_start:%b %d} to {period_end:%b %d, %Y}",
            period_code="SP",
            generated_by=generated_by
        )

    def _generate(
        self,
        report_type: ReportType,
        fiscal_year: int,
        period_start: date,
        period_end: date,
        title: str,
        period_code: str,
        generated_by: Optional[str],
        month: Optional[int] = None,
        quarter: Optional[int] = None
    ) -> COAReport:
        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            details = [
                self._detail_for_fund(fund, period_start, period_end)
                for fund in sorted(self.allocations.list_funds(fiscal_year), key=lambda f: f.fund_code)
            ]
            total_appropriation = total(d.appropriation for d in details)
            total_obligations = total(d.obligations for d in details)

            def insert(report_number: str) -> COAReport:
                report = COAReport(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    report_number=report_number,
                    report_title=title,
                    report_type=report_type,
                    fiscal_year=fiscal_year,
                    period_start=period_start,
                    period_end=period_end,
                    month=month,
                    quarter=quarter,
                    total_appropriation=total_appropriation,
                    total_obligations=total_obligations,
                    total_disbursements=total(d.disbursements for d in details),
                    unobligated_balance=total_appropriation - total_obligations,
                    status=ReportStatus.GENERATED,
                    generated_by=generated_by,
                    generated_at=now,
                    details=details
                )
                self._save_report(report)
                return report

            report = self.sequences.allocate_and_insert(
                self.table_name, "report_number",
                report_number_prefix(fiscal_year, period_code), REPORT_NUMBER_WIDTH,
                insert
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.REPORT_GENERATED,
                entity_type="report",
                entity_id=report.id,
                metadata={
                    "report_number": report.report_number,
                    "report_type": report_type.value,
                    "total_obligations": str(report.total_obligations),
                    "total_disbursements": str(report.total_disbursements),
                    "fund_count": len(details)
                },
                user_id=generated_by
            )

        log_action(self.logger, "info", f"Generated report {report.report_number}",
                   user_id=generated_by, action="generate_report", resource=f"report:{report.id}",
                   extra={"report_type": report_type.value, "fund_count": len(details)})
        if self._notification_hub:
            self._notification_hub.emit(
                DomainEvent.REPORT_GENERATED, "report", report.id,
                {"report_number": report.report_number, "report_type": report_type.value}
            )
        return report

    def _detail_for_fund(self, fund: Fund, period_start: date, period_end: date) -> COAReportDetail:
        expenditures = self.ledger.list_transactions(TransactionFilter(
            fund_id=fund.id,
            transaction_type=TransactionType.EXPENDITURE,
            start_date=period_start,
            end_date=period_end
        ))
        obligations = total(t.amount for t in expenditures if t.status.is_committed)
        disbursements = total(t.amount for t in expenditures if t.status == TransactionStatus.COMPLETED)
        return COAReportDetail(
            fund_id=fund.id,
            fund_code=fund.fund_code,
            fund_name=fund.fund_name,
            appropriation=fund.allocated_amount,
            obligations=obligations,
            disbursements=disbursements,
            balance=fund.allocated_amount - obligations
        )

    # Retrieval and lifecycle

    def get_report(self, report_id: str) -> COAReport:
        data = self.storage.load(self.table_name, report_id)
        if not data:
            raise NotFoundError("report", report_id)
        return self._report_from_dict(data)

    def list_reports(self, fiscal_year: int, report_type: Optional[ReportType] = None) -> List[COAReport]:
        """Reports for a fiscal year, most recently generated first"""
        reports = [self._report_from_dict(d) for d in self.storage.find(self.table_name, {"fiscal_year": fiscal_year})]
        if report_type is not None:
            report_type = ReportType.parse(report_type, "report_type")
            reports = [r for r in reports if r.report_type == report_type]
        reports.sort(key=lambda r: (r.generated_at or r.created_at, r.report_number), reverse=True)
        return reports

    def update_report_status(self, report_id: str, new_status: ReportStatus,
                             user_id: Optional[str] = None) -> COAReport:
        """
        Advance a report: Draft -> Generated -> Reviewed -> Submitted -> Archived

        Steps may be skipped but never reversed. Entering Submitted stamps
        submitted_at.

        Raises:
            InvalidTransitionError: new status is not ahead of the current one
        """
        new_status = ReportStatus.parse(new_status, "status")

        with self.storage.atomic():
            report = self.get_report(report_id)
            old_status = report.status
            if new_status.rank <= old_status.rank:
                raise InvalidTransitionError("report", old_status.value, new_status.value)

            now = datetime.now(timezone.utc)
            report.status = new_status
            if new_status == ReportStatus.SUBMITTED:
                report.submitted_at = now
            report.updated_at = now
            self._save_report(report)

            self.audit_trail.log_event(
                event_type=AuditEventType.REPORT_STATUS_CHANGED,
                entity_type="report",
                entity_id=report.id,
                metadata={
                    "report_number": report.report_number,
                    "old_status": old_status.value,
                    "new_status": new_status.value
                },
                user_id=user_id
            )

        log_action(self.logger, "info",
                   f"Report {report.report_number}: {old_status.value} -> {new_status.value}",
                   user_id=user_id, action="update_report_status", resource=f"report:{report.id}")
        return report

    def update_report_notes(self, report_id: str, notes: Optional[str],
                            user_id: Optional[str] = None) -> COAReport:
        """Replace a report's notes while it is still editable"""
        with self.storage.atomic():
            report = self.get_report(report_id)
            self._ensure_unlocked(report, "edit notes")
            report.notes = notes
            report.updated_at = datetime.now(timezone.utc)
            self._save_report(report)

        log_action(self.logger, "info", f"Updated notes on report {report.report_number}",
                   user_id=user_id, action="update_report_notes", resource=f"report:{report.id}")
        return report

    def delete_report(self, report_id: str, user_id: Optional[str] = None) -> None:
        """Delete a report that has not been submitted"""
        with self.storage.atomic():
            report = self.get_report(report_id)
            self._ensure_unlocked(report, "delete")
            self.storage.delete(self.table_name, report_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.REPORT_DELETED,
                entity_type="report",
                entity_id=report_id,
                metadata={"report_number": report.report_number, "status": report.status.value},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Deleted report {report.report_number}",
                   user_id=user_id, action="delete_report", resource=f"report:{report_id}")

    def _ensure_unlocked(self, report: COAReport, action: str) -> None:
        if report.is_locked:
            raise InvalidStateError(
                f"{report.status.value} reports cannot be modified or deleted "
                f"({report.report_number})",
                current_state=report.status.value,
                attempted_action=action
            )

    # Derived views

    def budget_utilization_snapshot(self, fiscal_year: int) -> BudgetUtilizationSnapshot:
        """Utilization of each active fund and category; computed on demand"""
        funds = self.allocations.list_funds(fiscal_year)
        items = [
            UtilizationItem(
                fund_code=f.fund_code,
                fund_name=f.fund_name,
                category=f.category.value,
                appropriation=f.allocated_amount,
                utilized=f.utilized_amount,
                remaining=f.remaining_balance
            )
            for f in funds
        ]
        categories = [summary.to_dict() for summary in self.allocations.get_category_summary(fiscal_year)]
        return BudgetUtilizationSnapshot(
            fiscal_year=fiscal_year,
            generated_at=datetime.now(timezone.utc),
            items=items,
            categories=categories
        )

    def cash_flow_snapshot(self, fiscal_year: int) -> CashFlowSnapshot:
        """
        Month-by-month inflows and outflows for transactions dated in the year

        Inflows are Approved or Completed Appropriation transactions;
        outflows are Completed Expenditures.
        """
        transactions = self.ledger.list_transactions(TransactionFilter(
            start_date=date(fiscal_year, 1, 1),
            end_date=date(fiscal_year, 12, 31)
        ))

        def in_month(t: Transaction, month: int) -> bool:
            return t.transaction_date.month == month

        flows = [
            MonthlyCashFlow(
                month=month,
                month_name=calendar.month_name[month],
                inflows=total(
                    t.amount for t in transactions
                    if in_month(t, month)
                    and t.transaction_type == TransactionType.APPROPRIATION
                    and t.status.is_committed
                ),
                outflows=total(
                    t.amount for t in transactions
                    if in_month(t, month)
                    and t.is_expenditure
                    and t.status == TransactionStatus.COMPLETED
                )
            )
            for month in range(1, 13)
        ]
        return CashFlowSnapshot(fiscal_year=fiscal_year, generated_at=datetime.now(timezone.utc),
                                monthly_flows=flows)

    # Export

    def export_report(self, report: COAReport, format: ReportFormat) -> Union[Dict, str]:
        """
        Export a report as a dict, a JSON document, or CSV (one row per
        fund plus a TOTAL row)
        """
        format = ReportFormat(format) if not isinstance(format, ReportFormat) else format

        if format == ReportFormat.DICT:
            result = self._report_to_dict(report)
            result["office_name"] = self.config.office_name
            result["details"] = [
                dict(detail.to_dict(), utilization_rate=round(detail.utilization_rate, 2))
                for detail in report.details
            ]
            return result

        elif format == ReportFormat.JSON:
            export_dict = self.export_report(report, ReportFormat.DICT)
            return json.dumps(export_dict, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            headers = ["fund_code", "fund_name", "appropriation", "obligations",
                       "disbursements", "balance", "utilization_rate"]
            writer = csv.DictWriter(output, fieldnames=headers)
            writer.writeheader()

            for detail in report.details:
                row = detail.to_dict()
                row["utilization_rate"] = f"{detail.utilization_rate:.2f}"
                writer.writerow({name: row[name] for name in headers})

            writer.writerow({
                "fund_code": "TOTAL",
                "fund_name": report.report_title,
                "appropriation": str(report.total_appropriation),
                "obligations": str(report.total_obligations),
                "disbursements": str(report.total_disbursements),
                "balance": str(report.unobligated_balance),
                "utilization_rate": f"{percentage(report.total_obligations, report.total_appropriation):.2f}",
            })

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    # Persistence helpers

    def _save_report(self, report: COAReport) -> None:
        self.storage.save(self.table_name, report.id, self._report_to_dict(report))

    def _report_to_dict(self, report: COAReport) -> Dict[str, Any]:
        result = report.to_dict()
        result["report_type"] = report.report_type.value
        result["status"] = report.status.value
        result["period_start"] = report.period_start.isoformat()
        result["period_end"] = report.period_end.isoformat()
        result["generated_at"] = report.generated_at.isoformat() if report.generated_at else None
        result["submitted_at"] = report.submitted_at.isoformat() if report.submitted_at else None
        result["details"] = [detail.to_dict() for detail in report.details]
        return result

    def _report_from_dict(self, data: Dict[str, Any]) -> COAReport:
        return COAReport(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            report_number=data["report_number"],
            report_title=data["report_title"],
            report_type=ReportType(data["report_type"]),
            fiscal_year=data["fiscal_year"],
            period_start=date.fromisoformat(data["period_start"]),
            period_end=date.fromisoformat(data["period_end"]),
            month=data.get("month"),
            quarter=data.get("quarter"),
            total_appropriation=Decimal(data["total_appropriation"]),
            total_obligations=Decimal(data["total_obligations"]),
            total_disbursements=Decimal(data["total_disbursements"]),
            unobligated_balance=Decimal(data["unobligated_balance"]),
            status=ReportStatus(data["status"]),
            generated_by=data.get("generated_by"),
            generated_at=datetime.fromisoformat(data["generated_at"]) if data.get("generated_at") else None,
            submitted_at=datetime.fromisoformat(data["submitted_at"]) if data.get("submitted_at") else None,
            notes=data.get("notes"),
            details=[COAReportDetail.from_dict(d) for d in data.get("details", [])]
        )
