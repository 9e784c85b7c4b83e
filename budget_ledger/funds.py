"""
Allocation Store Module

Owns appropriation funds and their particulars (program/project/activity
line items). Allocated amounts are set by callers; utilized amounts are
derived from the transaction ledger by ``recompute_utilization`` and never
written directly.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .amounts import ZERO, to_amount, optional_amount, total, percentage
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .enums import FundCategory, TransactionStatus, TransactionType
from .errors import NotFoundError, ValidationError
from .events import NotificationHub, UpdateType, fund_updated_event
from .logging_config import get_logger, log_action
from .sequences import (
    SequenceGenerator, FUNDS_TABLE, PARTICULARS_TABLE, TRANSACTIONS_TABLE, REPORTS_TABLE,
    FUND_CODE_WIDTH, PARTICULAR_CODE_WIDTH, fund_code_prefix, particular_code_prefix,
)
from .storage import StorageInterface, StorageRecord, UniqueConstraintError


BUDGETS_TABLE = "fiscal_year_budgets"


class DeleteOutcome(Enum):
    """What a delete request did"""
    SOFT_DELETED = "soft_deleted"  # Referenced; flagged inactive
    HARD_DELETED = "hard_deleted"  # Removed from storage


@dataclass
class Fund(StorageRecord):
    """
    Appropriation fund: a named budget envelope for one fiscal year
    """
    fund_code: str
    fund_name: str
    category: FundCategory
    fiscal_year: int
    allocated_amount: Decimal
    utilized_amount: Decimal = ZERO
    description: Optional[str] = None
    fiscal_year_budget_id: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None

    @property
    def remaining_balance(self) -> Decimal:
        return self.allocated_amount - self.utilized_amount

    @property
    def utilization_percentage(self) -> float:
        return percentage(self.utilized_amount, self.allocated_amount)


@dataclass
class FundParticular(StorageRecord):
    """
    Line item under exactly one fund, with its own sub-allocation
    """
    fund_id: str
    particular_code: str
    particular_name: str
    allocated_amount: Decimal
    utilized_amount: Decimal = ZERO
    description: Optional[str] = None
    unit_of_measure: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    sort_order: int = 0
    is_active: bool = True
    created_by: Optional[str] = None

    @property
    def remaining_balance(self) -> Decimal:
        return self.allocated_amount - self.utilized_amount

    @property
    def utilization_percentage(self) -> float:
        return percentage(self.utilized_amount, self.allocated_amount)


@dataclass
class FundSummary:
    """Totals over a fiscal year's active funds"""
    fiscal_year: int
    total_allocated: Decimal
    total_utilized: Decimal
    total_remaining: Decimal
    fund_count: int

    @property
    def overall_utilization(self) -> float:
        return percentage(self.total_utilized, self.total_allocated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fiscal_year": self.fiscal_year,
            "total_allocated": str(self.total_allocated),
            "total_utilized": str(self.total_utilized),
            "total_remaining": str(self.total_remaining),
            "fund_count": self.fund_count,
            "overall_utilization": round(self.overall_utilization, 2),
        }


@dataclass
class CategorySummary:
    """Totals for one category within a fiscal year"""
    category: FundCategory
    fund_count: int
    total_allocated: Decimal
    total_utilized: Decimal
    fund_ids: List[str] = field(default_factory=list)

    @property
    def total_remaining(self) -> Decimal:
        return self.total_allocated - self.total_utilized

    @property
    def utilization_rate(self) -> float:
        return percentage(self.total_utilized, self.total_allocated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "fund_count": self.fund_count,
            "total_allocated": str(self.total_allocated),
            "total_utilized": str(self.total_utilized),
            "total_remaining": str(self.total_remaining),
            "utilization_rate": round(self.utilization_rate, 2),
        }


def _committed_expenditure(record: Dict[str, Any]) -> bool:
    return (
        record.get("transaction_type") == TransactionType.EXPENDITURE.value
        and TransactionStatus(record.get("status")).is_committed
    )


class AllocationStore:
    """
    Manages funds, particulars and utilization accounting
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        notification_hub: Optional[NotificationHub] = None,
        sequences: Optional[SequenceGenerator] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.sequences = sequences or SequenceGenerator(storage, self.config.sequence_max_retries)
        self.funds_table = FUNDS_TABLE
        self.particulars_table = PARTICULARS_TABLE
        self.logger = get_logger("budget_ledger.funds")

        self._notification_hub = notification_hub

        storage.register_unique(self.funds_table, "fund_code")
        storage.register_unique(self.particulars_table, "particular_code")

    def _publish(self, event) -> None:
        if self._notification_hub:
            self._notification_hub.publish(event)

    def notify_fund_updated(self, fund: Fund, update_type: UpdateType = UpdateType.MODIFIED) -> None:
        """Publish FUND_UPDATED for a fund (used by callers that defer publishing until commit)"""
        self._publish(fund_updated_event(fund, update_type))

    # Fund operations

    def create_fund(
        self,
        fund_name: str,
        category: FundCategory,
        fiscal_year: int,
        allocated_amount: Decimal,
        fund_code: Optional[str] = None,
        description: Optional[str] = None,
        fiscal_year_budget_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Fund:
        """
        Create a new fund

        Args:
            fund_name: Display name
            category: Budget category (also selects the generated code prefix)
            fiscal_year: Fiscal year the fund belongs to
            allocated_amount: Ceiling for the fund, must be >= 0
            fund_code: Explicit code; generated as {PREFIX}-{year}-NNN when omitted
            description: Optional description
            fiscal_year_budget_id: Optional parent fiscal-year budget
            user_id: Acting user

        Returns:
            Created Fund with utilized_amount = 0
        """
        category = FundCategory.parse(category, "category")
        fund_name = required_text(fund_name, "fund_name")
        fiscal_year = validate_fiscal_year(fiscal_year)
        allocated_amount = to_amount(allocated_amount, "allocated_amount")
        if allocated_amount < 0:
            raise ValidationError("Allocated amount cannot be negative",
                                  field="allocated_amount", value=allocated_amount)

        now = datetime.now(timezone.utc)

        def insert(code: str) -> Fund:
            fund = Fund(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                fund_code=code,
                fund_name=fund_name,
                category=category,
                fiscal_year=fiscal_year,
                allocated_amount=allocated_amount,
                utilized_amount=ZERO,
                description=description,
                fiscal_year_budget_id=fiscal_year_budget_id,
                created_by=user_id
            )
            self._save_fund(fund)
            return fund

        with self.storage.atomic():
            if fiscal_year_budget_id:
                self._check_budget_link(fiscal_year_budget_id, fiscal_year)

            if fund_code:
                fund_code = fund_code.strip()
                try:
                    fund = insert(fund_code)
                except UniqueConstraintError:
                    raise ValidationError(f"Fund code {fund_code} already exists",
                                          field="fund_code", value=fund_code)
            else:
                fund = self.sequences.allocate_and_insert(
                    self.funds_table, "fund_code",
                    fund_code_prefix(category.code_prefix, fiscal_year), FUND_CODE_WIDTH,
                    insert
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.FUND_CREATED,
                entity_type="fund",
                entity_id=fund.id,
                metadata={
                    "fund_code": fund.fund_code,
                    "fund_name": fund.fund_name,
                    "category": category.value,
                    "fiscal_year": fiscal_year,
                    "allocated_amount": str(allocated_amount)
                },
                user_id=user_id
            )

        log_action(self.logger, "info", f"Created fund {fund.fund_code}",
                   user_id=user_id, action="create_fund", resource=f"fund:{fund.id}",
                   extra={"allocated_amount": str(allocated_amount)})
        self._publish(fund_updated_event(fund, UpdateType.CREATED))
        return fund

    def get_fund(self, fund_id: str) -> Fund:
        """Get fund by ID (active or not)"""
        fund_dict = self.storage.load(self.funds_table, fund_id)
        if not fund_dict:
            raise NotFoundError("fund", fund_id)
        return self._fund_from_dict(fund_dict)

    def get_fund_by_code(self, fund_code: str) -> Optional[Fund]:
        """Get an active fund by its code"""
        funds = self.storage.find(self.funds_table, {"fund_code": fund_code, "is_active": True})
        if funds:
            return self._fund_from_dict(funds[0])
        return None

    def list_funds(self, fiscal_year: Optional[int] = None, include_inactive: bool = False) -> List[Fund]:
        """Funds ordered by category then name"""
        filters: Dict[str, Any] = {}
        if fiscal_year is not None:
            filters["fiscal_year"] = fiscal_year
        if not include_inactive:
            filters["is_active"] = True

        funds = [self._fund_from_dict(data) for data in self.storage.find(self.funds_table, filters)]
        funds.sort(key=lambda f: (f.category.value, f.fund_name))
        return funds

    def list_funds_by_category(self, category: FundCategory, fiscal_year: int) -> List[Fund]:
        """Active funds of one category in a fiscal year, by name"""
        category = FundCategory.parse(category, "category")
        funds = [f for f in self.list_funds(fiscal_year) if f.category == category]
        funds.sort(key=lambda f: f.fund_name)
        return funds

    def update_fund(
        self,
        fund_id: str,
        fund_name: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[FundCategory] = None,
        allocated_amount: Optional[Decimal] = None,
        user_id: Optional[str] = None
    ) -> Fund:
        """
        Update the mutable fields of a fund

        fund_code and utilized_amount cannot be changed here. The allocation
        may not drop below the active particulars' total or the amount
        already utilized.
        """
        with self.storage.atomic():
            fund = self.get_fund(fund_id)
            changes: Dict[str, Any] = {}

            if fund_name is not None:
                fund.fund_name = required_text(fund_name, "fund_name")
                changes["fund_name"] = fund.fund_name
            if description is not None:
                fund.description = description
                changes["description"] = description
            if category is not None:
                fund.category = FundCategory.parse(category, "category")
                changes["category"] = fund.category.value
            if allocated_amount is not None:
                new_amount = to_amount(allocated_amount, "allocated_amount")
                if new_amount < 0:
                    raise ValidationError("Allocated amount cannot be negative",
                                          field="allocated_amount", value=new_amount)
                particulars_total = self._active_particulars_total(fund.id)
                if new_amount < particulars_total:
                    raise ValidationError(
                        f"Allocated amount {new_amount:,.2f} is below the {particulars_total:,.2f} "
                        f"already allocated to particulars of {fund.fund_code}",
                        field="allocated_amount",
                        requested=new_amount,
                        particulars_allocated=particulars_total
                    )
                if new_amount < fund.utilized_amount:
                    raise ValidationError(
                        f"Allocated amount {new_amount:,.2f} is below the {fund.utilized_amount:,.2f} "
                        f"already utilized from {fund.fund_code}",
                        field="allocated_amount",
                        requested=new_amount,
                        utilized=fund.utilized_amount
                    )
                changes["allocated_amount"] = {"old": str(fund.allocated_amount), "new": str(new_amount)}
                fund.allocated_amount = new_amount

            fund.updated_at = datetime.now(timezone.utc)
            self._save_fund(fund)

            self.audit_trail.log_event(
                event_type=AuditEventType.FUND_UPDATED,
                entity_type="fund",
                entity_id=fund.id,
                metadata={"fund_code": fund.fund_code, "changes": changes},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Updated fund {fund.fund_code}",
                   user_id=user_id, action="update_fund", resource=f"fund:{fund.id}",
                   extra={"fields": sorted(changes)})
        self._publish(fund_updated_event(fund, UpdateType.MODIFIED))
        return fund

    def delete_fund(self, fund_id: str, user_id: Optional[str] = None) -> DeleteOutcome:
        """
        Delete a fund

        Soft-deletes (is_active = False) when any transaction or report detail
        references the fund, otherwise removes it together with its
        particulars. The reference check and the delete share one atomic block.
        """
        with self.storage.atomic():
            fund = self.get_fund(fund_id)

            if self._fund_is_referenced(fund_id):
                fund.is_active = False
                fund.updated_at = datetime.now(timezone.utc)
                self._save_fund(fund)
                outcome = DeleteOutcome.SOFT_DELETED
                audit_type = AuditEventType.FUND_DEACTIVATED
            else:
                for particular in self.storage.find(self.particulars_table, {"fund_id": fund_id}):
                    self.storage.delete(self.particulars_table, particular["id"])
                self.storage.delete(self.funds_table, fund_id)
                outcome = DeleteOutcome.HARD_DELETED
                audit_type = AuditEventType.FUND_DELETED

            self.audit_trail.log_event(
                event_type=audit_type,
                entity_type="fund",
                entity_id=fund_id,
                metadata={"fund_code": fund.fund_code, "outcome": outcome.value},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Deleted fund {fund.fund_code} ({outcome.value})",
                   user_id=user_id, action="delete_fund", resource=f"fund:{fund_id}")
        self._publish(fund_updated_event(fund, UpdateType.DELETED))
        return outcome

    def recompute_utilization(self, fund_id: str, user_id: Optional[str] = None,
                              notify: bool = True) -> Fund:
        """
        Recompute utilized amounts for a fund and its particulars

        utilized_amount = sum of amounts of the fund's Expenditure
        transactions in Approved or Completed status. Always a full re-read,
        so running it twice gives the same result. Reading the transactions
        and writing the fund happen in one atomic block.

        Args:
            fund_id: Fund to recompute
            user_id: Acting user (for the audit trail)
            notify: Publish FUND_UPDATED when done; callers running inside
                their own atomic block pass False and publish after commit

        Returns:
            The fund with its recomputed utilization
        """
        with self.storage.atomic():
            fund = self.get_fund(fund_id)
            committed = [
                t for t in self.storage.find(TRANSACTIONS_TABLE, {"fund_id": fund_id})
                if _committed_expenditure(t)
            ]

            old_utilized = fund.utilized_amount
            fund.utilized_amount = total(Decimal(t["amount"]) for t in committed)
            if fund.utilized_amount != old_utilized:
                fund.updated_at = datetime.now(timezone.utc)
                self._save_fund(fund)

            for particular_dict in self.storage.find(self.particulars_table, {"fund_id": fund_id}):
                particular = self._particular_from_dict(particular_dict)
                utilized = total(
                    Decimal(t["amount"]) for t in committed
                    if t.get("fund_particular_id") == particular.id
                )
                if utilized != particular.utilized_amount:
                    particular.utilized_amount = utilized
                    particular.updated_at = datetime.now(timezone.utc)
                    self._save_particular(particular)

            self.audit_trail.log_event(
                event_type=AuditEventType.UTILIZATION_RECOMPUTED,
                entity_type="fund",
                entity_id=fund.id,
                metadata={
                    "fund_code": fund.fund_code,
                    "old_utilized": str(old_utilized),
                    "new_utilized": str(fund.utilized_amount),
                    "transaction_count": len(committed)
                },
                user_id=user_id
            )

        self.logger.debug("Recomputed utilization for %s: %s -> %s",
                          fund.fund_code, old_utilized, fund.utilized_amount)
        if notify:
            self._publish(fund_updated_event(fund, UpdateType.MODIFIED))
        return fund

    # Summaries

    def get_fund_summary(self, fiscal_year: int) -> FundSummary:
        """Totals and overall utilization for a fiscal year's active funds"""
        funds = self.list_funds(fiscal_year)
        return FundSummary(
            fiscal_year=fiscal_year,
            total_allocated=total(f.allocated_amount for f in funds),
            total_utilized=total(f.utilized_amount for f in funds),
            total_remaining=total(f.remaining_balance for f in funds),
            fund_count=len(funds)
        )

    def get_category_summary(self, fiscal_year: int) -> List[CategorySummary]:
        """Active funds of a fiscal year grouped by category"""
        summaries: Dict[FundCategory, CategorySummary] = {}
        for fund in self.list_funds(fiscal_year):
            summary = summaries.get(fund.category)
            if summary is None:
                summary = summaries[fund.category] = CategorySummary(
                    category=fund.category, fund_count=0, total_allocated=ZERO, total_utilized=ZERO
                )
            summary.fund_count += 1
            summary.total_allocated += fund.allocated_amount
            summary.total_utilized += fund.utilized_amount
            summary.fund_ids.append(fund.id)
        return sorted(summaries.values(), key=lambda s: s.category.value)

    def get_low_balance_funds(self, fiscal_year: int, threshold: Optional[float] = None) -> List[Fund]:
        """
        Active funds whose remaining balance is below ``threshold`` percent of
        their allocation, most critical first
        """
        if threshold is None:
            threshold = self.config.low_balance_threshold
        limit = Decimal(str(threshold))

        funds = [
            f for f in self.list_funds(fiscal_year)
            if f.allocated_amount > 0 and f.remaining_balance / f.allocated_amount * 100 < limit
        ]
        funds.sort(key=lambda f: f.remaining_balance / f.allocated_amount)
        return funds

    def next_fund_code(self, category: FundCategory, fiscal_year: int) -> str:
        category = FundCategory.parse(category, "category")
        return self.sequences.next_fund_code(category.code_prefix, fiscal_year)

    # Particular operations

    def create_particular(
        self,
        fund_id: str,
        particular_name: str,
        allocated_amount: Decimal,
        particular_code: Optional[str] = None,
        description: Optional[str] = None,
        unit_of_measure: Optional[str] = None,
        quantity: Optional[Decimal] = None,
        unit_cost: Optional[Decimal] = None,
        user_id: Optional[str] = None
    ) -> FundParticular:
        """
        Add a line item under a fund

        The active particulars' allocations may not exceed the fund's
        allocation; sort_order is placed after the fund's last particular.
        """
        particular_name = required_text(particular_name, "particular_name")
        allocated_amount = to_amount(allocated_amount, "allocated_amount")
        if allocated_amount < 0:
            raise ValidationError("Allocated amount cannot be negative",
                                  field="allocated_amount", value=allocated_amount)
        quantity = optional_amount(quantity, "quantity")
        unit_cost = optional_amount(unit_cost, "unit_cost")

        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            fund = self.get_fund(fund_id)
            if not fund.is_active:
                raise ValidationError(f"Fund {fund.fund_code} is inactive", field="fund_id", value=fund_id)

            self._check_particular_ceiling(fund, allocated_amount)

            existing = self.storage.find(self.particulars_table, {"fund_id": fund_id})
            sort_order = max((p.get("sort_order", 0) for p in existing), default=0) + 1

            def insert(code: str) -> FundParticular:
                particular = FundParticular(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    fund_id=fund_id,
                    particular_code=code,
                    particular_name=particular_name,
                    allocated_amount=allocated_amount,
                    description=description,
                    unit_of_measure=unit_of_measure,
                    quantity=quantity,
                    unit_cost=unit_cost,
                    sort_order=sort_order,
                    created_by=user_id
                )
                self._save_particular(particular)
                return particular

            if particular_code:
                particular_code = particular_code.strip()
                try:
                    particular = insert(particular_code)
                except UniqueConstraintError:
                    raise ValidationError(f"Particular code {particular_code} already exists",
                                          field="particular_code", value=particular_code)
            else:
                particular = self.sequences.allocate_and_insert(
                    self.particulars_table, "particular_code",
                    particular_code_prefix(fund.fund_code), PARTICULAR_CODE_WIDTH,
                    insert
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.PARTICULAR_CREATED,
                entity_type="particular",
                entity_id=particular.id,
                metadata={
                    "fund_id": fund_id,
                    "particular_code": particular.particular_code,
                    "allocated_amount": str(allocated_amount)
                },
                user_id=user_id
            )

        log_action(self.logger, "info", f"Created particular {particular.particular_code}",
                   user_id=user_id, action="create_particular", resource=f"particular:{particular.id}")
        self._publish(fund_updated_event(fund, UpdateType.MODIFIED))
        return particular

    def get_particular(self, particular_id: str) -> FundParticular:
        particular_dict = self.storage.load(self.particulars_table, particular_id)
        if not particular_dict:
            raise NotFoundError("particular", particular_id)
        return self._particular_from_dict(particular_dict)

    def list_particulars(self, fund_id: str, include_inactive: bool = False) -> List[FundParticular]:
        """Particulars of a fund by sort order then name"""
        filters: Dict[str, Any] = {"fund_id": fund_id}
        if not include_inactive:
            filters["is_active"] = True
        particulars = [self._particular_from_dict(d) for d in self.storage.find(self.particulars_table, filters)]
        particulars.sort(key=lambda p: (p.sort_order, p.particular_name))
        return particulars

    def update_particular(
        self,
        particular_id: str,
        particular_name: Optional[str] = None,
        description: Optional[str] = None,
        allocated_amount: Optional[Decimal] = None,
        unit_of_measure: Optional[str] = None,
        quantity: Optional[Decimal] = None,
        unit_cost: Optional[Decimal] = None,
        sort_order: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> FundParticular:
        """Update a particular; a new allocation is re-checked against the fund ceiling"""
        with self.storage.atomic():
            particular = self.get_particular(particular_id)
            fund = self.get_fund(particular.fund_id)
            changes: Dict[str, Any] = {}

            if particular_name is not None:
                particular.particular_name = required_text(particular_name, "particular_name")
                changes["particular_name"] = particular.particular_name
            if description is not None:
                particular.description = description
                changes["description"] = description
            if unit_of_measure is not None:
                particular.unit_of_measure = unit_of_measure
                changes["unit_of_measure"] = unit_of_measure
            if quantity is not None:
                particular.quantity = to_amount(quantity, "quantity")
                changes["quantity"] = str(particular.quantity)
            if unit_cost is not None:
                particular.unit_cost = to_amount(unit_cost, "unit_cost")
                changes["unit_cost"] = str(particular.unit_cost)
            if sort_order is not None:
                particular.sort_order = int(sort_order)
                changes["sort_order"] = particular.sort_order
            if allocated_amount is not None:
                new_amount = to_amount(allocated_amount, "allocated_amount")
                if new_amount < 0:
                    raise ValidationError("Allocated amount cannot be negative",
                                          field="allocated_amount", value=new_amount)
                if new_amount < particular.utilized_amount:
                    raise ValidationError(
                        f"Allocated amount {new_amount:,.2f} is below the {particular.utilized_amount:,.2f} "
                        f"already utilized from {particular.particular_code}",
                        field="allocated_amount",
                        requested=new_amount,
                        utilized=particular.utilized_amount
                    )
                if particular.is_active:
                    self._check_particular_ceiling(fund, new_amount, exclude_id=particular.id)
                changes["allocated_amount"] = {"old": str(particular.allocated_amount), "new": str(new_amount)}
                particular.allocated_amount = new_amount

            particular.updated_at = datetime.now(timezone.utc)
            self._save_particular(particular)

            self.audit_trail.log_event(
                event_type=AuditEventType.PARTICULAR_UPDATED,
                entity_type="particular",
                entity_id=particular.id,
                metadata={"particular_code": particular.particular_code, "changes": changes},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Updated particular {particular.particular_code}",
                   user_id=user_id, action="update_particular", resource=f"particular:{particular.id}")
        self._publish(fund_updated_event(fund, UpdateType.MODIFIED))
        return particular

    def delete_particular(self, particular_id: str, user_id: Optional[str] = None) -> DeleteOutcome:
        """Soft-delete if any transaction references the particular, otherwise remove it"""
        with self.storage.atomic():
            particular = self.get_particular(particular_id)

            if self.storage.find(TRANSACTIONS_TABLE, {"fund_particular_id": particular_id}):
                particular.is_active = False
                particular.updated_at = datetime.now(timezone.utc)
                self._save_particular(particular)
                outcome = DeleteOutcome.SOFT_DELETED
                audit_type = AuditEventType.PARTICULAR_DEACTIVATED
            else:
                self.storage.delete(self.particulars_table, particular_id)
                outcome = DeleteOutcome.HARD_DELETED
                audit_type = AuditEventType.PARTICULAR_DELETED

            self.audit_trail.log_event(
                event_type=audit_type,
                entity_type="particular",
                entity_id=particular_id,
                metadata={"particular_code": particular.particular_code, "outcome": outcome.value},
                user_id=user_id
            )
            fund = self.get_fund(particular.fund_id)

        log_action(self.logger, "info", f"Deleted particular {particular.particular_code} ({outcome.value})",
                   user_id=user_id, action="delete_particular", resource=f"particular:{particular_id}")
        self._publish(fund_updated_event(fund, UpdateType.MODIFIED))
        return outcome

    def next_particular_code(self, fund_id: str) -> str:
        fund = self.get_fund(fund_id)
        return self.sequences.next_particular_code(fund.fund_code)

    # Internal helpers

    def _active_particulars_total(self, fund_id: str, exclude_id: Optional[str] = None) -> Decimal:
        return total(
            Decimal(p["allocated_amount"])
            for p in self.storage.find(self.particulars_table, {"fund_id": fund_id, "is_active": True})
            if p["id"] != exclude_id
        )

    def _check_particular_ceiling(self, fund: Fund, requested: Decimal,
                                  exclude_id: Optional[str] = None) -> None:
        already_allocated = self._active_particulars_total(fund.id, exclude_id)
        if already_allocated + requested > fund.allocated_amount:
            raise ValidationError(
                f"Particular allocation {requested:,.2f} exceeds the remaining envelope of "
                f"{fund.fund_code}: {already_allocated:,.2f} of {fund.allocated_amount:,.2f} "
                f"already allocated",
                field="allocated_amount",
                requested=requested,
                already_allocated=already_allocated,
                ceiling=fund.allocated_amount
            )

    def _fund_is_referenced(self, fund_id: str) -> bool:
        if self.storage.find(TRANSACTIONS_TABLE, {"fund_id": fund_id}):
            return True
        for report in self.storage.load_all(REPORTS_TABLE):
            if any(detail.get("fund_id") == fund_id for detail in report.get("details", [])):
                return True
        return False

    def _check_budget_link(self, budget_id: str, fiscal_year: int) -> None:
        budget = self.storage.load(BUDGETS_TABLE, budget_id)
        if not budget:
            raise NotFoundError("fiscal_year_budget", budget_id)
        if budget["fiscal_year"] != fiscal_year:
            raise ValidationError(
                f"Fund fiscal year {fiscal_year} does not match budget year {budget['fiscal_year']}",
                field="fiscal_year", value=fiscal_year
            )

    def _save_fund(self, fund: Fund) -> None:
        self.storage.save(self.funds_table, fund.id, self._fund_to_dict(fund))

    def _fund_to_dict(self, fund: Fund) -> Dict:
        """Convert Fund to dictionary for storage"""
        result = fund.to_dict()
        result["category"] = fund.category.value
        return result

    def _fund_from_dict(self, data: Dict) -> Fund:
        """Convert dictionary to Fund"""
        return Fund(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            fund_code=data["fund_code"],
            fund_name=data["fund_name"],
            category=FundCategory(data["category"]),
            fiscal_year=data["fiscal_year"],
            allocated_amount=Decimal(data["allocated_amount"]),
            utilized_amount=Decimal(data["utilized_amount"]),
            description=data.get("description"),
            fiscal_year_budget_id=data.get("fiscal_year_budget_id"),
            is_active=data.get("is_active", True),
            created_by=data.get("created_by")
        )

    def _save_particular(self, particular: FundParticular) -> None:
        self.storage.save(self.particulars_table, particular.id, particular.to_dict())

    def _particular_from_dict(self, data: Dict) -> FundParticular:
        return FundParticular(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            fund_id=data["fund_id"],
            particular_code=data["particular_code"],
            particular_name=data["particular_name"],
            allocated_amount=Decimal(data["allocated_amount"]),
            utilized_amount=Decimal(data["utilized_amount"]),
            description=data.get("description"),
            unit_of_measure=data.get("unit_of_measure"),
            quantity=Decimal(data["quantity"]) if data.get("quantity") is not None else None,
            unit_cost=Decimal(data["unit_cost"]) if data.get("unit_cost") is not None else None,
            sort_order=data.get("sort_order", 0),
            is_active=data.get("is_active", True),
            created_by=data.get("created_by")
        )


def required_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def validate_fiscal_year(value: Any) -> int:
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid fiscal year: {value!r}", field="fiscal_year", value=value)
    if not 1900 <= year <= 9999:
        raise ValidationError(f"Invalid fiscal year: {value!r}", field="fiscal_year", value=value)
    return year
