"""
Fiscal-Year Budget Module

One budget per fiscal year holding the internal revenue allotment (IRA)
and other income estimates. Funds may link to it. The mandated shares of
the IRA (20% development, 5% DRRM, 5% GAD, 10% SK) are checked against the
year's active fund allocations.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .amounts import ZERO, CENT, to_amount, total
from .audit import AuditTrail, AuditEventType
from .enums import BudgetStatus, FundCategory
from .errors import InvalidStateError, NotFoundError, ValidationError
from .funds import AllocationStore, BUDGETS_TABLE, validate_fiscal_year
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, UniqueConstraintError


@dataclass
class FiscalYearBudget(StorageRecord):
    """Budget envelope for one fiscal year"""
    fiscal_year: int
    total_ira: Decimal
    estimated_local_income: Decimal = ZERO
    other_income: Decimal = ZERO
    status: BudgetStatus = BudgetStatus.DRAFT
    description: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def total_budget(self) -> Decimal:
        return self.total_ira + self.estimated_local_income + self.other_income


@dataclass
class MandateCheck:
    """Required vs. allocated amount for one mandated category"""
    category: FundCategory
    percentage: Decimal
    required: Decimal
    allocated: Decimal

    @property
    def compliant(self) -> bool:
        return self.allocated >= self.required

    @property
    def shortfall(self) -> Decimal:
        return max(self.required - self.allocated, ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "percentage": str(self.percentage),
            "required": str(self.required),
            "allocated": str(self.allocated),
            "shortfall": str(self.shortfall),
            "compliant": self.compliant,
        }

    def __str__(self) -> str:
        return (f"{self.category.value}: Required {self.required:,.2f} ({self.percentage}%), "
                f"Allocated {self.allocated:,.2f}")


def required_allocations(total_ira: Decimal) -> Dict[FundCategory, Decimal]:
    """Minimum allocation per mandated category for a given IRA"""
    total_ira = to_amount(total_ira, "total_ira")
    return {
        category: (total_ira * category.mandated_percentage / 100).quantize(CENT)
        for category in FundCategory.mandated()
    }


class FiscalYearBudgetManager:
    """
    Manages fiscal-year budgets and mandated-allocation checks
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, allocations: AllocationStore):
        self.storage = storage
        self.audit_trail = audit_trail
        self.allocations = allocations
        self.table_name = BUDGETS_TABLE
        self.logger = get_logger("budget_ledger.budgets")

        storage.register_unique(self.table_name, "fiscal_year")

    def create_budget(
        self,
        fiscal_year: int,
        total_ira: Decimal,
        estimated_local_income: Decimal = ZERO,
        other_income: Decimal = ZERO,
        description: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> FiscalYearBudget:
        """Create the budget for a fiscal year (one per year)"""
        fiscal_year = validate_fiscal_year(fiscal_year)
        now = datetime.now(timezone.utc)
        budget = FiscalYearBudget(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            fiscal_year=fiscal_year,
            total_ira=_non_negative(total_ira, "total_ira"),
            estimated_local_income=_non_negative(estimated_local_income, "estimated_local_income"),
            other_income=_non_negative(other_income, "other_income"),
            description=description,
            created_by=user_id
        )

        with self.storage.atomic():
            try:
                self._save_budget(budget)
            except UniqueConstraintError:
                raise ValidationError(f"A budget for fiscal year {fiscal_year} already exists",
                                      field="fiscal_year", value=fiscal_year)

            self.audit_trail.log_event(
                event_type=AuditEventType.BUDGET_CREATED,
                entity_type="budget",
                entity_id=budget.id,
                metadata={"fiscal_year": fiscal_year, "total_budget": str(budget.total_budget)},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Created budget for fiscal year {fiscal_year}",
                   user_id=user_id, action="create_budget", resource=f"budget:{budget.id}")
        return budget

    def get_budget(self, budget_id: str) -> FiscalYearBudget:
        data = self.storage.load(self.table_name, budget_id)
        if not data:
            raise NotFoundError("fiscal_year_budget", budget_id)
        return self._budget_from_dict(data)

    def get_budget_for_year(self, fiscal_year: int) -> Optional[FiscalYearBudget]:
        matches = self.storage.find(self.table_name, {"fiscal_year": fiscal_year})
        return self._budget_from_dict(matches[0]) if matches else None

    def list_budgets(self) -> List[FiscalYearBudget]:
        """All budgets, latest fiscal year first"""
        budgets = [self._budget_from_dict(d) for d in self.storage.load_all(self.table_name)]
        budgets.sort(key=lambda b: b.fiscal_year, reverse=True)
        return budgets

    def update_budget(
        self,
        budget_id: str,
        total_ira: Optional[Decimal] = None,
        estimated_local_income: Optional[Decimal] = None,
        other_income: Optional[Decimal] = None,
        status: Optional[BudgetStatus] = None,
        description: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> FiscalYearBudget:
        """Revise estimates or move the budget along its lifecycle; closed budgets are frozen"""
        with self.storage.atomic():
            budget = self.get_budget(budget_id)
            if budget.status == BudgetStatus.CLOSED:
                raise InvalidStateError(
                    f"Budget for fiscal year {budget.fiscal_year} is closed",
                    current_state=budget.status.value,
                    attempted_action="update"
                )

            changes: Dict[str, Any] = {}
            if total_ira is not None:
                budget.total_ira = _non_negative(total_ira, "total_ira")
                changes["total_ira"] = str(budget.total_ira)
            if estimated_local_income is not None:
                budget.estimated_local_income = _non_negative(estimated_local_income, "estimated_local_income")
                changes["estimated_local_income"] = str(budget.estimated_local_income)
            if other_income is not None:
                budget.other_income = _non_negative(other_income, "other_income")
                changes["other_income"] = str(budget.other_income)
            if status is not None:
                budget.status = BudgetStatus.parse(status, "status")
                changes["status"] = budget.status.value
            if description is not None:
                budget.description = description
                changes["description"] = description

            budget.updated_at = datetime.now(timezone.utc)
            self._save_budget(budget)

            self.audit_trail.log_event(
                event_type=AuditEventType.BUDGET_UPDATED,
                entity_type="budget",
                entity_id=budget.id,
                metadata={"fiscal_year": budget.fiscal_year, "changes": changes},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Updated budget for fiscal year {budget.fiscal_year}",
                   user_id=user_id, action="update_budget", resource=f"budget:{budget.id}")
        return budget

    def delete_budget(self, budget_id: str, user_id: Optional[str] = None) -> None:
        """Delete a budget no fund links to"""
        with self.storage.atomic():
            budget = self.get_budget(budget_id)
            linked = self.storage.find(self.allocations.funds_table, {"fiscal_year_budget_id": budget_id})
            if linked:
                raise InvalidStateError(
                    f"Budget for fiscal year {budget.fiscal_year} is referenced by {len(linked)} fund(s)",
                    current_state=budget.status.value,
                    attempted_action="delete",
                    fund_count=len(linked)
                )
            self.storage.delete(self.table_name, budget_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.BUDGET_DELETED,
                entity_type="budget",
                entity_id=budget_id,
                metadata={"fiscal_year": budget.fiscal_year},
                user_id=user_id
            )

        log_action(self.logger, "info", f"Deleted budget for fiscal year {budget.fiscal_year}",
                   user_id=user_id, action="delete_budget", resource=f"budget:{budget_id}")

    def required_allocations(self, fiscal_year: int) -> Dict[FundCategory, Decimal]:
        """Mandated minimums for a fiscal year's IRA"""
        return required_allocations(self._budget_or_raise(fiscal_year).total_ira)

    def mandated_allocation_status(self, fiscal_year: int) -> List[MandateCheck]:
        """Required vs. allocated for every mandated category"""
        budget = self._budget_or_raise(fiscal_year)
        allocated = {
            summary.category: summary.total_allocated
            for summary in self.allocations.get_category_summary(fiscal_year)
        }
        return [
            MandateCheck(
                category=category,
                percentage=category.mandated_percentage,
                required=required,
                allocated=total([allocated.get(category, ZERO)])
            )
            for category, required in required_allocations(budget.total_ira).items()
        ]

    def validate_mandated_allocations(self, fiscal_year: int) -> List[MandateCheck]:
        """Mandated categories whose allocation falls short; empty when compliant"""
        violations = [check for check in self.mandated_allocation_status(fiscal_year) if not check.compliant]
        for violation in violations:
            self.logger.warning("Mandated allocation shortfall for %s: %s", fiscal_year, violation)
        return violations

    def _budget_or_raise(self, fiscal_year: int) -> FiscalYearBudget:
        budget = self.get_budget_for_year(fiscal_year)
        if budget is None:
            raise NotFoundError("fiscal_year_budget", str(fiscal_year))
        return budget

    def _save_budget(self, budget: FiscalYearBudget) -> None:
        data = budget.to_dict()
        data["status"] = budget.status.value
        self.storage.save(self.table_name, budget.id, data)

    def _budget_from_dict(self, data: Dict) -> FiscalYearBudget:
        return FiscalYearBudget(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            fiscal_year=data["fiscal_year"],
            total_ira=Decimal(data["total_ira"]),
            estimated_local_income=Decimal(data["estimated_local_income"]),
            other_income=Decimal(data["other_income"]),
            status=BudgetStatus(data["status"]),
            description=data.get("description"),
            created_by=data.get("created_by")
        )


def _non_negative(value: Any, field: str) -> Decimal:
    amount = to_amount(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field, value=amount)
    return amount
