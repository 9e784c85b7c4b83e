"""
Closed enumerations for the ledger

Stored and displayed values match the office's own labels ("For Approval",
"20% Development Fund"). External strings are validated with ``parse``.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, List, Tuple

from .errors import ValidationError


class LedgerEnum(Enum):
    """Enum with lenient parsing of external input"""

    @classmethod
    def parse(cls, value: Any, field: str = None):
        """
        Accept a member, its value, or its name (case-insensitive)

        Raises:
            ValidationError: value is not one of the members
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted or member.name.lower() == wanted.replace(" ", "_"):
                    return member
        allowed = ", ".join(member.value for member in cls)
        raise ValidationError(
            f"Invalid {field or cls.__name__}: {value!r}. Expected one of: {allowed}",
            field=field,
            value=value,
        )


class FundCategory(LedgerEnum):
    """Barangay budget categories (Local Government Code / COA classification)"""
    PERSONNEL_SERVICES = "Personal Services (PS)"
    MOOE = "MOOE"
    CAPITAL_OUTLAY = "Capital Outlay (CO)"
    DEVELOPMENT_FUND = "20% Development Fund"
    DRRM_FUND = "5% DRRM Fund"
    GAD_FUND = "GAD Fund"
    SK_FUND = "SK Fund"
    GENERAL_FUND = "General Fund"
    TRUST_FUND = "Trust Fund"
    SPECIAL_EDUCATION_FUND = "Special Education Fund"

    @property
    def code_prefix(self) -> str:
        """Prefix for generated fund codes"""
        return _CODE_PREFIXES.get(self, "OTH")

    @property
    def mandated_percentage(self) -> Decimal:
        """Share of the internal revenue allotment the law reserves for this category"""
        return _MANDATED_PERCENTAGES.get(self, Decimal("0"))

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def is_aip(self) -> bool:
        """Part of the Annual Investment Plan"""
        return self in AIP_CATEGORIES

    @classmethod
    def mandated(cls) -> List['FundCategory']:
        return [c for c in cls if c.mandated_percentage > 0]


_CODE_PREFIXES = {
    FundCategory.PERSONNEL_SERVICES: "PS",
    FundCategory.MOOE: "MOOE",
    FundCategory.CAPITAL_OUTLAY: "CO",
    FundCategory.DEVELOPMENT_FUND: "DEV",
    FundCategory.DRRM_FUND: "DRRM",
    FundCategory.GAD_FUND: "GAD",
    FundCategory.SK_FUND: "SK",
    FundCategory.GENERAL_FUND: "GF",
    FundCategory.TRUST_FUND: "TF",
    FundCategory.SPECIAL_EDUCATION_FUND: "SEF",
}

_MANDATED_PERCENTAGES = {
    FundCategory.DEVELOPMENT_FUND: Decimal("20"),  # RA 7160
    FundCategory.DRRM_FUND: Decimal("5"),          # RA 10121
    FundCategory.GAD_FUND: Decimal("5"),           # RA 9710
    FundCategory.SK_FUND: Decimal("10"),           # RA 10742
}

_DESCRIPTIONS = {
    FundCategory.PERSONNEL_SERVICES: "Salaries, wages, honoraria, and benefits of barangay officials and employees",
    FundCategory.MOOE: "Maintenance and Other Operating Expenses - office supplies, utilities, travel, repairs",
    FundCategory.CAPITAL_OUTLAY: "Purchase of equipment, furniture, and infrastructure projects",
    FundCategory.DEVELOPMENT_FUND: "Mandated 20% allocation for development projects (RA 7160)",
    FundCategory.DRRM_FUND: "Mandated 5% for Disaster Risk Reduction and Management (RA 10121)",
    FundCategory.GAD_FUND: "At least 5% for Gender and Development programs (RA 9710)",
    FundCategory.SK_FUND: "10% allocation for Sangguniang Kabataan programs (RA 10742)",
    FundCategory.GENERAL_FUND: "General purpose fund for day-to-day operations",
    FundCategory.TRUST_FUND: "Funds held in trust for specific purposes",
    FundCategory.SPECIAL_EDUCATION_FUND: "Fund for education-related expenses",
}

AIP_CATEGORIES: Tuple[FundCategory, ...] = (
    FundCategory.PERSONNEL_SERVICES,
    FundCategory.MOOE,
    FundCategory.CAPITAL_OUTLAY,
    FundCategory.DEVELOPMENT_FUND,
    FundCategory.DRRM_FUND,
    FundCategory.GAD_FUND,
    FundCategory.SK_FUND,
)


class TransactionType(LedgerEnum):
    EXPENDITURE = "Expenditure"
    APPROPRIATION = "Appropriation"
    ADJUSTMENT = "Adjustment"
    TRANSFER = "Transfer"
    REVERSAL = "Reversal"


class TransactionStatus(LedgerEnum):
    PENDING = "Pending"
    FOR_APPROVAL = "For Approval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"

    @property
    def is_committed(self) -> bool:
        """Counts toward fund utilization (an obligation)"""
        return self in (TransactionStatus.APPROVED, TransactionStatus.COMPLETED)


class BudgetStatus(LedgerEnum):
    DRAFT = "Draft"
    APPROVED = "Approved"
    CLOSED = "Closed"


class ReportType(LedgerEnum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUAL = "Annual"
    SPECIAL = "Special"


class ReportStatus(LedgerEnum):
    """Report lifecycle; members are declared in progression order"""
    DRAFT = "Draft"
    GENERATED = "Generated"
    REVIEWED = "Reviewed"
    SUBMITTED = "Submitted"
    ARCHIVED = "Archived"

    @property
    def rank(self) -> int:
        return list(ReportStatus).index(self)

    @property
    def is_locked(self) -> bool:
        """Submitted and archived reports are immutable"""
        return self in (ReportStatus.SUBMITTED, ReportStatus.ARCHIVED)
