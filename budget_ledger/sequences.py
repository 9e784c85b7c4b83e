"""
Sequence Number Module

Human-readable, prefix-scoped document codes:

    {PREFIX}-{year}-NNN        fund codes (PREFIX from the fund category)
    {fund_code}-PNNN           particular codes
    TXN-{yyyymm}-NNNN          transaction numbers
    PR-{yyyy}-NNNN             purchase requests
    PO-{yyyy}-NNNN             purchase orders
    DV-{yyyy}-NNNN             disbursement vouchers
    COA-{year}-{period}-NNN    audit report numbers

The next code is the highest existing suffix for the prefix plus one. To
avoid duplicates the computation and the insert it precedes run inside one
``storage.atomic()`` block (``allocate_and_insert``); a unique-constraint
collision regenerates the code and only surfaces as ``ConflictError`` once
the retry budget is spent.
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional, TypeVar, Union
import logging

from .storage import StorageInterface, UniqueConstraintError
from .errors import ConflictError


T = TypeVar("T")

FUNDS_TABLE = "funds"
PARTICULARS_TABLE = "fund_particulars"
TRANSACTIONS_TABLE = "transactions"
REPORTS_TABLE = "coa_reports"

FUND_CODE_WIDTH = 3
PARTICULAR_CODE_WIDTH = 3
DOCUMENT_NUMBER_WIDTH = 4
REPORT_NUMBER_WIDTH = 3

DEFAULT_MAX_RETRIES = 5


def parse_suffix(code: str, prefix: str) -> Optional[int]:
    """Trailing integer of a code sharing ``prefix``, or None if it has none"""
    if not code.startswith(prefix):
        return None
    tail = code[len(prefix):]
    if not tail.isdigit():
        return None
    return int(tail)


def format_code(prefix: str, number: int, width: int) -> str:
    return f"{prefix}{number:0{width}d}"


def fund_code_prefix(category_prefix: str, fiscal_year: int) -> str:
    return f"{category_prefix}-{fiscal_year}-"


def particular_code_prefix(fund_code: str) -> str:
    return f"{fund_code}-P"


def transaction_number_prefix(on: Union[date, datetime]) -> str:
    return f"TXN-{on:%Y%m}-"


def document_number_prefix(kind: str, year: int) -> str:
    return f"{kind}-{year}-"


def report_number_prefix(fiscal_year: int, period: str) -> str:
    return f"COA-{fiscal_year}-{period}-"


class SequenceGenerator:
    """
    Derives the next code for a prefix from persisted records
    """

    def __init__(self, storage: StorageInterface, max_retries: int = DEFAULT_MAX_RETRIES):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.storage = storage
        self.max_retries = max_retries
        self.logger = logging.getLogger("budget_ledger.sequences")

    def highest_suffix(self, table: str, field: str, prefix: str) -> int:
        """Greatest numeric suffix among ``field`` values starting with ``prefix`` (0 if none)"""
        highest = 0
        for record in self.storage.load_all(table):
            value = record.get(field)
            if not isinstance(value, str):
                continue
            number = parse_suffix(value, prefix)
            if number is not None and number > highest:
                highest = number
        return highest

    def next_code(self, table: str, field: str, prefix: str, width: int, floor: int = 0) -> str:
        """Next code for a prefix; never at or below ``floor``"""
        with self.storage.atomic():
            number = max(self.highest_suffix(table, field, prefix), floor) + 1
        return format_code(prefix, number, width)

    def allocate_and_insert(
        self,
        table: str,
        field: str,
        prefix: str,
        width: int,
        insert: Callable[[str], T]
    ) -> T:
        """
        Generate a code and run ``insert(code)`` under one atomic block

        ``insert`` must persist the record carrying the code in ``table.field``.
        A UniqueConstraintError on that field skips past the colliding number
        and tries again, up to ``max_retries`` attempts.

        Raises:
            ConflictError: every attempt collided
        """
        floor = 0
        with self.storage.atomic():
            for attempt in range(1, self.max_retries + 1):
                code = self.next_code(table, field, prefix, width, floor)
                try:
                    return insert(code)
                except UniqueConstraintError as e:
                    if e.table != table or e.field != field:
                        raise
                    floor = parse_suffix(code, prefix) or floor
                    self.logger.warning(
                        "Sequence collision on %s.%s for %s (attempt %d of %d)",
                        table, field, code, attempt, self.max_retries
                    )

        raise ConflictError(
            f"Could not allocate a unique {field} for prefix {prefix} "
            f"after {self.max_retries} attempts",
            table=table,
            field=field,
            value=prefix,
            attempts=self.max_retries,
        )

    # Convenience generators for each document type

    def next_fund_code(self, category_prefix: str, fiscal_year: int) -> str:
        return self.next_code(FUNDS_TABLE, "fund_code",
                              fund_code_prefix(category_prefix, fiscal_year), FUND_CODE_WIDTH)

    def next_particular_code(self, fund_code: str) -> str:
        return self.next_code(PARTICULARS_TABLE, "particular_code",
                              particular_code_prefix(fund_code), PARTICULAR_CODE_WIDTH)

    def next_transaction_number(self, on: Optional[date] = None) -> str:
        on = on or datetime.now(timezone.utc)
        return self.next_code(TRANSACTIONS_TABLE, "transaction_number",
                              transaction_number_prefix(on), DOCUMENT_NUMBER_WIDTH)

    def next_pr_number(self, year: Optional[int] = None) -> str:
        return self._next_document_number("PR", "pr_number", year)

    def next_po_number(self, year: Optional[int] = None) -> str:
        return self._next_document_number("PO", "po_number", year)

    def next_dv_number(self, year: Optional[int] = None) -> str:
        return self._next_document_number("DV", "dv_number", year)

    def _next_document_number(self, kind: str, field: str, year: Optional[int]) -> str:
        year = year or datetime.now(timezone.utc).year
        return self.next_code(TRANSACTIONS_TABLE, field,
                              document_number_prefix(kind, year), DOCUMENT_NUMBER_WIDTH)
