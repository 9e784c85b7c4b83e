"""
Transaction Ledger Module

Owns budget transactions and their approval workflow:

    Pending --submit--> For Approval --approve--> Approved --complete--> Completed
       |                     |
       +--cancel--> Cancelled +--reject--> Rejected

Transactions can be edited only while Pending and deleted only while Pending
or Rejected. Entering Approved or Completed with an Expenditure recomputes
the fund's utilization inside the same atomic block as the status write.
"""

import calendar
from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import uuid

from .amounts import ZERO, to_amount, total
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .enums import TransactionStatus, TransactionType
from .errors import (
    InsufficientBalanceError, InvalidStateError, InvalidTransitionError,
    NotFoundError, ValidationError,
)
from .events import (
    DomainEvent, NotificationHub, UpdateType,
    transaction_created_event, status_changed_event,
)
from .funds import AllocationStore, Fund, FundParticular, required_text
from .logging_config import get_logger, log_action
from .sequences import (
    SequenceGenerator, TRANSACTIONS_TABLE, DOCUMENT_NUMBER_WIDTH, transaction_number_prefix,
)
from .storage import StorageInterface, StorageRecord


# Allowed status changes and the workflow event that names each one
TRANSITIONS: Dict[TransactionStatus, Dict[TransactionStatus, str]] = {
    TransactionStatus.PENDING: {
        TransactionStatus.FOR_APPROVAL: "submit",
        TransactionStatus.CANCELLED: "cancel",
    },
    TransactionStatus.FOR_APPROVAL: {
        TransactionStatus.APPROVED: "approve",
        TransactionStatus.REJECTED: "reject",
    },
    TransactionStatus.APPROVED: {
        TransactionStatus.COMPLETED: "complete",
    },
}

DELETABLE_STATUSES = (TransactionStatus.PENDING, TransactionStatus.REJECTED)

EDITABLE_FIELDS = frozenset({
    "fund_id", "fund_particular_id", "transaction_type", "description", "payee",
    "amount", "transaction_date", "pr_number", "po_number", "dv_number",
    "check_number", "check_date", "remarks",
})


@dataclass
class Transaction(StorageRecord):
    """
    A unit of financial movement against one fund
    """
    transaction_number: str
    fund_id: str
    transaction_type: TransactionType
    description: str
    amount: Decimal
    transaction_date: date
    status: TransactionStatus = TransactionStatus.PENDING
    fund_particular_id: Optional[str] = None
    payee: Optional[str] = None
    pr_number: Optional[str] = None   # Purchase request
    po_number: Optional[str] = None   # Purchase order
    dv_number: Optional[str] = None   # Disbursement voucher
    check_number: Optional[str] = None
    check_date: Optional[date] = None
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    @property
    def is_editable(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def is_deletable(self) -> bool:
        return self.status in DELETABLE_STATUSES

    @property
    def is_expenditure(self) -> bool:
        return self.transaction_type == TransactionType.EXPENDITURE

    @property
    def counts_toward_utilization(self) -> bool:
        """Committed expenditure: Expenditure in Approved or Completed"""
        return self.is_expenditure and self.status.is_committed


@dataclass
class TransactionFilter:
    """Criteria for list_transactions; unset fields match everything"""
    status: Optional[TransactionStatus] = None
    fund_id: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search_term: Optional[str] = None

    def matches(self, transaction: Transaction) -> bool:
        if self.status and transaction.status != TransactionStatus.parse(self.status, "status"):
            return False
        if self.fund_id and transaction.fund_id != self.fund_id:
            return False
        if self.transaction_type and transaction.transaction_type != TransactionType.parse(
                self.transaction_type, "transaction_type"):
            return False
        if self.start_date and transaction.transaction_date < self.start_date:
            return False
        if self.end_date and transaction.transaction_date > self.end_date:
            return False
        if self.search_term:
            term = self.search_term.lower()
            haystack = (
                transaction.transaction_number, transaction.description, transaction.payee,
                transaction.pr_number, transaction.po_number, transaction.dv_number,
            )
            if not any(value and term in value.lower() for value in haystack):
                return False
        return True


@dataclass
class MonthlySummary:
    """One month of a fund's committed activity"""
    month: int
    month_name: str
    transaction_count: int
    total_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "month_name": self.month_name,
            "transaction_count": self.transaction_count,
            "total_amount": str(self.total_amount),
        }


@dataclass
class TransactionStatistics:
    """Counts per status and committed expenditure total for one year"""
    year: int
    total_transactions: int
    status_counts: Dict[TransactionStatus, int] = field(default_factory=dict)
    total_expenditures: Decimal = ZERO

    def count(self, status: TransactionStatus) -> int:
        return self.status_counts.get(status, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "total_transactions": self.total_transactions,
            "status_counts": {status.value: self.count(status) for status in TransactionStatus},
            "total_expenditures": str(self.total_expenditures),
        }


class TransactionLedger:
    """
    Creates transactions, drives the approval workflow and keeps fund
    utilization in step with committed expenditures
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocations: AllocationStore,
        audit_trail: AuditTrail,
        notification_hub: Optional[NotificationHub] = None,
        sequences: Optional[SequenceGenerator] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.allocations = allocations
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.sequences = sequences or allocations.sequences
        self.table_name = TRANSACTIONS_TABLE
        self.logger = get_logger("budget_ledger.transactions")

        self._notification_hub = notification_hub

        storage.register_unique(self.table_name, "transaction_number")

    def _publish(self, event) -> None:
        if self._notification_hub:
            self._notification_hub.publish(event)

    def create_transaction(
        self,
        fund_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str,
        transaction_date: Optional[date] = None,
        fund_particular_id: Optional[str] = None,
        payee: Optional[str] = None,
        pr_number: Optional[str] = None,
        po_number: Optional[str] = None,
        dv_number: Optional[str] = None,
        check_number: Optional[str] = None,
        check_date: Optional[date] = None,
        remarks: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Transaction:
        """
        Record a new transaction in Pending status

        Expenditures are checked against the fund's remaining balance before
        anything is written.

        Raises:
            ValidationError: missing description, non-positive amount, inactive
                fund or particular, particular of another fund
            InsufficientBalanceError: expenditure larger than the remaining balance
            NotFoundError: unknown fund or particular
        """
        transaction_type = TransactionType.parse(transaction_type, "transaction_type")
        amount = _positive_amount(amount)
        description = required_text(description, "description")
        transaction_date = _to_date(transaction_date, "transaction_date") or date.today()
        check_date = _to_date(check_date, "check_date")
        now = datetime.now(timezone.utc)

        with self.storage.atomic():
            fund, particular = self._validate_target(fund_id, fund_particular_id)
            if transaction_type == TransactionType.EXPENDITURE:
                self._check_balance(fund, amount, particular)

            def insert(number: str) -> Transaction:
                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    transaction_number=number,
                    fund_id=fund_id,
                    transaction_type=transaction_type,
                    description=description,
                    amount=amount,
                    transaction_date=transaction_date,
                    fund_particular_id=fund_particular_id,
                    payee=payee,
                    pr_number=pr_number,
                    po_number=po_number,
                    dv_number=dv_number,
                    check_number=check_number,
                    check_date=check_date,
                    remarks=remarks,
                    created_by=user_id
                )
                self._save_transaction(transaction)
                return transaction

            transaction = self.sequences.allocate_and_insert(
                self.table_name, "transaction_number",
                transaction_number_prefix(now), DOCUMENT_NUMBER_WIDTH,
                insert
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CREATED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "transaction_number": transaction.transaction_number,
                    "fund_id": fund_id,
                    "transaction_type": transaction_type.value,
                    "amount": str(amount)
                },
                user_id=user_id
            )

        log_action(self.logger, "info", f"Created transaction {transaction.transaction_number}",
                   user_id=user_id, action="create_transaction", resource=f"transaction:{transaction.id}",
                   extra={"fund_code": fund.fund_code, "amount": str(amount)})
        self._publish(transaction_created_event(transaction))
        return transaction

    def update_transaction(self, transaction_id: str, user_id: Optional[str] = None,
                           **changes: Any) -> Transaction:
        """
        Edit a Pending transaction

        Accepts any of EDITABLE_FIELDS as keyword arguments. Expenditures are
        re-checked against the (possibly new) fund's remaining balance.

        Raises:
            InvalidStateError: transaction is no longer Pending
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                                  field=sorted(unknown)[0])

        with self.storage.atomic():
            transaction = self.get_transaction(transaction_id)
            if not transaction.is_editable:
                raise InvalidStateError(
                    f"Only pending transactions can be modified; "
                    f"{transaction.transaction_number} is {transaction.status.value}",
                    current_state=transaction.status.value,
                    attempted_action="edit"
                )

            if "transaction_type" in changes:
                changes["transaction_type"] = TransactionType.parse(changes["transaction_type"], "transaction_type")
            if "amount" in changes:
                changes["amount"] = _positive_amount(changes["amount"])
            if "description" in changes:
                changes["description"] = required_text(changes["description"], "description")
            if "transaction_date" in changes:
                changes["transaction_date"] = _to_date(changes["transaction_date"], "transaction_date") or date.today()
            if "check_date" in changes:
                changes["check_date"] = _to_date(changes["check_date"], "check_date")

            for name, value in changes.items():
                setattr(transaction, name, value)

            fund, particular = self._validate_target(transaction.fund_id, transaction.fund_particular_id)
            if transaction.is_expenditure:
                self._check_balance(fund, transaction.amount, particular)

            transaction.updated_at = datetime.now(timezone.utc)
            self._save_transaction(transaction)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_UPDATED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "transaction_number": transaction.transaction_number,
                    "fields": sorted(changes)
                },
                user_id=user_id
            )

        log_action(self.logger, "info", f"Updated transaction {transaction.transaction_number}",
                   user_id=user_id, action="update_transaction", resource=f"transaction:{transaction.id}",
                   extra={"fields": sorted(changes)})
        return transaction

    def update_status(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        approver_id: Optional[str] = None,
        user_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Transaction:
        """
        Move a transaction along the approval workflow

        Args:
            transaction_id: Transaction to change
            new_status: Requested status
            approver_id: Recorded as approved_by when entering Approved
                (defaults to user_id)
            user_id: Acting user
            reason: Optional note kept in the audit trail (e.g. rejection reason)

        Raises:
            InvalidTransitionError: the change is not in TRANSITIONS; nothing is modified
            InsufficientBalanceError: approving an expenditure the fund can no longer cover
        """
        new_status = TransactionStatus.parse(new_status, "status")

        with self.storage.atomic():
            transaction = self.get_transaction(transaction_id)
            old_status = transaction.status

            if new_status not in TRANSITIONS.get(old_status, {}):
                raise InvalidTransitionError("transaction", old_status.value, new_status.value)

            now = datetime.now(timezone.utc)
            if new_status == TransactionStatus.APPROVED:
                if transaction.is_expenditure:
                    particular = None
                    if transaction.fund_particular_id:
                        particular = self.allocations.get_particular(transaction.fund_particular_id)
                    fund = self.allocations.get_fund(transaction.fund_id)
                    self._check_balance(fund, transaction.amount, particular)
                transaction.approved_by = approver_id or user_id
                transaction.approved_at = now

            transaction.status = new_status
            transaction.updated_at = now
            self._save_transaction(transaction)

            fund = None
            if transaction.counts_toward_utilization:
                fund = self.allocations.recompute_utilization(transaction.fund_id, user_id=user_id, notify=False)

            metadata = {
                "transaction_number": transaction.transaction_number,
                "old_status": old_status.value,
                "new_status": new_status.value,
                "event": TRANSITIONS[old_status][new_status]
            }
            if reason:
                metadata["reason"] = reason
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_STATUS_CHANGED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata=metadata,
                user_id=user_id or approver_id
            )

        log_action(self.logger, "info",
                   f"Transaction {transaction.transaction_number}: {old_status.value} -> {new_status.value}",
                   user_id=user_id or approver_id, action="update_transaction_status",
                   resource=f"transaction:{transaction.id}")

        if fund is not None:
            self.allocations.notify_fund_updated(fund, UpdateType.MODIFIED)
        self._publish(status_changed_event(transaction, old_status))
        if self._notification_hub:
            self._notification_hub.emit(
                DomainEvent.DASHBOARD_REFRESH, "dashboard", transaction.fund_id,
                {"refresh_funds": True, "refresh_transactions": True, "refresh_charts": True}
            )
        return transaction

    def submit(self, transaction_id: str, user_id: Optional[str] = None) -> Transaction:
        """Pending -> For Approval"""
        return self.update_status(transaction_id, TransactionStatus.FOR_APPROVAL, user_id=user_id)

    def approve(self, transaction_id: str, approver_id: Optional[str] = None) -> Transaction:
        """For Approval -> Approved"""
        return self.update_status(transaction_id, TransactionStatus.APPROVED,
                                  approver_id=approver_id, user_id=approver_id)

    def reject(self, transaction_id: str, user_id: Optional[str] = None,
               reason: Optional[str] = None) -> Transaction:
        """For Approval -> Rejected"""
        return self.update_status(transaction_id, TransactionStatus.REJECTED, user_id=user_id, reason=reason)

    def complete(self, transaction_id: str, user_id: Optional[str] = None) -> Transaction:
        """Approved -> Completed (disbursement confirmed)"""
        return self.update_status(transaction_id, TransactionStatus.COMPLETED, user_id=user_id)

    def cancel(self, transaction_id: str, user_id: Optional[str] = None,
               reason: Optional[str] = None) -> Transaction:
        """Pending -> Cancelled"""
        return self.update_status(transaction_id, TransactionStatus.CANCELLED, user_id=user_id, reason=reason)

    def delete_transaction(self, transaction_id: str, user_id: Optional[str] = None) -> None:
        """Remove a Pending or Rejected transaction"""
        with self.storage.atomic():
            transaction = self.get_transaction(transaction_id)
            if not transaction.is_deletable:
                raise InvalidStateError(
                    f"Only pending or rejected transactions can be deleted; "
                    f"{transaction.transaction_number} is {transaction.status.value}",
                    current_state=transaction.status.value,
                    attempted_action="delete"
                )
            self.storage.delete(self.table_name, transaction_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_DELETED,
                entity_type="transaction",
                entity_id=transaction_id,
                metadata={
                    "transaction_number": transaction.transaction_number,
                    "status": transaction.status.value,
                    "amount": str(transaction.amount)
                },
                user_id=user_id
            )

        log_action(self.logger, "info", f"Deleted transaction {transaction.transaction_number}",
                   user_id=user_id, action="delete_transaction", resource=f"transaction:{transaction_id}")

    # Queries

    def get_transaction(self, transaction_id: str) -> Transaction:
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise NotFoundError("transaction", transaction_id)
        return self._transaction_from_dict(data)

    def get_by_number(self, transaction_number: str) -> Optional[Transaction]:
        matches = self.storage.find(self.table_name, {"transaction_number": transaction_number})
        return self._transaction_from_dict(matches[0]) if matches else None

    def list_transactions(self, transaction_filter: Optional[TransactionFilter] = None) -> List[Transaction]:
        """Matching transactions, newest transaction date first"""
        transaction_filter = transaction_filter or TransactionFilter()
        filters = {"fund_id": transaction_filter.fund_id} if transaction_filter.fund_id else {}
        transactions = [
            t for t in (self._transaction_from_dict(d) for d in self.storage.find(self.table_name, filters))
            if transaction_filter.matches(t)
        ]
        transactions.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        return transactions

    def list_for_fund(self, fund_id: str) -> List[Transaction]:
        return self.list_transactions(TransactionFilter(fund_id=fund_id))

    def get_pending_approvals(self) -> List[Transaction]:
        """Approval queue, oldest submission first"""
        transactions = [
            self._transaction_from_dict(d)
            for d in self.storage.find(self.table_name, {"status": TransactionStatus.FOR_APPROVAL.value})
        ]
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def get_recent(self, count: Optional[int] = None) -> List[Transaction]:
        """Most recently created transactions"""
        count = count if count is not None else self.config.recent_transactions_limit
        transactions = [self._transaction_from_dict(d) for d in self.storage.load_all(self.table_name)]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions[:count]

    def get_monthly_summary(self, fund_id: str, year: int) -> List[MonthlySummary]:
        """Twelve rows of committed activity for a fund, January first"""
        committed = [
            t for t in self.list_for_fund(fund_id)
            if t.transaction_date.year == year and t.status.is_committed
        ]
        return [
            MonthlySummary(
                month=month,
                month_name=calendar.month_name[month],
                transaction_count=sum(1 for t in committed if t.transaction_date.month == month),
                total_amount=total(
                    t.amount for t in committed
                    if t.transaction_date.month == month and t.is_expenditure
                )
            )
            for month in range(1, 13)
        ]

    def get_statistics(self, year: int) -> TransactionStatistics:
        """Counts per status and committed expenditure total for transactions dated in ``year``"""
        transactions = [
            self._transaction_from_dict(d) for d in self.storage.load_all(self.table_name)
        ]
        transactions = [t for t in transactions if t.transaction_date.year == year]

        counts: Dict[TransactionStatus, int] = {}
        for t in transactions:
            counts[t.status] = counts.get(t.status, 0) + 1

        return TransactionStatistics(
            year=year,
            total_transactions=len(transactions),
            status_counts=counts,
            total_expenditures=total(t.amount for t in transactions if t.counts_toward_utilization)
        )

    def next_transaction_number(self) -> str:
        return self.sequences.next_transaction_number()

    def next_pr_number(self) -> str:
        return self.sequences.next_pr_number()

    def next_po_number(self) -> str:
        return self.sequences.next_po_number()

    def next_dv_number(self) -> str:
        return self.sequences.next_dv_number()

    # Internal helpers

    def _validate_target(self, fund_id: str,
                         fund_particular_id: Optional[str]) -> Tuple[Fund, Optional[FundParticular]]:
        particular = None
        fund = self.allocations.get_fund(fund_id)
        if not fund.is_active:
            raise ValidationError(f"Fund {fund.fund_code} is inactive", field="fund_id", value=fund_id)
        if fund_particular_id:
            particular = self.allocations.get_particular(fund_particular_id)
            if particular.fund_id != fund_id:
                raise ValidationError(
                    f"Particular {particular.particular_code} does not belong to fund {fund.fund_code}",
                    field="fund_particular_id", value=fund_particular_id
                )
            if not particular.is_active:
                raise ValidationError(f"Particular {particular.particular_code} is inactive",
                                      field="fund_particular_id", value=fund_particular_id)
        return fund, particular

    def _check_balance(self, fund: Fund, amount: Decimal,
                       particular: Optional[FundParticular] = None) -> None:
        if fund.remaining_balance < amount:
            raise InsufficientBalanceError(fund.fund_code, fund.remaining_balance, amount)
        if particular is not None and particular.remaining_balance < amount:
            raise InsufficientBalanceError(particular.particular_code, particular.remaining_balance, amount)

    def _save_transaction(self, transaction: Transaction) -> None:
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result["transaction_type"] = transaction.transaction_type.value
        result["status"] = transaction.status.value
        result["transaction_date"] = transaction.transaction_date.isoformat()
        result["check_date"] = transaction.check_date.isoformat() if transaction.check_date else None
        result["approved_at"] = transaction.approved_at.isoformat() if transaction.approved_at else None
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            transaction_number=data["transaction_number"],
            fund_id=data["fund_id"],
            transaction_type=TransactionType(data["transaction_type"]),
            description=data["description"],
            amount=Decimal(data["amount"]),
            transaction_date=date.fromisoformat(data["transaction_date"]),
            status=TransactionStatus(data["status"]),
            fund_particular_id=data.get("fund_particular_id"),
            payee=data.get("payee"),
            pr_number=data.get("pr_number"),
            po_number=data.get("po_number"),
            dv_number=data.get("dv_number"),
            check_number=data.get("check_number"),
            check_date=date.fromisoformat(data["check_date"]) if data.get("check_date") else None,
            remarks=data.get("remarks"),
            created_by=data.get("created_by"),
            approved_by=data.get("approved_by"),
            approved_at=datetime.fromisoformat(data["approved_at"]) if data.get("approved_at") else None
        )


def _positive_amount(value: Any) -> Decimal:
    amount = to_amount(value, "amount")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount", value=amount)
    return amount


def _to_date(value: Any, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date for {field}: {value!r}", field=field, value=value)
