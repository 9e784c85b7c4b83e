"""
Test suite for the transaction ledger

Covers creation with balance checks, the approval workflow, utilization
tracking, editing and deletion rules, and the query surface.
"""

import threading

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

from budget_ledger.audit import AuditTrail, AuditEventType
from budget_ledger.enums import FundCategory, TransactionStatus, TransactionType
from budget_ledger.errors import (
    InsufficientBalanceError, InvalidStateError, InvalidTransitionError,
    NotFoundError, ValidationError
)
from budget_ledger.events import DomainEvent, NotificationHub
from budget_ledger.funds import AllocationStore
from budget_ledger.storage import InMemoryStorage, SQLiteStorage
from budget_ledger.transactions import TransactionFilter, TransactionLedger


class LedgerTestCase:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.hub = NotificationHub()
        self.allocations = AllocationStore(self.storage, self.audit_trail, self.hub)
        self.ledger = TransactionLedger(self.storage, self.allocations, self.audit_trail, self.hub)
        self.fund = self.allocations.create_fund(
            "Maintenance and Other Operating Expenses", FundCategory.MOOE, 2025, Decimal("800000.00")
        )

    def expenditure(self, amount, **kwargs):
        kwargs.setdefault("description", "Office supplies")
        return self.ledger.create_transaction(self.fund.id, TransactionType.EXPENDITURE, amount, **kwargs)

    def approved(self, amount, **kwargs):
        tx = self.expenditure(amount, **kwargs)
        self.ledger.submit(tx.id)
        return self.ledger.approve(tx.id, approver_id="captain")


class TestWorkflowScenarios(LedgerTestCase):
    """End-to-end fund utilization scenarios"""

    def test_approving_expenditure_updates_utilization(self):
        assert self.fund.fund_code == "MOOE-2025-001"

        tx = self.expenditure("50000.00")
        assert tx.status == TransactionStatus.PENDING

        self.ledger.submit(tx.id)
        approved = self.ledger.approve(tx.id, approver_id="captain")

        fund = self.allocations.get_fund(self.fund.id)
        assert approved.status == TransactionStatus.APPROVED
        assert approved.approved_by == "captain"
        assert approved.approved_at is not None
        assert fund.utilized_amount == Decimal("50000.00")
        assert fund.remaining_balance == Decimal("750000.00")

    def test_expenditure_over_remaining_balance_rejected(self):
        self.approved("50000.00")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            self.expenditure("760000.00")

        assert exc_info.value.available == Decimal("750000.00")
        assert exc_info.value.requested == Decimal("760000.00")
        assert exc_info.value.fund_code == "MOOE-2025-001"
        assert isinstance(exc_info.value, ValidationError)
        assert len(self.ledger.list_for_fund(self.fund.id)) == 1

    def test_illegal_transition_leaves_state_unchanged(self):
        tx = self.expenditure("50000.00")

        with pytest.raises(InvalidStateError) as exc_info:
            self.ledger.update_status(tx.id, TransactionStatus.COMPLETED)

        assert isinstance(exc_info.value, InvalidTransitionError)
        assert exc_info.value.current_status == "Pending"
        assert self.ledger.get_transaction(tx.id).status == TransactionStatus.PENDING
        assert self.allocations.get_fund(self.fund.id).utilized_amount == Decimal("0.00")

    def test_utilization_matches_committed_expenditures(self):
        self.approved("100.00")
        completed = self.approved("200.00")
        self.ledger.complete(completed.id)
        rejected = self.expenditure("400.00")
        self.ledger.submit(rejected.id)
        self.ledger.reject(rejected.id, reason="No canvass")
        cancelled = self.expenditure("800.00")
        self.ledger.cancel(cancelled.id)

        fund = self.allocations.get_fund(self.fund.id)

        assert fund.utilized_amount == Decimal("300.00")
        assert fund.remaining_balance == fund.allocated_amount - fund.utilized_amount

    def test_approval_rechecks_balance(self):
        small = self.allocations.create_fund("Small", FundCategory.MOOE, 2025, Decimal("100.00"))
        first = self.ledger.create_transaction(small.id, TransactionType.EXPENDITURE, Decimal("80.00"), "A")
        second = self.ledger.create_transaction(small.id, TransactionType.EXPENDITURE, Decimal("80.00"), "B")
        for tx in (first, second):
            self.ledger.submit(tx.id)
        self.ledger.approve(first.id)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            self.ledger.approve(second.id)

        assert exc_info.value.available == Decimal("20.00")
        assert self.ledger.get_transaction(second.id).status == TransactionStatus.FOR_APPROVAL
        assert self.allocations.get_fund(small.id).utilized_amount == Decimal("80.00")


class TestTransactionCreation(LedgerTestCase):

    def test_numbers_are_sequential(self):
        first = self.expenditure("1.00")
        second = self.expenditure("1.00")

        prefix = f"TXN-{datetime.now(timezone.utc):%Y%m}-"
        assert first.transaction_number == prefix + "0001"
        assert second.transaction_number == prefix + "0002"
        assert self.ledger.next_transaction_number() == prefix + "0003"

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            self.expenditure("0")
        with pytest.raises(ValidationError):
            self.expenditure("-5.00")
        with pytest.raises(ValidationError):
            self.expenditure("abc")

    def test_description_required(self):
        with pytest.raises(ValidationError) as exc_info:
            self.expenditure("10.00", description="")
        assert exc_info.value.field == "description"

    def test_unknown_fund(self):
        with pytest.raises(NotFoundError):
            self.ledger.create_transaction("missing", TransactionType.EXPENDITURE, Decimal("1.00"), "X")

    def test_particular_must_belong_to_fund(self):
        other = self.allocations.create_fund("Other", FundCategory.MOOE, 2025, Decimal("100.00"))
        particular = self.allocations.create_particular(other.id, "Ink", Decimal("50.00"))

        with pytest.raises(ValidationError) as exc_info:
            self.expenditure("10.00", fund_particular_id=particular.id)
        assert exc_info.value.field == "fund_particular_id"

    def test_expenditure_over_particular_balance_rejected(self):
        paper = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("100.00"))

        with pytest.raises(InsufficientBalanceError) as exc_info:
            self.expenditure("500.00", fund_particular_id=paper.id)

        assert exc_info.value.fund_code == "MOOE-2025-001-P001"
        assert exc_info.value.available == Decimal("100.00")
        assert self.ledger.list_transactions() == []

    def test_non_expenditure_skips_balance_check(self):
        tx = self.ledger.create_transaction(self.fund.id, TransactionType.APPROPRIATION,
                                            Decimal("5000000.00"), "Supplemental budget")
        assert tx.status == TransactionStatus.PENDING

    def test_created_event_published_after_save(self):
        handler = Mock()
        self.hub.subscribe(DomainEvent.TRANSACTION_CREATED, handler)

        tx = self.expenditure("10.00", payee="ABC Trading", pr_number="PR-2025-0001")

        event = handler.call_args[0][0]
        assert event.entity_id == tx.id
        assert event.data["transaction_number"] == tx.transaction_number
        assert self.ledger.get_by_number(tx.transaction_number).payee == "ABC Trading"


class TestStatusChanges(LedgerTestCase):

    def test_full_workflow(self):
        tx = self.expenditure("10.00")
        assert self.ledger.submit(tx.id).status == TransactionStatus.FOR_APPROVAL
        assert self.ledger.approve(tx.id).status == TransactionStatus.APPROVED
        assert self.ledger.complete(tx.id).status == TransactionStatus.COMPLETED

    @pytest.mark.parametrize("target", [
        TransactionStatus.APPROVED, TransactionStatus.REJECTED, TransactionStatus.COMPLETED,
    ])
    def test_pending_cannot_skip_review(self, target):
        tx = self.expenditure("10.00")
        with pytest.raises(InvalidTransitionError):
            self.ledger.update_status(tx.id, target)

    def test_terminal_states(self):
        tx = self.approved("10.00")
        self.ledger.complete(tx.id)
        with pytest.raises(InvalidTransitionError):
            self.ledger.cancel(tx.id)

        cancelled = self.expenditure("10.00")
        self.ledger.cancel(cancelled.id)
        with pytest.raises(InvalidTransitionError):
            self.ledger.submit(cancelled.id)

    def test_status_accepts_strings(self):
        tx = self.expenditure("10.00")
        assert self.ledger.update_status(tx.id, "For Approval").status == TransactionStatus.FOR_APPROVAL

    def test_approval_rechecks_particular_balance(self):
        paper = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("100.00"))
        first = self.expenditure("60.00", fund_particular_id=paper.id)
        second = self.expenditure("60.00", fund_particular_id=paper.id)
        self.ledger.submit(first.id)
        self.ledger.submit(second.id)
        self.ledger.approve(first.id)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            self.ledger.approve(second.id)

        assert exc_info.value.available == Decimal("40.00")
        assert self.ledger.get_transaction(second.id).status == TransactionStatus.FOR_APPROVAL
        paper = self.allocations.get_particular(paper.id)
        assert paper.utilized_amount == Decimal("60.00")
        assert paper.remaining_balance >= 0

        with pytest.raises(ValidationError):
            self.ledger.update_status(tx.id, "Paid")

    def test_event_order_on_approval(self):
        tx = self.expenditure("10.00")
        self.ledger.submit(tx.id)
        received = []
        self.hub.subscribe_all(lambda event: received.append(event.event_type))

        self.ledger.approve(tx.id)

        assert received == [
            DomainEvent.FUND_UPDATED,
            DomainEvent.TRANSACTION_STATUS_CHANGED,
            DomainEvent.DASHBOARD_REFRESH,
        ]

    def test_subscriber_failure_does_not_roll_back(self):
        self.hub.subscribe(DomainEvent.TRANSACTION_STATUS_CHANGED, Mock(side_effect=RuntimeError("UI gone")))

        tx = self.approved("10.00")

        assert self.ledger.get_transaction(tx.id).status == TransactionStatus.APPROVED

    def test_status_changes_are_audited(self):
        tx = self.expenditure("10.00")
        self.ledger.submit(tx.id, user_id="clerk")
        self.ledger.reject(tx.id, user_id="captain", reason="Incomplete documents")

        events = self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_STATUS_CHANGED)

        assert [e.metadata["event"] for e in events] == ["submit", "reject"]
        assert events[1].metadata["reason"] == "Incomplete documents"
        assert events[1].user_id == "captain"


class TestEditingAndDeletion(LedgerTestCase):

    def test_edit_pending_transaction(self):
        tx = self.expenditure("10.00")

        updated = self.ledger.update_transaction(tx.id, amount="25.50", payee="ABC Trading",
                                                 transaction_date="2025-02-03")

        assert updated.amount == Decimal("25.50")
        assert updated.payee == "ABC Trading"
        assert updated.transaction_date == date(2025, 2, 3)

    def test_edit_rechecks_balance(self):
        tx = self.expenditure("10.00")
        with pytest.raises(InsufficientBalanceError):
            self.ledger.update_transaction(tx.id, amount="800000.01")
        assert self.ledger.get_transaction(tx.id).amount == Decimal("10.00")

    def test_edit_rechecks_particular_balance(self):
        paper = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("100.00"))
        tx = self.expenditure("10.00", fund_particular_id=paper.id)

        with pytest.raises(InsufficientBalanceError):
            self.ledger.update_transaction(tx.id, amount="100.01")
        assert self.ledger.get_transaction(tx.id).amount == Decimal("10.00")

    def test_edit_after_pending_rejected(self):
        tx = self.expenditure("10.00")
        self.ledger.submit(tx.id)

        with pytest.raises(InvalidStateError) as exc_info:
            self.ledger.update_transaction(tx.id, amount="20.00")
        assert exc_info.value.current_state == "For Approval"

    def test_edit_unknown_field_rejected(self):
        tx = self.expenditure("10.00")
        with pytest.raises(ValidationError):
            self.ledger.update_transaction(tx.id, status="Approved")

    def test_delete_pending_and_rejected(self):
        pending = self.expenditure("10.00")
        rejected = self.expenditure("10.00")
        self.ledger.submit(rejected.id)
        self.ledger.reject(rejected.id)

        self.ledger.delete_transaction(pending.id)
        self.ledger.delete_transaction(rejected.id)

        assert self.ledger.list_transactions() == []

    def test_delete_approved_rejected(self):
        tx = self.approved("10.00")
        with pytest.raises(InvalidStateError):
            self.ledger.delete_transaction(tx.id)


class TestQueries(LedgerTestCase):

    def test_filtering_and_search(self):
        self.expenditure("10.00", payee="ABC Trading", transaction_date=date(2025, 1, 10))
        self.expenditure("20.00", description="Fuel", transaction_date=date(2025, 2, 10), dv_number="DV-2025-0007")
        self.ledger.create_transaction(self.fund.id, TransactionType.APPROPRIATION, Decimal("5.00"),
                                       "Supplemental", transaction_date=date(2025, 3, 1))

        assert len(self.ledger.list_transactions(TransactionFilter(search_term="abc"))) == 1
        assert len(self.ledger.list_transactions(TransactionFilter(search_term="dv-2025-0007"))) == 1
        assert len(self.ledger.list_transactions(TransactionFilter(transaction_type="Expenditure"))) == 2
        february = self.ledger.list_transactions(
            TransactionFilter(start_date=date(2025, 2, 1), end_date=date(2025, 2, 28))
        )
        assert [t.description for t in february] == ["Fuel"]

        newest_first = [t.transaction_date for t in self.ledger.list_transactions()]
        assert newest_first == sorted(newest_first, reverse=True)

    def test_pending_approvals_oldest_first(self):
        first = self.expenditure("10.00")
        second = self.expenditure("10.00")
        self.ledger.submit(second.id)
        self.ledger.submit(first.id)

        queue = self.ledger.get_pending_approvals()

        assert [t.id for t in queue] == [first.id, second.id]

    def test_recent(self):
        for _ in range(3):
            self.expenditure("1.00")

        assert len(self.ledger.get_recent(2)) == 2
        assert len(self.ledger.get_recent()) == 3

    def test_monthly_summary_and_statistics(self):
        self.approved("100.00", transaction_date=date(2025, 1, 15))
        self.approved("50.00", transaction_date=date(2025, 3, 2))
        self.expenditure("999.00", transaction_date=date(2025, 3, 3))

        months = self.ledger.get_monthly_summary(self.fund.id, 2025)
        assert len(months) == 12
        assert months[0].month_name == "January"
        assert months[0].total_amount == Decimal("100.00")
        assert months[2].transaction_count == 1
        assert months[1].total_amount == Decimal("0.00")

        stats = self.ledger.get_statistics(2025)
        assert stats.total_transactions == 3
        assert stats.count(TransactionStatus.APPROVED) == 2
        assert stats.count(TransactionStatus.PENDING) == 1
        assert stats.total_expenditures == Decimal("150.00")


class TestConcurrentNumbering:

    @pytest.fixture(params=["memory", "sqlite"])
    def ledger(self, request, tmp_path):
        if request.param == "memory":
            storage = InMemoryStorage()
        else:
            storage = SQLiteStorage(tmp_path / "ledger.db")
        allocations = AllocationStore(storage, AuditTrail(storage))
        ledger = TransactionLedger(storage, allocations, allocations.audit_trail)
        yield ledger
        storage.close()

    def test_concurrent_creates_get_distinct_numbers(self, ledger):
        fund = ledger.allocations.create_fund("Supplies", FundCategory.MOOE, 2025, Decimal("1000000.00"))
        numbers = []
        errors = []

        def create_transactions():
            try:
                for _ in range(10):
                    tx = ledger.create_transaction(fund.id, TransactionType.EXPENDITURE, "1.00", "Paper")
                    numbers.append(tx.transaction_number)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_transactions) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(numbers) == 80
        assert len(set(numbers)) == 80
