"""
Test suite for funds, particulars and utilization accounting
"""

import pytest
from decimal import Decimal
from unittest.mock import Mock

from budget_ledger.audit import AuditTrail, AuditEventType
from budget_ledger.enums import FundCategory, TransactionType
from budget_ledger.errors import NotFoundError, ValidationError
from budget_ledger.events import DomainEvent, NotificationHub
from budget_ledger.funds import AllocationStore, DeleteOutcome
from budget_ledger.storage import InMemoryStorage
from budget_ledger.transactions import TransactionLedger


class TestAllocationStore:
    """Fund lifecycle and utilization"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.hub = NotificationHub()
        self.allocations = AllocationStore(self.storage, self.audit_trail, self.hub)
        self.ledger = TransactionLedger(self.storage, self.allocations, self.audit_trail, self.hub)

    def _fund(self, name="Office Supplies", category=FundCategory.MOOE, amount="800000.00", **kwargs):
        return self.allocations.create_fund(name, category, 2025, Decimal(amount), **kwargs)

    def _approved_expenditure(self, fund, amount, **kwargs):
        tx = self.ledger.create_transaction(fund.id, TransactionType.EXPENDITURE, Decimal(amount),
                                            "Purchase", **kwargs)
        self.ledger.submit(tx.id)
        return self.ledger.approve(tx.id, approver_id="treasurer")

    def test_create_fund_generates_code(self):
        fund = self._fund(user_id="clerk")

        assert fund.fund_code == "MOOE-2025-001"
        assert fund.utilized_amount == Decimal("0.00")
        assert fund.remaining_balance == Decimal("800000.00")
        assert fund.created_by == "clerk"
        assert fund.is_active

    def test_codes_increase_per_category_and_year(self):
        first = self._fund("Supplies")
        second = self._fund("Utilities")
        salaries = self._fund("Salaries", FundCategory.PERSONNEL_SERVICES)

        assert first.fund_code == "MOOE-2025-001"
        assert second.fund_code == "MOOE-2025-002"
        assert salaries.fund_code == "PS-2025-001"

    def test_create_fund_accepts_category_string(self):
        fund = self.allocations.create_fund("Road Repair", "20% Development Fund", 2025, "100000")

        assert fund.category == FundCategory.DEVELOPMENT_FUND
        assert fund.fund_code == "DEV-2025-001"

    def test_explicit_duplicate_code_rejected(self):
        self._fund(fund_code="MOOE-2025-001")

        with pytest.raises(ValidationError) as exc_info:
            self._fund("Another", fund_code="MOOE-2025-001")

        assert exc_info.value.field == "fund_code"
        assert len(self.allocations.list_funds(2025)) == 1

    def test_create_fund_validation(self):
        with pytest.raises(ValidationError):
            self._fund(amount="-1.00")
        with pytest.raises(ValidationError):
            self._fund(name="   ")
        with pytest.raises(ValidationError):
            self.allocations.create_fund("X", "Not a category", 2025, "1.00")

    def test_create_fund_publishes_event(self):
        handler = Mock()
        self.hub.subscribe(DomainEvent.FUND_UPDATED, handler)

        fund = self._fund()

        event = handler.call_args[0][0]
        assert event.entity_id == fund.id
        assert event.data["update_type"] == "created"

    def test_get_fund_not_found(self):
        with pytest.raises(NotFoundError) as exc_info:
            self.allocations.get_fund("missing")
        assert exc_info.value.entity_type == "fund"

    def test_list_funds_ordered_by_category_then_name(self):
        self._fund("Utilities")
        self._fund("Electricity")
        self._fund("Salaries", FundCategory.PERSONNEL_SERVICES)

        names = [f.fund_name for f in self.allocations.list_funds(2025)]

        assert names == ["Electricity", "Utilities", "Salaries"]

    def test_update_fund_allocation_floor(self):
        fund = self._fund(amount="1000.00")
        self.allocations.create_particular(fund.id, "Bond paper", Decimal("600.00"))
        self._approved_expenditure(fund, "700.00")

        with pytest.raises(ValidationError):
            self.allocations.update_fund(fund.id, allocated_amount=Decimal("650.00"))
        with pytest.raises(ValidationError):
            self.allocations.update_fund(fund.id, allocated_amount=Decimal("500.00"))

        updated = self.allocations.update_fund(fund.id, allocated_amount=Decimal("900.00"), fund_name="Supplies")
        assert updated.allocated_amount == Decimal("900.00")
        assert updated.remaining_balance == Decimal("200.00")
        assert updated.fund_name == "Supplies"

    def test_recompute_counts_only_committed_expenditures(self):
        fund = self._fund()
        self._approved_expenditure(fund, "50000.00")
        self.ledger.create_transaction(fund.id, TransactionType.EXPENDITURE, Decimal("1000.00"), "Pending")
        appropriation = self.ledger.create_transaction(
            fund.id, TransactionType.APPROPRIATION, Decimal("9999.00"), "Supplemental"
        )
        self.ledger.submit(appropriation.id)
        self.ledger.approve(appropriation.id)

        fund = self.allocations.recompute_utilization(fund.id)

        assert fund.utilized_amount == Decimal("50000.00")
        assert fund.remaining_balance == Decimal("750000.00")

    def test_recompute_is_idempotent_and_repairs_drift(self):
        fund = self._fund()
        self._approved_expenditure(fund, "1234.56")

        data = self.storage.load("funds", fund.id)
        data["utilized_amount"] = "99.00"
        self.storage.save("funds", fund.id, data)

        first = self.allocations.recompute_utilization(fund.id)
        second = self.allocations.recompute_utilization(fund.id)

        assert first.utilized_amount == second.utilized_amount == Decimal("1234.56")

    def test_recompute_updates_particulars(self):
        fund = self._fund()
        particular = self.allocations.create_particular(fund.id, "Bond paper", Decimal("10000.00"))
        self._approved_expenditure(fund, "2500.00", fund_particular_id=particular.id)

        particular = self.allocations.get_particular(particular.id)

        assert particular.utilized_amount == Decimal("2500.00")
        assert particular.remaining_balance == Decimal("7500.00")

    def test_delete_unreferenced_fund_is_hard_delete(self):
        fund = self._fund()
        self.allocations.create_particular(fund.id, "Bond paper", Decimal("100.00"))

        assert self.allocations.delete_fund(fund.id) == DeleteOutcome.HARD_DELETED
        with pytest.raises(NotFoundError):
            self.allocations.get_fund(fund.id)
        assert self.allocations.list_particulars(fund.id, include_inactive=True) == []

    def test_delete_referenced_fund_is_soft_delete(self):
        fund = self._fund()
        self.ledger.create_transaction(fund.id, TransactionType.EXPENDITURE, Decimal("10.00"), "Pens")

        assert self.allocations.delete_fund(fund.id) == DeleteOutcome.SOFT_DELETED
        assert not self.allocations.get_fund(fund.id).is_active
        assert self.allocations.list_funds(2025) == []
        assert len(self.allocations.list_funds(2025, include_inactive=True)) == 1
        assert self.allocations.get_fund_by_code(fund.fund_code) is None

    def test_summaries(self):
        supplies = self._fund("Supplies", amount="1000.00")
        self._fund("Salaries", FundCategory.PERSONNEL_SERVICES, amount="3000.00")
        self._approved_expenditure(supplies, "250.00")

        summary = self.allocations.get_fund_summary(2025)
        assert summary.total_allocated == Decimal("4000.00")
        assert summary.total_utilized == Decimal("250.00")
        assert summary.total_remaining == Decimal("3750.00")
        assert summary.fund_count == 2
        assert summary.overall_utilization == pytest.approx(6.25)

        categories = {s.category: s for s in self.allocations.get_category_summary(2025)}
        assert categories[FundCategory.MOOE].total_utilized == Decimal("250.00")
        assert categories[FundCategory.MOOE].utilization_rate == pytest.approx(25.0)
        assert categories[FundCategory.PERSONNEL_SERVICES].fund_count == 1

    def test_low_balance_funds(self):
        nearly_spent = self._fund("Supplies", amount="1000.00")
        self._fund("Utilities", amount="1000.00")
        self._approved_expenditure(nearly_spent, "900.00")

        low = self.allocations.get_low_balance_funds(2025)

        assert [f.id for f in low] == [nearly_spent.id]
        assert self.allocations.get_low_balance_funds(2025, threshold=5.0) == []

    def test_fund_mutations_are_audited(self):
        fund = self._fund()
        self.allocations.update_fund(fund.id, description="Office supplies", user_id="clerk")

        events = self.audit_trail.get_events_for_entity("fund", fund.id)

        assert [e.event_type for e in events] == [AuditEventType.FUND_CREATED, AuditEventType.FUND_UPDATED]
        assert events[1].user_id == "clerk"


class TestFundParticulars:
    """Line items under a fund"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.allocations = AllocationStore(self.storage, self.audit_trail)
        self.ledger = TransactionLedger(self.storage, self.allocations, self.audit_trail)
        self.fund = self.allocations.create_fund("Office Supplies", FundCategory.MOOE, 2025, Decimal("1000.00"))

    def test_particular_codes_and_sort_order(self):
        first = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("300.00"))
        second = self.allocations.create_particular(self.fund.id, "Ink", Decimal("200.00"),
                                                    unit_of_measure="bottle", quantity="4", unit_cost="50")

        assert first.particular_code == "MOOE-2025-001-P001"
        assert second.particular_code == "MOOE-2025-001-P002"
        assert second.sort_order == first.sort_order + 1
        assert second.quantity == Decimal("4.00")
        assert self.allocations.next_particular_code(self.fund.id) == "MOOE-2025-001-P003"

    def test_particulars_cannot_exceed_fund_allocation(self):
        self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("700.00"))

        with pytest.raises(ValidationError) as exc_info:
            self.allocations.create_particular(self.fund.id, "Ink", Decimal("300.01"))

        details = exc_info.value.details
        assert details["already_allocated"] == Decimal("700.00")
        assert details["ceiling"] == Decimal("1000.00")
        assert len(self.allocations.list_particulars(self.fund.id)) == 1

    def test_particular_up_to_ceiling_allowed(self):
        self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("700.00"))
        ink = self.allocations.create_particular(self.fund.id, "Ink", Decimal("300.00"))

        assert ink.allocated_amount == Decimal("300.00")

    def test_update_particular_rechecks_ceiling(self):
        paper = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("600.00"))
        self.allocations.create_particular(self.fund.id, "Ink", Decimal("300.00"))

        with pytest.raises(ValidationError):
            self.allocations.update_particular(paper.id, allocated_amount=Decimal("701.00"))

        updated = self.allocations.update_particular(paper.id, allocated_amount=Decimal("700.00"))
        assert updated.allocated_amount == Decimal("700.00")

    def test_delete_particular(self):
        unused = self.allocations.create_particular(self.fund.id, "Stapler", Decimal("100.00"))
        used = self.allocations.create_particular(self.fund.id, "Bond paper", Decimal("100.00"))
        self.ledger.create_transaction(self.fund.id, TransactionType.EXPENDITURE, Decimal("10.00"),
                                       "Paper", fund_particular_id=used.id)

        assert self.allocations.delete_particular(unused.id) == DeleteOutcome.HARD_DELETED
        assert self.allocations.delete_particular(used.id) == DeleteOutcome.SOFT_DELETED
        assert self.allocations.list_particulars(self.fund.id) == []
        assert len(self.allocations.list_particulars(self.fund.id, include_inactive=True)) == 1

    def test_inactive_fund_rejects_particulars(self):
        self.ledger.create_transaction(self.fund.id, TransactionType.EXPENDITURE, Decimal("10.00"), "Pens")
        self.allocations.delete_fund(self.fund.id)

        with pytest.raises(ValidationError):
            self.allocations.create_particular(self.fund.id, "Ink", Decimal("10.00"))
