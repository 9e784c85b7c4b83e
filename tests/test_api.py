"""
Integration tests for the Budget Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import csv
import io

import pytest
from fastapi.testclient import TestClient

from budget_ledger.api import create_app
from budget_ledger.api.dependencies import get_ledger_system
from budget_ledger.storage import InMemoryStorage
from budget_ledger.system import BudgetLedgerSystem


@pytest.fixture
def client():
    """Test client backed by a fresh in-memory ledger system"""
    system = BudgetLedgerSystem(storage=InMemoryStorage())
    app = create_app()
    app.dependency_overrides[get_ledger_system] = lambda: system
    yield TestClient(app)
    system.close()


def create_fund(client, amount="800000.00", category="MOOE", name="Office Supplies"):
    r = client.post("/funds", json={
        "fund_name": name,
        "category": category,
        "fiscal_year": 2025,
        "allocated_amount": amount
    }, headers={"X-User-Id": "treasurer"})
    assert r.status_code == 201
    return r.json()


def create_expenditure(client, fund_id, amount, transaction_date="2025-03-10"):
    r = client.post("/transactions", json={
        "fund_id": fund_id,
        "transaction_type": "Expenditure",
        "amount": amount,
        "description": "Purchase of supplies",
        "transaction_date": transaction_date
    }, headers={"X-User-Id": "clerk"})
    return r


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Budget Ledger API"
        assert "transactions" in data["endpoints"]


class TestFundEndpoints:

    def test_create_and_get_fund(self, client):
        fund = create_fund(client)

        assert fund["fund_code"] == "MOOE-2025-001"
        assert fund["allocated_amount"] == "800000.00"
        assert fund["remaining_balance"] == "800000.00"
        assert fund["created_by"] == "treasurer"

        r = client.get(f"/funds/{fund['id']}")
        assert r.status_code == 200
        assert r.json()["fund_name"] == "Office Supplies"

        r = client.get(f"/funds/by-code/{fund['fund_code']}")
        assert r.json()["id"] == fund["id"]

    def test_unknown_fund(self, client):
        r = client.get("/funds/does-not-exist")
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"

    def test_unknown_category(self, client):
        r = client.post("/funds", json={
            "fund_name": "Mystery",
            "category": "Lottery",
            "fiscal_year": 2025,
            "allocated_amount": "1.00"
        })
        assert r.status_code == 422
        assert r.json()["error"] == "validation_error"

    def test_particulars(self, client):
        fund = create_fund(client)

        r = client.post(f"/funds/{fund['id']}/particulars", json={
            "particular_name": "Bond paper",
            "allocated_amount": "1000.00"
        })
        assert r.status_code == 201
        particular = r.json()
        assert particular["particular_code"] == "MOOE-2025-001-P001"

        r = client.get(f"/funds/{fund['id']}/particulars")
        assert r.json()["count"] == 1

        r = client.post(f"/funds/{fund['id']}/particulars", json={
            "particular_name": "Too much",
            "allocated_amount": "799999.00"
        })
        assert r.status_code == 422

    def test_delete_unused_fund(self, client):
        fund = create_fund(client)

        r = client.delete(f"/funds/{fund['id']}")
        assert r.status_code == 200

        r = client.get(f"/funds/{fund['id']}")
        assert r.status_code == 404


class TestTransactionWorkflow:

    def test_expenditure_approval_flow(self, client):
        fund = create_fund(client)

        r = create_expenditure(client, fund["id"], "50000.00")
        assert r.status_code == 201
        transaction = r.json()
        assert transaction["status"] == "Pending"
        assert transaction["created_by"] == "clerk"
        assert transaction["transaction_number"].startswith("TXN-")

        r = client.post(f"/transactions/{transaction['id']}/submit")
        assert r.json()["status"] == "For Approval"

        r = client.post(f"/transactions/{transaction['id']}/approve", headers={"X-User-Id": "captain"})
        assert r.status_code == 200
        approved = r.json()
        assert approved["status"] == "Approved"
        assert approved["approved_by"] == "captain"
        assert approved["approved_at"] is not None

        r = client.get(f"/funds/{fund['id']}")
        assert r.json()["utilized_amount"] == "50000.00"
        assert r.json()["remaining_balance"] == "750000.00"

        r = client.get(f"/funds/{fund['id']}/transactions")
        assert r.status_code == 200

    def test_insufficient_balance(self, client):
        fund = create_fund(client)
        first = create_expenditure(client, fund["id"], "50000.00").json()
        client.post(f"/transactions/{first['id']}/submit")
        client.post(f"/transactions/{first['id']}/approve")

        r = create_expenditure(client, fund["id"], "800000.00")

        assert r.status_code == 422
        body = r.json()
        assert body["error"] == "insufficient_balance"
        assert body["details"]["available"] == "750000.00"
        assert body["details"]["requested"] == "800000.00"

    def test_invalid_transition(self, client):
        fund = create_fund(client)
        transaction = create_expenditure(client, fund["id"], "100.00").json()

        r = client.post(f"/transactions/{transaction['id']}/approve")

        assert r.status_code == 409
        assert r.json()["error"] == "invalid_transition"

        r = client.get(f"/transactions/{transaction['id']}")
        assert r.json()["status"] == "Pending"

    def test_status_endpoint_and_reject(self, client):
        fund = create_fund(client)
        transaction = create_expenditure(client, fund["id"], "100.00").json()

        r = client.post(f"/transactions/{transaction['id']}/status", json={"status": "For Approval"})
        assert r.json()["status"] == "For Approval"

        r = client.post(f"/transactions/{transaction['id']}/reject", json={"reason": "No quotation"})
        assert r.json()["status"] == "Rejected"

        r = client.delete(f"/transactions/{transaction['id']}")
        assert r.status_code == 200

    def test_edit_only_while_pending(self, client):
        fund = create_fund(client)
        transaction = create_expenditure(client, fund["id"], "100.00").json()

        r = client.patch(f"/transactions/{transaction['id']}", json={"payee": "ACME Trading"})
        assert r.json()["payee"] == "ACME Trading"

        client.post(f"/transactions/{transaction['id']}/submit")
        r = client.patch(f"/transactions/{transaction['id']}", json={"payee": "Other"})
        assert r.status_code == 409

    def test_listing_filters(self, client):
        fund = create_fund(client)
        create_expenditure(client, fund["id"], "100.00")
        second = create_expenditure(client, fund["id"], "200.00").json()
        client.post(f"/transactions/{second['id']}/submit")

        r = client.get("/transactions", params={"status": "For Approval"})
        assert r.json()["count"] == 1

        r = client.get("/transactions/pending-approvals")
        assert [t["id"] for t in r.json()["transactions"]] == [second["id"]]

        r = client.get("/transactions", params={"fund_id": fund["id"]})
        assert r.json()["count"] == 2


class TestReportEndpoints:

    def test_generate_and_export_monthly_report(self, client):
        fund = create_fund(client)
        transaction = create_expenditure(client, fund["id"], "50000.00", "2025-01-15").json()
        client.post(f"/transactions/{transaction['id']}/submit")
        client.post(f"/transactions/{transaction['id']}/approve")

        r = client.post("/reports/monthly", json={"fiscal_year": 2025, "month": 1},
                        headers={"X-User-Id": "treasurer"})
        assert r.status_code == 201
        report = r.json()
        assert report["report_number"] == "COA-2025-01-001"
        assert report["total_obligations"] == "50000.00"

        r = client.get(f"/reports/{report['id']}/export", params={"format": "csv"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "COA-2025-01-001.csv" in r.headers["content-disposition"]

        rows = list(csv.DictReader(io.StringIO(r.text)))
        assert rows[-1]["fund_code"] == "TOTAL"
        assert rows[0]["balance"] == "750000.00"

    def test_unsupported_export_format(self, client):
        create_fund(client)
        report = client.post("/reports/annual", json={"fiscal_year": 2025}).json()

        r = client.get(f"/reports/{report['id']}/export", params={"format": "xlsx"})

        assert r.status_code == 422

    def test_report_status_lifecycle(self, client):
        create_fund(client)
        report = client.post("/reports/annual", json={"fiscal_year": 2025}).json()

        r = client.patch(f"/reports/{report['id']}/status", json={"status": "Submitted"})
        assert r.json()["status"] == "Submitted"

        r = client.patch(f"/reports/{report['id']}/status", json={"status": "Reviewed"})
        assert r.status_code == 409

        r = client.delete(f"/reports/{report['id']}")
        assert r.status_code == 409

    def test_utilization_snapshot(self, client):
        fund = create_fund(client)
        transaction = create_expenditure(client, fund["id"], "80000.00").json()
        client.post(f"/transactions/{transaction['id']}/submit")
        client.post(f"/transactions/{transaction['id']}/approve")

        r = client.get("/reports/utilization/2025")

        assert r.status_code == 200
        assert r.json()["total_utilized"] == "80000.00"


class TestBudgetAndAuditEndpoints:

    def test_budget_mandated_allocations(self, client):
        r = client.post("/budgets", json={"fiscal_year": 2025, "total_ira": "1000000.00"})
        assert r.status_code == 201

        r = client.post("/budgets", json={"fiscal_year": 2025, "total_ira": "1.00"})
        assert r.status_code == 422

        r = client.get("/budgets/year/2026")
        assert r.status_code == 404

    def test_audit_history_for_fund(self, client):
        fund = create_fund(client)
        client.patch(f"/funds/{fund['id']}", json={"fund_name": "Supplies and Materials"})

        r = client.get(f"/audit/fund/{fund['id']}")
        assert r.status_code == 200
        assert len(r.json()["events"]) == 2

        r = client.get("/audit/integrity")
        assert r.json()["valid"] is True
