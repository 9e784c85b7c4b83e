"""
Transaction endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_ledger_system, get_user_id
from .schemas import (
    ReasonRequest, StatusChangeRequest, TransactionCreateRequest,
    TransactionUpdateRequest, transaction_response
)
from ..errors import NotFoundError
from ..system import BudgetLedgerSystem
from ..transactions import TransactionFilter


router = APIRouter()


@router.post("", status_code=201)
async def create_transaction(
    request: TransactionCreateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Record a transaction in Pending status"""
    transaction = system.ledger.create_transaction(user_id=user_id, **request.model_dump())
    return transaction_response(transaction)


@router.get("")
async def list_transactions(
    status: Optional[str] = None,
    fund_id: Optional[str] = None,
    transaction_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    """List transactions newest first, optionally filtered"""
    transaction_filter = TransactionFilter(
        status=status,
        fund_id=fund_id,
        transaction_type=transaction_type,
        start_date=start_date,
        end_date=end_date,
        search_term=search
    )
    transactions = system.ledger.list_transactions(transaction_filter)
    return {"transactions": [transaction_response(t) for t in transactions], "count": len(transactions)}


@router.get("/pending-approvals")
async def get_pending_approvals(system: BudgetLedgerSystem = Depends(get_ledger_system)):
    transactions = system.ledger.get_pending_approvals()
    return {"transactions": [transaction_response(t) for t in transactions], "count": len(transactions)}


@router.get("/recent")
async def get_recent_transactions(
    count: Optional[int] = None,
    system: BudgetLedgerSystem = Depends(get_ledger_system)
):
    transactions = system.ledger.get_recent(count)
    return {"transactions": [transaction_response(t) for t in transactions], "count": len(transactions)}


@router.get("/statistics/{year}")
async def get_statistics(year: int, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return system.ledger.get_statistics(year).to_dict()


@router.get("/next-numbers")
async def get_next_numbers(system: BudgetLedgerSystem = Depends(get_ledger_system)):
    """Preview the next transaction, PR, PO and DV numbers"""
    return {
        "transaction_number": system.ledger.next_transaction_number(),
        "pr_number": system.ledger.next_pr_number(),
        "po_number": system.ledger.next_po_number(),
        "dv_number": system.ledger.next_dv_number(),
    }


@router.get("/by-number/{transaction_number}")
async def get_by_number(transaction_number: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    transaction = system.ledger.get_by_number(transaction_number)
    if transaction is None:
        raise NotFoundError("transaction", transaction_number)
    return transaction_response(transaction)


@router.get("/{transaction_id}")
async def get_transaction(transaction_id: str, system: BudgetLedgerSystem = Depends(get_ledger_system)):
    return transaction_response(system.ledger.get_transaction(transaction_id))


@router.patch("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    request: TransactionUpdateRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Edit a Pending transaction"""
    transaction = system.ledger.update_transaction(
        transaction_id, user_id=user_id, **request.model_dump(exclude_unset=True)
    )
    return transaction_response(transaction)


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    system.ledger.delete_transaction(transaction_id, user_id=user_id)
    return {"transaction_id": transaction_id, "deleted": True}


@router.post("/{transaction_id}/status")
async def change_status(
    transaction_id: str,
    request: StatusChangeRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    """Move a transaction to any status the workflow allows"""
    transaction = system.ledger.update_status(
        transaction_id, request.status, approver_id=user_id, user_id=user_id, reason=request.reason
    )
    return transaction_response(transaction)


@router.post("/{transaction_id}/submit")
async def submit_transaction(
    transaction_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    return transaction_response(system.ledger.submit(transaction_id, user_id=user_id))


@router.post("/{transaction_id}/approve")
async def approve_transaction(
    transaction_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    return transaction_response(system.ledger.approve(transaction_id, approver_id=user_id))


@router.post("/{transaction_id}/reject")
async def reject_transaction(
    transaction_id: str,
    request: ReasonRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    return transaction_response(system.ledger.reject(transaction_id, user_id=user_id, reason=request.reason))


@router.post("/{transaction_id}/complete")
async def complete_transaction(
    transaction_id: str,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    return transaction_response(system.ledger.complete(transaction_id, user_id=user_id))


@router.post("/{transaction_id}/cancel")
async def cancel_transaction(
    transaction_id: str,
    request: ReasonRequest,
    system: BudgetLedgerSystem = Depends(get_ledger_system),
    user_id: Optional[str] = Depends(get_user_id)
):
    return transaction_response(system.ledger.cancel(transaction_id, user_id=user_id, reason=request.reason))
