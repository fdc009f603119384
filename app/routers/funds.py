"""
Funds Router
Money lent to (GIVEN) or borrowed from (BORROWED) another person, repaid
through partial-payment transactions. Every mutation re-checks that the
transactions never add up to more than the fund's principal; the fund item
keeps a running total_paid so that the check holds under concurrent writes.
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.security import get_current_user_id
from app.db import dynamo
from app.models.fund import FundPublic, FundRequest, TransactionRequest, new_id
from app.utils import balances
from app.utils.periods import to_iso

router = APIRouter()
logger = logging.getLogger(__name__)

FUND_NOT_FOUND = "fund not found or doesn't belong to user"
TRANSACTION_NOT_FOUND = "transaction not found or doesn't belong to fund"


def fund_view(fund: dict) -> FundPublic:
    transactions = dynamo.list_transactions(fund["fund_id"])
    balance = balances.summarize_fund(fund, transactions)
    return FundPublic(
        fund_id=fund["fund_id"],
        person_name=fund["person_name"],
        type=fund["type"],
        principal_amount=fund["principal_amount"],
        start_date=fund["start_date"],
        notes=fund.get("notes", ""),
        transactions=transactions,
        created_at=fund["created_at"],
        updated_at=fund["updated_at"],
        **balance.to_dict(),
    )


def _owned_fund(user_id: str, fund_id: str) -> dict:
    fund = dynamo.get_fund(user_id, fund_id)
    if not fund:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=FUND_NOT_FOUND)
    return fund


def _fund_transaction(fund_id: str, transaction_id: str) -> dict:
    transaction = dynamo.get_transaction(fund_id, transaction_id)
    if not transaction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TRANSACTION_NOT_FOUND)
    return transaction


def _check(rule, *args):
    try:
        return rule(*args)
    except balances.BalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=List[FundPublic])
def list_funds(user_id: str = Depends(get_current_user_id)):
    return [fund_view(fund) for fund in dynamo.list_funds(user_id)]


@router.get("/{fund_id}", response_model=FundPublic)
def get_fund(fund_id: str, user_id: str = Depends(get_current_user_id)):
    return fund_view(_owned_fund(user_id, fund_id))


@router.post("", response_model=FundPublic, status_code=status.HTTP_201_CREATED)
def create_fund(request: FundRequest, user_id: str = Depends(get_current_user_id)):
    now = to_iso()
    fund = {
        "user_id": user_id,
        "fund_id": new_id(),
        "person_name": request.person_name,
        "type": request.type.value,
        "principal_amount": request.principal_amount,
        "start_date": to_iso(request.start_date),
        "notes": request.notes or "",
        "created_at": now,
        "updated_at": now,
    }
    dynamo.put_fund(fund)
    logger.info(f"Created {fund['type']} fund {fund['fund_id']} for user {user_id}")
    return fund_view(fund)


@router.put("/{fund_id}", response_model=FundPublic)
def update_fund(fund_id: str, request: FundRequest, user_id: str = Depends(get_current_user_id)):
    fund = _owned_fund(user_id, fund_id)

    paid = balances.total_paid(dynamo.list_transactions(fund_id))
    _check(balances.check_principal_allowed, request.principal_amount, paid)

    updated = dynamo.update_fund(user_id, fund_id, {
        "person_name": request.person_name,
        "type": request.type.value,
        "principal_amount": request.principal_amount,
        "start_date": to_iso(request.start_date) if request.start_date else fund["start_date"],
        "notes": request.notes or "",
        "updated_at": to_iso(),
    })
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=FUND_NOT_FOUND)
    return fund_view(updated)


@router.delete("/{fund_id}")
def delete_fund(fund_id: str, user_id: str = Depends(get_current_user_id)) -> Dict[str, str]:
    _owned_fund(user_id, fund_id)
    if not dynamo.delete_fund(user_id, fund_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=FUND_NOT_FOUND)
    return {"message": "fund deleted successfully"}


@router.post("/{fund_id}/transactions", response_model=FundPublic, status_code=status.HTTP_201_CREATED)
def add_transaction(
    fund_id: str,
    request: TransactionRequest,
    user_id: str = Depends(get_current_user_id),
):
    fund = _owned_fund(user_id, fund_id)

    paid = balances.total_paid(dynamo.list_transactions(fund_id))
    new_paid = _check(balances.check_transaction_allowed, fund["principal_amount"], paid, request.amount)

    transaction = {
        "fund_id": fund_id,
        "transaction_id": new_id(),
        "amount": request.amount,
        "date": to_iso(request.date),
        "note": request.note or "",
        "created_at": to_iso(),
    }
    dynamo.put_transaction(user_id, transaction, fund.get("total_paid"), new_paid)
    logger.info(f"Recorded payment {transaction['transaction_id']} of {request.amount} on fund {fund_id}")
    return fund_view(fund)


@router.put("/{fund_id}/transactions/{transaction_id}", response_model=FundPublic)
def update_transaction(
    fund_id: str,
    transaction_id: str,
    request: TransactionRequest,
    user_id: str = Depends(get_current_user_id),
):
    fund = _owned_fund(user_id, fund_id)
    existing = _fund_transaction(fund_id, transaction_id)

    paid = balances.total_paid(dynamo.list_transactions(fund_id))
    new_paid = _check(
        balances.check_transaction_allowed,
        fund["principal_amount"],
        paid,
        request.amount,
        existing["amount"],
    )

    updated = dynamo.update_transaction(
        user_id,
        fund_id,
        transaction_id,
        {
            "amount": request.amount,
            "date": to_iso(request.date) if request.date else existing["date"],
            "note": request.note or "",
        },
        fund.get("total_paid"),
        new_paid,
    )
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TRANSACTION_NOT_FOUND)
    return fund_view(fund)


@router.delete("/{fund_id}/transactions/{transaction_id}", response_model=FundPublic)
def delete_transaction(fund_id: str, transaction_id: str, user_id: str = Depends(get_current_user_id)):
    fund = _owned_fund(user_id, fund_id)
    existing = _fund_transaction(fund_id, transaction_id)

    paid = balances.total_paid(dynamo.list_transactions(fund_id))
    new_paid = balances.paid_after(paid, replaced_amount=existing["amount"])
    if not dynamo.delete_transaction(user_id, fund_id, transaction_id, fund.get("total_paid"), new_paid):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TRANSACTION_NOT_FOUND)
    return fund_view(fund)
