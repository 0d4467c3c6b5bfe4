"""
Account and ledger endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import get_actor, get_back_office, parse_money, unwrap
from .schemas import AccountResponse, OpenAccountRequest, PostingRequest, TransactionResponse, MoneyModel
from ..access import ActorContext
from ..accounts import AccountStatus, TransactionType
from ..service import BackOffice


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def open_account(
    request: OpenAccountRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Open a savings account for a member"""
    initial_deposit = parse_money(request.initial_deposit) if request.initial_deposit else None
    account = unwrap(office.open_account(actor, request.member_id, initial_deposit))
    return AccountResponse.from_account(account).model_dump()


@router.get("")
def list_accounts(
    account_status: Optional[str] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """List accounts, optionally by status"""
    try:
        status_filter = AccountStatus(account_status) if account_status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {account_status}")
    accounts = unwrap(office.list_accounts(actor, status_filter))
    return {"accounts": [AccountResponse.from_account(a).model_dump() for a in accounts]}


@router.get("/members/{member_id}")
def get_member_account(
    member_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Get a member's open account"""
    return AccountResponse.from_account(unwrap(office.get_member_account(actor, member_id))).model_dump()


@router.get("/{account_id}")
def get_account(
    account_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Get account details"""
    return AccountResponse.from_account(unwrap(office.get_account(actor, account_id))).model_dump()


@router.get("/{account_id}/balance")
def get_balance(
    account_id: str,
    as_of: Optional[datetime] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Current balance, or the balance as of a moment"""
    if as_of:
        balance = unwrap(office.balance_as_of(actor, account_id, as_of))
    else:
        balance = unwrap(office.get_balance(actor, account_id))
    return {"account_id": account_id, "balance": MoneyModel.from_money(balance).model_dump()}


@router.get("/{account_id}/transactions")
def get_transactions(
    account_id: str,
    transaction_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Transaction history in posting order"""
    try:
        type_filter = TransactionType(transaction_type) if transaction_type else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown transaction type: {transaction_type}")
    transactions = unwrap(office.transaction_history(actor, account_id, start, end, type_filter))
    return {
        "account_id": account_id,
        "transactions": [TransactionResponse.from_transaction(t).model_dump() for t in transactions]
    }


@router.post("/{account_id}/deposit", status_code=status.HTTP_201_CREATED)
def deposit(
    account_id: str,
    request: PostingRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Deposit into an account"""
    transaction = unwrap(office.deposit(actor, account_id, parse_money(request.amount), request.description))
    return TransactionResponse.from_transaction(transaction).model_dump()


@router.post("/{account_id}/withdraw", status_code=status.HTTP_201_CREATED)
def withdraw(
    account_id: str,
    request: PostingRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Withdraw from an account"""
    transaction = unwrap(office.withdraw(actor, account_id, parse_money(request.amount), request.description))
    return TransactionResponse.from_transaction(transaction).model_dump()


@router.post("/{account_id}/interest", status_code=status.HTTP_201_CREATED)
def apply_interest(
    account_id: str,
    request: PostingRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Credit interest to one account"""
    transaction = unwrap(office.apply_interest(actor, account_id, parse_money(request.amount),
                                               request.description))
    return TransactionResponse.from_transaction(transaction).model_dump()


@router.post("/{account_id}/close")
def close_account(
    account_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Close a zero-balance account"""
    return AccountResponse.from_account(unwrap(office.close_account(actor, account_id))).model_dump()


@router.get("/{account_id}/verify")
def verify_account(
    account_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Reconcile the balance against the transaction log"""
    return unwrap(office.verify_account(actor, account_id))
