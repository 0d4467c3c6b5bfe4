"""
Account Records Module

Member savings accounts and the immutable transaction records posted
against them, together with their storage representation.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, Optional
from enum import Enum

from .currency import Money, Currency
from .storage import StorageRecord


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "Active"
    DORMANT = "Dormant"    # Inactive, restricted until reactivated
    CLOSED = "Closed"      # Permanently closed, never deleted


class TransactionType(Enum):
    """Ledger transaction types"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    INTEREST = "INTEREST"
    LOAN_RELEASE = "LOAN_RELEASE"
    LOAN_PAYMENT = "LOAN_PAYMENT"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionType.DEPOSIT, TransactionType.INTEREST, TransactionType.LOAN_RELEASE)

    @property
    def reference_prefix(self) -> str:
        return REFERENCE_PREFIXES[self]


REFERENCE_PREFIXES = {
    TransactionType.DEPOSIT: "DEP",
    TransactionType.WITHDRAWAL: "WDW",
    TransactionType.INTEREST: "INT",
    TransactionType.LOAN_RELEASE: "LNR",
    TransactionType.LOAN_PAYMENT: "LNP",
}


@dataclass
class Account(StorageRecord):
    """
    Member savings account.

    ``balance`` always equals the running balance of the latest transaction.
    ``interest_earned`` tracks the interest portion of that balance.
    """
    member_id: str
    account_number: str
    currency: Currency
    balance: Money
    interest_earned: Money
    status: AccountStatus = AccountStatus.ACTIVE
    last_activity_date: Optional[datetime] = None
    transaction_count: int = 0

    def can_credit(self) -> bool:
        """Check if account can receive deposits"""
        return self.status in (AccountStatus.ACTIVE, AccountStatus.DORMANT)

    def can_debit(self) -> bool:
        """Check if account can be debited"""
        return self.status == AccountStatus.ACTIVE

    def earns_interest(self) -> bool:
        return self.status == AccountStatus.ACTIVE


@dataclass
class Transaction(StorageRecord):
    """
    Immutable ledger record. ``amount`` is signed: credits are positive,
    debits negative. ``created_at`` is the posting timestamp.
    """
    account_id: str
    member_id: str
    transaction_type: TransactionType
    amount: Money
    running_balance: Money
    actor: str
    description: str
    reference_number: str
    sequence: int

    @property
    def timestamp(self) -> datetime:
        return self.created_at


def account_to_dict(account: Account) -> Dict:
    """Convert Account to dictionary for storage"""
    result = account.to_dict()
    result['currency'] = account.currency.code
    result['balance'] = str(account.balance.amount)
    result['interest_earned'] = str(account.interest_earned.amount)
    result['status'] = account.status.value
    result['last_activity_date'] = (
        account.last_activity_date.isoformat() if account.last_activity_date else None
    )
    return result


def account_from_dict(data: Dict) -> Account:
    """Convert dictionary to Account"""
    currency = Currency.from_code(data['currency'])
    last_activity = data.get('last_activity_date')
    return Account(
        id=data['id'],
        created_at=datetime.fromisoformat(data['created_at']),
        updated_at=datetime.fromisoformat(data['updated_at']),
        member_id=data['member_id'],
        account_number=data['account_number'],
        currency=currency,
        balance=Money(Decimal(data['balance']), currency),
        interest_earned=Money(Decimal(data['interest_earned']), currency),
        status=AccountStatus(data['status']),
        last_activity_date=datetime.fromisoformat(last_activity) if last_activity else None,
        transaction_count=data.get('transaction_count', 0)
    )


def transaction_to_dict(transaction: Transaction) -> Dict:
    """Convert Transaction to dictionary for storage"""
    result = transaction.to_dict()
    result['transaction_type'] = transaction.transaction_type.value
    result['amount'] = str(transaction.amount.amount)
    result['running_balance'] = str(transaction.running_balance.amount)
    result['currency'] = transaction.amount.currency.code
    return result


def transaction_from_dict(data: Dict) -> Transaction:
    """Convert dictionary to Transaction"""
    currency = Currency.from_code(data['currency'])
    return Transaction(
        id=data['id'],
        created_at=datetime.fromisoformat(data['created_at']),
        updated_at=datetime.fromisoformat(data['updated_at']),
        account_id=data['account_id'],
        member_id=data['member_id'],
        transaction_type=TransactionType(data['transaction_type']),
        amount=Money(Decimal(data['amount']), currency),
        running_balance=Money(Decimal(data['running_balance']), currency),
        actor=data['actor'],
        description=data['description'],
        reference_number=data['reference_number'],
        sequence=data['sequence']
    )
