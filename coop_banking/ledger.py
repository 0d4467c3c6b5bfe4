"""
Account Ledger Module

Owns member balances and the append-only transaction log. Every posting
persists the balance change and its transaction record as one unit of work
under the account's lock, so the balance always equals the running balance
of the latest transaction.
"""

import secrets
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from .access import ActorContext
from .accounts import (
    Account, AccountStatus, Transaction, TransactionType,
    account_to_dict, account_from_dict, transaction_to_dict, transaction_from_dict
)
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency
from .dates import utc_now
from .errors import (
    ValidationError, NotFoundError, StateError, InsufficientFundsError
)
from .locks import AccountLockRegistry
from .logging_config import get_logger, log_action
from .storage import StorageInterface, unit_of_work


logger = get_logger("coop.ledger")


class AccountLedger:
    """
    Balance and transaction-log owner for member savings accounts
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        locks: Optional[AccountLockRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
        currency: Optional[Currency] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.locks = locks or AccountLockRegistry()
        self.clock = clock
        self.currency = currency or Currency.from_code(get_config().currency)
        self.accounts_table = "accounts"
        self.transactions_table = "transactions"

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    def open_account(
        self,
        member_id: str,
        actor: ActorContext,
        initial_deposit: Optional[Money] = None,
        currency: Optional[Currency] = None
    ) -> Account:
        """
        Open a savings account for a member

        Args:
            member_id: Cooperative member identifier
            actor: Acting staff member
            initial_deposit: Optional opening deposit, posted as DEPOSIT
            currency: Account currency (configured currency if omitted)

        Returns:
            The new Account, including the effect of any opening deposit
        """
        if not member_id:
            raise ValidationError("Member id is required")
        currency = currency or self.currency
        if initial_deposit is not None:
            self._validate_amount(initial_deposit, currency)

        opening = None
        with self.locks.hold(f"member:{member_id}"):
            for existing in self.storage.find(self.accounts_table, {'member_id': member_id}):
                if existing['status'] != AccountStatus.CLOSED.value:
                    raise StateError(
                        f"Member {member_id} already has an open account {existing['account_number']}"
                    )

            now = self.clock()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                member_id=member_id,
                account_number=f"SAV-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}",
                currency=currency,
                balance=Money.zero(currency),
                interest_earned=Money.zero(currency),
                last_activity_date=now
            )

            with unit_of_work(self.storage, f"open account for member {member_id}"):
                self._save_account(account)
                if initial_deposit is not None:
                    opening = self.post(
                        account.id, TransactionType.DEPOSIT, initial_deposit,
                        actor, "Initial deposit"
                    )

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_OPENED, "account", account.id,
            {'member_id': member_id, 'account_number': account.account_number},
            actor=actor.user_id
        )
        if opening:
            self.publish_posting(opening)
        log_action(logger, "info", f"Opened account {account.account_number}",
                   user_id=actor.user_id, action="open_account", resource=account.id)
        return self.get_account(account.id)

    def close_account(self, account_id: str, actor: ActorContext) -> Account:
        """Close an account. Only a zero balance can be closed."""
        with self.locks.hold(account_id):
            account = self.get_account(account_id)
            if account.status == AccountStatus.CLOSED:
                raise StateError(f"Account {account_id} is already closed")
            if not account.balance.is_zero():
                raise StateError(
                    f"Account {account_id} has a balance of {account.balance.to_string()}"
                )
            account.status = AccountStatus.CLOSED
            account.updated_at = self.clock()
            with unit_of_work(self.storage, f"close account {account_id}"):
                self._save_account(account)

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_CLOSED, "account", account_id, {}, actor=actor.user_id
        )
        log_action(logger, "info", f"Closed account {account.account_number}",
                   user_id=actor.user_id, action="close_account", resource=account_id)
        return account

    # ------------------------------------------------------------------
    # Posting primitives
    # ------------------------------------------------------------------

    def deposit(
        self,
        account_id: str,
        amount: Money,
        actor: ActorContext,
        description: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.DEPOSIT
    ) -> Transaction:
        """Credit an account and record the transaction atomically"""
        if not transaction_type.is_credit or transaction_type == TransactionType.INTEREST:
            raise ValidationError(f"{transaction_type.value} is not a deposit type")
        return self._post_and_publish(account_id, transaction_type, amount, actor, description)

    def withdraw(
        self,
        account_id: str,
        amount: Money,
        actor: ActorContext,
        description: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.WITHDRAWAL
    ) -> Transaction:
        """Debit an account; fails with InsufficientFundsError above the balance"""
        if transaction_type.is_credit:
            raise ValidationError(f"{transaction_type.value} is not a withdrawal type")
        return self._post_and_publish(account_id, transaction_type, amount, actor, description)

    def apply_interest(
        self,
        account_id: str,
        amount: Money,
        actor: ActorContext,
        description: Optional[str] = None
    ) -> Transaction:
        """Credit interest, growing interest_earned alongside the balance"""
        return self._post_and_publish(account_id, TransactionType.INTEREST, amount, actor, description)

    def _post_and_publish(self, account_id, transaction_type, amount, actor, description) -> Transaction:
        with self.locks.hold(account_id):
            with unit_of_work(self.storage, f"{transaction_type.value} on account {account_id}"):
                transaction = self.post(account_id, transaction_type, amount, actor, description)
        self.publish_posting(transaction)
        return transaction

    def post(
        self,
        account_id: str,
        transaction_type: TransactionType,
        amount: Money,
        actor: ActorContext,
        description: Optional[str] = None
    ) -> Transaction:
        """
        Apply one posting inside the caller's unit of work.

        The caller must hold the account lock and an open unit of work;
        components composing several writes (loan release, loan payment)
        use this and call ``publish_posting`` once their unit commits.

        Args:
            account_id: Account to post against
            transaction_type: Kind of posting; its direction sets the sign
            amount: Positive amount in the account currency
            actor: Acting staff member or scheduler
            description: Ledger description (a default is derived from the type)

        Returns:
            The persisted Transaction
        """
        account = self.get_account(account_id)
        self._validate_amount(amount, account.currency)

        if transaction_type == TransactionType.INTEREST:
            if not account.earns_interest():
                raise StateError(f"Account {account_id} is {account.status.value}; interest not allowed")
        elif transaction_type.is_credit:
            if not account.can_credit():
                raise StateError(f"Account {account_id} is {account.status.value}; deposits not allowed")
        else:
            if not account.can_debit():
                raise StateError(f"Account {account_id} is {account.status.value}; withdrawals not allowed")
            if amount > account.balance:
                raise InsufficientFundsError(
                    f"Insufficient funds: balance {account.balance.to_string()}, "
                    f"requested {amount.to_string()}",
                    details={'account_id': account_id}
                )

        signed = amount if transaction_type.is_credit else -amount
        now = self.clock()

        account.balance = account.balance + signed
        if transaction_type == TransactionType.INTEREST:
            account.interest_earned = account.interest_earned + amount
        account.transaction_count += 1
        account.last_activity_date = now
        account.updated_at = now

        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account.id,
            member_id=account.member_id,
            transaction_type=transaction_type,
            amount=signed,
            running_balance=account.balance,
            actor=actor.user_id,
            description=description or transaction_type.value.replace("_", " ").title(),
            reference_number=self._reference_number(transaction_type, now),
            sequence=account.transaction_count
        )

        self.storage.save(self.transactions_table, transaction.id, transaction_to_dict(transaction))
        self._save_account(account)
        return transaction

    def update_status(self, account_id: str, status: AccountStatus,
                      touch_activity: bool = False) -> Account:
        """
        Change an account's status inside the caller's unit of work.

        ``touch_activity`` restarts the inactivity clock, as reactivation does.
        """
        account = self.get_account(account_id)
        now = self.clock()
        account.status = status
        if touch_activity:
            account.last_activity_date = now
        account.updated_at = now
        self._save_account(account)
        return account

    def publish_posting(self, transaction: Transaction) -> None:
        """Audit and log a committed posting"""
        self.audit_trail.log_event(
            AuditEventType.TRANSACTION_POSTED, "transaction", transaction.id,
            {
                'account_id': transaction.account_id,
                'transaction_type': transaction.transaction_type,
                'amount': transaction.amount.amount,
                'running_balance': transaction.running_balance.amount,
                'reference_number': transaction.reference_number
            },
            actor=transaction.actor
        )
        log_action(
            logger, "info",
            f"Posted {transaction.transaction_type.value} {transaction.amount.to_string()}",
            user_id=transaction.actor, action="post_transaction",
            resource=transaction.account_id,
            extra={'reference_number': transaction.reference_number}
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Account:
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            raise NotFoundError(f"Account {account_id} not found")
        return account_from_dict(data)

    def get_member_account(self, member_id: str) -> Account:
        """Get the member's account that is not closed"""
        for data in self.storage.find(self.accounts_table, {'member_id': member_id}):
            if data['status'] != AccountStatus.CLOSED.value:
                return account_from_dict(data)
        raise NotFoundError(f"No open account for member {member_id}")

    def list_accounts(self, status: Optional[AccountStatus] = None) -> List[Account]:
        if status:
            records = self.storage.find(self.accounts_table, {'status': status.value})
        else:
            records = self.storage.load_all(self.accounts_table)
        accounts = [account_from_dict(data) for data in records]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def get_balance(self, account_id: str) -> Money:
        return self.get_account(account_id).balance

    def get_transactions(
        self,
        account_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None
    ) -> List[Transaction]:
        """
        Transaction history of one account in posting order

        Args:
            account_id: Account to read
            start: Earliest timestamp (inclusive)
            end: Latest timestamp (inclusive)
            transaction_type: Restrict to one type

        Returns:
            List of Transaction objects ordered by sequence
        """
        self.get_account(account_id)
        transactions = [
            transaction_from_dict(data)
            for data in self.storage.find(self.transactions_table, {'account_id': account_id})
        ]
        transactions = self._filter(transactions, start, end, transaction_type)
        transactions.sort(key=lambda t: t.sequence)
        return transactions

    def list_transactions(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None,
        member_id: Optional[str] = None
    ) -> List[Transaction]:
        """Transactions across all accounts, oldest first"""
        filters = {'member_id': member_id} if member_id else {}
        transactions = [
            transaction_from_dict(data)
            for data in self.storage.find(self.transactions_table, filters)
        ]
        transactions = self._filter(transactions, start, end, transaction_type)
        transactions.sort(key=lambda t: (t.created_at, t.sequence))
        return transactions

    def balance_as_of(self, account_id: str, moment: datetime) -> Money:
        """Running balance of the last transaction on or before ``moment``"""
        account = self.get_account(account_id)
        history = self.get_transactions(account_id, end=moment)
        if not history:
            return Money.zero(account.currency)
        return history[-1].running_balance

    def last_transaction_date(self, account_id: str) -> Optional[datetime]:
        history = self.get_transactions(account_id)
        return history[-1].created_at if history else None

    def transaction_summary(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Count and absolute total per transaction type within a period"""
        summary: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {'count': 0, 'total': Money.zero(self.currency)}
        )
        for transaction in self.list_transactions(start=start, end=end):
            if transaction.amount.currency != self.currency:
                continue
            entry = summary[transaction.transaction_type.value]
            entry['count'] += 1
            entry['total'] = entry['total'] + abs(transaction.amount)
        return dict(summary)

    def verify_account(self, account_id: str) -> Dict[str, Any]:
        """
        Reconcile an account against its transaction log

        Returns:
            Dictionary with the stored balance, the balance implied by the
            log, and any transaction whose running balance breaks the chain
        """
        account = self.get_account(account_id)
        running = Money.zero(account.currency)
        breaks = []
        for transaction in self.get_transactions(account_id):
            running = running + transaction.amount
            if transaction.running_balance != running:
                breaks.append({
                    'transaction_id': transaction.id,
                    'sequence': transaction.sequence,
                    'expected': str(running.amount),
                    'recorded': str(transaction.running_balance.amount)
                })
        return {
            'account_id': account_id,
            'valid': not breaks and running == account.balance,
            'balance': str(account.balance.amount),
            'computed_balance': str(running.amount),
            'running_balance_breaks': breaks
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _filter(transactions, start, end, transaction_type) -> List[Transaction]:
        if start:
            transactions = [t for t in transactions if t.created_at >= start]
        if end:
            transactions = [t for t in transactions if t.created_at <= end]
        if transaction_type:
            transactions = [t for t in transactions if t.transaction_type == transaction_type]
        return transactions

    @staticmethod
    def _validate_amount(amount: Money, currency: Currency) -> None:
        if not isinstance(amount, Money):
            raise ValidationError("Amount must be a Money value")
        if amount.currency != currency:
            raise ValidationError(
                f"Amount currency {amount.currency.code} does not match account currency {currency.code}"
            )
        if not amount.is_positive():
            raise ValidationError("Amount must be positive")

    @staticmethod
    def _reference_number(transaction_type: TransactionType, moment: datetime) -> str:
        return (
            f"{transaction_type.reference_prefix}-{moment.strftime('%Y%m%d-%H%M%S')}-"
            f"{secrets.randbelow(1000):03d}"
        )

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, account_to_dict(account))
