"""
Tests for the account ledger: postings, history and reconciliation
"""

import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from coop_banking.access import ActorContext, Role
from coop_banking.accounts import AccountStatus, TransactionType
from coop_banking.audit import AuditTrail, AuditEventType
from coop_banking.currency import Currency, Money
from coop_banking.errors import (
    ConsistencyError, InsufficientFundsError, NotFoundError, StateError, ValidationError
)
from coop_banking.ledger import AccountLedger
from coop_banking.storage import InMemoryStorage

from helpers import FailingStorage, FakeClock, php


class TestAccountLifecycle:

    def setup_method(self):
        self.clock = FakeClock()
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.storage, self.audit, clock=self.clock, currency=Currency.PHP)
        self.teller = ActorContext.for_role("teller_1", Role.BOOKKEEPER)

    def test_open_account_with_initial_deposit(self):
        """Test opening an account with an initial deposit"""
        account = self.ledger.open_account("M-001", self.teller, php("1000.00"))

        assert account.status == AccountStatus.ACTIVE
        assert account.balance == php("1000.00")
        assert account.interest_earned == php(0)
        assert re.match(r"^SAV-20240115-[0-9A-F]{6}$", account.account_number)

        history = self.ledger.get_transactions(account.id)
        assert len(history) == 1
        assert history[0].transaction_type == TransactionType.DEPOSIT
        assert history[0].description == "Initial deposit"
        assert history[0].actor == "teller_1"

    def test_open_account_without_deposit(self):
        """Test opening an account with zero balance"""
        account = self.ledger.open_account("M-001", self.teller)
        assert account.balance.is_zero()
        assert self.ledger.get_transactions(account.id) == []

    def test_one_open_account_per_member(self):
        """Test a member cannot hold two open accounts"""
        self.ledger.open_account("M-001", self.teller)
        with pytest.raises(StateError, match="already has an open account"):
            self.ledger.open_account("M-001", self.teller)

    def test_member_can_reopen_after_closing(self):
        """Test a member may open a new account after closing"""
        first = self.ledger.open_account("M-001", self.teller)
        self.ledger.close_account(first.id, self.teller)
        second = self.ledger.open_account("M-001", self.teller)
        assert second.id != first.id
        assert self.ledger.get_member_account("M-001").id == second.id

    def test_close_requires_zero_balance(self):
        """Test closing requires a zero balance"""
        account = self.ledger.open_account("M-001", self.teller, php("50.00"))
        with pytest.raises(StateError, match="balance"):
            self.ledger.close_account(account.id, self.teller)

        self.ledger.withdraw(account.id, php("50.00"), self.teller)
        closed = self.ledger.close_account(account.id, self.teller)
        assert closed.status == AccountStatus.CLOSED

        with pytest.raises(StateError):
            self.ledger.deposit(account.id, php("10.00"), self.teller)

    def test_open_and_close_are_audited(self):
        """Test opening and closing log audit events"""
        account = self.ledger.open_account("M-001", self.teller)
        self.ledger.close_account(account.id, self.teller)
        events = self.audit.get_events_for_entity("account", account.id)
        assert [e.event_type for e in events] == [AuditEventType.ACCOUNT_OPENED, AuditEventType.ACCOUNT_CLOSED]


class TestPostings:

    def setup_method(self):
        self.clock = FakeClock()
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.storage, self.audit, clock=self.clock, currency=Currency.PHP)
        self.teller = ActorContext.for_role("teller_1", Role.BOOKKEEPER)
        self.account = self.ledger.open_account("M-001", self.teller, php("1000.00"))

    def test_deposit_and_withdraw(self):
        """Test deposits and withdrawals update the balance"""
        deposit = self.ledger.deposit(self.account.id, php("250.50"), self.teller)
        withdrawal = self.ledger.withdraw(self.account.id, php("100.25"), self.teller)

        assert deposit.amount == php("250.50")
        assert deposit.running_balance == php("1250.50")
        assert withdrawal.amount == php("-100.25")
        assert withdrawal.running_balance == php("1150.25")
        assert self.ledger.get_balance(self.account.id) == php("1150.25")
        assert re.match(r"^DEP-\d{8}-\d{6}-\d{3}$", deposit.reference_number)
        assert re.match(r"^WDW-\d{8}-\d{6}-\d{3}$", withdrawal.reference_number)

    def test_running_balance_matches_sum_of_history(self):
        """Test running balances match the transaction history"""
        amounts = ["15.00", "-200.00", "3000.10", "-0.10", "42.42", "-857.42"]
        for value in amounts:
            if value.startswith("-"):
                self.ledger.withdraw(self.account.id, php(value[1:]), self.teller)
            else:
                self.ledger.deposit(self.account.id, php(value), self.teller)

        history = self.ledger.get_transactions(self.account.id)
        running = Money.zero(Currency.PHP)
        for transaction in history:
            running = running + transaction.amount
            assert transaction.running_balance == running
        assert [t.sequence for t in history] == list(range(1, len(amounts) + 2))
        assert self.ledger.get_balance(self.account.id) == running
        assert self.ledger.verify_account(self.account.id)["valid"]

    def test_insufficient_funds_leaves_state_unchanged(self):
        """Test an overdraft attempt changes nothing"""
        before = self.ledger.get_account(self.account.id)

        with pytest.raises(InsufficientFundsError, match="Insufficient funds"):
            self.ledger.withdraw(self.account.id, php("1000.01"), self.teller)

        after = self.ledger.get_account(self.account.id)
        assert after.balance == before.balance
        assert after.transaction_count == before.transaction_count
        assert len(self.ledger.get_transactions(self.account.id)) == 1

    def test_withdraw_entire_balance(self):
        """Test withdrawing the full balance"""
        self.ledger.withdraw(self.account.id, php("1000.00"), self.teller)
        assert self.ledger.get_balance(self.account.id).is_zero()

    def test_amount_validation(self):
        """Test non-positive and foreign amounts are rejected"""
        with pytest.raises(ValidationError, match="positive"):
            self.ledger.deposit(self.account.id, php("0"), self.teller)
        with pytest.raises(ValidationError, match="positive"):
            self.ledger.deposit(self.account.id, php("-5"), self.teller)
        with pytest.raises(ValidationError, match="currency"):
            self.ledger.deposit(self.account.id, Money("5", Currency.USD), self.teller)

    def test_missing_account(self):
        """Test operations on an unknown account"""
        with pytest.raises(NotFoundError):
            self.ledger.deposit("no-such-account", php("5"), self.teller)

    def test_apply_interest_tracks_interest_earned(self):
        """Test interest postings accumulate interest earned"""
        transaction = self.ledger.apply_interest(self.account.id, php("2.08"), self.teller, "Interest")
        account = self.ledger.get_account(self.account.id)

        assert transaction.transaction_type == TransactionType.INTEREST
        assert account.balance == php("1002.08")
        assert account.interest_earned == php("2.08")

    def test_dormant_account_accepts_deposits_only(self):
        """Test dormant accounts accept deposits only"""
        with self.storage.atomic():
            self.ledger.update_status(self.account.id, AccountStatus.DORMANT)

        self.ledger.deposit(self.account.id, php("10"), self.teller)
        with pytest.raises(StateError, match="withdrawals not allowed"):
            self.ledger.withdraw(self.account.id, php("10"), self.teller)
        with pytest.raises(StateError, match="interest not allowed"):
            self.ledger.apply_interest(self.account.id, php("1"), self.teller)

    def test_postings_are_audited(self):
        """Test postings log audit events"""
        transaction = self.ledger.deposit(self.account.id, php("5"), self.teller)
        events = self.audit.get_events_for_entity("transaction", transaction.id)
        assert events[0].event_type == AuditEventType.TRANSACTION_POSTED
        assert events[0].metadata["amount"] == "5.00"
        assert self.audit.verify_integrity()["valid"]

    def test_balance_as_of(self):
        """Test balance reconstruction at a past time"""
        opened_at = self.clock.now
        self.clock.advance(days=1)
        self.ledger.deposit(self.account.id, php("500"), self.teller)

        assert self.ledger.balance_as_of(self.account.id, opened_at + timedelta(hours=1)) == php("1000")
        assert self.ledger.balance_as_of(self.account.id, self.clock.now) == php("1500")
        assert self.ledger.balance_as_of(self.account.id, opened_at - timedelta(days=1)) == php("0")

    def test_history_filters(self):
        """Test filtering transaction history"""
        self.clock.advance(days=1)
        self.ledger.deposit(self.account.id, php("500"), self.teller)
        self.clock.advance(days=1)
        self.ledger.withdraw(self.account.id, php("200"), self.teller)

        deposits = self.ledger.get_transactions(self.account.id, transaction_type=TransactionType.DEPOSIT)
        assert len(deposits) == 2
        recent = self.ledger.get_transactions(self.account.id, start=self.clock.now - timedelta(hours=1))
        assert [t.transaction_type for t in recent] == [TransactionType.WITHDRAWAL]

    def test_transaction_summary(self):
        """Test transaction summary totals"""
        self.ledger.deposit(self.account.id, php("500"), self.teller)
        self.ledger.withdraw(self.account.id, php("200"), self.teller)

        summary = self.ledger.transaction_summary()
        assert summary["DEPOSIT"]["count"] == 2
        assert summary["DEPOSIT"]["total"] == php("1500")
        assert summary["WITHDRAWAL"]["total"] == php("200")


class TestPostingAtomicity:

    def setup_method(self):
        self.storage = FailingStorage()
        self.audit = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.storage, self.audit, clock=FakeClock(), currency=Currency.PHP)
        self.teller = ActorContext.for_role("teller_1", Role.BOOKKEEPER)
        self.account = self.ledger.open_account("M-001", self.teller, php("1000.00"))

    def test_failed_account_write_discards_transaction(self):
        """Test a failed account write rolls back the transaction"""
        self.storage.arm("accounts")

        with pytest.raises(ConsistencyError, match="rolled back"):
            self.ledger.deposit(self.account.id, php("100"), self.teller)

        self.storage.disarm()
        assert self.ledger.get_balance(self.account.id) == php("1000.00")
        assert len(self.ledger.get_transactions(self.account.id)) == 1
        assert self.ledger.verify_account(self.account.id)["valid"]

    def test_failed_transaction_write_keeps_balance(self):
        """Test a failed transaction write keeps the old balance"""
        self.storage.arm("transactions")

        with pytest.raises(ConsistencyError):
            self.ledger.withdraw(self.account.id, php("100"), self.teller)

        self.storage.disarm()
        assert self.ledger.get_balance(self.account.id) == php("1000.00")

    def test_failed_opening_deposit_discards_account(self):
        """Test a failed opening deposit discards the account"""
        self.storage.arm("transactions")

        with pytest.raises(ConsistencyError):
            self.ledger.open_account("M-002", self.teller, php("100"))

        self.storage.disarm()
        with pytest.raises(NotFoundError):
            self.ledger.get_member_account("M-002")


class TestConcurrentPostings:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.storage, self.audit, currency=Currency.PHP)
        self.teller = ActorContext.for_role("teller_1", Role.BOOKKEEPER)

    def test_concurrent_deposits_serialize(self):
        """Test concurrent deposits are all applied"""
        account = self.ledger.open_account("M-001", self.teller)

        def deposit_many():
            for _ in range(25):
                self.ledger.deposit(account.id, php("1.00"), self.teller)

        threads = [threading.Thread(target=deposit_many) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert self.ledger.get_balance(account.id) == php("200.00")
        history = self.ledger.get_transactions(account.id)
        assert [t.running_balance for t in history] == [php(n) for n in range(1, 201)]
        assert self.ledger.verify_account(account.id)["valid"]

    def test_concurrent_withdrawals_never_overdraw(self):
        """Test concurrent withdrawals never overdraw"""
        account = self.ledger.open_account("M-001", self.teller, php("1000.00"))

        def attempt(_):
            try:
                self.ledger.withdraw(account.id, php("100.00"), self.teller)
                return True
            except InsufficientFundsError:
                return False

        with ThreadPoolExecutor(max_workers=8) as executor:
            outcomes = list(executor.map(attempt, range(20)))

        assert outcomes.count(True) == 10
        assert self.ledger.get_balance(account.id).is_zero()
