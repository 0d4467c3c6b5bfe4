"""
Tests for dormancy detection and reactivation
"""

import threading

import pytest

from coop_banking.access import ActorContext, Role
from coop_banking.accounts import AccountStatus
from coop_banking.audit import AuditTrail, AuditEventType
from coop_banking.currency import Currency
from coop_banking.dormancy import DormancyMonitor, DormancyStatus
from coop_banking.errors import NotFoundError, StateError, ValidationError
from coop_banking.ledger import AccountLedger
from coop_banking.storage import InMemoryStorage

from helpers import FakeClock, php


class TestDormancyMonitor:

    def setup_method(self):
        self.clock = FakeClock()
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.storage, self.audit, clock=self.clock, currency=Currency.PHP)
        self.monitor = DormancyMonitor(self.storage, self.ledger, self.audit, threshold_months=6,
                                       clock=self.clock, max_workers=2)
        self.clerk = ActorContext.for_role("clerk", Role.BOOKKEEPER)
        self.treasurer = ActorContext.for_role("treasurer", Role.TREASURER)
        self.opened_at = self.clock.now
        self.account = self.ledger.open_account("M-001", self.clerk, php("1000"))

    def test_inactive_account_is_flagged(self):
        """Test an account idle past the threshold becomes dormant"""
        self.clock.advance_months(13)

        result = self.monitor.sweep(threshold_months=12)

        assert result.flagged_count == 1
        assert result.checked_count == 1
        record = result.flagged[0]
        assert record.account_id == self.account.id
        assert record.member_id == "M-001"
        assert record.last_transaction_date == self.opened_at
        assert record.status == DormancyStatus.DORMANT
        assert self.ledger.get_account(self.account.id).status == AccountStatus.DORMANT
        assert self.monitor.dormant_count() == 1
        assert self.monitor.list_dormant()[0].id == record.id

    def test_recent_activity_is_not_flagged(self):
        """Test recent activity keeps an account active"""
        self.clock.advance_months(12)
        self.ledger.deposit(self.account.id, php("10"), self.clerk)
        self.clock.advance_months(1)

        result = self.monitor.sweep(threshold_months=12)

        assert result.flagged_count == 0
        assert self.ledger.get_account(self.account.id).status == AccountStatus.ACTIVE

    def test_configured_threshold_and_boundary(self):
        """Test the configured threshold and its boundary day"""
        self.clock.advance_months(6)
        assert self.monitor.sweep().flagged_count == 0

        self.clock.advance(days=1)
        result = self.monitor.sweep()
        assert result.threshold_months == 6
        assert result.flagged_count == 1

    def test_reactivation_restarts_the_inactivity_clock(self):
        """Test reactivation resets the inactivity period"""
        self.clock.advance_months(13)
        self.monitor.sweep(threshold_months=12)

        record = self.monitor.reactivate(self.account.id, self.treasurer)

        assert record.status == DormancyStatus.REACTIVATED
        assert record.reactivated_by == "treasurer"
        assert self.ledger.get_account(self.account.id).status == AccountStatus.ACTIVE
        assert self.monitor.dormant_count() == 0
        assert self.monitor.sweep(threshold_months=12).flagged_count == 0

        self.clock.advance_months(11)
        assert self.monitor.sweep(threshold_months=12).flagged_count == 0
        self.clock.advance_months(2)
        assert self.monitor.sweep(threshold_months=12).flagged_count == 1
        assert len(self.monitor.account_history(self.account.id)) == 2

    def test_dormant_accounts_are_not_flagged_again(self):
        """Test dormant accounts are not flagged twice"""
        self.clock.advance_months(13)
        self.monitor.sweep(threshold_months=12)
        result = self.monitor.sweep(threshold_months=12)
        assert result.checked_count == 0
        assert self.monitor.dormant_count() == 1

    def test_reactivate_requires_dormant_account(self):
        """Test only dormant accounts can be reactivated"""
        with pytest.raises(StateError, match="not Dormant"):
            self.monitor.reactivate(self.account.id, self.treasurer)
        with pytest.raises(NotFoundError):
            self.monitor.reactivate("missing", self.treasurer)

    def test_dormant_account_restrictions(self):
        """Test dormant accounts reject withdrawals"""
        self.clock.advance_months(13)
        self.monitor.sweep(threshold_months=12)

        self.ledger.deposit(self.account.id, php("50"), self.clerk)
        with pytest.raises(StateError):
            self.ledger.withdraw(self.account.id, php("50"), self.clerk)
        assert self.ledger.get_account(self.account.id).status == AccountStatus.DORMANT

    def test_mark_notification_sent(self):
        """Test recording a dormancy notification"""
        self.clock.advance_months(13)
        record = self.monitor.sweep(threshold_months=12).flagged[0]

        updated = self.monitor.mark_notification_sent(record.id, self.treasurer)

        assert updated.notification_sent
        assert self.monitor.get_record(record.id).notification_sent
        with pytest.raises(NotFoundError):
            self.monitor.get_record("missing")

    def test_threshold_must_be_positive(self):
        """Test a non-positive threshold is rejected"""
        with pytest.raises(ValidationError):
            self.monitor.sweep(threshold_months=0)

    def test_cancelled_sweep_flags_nothing(self):
        """Test a cancelled sweep leaves accounts untouched"""
        self.clock.advance_months(13)
        cancel = threading.Event()
        cancel.set()

        result = self.monitor.sweep(threshold_months=12, cancel_event=cancel)

        assert result.cancelled
        assert result.flagged_count == 0
        assert self.ledger.get_account(self.account.id).status == AccountStatus.ACTIVE

    def test_sweep_and_transitions_are_audited(self):
        """Test sweeps and status changes are audited"""
        self.clock.advance_months(13)
        self.monitor.sweep(threshold_months=12)
        self.monitor.reactivate(self.account.id, self.treasurer)

        events = [e.event_type for e in self.audit.get_events_for_entity("account", self.account.id)]
        assert events[-2:] == [AuditEventType.ACCOUNT_DORMANT, AuditEventType.ACCOUNT_REACTIVATED]
        assert len(self.audit.get_events_by_type(AuditEventType.DORMANCY_SWEEP_COMPLETED)) == 1
        assert self.audit.verify_integrity()["valid"]
