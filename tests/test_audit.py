"""
Tests for the hash-chained audit trail
"""

from coop_banking.audit import AuditTrail, AuditEventType
from coop_banking.storage import InMemoryStorage


class TestAuditTrail:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def test_events_are_chained(self):
        """Test each event links to the previous hash"""
        first = self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "acc_1",
                                     {"member_id": "M-001"}, actor="teller")
        second = self.audit.log_event(AuditEventType.ACCOUNT_CLOSED, "account", "acc_1", actor="teller")

        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert second.sequence == first.sequence + 1
        assert self.audit.count_events() == 2

        result = self.audit.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 2

    def test_tampering_is_detected(self):
        """Test a modified event fails verification"""
        event = self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "acc_1",
                                     {"member_id": "M-001"})
        self.audit.log_event(AuditEventType.ACCOUNT_CLOSED, "account", "acc_1")

        stored = self.storage.load("audit_events", event.id)
        stored["metadata"]["member_id"] = "M-999"
        self.storage.save("audit_events", event.id, stored)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_chain_resumes_after_restart(self):
        """Test a new trail continues the stored chain"""
        first = self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "acc_1")
        restarted = AuditTrail(self.storage)
        second = restarted.log_event(AuditEventType.ACCOUNT_CLOSED, "account", "acc_1")

        assert second.previous_hash == first.current_hash
        assert restarted.verify_integrity()["valid"]

    def test_events_for_entity(self):
        """Test retrieving events for a specific entity"""
        self.audit.log_event(AuditEventType.LOAN_ORIGINATED, "loan", "loan_1")
        self.audit.log_event(AuditEventType.LOAN_APPROVED, "loan", "loan_1")
        self.audit.log_event(AuditEventType.LOAN_ORIGINATED, "loan", "loan_2")

        events = self.audit.get_events_for_entity("loan", "loan_1")
        assert [e.event_type for e in events] == [AuditEventType.LOAN_ORIGINATED, AuditEventType.LOAN_APPROVED]
        assert len(self.audit.get_events_by_type(AuditEventType.LOAN_ORIGINATED)) == 2
