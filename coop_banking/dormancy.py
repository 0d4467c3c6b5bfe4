"""
Dormancy Monitor Module

Flags Active accounts with no activity within a configurable number of
months as Dormant and reverses the flag on reactivation. Each transition
updates the account and its dormancy record in one unit of work.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .access import ActorContext
from .accounts import AccountStatus
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .dates import add_months, utc_now
from .errors import ValidationError, NotFoundError, StateError
from .ledger import AccountLedger
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, unit_of_work


logger = get_logger("coop.dormancy")


class DormancyStatus(Enum):
    DORMANT = "Dormant"
    REACTIVATED = "Reactivated"


@dataclass
class DormancyRecord(StorageRecord):
    """One dormancy episode of an account"""
    account_id: str
    member_id: str
    dormant_since: datetime
    last_transaction_date: Optional[datetime] = None
    status: DormancyStatus = DormancyStatus.DORMANT
    notification_sent: bool = False
    reactivated_at: Optional[datetime] = None
    reactivated_by: Optional[str] = None

    def to_dict(self) -> Dict:
        result = super().to_dict()
        for name in ('dormant_since', 'last_transaction_date', 'reactivated_at'):
            value = getattr(self, name)
            result[name] = value.isoformat() if value else None
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'DormancyRecord':
        def get_datetime(name: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[name]) if data.get(name) else None

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            member_id=data['member_id'],
            dormant_since=get_datetime('dormant_since'),
            last_transaction_date=get_datetime('last_transaction_date'),
            status=DormancyStatus(data['status']),
            notification_sent=data.get('notification_sent', False),
            reactivated_at=get_datetime('reactivated_at'),
            reactivated_by=data.get('reactivated_by')
        )


@dataclass
class DormancySweepResult:
    """Outcome of one dormancy sweep"""
    threshold_months: int
    cutoff: datetime
    checked_count: int = 0
    flagged: List[DormancyRecord] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def flagged_count(self) -> int:
        return len(self.flagged)


class DormancyMonitor:
    """
    Active/Dormant transitions driven by ledger activity
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        threshold_months: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
        max_workers: Optional[int] = None
    ):
        config = get_config()
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.threshold_months = threshold_months or config.dormancy_threshold_months
        self.clock = clock
        self.max_workers = max_workers or config.batch_workers
        self.records_table = "dormancy_records"

    def sweep(
        self,
        threshold_months: Optional[int] = None,
        actor: Optional[ActorContext] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> DormancySweepResult:
        """
        Flag every Active account inactive for ``threshold_months``

        Activity is the later of the last ledger transaction and the last
        reactivation, so a reactivated account gets a full threshold period
        before it can be flagged again.

        Args:
            threshold_months: Inactivity period (configured value when omitted)
            actor: Actor recorded in the audit trail (system actor when omitted)
            cancel_event: When set, accounts not yet started are skipped

        Returns:
            DormancySweepResult with flagged records and per-account failures
        """
        threshold = self.threshold_months if threshold_months is None else threshold_months
        if not isinstance(threshold, int) or threshold <= 0:
            raise ValidationError("Dormancy threshold must be a positive number of months")
        actor = actor or ActorContext.system()

        cutoff = add_months(self.clock(), -threshold)
        result = DormancySweepResult(threshold_months=threshold, cutoff=cutoff)
        accounts = self.ledger.list_accounts(AccountStatus.ACTIVE)
        result_lock = threading.Lock()

        def process(account_id: str) -> None:
            if cancel_event is not None and cancel_event.is_set():
                with result_lock:
                    result.cancelled = True
                return
            try:
                record = self._flag_if_inactive(account_id, cutoff)
            except Exception as e:
                with result_lock:
                    result.failures.append({'account_id': account_id, 'error': str(e)})
                log_action(logger, "error", f"Dormancy check failed for account {account_id}: {e}",
                           user_id=actor.user_id, action="dormancy_sweep", resource=account_id)
                self.audit_trail.log_event(
                    AuditEventType.BATCH_ITEM_FAILED, "account", account_id,
                    {'job': 'dormancy', 'error': str(e)}, actor=actor.user_id
                )
                return
            with result_lock:
                result.checked_count += 1
                if record:
                    result.flagged.append(record)
            if record:
                self.audit_trail.log_event(
                    AuditEventType.ACCOUNT_DORMANT, "account", account_id,
                    {
                        'dormancy_record_id': record.id,
                        'last_transaction_date': record.last_transaction_date,
                        'threshold_months': threshold
                    },
                    actor=actor.user_id
                )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            list(executor.map(process, [account.id for account in accounts]))

        self.audit_trail.log_event(
            AuditEventType.DORMANCY_SWEEP_COMPLETED, "dormancy_sweep", cutoff.isoformat(),
            {
                'threshold_months': threshold,
                'checked_count': result.checked_count,
                'flagged_count': result.flagged_count,
                'failure_count': len(result.failures),
                'cancelled': result.cancelled
            },
            actor=actor.user_id
        )
        log_action(logger, "info",
                   f"Dormancy sweep flagged {result.flagged_count} of {result.checked_count} accounts",
                   user_id=actor.user_id, action="dormancy_sweep",
                   extra={'threshold_months': threshold, 'failures': len(result.failures)})
        return result

    def _flag_if_inactive(self, account_id: str, cutoff: datetime) -> Optional[DormancyRecord]:
        with self.ledger.locks.hold(account_id):
            account = self.ledger.get_account(account_id)
            if account.status != AccountStatus.ACTIVE:
                return None
            last_transaction = self.ledger.last_transaction_date(account_id)
            candidates = [d for d in (last_transaction, account.last_activity_date) if d]
            last_activity = max(candidates) if candidates else account.created_at
            if last_activity >= cutoff:
                return None

            now = self.clock()
            record = DormancyRecord(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account.id,
                member_id=account.member_id,
                dormant_since=now,
                last_transaction_date=last_transaction
            )
            with unit_of_work(self.storage, f"flag account {account_id} dormant"):
                self.ledger.update_status(account_id, AccountStatus.DORMANT)
                self.storage.save(self.records_table, record.id, record.to_dict())
            return record

    def reactivate(self, account_id: str, actor: ActorContext) -> DormancyRecord:
        """Dormant -> Active, closing the open dormancy record"""
        with self.ledger.locks.hold(account_id):
            account = self.ledger.get_account(account_id)
            if account.status != AccountStatus.DORMANT:
                raise StateError(f"Account {account_id} is {account.status.value}, not Dormant")
            record = self._open_record(account_id)
            if record is None:
                raise NotFoundError(f"No open dormancy record for account {account_id}")

            now = self.clock()
            record.status = DormancyStatus.REACTIVATED
            record.reactivated_at = now
            record.reactivated_by = actor.user_id
            record.updated_at = now
            with unit_of_work(self.storage, f"reactivate account {account_id}"):
                self.ledger.update_status(account_id, AccountStatus.ACTIVE, touch_activity=True)
                self.storage.save(self.records_table, record.id, record.to_dict())

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_REACTIVATED, "account", account_id,
            {'dormancy_record_id': record.id}, actor=actor.user_id
        )
        log_action(logger, "info", f"Reactivated account {account.account_number}",
                   user_id=actor.user_id, action="reactivate_account", resource=account_id)
        return record

    def mark_notification_sent(self, record_id: str, actor: ActorContext) -> DormancyRecord:
        """Note that the member was told about the dormancy"""
        record = self.get_record(record_id)
        record.notification_sent = True
        record.updated_at = self.clock()
        with unit_of_work(self.storage, f"mark notification for dormancy record {record_id}"):
            self.storage.save(self.records_table, record.id, record.to_dict())
        self.audit_trail.log_event(
            AuditEventType.DORMANCY_NOTIFICATION_SENT, "dormancy_record", record_id,
            {'account_id': record.account_id}, actor=actor.user_id
        )
        return record

    def get_record(self, record_id: str) -> DormancyRecord:
        data = self.storage.load(self.records_table, record_id)
        if not data:
            raise NotFoundError(f"Dormancy record {record_id} not found")
        return DormancyRecord.from_dict(data)

    def list_dormant(self) -> List[DormancyRecord]:
        """Open dormancy records, longest dormant first"""
        records = [
            DormancyRecord.from_dict(data)
            for data in self.storage.find(self.records_table, {'status': DormancyStatus.DORMANT.value})
        ]
        records.sort(key=lambda r: r.dormant_since)
        return records

    def dormant_count(self) -> int:
        return len(self.storage.find(self.records_table, {'status': DormancyStatus.DORMANT.value}))

    def account_history(self, account_id: str) -> List[DormancyRecord]:
        records = [
            DormancyRecord.from_dict(data)
            for data in self.storage.find(self.records_table, {'account_id': account_id})
        ]
        records.sort(key=lambda r: r.created_at)
        return records

    def _open_record(self, account_id: str) -> Optional[DormancyRecord]:
        for data in self.storage.find(self.records_table, {
            'account_id': account_id, 'status': DormancyStatus.DORMANT.value
        }):
            return DormancyRecord.from_dict(data)
        return None
