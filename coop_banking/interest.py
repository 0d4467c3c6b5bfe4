"""
Interest Engine Module

Resolves the interest policy in effect on a date, computes interest for a
balance, and posts interest to every qualifying account through the ledger.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

from .access import ActorContext
from .accounts import AccountStatus, Transaction
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money
from .dates import utc_now
from .errors import ValidationError
from .ledger import AccountLedger
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, unit_of_work


logger = get_logger("coop.interest")


class ComputationBasis(Enum):
    """How an annual rate is divided into a posting-period rate"""
    MONTHLY = "Monthly"
    DAILY = "Daily"

    @property
    def periods_per_year(self) -> int:
        return 12 if self == ComputationBasis.MONTHLY else 365


@dataclass
class InterestSetting(StorageRecord):
    """Interest policy effective from a given date"""
    rate: Decimal  # Percent, e.g. 2.5 means 2.5%
    minimum_balance_required: Decimal
    computation_basis: ComputationBasis
    effective_date: date
    reason_for_change: str = ""
    set_by: str = "System"
    sequence: int = 0

    def for_period(self) -> 'InterestSetting':
        """Copy of this setting with the annual rate divided per the basis"""
        return replace(self, rate=self.rate / Decimal(self.computation_basis.periods_per_year))

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['effective_date'] = self.effective_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterestSetting':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            rate=Decimal(data['rate']),
            minimum_balance_required=Decimal(data['minimum_balance_required']),
            computation_basis=ComputationBasis(data['computation_basis']),
            effective_date=date.fromisoformat(data['effective_date']),
            reason_for_change=data.get('reason_for_change', ''),
            set_by=data.get('set_by', 'System'),
            sequence=data.get('sequence', 0)
        )


@dataclass
class InterestRunResult:
    """Outcome of one interest batch"""
    processed_by: str
    setting_id: str
    period_rate: Decimal
    total_amount: Money
    success_count: int = 0
    skipped_count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    cancelled: bool = False
    totals_by_currency: Dict[str, Money] = field(default_factory=dict)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def add_posting(self, amount: Money) -> None:
        """Count one posted amount; ``total_amount`` only sums the ledger currency"""
        code = amount.currency.code
        self.totals_by_currency[code] = self.totals_by_currency.get(code, Money.zero(amount.currency)) + amount
        if amount.currency == self.total_amount.currency:
            self.total_amount = self.total_amount + amount


class InterestEngine:
    """
    Interest policy resolution and batch posting
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        clock: Callable[[], datetime] = utc_now,
        max_workers: Optional[int] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.clock = clock
        self.max_workers = max_workers or get_config().batch_workers
        self.settings_table = "interest_settings"
        self._settings_lock = threading.Lock()

    def create_setting(
        self,
        rate: Decimal,
        minimum_balance_required: Decimal,
        computation_basis: ComputationBasis,
        effective_date: date,
        actor: ActorContext,
        reason_for_change: str = ""
    ) -> InterestSetting:
        """
        Record a new interest policy

        Args:
            rate: Annual rate in percent
            minimum_balance_required: Balance an account needs to earn interest
            computation_basis: Monthly or Daily posting basis
            effective_date: First day the policy applies; may not be in the past
            actor: Staff member setting the policy
            reason_for_change: Free-text justification

        Returns:
            The stored InterestSetting
        """
        rate = Decimal(str(rate))
        minimum_balance_required = Decimal(str(minimum_balance_required))
        if rate <= 0 or rate > 100:
            raise ValidationError("Interest rate must be greater than 0 and at most 100 percent")
        if minimum_balance_required < 0:
            raise ValidationError("Minimum balance cannot be negative")
        if effective_date is None:
            raise ValidationError("Effective date is required")
        if effective_date < self.clock().date():
            raise ValidationError("Effective date cannot be in the past")

        with self._settings_lock:
            now = self.clock()
            setting = InterestSetting(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                rate=rate,
                minimum_balance_required=minimum_balance_required,
                computation_basis=computation_basis,
                effective_date=effective_date,
                reason_for_change=reason_for_change,
                set_by=actor.user_id,
                sequence=self.storage.count(self.settings_table) + 1
            )
            with unit_of_work(self.storage, "create interest setting"):
                self.storage.save(self.settings_table, setting.id, setting.to_dict())

        self.audit_trail.log_event(
            AuditEventType.INTEREST_SETTING_CREATED, "interest_setting", setting.id,
            {
                'rate': setting.rate,
                'minimum_balance_required': setting.minimum_balance_required,
                'computation_basis': setting.computation_basis,
                'effective_date': setting.effective_date.isoformat()
            },
            actor=actor.user_id
        )
        log_action(logger, "info", f"Interest setting {rate}% effective {effective_date}",
                   user_id=actor.user_id, action="create_interest_setting", resource=setting.id)
        return setting

    def list_settings(self) -> List[InterestSetting]:
        """All recorded settings, newest effective date first"""
        settings = [InterestSetting.from_dict(d) for d in self.storage.load_all(self.settings_table)]
        settings.sort(key=lambda s: (s.effective_date, s.sequence), reverse=True)
        return settings

    def current_setting(self, as_of: Optional[date] = None) -> InterestSetting:
        """
        Setting in effect on ``as_of``: latest effective date on or before it,
        ties going to the most recently created. Falls back to the configured
        default when nothing applies yet.
        """
        as_of = as_of or self.clock().date()
        candidates = [s for s in self.list_settings() if s.effective_date <= as_of]
        if not candidates:
            return self.default_setting()
        return max(candidates, key=lambda s: (s.effective_date, s.sequence))

    def default_setting(self) -> InterestSetting:
        config = get_config()
        now = self.clock()
        return InterestSetting(
            id="default",
            created_at=now,
            updated_at=now,
            rate=Decimal(config.default_interest_rate),
            minimum_balance_required=Decimal(config.default_minimum_balance),
            computation_basis=ComputationBasis(config.default_computation_basis),
            effective_date=now.date(),
            reason_for_change="Default setting",
            set_by="System"
        )

    @staticmethod
    def calculate(balance: Money, setting: InterestSetting) -> Money:
        """Interest on ``balance`` at the setting's (already period-resolved) rate"""
        if balance.amount < setting.minimum_balance_required:
            return Money.zero(balance.currency)
        return balance * (setting.rate / Decimal('100'))

    def apply_to_all_qualifying(
        self,
        processed_by: ActorContext,
        setting: Optional[InterestSetting] = None,
        as_of: Optional[date] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> InterestRunResult:
        """
        Post interest to every Active account meeting the minimum balance

        Args:
            processed_by: Actor recorded on every interest transaction
            setting: Period-resolved setting to apply; when omitted the
                setting in effect on ``as_of`` is resolved and divided per its basis
            as_of: Date used to resolve the setting
            cancel_event: When set, accounts not yet started are skipped

        Returns:
            InterestRunResult with counts, total and per-account failures
        """
        if setting is None:
            stored = self.current_setting(as_of)
            resolved = stored.for_period()
        else:
            stored = resolved = setting
        description = f"Interest at {stored.rate:.2f}% ({stored.computation_basis.value})"

        result = InterestRunResult(
            processed_by=processed_by.user_id,
            setting_id=stored.id,
            period_rate=resolved.rate,
            total_amount=Money.zero(self.ledger.currency)
        )
        accounts = self.ledger.list_accounts(AccountStatus.ACTIVE)
        result_lock = threading.Lock()

        def process(account_id: str) -> None:
            if cancel_event is not None and cancel_event.is_set():
                with result_lock:
                    result.cancelled = True
                return
            try:
                transaction = self._apply_to_account(account_id, resolved, processed_by, description)
            except Exception as e:
                with result_lock:
                    result.failures.append({'account_id': account_id, 'error': str(e)})
                log_action(logger, "error", f"Interest posting failed for account {account_id}: {e}",
                           user_id=processed_by.user_id, action="apply_interest",
                           resource=account_id)
                self.audit_trail.log_event(
                    AuditEventType.BATCH_ITEM_FAILED, "account", account_id,
                    {'job': 'interest', 'error': str(e)},
                    actor=processed_by.user_id
                )
                return
            with result_lock:
                if transaction is None:
                    result.skipped_count += 1
                else:
                    result.success_count += 1
                    result.add_posting(transaction.amount)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            list(executor.map(process, [account.id for account in accounts]))

        self.audit_trail.log_event(
            AuditEventType.INTEREST_RUN_COMPLETED, "interest_setting", stored.id,
            {
                'success_count': result.success_count,
                'skipped_count': result.skipped_count,
                'failure_count': result.failure_count,
                'total_amount': result.total_amount.amount,
                'totals_by_currency': {code: total.amount for code, total in result.totals_by_currency.items()},
                'cancelled': result.cancelled
            },
            actor=processed_by.user_id
        )
        log_action(logger, "info",
                   f"Interest run posted {result.success_count} accounts, "
                   f"total {result.total_amount.to_string()}",
                   user_id=processed_by.user_id, action="interest_run",
                   extra={'failures': result.failure_count, 'cancelled': result.cancelled})
        return result

    def _apply_to_account(
        self,
        account_id: str,
        setting: InterestSetting,
        actor: ActorContext,
        description: str
    ) -> Optional[Transaction]:
        """Post interest to one account; None when it does not qualify"""
        with self.ledger.locks.hold(account_id):
            account = self.ledger.get_account(account_id)
            if account.status != AccountStatus.ACTIVE:
                return None
            amount = self.calculate(account.balance, setting)
            if not amount.is_positive():
                return None
            return self.ledger.apply_interest(account_id, amount, actor, description)
