"""
Back Office Service Module

Wires the financial core together and exposes its query and command
operations to outer layers (HTTP API, schedulers). Every operation checks
the actor's capability and returns an OperationResult carrying either the
value or a classified error.
"""

import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .access import ActorContext, Capability
from .accounts import Account, AccountStatus, Transaction, TransactionType
from .audit import AuditTrail
from .config import CoopConfig, get_config
from .currency import Money, Currency
from .dates import utc_now
from .dormancy import DormancyMonitor, DormancyRecord, DormancySweepResult
from .errors import BackOfficeError
from .interest import ComputationBasis, InterestEngine, InterestRunResult, InterestSetting
from .ledger import AccountLedger
from .loans import AmortizationEntry, Loan, LoanServicer, LoanStatus, PaymentReceipt
from .locks import AccountLockRegistry
from .logging_config import get_logger, log_action
from .origination import LoanOriginator, LoanQuote
from .storage import StorageInterface, create_storage


logger = get_logger("coop.service")

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Typed success value or classified failure"""
    ok: bool
    value: Optional[T] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, value: T) -> 'OperationResult[T]':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BackOfficeError) -> 'OperationResult[T]':
        return cls(ok=False, error_code=error.code, message=error.message,
                   details=error.details or None)


class BackOffice:
    """Cooperative back office with all core components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[CoopConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.clock = clock
        currency = Currency.from_code(self.config.currency)

        self.audit_trail = AuditTrail(self.storage)
        self.locks = AccountLockRegistry()
        self.ledger = AccountLedger(self.storage, self.audit_trail, self.locks, clock, currency)
        self.interest_engine = InterestEngine(
            self.storage, self.ledger, self.audit_trail, clock, self.config.batch_workers
        )
        self.loan_servicer = LoanServicer(self.storage, self.ledger, self.audit_trail, clock)
        self.loan_originator = LoanOriginator(
            previous_balance_lookup=self.loan_servicer.outstanding_balance,
            clock=clock,
            rlpf_rate_per_thousand=Decimal(self.config.rlpf_rate_per_thousand),
            currency=currency
        )
        self.dormancy_monitor = DormancyMonitor(
            self.storage, self.ledger, self.audit_trail,
            threshold_months=self.config.dormancy_threshold_months,
            clock=clock,
            max_workers=self.config.batch_workers
        )

    def _run(self, actor: ActorContext, capability: Capability, action: str,
             operation: Callable[[], T]) -> OperationResult[T]:
        try:
            actor.require(capability)
            return OperationResult.success(operation())
        except BackOfficeError as e:
            log_action(logger, "warning", f"{action} failed: {e.message}",
                       user_id=actor.user_id, action=action,
                       extra={'error_code': e.code})
            return OperationResult.failure(e)

    # ------------------------------------------------------------------
    # Accounts and ledger
    # ------------------------------------------------------------------

    def open_account(self, actor: ActorContext, member_id: str,
                     initial_deposit: Optional[Money] = None) -> OperationResult[Account]:
        return self._run(actor, Capability.MANAGE_ACCOUNTS, "open_account",
                         lambda: self.ledger.open_account(member_id, actor, initial_deposit))

    def close_account(self, actor: ActorContext, account_id: str) -> OperationResult[Account]:
        return self._run(actor, Capability.MANAGE_ACCOUNTS, "close_account",
                         lambda: self.ledger.close_account(account_id, actor))

    def deposit(self, actor: ActorContext, account_id: str, amount: Money,
                description: Optional[str] = None) -> OperationResult[Transaction]:
        return self._run(actor, Capability.POST_DEPOSIT, "deposit",
                         lambda: self.ledger.deposit(account_id, amount, actor, description))

    def withdraw(self, actor: ActorContext, account_id: str, amount: Money,
                 description: Optional[str] = None) -> OperationResult[Transaction]:
        return self._run(actor, Capability.POST_WITHDRAWAL, "withdraw",
                         lambda: self.ledger.withdraw(account_id, amount, actor, description))

    def apply_interest(self, actor: ActorContext, account_id: str, amount: Money,
                       description: Optional[str] = None) -> OperationResult[Transaction]:
        return self._run(actor, Capability.POST_INTEREST, "apply_interest",
                         lambda: self.ledger.apply_interest(account_id, amount, actor, description))

    def get_account(self, actor: ActorContext, account_id: str) -> OperationResult[Account]:
        return self._run(actor, Capability.VIEW_RECORDS, "get_account",
                         lambda: self.ledger.get_account(account_id))

    def get_member_account(self, actor: ActorContext, member_id: str) -> OperationResult[Account]:
        return self._run(actor, Capability.VIEW_RECORDS, "get_member_account",
                         lambda: self.ledger.get_member_account(member_id))

    def get_balance(self, actor: ActorContext, account_id: str) -> OperationResult[Money]:
        return self._run(actor, Capability.VIEW_RECORDS, "get_balance",
                         lambda: self.ledger.get_balance(account_id))

    def balance_as_of(self, actor: ActorContext, account_id: str,
                      moment: datetime) -> OperationResult[Money]:
        return self._run(actor, Capability.VIEW_RECORDS, "balance_as_of",
                         lambda: self.ledger.balance_as_of(account_id, moment))

    def transaction_history(
        self,
        actor: ActorContext,
        account_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None
    ) -> OperationResult[List[Transaction]]:
        return self._run(actor, Capability.VIEW_RECORDS, "transaction_history",
                         lambda: self.ledger.get_transactions(account_id, start, end, transaction_type))

    def transaction_summary(self, actor: ActorContext, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> OperationResult[Dict[str, Dict[str, Any]]]:
        return self._run(actor, Capability.VIEW_RECORDS, "transaction_summary",
                         lambda: self.ledger.transaction_summary(start, end))

    def verify_account(self, actor: ActorContext, account_id: str) -> OperationResult[Dict[str, Any]]:
        return self._run(actor, Capability.VIEW_AUDIT_LOG, "verify_account",
                         lambda: self.ledger.verify_account(account_id))

    def verify_audit_trail(self, actor: ActorContext) -> OperationResult[Dict[str, Any]]:
        return self._run(actor, Capability.VIEW_AUDIT_LOG, "verify_audit_trail",
                         self.audit_trail.verify_integrity)

    # ------------------------------------------------------------------
    # Interest
    # ------------------------------------------------------------------

    def create_interest_setting(
        self,
        actor: ActorContext,
        rate: Decimal,
        minimum_balance_required: Decimal,
        computation_basis: ComputationBasis,
        effective_date: date,
        reason_for_change: str = ""
    ) -> OperationResult[InterestSetting]:
        return self._run(
            actor, Capability.MANAGE_INTEREST_SETTINGS, "create_interest_setting",
            lambda: self.interest_engine.create_setting(
                rate, minimum_balance_required, computation_basis, effective_date,
                actor, reason_for_change
            )
        )

    def current_interest_setting(self, actor: ActorContext,
                                 as_of: Optional[date] = None) -> OperationResult[InterestSetting]:
        return self._run(actor, Capability.VIEW_RECORDS, "current_interest_setting",
                         lambda: self.interest_engine.current_setting(as_of))

    def list_interest_settings(self, actor: ActorContext) -> OperationResult[List[InterestSetting]]:
        return self._run(actor, Capability.VIEW_RECORDS, "list_interest_settings",
                         self.interest_engine.list_settings)

    def run_interest(self, actor: ActorContext, as_of: Optional[date] = None,
                     cancel_event: Optional[threading.Event] = None) -> OperationResult[InterestRunResult]:
        return self._run(
            actor, Capability.POST_INTEREST, "run_interest",
            lambda: self.interest_engine.apply_to_all_qualifying(actor, as_of=as_of, cancel_event=cancel_event)
        )

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def quote(self, actor: ActorContext, member_id: str, amount: Money, term_months: int,
              loan_type: str) -> OperationResult[LoanQuote]:
        return self._run(actor, Capability.QUOTE_LOAN, "quote_loan",
                         lambda: self.loan_originator.quote(member_id, amount, term_months, loan_type))

    def originate_loan(self, actor: ActorContext, member_id: str, amount: Money, term_months: int,
                       loan_type: str, account_id: Optional[str] = None) -> OperationResult[Loan]:
        def originate() -> Loan:
            quote = self.loan_originator.quote(member_id, amount, term_months, loan_type)
            return self.loan_servicer.originate_loan(quote, actor, account_id)

        return self._run(actor, Capability.ORIGINATE_LOAN, "originate_loan", originate)

    def approve_loan(self, actor: ActorContext, loan_id: str) -> OperationResult[Loan]:
        return self._run(actor, Capability.APPROVE_LOAN, "approve_loan",
                         lambda: self.loan_servicer.approve_loan(loan_id, actor))

    def reject_loan(self, actor: ActorContext, loan_id: str, reason: str = "") -> OperationResult[Loan]:
        return self._run(actor, Capability.APPROVE_LOAN, "reject_loan",
                         lambda: self.loan_servicer.reject_loan(loan_id, actor, reason))

    def release_loan(self, actor: ActorContext, loan_id: str) -> OperationResult[Loan]:
        return self._run(actor, Capability.RELEASE_LOAN, "release_loan",
                         lambda: self.loan_servicer.release_loan(loan_id, actor))

    def record_payment(self, actor: ActorContext, loan_id: str, payment_number: int,
                       amount: Money) -> OperationResult[PaymentReceipt]:
        return self._run(actor, Capability.RECORD_LOAN_PAYMENT, "record_payment",
                         lambda: self.loan_servicer.record_payment(loan_id, payment_number, amount, actor))

    def get_loan(self, actor: ActorContext, loan_id: str) -> OperationResult[Loan]:
        return self._run(actor, Capability.VIEW_RECORDS, "get_loan",
                         lambda: self.loan_servicer.get_loan(loan_id))

    def get_schedule(self, actor: ActorContext, loan_id: str) -> OperationResult[List[AmortizationEntry]]:
        return self._run(actor, Capability.VIEW_RECORDS, "get_schedule",
                         lambda: self.loan_servicer.get_schedule(loan_id))

    def list_member_loans(self, actor: ActorContext, member_id: str,
                          status: Optional[LoanStatus] = None) -> OperationResult[List[Loan]]:
        return self._run(actor, Capability.VIEW_RECORDS, "list_member_loans",
                         lambda: self.loan_servicer.list_member_loans(member_id, status))

    # ------------------------------------------------------------------
    # Dormancy
    # ------------------------------------------------------------------

    def sweep_dormancy(self, actor: ActorContext, threshold_months: Optional[int] = None,
                       cancel_event: Optional[threading.Event] = None) -> OperationResult[DormancySweepResult]:
        return self._run(actor, Capability.RUN_DORMANCY_SWEEP, "dormancy_sweep",
                         lambda: self.dormancy_monitor.sweep(threshold_months, actor, cancel_event))

    def reactivate(self, actor: ActorContext, account_id: str) -> OperationResult[DormancyRecord]:
        return self._run(actor, Capability.REACTIVATE_ACCOUNT, "reactivate_account",
                         lambda: self.dormancy_monitor.reactivate(account_id, actor))

    def list_dormant_accounts(self, actor: ActorContext) -> OperationResult[List[DormancyRecord]]:
        return self._run(actor, Capability.VIEW_RECORDS, "list_dormant_accounts",
                         self.dormancy_monitor.list_dormant)

    def mark_dormancy_notification_sent(self, actor: ActorContext,
                                        record_id: str) -> OperationResult[DormancyRecord]:
        return self._run(actor, Capability.REACTIVATE_ACCOUNT, "mark_notification_sent",
                         lambda: self.dormancy_monitor.mark_notification_sent(record_id, actor))

    def list_accounts(self, actor: ActorContext,
                      status: Optional[AccountStatus] = None) -> OperationResult[List[Account]]:
        return self._run(actor, Capability.VIEW_RECORDS, "list_accounts",
                         lambda: self.ledger.list_accounts(status))

    def close(self) -> None:
        self.storage.close()
