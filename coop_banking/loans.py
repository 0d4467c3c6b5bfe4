"""
Loan Servicing Module

Loan lifecycle state machine (Pending -> Approved/Rejected -> Active -> Paid),
persisted amortization schedules, release of proceeds into the member's
savings account and full-installment payment recording. Every transition that
touches more than one record commits as a single unit of work.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from .access import ActorContext
from .accounts import Transaction, TransactionType
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency
from .dates import add_months, utc_now
from .errors import ValidationError, NotFoundError, StateError
from .ledger import AccountLedger
from .logging_config import get_logger, log_action
from .origination import LoanQuote
from .storage import StorageInterface, StorageRecord, unit_of_work


logger = get_logger("coop.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    ACTIVE = "Active"
    PAID = "Paid"


# Allowed transitions
LOAN_TRANSITIONS = {
    LoanStatus.PENDING: {LoanStatus.APPROVED, LoanStatus.REJECTED},
    LoanStatus.APPROVED: {LoanStatus.ACTIVE},
    LoanStatus.ACTIVE: {LoanStatus.PAID},
    LoanStatus.REJECTED: set(),
    LoanStatus.PAID: set(),
}


class PaymentStatus(Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


@dataclass
class LoanDeduction:
    """Amount withheld from proceeds at origination"""
    name: str
    amount: Money
    is_rlpf: bool = False


@dataclass
class Loan(StorageRecord):
    """Member loan"""
    loan_number: str
    member_id: str
    account_id: str
    loan_type: str
    principal: Money
    rate: Decimal  # Annual percent
    term_months: int
    previous_loan_balance: Money
    rlpf: Money
    deductions: Money
    net_proceeds: Money
    monthly_payment: Money
    remaining_balance: Money
    status: LoanStatus = LoanStatus.PENDING
    deduction_items: List[LoanDeduction] = field(default_factory=list)
    application_date: Optional[date] = None
    approval_date: Optional[date] = None
    release_date: Optional[date] = None
    maturity_date: Optional[date] = None
    processed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    def can_transition_to(self, target: LoanStatus) -> bool:
        return target in LOAN_TRANSITIONS[self.status]


@dataclass
class AmortizationEntry(StorageRecord):
    """Persisted schedule line of a loan"""
    loan_id: str
    payment_number: int
    due_date: date
    principal: Money
    interest: Money
    total_payment: Money
    remaining_balance: Money
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    amount_paid: Optional[Money] = None
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


@dataclass
class PaymentReceipt:
    """Result of a recorded installment payment"""
    loan: Loan
    entry: AmortizationEntry
    transaction: Transaction
    loan_paid_off: bool


class LoanServicer:
    """
    Owns loan state and applies payments through the ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        clock: Callable[[], datetime] = utc_now
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.clock = clock
        self.locks = ledger.locks
        self.loans_table = "loans"
        self.schedule_table = "amortization_entries"
        self._numbering_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def originate_loan(
        self,
        quote: LoanQuote,
        actor: ActorContext,
        account_id: Optional[str] = None
    ) -> Loan:
        """
        Persist a Pending loan and its whole schedule from a quote

        Args:
            quote: Proceeds breakdown and schedule from LoanOriginator
            actor: Staff member filing the application
            account_id: Savings account to release proceeds into
                (the member's open account when omitted)

        Returns:
            The Pending Loan
        """
        if not quote.schedule:
            raise ValidationError("Quote has no amortization schedule")
        if account_id:
            account = self.ledger.get_account(account_id)
            if account.member_id != quote.member_id:
                raise ValidationError(
                    f"Account {account_id} does not belong to member {quote.member_id}"
                )
        else:
            account = self.ledger.get_member_account(quote.member_id)
        if account.currency != quote.amount.currency:
            raise ValidationError("Loan currency must match the savings account currency")

        now = self.clock()
        with self._numbering_lock:
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_number=self._next_loan_number(quote.loan_type.code, now.date()),
                member_id=quote.member_id,
                account_id=account.id,
                loan_type=quote.loan_type.code,
                principal=quote.amount,
                rate=quote.annual_rate,
                term_months=quote.term_months,
                previous_loan_balance=quote.previous_loan_balance,
                rlpf=quote.rlpf,
                deductions=quote.deductions,
                net_proceeds=quote.net_proceeds,
                monthly_payment=quote.monthly_payment,
                remaining_balance=quote.amount,
                deduction_items=[
                    LoanDeduction(item.name, item.amount, item.is_rlpf) for item in quote.deduction_items
                ],
                application_date=now.date(),
                processed_by=actor.user_id
            )
            entries = [
                AmortizationEntry(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    payment_number=line.payment_number,
                    due_date=line.due_date,
                    principal=line.principal,
                    interest=line.interest,
                    total_payment=line.total_payment,
                    remaining_balance=line.remaining_balance
                )
                for line in quote.schedule
            ]
            with unit_of_work(self.storage, f"originate loan {loan.loan_number}"):
                self._save_loan(loan)
                for entry in entries:
                    self._save_entry(entry)

        self.audit_trail.log_event(
            AuditEventType.LOAN_ORIGINATED, "loan", loan.id,
            {
                'loan_number': loan.loan_number,
                'member_id': loan.member_id,
                'principal': loan.principal.amount,
                'rate': loan.rate,
                'term_months': loan.term_months,
                'net_proceeds': loan.net_proceeds.amount
            },
            actor=actor.user_id
        )
        log_action(logger, "info", f"Originated loan {loan.loan_number}",
                   user_id=actor.user_id, action="originate_loan", resource=loan.id)
        return loan

    def approve_loan(self, loan_id: str, actor: ActorContext) -> Loan:
        """Pending -> Approved"""
        with self.locks.hold_loan(loan_id):
            loan = self._require_transition(loan_id, LoanStatus.APPROVED)
            now = self.clock()
            loan.status = LoanStatus.APPROVED
            loan.approval_date = now.date()
            loan.processed_by = actor.user_id
            loan.updated_at = now
            with unit_of_work(self.storage, f"approve loan {loan.loan_number}"):
                self._save_loan(loan)

        self._publish_transition(loan, AuditEventType.LOAN_APPROVED, actor)
        return loan

    def reject_loan(self, loan_id: str, actor: ActorContext, reason: str = "") -> Loan:
        """Pending -> Rejected"""
        with self.locks.hold_loan(loan_id):
            loan = self._require_transition(loan_id, LoanStatus.REJECTED)
            loan.status = LoanStatus.REJECTED
            loan.rejection_reason = reason or None
            loan.processed_by = actor.user_id
            loan.updated_at = self.clock()
            with unit_of_work(self.storage, f"reject loan {loan.loan_number}"):
                self._save_loan(loan)

        self._publish_transition(loan, AuditEventType.LOAN_REJECTED, actor, {'reason': reason})
        return loan

    def release_loan(self, loan_id: str, actor: ActorContext) -> Loan:
        """
        Approved -> Active, depositing net proceeds into the member's account

        The status change and the LOAN_RELEASE deposit commit together.
        A zero net proceeds release activates the loan without a deposit.
        """
        with self.locks.hold_loan(loan_id):
            loan = self._require_transition(loan_id, LoanStatus.ACTIVE)
            with self.locks.hold(loan.account_id):
                now = self.clock()
                loan.status = LoanStatus.ACTIVE
                loan.release_date = now.date()
                loan.maturity_date = add_months(now.date(), loan.term_months)
                loan.processed_by = actor.user_id
                loan.updated_at = now

                transaction = None
                with unit_of_work(self.storage, f"release loan {loan.loan_number}"):
                    if loan.net_proceeds.is_positive():
                        transaction = self.ledger.post(
                            loan.account_id, TransactionType.LOAN_RELEASE, loan.net_proceeds,
                            actor, f"Loan release: {loan.loan_number}"
                        )
                    self._save_loan(loan)

        if transaction:
            self.ledger.publish_posting(transaction)
        self._publish_transition(loan, AuditEventType.LOAN_RELEASED, actor,
                                 {'net_proceeds': loan.net_proceeds.amount})
        return loan

    def record_payment(
        self,
        loan_id: str,
        payment_number: int,
        amount: Money,
        actor: ActorContext
    ) -> PaymentReceipt:
        """
        Pay one schedule entry in full from the member's savings account

        Args:
            loan_id: Active loan being paid
            payment_number: Schedule entry to settle
            amount: Amount withdrawn; must cover the entry's total payment
            actor: Staff member recording the payment

        Returns:
            PaymentReceipt with the updated loan, entry and ledger transaction
        """
        with self.locks.hold_loan(loan_id):
            loan = self.get_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise StateError(
                    f"Loan {loan.loan_number} is {loan.status.value}; payments require an Active loan"
                )
            schedule = self.get_schedule(loan_id)
            entry = next((e for e in schedule if e.payment_number == payment_number), None)
            if entry is None:
                raise NotFoundError(f"Loan {loan.loan_number} has no payment #{payment_number}")
            if entry.is_paid:
                raise StateError(f"Payment #{payment_number} of loan {loan.loan_number} is already paid")
            if not isinstance(amount, Money) or amount.currency != entry.total_payment.currency:
                raise ValidationError("Payment amount must be Money in the loan currency")
            if amount < entry.total_payment:
                raise ValidationError(
                    f"Payment of {amount.to_string()} is less than the installment "
                    f"{entry.total_payment.to_string()}; partial payments are not supported"
                )

            with self.locks.hold(loan.account_id):
                now = self.clock()
                entry.payment_status = PaymentStatus.PAID
                entry.amount_paid = amount
                entry.paid_at = now
                entry.paid_by = actor.user_id
                entry.updated_at = now

                loan.remaining_balance = loan.remaining_balance - entry.principal
                paid_off = all(e.is_paid or e.id == entry.id for e in schedule)
                if paid_off:
                    loan.status = LoanStatus.PAID
                loan.updated_at = now

                with unit_of_work(self.storage, f"payment #{payment_number} on loan {loan.loan_number}"):
                    self._save_entry(entry)
                    transaction = self.ledger.post(
                        loan.account_id, TransactionType.LOAN_PAYMENT, amount,
                        actor, f"Loan payment for {loan.loan_number}"
                    )
                    self._save_loan(loan)

        self.ledger.publish_posting(transaction)
        self.audit_trail.log_event(
            AuditEventType.LOAN_PAYMENT_RECORDED, "loan", loan.id,
            {
                'payment_number': payment_number,
                'amount': amount.amount,
                'principal': entry.principal.amount,
                'interest': entry.interest.amount,
                'remaining_balance': loan.remaining_balance.amount,
                'transaction_id': transaction.id
            },
            actor=actor.user_id
        )
        if paid_off:
            self._publish_transition(loan, AuditEventType.LOAN_PAID_OFF, actor)
        log_action(logger, "info", f"Recorded payment #{payment_number} on loan {loan.loan_number}",
                   user_id=actor.user_id, action="record_payment", resource=loan.id)
        return PaymentReceipt(loan=loan, entry=entry, transaction=transaction, loan_paid_off=paid_off)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError(f"Loan {loan_id} not found")
        return self._loan_from_dict(data)

    def get_schedule(self, loan_id: str) -> List[AmortizationEntry]:
        self.get_loan(loan_id)
        entries = [
            self._entry_from_dict(data)
            for data in self.storage.find(self.schedule_table, {'loan_id': loan_id})
        ]
        entries.sort(key=lambda e: e.payment_number)
        return entries

    def list_member_loans(self, member_id: str, status: Optional[LoanStatus] = None) -> List[Loan]:
        filters = {'member_id': member_id}
        if status:
            filters['status'] = status.value
        loans = [self._loan_from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        records = (
            self.storage.find(self.loans_table, {'status': status.value}) if status
            else self.storage.load_all(self.loans_table)
        )
        loans = [self._loan_from_dict(data) for data in records]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def outstanding_balance(self, member_id: str) -> Money:
        """Sum of remaining balances of the member's Active loans"""
        total = Money.zero(self.ledger.currency)
        for loan in self.list_member_loans(member_id, LoanStatus.ACTIVE):
            total = total + loan.remaining_balance
        return total

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_transition(self, loan_id: str, target: LoanStatus) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan.can_transition_to(target):
            raise StateError(
                f"Loan {loan.loan_number} cannot move from {loan.status.value} to {target.value}",
                details={'status': loan.status.value, 'target': target.value}
            )
        return loan

    def _publish_transition(self, loan: Loan, event_type: AuditEventType,
                            actor: ActorContext, metadata: Optional[Dict] = None) -> None:
        self.audit_trail.log_event(
            event_type, "loan", loan.id,
            {'loan_number': loan.loan_number, 'status': loan.status, **(metadata or {})},
            actor=actor.user_id
        )
        log_action(logger, "info", f"Loan {loan.loan_number} is now {loan.status.value}",
                   user_id=actor.user_id, action=event_type.value, resource=loan.id)

    def _next_loan_number(self, type_code: str, day: date) -> str:
        prefix = f"{type_code}-{day.strftime('%Y%m%d')}-"
        used = [
            data['loan_number'] for data in self.storage.load_all(self.loans_table)
            if data['loan_number'].startswith(prefix)
        ]
        return f"{prefix}{len(used) + 1:03d}"

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def _save_entry(self, entry: AmortizationEntry) -> None:
        self.storage.save(self.schedule_table, entry.id, self._entry_to_dict(entry))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        """Convert Loan to dictionary for storage"""
        result = loan.to_dict()
        result['currency'] = loan.principal.currency.code
        for name in ('principal', 'previous_loan_balance', 'rlpf', 'deductions',
                     'net_proceeds', 'monthly_payment', 'remaining_balance'):
            result[name] = str(getattr(loan, name).amount)
        result['rate'] = str(loan.rate)
        result['deduction_items'] = [
            {'name': item.name, 'amount': str(item.amount.amount), 'is_rlpf': item.is_rlpf}
            for item in loan.deduction_items
        ]
        for name in ('application_date', 'approval_date', 'release_date', 'maturity_date'):
            value = getattr(loan, name)
            result[name] = value.isoformat() if value else None
        return result

    def _loan_from_dict(self, data: Dict) -> Loan:
        """Convert dictionary to Loan"""
        currency = Currency.from_code(data['currency'])

        def get_money(name: str) -> Money:
            return Money(Decimal(data[name]), currency)

        def get_date(name: str) -> Optional[date]:
            return date.fromisoformat(data[name]) if data.get(name) else None

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            member_id=data['member_id'],
            account_id=data['account_id'],
            loan_type=data['loan_type'],
            principal=get_money('principal'),
            rate=Decimal(data['rate']),
            term_months=data['term_months'],
            previous_loan_balance=get_money('previous_loan_balance'),
            rlpf=get_money('rlpf'),
            deductions=get_money('deductions'),
            net_proceeds=get_money('net_proceeds'),
            monthly_payment=get_money('monthly_payment'),
            remaining_balance=get_money('remaining_balance'),
            status=LoanStatus(data['status']),
            deduction_items=[
                LoanDeduction(item['name'], Money(Decimal(item['amount']), currency), item['is_rlpf'])
                for item in data.get('deduction_items', [])
            ],
            application_date=get_date('application_date'),
            approval_date=get_date('approval_date'),
            release_date=get_date('release_date'),
            maturity_date=get_date('maturity_date'),
            processed_by=data.get('processed_by'),
            rejection_reason=data.get('rejection_reason')
        )

    def _entry_to_dict(self, entry: AmortizationEntry) -> Dict:
        """Convert AmortizationEntry to dictionary for storage"""
        result = entry.to_dict()
        result['currency'] = entry.principal.currency.code
        for name in ('principal', 'interest', 'total_payment', 'remaining_balance'):
            result[name] = str(getattr(entry, name).amount)
        result['amount_paid'] = str(entry.amount_paid.amount) if entry.amount_paid else None
        result['due_date'] = entry.due_date.isoformat()
        result['paid_at'] = entry.paid_at.isoformat() if entry.paid_at else None
        return result

    def _entry_from_dict(self, data: Dict) -> AmortizationEntry:
        """Convert dictionary to AmortizationEntry"""
        currency = Currency.from_code(data['currency'])
        return AmortizationEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            payment_number=data['payment_number'],
            due_date=date.fromisoformat(data['due_date']),
            principal=Money(Decimal(data['principal']), currency),
            interest=Money(Decimal(data['interest']), currency),
            total_payment=Money(Decimal(data['total_payment']), currency),
            remaining_balance=Money(Decimal(data['remaining_balance']), currency),
            payment_status=PaymentStatus(data['payment_status']),
            amount_paid=Money(Decimal(data['amount_paid']), currency) if data.get('amount_paid') else None,
            paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
            paid_by=data.get('paid_by')
        )
