"""
Pydantic request and response models
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..accounts import Account, Transaction
from ..currency import Money, Currency
from ..dormancy import DormancyRecord
from ..interest import InterestSetting
from ..loans import AmortizationEntry, Loan
from ..origination import LoanQuote


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field("PHP", description="Currency code (PHP, USD, etc.)")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency.from_code(self.currency))

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Requests

class OpenAccountRequest(BaseModel):
    member_id: str
    initial_deposit: Optional[MoneyModel] = None


class PostingRequest(BaseModel):
    amount: MoneyModel
    description: Optional[str] = None


class InterestSettingRequest(BaseModel):
    rate: str = Field(..., description="Annual rate in percent")
    minimum_balance_required: str
    computation_basis: str = "Monthly"
    effective_date: date
    reason_for_change: str = ""


class LoanApplicationRequest(BaseModel):
    member_id: str
    amount: MoneyModel
    term_months: int
    loan_type: str
    account_id: Optional[str] = None


class RejectLoanRequest(BaseModel):
    reason: str = ""


class LoanPaymentRequest(BaseModel):
    payment_number: int
    amount: MoneyModel


class DormancySweepRequest(BaseModel):
    threshold_months: Optional[int] = None


# Responses

class AccountResponse(BaseModel):
    id: str
    member_id: str
    account_number: str
    balance: MoneyModel
    interest_earned: MoneyModel
    status: str
    last_activity_date: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            member_id=account.member_id,
            account_number=account.account_number,
            balance=MoneyModel.from_money(account.balance),
            interest_earned=MoneyModel.from_money(account.interest_earned),
            status=account.status.value,
            last_activity_date=account.last_activity_date.isoformat() if account.last_activity_date else None
        )


class TransactionResponse(BaseModel):
    id: str
    account_id: str
    transaction_type: str
    amount: MoneyModel
    running_balance: MoneyModel
    timestamp: str
    actor: str
    description: str
    reference_number: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            transaction_type=transaction.transaction_type.value,
            amount=MoneyModel.from_money(transaction.amount),
            running_balance=MoneyModel.from_money(transaction.running_balance),
            timestamp=transaction.timestamp.isoformat(),
            actor=transaction.actor,
            description=transaction.description,
            reference_number=transaction.reference_number
        )


class InterestSettingResponse(BaseModel):
    id: str
    rate: str
    minimum_balance_required: str
    computation_basis: str
    effective_date: str
    reason_for_change: str
    set_by: str

    @classmethod
    def from_setting(cls, setting: InterestSetting) -> 'InterestSettingResponse':
        return cls(
            id=setting.id,
            rate=str(setting.rate),
            minimum_balance_required=str(setting.minimum_balance_required),
            computation_basis=setting.computation_basis.value,
            effective_date=setting.effective_date.isoformat(),
            reason_for_change=setting.reason_for_change,
            set_by=setting.set_by
        )


class ScheduleEntryResponse(BaseModel):
    payment_number: int
    due_date: str
    principal: MoneyModel
    interest: MoneyModel
    total_payment: MoneyModel
    remaining_balance: MoneyModel
    payment_status: str = "Unpaid"

    @classmethod
    def from_entry(cls, entry) -> 'ScheduleEntryResponse':
        return cls(
            payment_number=entry.payment_number,
            due_date=entry.due_date.isoformat(),
            principal=MoneyModel.from_money(entry.principal),
            interest=MoneyModel.from_money(entry.interest),
            total_payment=MoneyModel.from_money(entry.total_payment),
            remaining_balance=MoneyModel.from_money(entry.remaining_balance),
            payment_status=entry.payment_status.value if isinstance(entry, AmortizationEntry) else "Unpaid"
        )


class QuoteResponse(BaseModel):
    member_id: str
    loan_type: str
    amount: MoneyModel
    term_months: int
    annual_rate: str
    previous_loan_balance: MoneyModel
    rlpf: MoneyModel
    deductions: MoneyModel
    net_proceeds: MoneyModel
    monthly_payment: MoneyModel
    schedule: List[ScheduleEntryResponse]

    @classmethod
    def from_quote(cls, quote: LoanQuote) -> 'QuoteResponse':
        return cls(
            member_id=quote.member_id,
            loan_type=quote.loan_type.code,
            amount=MoneyModel.from_money(quote.amount),
            term_months=quote.term_months,
            annual_rate=str(quote.annual_rate),
            previous_loan_balance=MoneyModel.from_money(quote.previous_loan_balance),
            rlpf=MoneyModel.from_money(quote.rlpf),
            deductions=MoneyModel.from_money(quote.deductions),
            net_proceeds=MoneyModel.from_money(quote.net_proceeds),
            monthly_payment=MoneyModel.from_money(quote.monthly_payment),
            schedule=[ScheduleEntryResponse.from_entry(line) for line in quote.schedule]
        )


class LoanResponse(BaseModel):
    id: str
    loan_number: str
    member_id: str
    account_id: str
    loan_type: str
    status: str
    principal: MoneyModel
    rate: str
    term_months: int
    previous_loan_balance: MoneyModel
    rlpf: MoneyModel
    deductions: MoneyModel
    net_proceeds: MoneyModel
    monthly_payment: MoneyModel
    remaining_balance: MoneyModel
    release_date: Optional[str] = None
    maturity_date: Optional[str] = None
    rejection_reason: Optional[str] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanResponse':
        return cls(
            id=loan.id,
            loan_number=loan.loan_number,
            member_id=loan.member_id,
            account_id=loan.account_id,
            loan_type=loan.loan_type,
            status=loan.status.value,
            principal=MoneyModel.from_money(loan.principal),
            rate=str(loan.rate),
            term_months=loan.term_months,
            previous_loan_balance=MoneyModel.from_money(loan.previous_loan_balance),
            rlpf=MoneyModel.from_money(loan.rlpf),
            deductions=MoneyModel.from_money(loan.deductions),
            net_proceeds=MoneyModel.from_money(loan.net_proceeds),
            monthly_payment=MoneyModel.from_money(loan.monthly_payment),
            remaining_balance=MoneyModel.from_money(loan.remaining_balance),
            release_date=loan.release_date.isoformat() if loan.release_date else None,
            maturity_date=loan.maturity_date.isoformat() if loan.maturity_date else None,
            rejection_reason=loan.rejection_reason
        )


class DormancyRecordResponse(BaseModel):
    id: str
    account_id: str
    member_id: str
    status: str
    dormant_since: str
    last_transaction_date: Optional[str] = None
    notification_sent: bool

    @classmethod
    def from_record(cls, record: DormancyRecord) -> 'DormancyRecordResponse':
        return cls(
            id=record.id,
            account_id=record.account_id,
            member_id=record.member_id,
            status=record.status.value,
            dormant_since=record.dormant_since.isoformat(),
            last_transaction_date=(
                record.last_transaction_date.isoformat() if record.last_transaction_date else None
            ),
            notification_sent=record.notification_sent
        )
