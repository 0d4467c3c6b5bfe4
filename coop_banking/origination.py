"""
Loan Origination Module

Pure loan calculations: the proceeds breakdown of a loan application
(previous-loan offset, RLPF reserve, net proceeds) and the amortization
schedule. Nothing here writes to storage.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .config import get_config
from .currency import Currency, Money
from .dates import add_months, utc_now
from .errors import ValidationError


@dataclass(frozen=True)
class LoanType:
    """Loan product offered by the cooperative"""
    code: str
    name: str
    description: str
    interest_rate: Decimal  # Annual percent
    min_term_months: int
    max_term_months: int
    min_amount: Decimal
    max_amount: Decimal
    requires_rlpf: bool = True


DEFAULT_LOAN_TYPES: Dict[str, LoanType] = {
    loan_type.code: loan_type for loan_type in [
        LoanType("PERSONAL", "Personal Loan", "General purpose loan",
                 Decimal("12"), 1, 36, Decimal("1000"), Decimal("500000")),
        LoanType("EMERGENCY", "Emergency Loan", "Loan for urgent needs",
                 Decimal("10"), 1, 12, Decimal("1000"), Decimal("50000")),
        LoanType("EDUCATIONAL", "Educational Loan", "Tuition and school expenses",
                 Decimal("8"), 6, 48, Decimal("5000"), Decimal("200000")),
        LoanType("BUSINESS", "Business Loan", "Capital for member enterprises",
                 Decimal("12"), 6, 60, Decimal("10000"), Decimal("1000000")),
        LoanType("PETTY_CASH", "Petty Cash Loan", "Small short-term cash advance",
                 Decimal("12"), 1, 6, Decimal("500"), Decimal("10000"), requires_rlpf=False),
        LoanType("BONUS", "Bonus Loan", "Advance against year-end bonus",
                 Decimal("12"), 1, 12, Decimal("1000"), Decimal("100000"), requires_rlpf=False),
    ]
}


@dataclass(frozen=True)
class ScheduledPayment:
    """One line of a computed amortization schedule"""
    payment_number: int
    due_date: date
    principal: Money
    interest: Money
    total_payment: Money
    remaining_balance: Money


@dataclass(frozen=True)
class DeductionItem:
    """A named amount withheld from loan proceeds"""
    name: str
    amount: Money
    is_rlpf: bool = False


@dataclass
class LoanQuote:
    """Proceeds breakdown and schedule for a prospective loan"""
    member_id: str
    loan_type: LoanType
    amount: Money
    term_months: int
    annual_rate: Decimal
    previous_loan_balance: Money
    rlpf: Money
    deduction_items: List[DeductionItem]
    net_proceeds: Money
    monthly_payment: Money
    schedule: List[ScheduledPayment] = field(default_factory=list)
    quoted_at: Optional[datetime] = None

    @property
    def deductions(self) -> Money:
        """previous_loan_balance + RLPF"""
        return self.previous_loan_balance + self.rlpf

    @property
    def total_interest(self) -> Money:
        total = Money.zero(self.amount.currency)
        for line in self.schedule:
            total = total + line.interest
        return total


class LoanOriginator:
    """
    Loan proceeds and amortization calculator
    """

    def __init__(
        self,
        previous_balance_lookup: Optional[Callable[[str], Money]] = None,
        loan_types: Optional[Dict[str, LoanType]] = None,
        clock: Callable[[], datetime] = utc_now,
        rlpf_rate_per_thousand: Optional[Decimal] = None,
        currency: Optional[Currency] = None
    ):
        self.previous_balance_lookup = previous_balance_lookup
        self.currency = currency or Currency.from_code(get_config().currency)
        self.loan_types = dict(loan_types or DEFAULT_LOAN_TYPES)
        self.clock = clock
        self.rlpf_rate_per_thousand = (
            rlpf_rate_per_thousand if rlpf_rate_per_thousand is not None
            else Decimal(get_config().rlpf_rate_per_thousand)
        )

    def get_loan_type(self, code: str) -> LoanType:
        loan_type = self.loan_types.get((code or "").upper())
        if loan_type is None:
            raise ValidationError(f"Unknown loan type: {code}")
        return loan_type

    def list_loan_types(self) -> List[LoanType]:
        return sorted(self.loan_types.values(), key=lambda t: t.code)

    def calculate_rlpf(self, amount: Money, term_months: int) -> Money:
        """Reserve fund: a fixed charge per 1,000 of principal per month of term"""
        return amount * (Decimal(term_months) * self.rlpf_rate_per_thousand / Decimal('1000'))

    def quote(
        self,
        member_id: str,
        amount: Money,
        term_months: int,
        loan_type: str,
        first_due_date: Optional[date] = None
    ) -> LoanQuote:
        """
        Compute the proceeds breakdown and schedule for a loan application

        Args:
            member_id: Applying member
            amount: Requested principal
            term_months: Repayment term
            loan_type: Loan type code from the catalog
            first_due_date: Due date of the first installment
                (one month from today when omitted)

        Returns:
            LoanQuote; raises ValidationError when deductions exceed the amount
        """
        if not member_id:
            raise ValidationError("Member id is required")
        product = self.get_loan_type(loan_type)
        if not isinstance(amount, Money) or not amount.is_positive():
            raise ValidationError("Loan amount must be positive")
        if amount.currency != self.currency:
            raise ValidationError(
                f"Loans are issued in {self.currency.code}, not {amount.currency.code}"
            )
        if not isinstance(term_months, int) or term_months <= 0:
            raise ValidationError("Loan term must be a positive number of months")
        if not product.min_term_months <= term_months <= product.max_term_months:
            raise ValidationError(
                f"{product.name} term must be between {product.min_term_months} "
                f"and {product.max_term_months} months"
            )
        if not product.min_amount <= amount.amount <= product.max_amount:
            raise ValidationError(
                f"{product.name} amount must be between {product.min_amount} and {product.max_amount}"
            )

        currency = amount.currency
        previous_balance = Money.zero(currency)
        if self.previous_balance_lookup is not None:
            previous_balance = self.previous_balance_lookup(member_id)

        rlpf = self.calculate_rlpf(amount, term_months) if product.requires_rlpf else Money.zero(currency)

        items = []
        if previous_balance.is_positive():
            items.append(DeductionItem("Previous Loan Balance", previous_balance))
        if rlpf.is_positive():
            items.append(DeductionItem("RLPF", rlpf, is_rlpf=True))

        net_proceeds = amount - (previous_balance + rlpf)
        if net_proceeds.is_negative():
            raise ValidationError(
                f"Deductions of {(previous_balance + rlpf).to_string()} exceed the loan amount "
                f"{amount.to_string()}",
                details={'net_proceeds': str(net_proceeds.amount)}
            )

        schedule = self.build_schedule(amount, product.interest_rate, term_months, first_due_date)
        return LoanQuote(
            member_id=member_id,
            loan_type=product,
            amount=amount,
            term_months=term_months,
            annual_rate=product.interest_rate,
            previous_loan_balance=previous_balance,
            rlpf=rlpf,
            deduction_items=items,
            net_proceeds=net_proceeds,
            monthly_payment=schedule[0].total_payment,
            schedule=schedule,
            quoted_at=self.clock()
        )

    def build_schedule(
        self,
        principal: Money,
        annual_rate_percent: Decimal,
        term_months: int,
        first_due_date: Optional[date] = None
    ) -> List[ScheduledPayment]:
        """
        Equal-installment amortization schedule

        Each installment's interest is charged on the remaining balance; the
        last installment takes whatever principal is left so the schedule
        ends at exactly zero.

        Args:
            principal: Loan principal
            annual_rate_percent: Annual rate in percent (12 means 12%)
            term_months: Number of monthly installments
            first_due_date: Due date of installment 1

        Returns:
            List of ScheduledPayment, one per month
        """
        if not isinstance(principal, Money) or not principal.is_positive():
            raise ValidationError("Principal must be positive")
        if not isinstance(term_months, int) or term_months <= 0:
            raise ValidationError("Term must be a positive number of months")
        annual_rate_percent = Decimal(str(annual_rate_percent))
        if annual_rate_percent < 0:
            raise ValidationError("Interest rate cannot be negative")

        first_due_date = first_due_date or add_months(self.clock().date(), 1)
        currency = principal.currency
        monthly_rate = annual_rate_percent / Decimal('12') / Decimal('100')

        if monthly_rate == 0:
            payment = principal / Decimal(term_months)
        else:
            payment = principal * (
                monthly_rate / (Decimal('1') - (Decimal('1') + monthly_rate) ** -term_months)
            )

        schedule = []
        remaining = principal
        for number in range(1, term_months + 1):
            interest = remaining * monthly_rate if monthly_rate else Money.zero(currency)
            if number == term_months:
                principal_part = remaining
                remaining = Money.zero(currency)
            else:
                principal_part = payment - interest
                remaining = remaining - principal_part
            schedule.append(ScheduledPayment(
                payment_number=number,
                due_date=add_months(first_due_date, number - 1),
                principal=principal_part,
                interest=interest,
                total_payment=principal_part + interest,
                remaining_balance=remaining
            ))
        return schedule
