"""
Loan endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_actor, get_back_office, parse_money, unwrap
from .schemas import (
    LoanApplicationRequest, LoanPaymentRequest, LoanResponse, QuoteResponse,
    RejectLoanRequest, ScheduleEntryResponse, TransactionResponse
)
from ..access import ActorContext
from ..service import BackOffice


router = APIRouter()


@router.get("/types")
def list_loan_types(
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Loan products on offer"""
    return {
        "loan_types": [
            {
                "code": t.code,
                "name": t.name,
                "description": t.description,
                "interest_rate": str(t.interest_rate),
                "min_term_months": t.min_term_months,
                "max_term_months": t.max_term_months,
                "min_amount": str(t.min_amount),
                "max_amount": str(t.max_amount),
                "requires_rlpf": t.requires_rlpf
            }
            for t in office.loan_originator.list_loan_types()
        ]
    }


@router.post("/quote")
def quote_loan(
    request: LoanApplicationRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Proceeds breakdown and schedule without creating a loan"""
    quote = unwrap(office.quote(actor, request.member_id, parse_money(request.amount),
                                request.term_months, request.loan_type))
    return QuoteResponse.from_quote(quote).model_dump()


@router.post("", status_code=status.HTTP_201_CREATED)
def originate_loan(
    request: LoanApplicationRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """File a loan application (Pending)"""
    loan = unwrap(office.originate_loan(actor, request.member_id, parse_money(request.amount),
                                        request.term_months, request.loan_type, request.account_id))
    return LoanResponse.from_loan(loan).model_dump()


@router.get("/members/{member_id}")
def list_member_loans(
    member_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """All loans of a member"""
    loans = unwrap(office.list_member_loans(actor, member_id))
    return {"member_id": member_id, "loans": [LoanResponse.from_loan(l).model_dump() for l in loans]}


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Get loan details"""
    return LoanResponse.from_loan(unwrap(office.get_loan(actor, loan_id))).model_dump()


@router.get("/{loan_id}/schedule")
def get_schedule(
    loan_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Amortization schedule with payment status"""
    schedule = unwrap(office.get_schedule(actor, loan_id))
    return {"loan_id": loan_id, "schedule": [ScheduleEntryResponse.from_entry(e).model_dump() for e in schedule]}


@router.post("/{loan_id}/approve")
def approve_loan(
    loan_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Pending -> Approved"""
    return LoanResponse.from_loan(unwrap(office.approve_loan(actor, loan_id))).model_dump()


@router.post("/{loan_id}/reject")
def reject_loan(
    loan_id: str,
    request: RejectLoanRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Pending -> Rejected"""
    return LoanResponse.from_loan(unwrap(office.reject_loan(actor, loan_id, request.reason))).model_dump()


@router.post("/{loan_id}/release")
def release_loan(
    loan_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Approved -> Active, depositing net proceeds"""
    return LoanResponse.from_loan(unwrap(office.release_loan(actor, loan_id))).model_dump()


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
def record_payment(
    loan_id: str,
    request: LoanPaymentRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Pay one schedule entry in full"""
    receipt = unwrap(office.record_payment(actor, loan_id, request.payment_number,
                                           parse_money(request.amount)))
    return {
        "loan": LoanResponse.from_loan(receipt.loan).model_dump(),
        "entry": ScheduleEntryResponse.from_entry(receipt.entry).model_dump(),
        "transaction": TransactionResponse.from_transaction(receipt.transaction).model_dump(),
        "loan_paid_off": receipt.loan_paid_off
    }
