"""
Interest policy and batch endpoints
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import get_actor, get_back_office, unwrap
from .schemas import InterestSettingRequest, InterestSettingResponse, MoneyModel
from ..access import ActorContext
from ..interest import ComputationBasis
from ..service import BackOffice


router = APIRouter()


@router.post("/settings", status_code=status.HTTP_201_CREATED)
def create_setting(
    request: InterestSettingRequest,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Record a new interest policy"""
    try:
        rate = Decimal(request.rate)
        minimum = Decimal(request.minimum_balance_required)
        basis = ComputationBasis(request.computation_basis)
    except (InvalidOperation, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid interest setting: {e}")
    setting = unwrap(office.create_interest_setting(
        actor, rate, minimum, basis, request.effective_date, request.reason_for_change
    ))
    return InterestSettingResponse.from_setting(setting).model_dump()


@router.get("/settings")
def list_settings(
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """All interest settings, newest first"""
    settings = unwrap(office.list_interest_settings(actor))
    return {"settings": [InterestSettingResponse.from_setting(s).model_dump() for s in settings]}


@router.get("/settings/current")
def current_setting(
    as_of: Optional[date] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Setting in effect on a date (today by default)"""
    return InterestSettingResponse.from_setting(unwrap(office.current_interest_setting(actor, as_of))).model_dump()


@router.post("/run")
def run_interest(
    as_of: Optional[date] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Post interest to every qualifying account"""
    result = unwrap(office.run_interest(actor, as_of))
    return {
        "processed_by": result.processed_by,
        "setting_id": result.setting_id,
        "period_rate": str(result.period_rate),
        "success_count": result.success_count,
        "skipped_count": result.skipped_count,
        "failure_count": result.failure_count,
        "failures": result.failures,
        "total_amount": MoneyModel.from_money(result.total_amount).model_dump(),
        "totals_by_currency": {
            code: MoneyModel.from_money(total).model_dump() for code, total in result.totals_by_currency.items()
        }
    }
