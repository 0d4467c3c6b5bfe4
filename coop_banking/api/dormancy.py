"""
Dormancy endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_actor, get_back_office, unwrap
from .schemas import DormancyRecordResponse, DormancySweepRequest
from ..access import ActorContext
from ..service import BackOffice


router = APIRouter()


@router.post("/sweep")
def sweep(
    request: Optional[DormancySweepRequest] = None,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Flag inactive accounts as Dormant"""
    threshold = request.threshold_months if request else None
    result = unwrap(office.sweep_dormancy(actor, threshold))
    return {
        "threshold_months": result.threshold_months,
        "cutoff": result.cutoff.isoformat(),
        "checked_count": result.checked_count,
        "flagged_count": result.flagged_count,
        "flagged": [DormancyRecordResponse.from_record(r).model_dump() for r in result.flagged],
        "failures": result.failures
    }


@router.get("")
def list_dormant(
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Accounts currently dormant"""
    records = unwrap(office.list_dormant_accounts(actor))
    return {"count": len(records), "records": [DormancyRecordResponse.from_record(r).model_dump() for r in records]}


@router.post("/{account_id}/reactivate")
def reactivate(
    account_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Restore a dormant account to Active"""
    return DormancyRecordResponse.from_record(unwrap(office.reactivate(actor, account_id))).model_dump()


@router.post("/records/{record_id}/notify")
def mark_notification_sent(
    record_id: str,
    actor: ActorContext = Depends(get_actor),
    office: BackOffice = Depends(get_back_office)
):
    """Record that the member was notified"""
    return DormancyRecordResponse.from_record(
        unwrap(office.mark_dormancy_notification_sent(actor, record_id))
    ).model_dump()
