"""
Request dependencies: the back office instance and the acting user
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..access import ActorContext, Role
from ..currency import Money
from ..errors import BackOfficeError
from ..service import BackOffice, OperationResult


_back_office: Optional[BackOffice] = None


def get_back_office() -> BackOffice:
    """Dependency returning the process-wide BackOffice"""
    global _back_office
    if _back_office is None:
        _back_office = BackOffice()
    return _back_office


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> ActorContext:
    """Resolve the actor once per request from identity headers set upstream"""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="X-Actor-Id and X-Actor-Role headers are required")
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Unknown role: {x_actor_role}")
    try:
        return ActorContext.for_role(x_actor_id, role)
    except BackOfficeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


ERROR_STATUS = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_authorized": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state": status.HTTP_409_CONFLICT,
    "insufficient_funds": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "consistency_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def unwrap(result: OperationResult):
    """Return the result value or raise the matching HTTP error"""
    if result.ok:
        return result.value
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        detail={"error_code": result.error_code, "message": result.message}
    )


def parse_money(model) -> Money:
    """Convert a MoneyModel, reporting malformed input as 400"""
    try:
        return model.to_money()
    except (ArithmeticError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Invalid amount: {e}")
