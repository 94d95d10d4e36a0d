"""
Subscription and entitlement endpoints.

Every route operates on the authenticated caller's own data only.
"""
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from worksheetgen.core.auth_dependency import get_current_user
from worksheetgen.core.dependencies import get_entitlement_service
from worksheetgen.core.plan_limits import SUPPORTED_DOCUMENT_TYPES
from worksheetgen.db.models.user import User
from worksheetgen.schemas.subscription import (
    Envelope,
    GenerationDecision,
    RecordUsageRequest,
    SubscriptionStatus,
)
from worksheetgen.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["Subscription"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.get("/status", response_model=Envelope[SubscriptionStatus])
def get_status(
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Subscription state and usage counters for the caller."""
    return Envelope[SubscriptionStatus](data=service.get_subscription_status(user.id))


@router.get("/can-generate", response_model=Envelope[GenerationDecision])
def can_generate(
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
):
    return Envelope[GenerationDecision](data=service.can_generate_document(user.id))


@router.post("/record-usage")
def record_usage(
    payload: RecordUsageRequest,
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    Record one generated document.

    Returns 400 for an unknown document type and 403 when the caller has
    used up the free tier.
    """
    if payload.document_type not in SUPPORTED_DOCUMENT_TYPES:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid document type")

    result = service.record_document_usage(
        user.id,
        payload.document_type,
        {"subject": payload.subject, "grade": payload.grade, "language": payload.language},
    )
    if not result.success:
        return _error(status.HTTP_403_FORBIDDEN, result.error or "Usage not allowed")

    return {"success": True, "data": {"remainingUses": result.remaining_uses}}


@router.post("/cancel")
def cancel(
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Schedule cancellation at the end of the current billing period."""
    result = service.cancel_subscription(user.id, immediate=False)
    if not result.success:
        return _error(status.HTTP_400_BAD_REQUEST, result.error)

    return {
        "success": True,
        "data": {
            "message": result.message,
            "cancelAt": result.cancel_at.isoformat() if result.cancel_at else None,
        },
    }


@router.post("/reactivate")
def reactivate(
    user: User = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
):
    result = service.reactivate_subscription(user.id)
    if not result.success:
        return _error(status.HTTP_400_BAD_REQUEST, result.error)

    return {"success": True, "data": {"message": result.message}}
