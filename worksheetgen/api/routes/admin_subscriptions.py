"""
Admin subscription management.

Listing, detail, cancel/reactivate and status overrides addressed by internal
subscription id. Cancel accepts `immediate` to end the subscription now.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from worksheetgen.core.auth_dependency import require_admin
from worksheetgen.core.dependencies import get_entitlement_service
from worksheetgen.core.plan_limits import SUBSCRIPTION_STATUSES
from worksheetgen.db.models.user import User
from worksheetgen.db.session import get_db
from worksheetgen.schemas.subscription import CancelSubscriptionRequest
from worksheetgen.schemas.user import AdminSubscription, AdminSubscriptionList, AdminSubscriptionUpdate, Pagination
from worksheetgen.services import subscription_store
from worksheetgen.services.entitlement_service import EntitlementService, SUBSCRIPTION_NOT_FOUND

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/subscriptions", response_model=AdminSubscriptionList)
def list_subscriptions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if status_filter and status_filter not in SUBSCRIPTION_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")

    rows, total = subscription_store.list_subscriptions(db, limit=limit, offset=offset, status=status_filter)
    return AdminSubscriptionList(
        subscriptions=[AdminSubscription.model_validate(row) for row in rows],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.get("/subscriptions/{subscription_id}", response_model=AdminSubscription)
def get_subscription(
    subscription_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    subscription = subscription_store.get_subscription_by_id(db, subscription_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SUBSCRIPTION_NOT_FOUND)
    return AdminSubscription.model_validate(subscription)


@router.post("/subscriptions/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelSubscriptionRequest] = None,
    admin: User = Depends(require_admin),
    service: EntitlementService = Depends(get_entitlement_service),
):
    immediate = bool(payload and payload.immediate)
    result = service.cancel_subscription_by_id(subscription_id, immediate=immediate)
    if not result.success:
        return _command_error(result.error)

    logger.info(
        f"Admin cancel: admin_id={admin.id}, subscription_id={subscription_id}, immediate={immediate}, "
        f"gateway_synced={result.gateway_synced}"
    )
    return {"success": True, "message": result.message, "gatewaySynced": result.gateway_synced}


@router.post("/subscriptions/{subscription_id}/reactivate")
def reactivate_subscription(
    subscription_id: str,
    admin: User = Depends(require_admin),
    service: EntitlementService = Depends(get_entitlement_service),
):
    result = service.reactivate_subscription_by_id(subscription_id)
    if not result.success:
        return _command_error(result.error)

    logger.info(f"Admin reactivate: admin_id={admin.id}, subscription_id={subscription_id}")
    return {"success": True, "message": result.message, "gatewaySynced": result.gateway_synced}


@router.put("/subscriptions/{subscription_id}", response_model=AdminSubscription)
def update_subscription(
    subscription_id: str,
    payload: AdminSubscriptionUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """Override the stored status; the payment provider is not contacted."""
    result = service.override_subscription_status(
        subscription_id, payload.status, cancel_at_period_end=payload.cancel_at_period_end
    )
    if not result.success:
        return _command_error(result.error)

    logger.info(
        f"Admin status override: admin_id={admin.id}, subscription_id={subscription_id}, status={payload.status}"
    )
    return AdminSubscription.model_validate(subscription_store.get_subscription_by_id(db, subscription_id))


def _command_error(error: str) -> JSONResponse:
    status_code = status.HTTP_404_NOT_FOUND if error == SUBSCRIPTION_NOT_FOUND else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})
