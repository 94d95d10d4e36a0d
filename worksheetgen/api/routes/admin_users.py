"""
Admin user management: listing, detail, role edits, and subscription
actions addressed by user id.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from worksheetgen.core.auth_dependency import require_admin
from worksheetgen.core.dependencies import get_entitlement_service
from worksheetgen.core.plan_limits import USER_ROLES
from worksheetgen.db.models.user import User
from worksheetgen.db.session import get_db
from worksheetgen.schemas.subscription import Envelope
from worksheetgen.schemas.user import (
    AdminSubscription,
    AdminUserDetail,
    AdminUserList,
    AdminUserSubscriptionAction,
    AdminUserUpdate,
    Pagination,
    UserProfile,
)
from worksheetgen.services import subscription_store
from worksheetgen.services.entitlement_service import USER_NOT_FOUND, EntitlementService
from worksheetgen.services.usage_ledger import usage_by_document_type
from worksheetgen.services.user_service import get_user, list_users, update_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])

SUBSCRIPTION_ACTIONS = ("create", "cancel", "reactivate")


def _get_user_or_404(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
    return user


@router.get("/users", response_model=AdminUserList)
def list_all_users(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, description="Substring of name or email"),
    role: Optional[str] = Query(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if role and role not in USER_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role filter")

    rows, total = list_users(db, limit=limit, offset=offset, search=search, role=role)
    return AdminUserList(
        users=[UserProfile.model_validate(row) for row in rows],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.get("/users/{user_id}", response_model=AdminUserDetail)
def get_user_detail(
    user_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _get_user_or_404(db, user_id)
    return AdminUserDetail(
        user=UserProfile.model_validate(user),
        subscriptions=[
            AdminSubscription.model_validate(row)
            for row in subscription_store.list_user_subscriptions(db, user_id)
        ],
        usage_by_type=usage_by_document_type(db, user_id),
    )


@router.put("/users/{user_id}", response_model=Envelope[UserProfile])
def update_user_role(
    user_id: str,
    payload: AdminUserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if payload.role not in USER_ROLES:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Invalid role"},
        )

    user = update_user(db, _get_user_or_404(db, user_id), role=payload.role, name=payload.name)
    logger.info(f"Admin user update: admin_id={admin.id}, user_id={user_id}, role={user.role}")
    return Envelope[UserProfile](data=UserProfile.model_validate(user))


@router.post("/users/{user_id}/subscription")
def manage_user_subscription(
    user_id: str,
    payload: AdminUserSubscriptionAction,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    create grants Pro with no Stripe subscription; cancel and reactivate act
    on the user's current subscription and are forwarded to Stripe when one
    backs it.
    """
    if payload.action not in SUBSCRIPTION_ACTIONS:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Invalid action"},
        )
    _get_user_or_404(db, user_id)

    if payload.action == "create":
        result = service.grant_manual_subscription(user_id, plan=payload.plan)
    elif payload.action == "cancel":
        result = service.cancel_subscription(user_id, immediate=payload.immediate)
    else:
        result = service.reactivate_subscription(user_id)

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": result.error},
        )

    logger.info(
        f"Admin user subscription {payload.action}: admin_id={admin.id}, user_id={user_id}, "
        f"gateway_synced={result.gateway_synced}"
    )
    return {
        "success": True,
        "message": result.message,
        "gatewaySynced": result.gateway_synced,
        "data": service.get_subscription_status(user_id).model_dump(by_alias=True, mode="json"),
    }
