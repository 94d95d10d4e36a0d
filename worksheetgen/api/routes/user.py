import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from worksheetgen.core.auth_dependency import get_current_identity, get_current_user
from worksheetgen.core.dependencies import get_entitlement_cache, get_entitlement_service
from worksheetgen.core.security import Identity
from worksheetgen.db.models.user import User
from worksheetgen.db.session import get_db
from worksheetgen.schemas.subscription import Envelope
from worksheetgen.schemas.user import ProfileResponse, UserProfile
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services.entitlement_service import EntitlementService
from worksheetgen.services.usage_ledger import usage_by_document_type
from worksheetgen.services.user_service import delete_user, upsert_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["User"])


@router.post("/login", response_model=Envelope[UserProfile])
def login(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Create or refresh the caller's user record from a verified identity."""
    user = upsert_user(db, identity, touch_login=True)
    logger.info(f"User login: user_id={user.id}")
    return Envelope[UserProfile](data=UserProfile.model_validate(user))


@router.get("/profile", response_model=Envelope[ProfileResponse])
def get_profile(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: EntitlementService = Depends(get_entitlement_service),
):
    profile = ProfileResponse(
        user=UserProfile.model_validate(user),
        subscription_status=service.get_subscription_status(user.id),
        usage_by_type=usage_by_document_type(db, user.id),
    )
    return Envelope[ProfileResponse](data=profile)


@router.delete("/account", status_code=status.HTTP_200_OK)
def delete_account(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: EntitlementCache = Depends(get_entitlement_cache),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    Delete the caller's account together with its subscriptions and usage history.

    A live Stripe subscription is canceled first so billing stops; a provider
    failure is logged and does not block the deletion.
    """
    user_id = user.id
    result = service.cancel_subscription(user_id, immediate=True)
    if result.success:
        logger.info(
            f"Subscription canceled for account deletion: user_id={user_id}, "
            f"gateway_synced={result.gateway_synced}"
        )
    delete_user(db, user_id)
    cache.invalidate_user(user_id)
    return {"success": True, "data": {"message": "Account deleted"}}
