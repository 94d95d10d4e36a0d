"""
Request-scoped service providers.

Long-lived collaborators (cache, gateway, identity verifier) live on
app.state and are created once in main.py; services are built per request
around the request's database session.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from worksheetgen.db.session import get_db
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services.entitlement_service import EntitlementService
from worksheetgen.services.stripe_gateway import StripeGateway
from worksheetgen.services.webhook_reconciler import WebhookReconciler


def get_entitlement_cache(request: Request) -> EntitlementCache:
    return request.app.state.entitlement_cache


def get_stripe_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe_gateway


def get_entitlement_service(
    db: Session = Depends(get_db),
    cache: EntitlementCache = Depends(get_entitlement_cache),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> EntitlementService:
    return EntitlementService(db, cache, gateway)


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    cache: EntitlementCache = Depends(get_entitlement_cache),
) -> WebhookReconciler:
    return WebhookReconciler(db, cache)
