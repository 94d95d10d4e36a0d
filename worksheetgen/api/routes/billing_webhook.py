import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from worksheetgen.core.dependencies import get_stripe_gateway, get_webhook_reconciler
from worksheetgen.core.errors import GatewayNotConfigured, GatewaySignatureInvalid
from worksheetgen.core.logging_config import sanitize_log_data
from worksheetgen.schemas.billing import WebhookAck
from worksheetgen.services.stripe_gateway import StripeGateway
from worksheetgen.services.webhook_events import parse_event
from worksheetgen.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Billing Webhook"])


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Receive a signed Stripe event.

    The raw body is verified before it is parsed. 400 means the payload was
    not trusted and nothing was written; 500 asks Stripe to retry.
    """
    payload = await request.body()

    try:
        event_payload = gateway.verify_webhook(payload, stripe_signature)
    except GatewayNotConfigured as e:
        logger.error(f"Webhook received but not configured: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook configuration not available"},
        )
    except GatewaySignatureInvalid as e:
        logger.warning(f"Rejected webhook: {e.message}, headers={sanitize_log_data(dict(request.headers))}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": e.public_message},
        )

    try:
        event = parse_event(event_payload)
        outcome = await run_in_threadpool(reconciler.reconcile, event)
    except Exception as e:
        logger.error(
            f"Error processing webhook: type={event_payload.get('type')}, id={event_payload.get('id')}: {e}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Error processing webhook"},
        )

    logger.info(
        f"Webhook reconciled: type={outcome.event_type}, action={outcome.action}, user_id={outcome.user_id}"
    )
    return WebhookAck(received=True)
