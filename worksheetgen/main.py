import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from worksheetgen.api.routes import (
    admin_subscriptions,
    admin_users,
    billing,
    billing_webhook,
    subscription,
    system,
    user,
)
from worksheetgen.core.config import ENTITLEMENT_CACHE_TTL_SECONDS, FRONTEND_URL, LOG_DIR, LOG_LEVEL
from worksheetgen.core.errors import EntitlementError
from worksheetgen.core.logging_config import setup_logging
from worksheetgen.core.security import build_identity_verifier
from worksheetgen.db.init_db import init_db
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Worksheet Generator API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
)

# Process-wide collaborators, replaced in tests
app.state.entitlement_cache = EntitlementCache(default_ttl_seconds=ENTITLEMENT_CACHE_TTL_SECONDS)
app.state.stripe_gateway = StripeGateway()
app.state.identity_verifier = build_identity_verifier()


@app.on_event("startup")
def on_startup():
    setup_logging(LOG_LEVEL, LOG_DIR)
    init_db()
    logger.info("Worksheet Generator API started")


# ============================================
# ✅ ERROR HANDLERS
# ============================================

@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError):
    logger.error(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
        exc_info=exc.status_code >= 500,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.public_message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(subscription.router)
app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(user.router)
app.include_router(admin_subscriptions.router)
app.include_router(admin_users.router)
app.include_router(system.router)


@app.get("/")
def root():
    return {"status": "Worksheet Generator API running"}
