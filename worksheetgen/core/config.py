import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./worksheetgen.db")

# ✅ Security / identity
AUTH_PROVIDER = os.getenv("AUTH_PROVIDER", "google")  # google | token
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_PRICE_ID = os.getenv("STRIPE_PRICE_ID")
STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "2024-06-20")

# ✅ Frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# ✅ Entitlements
FREE_TIER_LIMIT = int(os.getenv("FREE_TIER_LIMIT", "2"))
ENTITLEMENT_CACHE_TTL_SECONDS = float(os.getenv("ENTITLEMENT_CACHE_TTL_SECONDS", "300"))
ENTITLEMENT_CACHE_MAXSIZE = int(os.getenv("ENTITLEMENT_CACHE_MAXSIZE", "10000"))

# ✅ Retry policy for store and gateway calls
STORE_RETRY_ATTEMPTS = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))
STORE_RETRY_BASE_DELAY = float(os.getenv("STORE_RETRY_BASE_DELAY", "0.1"))
STORE_RETRY_MAX_DELAY = float(os.getenv("STORE_RETRY_MAX_DELAY", "2.0"))

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
