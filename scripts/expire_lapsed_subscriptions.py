"""
Close out subscriptions still marked active after their billing period ended.
Run periodically: python -m scripts.expire_lapsed_subscriptions
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from worksheetgen.core.config import LOG_DIR, LOG_LEVEL
from worksheetgen.core.logging_config import setup_logging
from worksheetgen.db.session import SessionLocal
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services.webhook_reconciler import expire_lapsed_subscriptions
import logging

logger = logging.getLogger(__name__)


def run() -> int:
    """Sweep once and return the number of subscriptions closed."""
    db = SessionLocal()
    try:
        # The API process keeps its own cache; entries there age out within the TTL.
        lapsed = expire_lapsed_subscriptions(db, EntitlementCache())
        logger.info(f"Sweep finished: {len(lapsed)} lapsed subscription(s) closed")
        return len(lapsed)
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging(LOG_LEVEL, LOG_DIR)
    try:
        run()
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        sys.exit(1)
