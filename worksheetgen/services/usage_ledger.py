"""
Usage ledger.

Append-only usage events plus the denormalized lifetime counter on users.
The insert and the counter increment commit together or not at all.
"""
import logging
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from worksheetgen.db.models.usage import UsageEvent
from worksheetgen.db.models.user import User
from worksheetgen.db.store import store_call

logger = logging.getLogger(__name__)


def count_usage(db: Session, user_id: str) -> int:
    """Number of documents the user has ever generated."""
    return store_call(
        db,
        lambda: int(
            db.query(func.count(UsageEvent.id))
            .filter(UsageEvent.user_id == user_id)
            .scalar()
            or 0
        ),
        "count_usage",
    )


def usage_by_document_type(db: Session, user_id: str) -> Dict[str, int]:
    """Per document type totals, e.g. {"worksheet": 3, "exam": 1}."""
    def query() -> Dict[str, int]:
        rows = (
            db.query(UsageEvent.document_type, func.count(UsageEvent.id))
            .filter(UsageEvent.user_id == user_id)
            .group_by(UsageEvent.document_type)
            .all()
        )
        return {document_type: int(total) for document_type, total in rows}

    return store_call(db, query, "usage_by_document_type")


def append_usage(
    db: Session,
    user_id: str,
    document_type: str,
    metadata: Optional[Dict[str, str]] = None,
) -> UsageEvent:
    """
    Record one generated document.

    Inserts the usage event and increments users.usage_count in a single
    transaction; on failure the session is rolled back and nothing is applied.
    """
    metadata = metadata or {}

    def write() -> UsageEvent:
        try:
            event = UsageEvent(
                user_id=user_id,
                document_type=document_type,
                subject=metadata.get("subject") or "General",
                grade=metadata.get("grade") or "N/A",
                language=metadata.get("language") or "es",
            )
            db.add(event)
            db.query(User).filter(User.id == user_id).update(
                {User.usage_count: User.usage_count + 1},
                synchronize_session=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(event)
        return event

    event = store_call(db, write, "append_usage")
    logger.info(f"Usage recorded: user_id={user_id}, document_type={document_type}, event_id={event.id}")
    return event
