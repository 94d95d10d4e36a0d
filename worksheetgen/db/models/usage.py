import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.base import Base


class UsageEvent(Base):
    """
    Append-only record of one generated document.

    Rows are never updated or deleted individually; entitlement checks count them.
    """
    __tablename__ = "usage_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(String, nullable=False, index=True)  # "worksheet" | "exam"
    subject = Column(String, default="General")
    grade = Column(String, default="N/A")
    language = Column(String, default="es")
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="usage_events")

    __table_args__ = (
        Index("idx_usage_user_created", "user_id", "created_at"),
    )
