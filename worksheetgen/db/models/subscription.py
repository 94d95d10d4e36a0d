import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String, default="active", nullable=False)  # active | past_due | canceled | expired
    plan = Column(String, default="pro", nullable=False)
    price_id = Column(String, nullable=True)

    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True, index=True)

    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    canceled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        Index("idx_subscriptions_user_created", "user_id", "created_at"),
    )
