from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)  # identity provider subject
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    picture = Column(String, nullable=True)
    role = Column(String, default="user", nullable=False)  # user | admin
    usage_count = Column(Integer, default=0, nullable=False)  # lifetime documents generated
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_login = Column(DateTime, default=utcnow, nullable=False)

    subscriptions = relationship(
        "Subscription",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    usage_events = relationship(
        "UsageEvent",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
