"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.
"""
from worksheetgen.db.models.user import User
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.models.usage import UsageEvent

__all__ = [
    "User",
    "Subscription",
    "UsageEvent",
]
