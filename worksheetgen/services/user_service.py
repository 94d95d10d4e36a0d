"""
User directory: create on first verified login, refresh profile fields on each
login, plus the admin listing and role edits.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from worksheetgen.core.security import Identity
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.models.user import User
from worksheetgen.db.store import store_call

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: str) -> Optional[User]:
    return store_call(
        db,
        lambda: db.query(User).filter(User.id == user_id).first(),
        "get_user",
    )


def upsert_user(db: Session, identity: Identity, touch_login: bool = True) -> User:
    """
    Create the user on first sight, otherwise refresh email/name/picture.

    Args:
        db: Database session
        identity: Verified identity from the identity provider
        touch_login: Also bump last_login (login endpoint); False for plain lookups
    """
    def write() -> User:
        user = db.query(User).filter(User.id == identity.id).first()
        now = utcnow()
        if user is None:
            user = User(
                id=identity.id,
                email=identity.email,
                name=identity.name,
                picture=identity.picture,
                role="user",
                usage_count=0,
                created_at=now,
                last_login=now,
            )
            db.add(user)
            logger.info(f"User created: user_id={identity.id}")
        else:
            user.email = identity.email
            user.name = identity.name
            user.picture = identity.picture
            if touch_login:
                user.last_login = now
        db.commit()
        db.refresh(user)
        return user

    try:
        return store_call(db, write, "upsert_user")
    except IntegrityError:
        # Another request created the same user concurrently
        db.rollback()
        user = get_user(db, identity.id)
        if user is None:
            raise
        return user


def get_or_create_user(db: Session, identity: Identity) -> User:
    """Existing user row for an identity, creating it on first verification."""
    user = get_user(db, identity.id)
    if user is not None:
        return user
    return upsert_user(db, identity)


def delete_user(db: Session, user_id: str) -> bool:
    """Delete an account; subscriptions and usage events cascade."""
    def write() -> bool:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            return False
        db.delete(user)
        db.commit()
        return True

    deleted = store_call(db, write, "delete_user")
    if deleted:
        logger.info(f"User deleted: user_id={user_id}")
    return deleted


def list_users(
    db: Session,
    limit: int = 20,
    offset: int = 0,
    search: Optional[str] = None,
    role: Optional[str] = None,
) -> Tuple[List[User], int]:
    """Page of users (newest first) matching a name/email search and role filter."""
    def query() -> Tuple[List[User], int]:
        base = db.query(User)
        if search:
            pattern = f"%{search}%"
            base = base.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        if role:
            base = base.filter(User.role == role)
        total = base.count()
        rows = base.order_by(User.created_at.desc()).offset(offset).limit(limit).all()
        return rows, total

    return store_call(db, query, "list_users")


def update_user(db: Session, user: User, role: str, name: Optional[str] = None) -> User:
    """Admin edit of role and, optionally, display name."""
    def write() -> User:
        user.role = role
        if name:
            user.name = name
        db.commit()
        db.refresh(user)
        return user

    updated = store_call(db, write, "update_user")
    logger.info(f"User updated: user_id={updated.id}, role={updated.role}")
    return updated
