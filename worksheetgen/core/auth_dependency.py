from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from worksheetgen.core.errors import InvalidCredential
from worksheetgen.core.security import Identity
from worksheetgen.db.models.user import User
from worksheetgen.db.session import get_db
from worksheetgen.services.user_service import get_or_create_user

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_verifier(request: Request):
    """Identity verifier configured on the application."""
    return request.app.state.identity_verifier


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    verifier=Depends(get_identity_verifier),
) -> Identity:
    """Verify the bearer credential and return the caller's identity."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verifier.verify(credentials.credentials)
    except InvalidCredential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """User row for the caller; created on first successful verification."""
    return get_or_create_user(db, identity)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Administrator permissions required.",
        )
    return user
