"""
Identity verification.

A verifier turns a bearer credential into an Identity or raises
InvalidCredential. Google ID tokens are used in production; HS256 tokens
signed with SECRET_KEY serve local development and tests.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from jose import JWTError, jwt

from worksheetgen.core.config import AUTH_PROVIDER, GOOGLE_CLIENT_ID, SECRET_KEY, ALGORITHM
from worksheetgen.core.errors import InvalidCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str
    picture: Optional[str] = None
    verified: bool = False


class GoogleIdentityVerifier:
    """Verifies Google-issued ID tokens against the configured client id."""

    def __init__(self, client_id: Optional[str] = GOOGLE_CLIENT_ID):
        self.client_id = client_id
        self._request = google_requests.Request()

    def verify(self, token: str) -> Identity:
        if not self.client_id:
            raise InvalidCredential("GOOGLE_CLIENT_ID not configured")
        try:
            payload = id_token.verify_oauth2_token(token, self._request, self.client_id)
        except ValueError as e:
            logger.warning(f"Google token verification failed: {e}")
            raise InvalidCredential(str(e)) from e

        return Identity(
            id=payload["sub"],
            email=payload.get("email", ""),
            name=payload.get("name") or payload.get("email", ""),
            picture=payload.get("picture"),
            verified=bool(payload.get("email_verified", False)),
        )


class TokenIdentityVerifier:
    """Verifies HS256 bearer tokens issued by create_access_token()."""

    def __init__(self, secret_key: str = SECRET_KEY, algorithm: str = ALGORITHM):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidCredential(f"Invalid token: {e}") from e

        subject = payload.get("sub")
        email = payload.get("email")
        if not subject or not email:
            raise InvalidCredential("Token is missing sub or email")

        return Identity(
            id=subject,
            email=email,
            name=payload.get("name") or email,
            picture=payload.get("picture"),
            verified=bool(payload.get("email_verified", True)),
        )


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    secret_key: str = SECRET_KEY,
    algorithm: str = ALGORITHM,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def build_identity_verifier(provider: str = AUTH_PROVIDER):
    """Verifier for the configured AUTH_PROVIDER (google | token)."""
    if provider == "token":
        return TokenIdentityVerifier()
    if provider == "google":
        return GoogleIdentityVerifier()
    raise ValueError(f"Unknown AUTH_PROVIDER: {provider}")
