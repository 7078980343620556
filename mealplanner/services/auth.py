"""Bearer token -> user id.

Tokens are random strings handed to the client once; only their sha256 is
stored.
"""
import hashlib
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import AuthError
from ..models import ApiToken


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def verify_token(db: Session, token: str) -> str:
    """Resolve a token to its user id. Raises AuthError."""
    row = db.execute(
        select(ApiToken).where(
            ApiToken.token_hash == hash_token(token),
            ApiToken.revoked_at.is_(None),
        )
    ).scalar_one_or_none()
    if row is None:
        raise AuthError("Invalid or revoked token")
    return row.user_id


def issue_token(db: Session, user_id: str) -> str:
    """Create a token for `user_id` and return the plaintext (shown once)."""
    token = secrets.token_urlsafe(32)
    db.add(ApiToken(user_id=user_id, token_hash=hash_token(token)))
    db.commit()
    return token


def revoke_token(db: Session, token: str) -> bool:
    row = db.execute(
        select(ApiToken).where(ApiToken.token_hash == hash_token(token))
    ).scalar_one_or_none()
    if row is None or row.revoked_at is not None:
        return False
    row.revoked_at = datetime.now(timezone.utc)
    db.commit()
    return True
