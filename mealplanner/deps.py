"""FastAPI dependencies for the meal plan API.

Provides:
- Database session dependency
- Caller resolution (Authorization: Bearer <token> -> user id)
- Pipeline and dispatcher handles
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from .db import get_db
from .errors import AuthError
from .services.auth import parse_bearer, verify_token
from .services.pipeline import JobPipeline, get_pipeline


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(None),
) -> str:
    """Resolve the caller's user id from the bearer token.

    Raises:
        HTTPException 401 if the header is missing, malformed or unknown
    """
    try:
        token = parse_bearer(authorization)
        return verify_token(db, token)
    except AuthError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_job_pipeline() -> JobPipeline:
    return get_pipeline()


def get_dispatcher(request: Request):
    """The app-wide JobDispatcher started by the lifespan."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher is not running")
    return dispatcher
