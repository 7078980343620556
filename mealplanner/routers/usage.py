from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..schemas import UsageStatsOut
from ..services.quota import get_usage_stats

router = APIRouter()


@router.get("/usage", response_model=UsageStatsOut)
def get_usage(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Generation usage for the current plan tier."""
    stats = get_usage_stats(db, user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="User not found")
    return stats
