# routers/status_actions.py - Task status change activity and daily summaries
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_user_or_guest
from config import DEFAULT_LIST_SIZE
from database import get_db_session
from schemas import User
from status_actions import (
    status_action_manager, StatusActionItem, DailyStatusActionSummary, StatusActionLimits,
)

router = APIRouter(prefix="/api/v2/data/status", tags=["Status Actions"])


def _id_list(name: str, value: Optional[str]) -> List[int]:
    """Parse a comma separated list of integers, e.g. "1,2,3" """
    if not value:
        return []
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be a comma separated list of integers")


async def status_action_limits(
    osm_user_ids: Optional[str] = Query(default=None),
    project_ids: Optional[str] = Query(default=None),
    challenge_ids: Optional[str] = Query(default=None),
    task_ids: Optional[str] = Query(default=None),
    new_statuses: Optional[str] = Query(default=None),
    old_statuses: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> StatusActionLimits:
    return StatusActionLimits(
        start_date=start,
        end_date=end,
        osm_user_ids=_id_list("osm_user_ids", osm_user_ids),
        project_ids=_id_list("project_ids", project_ids),
        challenge_ids=_id_list("challenge_ids", challenge_ids),
        task_ids=_id_list("task_ids", task_ids),
        new_statuses=_id_list("new_statuses", new_statuses),
        old_statuses=_id_list("old_statuses", old_statuses),
    )


@router.get("/activity", response_model=List[StatusActionItem])
async def get_status_activity(
    limits: StatusActionLimits = Depends(status_action_limits),
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=-1),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_user_or_guest),
    db: AsyncSession = Depends(get_db_session),
):
    """Status changes, newest first. limit=-1 returns everything"""
    return await status_action_manager.get_status_updates(user, limits, db, limit=limit, offset=offset)


@router.get("/summary", response_model=List[DailyStatusActionSummary])
async def get_status_summary(
    limits: StatusActionLimits = Depends(status_action_limits),
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=-1),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_user_or_guest),
    db: AsyncSession = Depends(get_db_session),
):
    """Daily counts of status changes per user"""
    return await status_action_manager.get_status_summary(user, limits, db, limit=limit, offset=offset)
