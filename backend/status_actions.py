# status_actions.py - Records task status changes and reports on them
"""
Every time a task's status is set a row is written to ``status_actions``
holding the old and the new status, the acting user's OSM id and the
project and challenge the task belongs to. The reporting side offers the
raw activity feed (``get_status_updates``) and a per day, per user count of
each resulting status (``get_status_summary``).
"""
import logging
from datetime import date as CalendarDate, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, func, cast, Date
from sqlalchemy.ext.asyncio import AsyncSession

import config
from database import dialect_name
from models import StatusAction, Challenge, Project, TaskStatus, User as UserRow
from schemas import User, Task

logger = logging.getLogger("maproulette.status_actions")


class StatusActionItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    created: datetime
    osm_user_id: int
    osm_user_name: str
    project_id: int
    project_name: str
    challenge_id: int
    challenge_name: str
    task_id: int
    old_status: int
    new_status: int


class DailyStatusActionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: CalendarDate
    osm_user_id: int
    osm_user_name: str
    fixed: int = 0
    last_fixed: Optional[datetime] = None
    false_positive: int = 0
    last_false_positive: Optional[datetime] = None
    skipped: int = 0
    last_skipped: Optional[datetime] = None
    already_fixed: int = 0
    last_already_fixed: Optional[datetime] = None
    too_hard: int = 0
    last_too_hard: Optional[datetime] = None


class StatusActionLimits(BaseModel):
    """Filters for the status action reports; empty lists do not filter"""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    osm_user_ids: List[int] = Field(default_factory=list)
    project_ids: List[int] = Field(default_factory=list)
    challenge_ids: List[int] = Field(default_factory=list)
    task_ids: List[int] = Field(default_factory=list)
    new_statuses: List[int] = Field(default_factory=list)
    old_statuses: List[int] = Field(default_factory=list)


# Statuses reported by the daily summary, keyed by the summary field prefix
SUMMARY_STATUSES = {
    "fixed": TaskStatus.FIXED,
    "false_positive": TaskStatus.FALSE_POSITIVE,
    "skipped": TaskStatus.SKIPPED,
    "already_fixed": TaskStatus.ALREADY_FIXED,
    "too_hard": TaskStatus.TOO_HARD,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to it"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StatusActionManager:

    async def set_status_action(
        self, user: User, task: Task, status: int, db: AsyncSession, commit: bool = True
    ) -> bool:
        """Record that ``user`` moved ``task`` from its current status to ``status``.

        Returns False when the task's challenge no longer exists.
        """
        result = await db.execute(
            select(Challenge.project_id).where(Challenge.id == task.challenge_id)
        )
        project_id = result.scalar_one_or_none()
        if project_id is None:
            logger.warning("No challenge %s for task %s, status action skipped", task.challenge_id, task.id)
            return False

        db.add(StatusAction(
            osm_user_id=user.osm_profile.id,
            project_id=project_id,
            challenge_id=task.challenge_id,
            task_id=task.id,
            old_status=task.status,
            status=status,
        ))
        if commit:
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return True

    @staticmethod
    def _filters(limits: StatusActionLimits, with_tasks_and_statuses: bool = True) -> list:
        filters = []
        if limits.osm_user_ids:
            filters.append(StatusAction.osm_user_id.in_(limits.osm_user_ids))
        if limits.project_ids:
            filters.append(StatusAction.project_id.in_(limits.project_ids))
        if limits.challenge_ids:
            filters.append(StatusAction.challenge_id.in_(limits.challenge_ids))
        if not with_tasks_and_statuses:
            return filters
        if limits.task_ids:
            filters.append(StatusAction.task_id.in_(limits.task_ids))
        if limits.new_statuses:
            filters.append(StatusAction.status.in_(limits.new_statuses))
        if limits.old_statuses:
            filters.append(StatusAction.old_status.in_(limits.old_statuses))

        start, end = _as_utc(limits.start_date), _as_utc(limits.end_date)
        if start is not None and end is not None:
            filters.append(StatusAction.created.between(start, end))
        elif start is not None:
            filters.append(StatusAction.created >= start)
        elif end is not None:
            filters.append(StatusAction.created <= end)
        return filters

    async def get_status_updates(
        self,
        user: User,
        limits: StatusActionLimits,
        db: AsyncSession,
        limit: int = config.DEFAULT_LIST_SIZE,
        offset: int = 0,
    ) -> List[StatusActionItem]:
        """Status changes matching every given filter, newest first. A negative limit returns all."""
        query = (
            select(
                StatusAction,
                UserRow.name.label("osm_user_name"),
                Project.name.label("project_name"),
                Challenge.name.label("challenge_name"),
            )
            .join(UserRow, UserRow.osm_id == StatusAction.osm_user_id)
            .join(Project, Project.id == StatusAction.project_id)
            .join(Challenge, Challenge.id == StatusAction.challenge_id)
            .where(*self._filters(limits))
            .order_by(StatusAction.created.desc(), StatusAction.id.desc())
            .offset(offset)
        )
        if limit >= 0:
            query = query.limit(limit)

        result = await db.execute(query)
        return [
            StatusActionItem(
                id=row.StatusAction.id,
                created=row.StatusAction.created,
                osm_user_id=row.StatusAction.osm_user_id,
                osm_user_name=row.osm_user_name,
                project_id=row.StatusAction.project_id,
                project_name=row.project_name,
                challenge_id=row.StatusAction.challenge_id,
                challenge_name=row.challenge_name,
                task_id=row.StatusAction.task_id,
                old_status=row.StatusAction.old_status,
                new_status=row.StatusAction.status,
            )
            for row in result.all()
        ]

    async def get_status_summary(
        self,
        user: User,
        limits: StatusActionLimits,
        db: AsyncSession,
        limit: int = config.DEFAULT_LIST_SIZE,
        offset: int = 0,
    ) -> List[DailyStatusActionSummary]:
        """Per day and user counts of each resulting status, newest day first.

        Only the user, project and challenge filters apply here.
        """
        if dialect_name(db) == "sqlite":
            daily = func.date(StatusAction.created, type_=Date)
        else:
            daily = cast(StatusAction.created, Date)
        daily = daily.label("daily")

        columns = [daily, StatusAction.osm_user_id, UserRow.name.label("osm_user_name")]
        for name, status in SUMMARY_STATUSES.items():
            is_status = StatusAction.status == int(status)
            columns.append(func.count(StatusAction.id).filter(is_status).label(name))
            columns.append(func.max(StatusAction.created).filter(is_status).label(f"last_{name}"))

        query = (
            select(*columns)
            .join(UserRow, UserRow.osm_id == StatusAction.osm_user_id)
            .where(*self._filters(limits, with_tasks_and_statuses=False))
            .group_by(daily, StatusAction.osm_user_id, UserRow.name)
            .order_by(daily.desc(), StatusAction.osm_user_id)
            .offset(offset)
        )
        if limit >= 0:
            query = query.limit(limit)

        result = await db.execute(query)
        summaries = []
        for row in result.mappings().all():
            values = dict(row)
            values["date"] = values.pop("daily")
            summaries.append(DailyStatusActionSummary(**values))
        return summaries


status_action_manager = StatusActionManager()
