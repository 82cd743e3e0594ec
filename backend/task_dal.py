# task_dal.py - Data access for tasks and their status changes
import logging
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

import tag_dal
from action_manager import action_manager
from cache import CacheManager
from errors import IllegalAccessError, InvalidStatusError, NotFoundError
from logging_system import log_audit, log_security
from models import (
    Task as TaskRow, Challenge as ChallengeRow, Project as ProjectRow, Tag as TagRow, task_tags,
    AVAILABLE_STATUSES, ItemType, ActionType, is_valid_status, is_valid_status_progression,
)
from schemas import Task, TaskCreate, Tag, SearchParameters, User
from status_actions import status_action_manager

logger = logging.getLogger("maproulette.tasks")


class TaskDAL:
    def __init__(self):
        self.cache_manager: CacheManager[int, Task] = CacheManager("tasks")

    async def _load(self, id: int, db: AsyncSession) -> Optional[Task]:
        row = await db.get(TaskRow, id, populate_existing=True)
        return Task.model_validate(row) if row else None

    async def retrieve_by_id(self, id: int, db: AsyncSession) -> Optional[Task]:
        return await self.cache_manager.with_option_caching(id, lambda: self._load(id, db))

    async def insert(self, data: TaskCreate, user: User, db: AsyncSession) -> Task:
        challenge = await db.get(ChallengeRow, data.challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge", data.challenge_id)
        if not user.is_admin_of(challenge.project_id):
            log_security("task_write_denied", user_id=str(user.id), metadata={"challenge_id": data.challenge_id})
            raise IllegalAccessError(f"User {user.id} is not an administrator of project {challenge.project_id}")

        try:
            row = TaskRow(
                name=data.name,
                challenge_id=data.challenge_id,
                instruction=data.instruction,
                location=data.location,
                tags=await tag_dal.get_or_create(data.tags, db),
            )
            db.add(row)
            await db.flush()
            await action_manager.set_action(user, ItemType.TASK, row.id, ActionType.CREATED, db, commit=False)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        log_audit("create", "task", user_id=str(user.id), metadata={"task_id": row.id})
        return self.cache_manager.add(row.id, Task.model_validate(row))

    async def get_random_tasks(
        self, user: User, params: SearchParameters, db: AsyncSession, limit: int = 1
    ) -> List[Task]:
        """Random tasks still open for work, from enabled challenges of enabled projects"""
        query = (
            select(TaskRow)
            .join(ChallengeRow, ChallengeRow.id == TaskRow.challenge_id)
            .join(ProjectRow, ProjectRow.id == ChallengeRow.project_id)
            .where(
                TaskRow.status.in_([int(s) for s in AVAILABLE_STATUSES]),
                ChallengeRow.enabled.is_(True),
                ProjectRow.enabled.is_(True),
            )
        )
        if params.challenge_id is not None:
            query = query.where(TaskRow.challenge_id == params.challenge_id)
        if params.task_search:
            query = query.where(TaskRow.name.icontains(params.task_search, autoescape=True))
        if params.task_tags:
            query = query.where(TaskRow.tags.any(TagRow.name.in_(params.task_tags)))
        query = query.order_by(func.random()).limit(max(limit, 0))

        result = await db.execute(query)
        return [Task.model_validate(row) for row in result.scalars().all()]

    async def record_views(self, user: User, tasks: List[Task], db: AsyncSession) -> None:
        """Record a TASK_VIEWED action for each task handed out to ``user``"""
        if not tasks:
            return
        try:
            for task in tasks:
                await action_manager.set_action(
                    user, ItemType.TASK, task.id, ActionType.TASK_VIEWED, db, commit=False
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def set_task_status(self, task: Task, status: int, user: User, db: AsyncSession) -> Task:
        """Move a task to a new status, recording who did it"""
        if not is_valid_status(status):
            raise InvalidStatusError(None, status)

        row = await db.get(TaskRow, task.id, populate_existing=True)
        if row is None:
            raise NotFoundError("Task", task.id)
        if not is_valid_status_progression(row.status, status):
            raise InvalidStatusError(row.status, status)

        current = Task.model_validate(row)
        try:
            row.status = status
            await status_action_manager.set_status_action(user, current, status, db, commit=False)
            await action_manager.set_action(
                user, ItemType.TASK, task.id, ActionType.TASK_STATUS_SET, db, status=status, commit=False
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Task %s status %s -> %s by user %s", task.id, current.status, status, user.id)
        return self.cache_manager.add(task.id, Task.model_validate(row))

    async def get_tags(self, task_id: int, db: AsyncSession) -> List[Tag]:
        result = await db.execute(
            select(TagRow)
            .join(task_tags, task_tags.c.tag_id == TagRow.id)
            .where(task_tags.c.task_id == task_id)
            .order_by(TagRow.name)
        )
        return [Tag.model_validate(row) for row in result.scalars().all()]


task_dal = TaskDAL()
