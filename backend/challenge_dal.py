# challenge_dal.py - Data access for challenges
"""
Challenges belong to a project and own tasks. Writes are limited to
administrators of the owning project (or super users). Records are cached
by challenge id; deleting a challenge also evicts its tasks from the task
cache since the database drops them with it.
"""
import logging
from typing import List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import config
import tag_dal
from action_manager import action_manager
from cache import CacheManager
from errors import IllegalAccessError, NotFoundError
from logging_system import log_audit, log_security
from models import (
    Challenge as ChallengeRow, Project as ProjectRow, Task as TaskRow, Tag as TagRow,
    Answer as AnswerRow, challenge_tags, ChallengeType, ItemType, ActionType,
)
from schemas import Challenge, ChallengeCreate, ChallengeUpdate, Tag, Task, User
from task_dal import task_dal

logger = logging.getLogger("maproulette.challenges")


def _check_admin(user: User, project_id: int) -> None:
    if not user.is_admin_of(project_id):
        log_security("challenge_write_denied", user_id=str(user.id), metadata={"project_id": project_id})
        raise IllegalAccessError(f"User {user.id} is not an administrator of project {project_id}")


def _page(query, limit: int, offset: int):
    query = query.offset(offset)
    return query.limit(limit) if limit >= 0 else query


class ChallengeDAL:
    def __init__(self):
        self.cache_manager: CacheManager[int, Challenge] = CacheManager("challenges")

    async def retrieve_by_id(self, id: int, db: AsyncSession) -> Optional[Challenge]:
        async def load():
            row = await db.get(ChallengeRow, id, populate_existing=True)
            return Challenge.model_validate(row) if row else None

        return await self.cache_manager.with_option_caching(id, load)

    async def insert(
        self,
        data: ChallengeCreate,
        user: User,
        db: AsyncSession,
        challenge_type: int = ChallengeType.CHALLENGE,
        answers: Sequence[str] = (),
    ) -> Challenge:
        if await db.get(ProjectRow, data.project_id) is None:
            raise NotFoundError("Project", data.project_id)
        _check_admin(user, data.project_id)

        item_type = ItemType.SURVEY if challenge_type == ChallengeType.SURVEY else ItemType.CHALLENGE
        try:
            row = ChallengeRow(
                **data.model_dump(include={
                    "name", "project_id", "description", "blurb", "instruction",
                    "difficulty", "featured", "enabled",
                }),
                challenge_type=int(challenge_type),
                tags=await tag_dal.get_or_create(data.tags, db),
            )
            db.add(row)
            await db.flush()
            for answer in answers:
                db.add(AnswerRow(survey_id=row.id, answer=answer))
            await action_manager.set_action(user, item_type, row.id, ActionType.CREATED, db, commit=False)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        challenge = self.cache_manager.add(row.id, Challenge.model_validate(row))
        log_audit("create", item_type.name.lower(), user_id=str(user.id), metadata={"challenge_id": row.id})
        return challenge

    async def update(self, id: int, data: ChallengeUpdate, user: User, db: AsyncSession) -> Optional[Challenge]:
        """Apply the fields set in ``data``. Returns None when the challenge does not exist"""

        async def updater(current: Challenge) -> Optional[Challenge]:
            _check_admin(user, current.project_id)
            row = await db.get(
                ChallengeRow, id, options=[selectinload(ChallengeRow.tags)], populate_existing=True
            )
            if row is None:
                return None
            try:
                for key, value in data.model_dump(exclude_unset=True, exclude={"tags"}).items():
                    setattr(row, key, value)
                if data.tags is not None:
                    row.tags = await tag_dal.get_or_create(data.tags, db)
                await action_manager.set_action(
                    user, ItemType.CHALLENGE, id, ActionType.UPDATED, db, commit=False
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            log_audit("update", "challenge", user_id=str(user.id), metadata={"challenge_id": id})
            return Challenge.model_validate(row)

        return await self.cache_manager.with_updating_cache(
            id, lambda key: self.retrieve_by_id(key, db), updater
        )

    async def delete(self, id: int, user: User, db: AsyncSession) -> int:
        current = await self.retrieve_by_id(id, db)
        if current is None:
            return 0
        _check_admin(user, current.project_id)

        result = await db.execute(select(TaskRow.id).where(TaskRow.challenge_id == id))
        task_ids = list(result.scalars().all())

        async def deleter():
            try:
                deleted = await db.execute(delete(ChallengeRow).where(ChallengeRow.id == id))
                await action_manager.set_action(
                    user, ItemType.CHALLENGE, id, ActionType.DELETED, db, commit=False
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            return deleted.rowcount

        count = await self.cache_manager.with_cache_id_deletion([id], deleter)
        for task_id in task_ids:
            task_dal.cache_manager.remove(task_id)
        log_audit("delete", "challenge", user_id=str(user.id), metadata={"challenge_id": id})
        return count

    # ============================================================
    # LISTINGS
    # ============================================================

    async def list_children(
        self, id: int, db: AsyncSession, limit: int = config.DEFAULT_LIST_SIZE, offset: int = 0
    ) -> List[Task]:
        query = select(TaskRow).where(TaskRow.challenge_id == id).order_by(TaskRow.id)
        result = await db.execute(_page(query, limit, offset))
        return [Task.model_validate(row) for row in result.scalars().all()]

    async def get_featured_challenges(
        self, db: AsyncSession, limit: int = config.DEFAULT_LIST_SIZE, offset: int = 0
    ) -> List[Challenge]:
        query = (
            select(ChallengeRow)
            .join(ProjectRow, ProjectRow.id == ChallengeRow.project_id)
            .where(ChallengeRow.featured.is_(True), ChallengeRow.enabled.is_(True), ProjectRow.enabled.is_(True))
            .order_by(ChallengeRow.id)
        )
        result = await db.execute(_page(query, limit, offset))
        return [Challenge.model_validate(row) for row in result.scalars().all()]

    async def find(
        self, search: str, db: AsyncSession, limit: int = config.DEFAULT_LIST_SIZE, offset: int = 0
    ) -> List[Challenge]:
        """Enabled challenges whose name contains ``search``, ignoring case"""
        query = select(ChallengeRow).where(ChallengeRow.enabled.is_(True))
        if search:
            query = query.where(ChallengeRow.name.icontains(search, autoescape=True))
        result = await db.execute(_page(query.order_by(ChallengeRow.name, ChallengeRow.id), limit, offset))
        return [Challenge.model_validate(row) for row in result.scalars().all()]

    async def get_by_tags(
        self, tags: List[str], db: AsyncSession, limit: int = config.DEFAULT_LIST_SIZE, offset: int = 0
    ) -> List[Challenge]:
        """Enabled challenges carrying any of the given tags"""
        if not tags:
            return []
        query = (
            select(ChallengeRow)
            .where(ChallengeRow.enabled.is_(True), ChallengeRow.tags.any(TagRow.name.in_(tags)))
            .order_by(ChallengeRow.id)
        )
        result = await db.execute(_page(query, limit, offset))
        return [Challenge.model_validate(row) for row in result.scalars().all()]

    async def get_tags(self, challenge_id: int, db: AsyncSession) -> List[Tag]:
        result = await db.execute(
            select(TagRow)
            .join(challenge_tags, challenge_tags.c.tag_id == TagRow.id)
            .where(challenge_tags.c.challenge_id == challenge_id)
            .order_by(TagRow.name)
        )
        return [Tag.model_validate(row) for row in result.scalars().all()]


challenge_dal = ChallengeDAL()
