# project_dal.py - Projects and their administrator groups
import logging
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from action_manager import action_manager
from cache import CacheManager
from errors import IllegalAccessError
from logging_system import log_audit
from models import Project as ProjectRow, Group as GroupRow, GroupType, ItemType, ActionType, user_groups
from schemas import Project, ProjectCreate, User
from user_dal import user_dal

logger = logging.getLogger("maproulette.projects")


class ProjectDAL:
    def __init__(self):
        self.cache_manager: CacheManager[int, Project] = CacheManager("projects")

    async def retrieve_by_id(self, id: int, db: AsyncSession) -> Optional[Project]:
        async def load():
            row = await db.get(ProjectRow, id)
            return Project.model_validate(row) if row else None

        return await self.cache_manager.with_option_caching(id, load)

    async def insert(self, data: ProjectCreate, user: User, db: AsyncSession) -> Project:
        """Create a project along with its admin group; the creator becomes its first admin"""
        if user.is_guest:
            raise IllegalAccessError("Guests cannot create projects")

        try:
            row = ProjectRow(name=data.name, description=data.description, enabled=data.enabled)
            db.add(row)
            await db.flush()

            group = GroupRow(name=f"{data.name} Admin", project_id=row.id, group_type=GroupType.ADMIN)
            db.add(group)
            await db.flush()
            await db.execute(
                insert(user_groups).values(osm_user_id=user.osm_profile.id, group_id=group.id)
            )
            await action_manager.set_action(
                user, ItemType.PROJECT, row.id, ActionType.CREATED, db, commit=False
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        # the creator's cached record does not know about the new group yet
        user_dal.invalidate_osm_id(user.osm_profile.id)
        project = self.cache_manager.add(row.id, Project.model_validate(row))
        log_audit("create", "project", user_id=str(user.id), metadata={"project_id": row.id})
        return project


project_dal = ProjectDAL()
