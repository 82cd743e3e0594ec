# action_manager.py - General audit trail of what users did to which items
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from models import Action, ActionType, ItemType, ACTION_LEVELS
from schemas import User

logger = logging.getLogger("maproulette.actions")


class ActionItem(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    created: Optional[datetime] = None
    osm_user_id: Optional[int] = None
    type_id: int
    item_id: int
    action: int
    status: int = 0
    extra: Optional[str] = None


class ActionManager:
    @staticmethod
    def is_recorded(action: ActionType) -> bool:
        return ACTION_LEVELS[ActionType(action)] <= config.ACTION_LEVEL

    async def set_action(
        self,
        user: Optional[User],
        item_type: ItemType,
        item_id: int,
        action: ActionType,
        db: AsyncSession,
        extra: str = "",
        status: int = 0,
        commit: bool = True,
    ) -> bool:
        """Record an action against an item.

        Returns False when the action's level is above the configured
        ACTION_LEVEL and nothing was written. With ``commit=False`` the row
        is only added to the session, so it lands with the caller's commit.
        """
        if not self.is_recorded(action):
            return False
        osm_user_id = None if user is None or user.is_guest else user.osm_profile.id
        db.add(Action(
            osm_user_id=osm_user_id,
            type_id=int(item_type),
            item_id=item_id,
            action=int(action),
            status=status,
            extra=extra or None,
        ))
        if commit:
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return True

    async def get_actions(
        self,
        db: AsyncSession,
        item_type: Optional[ItemType] = None,
        item_id: Optional[int] = None,
        action: Optional[ActionType] = None,
        limit: int = config.DEFAULT_LIST_SIZE,
        offset: int = 0,
    ) -> List[ActionItem]:
        query = select(Action)
        if item_type is not None:
            query = query.where(Action.type_id == int(item_type))
        if item_id is not None:
            query = query.where(Action.item_id == item_id)
        if action is not None:
            query = query.where(Action.action == int(action))
        query = query.order_by(Action.created.desc(), Action.id.desc()).offset(offset)
        if limit >= 0:
            query = query.limit(limit)
        result = await db.execute(query)
        return [ActionItem.model_validate(row) for row in result.scalars().all()]


action_manager = ActionManager()
