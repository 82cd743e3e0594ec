# tag_dal.py - Tags shared by challenges and tasks
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Tag


async def get_or_create(names: Iterable[str], db: AsyncSession) -> List[Tag]:
    """Tag rows for the given names, creating the missing ones (not committed)"""
    wanted = sorted({n.strip().lower() for n in names if n and n.strip()})
    if not wanted:
        return []
    result = await db.execute(select(Tag).where(Tag.name.in_(wanted)))
    tags = {tag.name: tag for tag in result.scalars().all()}
    for name in wanted:
        if name not in tags:
            tag = Tag(name=name)
            db.add(tag)
            tags[name] = tag
    await db.flush()
    return [tags[name] for name in wanted]
