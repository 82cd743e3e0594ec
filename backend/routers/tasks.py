# routers/tasks.py - Tasks and their status changes
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db_session
from schemas import Task, TaskCreate, Tag, User
from task_dal import task_dal

router = APIRouter(prefix="/api/v2", tags=["Tasks"])


@router.post("/task", response_model=Task, status_code=201)
async def create_task(
    data: TaskCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task in a challenge of a project you administer"""
    return await task_dal.insert(data, user, db)


@router.get("/task/{task_id}", response_model=Task)
async def get_task(task_id: int, db: AsyncSession = Depends(get_db_session)):
    """Get a task"""
    task = await task_dal.retrieve_by_id(task_id, db)
    if task is None:
        return Response(status_code=204)
    return task


@router.get("/task/{task_id}/tags", response_model=List[Tag])
async def get_task_tags(task_id: int, db: AsyncSession = Depends(get_db_session)):
    return await task_dal.get_tags(task_id, db)


@router.put("/task/{task_id}/status/{status}", response_model=Task)
async def set_task_status(
    task_id: int,
    status: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a task to a new status; disallowed progressions are rejected"""
    task = await task_dal.retrieve_by_id(task_id, db)
    if task is None:
        return Response(status_code=204)
    return await task_dal.set_task_status(task, status, user, db)
