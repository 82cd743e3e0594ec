# routers/projects.py - Projects
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db_session
from project_dal import project_dal
from schemas import Project, ProjectCreate, User

router = APIRouter(prefix="/api/v2", tags=["Projects"])


@router.post("/project", response_model=Project, status_code=201)
async def create_project(
    data: ProjectCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project; the creator becomes its administrator"""
    return await project_dal.insert(data, user, db)


@router.get("/project/{project_id}", response_model=Project)
async def get_project(project_id: int, db: AsyncSession = Depends(get_db_session)):
    project = await project_dal.retrieve_by_id(project_id, db)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project
