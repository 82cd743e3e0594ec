# routers/users.py - User accounts, group membership and API keys
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from config import DEFAULT_THEME
from database import get_db_session
from schemas import User, OSMProfile, RequestToken, Location, Group, UserUpdate
from user_dal import user_dal

router = APIRouter(prefix="/api/v2", tags=["Users"])


# --- Schemas ---

class UserCreate(BaseModel):
    """Body for creating or replacing a user from its OSM identity"""
    id: int = -1
    osm_id: int
    display_name: str = Field(..., min_length=1)
    description: str = ""
    avatar_url: str = ""
    theme: str = DEFAULT_THEME
    token: str
    secret: str
    home_location: Location = Location()
    group_ids: List[int] = Field(default_factory=list)


# --- Helpers ---

def _create_to_user(data: UserCreate) -> User:
    return User(
        id=data.id,
        theme=data.theme,
        osm_profile=OSMProfile(
            id=data.osm_id,
            display_name=data.display_name,
            description=data.description,
            avatar_url=data.avatar_url,
            home_location=data.home_location,
            request_token=RequestToken(token=data.token, secret=data.secret),
        ),
        groups=[Group(id=gid) for gid in data.group_ids],
    )


def _found(user: Optional[User], key) -> dict:
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {key} not found")
    return user.to_public()


# --- Endpoints ---

@router.get("/user/{user_id}")
async def get_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get a user by id"""
    return _found(await user_dal.retrieve_by_id(user_id, db), user_id)


@router.get("/osmuser/{osm_id}")
async def get_user_by_osm_id(
    osm_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get a user by OSM id"""
    return _found(await user_dal.retrieve_by_osm_id(osm_id, db), osm_id)


@router.post("/user")
async def upsert_user(
    data: UserCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a user, or replace the one with the same id or OSM id (super users only)"""
    saved = await user_dal.insert(_create_to_user(data), user, db)
    return saved.to_public()


@router.put("/user/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Partially update a user (super users only)"""
    return _found(await user_dal.update(data, user, user_id, db), user_id)


@router.delete("/user/{user_id}")
async def delete_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a user (super users only)"""
    deleted = await user_dal.delete(user_id, user, db)
    return {"status": "deleted" if deleted else "not_found", "deleted": deleted}


@router.delete("/osmuser/{osm_id}")
async def delete_user_by_osm_id(
    osm_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a user by OSM id (super users only)"""
    deleted = await user_dal.delete_by_osm_id(osm_id, user, db)
    return {"status": "deleted" if deleted else "not_found", "deleted": deleted}


@router.put("/osmuser/{osm_id}/project/{project_id}")
async def add_user_to_project(
    osm_id: int,
    project_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Make a user an administrator of a project"""
    await user_dal.add_user_to_project(osm_id, project_id, user, db)
    return _found(await user_dal.retrieve_by_osm_id(osm_id, db), osm_id)


@router.put("/osmuser/{osm_id}/group/{group_id}")
async def add_user_to_group(
    osm_id: int,
    group_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a user to a group"""
    await user_dal.add_user_to_group(osm_id, group_id, user, db)
    return _found(await user_dal.retrieve_by_osm_id(osm_id, db), osm_id)


@router.get("/user/{user_id}/apikey")
async def generate_api_key(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Generate a new API key. The key is only shown once"""
    api_key = await user_dal.generate_api_key(user_id, user, db)
    if api_key is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return {"api_key": api_key, "message": "Store this key securely. It will not be shown again."}
