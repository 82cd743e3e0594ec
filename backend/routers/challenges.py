# routers/challenges.py - Challenge CRUD, listings, search and random task selection
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_user_or_guest
from challenge_dal import challenge_dal
from config import DEFAULT_LIST_SIZE
from database import get_db_session
from schemas import (
    Challenge, ChallengeCreate, ChallengeUpdate, Tag, Task, User,
    SearchParameters, parse_tags,
)
from survey_dal import survey_dal
from task_dal import task_dal

router = APIRouter(prefix="/api/v2", tags=["Challenges"])


@router.post("/challenge", response_model=Challenge, status_code=201)
async def create_challenge(
    data: ChallengeCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a challenge in a project you administer"""
    return await challenge_dal.insert(data, user, db)


@router.get("/challenge/{challenge_id}")
async def get_challenge(
    challenge_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a challenge; surveys come back with their answers"""
    challenge = await challenge_dal.retrieve_by_id(challenge_id, db)
    if challenge is None:
        return Response(status_code=204)
    if challenge.is_survey:
        return await survey_dal.retrieve_by_id(challenge_id, db)
    return challenge


@router.put("/challenge/{challenge_id}", response_model=Challenge)
async def update_challenge(
    challenge_id: int,
    data: ChallengeUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a challenge"""
    updated = await challenge_dal.update(challenge_id, data, user, db)
    if updated is None:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return updated


@router.delete("/challenge/{challenge_id}")
async def delete_challenge(
    challenge_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a challenge along with its tasks"""
    deleted = await challenge_dal.delete(challenge_id, user, db)
    if not deleted:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return {"status": "deleted", "id": challenge_id}


@router.get("/challenge/{challenge_id}/tags", response_model=List[Tag])
async def get_challenge_tags(
    challenge_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Tags of a challenge"""
    return await challenge_dal.get_tags(challenge_id, db)


@router.get("/challenge/{challenge_id}/tasks", response_model=List[Task])
async def list_challenge_tasks(
    challenge_id: int,
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks of a challenge"""
    return await challenge_dal.list_children(challenge_id, db, limit=limit, offset=offset)


@router.get("/challenge/{challenge_id}/tasks/random", response_model=List[Task])
async def get_random_tasks(
    challenge_id: int,
    search: str = Query(default=""),
    tags: str = Query(default=""),
    limit: int = Query(default=1, ge=1, le=100),
    user: User = Depends(get_user_or_guest),
    db: AsyncSession = Depends(get_db_session),
):
    """Random open tasks of a challenge, optionally narrowed by name and tags"""
    params = SearchParameters(challenge_id=challenge_id, task_search=search, task_tags=tags)
    tasks = await task_dal.get_random_tasks(user, params, db, limit=limit)
    await task_dal.record_views(user, tasks, db)
    return tasks


@router.get("/challenges/featured", response_model=List[Challenge])
async def get_featured_challenges(
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
):
    """Featured challenges of enabled projects"""
    return await challenge_dal.get_featured_challenges(db, limit=limit, offset=offset)


@router.get("/challenges/find", response_model=List[Challenge])
async def find_challenges(
    search: str = Query(default=""),
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
):
    """Search enabled challenges by name"""
    return await challenge_dal.find(search, db, limit=limit, offset=offset)


@router.get("/challenges/tagged", response_model=List[Challenge])
async def get_challenges_by_tags(
    tags: str = Query(default=""),
    limit: int = Query(default=DEFAULT_LIST_SIZE, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
):
    """Enabled challenges carrying any of the comma separated tags"""
    return await challenge_dal.get_by_tags(parse_tags(tags), db, limit=limit, offset=offset)
