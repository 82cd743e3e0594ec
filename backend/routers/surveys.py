# routers/surveys.py - Surveys and their answers
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db_session
from schemas import Survey, SurveyCreate, User
from survey_dal import survey_dal

router = APIRouter(prefix="/api/v2", tags=["Surveys"])


@router.post("/survey", response_model=Survey, status_code=201)
async def create_survey(
    data: SurveyCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a survey with its possible answers"""
    return await survey_dal.insert(data, user, db)


@router.get("/survey/{survey_id}", response_model=Survey)
async def get_survey(survey_id: int, db: AsyncSession = Depends(get_db_session)):
    """Get a survey and its answers"""
    survey = await survey_dal.retrieve_by_id(survey_id, db)
    if survey is None:
        return Response(status_code=204)
    return survey


@router.post("/survey/{survey_id}/answer")
async def answer_survey_question(
    survey_id: int,
    task_id: int = Query(...),
    answer_id: int = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Answer the survey question for one of its tasks"""
    await survey_dal.answer_question(survey_id, task_id, answer_id, user, db)
    return {"status": "answered", "survey_id": survey_id, "task_id": task_id, "answer_id": answer_id}
