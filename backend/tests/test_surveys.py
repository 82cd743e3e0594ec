# tests/test_surveys.py - Survey tests
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select

from action_manager import action_manager
from models import ActionType, ItemType, SurveyAnswer
from schemas import SurveyCreate, TaskCreate
from survey_dal import survey_dal
from task_dal import task_dal
from tests.conftest import get_auth_headers


@pytest_asyncio.fixture
async def survey(db_session, super_user, project):
    return await survey_dal.insert(
        SurveyCreate(name="Is this a road?", project_id=project.id, answers=["Yes", "No"]),
        super_user,
        db_session,
    )


@pytest_asyncio.fixture
async def survey_task(db_session, super_user, survey):
    return await task_dal.insert(TaskCreate(name="way-1", challenge_id=survey.id), super_user, db_session)


@pytest.mark.asyncio
async def test_create_survey(client: AsyncClient, super_user, project):
    resp = await client.post(
        "/api/v2/survey",
        json={"name": "Bridges?", "project_id": project.id, "answers": ["Bridge", "Culvert", "Neither"]},
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["challenge_type"] == 4
    assert [a["answer"] for a in data["answers"]] == ["Bridge", "Culvert", "Neither"]


@pytest.mark.asyncio
async def test_create_survey_without_answers(client: AsyncClient, super_user, project):
    resp = await client.post(
        "/api/v2/survey",
        json={"name": "Empty", "project_id": project.id, "answers": []},
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_survey(client: AsyncClient, survey, challenge):
    resp = await client.get(f"/api/v2/survey/{survey.id}")
    assert resp.status_code == 200
    assert [a["answer"] for a in resp.json()["answers"]] == ["Yes", "No"]

    # a survey read as a challenge still carries its answers
    resp = await client.get(f"/api/v2/challenge/{survey.id}")
    assert len(resp.json()["answers"]) == 2

    # plain challenges are not surveys
    assert (await client.get(f"/api/v2/survey/{challenge.id}")).status_code == 204
    assert (await client.get("/api/v2/survey/999")).status_code == 204


@pytest.mark.asyncio
async def test_answer_question(client: AsyncClient, db_session, test_user, survey, survey_task):
    answer_id = survey.answers[1].id
    resp = await client.post(
        f"/api/v2/survey/{survey.id}/answer",
        params={"task_id": survey_task.id, "answer_id": answer_id},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 200

    result = await db_session.execute(select(SurveyAnswer).where(SurveyAnswer.survey_id == survey.id))
    answers = result.scalars().all()
    assert len(answers) == 1
    assert answers[0].osm_user_id == 2000
    assert answers[0].answer_id == answer_id
    assert answers[0].project_id == survey.project_id

    actions = await action_manager.get_actions(
        db_session, item_type=ItemType.SURVEY, item_id=survey.id, action=ActionType.QUESTION_ANSWERED
    )
    assert len(actions) == 1
    assert actions[0].osm_user_id == 2000


@pytest.mark.asyncio
async def test_answer_must_match_survey(client: AsyncClient, test_user, survey, survey_task, tasks):
    headers = get_auth_headers(test_user)
    # task from another challenge
    resp = await client.post(
        f"/api/v2/survey/{survey.id}/answer",
        params={"task_id": tasks[0].id, "answer_id": survey.answers[0].id},
        headers=headers,
    )
    assert resp.status_code == 404

    resp = await client.post(
        f"/api/v2/survey/{survey.id}/answer",
        params={"task_id": survey_task.id, "answer_id": 999},
        headers=headers,
    )
    assert resp.status_code == 404

    resp = await client.post(
        "/api/v2/survey/999/answer",
        params={"task_id": survey_task.id, "answer_id": survey.answers[0].id},
        headers=headers,
    )
    assert resp.status_code == 404
