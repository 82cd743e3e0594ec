# tests/test_challenges.py - Challenge router and data access tests
import pytest
from httpx import AsyncClient

from action_manager import action_manager
from challenge_dal import challenge_dal
from errors import IllegalAccessError
from models import ItemType, ActionType, TaskStatus
from schemas import ChallengeCreate, ChallengeUpdate
from task_dal import task_dal
from tests.conftest import get_auth_headers


def _challenge_body(project_id: int, name: str = "Rivers", **extra) -> dict:
    return {"name": name, "project_id": project_id, "blurb": "Fix the rivers", **extra}


# ============================================================
# CREATE / READ / UPDATE / DELETE
# ============================================================

@pytest.mark.asyncio
async def test_create_challenge(client: AsyncClient, super_user, project):
    resp = await client.post(
        "/api/v2/challenge",
        json=_challenge_body(project.id, tags="water,Rivers"),
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Rivers"
    assert data["project_id"] == project.id
    assert data["challenge_type"] == 1
    assert data["difficulty"] == 2

    tags = await client.get(f"/api/v2/challenge/{data['id']}/tags")
    assert [t["name"] for t in tags.json()] == ["rivers", "water"]


@pytest.mark.asyncio
async def test_project_admin_can_create(client: AsyncClient, project_admin, project):
    resp = await client.post(
        "/api/v2/challenge", json=_challenge_body(project.id), headers=get_auth_headers(project_admin)
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_create_challenge_forbidden_for_non_admin(client: AsyncClient, test_user, project):
    resp = await client.post(
        "/api/v2/challenge", json=_challenge_body(project.id), headers=get_auth_headers(test_user)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_challenge_requires_authentication(client: AsyncClient, project):
    resp = await client.post("/api/v2/challenge", json=_challenge_body(project.id))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_challenge_in_missing_project(client: AsyncClient, super_user):
    resp = await client.post(
        "/api/v2/challenge", json=_challenge_body(999), headers=get_auth_headers(super_user)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_challenge_name_conflicts(client: AsyncClient, super_user, project, challenge):
    resp = await client.post(
        "/api/v2/challenge",
        json=_challenge_body(project.id, name=challenge.name),
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_get_challenge(client: AsyncClient, challenge):
    resp = await client.get(f"/api/v2/challenge/{challenge.id}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Fix Roads"
    assert "answers" not in resp.json()


@pytest.mark.asyncio
async def test_get_missing_challenge_is_no_content(client: AsyncClient):
    resp = await client.get("/api/v2/challenge/999")
    assert resp.status_code == 204
    assert resp.content == b""


@pytest.mark.asyncio
async def test_update_challenge(client: AsyncClient, super_user, challenge):
    resp = await client.put(
        f"/api/v2/challenge/{challenge.id}",
        json={"name": "Fix All Roads", "difficulty": 3, "tags": "paths"},
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Fix All Roads"
    assert resp.json()["description"] == "Disconnected roads"

    # served from the refreshed cache
    resp = await client.get(f"/api/v2/challenge/{challenge.id}")
    assert resp.json()["difficulty"] == 3
    tags = await client.get(f"/api/v2/challenge/{challenge.id}/tags")
    assert [t["name"] for t in tags.json()] == ["paths"]


@pytest.mark.asyncio
async def test_update_without_tags_keeps_them(db_session, super_user, challenge):
    await challenge_dal.update(challenge.id, ChallengeUpdate(blurb="new blurb"), super_user, db_session)
    tags = await challenge_dal.get_tags(challenge.id, db_session)
    assert [t.name for t in tags] == ["highway", "roads"]


@pytest.mark.asyncio
async def test_update_clears_optional_text(client: AsyncClient, super_user, challenge):
    resp = await client.put(
        f"/api/v2/challenge/{challenge.id}",
        json={"description": None, "instruction": None},
        headers=get_auth_headers(super_user),
    )
    assert resp.status_code == 200
    assert resp.json()["description"] is None
    assert resp.json()["instruction"] is None
    assert resp.json()["name"] == "Fix Roads"

    resp = await client.get(f"/api/v2/challenge/{challenge.id}")
    assert resp.json()["description"] is None


@pytest.mark.asyncio
async def test_update_rejects_null_required_fields(client: AsyncClient, super_user, challenge):
    for field in ("name", "difficulty", "featured", "enabled"):
        resp = await client.put(
            f"/api/v2/challenge/{challenge.id}", json={field: None}, headers=get_auth_headers(super_user)
        )
        assert resp.status_code == 422, field

    resp = await client.get(f"/api/v2/challenge/{challenge.id}")
    assert resp.json()["name"] == "Fix Roads"
    assert resp.json()["featured"] is True


@pytest.mark.asyncio
async def test_update_challenge_forbidden(client: AsyncClient, test_user, challenge):
    resp = await client.put(
        f"/api/v2/challenge/{challenge.id}", json={"name": "Mine"}, headers=get_auth_headers(test_user)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_update_missing_challenge(client: AsyncClient, super_user):
    resp = await client.put("/api/v2/challenge/999", json={"name": "x"}, headers=get_auth_headers(super_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_challenge_removes_tasks(client: AsyncClient, super_user, challenge, tasks):
    # warm the task cache
    assert (await client.get(f"/api/v2/task/{tasks[0].id}")).status_code == 200

    resp = await client.delete(f"/api/v2/challenge/{challenge.id}", headers=get_auth_headers(super_user))
    assert resp.status_code == 200

    assert (await client.get(f"/api/v2/challenge/{challenge.id}")).status_code == 204
    assert (await client.get(f"/api/v2/task/{tasks[0].id}")).status_code == 204

    resp = await client.delete(f"/api/v2/challenge/{challenge.id}", headers=get_auth_headers(super_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_challenge_forbidden(db_session, test_user, challenge):
    with pytest.raises(IllegalAccessError):
        await challenge_dal.delete(challenge.id, test_user, db_session)


# ============================================================
# LISTINGS & SEARCH
# ============================================================

@pytest.mark.asyncio
async def test_list_children(client: AsyncClient, challenge, tasks):
    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks")
    assert [t["name"] for t in resp.json()] == ["road-1", "road-2", "road-3"]

    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks", params={"limit": 2, "offset": 1})
    assert [t["name"] for t in resp.json()] == ["road-2", "road-3"]


@pytest.mark.asyncio
async def test_featured_challenges(client: AsyncClient, db_session, super_user, project, challenge):
    await challenge_dal.insert(
        ChallengeCreate(name="Hidden", project_id=project.id, featured=True, enabled=False),
        super_user,
        db_session,
    )
    await challenge_dal.insert(ChallengeCreate(name="Plain", project_id=project.id), super_user, db_session)

    resp = await client.get("/api/v2/challenges/featured")
    assert [c["name"] for c in resp.json()] == ["Fix Roads"]


@pytest.mark.asyncio
async def test_find_challenges(client: AsyncClient, challenge):
    resp = await client.get("/api/v2/challenges/find", params={"search": "ROADS"})
    assert [c["id"] for c in resp.json()] == [challenge.id]

    resp = await client.get("/api/v2/challenges/find", params={"search": "bridges"})
    assert resp.json() == []


@pytest.mark.asyncio
async def test_find_matches_wildcards_literally(db_session, super_user, project, challenge):
    bridges = await challenge_dal.insert(
        ChallengeCreate(name="Fix_Bridges", project_id=project.id), super_user, db_session
    )
    assert [c.name for c in await challenge_dal.find("x_r", db_session)] == []
    assert [c.name for c in await challenge_dal.find("x_b", db_session)] == [bridges.name]
    assert await challenge_dal.find("%", db_session) == []
    assert [c.name for c in await challenge_dal.find("", db_session)] == ["Fix Roads", "Fix_Bridges"]


@pytest.mark.asyncio
async def test_challenges_by_tags(client: AsyncClient, challenge):
    resp = await client.get("/api/v2/challenges/tagged", params={"tags": "HIGHWAY,unknown"})
    assert [c["id"] for c in resp.json()] == [challenge.id]

    resp = await client.get("/api/v2/challenges/tagged", params={"tags": "unknown"})
    assert resp.json() == []
    resp = await client.get("/api/v2/challenges/tagged")
    assert resp.json() == []


# ============================================================
# RANDOM TASKS
# ============================================================

@pytest.mark.asyncio
async def test_random_task_records_view(client: AsyncClient, db_session, challenge, tasks):
    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks/random")
    assert resp.status_code == 200
    picked = resp.json()
    assert len(picked) == 1
    assert picked[0]["challenge_id"] == challenge.id

    views = await action_manager.get_actions(
        db_session, item_type=ItemType.TASK, action=ActionType.TASK_VIEWED
    )
    assert [v.item_id for v in views] == [picked[0]["id"]]
    # anonymous viewers are recorded without an OSM id
    assert views[0].osm_user_id is None


@pytest.mark.asyncio
async def test_random_tasks_filters(client: AsyncClient, challenge, tasks):
    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks/random", params={"tags": "bridge"})
    assert [t["name"] for t in resp.json()] == ["road-1"]

    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks/random", params={"search": "ROAD-2"})
    assert [t["name"] for t in resp.json()] == ["road-2"]

    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks/random", params={"limit": 10})
    assert sorted(t["name"] for t in resp.json()) == ["road-1", "road-2", "road-3"]


@pytest.mark.asyncio
async def test_random_task_search_is_literal(client: AsyncClient, challenge, tasks):
    url = f"/api/v2/challenge/{challenge.id}/tasks/random"
    assert (await client.get(url, params={"search": "road_1"})).json() == []
    assert (await client.get(url, params={"search": "%"})).json() == []


@pytest.mark.asyncio
async def test_record_views_for_signed_in_user(db_session, test_user, tasks):
    await task_dal.record_views(test_user, tasks[:2], db_session)
    await task_dal.record_views(test_user, [], db_session)

    views = await action_manager.get_actions(
        db_session, item_type=ItemType.TASK, action=ActionType.TASK_VIEWED, limit=-1
    )
    assert sorted(v.item_id for v in views) == sorted(t.id for t in tasks[:2])
    assert {v.osm_user_id for v in views} == {test_user.osm_profile.id}


@pytest.mark.asyncio
async def test_random_tasks_skip_finished_work(client: AsyncClient, db_session, super_user, challenge, tasks):
    await task_dal.set_task_status(tasks[0], TaskStatus.FIXED, super_user, db_session)
    await task_dal.set_task_status(tasks[1], TaskStatus.SKIPPED, super_user, db_session)

    resp = await client.get(f"/api/v2/challenge/{challenge.id}/tasks/random", params={"limit": 10})
    assert sorted(t["name"] for t in resp.json()) == ["road-2", "road-3"]
