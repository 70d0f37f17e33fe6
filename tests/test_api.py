import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from api.main import app, get_events
from db.session import get_db


@pytest_asyncio.fixture
async def client(session_factory, events, course):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_events] = lambda: events
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def create_quiz(client, module_id, **overrides):
    body = {"module_id": module_id, "title": "Checkpoint", "passing_score": 50}
    body.update(overrides)
    response = await client.post("/api/quizzes", json=body)
    assert response.status_code == 201
    quiz_id = response.json()["id"]

    option_ids = []
    for prompt in ("First", "Second"):
        response = await client.post(f"/api/quizzes/{quiz_id}/questions", json={
            "prompt": prompt,
            "options": [{"text": "right", "is_correct": True}, {"text": "wrong"}],
        })
        assert response.status_code == 201
        option_ids.append((response.json()["id"], response.json()["option_ids"]))
    return quiz_id, option_ids


async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_attempt_flow(client, events, course):
    quiz_id, questions = await create_quiz(client, course.modules[0].id, time_limit_minutes=15)
    enrollment_id = course.enrollment.id

    view = await client.get(f"/api/quizzes/{quiz_id}/attempt-view", params={"enrollment_id": enrollment_id})
    assert view.status_code == 200
    assert "is_correct" not in view.text
    assert view.json()["attempt_id"] is None

    started = await client.post(f"/api/quizzes/{quiz_id}/attempts", json={"enrollment_id": enrollment_id})
    assert started.status_code == 200
    session = started.json()
    assert session["resumed"] is False
    assert session["attempt_number"] == 1
    assert 0 < session["seconds_remaining"] <= 900
    assert "is_correct" not in started.text
    attempt_id = session["attempt_id"]

    (first_id, first_options), (second_id, second_options) = questions
    saved = await client.put(
        f"/api/attempts/{attempt_id}/answers/{first_id}", json={"option_ids": [first_options[0]]}
    )
    assert saved.status_code == 200
    assert saved.json() == {
        "attempt_id": attempt_id, "question_id": first_id, "option_ids": [first_options[0]], "status": "saved"
    }

    resumed = await client.post(f"/api/quizzes/{quiz_id}/attempts", json={"enrollment_id": enrollment_id})
    assert resumed.status_code == 200
    assert resumed.json()["resumed"] is True
    assert resumed.json()["attempt_id"] == attempt_id
    assert resumed.json()["answers"] == {str(first_id): [first_options[0]]}

    finalized = await client.post(f"/api/attempts/{attempt_id}/finalize")
    assert finalized.status_code == 200
    result = finalized.json()
    assert result["status"] == "graded"
    assert result["score"] == 50
    assert result["passed"] is True
    assert result["progress"]["next_module_id"] == course.modules[1].id
    assert result["breakdown"] == {str(first_id): True, str(second_id): False}
    assert events.names() == ["module_unlocked", "attempt_graded"]

    again = await client.post(f"/api/attempts/{attempt_id}/finalize")
    assert again.json()["submitted_at"] == result["submitted_at"]
    assert again.json()["score"] == 50
    assert events.names() == ["module_unlocked", "attempt_graded"]

    fetched = await client.get(f"/api/attempts/{attempt_id}")
    assert fetched.json()["progress"] == result["progress"]

    history = await client.get(f"/api/quizzes/{quiz_id}/attempts", params={"enrollment_id": enrollment_id})
    assert [a["attempt_id"] for a in history.json()] == [attempt_id]


async def test_error_responses(client, course):
    quiz_id, questions = await create_quiz(client, course.modules[0].id)
    (question_id, option_ids), (other_question_id, other_option_ids) = questions

    missing = await client.get("/api/attempts/9999")
    assert missing.status_code == 404
    assert missing.json()["error"] == "attempt_not_found"

    outsider = await client.post(f"/api/quizzes/{quiz_id}/attempts", json={"enrollment_id": course.outsider.id})
    assert outsider.status_code == 403
    assert outsider.json()["error"] == "not_enrolled"

    started = await client.post(f"/api/quizzes/{quiz_id}/attempts", json={"enrollment_id": course.enrollment.id})
    attempt_id = started.json()["attempt_id"]

    foreign = await client.put(
        f"/api/attempts/{attempt_id}/answers/{question_id}", json={"option_ids": [other_option_ids[0]]}
    )
    assert foreign.status_code == 422
    assert foreign.json()["error"] == "invalid_option"

    locked = await client.post(f"/api/quizzes/{quiz_id}/questions", json={
        "prompt": "Late", "options": [{"text": "a", "is_correct": True}],
    })
    assert locked.status_code == 409
    assert locked.json()["error"] == "quiz_locked"

    await client.post(f"/api/attempts/{attempt_id}/finalize")
    closed = await client.put(
        f"/api/attempts/{attempt_id}/answers/{question_id}", json={"option_ids": [option_ids[0]]}
    )
    assert closed.status_code == 409
    assert closed.json()["error"] == "invalid_state"


async def test_authoring_endpoints(client, course):
    quiz_id, questions = await create_quiz(client, course.modules[0].id)
    question_id, _ = questions[0]

    option = await client.post(f"/api/questions/{question_id}/options", json={"text": "maybe"})
    assert option.status_code == 201
    assert option.json()["is_correct"] is False

    authoring = await client.get(f"/api/quizzes/{quiz_id}/authoring")
    assert authoring.status_code == 200
    assert authoring.json()["has_attempts"] is False
    assert [o["text"] for o in authoring.json()["questions"][0]["options"]] == ["right", "wrong", "maybe"]

    deleted = await client.delete(f"/api/options/{option.json()['id']}")
    assert deleted.json() == {"status": "success"}

    imported = await client.post(f"/api/quizzes/{quiz_id}/questions/import", json={
        "text": "?Capital of France?\n+Paris\n=Rome\n?No key\n=a\n=b",
    })
    assert imported.status_code == 200
    assert imported.json()["created"] == 1
    assert len(imported.json()["errors"]) == 1

    renamed = await client.patch(f"/api/quizzes/{quiz_id}", json={"title": "Renamed"})
    assert renamed.json()["title"] == "Renamed"
    assert renamed.json()["passing_score"] == 50

    listed = await client.get(f"/api/modules/{course.modules[0].id}/quizzes")
    assert [q["id"] for q in listed.json()] == [quiz_id]

    invalid = await client.post("/api/quizzes", json={
        "module_id": course.modules[0].id, "title": "Bad", "passing_score": 150,
    })
    assert invalid.status_code == 422

    removed = await client.delete(f"/api/quizzes/{quiz_id}")
    assert removed.status_code == 200
    gone = await client.get(f"/api/quizzes/{quiz_id}/authoring")
    assert gone.status_code == 404
    assert gone.json()["error"] == "quiz_not_found"
