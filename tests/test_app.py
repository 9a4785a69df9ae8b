import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import app as app_module
import database
from config import SESSION_MAX_AGE
from tests.conftest import FakeNotifier, SESSION_CONFIG

STUDENT = "Abduraxmatov Abdulaziz"


@pytest.fixture
def records():
    return []


@pytest.fixture
def client(monkeypatch, records):
    monkeypatch.setattr(database, "init_db", lambda: None)
    monkeypatch.setattr(database, "get_results", lambda student=None, limit=50: list(records))
    app_module.app.state.exam_config = dict(SESSION_CONFIG, variant="ielts_mini")
    app_module.app.state.notifier = FakeNotifier()
    app_module.app.state.result_sink = records.append
    with TestClient(app_module.app) as test_client:
        yield test_client
    app_module.CONTEXTS.clear()


def login(client):
    response = client.post("/login", data={"username": f"  {STUDENT} "})
    assert response.status_code == 200
    return response


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_wrong_username_is_rejected(client):
    response = client.post("/login", data={"username": "someone else"})
    assert response.status_code == 401
    assert response.json() == {"error": "username_incorrect"}


def test_test_routes_require_login(client):
    assert client.get("/test/state").status_code == 401
    assert client.post("/test/start").status_code == 401
    assert client.post("/test/next", json={}).status_code == 401


def test_state_before_start_is_a_preview(client):
    login(client)
    state = client.get("/test/state").json()
    assert state["status"] == "not_started"
    assert state["section"] == "reading"
    assert state["time_remaining"] == 60
    assert state["time_display"] == "1:00"


def test_invalid_answer(client):
    login(client)
    client.post("/test/start")
    response = client.post("/test/answer", json={"section": "reading", "index": 99, "value": "x"})
    assert response.status_code == 400
    response = client.post("/test/answer", json={"section": "essay", "index": 0, "value": "x"})
    assert response.status_code == 400


def test_answer_for_closed_section(client):
    login(client)
    client.post("/test/start")
    client.post("/test/next", json={"section": "reading", "part": 1})
    response = client.post("/test/answer", json={"section": "reading", "index": 0, "value": "x"})
    assert response.status_code == 409


def test_full_mini_test(client, records):
    login(client)
    assert client.get("/results/history").json() == {"results": []}
    started = client.post("/test/start").json()
    assert started["started"] is True
    assert started["status"] == "active"

    for index, value in enumerate(["temperature", "oxygen", "carbon", "water", "energy"]):
        assert client.post("/test/answer", json={"section": "reading", "index": index, "value": value}).json()["success"]

    moved = client.post("/test/next", json={"section": "reading", "part": 1}).json()
    assert moved["moved"] is True
    assert moved["section"] == "listening"

    repeat = client.post("/test/next", json={"section": "reading", "part": 1}).json()
    assert repeat["moved"] is False
    assert repeat["section"] == "listening"

    client.post("/test/next", json={"section": "listening", "part": 1})
    client.post("/test/answer", json={"section": "writing", "index": 0, "value": "word " * 250})
    client.post("/test/next", json={"section": "writing", "part": 1})
    client.post("/test/next", json={"section": "speaking", "part": 1})

    state = client.get("/test/state").json()
    for _ in range(50):
        if state["status"] == "complete":
            break
        time.sleep(0.02)
        state = client.get("/test/state").json()

    assert state["status"] == "complete"
    assert state["error"] == ""
    assert state["result"]["readingBand"] == 9.0
    assert state["result"]["overallBand"] == 4.5
    assert len(records) == 1

    # login flag is cleared once the test is complete
    assert client.post("/test/start").status_code == 401
    assert client.get("/results/history").status_code == 401


def test_logout(client):
    login(client)
    client.post("/test/start")
    assert client.post("/logout").json() == {"success": True}
    assert client.get("/test/state").status_code == 401


def test_variants(client):
    data = client.get("/variants").json()
    assert data["active"] == "ielts_mini"
    assert set(data["variants"]) == {"ielts_academic", "ielts_mini"}


def test_results_history(client, records):
    assert client.get("/results/history").status_code == 401

    records.append({"student": STUDENT, "readingScore": 5})
    login(client)
    history = client.get("/results/history").json()["results"]
    assert history[0]["readingScore"] == 5


def test_expired_logins_are_dropped(client):
    login(client)
    client.post("/test/start")
    (stale,) = app_module.CONTEXTS.values()
    stale.created_at -= timedelta(seconds=SESSION_MAX_AGE + 1)
    timer = stale.session.timer

    login(client)

    assert stale.token not in app_module.CONTEXTS
    assert len(app_module.CONTEXTS) == 1
    assert not stale.authenticated
    assert timer.cancelled
    assert client.get("/test/state").json()["status"] == "not_started"
