"""
Skincare tracker API tests.

Drives the FastAPI app in-process with an in-memory store:
1. Auth: register, login, /auth/me, bad credentials and tokens
2. Routine save/read by day, placeholder for empty days, same-day replace
3. Input validation rejects bad steps, status and dates without writing
4. Consistency view: empty history, streak from saved days, idempotence
5. Storage failures come back as a generic 500
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from backend import days
from backend.server import create_app
from backend.storage import MemoryStorage, StorageError

TEST_EMAIL = "routine_test_user@example.com"
TEST_PASSWORD = "testpass123"
TEST_NAME = "Routine Test User"

CLEANSE_STEP = {"id": 1, "name": "Cleanse", "completed": True, "timeOfDay": "morning"}


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def client(storage):
    with TestClient(create_app(storage=storage)) as test_client:
        yield test_client


def register(client, email=TEST_EMAIL):
    response = client.post("/api/auth/register", json={
        "email": email,
        "password": TEST_PASSWORD,
        "name": TEST_NAME,
    })
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def headers(client):
    return register(client)


def save_routine(client, headers, date, steps=None, **extra):
    body = {"date": date, "steps": steps if steps is not None else [CLEANSE_STEP], **extra}
    return client.post("/api/skincare-routine", json=body, headers=headers)


# ==================== AUTH ====================

def test_register_and_me(client):
    headers = register(client)
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == TEST_EMAIL
    assert data["name"] == TEST_NAME
    assert "password" not in data
    assert "createdAt" in data


def test_register_duplicate_email(client):
    register(client)
    response = client.post("/api/auth/register", json={
        "email": TEST_EMAIL, "password": TEST_PASSWORD, "name": TEST_NAME,
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_register_short_password(client):
    response = client.post("/api/auth/register", json={
        "email": TEST_EMAIL, "password": "abc", "name": TEST_NAME,
    })
    assert response.status_code == 400


def test_login(client):
    register(client)
    response = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"

    response = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": "wrongpass"})
    assert response.status_code == 401


def test_missing_token_is_401(client):
    response = client.get("/api/skincare-consistency")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_non_bearer_scheme_is_401(client):
    response = client.get("/api/skincare-consistency", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401


def test_invalid_token_is_401(client):
    response = client.get("/api/skincare-consistency", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


# ==================== CONFIG ====================

def test_unknown_timezone_fails_at_startup(monkeypatch):
    monkeypatch.setattr(days.config, "APP_TIMEZONE", "Mars/Olympus_Mons")
    with pytest.raises(ValueError, match="APP_TIMEZONE"):
        create_app(storage=MemoryStorage())


def test_utc_timezone_accepted(monkeypatch):
    monkeypatch.setattr(days.config, "APP_TIMEZONE", "utc")
    assert create_app(storage=MemoryStorage()) is not None


# ==================== ROUTINE ====================

def test_empty_day_returns_placeholder(client, headers):
    response = client.get("/api/skincare-routine/2025-06-01", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"date": "2025-06-01"}


def test_today_defaults_when_no_date(client, headers):
    response = client.get("/api/skincare-routine", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"date": days.today().isoformat()}


def test_save_then_read(client, headers):
    response = save_routine(client, headers, "2025-06-01", notes="Felt good", skinStatus="better")
    assert response.status_code == 200, response.text
    saved = response.json()
    assert saved["date"] == "2025-06-01"
    assert saved["skinStatus"] == "better"

    response = client.get("/api/skincare-routine/2025-06-01", headers=headers)
    routine = response.json()
    assert routine["steps"][0]["completed"] is True
    assert routine["steps"][0]["timeOfDay"] == "morning"
    assert routine["notes"] == "Felt good"
    assert routine["id"] == saved["id"]


def test_timestamp_is_normalized_to_day(client, headers, monkeypatch):
    monkeypatch.setattr(days.config, "APP_TIMEZONE", "UTC")
    response = save_routine(client, headers, "2025-06-01T21:45:10Z")
    assert response.status_code == 200
    assert response.json()["date"] == "2025-06-01"

    routine = client.get("/api/skincare-routine/2025-06-01", headers=headers).json()
    assert routine["steps"][0]["name"] == "Cleanse"


def test_same_day_save_replaces(client, headers, storage):
    first = save_routine(client, headers, "2025-06-01").json()
    second = save_routine(client, headers, "2025-06-01", steps=[
        {"id": 1, "name": "Cleanse", "completed": False, "timeOfDay": "morning"},
        {"id": 2, "name": "Retinol", "completed": True, "timeOfDay": "evening"},
    ], skinStatus="same").json()

    assert second["id"] == first["id"]
    assert second["createdAt"] == first["createdAt"]
    assert len(storage.routines) == 1

    routine = client.get("/api/skincare-routine/2025-06-01", headers=headers).json()
    assert [s["name"] for s in routine["steps"]] == ["Cleanse", "Retinol"]
    assert routine["skinStatus"] == "same"


def test_new_steps_get_next_id(client, headers):
    response = save_routine(client, headers, "2025-06-01", steps=[
        CLEANSE_STEP,
        {"name": "Sunscreen", "completed": False, "timeOfDay": "morning"},
    ])
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["steps"]] == [1, 2]


def test_routines_are_per_user(client, headers):
    save_routine(client, headers, "2025-06-01")
    other = register(client, email="someone_else@example.com")
    response = client.get("/api/skincare-routine/2025-06-01", headers=other)
    assert response.json() == {"date": "2025-06-01"}


@pytest.mark.parametrize("body", [
    {"date": "2025-06-01", "steps": [{"id": 1, "name": "Cleanse", "completed": True, "timeOfDay": "noon"}]},
    {"date": "2025-06-01", "steps": [CLEANSE_STEP], "skinStatus": "amazing"},
    {"date": "not-a-date", "steps": [CLEANSE_STEP]},
    {"date": "2025-06-01", "steps": [CLEANSE_STEP, CLEANSE_STEP]},
    {"date": "2025-06-01", "steps": [{"id": 1, "name": "", "completed": True, "timeOfDay": "morning"}]},
    {"date": "2025-06-01", "steps": "Cleanse"},
    {"steps": [CLEANSE_STEP]},
])
def test_invalid_routine_rejected_without_write(client, headers, storage, body):
    response = client.post("/api/skincare-routine", json=body, headers=headers)
    assert response.status_code == 400
    assert isinstance(response.json()["detail"], list)
    assert storage.routines == {}


def test_invalid_date_path(client, headers):
    response = client.get("/api/skincare-routine/June-first", headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid date format"


# ==================== CONSISTENCY ====================

def test_consistency_empty(client, headers):
    response = client.get("/api/skincare-consistency", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["streak"] == 0
    assert data["completedDays"] == 0
    assert data["weeklyGoal"] == 0
    assert len(data["lastSevenDays"]) == 7
    assert all(day["completed"] is False for day in data["lastSevenDays"])


def test_consistency_after_saves(client, headers):
    today = days.today()
    for offset in (0, 1, 2):
        save_routine(client, headers, (today - timedelta(days=offset)).isoformat())

    data = client.get("/api/skincare-consistency", headers=headers).json()
    assert data["streak"] == 3
    assert data["completedDays"] == 3
    assert data["weeklyGoal"] == 43
    assert [d["completed"] for d in data["lastSevenDays"]] == [False] * 4 + [True] * 3


def test_consistency_yesterday_only(client, headers):
    today = days.today()
    save_routine(client, headers, (today - timedelta(days=1)).isoformat())
    save_routine(client, headers, (today - timedelta(days=3)).isoformat())

    data = client.get("/api/skincare-consistency", headers=headers).json()
    assert data["streak"] == 1
    assert data["completedDays"] == 2


def test_consistency_idempotent(client, headers):
    save_routine(client, headers, days.today().isoformat())
    first = client.get("/api/skincare-consistency", headers=headers).json()
    second = client.get("/api/skincare-consistency", headers=headers).json()
    assert first == second


# ==================== FAILURES ====================

class BrokenHistoryStorage(MemoryStorage):
    async def get_history(self, user_id, since_day):
        raise StorageError("get_history")


def test_storage_failure_is_generic_500():
    with TestClient(create_app(storage=BrokenHistoryStorage())) as client:
        headers = register(client)
        response = client.get("/api/skincare-consistency", headers=headers)
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}


def test_health(client):
    assert client.get("/api/health").json() == {"status": "healthy"}
