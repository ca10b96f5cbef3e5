"""Tests for the REST API: auth, reminder routes and the test e-mail endpoint."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import api_server
import crud
import database
import security
from conftest import NOW, FailingChannel, RecordingChannel
from dispatcher import NotificationDispatcher
from exceptions import StoreUnavailable


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def client(session_factory, channel):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    api_server.app.dependency_overrides[database.get_db] = _get_db
    api_server.app.dependency_overrides[api_server.get_dispatcher] = lambda: NotificationDispatcher(channel)
    yield TestClient(api_server.app)
    api_server.app.dependency_overrides.clear()


def signup_and_login(client, name="Asha Rao", email="asha@example.com", password="s3cret-pass"):
    response = client.post("/api/auth/signup", json={"fullName": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_signup_and_login(client):
    response = client.post(
        "/api/auth/signup",
        json={"fullName": "Asha Rao", "email": "asha@example.com", "password": "s3cret-pass"}
    )
    assert response.status_code == 201
    user_id = response.json()["userId"]

    duplicate = client.post(
        "/api/auth/signup",
        json={"fullName": "Asha Again", "email": "asha@example.com", "password": "other-pass"}
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Email already registered"

    response = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "s3cret-pass"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"] == {"user_id": user_id, "full_name": "Asha Rao", "email": "asha@example.com"}
    assert security.decode_access_token(body["token"]) == user_id

    wrong = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"message": "Invalid email or password"}


@pytest.mark.parametrize("body", [
    {"email": "asha@example.com", "password": "s3cret-pass"},
    {"fullName": "Asha Rao", "email": "", "password": "s3cret-pass"},
    {},
])
def test_signup_requires_all_fields(client, channel, body):
    response = client.post("/api/auth/signup", json=body)

    assert response.status_code == 400
    assert response.json() == {"message": "All fields are required"}
    assert channel.sent == []


def test_login_requires_email_and_password(client):
    response = client.post("/api/auth/login", json={"email": "asha@example.com"})

    assert response.status_code == 400
    assert response.json() == {"message": "Email and password required"}


def test_signup_sends_welcome_email(client, channel):
    signup_and_login(client)

    assert len(channel.sent) == 1
    address, name, notification = channel.sent[0]
    assert (address, name) == ("asha@example.com", "Asha Rao")
    assert notification.subject == "🎉 Welcome to Necessity Reminder!"
    assert "Asha Rao" in notification.html
    assert notification.reminder_id is None


def test_signup_succeeds_when_welcome_email_fails(client):
    failing = FailingChannel()
    api_server.app.dependency_overrides[api_server.get_dispatcher] = lambda: NotificationDispatcher(failing)

    headers = signup_and_login(client)

    assert failing.attempts == ["Welcome"]
    assert client.get("/api/reminders", headers=headers).status_code == 200


def test_store_outage_maps_to_503(client, monkeypatch):
    headers = signup_and_login(client)

    def unavailable(db, owner_id):
        raise StoreUnavailable("Database unavailable: disk I/O error")

    monkeypatch.setattr(crud, "list_reminders_for_owner", unavailable)

    response = client.get("/api/reminders", headers=headers)

    assert response.status_code == 503
    assert response.json() == {"message": "Database unavailable, try again later"}


def test_reminder_routes_require_token(client):
    missing = client.get("/api/reminders")
    assert missing.status_code == 401
    assert missing.json() == {"message": "Access token required"}

    response = client.get("/api/reminders", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 403
    assert response.json() == {"message": "Invalid or expired token"}

    expired = security.create_access_token(1, "asha@example.com", expires_delta=timedelta(seconds=-1))
    response = client.get("/api/reminders", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 403


def test_create_list_complete_delete(client):
    headers = signup_and_login(client)

    later = client.post("/api/reminders", headers=headers, json={
        "title": "Team meeting", "category": "meeting", "reminderTime": "2025-11-07T10:00:00Z"
    })
    sooner = client.post("/api/reminders", headers=headers, json={
        "title": "Vitamins", "category": "medicine", "reminderTime": "2025-11-06T15:00:00+05:30",
        "notes": "After breakfast"
    })
    assert later.status_code == 201
    assert sooner.status_code == 201
    sooner_id = sooner.json()["reminderId"]

    reminders = client.get("/api/reminders", headers=headers).json()
    assert [r["title"] for r in reminders] == ["Vitamins", "Team meeting"]
    first = reminders[0]
    assert first["category"] == "medicine"
    assert first["notes"] == "After breakfast"
    assert first["reminder_time"].startswith("2025-11-06T09:30:00")
    assert first["is_notified"] is False and first["is_completed"] is False

    response = client.patch(f"/api/reminders/{sooner_id}/complete", headers=headers)
    assert response.status_code == 200
    # completing again is still a success
    assert client.patch(f"/api/reminders/{sooner_id}/complete", headers=headers).status_code == 200

    completed = client.get("/api/reminders", headers=headers).json()[0]
    assert completed["is_completed"] is True and completed["is_notified"] is True

    assert client.delete(f"/api/reminders/{sooner_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/reminders/{sooner_id}", headers=headers).status_code == 404
    assert len(client.get("/api/reminders", headers=headers).json()) == 1


def test_reminders_are_private(client):
    owner = signup_and_login(client)
    intruder = signup_and_login(client, "Ben Ito", "ben@example.com")

    created = client.post("/api/reminders", headers=owner, json={
        "title": "Gym", "category": "workout", "reminderTime": (NOW + timedelta(days=1)).isoformat()
    })
    reminder_id = created.json()["reminderId"]

    assert client.get("/api/reminders", headers=intruder).json() == []
    assert client.patch(f"/api/reminders/{reminder_id}/complete", headers=intruder).status_code == 404
    assert client.delete(f"/api/reminders/{reminder_id}", headers=intruder).status_code == 404

    mine = client.get("/api/reminders", headers=owner).json()
    assert mine[0]["is_completed"] is False


@pytest.mark.parametrize("body, message", [
    ({"category": "other", "reminderTime": "2025-11-07T10:00:00Z"}, "Title, category, and time are required"),
    ({"title": "", "category": "other", "reminderTime": "2025-11-07T10:00:00Z"}, "Title, category, and time are required"),
    ({"title": "Walk", "category": "other"}, "Title, category, and time are required"),
    ({"title": "Walk", "category": "chores", "reminderTime": "2025-11-07T10:00:00Z"}, "Invalid category"),
    ({"title": "Walk", "category": "other", "reminderTime": "next tuesday"}, "Invalid reminderTime"),
    ({"title": "   ", "category": "other", "reminderTime": "2025-11-07T10:00:00Z"}, "Title is required"),
])
def test_create_reminder_validation(client, body, message):
    headers = signup_and_login(client)

    response = client.post("/api/reminders", headers=headers, json=body)

    assert response.status_code == 400
    assert response.json()["message"].startswith(message)
    assert client.get("/api/reminders", headers=headers).json() == []


def test_test_email_goes_to_logged_in_user(client, channel):
    headers = signup_and_login(client)

    response = client.post("/api/test-email", headers=headers)

    assert response.status_code == 200
    address, name, notification = channel.sent[-1]
    assert (address, name) == ("asha@example.com", "Asha Rao")
    assert notification.title == "Test Reminder"
    assert notification.category == "other"


def test_test_email_failure(client):
    headers = signup_and_login(client)
    api_server.app.dependency_overrides[api_server.get_dispatcher] = (
        lambda: NotificationDispatcher(FailingChannel())
    )

    response = client.post("/api/test-email", headers=headers)

    assert response.status_code == 500


def test_health(client):
    body = client.get("/api/health").json()

    assert body["status"] == "OK"
    assert "deliveryChannel" in body
