"""
Tests for authentication endpoints: registration and login.
"""

import pytest
from httpx import AsyncClient

from ticketing.core.errors import Unauthorized
from ticketing.models.user import ROLE_ADMIN, ROLE_ATTENDEE, ROLE_ORGANIZER, User
from ticketing.services.auth_service import can_manage_event, ensure_can_create_events, ensure_can_manage_event


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    """Successful registration returns user data with the default role."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "new@example.com",
        "username": "newuser",
        "password": "securepassword123",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["username"] == "newuser"
    assert data["role"] == "attendee"
    assert "hashed_password" not in data  # Never expose password hash


@pytest.mark.asyncio
async def test_register_organizer(client: AsyncClient):
    response = await client.post("/api/v1/auth/register", json={
        "email": "org@example.com",
        "username": "orguser",
        "password": "securepassword123",
        "role": "organizer",
    })
    assert response.status_code == 201
    assert response.json()["role"] == "organizer"


@pytest.mark.asyncio
async def test_register_admin_rejected(client: AsyncClient):
    """Admins cannot self-register."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "root@example.com",
        "username": "rootuser",
        "password": "securepassword123",
        "role": "admin",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, test_user):
    """Duplicate email returns 409."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "testuser@example.com",
        "username": "different",
        "password": "securepassword123",
    })
    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_register_duplicate_username(client: AsyncClient, test_user):
    """Duplicate username returns 409."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "different@example.com",
        "username": "testuser",
        "password": "securepassword123",
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    """Password under 8 chars returns 422."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "weak@example.com",
        "username": "weakuser",
        "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, test_user):
    """Valid credentials return JWT token."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "testuser@example.com",
        "password": "testpassword123",
    })
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"

    bookings = await client.get(
        "/api/v1/bookings/",
        headers={"Authorization": f"Bearer {data['access_token']}"},
    )
    assert bookings.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, test_user):
    """Wrong password returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "testuser@example.com",
        "password": "wrongpassword",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_nonexistent_email(client: AsyncClient):
    """Non-existent email returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "nobody@example.com",
        "password": "anypassword123",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get("/api/v1/bookings/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_email_is_case_insensitive(client: AsyncClient, test_user):
    response = await client.post("/api/v1/auth/register", json={
        "email": "TestUser@Example.com",
        "username": "shouty",
        "password": "securepassword123",
    })
    assert response.status_code == 409

    response = await client.post("/api/v1/auth/login", json={
        "email": "TESTUSER@example.com",
        "password": "testpassword123",
    })
    assert response.status_code == 200


def test_event_management_rules():
    organizer = User(id=1, role=ROLE_ORGANIZER)
    admin = User(id=2, role=ROLE_ADMIN)
    attendee = User(id=3, role=ROLE_ATTENDEE)

    assert can_manage_event(organizer, 1)
    assert not can_manage_event(organizer, 99)
    assert can_manage_event(admin, 99)
    assert not can_manage_event(attendee, 1)
    assert not can_manage_event(None, 1)

    ensure_can_create_events(organizer)
    with pytest.raises(Unauthorized):
        ensure_can_create_events(attendee)
    with pytest.raises(Unauthorized):
        ensure_can_manage_event(organizer, 99, "edit this event")
