"""
Tests for the API endpoints.

This module tests the FastAPI endpoints for login, token rotation, role
switching, password reset and session management provided by the
audit_auth.api module.
"""
from fastapi import status

from tests.conftest import NEW_PASSWORD, PASSWORD


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "ok"


async def test_login_success(client, internal_user):
    """Test successful login."""
    response = await client.post("/auth/login", json={"username": "juanp", "password": PASSWORD})

    # Verify response
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["currentRole"] == "administrador"
    assert data["tokens"]["tokenType"] == "bearer"
    assert data["tokens"]["expiresIn"] == 900
    assert {"accessToken", "refreshToken"} <= set(data["tokens"])
    assert data["user"]["roles"] == ["administrador", "auditor"]
    assert data["user"]["fullName"] == "Juan Pérez"
    assert data["sessionId"]
    assert "users:create" in data["permissions"]
    assert data["menus"][0]["id"] == "dashboard"


async def test_login_with_role(client, internal_user):
    response = await client.post(
        "/auth/login", json={"username": "juanp", "password": PASSWORD, "role": "auditor"}
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["currentRole"] == "auditor"


async def test_login_external_user(client, external_user):
    response = await client.post("/auth/login", json={"username": "ana@acme.com", "password": PASSWORD})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["currentRole"] == "cliente"
    assert data["user"]["organizationId"] == "org-acme"
    assert data["user"]["type"] == "EXTERNAL"


async def test_login_invalid_credentials(client, internal_user):
    """Test login with a wrong password."""
    response = await client.post("/auth/login", json={"username": "juanp", "password": "wrong"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid credentials. Remaining attempts: 2"
    assert response.headers["www-authenticate"] == "Bearer"


async def test_login_locked_account(client, internal_user):
    """Test the lockout is reported with 403 once the account is locked."""
    for _ in range(3):
        await client.post("/auth/login", json={"username": "juanp", "password": "wrong"})

    response = await client.post("/auth/login", json={"username": "juanp", "password": PASSWORD})

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert "Try again in" in response.json()["detail"]


async def test_login_inactive_account(client, inactive_user):
    response = await client.post("/auth/login", json={"username": "inactivo", "password": PASSWORD})

    assert response.status_code == status.HTTP_403_FORBIDDEN


async def test_login_missing_fields(client):
    response = await client.post("/auth/login", json={"username": "juanp"})

    assert response.status_code == 422


async def test_login_rate_limited(client, internal_user):
    """Test the login endpoint stops answering after too many requests."""
    codes = [
        (await client.post("/auth/login", json={"username": "nobody", "password": "x"})).status_code
        for _ in range(11)
    ]

    assert codes[:10] == [status.HTTP_401_UNAUTHORIZED] * 10
    assert codes[10] == status.HTTP_429_TOO_MANY_REQUESTS


async def test_refresh(client, logged_in):
    """Test token rotation through the API."""
    old_refresh = logged_in["tokens"]["refreshToken"]

    response = await client.post("/auth/refresh", json={"refreshToken": old_refresh})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["refreshToken"] != old_refresh

    # Verify the old refresh token is rejected
    replay = await client.post("/auth/refresh", json={"refreshToken": old_refresh})
    assert replay.status_code == status.HTTP_401_UNAUTHORIZED
    assert replay.json()["detail"] == "Invalid or expired session"


async def test_refresh_invalid_token(client):
    response = await client.post("/auth/refresh", json={"refreshToken": "invalid-token"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid or expired token"


async def test_me(client, logged_in, auth_header):
    """Test the current user endpoint."""
    response = await client.get("/auth/me", headers=auth_header)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["user"]["username"] == "juanp"
    assert data["user"]["currentRole"] == "administrador"
    assert data["user"]["sessionId"] == logged_in["sessionId"]
    assert data["permissions"] == logged_in["permissions"]


async def test_me_without_token(client):
    response = await client.get("/auth/me")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Not authenticated"


async def test_me_with_invalid_token(client):
    response = await client.get("/auth/me", headers={"Authorization": "Bearer invalid-token"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid or expired token"


async def test_me_after_deactivation(client, logged_in, auth_header, accounts, internal_user):
    """Test a still unexpired token is refused once its account is deactivated."""
    account = await accounts.find_by_id(internal_user.id)
    account.deactivate()
    await accounts.save(account)

    response = await client.get("/auth/me", headers=auth_header)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "User not authorized"


async def test_switch_role(client, logged_in, auth_header):
    """Test switching the session role."""
    response = await client.post("/auth/switch-role", json={"role": "auditor"}, headers=auth_header)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["currentRole"] == "auditor"
    assert data["sessionId"] == logged_in["sessionId"]
    assert "users" not in [menu["id"] for menu in data["menus"]]

    # Verify the new access token carries the new role
    headers = {"Authorization": f"Bearer {data['tokens']['accessToken']}"}
    me = await client.get("/auth/me", headers=headers)
    assert me.json()["user"]["currentRole"] == "auditor"


async def test_switch_role_not_assigned(client, logged_in, auth_header):
    response = await client.post("/auth/switch-role", json={"role": "gerente"}, headers=auth_header)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


async def test_switch_role_external_user(client, external_user):
    """Test external users get 400 on role switch."""
    login = await client.post("/auth/login", json={"username": "acme_ana", "password": PASSWORD})
    headers = {"Authorization": f"Bearer {login.json()['tokens']['accessToken']}"}

    response = await client.post("/auth/switch-role", json={"role": "auditor"}, headers=headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


async def test_validate_token(client, logged_in):
    """Test validating a good and a bad token."""
    response = await client.post("/auth/validate", json={"token": logged_in["tokens"]["accessToken"]})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["valid"] is True
    assert data["claims"]["roles"] == ["administrador", "auditor"]

    response = await client.post("/auth/validate", json={"token": "invalid-token"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"valid": False, "claims": None}


async def test_logout(client, logged_in, auth_header):
    """Test logout closes the session behind the refresh token."""
    refresh_token = logged_in["tokens"]["refreshToken"]

    response = await client.post("/auth/logout", json={"refreshToken": refresh_token}, headers=auth_header)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Logged out successfully"
    refresh = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
    assert refresh.status_code == status.HTTP_401_UNAUTHORIZED


async def test_logout_all(client, logged_in, auth_header):
    await client.post("/auth/login", json={"username": "juanp", "password": PASSWORD})

    response = await client.post("/auth/logout-all", headers=auth_header)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["details"] == {"closedSessions": 2}


async def test_sessions(client, logged_in, auth_header):
    """Test listing and closing sessions."""
    other = await client.post("/auth/login", json={"username": "juanp", "password": PASSWORD})
    other_id = other.json()["sessionId"]

    response = await client.get("/auth/sessions", headers=auth_header)
    assert response.status_code == status.HTTP_200_OK
    listed = {s["id"]: s["isCurrent"] for s in response.json()}
    assert listed == {logged_in["sessionId"]: True, other_id: False}

    response = await client.delete(f"/auth/sessions/{other_id}", headers=auth_header)
    assert response.status_code == status.HTTP_200_OK

    response = await client.get("/auth/sessions", headers=auth_header)
    assert [s["id"] for s in response.json()] == [logged_in["sessionId"]]


async def test_delete_unknown_session(client, logged_in, auth_header):
    response = await client.delete("/auth/sessions/missing", headers=auth_header)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Session not found"


async def test_password_reset_flow(client, internal_user, email_sender):
    """Test forgot and reset password end to end."""
    response = await client.post("/auth/forgot-password", json={"email": "juan.perez@auditoria.com"})
    assert response.status_code == status.HTTP_200_OK

    response = await client.post(
        "/auth/reset-password",
        json={"token": email_sender.last_reset_token, "newPassword": NEW_PASSWORD},
    )
    assert response.status_code == status.HTTP_200_OK

    login = await client.post("/auth/login", json={"username": "juanp", "password": NEW_PASSWORD})
    assert login.status_code == status.HTTP_200_OK


async def test_forgot_password_unknown_email(client, email_sender):
    """Test the answer does not reveal whether the account exists."""
    response = await client.post("/auth/forgot-password", json={"email": "nobody@auditoria.com"})

    assert response.status_code == status.HTTP_200_OK
    assert email_sender.reset_emails == []


async def test_reset_password_weak(client, internal_user, email_sender):
    await client.post("/auth/forgot-password", json={"email": "juan.perez@auditoria.com"})

    response = await client.post(
        "/auth/reset-password",
        json={"token": email_sender.last_reset_token, "newPassword": "weak"},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST


async def test_reset_password_bad_token(client):
    response = await client.post("/auth/reset-password", json={"token": "bogus", "newPassword": NEW_PASSWORD})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Invalid or expired token"


async def test_two_factor_flow(client, auth_header, email_sender):
    """Test sending and verifying a two-factor code."""
    response = await client.post("/auth/2fa/send", headers=auth_header)
    assert response.status_code == status.HTTP_200_OK

    response = await client.post("/auth/2fa/verify", json={"code": email_sender.last_code}, headers=auth_header)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["details"] == {"verified": True}

    # Verify the code cannot be reused
    response = await client.post("/auth/2fa/verify", json={"code": email_sender.last_code}, headers=auth_header)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
