"""
Tests for authentication endpoints.
"""
from jose import jwt

from socialnet.auth import create_refresh_token, token_response, verify_token
from socialnet.models import LoginHistory, User

IDENTITY_SECRET = "test-identity-secret"


def identity_token(sub, email, name=None):
    claims = {"sub": sub, "email": email}
    if name:
        claims["name"] = name
    return jwt.encode(claims, IDENTITY_SECRET, algorithm="HS256")


def walk(node):
    """Yield every (key, value) pair of a JSON document, at any depth."""
    if isinstance(node, dict):
        for key, value in node.items():
            yield key, value
            yield from walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from walk(item)


class TestRegistration:
    """Test account registration."""

    def test_register_user(self, client, db):
        """Registration returns the user and a token pair."""
        response = client.post(
            "/api/v1/auth/register",
            json={
                "name": "New User",
                "user_name": "new_user",
                "email": "NewUser@example.com",
                "phone": "+15551234567",
                "password": "securepassword123",
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "success"
        data = body["data"]
        assert data["user"]["email"] == "newuser@example.com"
        assert data["user"]["role"] == "USER"
        assert data["user"]["registered_from"]["location"]["country"] == "Local"
        assert data["token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"

        user = db.query(User).filter(User.email == "newuser@example.com").one()
        assert user.rtc_uid is not None
        history = db.query(LoginHistory).filter(LoginHistory.user_id == user.id).all()
        assert [h.event for h in history] == ["register"]

    def test_password_never_returned(self, client, db):
        """No read view exposes the password or its hash."""
        password = "securepassword123"
        registered = client.post(
            "/api/v1/auth/register",
            json={"name": "Secret Keeper", "email": "keeper@example.com", "password": password},
        )
        assert registered.status_code == 201
        data = registered.json()["data"]
        headers = {"Authorization": f"Bearer {data['token']}"}
        user = db.query(User).filter(User.email == "keeper@example.com").one()

        responses = [
            registered,
            client.get("/api/v1/auth/me", headers=headers),
            client.get("/api/v1/users/me", headers=headers),
            client.get(f"/api/v1/users/profile/{user.id}"),
        ]
        for response in responses:
            assert response.status_code in (200, 201)
            leaked = list(walk(response.json()))
            assert not any(key in ("password", "hashed_password") for key, _ in leaked)
            assert not any(value in (password, user.hashed_password) for _, value in leaked)

    def test_register_duplicate_email(self, client, test_user):
        """Registration with an existing email is a conflict."""
        response = client.post(
            "/api/v1/auth/register",
            json={"name": "Another", "email": "test@example.com", "password": "anotherpassword"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["error_code"] == "CONFLICT"
        assert "already exists" in body["message"]

    def test_register_duplicate_phone(self, client, test_user):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Another",
                "email": "fresh@example.com",
                "phone": test_user.phone,
                "password": "anotherpassword",
            },
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "CONFLICT"

    def test_register_validation_errors(self, client):
        """Invalid bodies answer 400 with per-field errors."""
        response = client.post(
            "/api/v1/auth/register",
            json={"name": "", "email": "not-an-email", "password": "123"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        fields = {e["field"] for e in body["errors"]}
        assert {"name", "email", "password"} <= fields

    def test_register_admin_requires_secret(self, client):
        response = client.post(
            "/api/v1/auth/register-admin",
            json={"name": "Boss", "email": "boss@example.com", "password": "bosspassword", "secret": "wrong"},
        )
        assert response.status_code == 403

    def test_register_admin(self, client):
        response = client.post(
            "/api/v1/auth/register-admin",
            json={
                "name": "Boss",
                "email": "boss@example.com",
                "password": "bosspassword",
                "secret": "test-admin-secret",
            },
        )
        assert response.status_code == 201
        assert response.json()["data"]["user"]["role"] == "ADMIN"


class TestLogin:
    """Test login and token endpoints."""

    def test_login_success(self, client, test_user, db):
        """Login returns tokens and records history."""
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "test@example.com", "password": "testpassword123"},
            headers={"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token"]
        assert data["refresh_token"]
        assert data["user"]["id"] == test_user.id

        history = db.query(LoginHistory).filter(LoginHistory.user_id == test_user.id).all()
        assert len(history) == 1
        assert history[0].event == "login"
        assert history[0].device["os"] == "iOS"

    def test_login_wrong_password(self, client, test_user):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "test@example.com", "password": "wrongpassword"},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials or account deactivated"

    def test_login_nonexistent_user(self, client):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@example.com", "password": "anypassword"},
        )
        assert response.status_code == 401

    def test_login_deactivated_user(self, client, test_user, db):
        """Deactivated accounts get the same answer as a bad password."""
        test_user.is_active = False
        db.commit()
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "test@example.com", "password": "testpassword123"},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials or account deactivated"

    def test_login_form(self, client, test_user):
        """OAuth2 form login for the interactive docs."""
        response = client.post(
            "/api/v1/auth/login/form",
            data={"username": "test@example.com", "password": "testpassword123"},
        )
        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_get_current_user(self, client, test_user, auth_headers):
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["user"]["email"] == "test@example.com"

    def test_me_requires_token(self, client):
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.json()["message"] == "Not authorized to access this route"

    def test_invalid_token(self, client):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer invalid"})
        assert response.status_code == 401

    def test_deactivated_token_rejected(self, client, test_user, auth_headers, db):
        test_user.is_active = False
        db.commit()
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 401
        assert response.json()["message"] == "Your account has been deactivated"

    def test_refresh_token(self, client, test_user):
        refresh = create_refresh_token({"sub": str(test_user.id)})
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
        assert response.status_code == 200
        data = response.json()["data"]
        assert verify_token(data["token"], "access")["sub"] == str(test_user.id)

    def test_access_token_cannot_refresh(self, client, test_user):
        access = token_response(test_user)["token"]
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert response.status_code == 401

    def test_update_profile(self, client, auth_headers):
        response = client.put(
            "/api/v1/auth/update-profile",
            json={"name": "Renamed", "avatar": "https://cdn.example.com/a.png"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        user = response.json()["data"]["user"]
        assert user["name"] == "Renamed"
        assert user["avatar"] == "https://cdn.example.com/a.png"

    def test_update_profile_phone_taken(self, client, auth_headers, other_user):
        response = client.put(
            "/api/v1/auth/update-profile",
            json={"phone": other_user.phone},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "CONFLICT"

    def test_logout(self, client, auth_headers):
        response = client.post("/api/v1/auth/logout", headers=auth_headers)
        assert response.status_code == 200


class TestExternalIdentity:
    """Test sign-in with an external identity token."""

    def test_creates_account(self, client, db):
        response = client.post(
            "/api/v1/auth/external",
            json={"id_token": identity_token("ext-1", "ext@example.com", "Ext User")},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["created"] is True
        assert data["user"]["name"] == "Ext User"
        user = db.query(User).filter(User.email == "ext@example.com").one()
        assert user.external_subject == "ext-1"

    def test_second_sign_in_reuses_account(self, client, db):
        token = identity_token("ext-1", "ext@example.com")
        first = client.post("/api/v1/auth/external", json={"id_token": token})
        second = client.post("/api/v1/auth/external", json={"id_token": token})
        assert first.json()["data"]["user"]["id"] == second.json()["data"]["user"]["id"]
        assert second.json()["data"]["created"] is False
        assert db.query(User).filter(User.email == "ext@example.com").count() == 1

    def test_links_existing_account(self, client, test_user, db):
        response = client.post(
            "/api/v1/auth/external",
            json={"id_token": identity_token("ext-9", "test@example.com")},
        )
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == test_user.id
        db.refresh(test_user)
        assert test_user.external_subject == "ext-9"

    def test_different_subject_conflicts(self, client, test_user, db):
        test_user.external_subject = "ext-original"
        db.commit()
        response = client.post(
            "/api/v1/auth/external",
            json={"id_token": identity_token("ext-other", "test@example.com")},
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "CONFLICT"

    def test_deactivated_account_refused(self, client, test_user, db):
        test_user.is_active = False
        db.commit()
        response = client.post(
            "/api/v1/auth/external",
            json={"id_token": identity_token("ext-2", "test@example.com")},
        )
        assert response.status_code == 401

    def test_bad_signature(self, client):
        token = jwt.encode({"sub": "x", "email": "x@example.com"}, "wrong-secret", algorithm="HS256")
        response = client.post("/api/v1/auth/external", json={"id_token": token})
        assert response.status_code == 401
