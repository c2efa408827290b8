"""
Tests for the auth API: register, login, logout, refresh.
"""
from uuid import uuid4

from fastapi.testclient import TestClient

from app.main import app
from app.core.security import create_access_token


PASSWORD = "SecurePass123!"


def _email() -> str:
    return f"parent-{uuid4().hex}@example.com"


class TestAuthRegister:
    """Parent registration."""

    def test_register_success(self):
        """A new parent account is created."""
        client = TestClient(app)
        email = _email()

        response = client.post(
            "/auth/register",
            json={"email": email, "password": PASSWORD, "name": "Mrs Claus"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == email
        assert data["name"] == "Mrs Claus"
        assert data["is_admin"] is False
        assert "id" in data

    def test_register_creates_parent_profile(self):
        """A registered user can manage children right away."""
        client = TestClient(app)
        client.post("/auth/register", json={"email": _email(), "password": PASSWORD, "name": "Mrs Claus"})

        response = client.get("/children")

        assert response.status_code == 200
        assert response.json() == []

    def test_register_duplicate_email(self):
        """The same email cannot register twice."""
        client = TestClient(app)
        email = _email()

        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "User One"})
        response = client.post(
            "/auth/register",
            json={"email": email, "password": "AnotherPass456!", "name": "User Two"},
        )

        assert response.status_code == 400

    def test_register_invalid_email(self):
        client = TestClient(app)

        response = client.post(
            "/auth/register",
            json={"email": "not-an-email", "password": PASSWORD, "name": "Test User"},
        )

        assert response.status_code == 422

    def test_register_short_password(self):
        client = TestClient(app)

        response = client.post(
            "/auth/register",
            json={"email": _email(), "password": "short", "name": "Test User"},
        )

        assert response.status_code == 422

    def test_register_weak_password(self):
        """Passwords need upper case, lower case and a digit."""
        client = TestClient(app)

        response = client.post(
            "/auth/register",
            json={"email": _email(), "password": "alllowercase", "name": "Test User"},
        )

        assert response.status_code == 422

    def test_register_missing_fields(self):
        client = TestClient(app)

        response = client.post("/auth/register", json={"email": _email()})

        assert response.status_code == 422


class TestAuthLogin:
    """Logging in."""

    def test_login_success(self):
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})

        response = client.post("/auth/login", json={"email": email, "password": PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == email
        assert "id" in data

    def test_login_wrong_password(self):
        """Wrong password gives 400 with a readable message."""
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})

        response = client.post("/auth/login", json={"email": email, "password": "WrongPass456!"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid email or password"

    def test_login_nonexistent_user(self):
        client = TestClient(app)

        response = client.post("/auth/login", json={"email": _email(), "password": "AnyPass123!"})

        assert response.status_code == 400

    def test_login_sets_cookies(self):
        """Login sets httponly token cookies."""
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})

        response = client.post("/auth/login", json={"email": email, "password": PASSWORD})

        set_cookie = response.headers.get("set-cookie", "")
        assert "access_token=" in set_cookie
        assert "refresh_token=" in set_cookie
        assert "HttpOnly" in set_cookie


class TestAuthLogout:
    def test_logout_success(self):
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})
        client.post("/auth/login", json={"email": email, "password": PASSWORD})

        response = client.post("/auth/logout")

        assert response.status_code == 204
        assert "access_token=" in response.headers.get("set-cookie", "")

    def test_logout_requires_session(self):
        client = TestClient(app)

        response = client.post("/auth/logout")

        assert response.status_code == 401


class TestAuthMe:
    """Current user lookups."""

    def test_me_authenticated(self):
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})

        response = client.get("/auth/me")

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == email
        assert data["name"] == "Test User"

    def test_me_unauthenticated(self):
        client = TestClient(app)

        response = client.get("/auth/me")

        assert response.status_code == 401

    def test_me_with_bearer_token(self):
        """Bearer tokens work as well as cookies."""
        client = TestClient(app)
        email = _email()
        register_response = client.post(
            "/auth/register",
            json={"email": email, "password": PASSWORD, "name": "Test User"},
        )
        token = create_access_token(str(register_response.json()["id"]))

        response = TestClient(app).get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["email"] == email

    def test_me_for_deleted_user(self):
        client = TestClient(app)

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {create_access_token('999999')}"})

        assert response.status_code == 401


class TestAuthRefresh:
    """Token refresh."""

    def test_refresh_success(self):
        client = TestClient(app)
        email = _email()
        client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})

        response = client.post("/auth/refresh")

        assert response.status_code == 204
        set_cookie = response.headers.get("set-cookie", "")
        assert "access_token=" in set_cookie
        assert "refresh_token=" in set_cookie

    def test_refresh_without_token(self):
        client = TestClient(app)

        response = client.post("/auth/refresh")

        assert response.status_code == 401

    def test_refresh_with_invalid_token(self):
        client = TestClient(app)

        response = client.post("/auth/refresh", cookies={"refresh_token": "invalid.token.here"})

        assert response.status_code == 401

    def test_refresh_with_access_token_instead_of_refresh(self):
        """An access token is not accepted as a refresh token."""
        client = TestClient(app)

        response = client.post("/auth/refresh", cookies={"refresh_token": create_access_token("123")})

        assert response.status_code == 401
