"""
Tests for password hashing and JWT tokens.
"""
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    get_password_hash,
    verify_password,
)


class TestPasswordHashing:
    """Password hashing."""

    def test_password_hash_creates_different_hashes(self):
        """Salting gives different hashes for the same password."""
        password = "MySecurePassword123!"
        hash1 = get_password_hash(password)
        hash2 = get_password_hash(password)

        assert hash1 != hash2
        assert hash1 != password

    def test_verify_password_correct(self):
        password = "MySecurePassword123!"
        hashed = get_password_hash(password)

        assert verify_password(password, hashed) is True

    def test_verify_password_incorrect(self):
        password = "MySecurePassword123!"
        hashed = get_password_hash(password)

        assert verify_password("WrongPassword", hashed) is False
        assert verify_password("", hashed) is False
        assert verify_password(password.upper(), hashed) is False

    def test_password_hash_bcrypt_format(self):
        hashed = get_password_hash("test123")

        assert hashed.startswith("$2b$")


class TestAccessToken:
    """Access tokens."""

    def test_create_access_token_contains_subject(self):
        token = create_access_token("123")
        payload = decode_access_token(token)

        assert payload is not None
        assert payload.get("sub") == "123"
        assert payload.get("type") == "access"
        assert "exp" in payload

    def test_create_access_token_custom_expiry(self):
        token = create_access_token("123", expires_delta_minutes=60)
        payload = decode_access_token(token)

        assert payload is not None
        assert payload.get("sub") == "123"

    def test_expired_access_token(self):
        token = create_access_token("123", expires_delta_minutes=-1)

        assert decode_access_token(token) is None

    def test_decode_invalid_token_returns_none(self):
        for token in ["invalid.token.here", "", "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.invalid"]:
            assert decode_access_token(token) is None

    def test_tokens_are_unique(self):
        """Every token carries its own jti."""
        token1 = create_access_token("123")
        token2 = create_access_token("123")

        assert token1 != token2
        assert decode_access_token(token1).get("sub") == "123"
        assert decode_access_token(token2).get("sub") == "123"


class TestRefreshToken:
    """Refresh tokens."""

    def test_create_refresh_token_contains_subject(self):
        token = create_refresh_token("456")
        payload = decode_refresh_token(token)

        assert payload is not None
        assert payload.get("sub") == "456"
        assert payload.get("type") == "refresh"

    def test_decode_access_token_as_refresh_fails(self):
        """Token types are not interchangeable."""
        assert decode_refresh_token(create_access_token("456")) is None
        assert decode_access_token(create_refresh_token("456")) is None

    def test_refresh_token_custom_expiry(self):
        token = create_refresh_token("456", expires_delta_minutes=43200)
        payload = decode_refresh_token(token)

        assert payload is not None
        assert payload.get("sub") == "456"
