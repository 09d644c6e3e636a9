"""Unit tests for staff authentication helpers."""
import os
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from jose import jwt

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from lounge.auth import (
    authenticate_user,
    create_access_token,
    decode_staff_token,
    decode_token,
    get_password_hash,
    issue_staff_token,
    verify_password,
)
from lounge.config import get_settings
from lounge.models import RoleEnum, User

settings = get_settings()


def _staff(password: str, role: RoleEnum = RoleEnum.STAFF) -> User:
    return User(
        id=1,
        username="front-desk",
        email="desk@example.com",
        name="Front Desk",
        role=role,
        hashed_password=get_password_hash(password),
    )


class TestPasswordHashing:
    """Test password hashing and verification."""

    def test_password_hash_and_verify(self):
        password = "MySecurePassword123!"
        hashed = get_password_hash(password)

        assert hashed != password
        assert verify_password(password, hashed) is True
        assert verify_password("WrongPassword", hashed) is False

    def test_same_password_different_hashes(self):
        """Salted hashes differ but both verify."""
        hash1 = get_password_hash("TestPassword123")
        hash2 = get_password_hash("TestPassword123")

        assert hash1 != hash2
        assert verify_password("TestPassword123", hash1) is True
        assert verify_password("TestPassword123", hash2) is True


class TestJWTTokens:
    """Test JWT token creation and decoding."""

    def test_create_access_token(self):
        token = create_access_token({"sub": "front-desk", "role": "staff"})

        decoded = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        assert decoded["sub"] == "front-desk"
        assert decoded["role"] == "staff"
        assert decoded["exp"] > datetime.utcnow().timestamp()

    def test_issue_staff_token_carries_role(self):
        decoded = decode_token(issue_staff_token(_staff("Passw0rd!", RoleEnum.ADMIN)))

        assert decoded["sub"] == "front-desk"
        assert decoded["role"] == "admin"

    def test_decode_token_invalid(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_token("invalid.token.here")

        assert exc_info.value.status_code == 401

    def test_decode_staff_token(self):
        token_data = decode_staff_token(issue_staff_token(_staff("Passw0rd!", RoleEnum.ADMIN)))

        assert token_data.username == "front-desk"
        assert token_data.role == RoleEnum.ADMIN

    def test_staff_token_without_role_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_staff_token(create_access_token({"sub": "front-desk"}))

        assert exc_info.value.status_code == 401

    def test_decode_token_expired(self):
        token = create_access_token({"sub": "front-desk"}, timedelta(hours=-1))

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401


class TestUserAuthentication:
    """Test login credential checks against a mocked session."""

    def test_authenticate_user_success(self):
        mock_db = MagicMock()
        mock_db.scalars.return_value.first.return_value = _staff("TestPass123")

        result = authenticate_user(mock_db, "front-desk", "TestPass123")

        assert result is not None
        assert result.username == "front-desk"

    def test_authenticate_user_wrong_password(self):
        mock_db = MagicMock()
        mock_db.scalars.return_value.first.return_value = _staff("CorrectPassword")

        assert authenticate_user(mock_db, "front-desk", "WrongPassword") is None

    def test_authenticate_user_not_found(self):
        mock_db = MagicMock()
        mock_db.scalars.return_value.first.return_value = None

        assert authenticate_user(mock_db, "nobody", "anypassword") is None
