"""
Unit Tests for Security Module
Tests for: JWT access tokens issued for the supervision API
"""
import pytest
from datetime import datetime, timedelta
from jose import jwt

from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.security import create_access_token, decode_access_token, decode_token


class TestAccessTokens:
    """Test JWT creation and decoding"""

    def test_round_trip(self):
        """Test a created token decodes to its claims"""
        token = create_access_token({"sub": "user-1", "role": "student"})

        payload = decode_access_token(token)

        assert payload["sub"] == "user-1"
        assert payload["type"] == "access"

    def test_custom_expiry(self):
        """Test expires_delta is honoured"""
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(minutes=5))
        payload = decode_token(token)

        remaining = datetime.utcfromtimestamp(payload["exp"]) - datetime.utcnow()
        assert timedelta(minutes=4) < remaining <= timedelta(minutes=5)

    def test_expired_token_rejected(self):
        """Test an expired token fails"""
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_wrong_secret_rejected(self):
        """Test a token signed elsewhere fails"""
        token = jwt.encode({"sub": "user-1", "type": "access"}, "not-our-secret",
                           algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_refresh_token_not_accepted(self):
        """Test only access tokens authenticate"""
        token = jwt.encode({"sub": "user-1", "type": "refresh"}, settings.JWT_SECRET_KEY,
                           algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)

        assert "type" in exc_info.value.message

    def test_missing_subject(self):
        """Test tokens without sub are rejected"""
        token = create_access_token({"role": "student"})

        with pytest.raises(AuthenticationError):
            decode_access_token(token)
