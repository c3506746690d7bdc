"""
Unit tests for authentication middleware.
Tests JWT verification and user extraction for the staff routes.
"""

import pytest
import os
import jwt as pyjwt
from fastapi import HTTPException
from unittest.mock import AsyncMock, Mock, patch

# Mock environment variables before importing app modules
os.environ['SUPABASE_URL'] = 'https://test.supabase.co'
os.environ['SUPABASE_KEY'] = 'test-anon-key'

from app.auth import get_current_user, _verify_jwt_locally


def _patch_remote_auth(get_user):
    """Patch the Supabase admin client so auth.get_user is the given AsyncMock."""
    client = Mock()
    client.auth.get_user = get_user
    return patch('app.auth.get_supabase_admin', AsyncMock(return_value=client))


class TestGetCurrentUser:
    """Test JWT token verification via the Supabase Auth API."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_user_id(self):
        """Valid JWT token should return authenticated user_id."""
        mock_token = "valid.jwt.token"
        get_user = AsyncMock(return_value=Mock(user=Mock(id="user-123")))

        with patch('app.auth.SUPABASE_JWT_SECRET', None), _patch_remote_auth(get_user):
            user_id = await get_current_user(f"Bearer {mock_token}")

        assert user_id == "user-123"
        get_user.assert_awaited_once_with(mock_token)

    @pytest.mark.asyncio
    async def test_missing_token_raises_401(self):
        """Missing Authorization header should raise 401."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert "Not authenticated" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix_raises_401(self):
        """Token without 'Bearer ' prefix should raise 401."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("invalid.jwt.token")

        assert exc_info.value.status_code == 401
        assert "Invalid authentication" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_token_with_spaces_raises_401(self):
        """'Bearer a b' is not a single bearer token."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("Bearer part.one part.two")

        assert exc_info.value.status_code == 401
        assert "Invalid authentication" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_invalid_token_raises_401(self):
        """Invalid JWT token should raise 401."""
        get_user = AsyncMock(side_effect=Exception("Invalid token"))

        with patch('app.auth.SUPABASE_JWT_SECRET', None), _patch_remote_auth(get_user):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer invalid.jwt.token")

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_expired_token_raises_401(self):
        """Expired JWT token should raise 401."""
        get_user = AsyncMock(side_effect=Exception("Token expired"))

        with patch('app.auth.SUPABASE_JWT_SECRET', None), _patch_remote_auth(get_user):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer expired.jwt.token")

        assert exc_info.value.status_code == 401
        assert "expired" in str(exc_info.value.detail).lower()

    @pytest.mark.asyncio
    async def test_no_user_in_response_raises_401(self):
        """Token verification with no user should raise 401."""
        get_user = AsyncMock(return_value=Mock(user=None))

        with patch('app.auth.SUPABASE_JWT_SECRET', None), _patch_remote_auth(get_user):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer valid.jwt.token")

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_unconfigured_supabase_raises_401(self):
        """A client that cannot be created counts as a failed verification."""
        with patch('app.auth.SUPABASE_JWT_SECRET', None), \
             patch('app.auth.get_supabase_admin', AsyncMock(side_effect=ValueError("SUPABASE_URL not set"))):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer valid.jwt.token")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_local_secret_skips_remote_call(self):
        """With SUPABASE_JWT_SECRET set the Auth API is never called."""
        import time
        token = pyjwt.encode({"sub": "staff-9", "exp": int(time.time()) + 60}, "local-secret", algorithm="HS256")
        get_admin = AsyncMock()

        with patch('app.auth.SUPABASE_JWT_SECRET', "local-secret"), \
             patch('app.auth.get_supabase_admin', get_admin):
            user_id = await get_current_user(f"Bearer {token}")

        assert user_id == "staff-9"
        get_admin.assert_not_called()


class TestVerifyJwtLocally:
    """
    Unit tests for _verify_jwt_locally, the local HS256 verification path.

    Tokens are signed inline with PyJWT so that the token structure is
    authentic and independent of the library doing the verification. The
    secret is a fixed test value; it never leaves this test module.
    """

    TEST_SECRET = "test-jwt-secret-for-unit-tests"

    def _make_token(self, payload: dict) -> str:
        """Helper: sign a JWT with the test secret."""
        return pyjwt.encode(payload, self.TEST_SECRET, algorithm="HS256")

    def test_valid_token_returns_user_id(self):
        """A well-formed, unexpired HS256 token should return the sub claim."""
        import time
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            user_id = _verify_jwt_locally(token)

        assert user_id == "user-abc"

    def test_supabase_audience_is_accepted(self):
        """Supabase tokens carry aud='authenticated'; that must not fail verification."""
        import time
        token = self._make_token({"sub": "user-abc", "aud": "authenticated", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            assert _verify_jwt_locally(token) == "user-abc"

    def test_expired_token_raises_401(self):
        """An expired token should raise 401 with 'Token expired'."""
        import time
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) - 10})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401
        assert "expired" in str(exc_info.value.detail).lower()

    def test_invalid_signature_raises_401(self):
        """A token signed with the wrong secret should raise 401."""
        import time
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", "wrong-secret"):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    def test_missing_sub_claim_raises_401(self):
        """A token without a sub claim should raise 401."""
        import time
        token = self._make_token({"role": "authenticated", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    def test_garbage_token_raises_401(self):
        """A completely malformed token string should raise 401."""
        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally("not.a.real.jwt.at.all")

        assert exc_info.value.status_code == 401
