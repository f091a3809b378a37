from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from study_service.app.config import AuthConfig
from study_service.app.models.identity import IdentityKind
from study_service.app.services.identity import IdentityResolver, bearer_token


SECRET = "test-jwt-secret-with-at-least-32-bytes!"


def _token(secret: str = SECRET, **claims) -> str:
    payload = {
        "sub": "user-001",
        "email": "student@example.com",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, secret, algorithm="HS256")


def _resolver(secret: str | None = SECRET) -> IdentityResolver:
    return IdentityResolver(AuthConfig(jwt_secret=secret), local_profile_id="device-123")


def test_valid_token_resolves_authenticated_identity() -> None:
    identity = _resolver().resolve(_token())

    assert identity.kind is IdentityKind.AUTHENTICATED
    assert identity.user_id == "user-001"
    assert identity.email == "student@example.com"


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        _token(secret="another-secret-with-at-least-32-bytes"),
        _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)),
        _token(aud="service_role"),
        _token(sub=None),
    ],
)
def test_unusable_token_falls_back_to_local_profile(token: str | None) -> None:
    identity = _resolver().resolve(token)

    assert identity.kind is IdentityKind.ANONYMOUS
    assert identity.user_id == "device-123"


def test_without_secret_every_request_is_anonymous() -> None:
    identity = _resolver(secret=None).resolve(_token())

    assert identity.is_authenticated is False


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc.def", "abc.def"),
        ("bearer  abc.def ", "abc.def"),
        ("Basic abc", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_token(header: str | None, expected: str | None) -> None:
    assert bearer_token(header) == expected
