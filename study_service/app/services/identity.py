"""요청마다 access token 으로 현재 identity 를 결정한다."""

from __future__ import annotations

import logging

import jwt

from ..config import AuthConfig
from ..models.identity import Identity


logger = logging.getLogger(__name__)


class IdentityResolver:
    """Bearer 토큰을 검증해 인증 사용자 또는 로컬 익명 프로필을 돌려준다.

    결과를 캐시하지 않는다. 호출 사이에 로그인/로그아웃이 일어날 수 있다.
    """

    def __init__(self, config: AuthConfig, local_profile_id: str = "local") -> None:
        self._config = config
        self._local_profile_id = local_profile_id

    def anonymous(self) -> Identity:
        return Identity.anonymous(self._local_profile_id)

    def resolve(self, access_token: str | None) -> Identity:
        if not access_token:
            return self.anonymous()
        if not self._config.jwt_secret:
            logger.warning("AUTH_JWT_SECRET is not set, treating request as anonymous")
            return self.anonymous()

        try:
            payload = jwt.decode(
                access_token,
                self._config.jwt_secret,
                algorithms=["HS256"],
                audience=self._config.jwt_audience,
            )
        except jwt.ExpiredSignatureError:
            logger.info("access token expired, falling back to local profile")
            return self.anonymous()
        except jwt.InvalidTokenError as exc:
            logger.info("invalid access token (%s), falling back to local profile", exc)
            return self.anonymous()

        subject = payload.get("sub")
        if not subject:
            logger.info("access token has no subject, falling back to local profile")
            return self.anonymous()
        return Identity.authenticated(str(subject), payload.get("email"))


def bearer_token(authorization: str | None) -> str | None:
    """'Bearer <token>' 헤더 값에서 토큰만 꺼낸다."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
