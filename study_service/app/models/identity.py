from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class IdentityKind(StrEnum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class Identity(BaseModel):
    """크레딧 계정과 학습 기록의 소유자.

    - anonymous: 기기 로컬 프로필. user_id 는 로컬 프로필 ID 다.
    - authenticated: 유효한 원격 세션이 있는 사용자. user_id 는 인증 서버의 sub 다.
    """

    kind: IdentityKind
    user_id: str
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.kind is IdentityKind.AUTHENTICATED

    @classmethod
    def anonymous(cls, profile_id: str = "local") -> "Identity":
        return cls(kind=IdentityKind.ANONYMOUS, user_id=profile_id)

    @classmethod
    def authenticated(cls, user_id: str, email: str | None = None) -> "Identity":
        if not user_id:
            raise ValueError("authenticated identity requires a user_id")
        return cls(kind=IdentityKind.AUTHENTICATED, user_id=user_id, email=email)
