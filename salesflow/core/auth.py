from __future__ import annotations

from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from salesflow.core.config import get_settings

ANONYMOUS_ROLES = ["guest"]


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def _bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def _roles_from_claims(claims: dict[str, object], default_role: str) -> list[str]:
    raw = claims.get("roles")
    if isinstance(raw, str):
        return raw.split()
    if isinstance(raw, list):
        return [str(role) for role in raw]
    return [default_role]


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    if not token:
        return AuthUser(sub="anonymous", roles=list(ANONYMOUS_ROLES))

    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=list(ANONYMOUS_ROLES))

    return AuthUser(
        sub=str(claims.get("sub", "anonymous")),
        roles=_roles_from_claims(claims, settings.default_user_role),
    )
