from __future__ import annotations

import os
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
ADMIN_ROLE = os.getenv("ADMIN_ROLE", "ADMIN")

ANONYMOUS = "anonymous"


@dataclass
class Principal:
    username: str = ANONYMOUS
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    @property
    def is_anonymous(self) -> bool:
        return self.username == ANONYMOUS


def anonymous() -> Principal:
    return Principal(username=ANONYMOUS, roles=[])


def principal_from_token(token: str | None) -> Principal:
    if not token:
        return anonymous()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        return anonymous()
    username = (payload.get("sub") or "").strip()
    if not username:
        return anonymous()
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Principal(username=username, roles=[str(r).upper().removeprefix("ROLE_") for r in roles])


def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Principal:
    return principal_from_token(creds.credentials if creds else None)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.is_anonymous:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail=f"{ADMIN_ROLE} role required")
    return principal
