"""
Operator identity. Sessions are issued by the authentication provider as
HS256 bearer tokens carrying the operator id (`sub`) and `role`.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt
from jose.exceptions import JWTError

from .errors import AuthenticationError, AuthorizationError

ALGORITHM = "HS256"

bearer = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    PARTICIPANT = "participant"
    VOLUNTEER = "volunteer"
    ORGANIZER = "organizer"
    ADMIN = "admin"


SCANNER_ROLES = (Role.VOLUNTEER, Role.ORGANIZER, Role.ADMIN)
MANAGER_ROLES = (Role.ORGANIZER, Role.ADMIN)


@dataclass(frozen=True)
class Operator:
    id: str
    role: Role


def mint_session_token(secret: str, operator_id: str, role: Role, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    return jwt.encode({"sub": operator_id, "role": role.value, "exp": exp}, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> Optional[Operator]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None

    sub = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        return None
    if not sub:
        return None
    return Operator(id=sub, role=role)


def get_current_operator(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Operator:
    if credentials is None:
        raise AuthenticationError("Authentication required")

    operator = decode_session_token(credentials.credentials, request.app.state.settings.session_secret)
    if operator is None:
        raise AuthenticationError("Could not validate credentials")
    return operator


def require_roles(*roles: Role):
    def dependency(operator: Operator = Depends(get_current_operator)) -> Operator:
        if operator.role not in roles:
            raise AuthorizationError(f"Requires one of: {', '.join(r.value for r in roles)}")
        return operator

    return dependency
