"""
Access control for every protected route.

A request passes four ordered stages:

1. a bearer token must be present               -> 401 NoToken
2. the token must validate and name a live user -> 401 InvalidOrExpired
3. the caller's role must be one the route allows -> 403 RoleMismatch
4. the resource manager checks ownership/scope    -> 403 NotOwner / 404

Stages 1-3 run as a FastAPI dependency before the endpoint body (and before
request body validation); stage 4 uses `ensure_owner` / `ensure_scope` from
inside the managers.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from fastapi import Depends, Header, Request
from pymongo.database import Database

from database import oid
from errors import AuthenticationError, AuthorizationError, ValidationError
from logging_config import get_logger
from security import TokenRejected, TokenService

logger = get_logger("guard")


@dataclass(frozen=True)
class Principal:
    id: str
    role: str
    name: str
    email: str
    degree: Optional[str]
    department: Optional[str]

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Principal":
        return cls(
            id=str(user["_id"]),
            role=user["role"],
            name=user.get("name", ""),
            email=user.get("email", ""),
            degree=user.get("degree"),
            department=user.get("department"),
        )


class AccessGuard:
    def __init__(self, tokens: TokenService, db: Database):
        self._tokens = tokens
        self._db = db

    def authenticate(self, authorization: Optional[str]) -> Principal:
        if not authorization or not authorization.strip():
            raise AuthenticationError(AuthenticationError.NO_TOKEN)
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise AuthenticationError(AuthenticationError.INVALID_OR_EXPIRED)

        try:
            claims = self._tokens.validate(parts[1])
        except TokenRejected as exc:
            logger.info("Rejected token: %s", exc.reason)
            raise AuthenticationError(AuthenticationError.INVALID_OR_EXPIRED)

        try:
            user_id = oid(claims.subject_id)
        except ValidationError:
            raise AuthenticationError(AuthenticationError.INVALID_OR_EXPIRED)
        user = self._db["user"].find_one({"_id": user_id})
        if not user or user.get("role") != claims.role:
            logger.info("Token for %s no longer matches a stored identity", claims.subject_id)
            raise AuthenticationError(AuthenticationError.INVALID_OR_EXPIRED)
        return Principal.from_user(user)

    @staticmethod
    def authorize_role(principal: Principal, roles: Iterable[str]) -> Principal:
        allowed = tuple(roles)
        if allowed and principal.role not in allowed:
            raise AuthorizationError(AuthorizationError.ROLE_MISMATCH)
        return principal


def ensure_owner(principal: Principal, doc: Dict[str, Any], message: str = "Access denied") -> None:
    if doc.get("creator_id") != principal.id:
        raise AuthorizationError(AuthorizationError.NOT_OWNER, message)


def in_scope(principal: Principal, degree: Optional[str], department: Optional[str]) -> bool:
    return (
        principal.degree is not None
        and principal.department is not None
        and principal.degree == degree
        and principal.department == department
    )


def ensure_scope(principal: Principal, subject: Dict[str, Any]) -> None:
    """Subject readers: its creator, or a non-teacher in the same degree and department."""
    if subject.get("creator_id") == principal.id:
        return
    if principal.role != "teacher" and in_scope(principal, subject.get("degree"), subject.get("department")):
        return
    raise AuthorizationError(AuthorizationError.NOT_OWNER)


def current_user(request: Request, authorization: Optional[str] = Header(None)) -> Principal:
    return request.app.state.context.guard.authenticate(authorization)


def require_role(*roles: str) -> Callable[..., Principal]:
    def dependency(principal: Principal = Depends(current_user)) -> Principal:
        return AccessGuard.authorize_role(principal, roles)

    return dependency
