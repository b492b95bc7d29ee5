"""
Password hashing and signed session tokens.

Sessions are stateless HS256 JWTs carrying only the subject id and role.
Nothing is stored server side, so an issued token stays valid until it
expires; keep `JWT_EXP_MIN` short.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from passlib.hash import bcrypt

from errors import HashingError

ALGORITHM = "HS256"


class PasswordVerifier:
    def __init__(self, rounds: int):
        self._hasher = bcrypt.using(rounds=rounds)

    def hash(self, plaintext: str) -> str:
        try:
            return self._hasher.hash(plaintext)
        except (ValueError, TypeError, OSError) as exc:
            raise HashingError("Could not hash password") from exc

    def verify(self, plaintext: str, digest: str) -> bool:
        if not digest:
            return False
        try:
            return bcrypt.verify(plaintext, digest)
        except (ValueError, TypeError):
            # unknown or corrupt hash format counts as a mismatch
            return False


class TokenRejected(Exception):
    MALFORMED = "Malformed"
    SIGNATURE_INVALID = "SignatureInvalid"
    EXPIRED = "Expired"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class Claims:
    subject_id: str
    role: str
    issued_at: datetime
    expires_at: datetime


class TokenService:
    def __init__(
        self,
        secret: str,
        ttl: timedelta,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not secret:
            raise SystemExit("Refusing to start: token signing secret is empty")
        self._secret = secret
        self._ttl = ttl
        self._clock = clock

    def issue(self, subject_id: str, role: str, ttl: Optional[timedelta] = None) -> str:
        now = self._clock()
        payload = {
            "sub": str(subject_id),
            "role": role,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self._ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def validate(self, token: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "role", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenRejected(TokenRejected.EXPIRED)
        except jwt.InvalidSignatureError:
            raise TokenRejected(TokenRejected.SIGNATURE_INVALID)
        except jwt.InvalidTokenError:
            raise TokenRejected(TokenRejected.MALFORMED)

        sub, role = payload.get("sub"), payload.get("role")
        if not isinstance(sub, str) or not isinstance(role, str):
            raise TokenRejected(TokenRejected.MALFORMED)
        return Claims(
            subject_id=sub,
            role=role,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
