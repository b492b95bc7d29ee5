"""
Runtime configuration for the Campus Portal API.

All settings come from environment variables (a local `.env` is honoured).
Fatal misconfiguration aborts startup with `SystemExit` so an insecure or
half-configured process never starts serving requests.
"""
from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

MIN_BCRYPT_ROUNDS = 10


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"Refusing to start: {name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"Refusing to start: {name} must be a number, got {raw!r}")


def _list_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    jwt_secret: str
    jwt_exp_min: int = Field(60, gt=0)
    bcrypt_rounds: int = Field(MIN_BCRYPT_ROUNDS, ge=MIN_BCRYPT_ROUNDS, le=31)
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "campus_portal"
    db_connect_retries: int = Field(5, ge=1)
    db_retry_delay_sec: float = Field(5, ge=0)
    db_timeout_ms: int = Field(5000, gt=0)
    upload_dir: str = "uploads"
    cors_origins: List[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "text"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        secret = (os.getenv("JWT_SECRET") or "").strip()
        if not secret:
            raise SystemExit("Refusing to start: JWT_SECRET is not set")
        try:
            return cls(
                jwt_secret=secret,
                jwt_exp_min=_int_env("JWT_EXP_MIN", 60),
                bcrypt_rounds=_int_env("BCRYPT_ROUNDS", MIN_BCRYPT_ROUNDS),
                database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
                database_name=os.getenv("DATABASE_NAME", "campus_portal"),
                db_connect_retries=_int_env("DB_CONNECT_RETRIES", 5),
                db_retry_delay_sec=_float_env("DB_RETRY_DELAY_SEC", 5),
                db_timeout_ms=_int_env("DB_TIMEOUT_MS", 5000),
                upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
                cors_origins=_list_env("FRONTEND_URL", "http://localhost:3000"),
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                log_format=os.getenv("LOG_FORMAT", "text").lower(),
                port=_int_env("PORT", 8000),
            )
        except ValueError as exc:
            # pydantic's ValidationError is a ValueError
            raise SystemExit(f"Refusing to start: invalid configuration\n{exc}")
