"""Explicitly constructed application context: store handle, secret-bearing services, managers."""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from pymongo.database import Database

from config import Settings
from database import connect, ensure_indexes
from guard import AccessGuard
from managers import (
    AlumniMessageManager,
    AssignmentManager,
    CalendarManager,
    GradeManager,
    IdentityManager,
    MessageManager,
    SubjectManager,
    TaskManager,
)
from security import PasswordVerifier, TokenService
from storage import LocalFileStorage


@dataclass
class AppContext:
    settings: Settings
    db: Database
    passwords: PasswordVerifier
    tokens: TokenService
    guard: AccessGuard
    storage: LocalFileStorage
    identities: IdentityManager
    subjects: SubjectManager
    assignments: AssignmentManager
    grades: GradeManager
    messages: MessageManager
    alumni_messages: AlumniMessageManager
    calendar: CalendarManager
    tasks: TaskManager


def build_context(settings: Settings, db: Optional[Database] = None) -> AppContext:
    if db is None:
        db = connect(settings)
    ensure_indexes(db)

    passwords = PasswordVerifier(settings.bcrypt_rounds)
    tokens = TokenService(settings.jwt_secret, timedelta(minutes=settings.jwt_exp_min))
    identities = IdentityManager(db, passwords, tokens)
    subjects = SubjectManager(db)
    return AppContext(
        settings=settings,
        db=db,
        passwords=passwords,
        tokens=tokens,
        guard=AccessGuard(tokens, db),
        storage=LocalFileStorage(settings.upload_dir),
        identities=identities,
        subjects=subjects,
        assignments=AssignmentManager(db, subjects),
        grades=GradeManager(db, subjects),
        messages=MessageManager(db, subjects, identities),
        alumni_messages=AlumniMessageManager(db, identities),
        calendar=CalendarManager(db),
        tasks=TaskManager(db),
    )
