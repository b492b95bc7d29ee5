"""
Resource managers: one per collection.

Managers receive the authenticated `Principal` and do the resource-level
(ownership / scope) part of access control themselves; role checks have
already happened in the route dependency. Writes that must only touch the
caller's own documents carry the owner in the update filter so the check and
the write are a single atomic store operation.
"""
import json
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError as ModelValidationError
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, oid, serialize_doc, to_utc, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from guard import Principal, ensure_owner, ensure_scope, in_scope
from logging_config import get_logger
from schemas import (
    AlumniMessage,
    Assignment,
    CalendarEntry,
    FileRef,
    Grade,
    Message,
    Subject,
    Task,
    Unit,
    User,
)
from security import PasswordVerifier, TokenService

logger = get_logger("managers")

DEADLINE_WINDOW = timedelta(hours=24)

_DOTTED_DATE = re.compile(r"^\s*(\d{1,2})\.(\d{1,2})\.(\d{4})\s*$")
_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")


def _model_errors(exc: ModelValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def _validated(model, **data) -> Dict[str, Any]:
    try:
        return model(**data).model_dump()
    except ModelValidationError as exc:
        raise ValidationError("Validation failed", _model_errors(exc))


# ----------------------
# Identities
# ----------------------
class IdentityManager:
    def __init__(self, db: Database, passwords: PasswordVerifier, tokens: TokenService):
        self.db = db
        self.passwords = passwords
        self.tokens = tokens

    def signup(
        self,
        email: str,
        password: str,
        role: str,
        name: str,
        degree: str,
        department: str,
        additional_info: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], str]:
        email = email.lower()
        if self.db["user"].find_one({"email": email}):
            logger.warning("Signup rejected, email already registered: %s", email)
            raise ConflictError("User already exists with this email")
        doc = _validated(
            User,
            name=name,
            email=email,
            password_hash=self.passwords.hash(password),
            role=role,
            degree=degree,
            department=department,
            additional_info=additional_info,
        )
        try:
            user = create_document(self.db, "user", doc)
        except DuplicateKeyError:
            # lost a race with a concurrent signup for the same email
            raise ConflictError("User already exists with this email")
        logger.info("Signup: %s registered as %s", email, role)
        return user, self.tokens.issue(str(user["_id"]), user["role"])

    def login(self, email: str, password: str, role: str) -> Tuple[Dict[str, Any], str]:
        email = email.lower()
        user = self.db["user"].find_one({"email": email})
        if not user:
            logger.warning("Login failed for %s: unknown email", email)
            raise ValidationError("Invalid credentials")
        if user["role"] != role:
            logger.warning("Login failed for %s: role %s requested, stored %s", email, role, user["role"])
            raise AuthorizationError(
                AuthorizationError.ROLE_MISMATCH,
                f"Access denied. Please login with your assigned role as {user['role']}.",
            )
        if not self.passwords.verify(password, user.get("password_hash", "")):
            logger.warning("Login failed for %s: bad password", email)
            raise ValidationError("Invalid credentials")
        logger.info("Login: %s", email)
        return user, self.tokens.issue(str(user["_id"]), user["role"])

    def get(self, user_id: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"_id": oid(user_id)})
        if not user:
            raise NotFoundError("User")
        return serialize_doc(user)

    def list_students(self) -> List[Dict[str, Any]]:
        students = self.db["user"].find({"role": "student"}, {"name": 1}).sort("name", ASCENDING)
        return [{"id": str(s["_id"]), "name": s.get("name")} for s in students]

    def senders(self, ids) -> Dict[str, Dict[str, Any]]:
        object_ids = [ObjectId(i) for i in set(ids) if ObjectId.is_valid(i)]
        users = self.db["user"].find({"_id": {"$in": object_ids}}, {"name": 1, "role": 1})
        return {
            str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "role": u.get("role")}
            for u in users
        }


# ----------------------
# Subjects
# ----------------------
class SubjectManager:
    def __init__(self, db: Database):
        self.db = db

    def get(self, subject_id: str) -> Dict[str, Any]:
        subject = self.db["subject"].find_one({"_id": oid(subject_id)})
        if not subject:
            raise NotFoundError("Subject")
        return subject

    def create(self, principal: Principal, title: str, degree: str, department: str) -> Dict[str, Any]:
        if not (title or "").strip() or not (degree or "").strip() or not (department or "").strip():
            raise ValidationError("All fields are required")
        doc = _validated(Subject, title=title, degree=degree, department=department, creator_id=principal.id)
        subject = create_document(self.db, "subject", doc)
        logger.info("Subject %s created by %s", subject["_id"], principal.id)
        return serialize_doc(subject)

    def list_for(self, principal: Principal) -> List[Dict[str, Any]]:
        if principal.role == "teacher":
            query = {"creator_id": principal.id}
        else:
            query = {"degree": principal.degree, "department": principal.department}
        return [serialize_doc(s) for s in get_documents(self.db, "subject", query, [("created_at", ASCENDING)])]

    def list_by_role(self, principal: Principal, role: str) -> List[Dict[str, Any]]:
        if role not in ("teacher", "student"):
            raise ValidationError("Invalid role specified")
        if role != principal.role:
            raise AuthorizationError(AuthorizationError.ROLE_MISMATCH)
        if role == "teacher":
            return self.list_for(principal)
        subject_ids = [
            oid(g["subject_id"])
            for g in self.db["grade"].find({"student_id": principal.id}, {"subject_id": 1})
        ]
        if not subject_ids:
            return []
        return [serialize_doc(s) for s in get_documents(self.db, "subject", {"_id": {"$in": subject_ids}})]

    def update_units(self, principal: Principal, subject_id: str, units: List[Any]) -> Dict[str, Any]:
        subject = self.get(subject_id)
        ensure_owner(principal, subject, "You do not have permission to update this subject")
        try:
            clean = [Unit.model_validate(u).model_dump() for u in units]
        except ModelValidationError as exc:
            raise ValidationError("Validation failed", _model_errors(exc))
        updated = self.db["subject"].find_one_and_update(
            {"_id": subject["_id"], "creator_id": principal.id},
            {"$set": {"units": clean, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Subject")
        return serialize_doc(updated)


# ----------------------
# Assignments and submissions
# ----------------------
class AssignmentManager:
    def __init__(self, db: Database, subjects: SubjectManager):
        self.db = db
        self.subjects = subjects

    def authorize_create(self, principal: Principal, subject_id: str) -> Dict[str, Any]:
        subject = self.subjects.get(subject_id)
        ensure_owner(principal, subject, "Not your subject")
        return subject

    def authorize_submit(self, principal: Principal, assignment_id: str) -> Dict[str, Any]:
        assignment = self.db["assignment"].find_one({"_id": oid(assignment_id)}, {"subject_id": 1})
        if not assignment:
            raise NotFoundError("Assignment")
        ensure_scope(principal, self.subjects.get(assignment["subject_id"]))
        return assignment

    def create(
        self,
        principal: Principal,
        subject_id: str,
        title: str,
        description: str,
        due_date: datetime,
        file: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        subject = self.authorize_create(principal, subject_id)
        doc = _validated(
            Assignment,
            title=title,
            description=description,
            due_date=to_utc(due_date),
            subject_id=str(subject["_id"]),
            creator_id=principal.id,
            file=file,
        )
        assignment = create_document(self.db, "assignment", doc)
        logger.info("Assignment %s created for subject %s", assignment["_id"], subject_id)
        return serialize_doc(assignment)

    def list_for_subject(self, principal: Principal, subject_id: str) -> List[Dict[str, Any]]:
        subject = self.subjects.get(subject_id)
        ensure_scope(principal, subject)
        owner = subject.get("creator_id") == principal.id
        out = []
        for a in get_documents(self.db, "assignment", {"subject_id": str(subject["_id"])}, [("due_date", ASCENDING)]):
            if not owner:
                a["submissions"] = [s for s in a.get("submissions", []) if s.get("student_id") == principal.id]
            out.append(serialize_doc(a))
        return out

    def submit(self, principal: Principal, assignment_id: str, file: Dict[str, str]) -> Dict[str, Any]:
        assignment = self.authorize_submit(principal, assignment_id)
        submission = {
            "student_id": principal.id,
            "file": FileRef(**file).model_dump(),
            "submitted_at": utcnow(),
        }
        # append-only; repeated submissions by the same student are all kept
        self.db["assignment"].update_one({"_id": assignment["_id"]}, {"$push": {"submissions": submission}})
        logger.info("Student %s submitted assignment %s", principal.id, assignment_id)
        return serialize_doc(submission)


# ----------------------
# Grades
# ----------------------
_GRADE_FIELDS = {"cycle_test1": "cycleTest1", "cycle_test2": "cycleTest2"}


def serialize_grade(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Grade record as the API reports it: scores under `cycleTest1` / `cycleTest2`."""
    out = serialize_doc(doc)
    if out is None:
        return None
    return {_GRADE_FIELDS.get(k, k): v for k, v in out.items()}


class GradeManager:
    def __init__(self, db: Database, subjects: SubjectManager):
        self.db = db
        self.subjects = subjects

    def submit(self, principal: Principal, student_id: str, subject_id: str, scores: Dict[str, float]) -> Dict[str, Any]:
        subject = self.subjects.get(subject_id)
        ensure_owner(principal, subject, "Not your subject")
        student = self.db["user"].find_one({"_id": oid(student_id), "role": "student"}, {"_id": 1})
        if not student:
            raise NotFoundError("Student")
        doc = _validated(Grade, student_id=str(student["_id"]), subject_id=str(subject["_id"]), **scores)
        key = {"student_id": doc.pop("student_id"), "subject_id": doc.pop("subject_id")}
        now = utcnow()
        # last write wins; the unique (student_id, subject_id) index keeps one record per pair
        try:
            self.db["grade"].update_one(
                key,
                {"$set": {**doc, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except DuplicateKeyError:
            # two first-time upserts raced; the loser retries as a plain update
            self.db["grade"].update_one(key, {"$set": {**doc, "updated_at": now}})
        logger.info("Grades for student %s in subject %s set by %s", student_id, subject_id, principal.id)
        return serialize_grade(self.db["grade"].find_one(key))

    def list_for(self, principal: Principal, subject_id: str, student_id: Optional[str] = None) -> List[Dict[str, Any]]:
        subject = self.subjects.get(subject_id)
        if principal.role == "teacher":
            ensure_owner(principal, subject, "Not your subject")
            query = {"subject_id": str(subject["_id"])}
            if student_id:
                query["student_id"] = student_id
        else:
            if student_id and student_id != principal.id:
                raise AuthorizationError(AuthorizationError.NOT_OWNER)
            query = {"subject_id": str(subject["_id"]), "student_id": principal.id}
        summary = {"id": str(subject["_id"]), "title": subject.get("title")}
        return [{**serialize_grade(g), "subject": summary} for g in get_documents(self.db, "grade", query)]

    def roster(self, principal: Principal, subject_id: str) -> List[Dict[str, Any]]:
        """Students in the subject's degree and department, each with their grade record or None."""
        subject = self.subjects.get(subject_id)
        ensure_owner(principal, subject, "Not your subject")
        students = self.db["user"].find(
            {"role": "student", "degree": subject["degree"], "department": subject["department"]},
            {"name": 1},
        ).sort("name", ASCENDING)
        grades = {
            g["student_id"]: serialize_grade(g)
            for g in self.db["grade"].find({"subject_id": str(subject["_id"])})
        }
        return [
            {"id": str(s["_id"]), "name": s.get("name"), "grades": grades.get(str(s["_id"]))}
            for s in students
        ]


# ----------------------
# Messages
# ----------------------
class MessageManager:
    def __init__(self, db: Database, subjects: SubjectManager, identities: IdentityManager):
        self.db = db
        self.subjects = subjects
        self.identities = identities

    def _with_senders(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        senders = self.identities.senders(d["sender_id"] for d in docs)
        return [{**serialize_doc(d), "sender": senders.get(d["sender_id"])} for d in docs]

    def list(self, principal: Principal, subject_id: str) -> List[Dict[str, Any]]:
        subject = self.subjects.get(subject_id)
        ensure_scope(principal, subject)
        docs = get_documents(self.db, "message", {"subject_id": str(subject["_id"])}, [("created_at", ASCENDING)])
        return self._with_senders(docs)

    def post(self, principal: Principal, subject_id: str, text: str) -> Dict[str, Any]:
        subject = self.subjects.get(subject_id)
        ensure_scope(principal, subject)
        doc = _validated(Message, text=text, sender_id=principal.id, subject_id=str(subject["_id"]))
        return self._with_senders([create_document(self.db, "message", doc)])[0]


class AlumniMessageManager:
    def __init__(self, db: Database, identities: IdentityManager):
        self.db = db
        self.identities = identities

    def _with_senders(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        senders = self.identities.senders(d["sender_id"] for d in docs)
        return [{**serialize_doc(d), "sender": senders.get(d["sender_id"])} for d in docs]

    def list(self, principal: Principal) -> List[Dict[str, Any]]:
        query = {"degree": principal.degree, "department": principal.department}
        return self._with_senders(get_documents(self.db, "alumni_message", query, [("created_at", ASCENDING)]))

    def post(self, principal: Principal, text: str) -> Dict[str, Any]:
        if not in_scope(principal, principal.degree, principal.department):
            raise ValidationError("Your profile has no degree and department")
        doc = _validated(
            AlumniMessage,
            text=text,
            sender_id=principal.id,
            degree=principal.degree,
            department=principal.department,
        )
        return self._with_senders([create_document(self.db, "alumni_message", doc)])[0]


# ----------------------
# Academic calendar
# ----------------------
def normalize_date(value: Optional[str]) -> Optional[str]:
    """`DD.MM.YYYY` (or already `YYYY-MM-DD`) -> `YYYY-MM-DD`."""
    if value is None:
        return None
    m = _DOTTED_DATE.match(value)
    if m:
        day, month, year = (int(x) for x in m.groups())
    else:
        m = _ISO_DATE.match(value)
        if not m:
            raise ValidationError(f"Invalid date: {value!r}")
        year, month, day = (int(x) for x in m.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


class CalendarManager:
    collection = "academic_calendar"

    def __init__(self, db: Database):
        self.db = db

    def _entry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = _validated(CalendarEntry, **{k: data.get(k) for k in ("day", "date", "description")})
        doc["date"] = normalize_date(doc["date"])
        return doc

    def list(self) -> List[Dict[str, Any]]:
        return [serialize_doc(e) for e in get_documents(self.db, self.collection, sort=[("date", ASCENDING)])]

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return serialize_doc(create_document(self.db, self.collection, self._entry(data)))

    def update(self, entry_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        patch = {k: v for k, v in data.items() if k in ("day", "date", "description") and v is not None}
        if "date" in patch:
            patch["date"] = normalize_date(patch["date"])
        updated = self.db[self.collection].find_one_and_update(
            {"_id": oid(entry_id)},
            {"$set": patch},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Calendar entry")
        return serialize_doc(updated)

    def delete(self, entry_id: str) -> None:
        if not self.db[self.collection].find_one_and_delete({"_id": oid(entry_id)}):
            raise NotFoundError("Calendar entry")

    def import_entries(self, raw: bytes) -> List[Dict[str, Any]]:
        """Replace the whole calendar with a JSON array of {day, date: DD.MM.YYYY, description}.

        Everything is validated before the collection is touched. The delete and
        insert are separate store operations, so readers may briefly see an
        empty calendar.
        """
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON file")
        if not isinstance(data, list) or not all(isinstance(e, dict) for e in data):
            raise ValidationError("Calendar file must be a JSON array of entries")
        entries = []
        for item in data:
            if not item.get("date"):
                raise ValidationError("Every calendar entry needs a date")
            entries.append({"_id": ObjectId(), **self._entry(item)})

        self.db[self.collection].delete_many({})
        if entries:
            self.db[self.collection].insert_many(entries)
        logger.info("Academic calendar replaced with %d entries", len(entries))
        return [serialize_doc(e) for e in entries]


# ----------------------
# Tasks
# ----------------------
class TaskManager:
    editable = ("text", "category", "priority", "due_date", "completed")

    def __init__(self, db: Database):
        self.db = db

    def create(self, principal: Principal, text: str, category: str, priority: str, due_date: datetime) -> Dict[str, Any]:
        doc = _validated(
            Task,
            text=text,
            category=category,
            priority=priority,
            due_date=to_utc(due_date),
            creator_id=principal.id,
        )
        return serialize_doc(create_document(self.db, "task", doc))

    def list(self, principal: Principal) -> List[Dict[str, Any]]:
        docs = get_documents(self.db, "task", {"creator_id": principal.id}, [("due_date", ASCENDING)])
        return [serialize_doc(t) for t in docs]

    def update(self, principal: Principal, task_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: v for k, v in patch.items() if k in self.editable and v is not None}
        if "due_date" in changes:
            changes["due_date"] = to_utc(changes["due_date"])
            # re-arm the reminder for the new deadline
            changes["notification_sent"] = False
        task = self.db["task"].find_one_and_update(
            {"_id": oid(task_id), "creator_id": principal.id},
            {"$set": {**changes, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not task:
            raise NotFoundError("Task")
        return serialize_doc(task)

    def delete(self, principal: Principal, task_id: str) -> None:
        if not self.db["task"].find_one_and_delete({"_id": oid(task_id), "creator_id": principal.id}):
            raise NotFoundError("Task")

    def check_deadlines(self, principal: Principal, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Tasks due within the next 24h that have not been notified yet.

        Each task is claimed with a conditional update on `notification_sent`,
        so concurrent sweeps for the same owner never both return it.
        """
        now = to_utc(now) if now else utcnow()
        pending = {
            "creator_id": principal.id,
            "completed": False,
            "notification_sent": False,
        }
        candidates = list(
            self.db["task"].find(
                {**pending, "due_date": {"$gt": now, "$lt": now + DEADLINE_WINDOW}},
            ).sort("due_date", ASCENDING)
        )
        claimed = []
        for c in candidates:
            task = self.db["task"].find_one_and_update(
                {**pending, "_id": c["_id"]},
                {"$set": {"notification_sent": True}},
                return_document=ReturnDocument.AFTER,
            )
            if task:
                claimed.append(serialize_doc(task))
        if claimed:
            logger.info("Deadline sweep for %s claimed %d task(s)", principal.id, len(claimed))
        return claimed
