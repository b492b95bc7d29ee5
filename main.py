import os
from datetime import datetime
from typing import Optional, List, Any, Dict

from fastapi import APIRouter, FastAPI, Depends, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from config import Settings
from context import AppContext, build_context
from errors import NotFoundError, ValidationError, install_error_handlers, unexpected_error_response
from guard import Principal, current_user, require_role
from logging_config import RequestLoggingMiddleware, get_logger, setup_logging
from schemas import Role

logger = get_logger("app")

router = APIRouter(prefix="/api")


def get_ctx(request: Request) -> AppContext:
    return request.app.state.context


# ----------------------
# Request models
# ----------------------
class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role
    name: str = Field(..., min_length=1)
    degree: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    additional_info: Optional[str] = Field(None, alias="additionalInfo")


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    token: str
    role: str
    name: str


class SubjectCreate(RequestModel):
    title: str
    degree: str
    department: str


class UnitsUpdate(RequestModel):
    units: List[Dict[str, Any]]


class GradeRequest(RequestModel):
    student: str
    subject: str
    cycle_test1: float = Field(0, ge=0, alias="cycleTest1")
    cycle_test2: float = Field(0, ge=0, alias="cycleTest2")
    assignments: float = Field(0, ge=0)


class MessageCreate(RequestModel):
    text: str = Field(..., min_length=1)
    subject_id: str = Field(..., alias="subjectId")


class AlumniMessageCreate(RequestModel):
    text: str = Field(..., min_length=1)


class CalendarEntryIn(RequestModel):
    day: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None


class TaskCreate(RequestModel):
    text: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    priority: str = Field(..., min_length=1)
    due_date: datetime = Field(..., alias="dueDate")


class TaskUpdate(RequestModel):
    text: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    completed: Optional[bool] = None


# ----------------------
# Auth endpoints
# ----------------------
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(payload: SignupRequest, ctx: AppContext = Depends(get_ctx)):
    user, token = ctx.identities.signup(
        email=payload.email,
        password=payload.password,
        role=payload.role,
        name=payload.name,
        degree=payload.degree,
        department=payload.department,
        additional_info=payload.additional_info,
    )
    return AuthResponse(token=token, role=user["role"], name=user["name"])


@router.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, ctx: AppContext = Depends(get_ctx)):
    user, token = ctx.identities.login(payload.email, payload.password, payload.role)
    return AuthResponse(token=token, role=user["role"], name=user.get("name", ""))


@router.get("/user")
def me(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.identities.get(current.id)


# ----------------------
# Subjects
# ----------------------
@router.post("/subjects", status_code=201)
def create_subject(body: SubjectCreate, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.subjects.create(current, body.title, body.degree, body.department)


@router.get("/subjects")
def my_subjects(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.subjects.list_for(current)


@router.get("/subjects/{role}")
def subjects_by_role(role: str, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.subjects.list_by_role(current, role)


@router.put("/subjects/{subject_id}/units")
def update_units(subject_id: str, body: UnitsUpdate, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.subjects.update_units(current, subject_id, body.units)


# ----------------------
# Students
# ----------------------
@router.get("/students")
def list_students(current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.identities.list_students()


@router.get("/students/{subject_id}")
def subject_students(subject_id: str, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.grades.roster(current, subject_id)


# ----------------------
# Files
# ----------------------
@router.post("/upload")
def upload_file(file: Optional[UploadFile] = File(None), current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    ref = ctx.storage.save(file.file, file.filename)
    return {"message": "File uploaded successfully", **ref}


@router.get("/files/{filename}")
def download_file(filename: str, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    path = ctx.storage.resolve(filename)
    if path is None:
        raise NotFoundError("File")
    return FileResponse(path, filename=path.name)


# ----------------------
# Assignments
# ----------------------
@router.post("/assignments/{subject_id}", status_code=201)
def create_assignment(
    subject_id: str,
    title: str = Form(..., min_length=1),
    description: str = Form(..., min_length=1),
    due_date: datetime = Form(..., alias="dueDate"),
    file: Optional[UploadFile] = File(None),
    current: Principal = Depends(require_role("teacher")),
    ctx: AppContext = Depends(get_ctx),
):
    # ownership is checked before anything is written to disk
    ctx.assignments.authorize_create(current, subject_id)
    ref = ctx.storage.save(file.file, file.filename) if file is not None and file.filename else None
    return ctx.assignments.create(current, subject_id, title, description, due_date, ref)


@router.get("/assignments/{subject_id}")
def list_assignments(subject_id: str, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.assignments.list_for_subject(current, subject_id)


@router.post("/assignments/{assignment_id}/submit", status_code=201)
def submit_assignment(
    assignment_id: str,
    file: Optional[UploadFile] = File(None),
    current: Principal = Depends(require_role("student")),
    ctx: AppContext = Depends(get_ctx),
):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    ctx.assignments.authorize_submit(current, assignment_id)
    ref = ctx.storage.save(file.file, file.filename)
    submission = ctx.assignments.submit(current, assignment_id, ref)
    return {"message": "Assignment submitted successfully", "submission": submission}


# ----------------------
# Grades
# ----------------------
@router.post("/grades", status_code=201)
def submit_grades(body: GradeRequest, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    scores = {"cycle_test1": body.cycle_test1, "cycle_test2": body.cycle_test2, "assignments": body.assignments}
    return ctx.grades.submit(current, body.student, body.subject, scores)


@router.get("/grades/{subject_id}")
def list_grades(subject_id: str, student_id: Optional[str] = None, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.grades.list_for(current, subject_id, student_id)


# ----------------------
# Messages
# ----------------------
@router.get("/messages/{subject_id}")
def list_messages(subject_id: str, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.messages.list(current, subject_id)


@router.post("/messages", status_code=201)
def post_message(body: MessageCreate, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.messages.post(current, body.subject_id, body.text)


@router.get("/alumni-messages")
def list_alumni_messages(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.alumni_messages.list(current)


@router.post("/alumni-messages", status_code=201)
def post_alumni_message(body: AlumniMessageCreate, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.alumni_messages.post(current, body.text)


# ----------------------
# Academic calendar
# ----------------------
@router.get("/academic-calendar")
def list_calendar(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.calendar.list()


@router.post("/academic-calendar", status_code=201)
def add_calendar_entry(body: CalendarEntryIn, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.calendar.create(body.model_dump())


@router.put("/academic-calendar/{entry_id}")
def update_calendar_entry(entry_id: str, body: CalendarEntryIn, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    return ctx.calendar.update(entry_id, body.model_dump())


@router.delete("/academic-calendar/{entry_id}")
def delete_calendar_entry(entry_id: str, current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    ctx.calendar.delete(entry_id)
    return {"message": "Calendar entry deleted successfully"}


@router.post("/academic-calendar/upload", status_code=201)
def upload_calendar(file: Optional[UploadFile] = File(None), current: Principal = Depends(require_role("teacher")), ctx: AppContext = Depends(get_ctx)):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    return ctx.calendar.import_entries(file.file.read())


# ----------------------
# Tasks
# ----------------------
@router.post("/tasks", status_code=201)
def create_task(body: TaskCreate, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.tasks.create(current, body.text, body.category, body.priority, body.due_date)


@router.get("/tasks")
def list_tasks(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.tasks.list(current)


@router.get("/tasks/check-deadlines")
def check_deadlines(current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.tasks.check_deadlines(current)


@router.put("/tasks/{task_id}")
def update_task(task_id: str, body: TaskUpdate, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    return ctx.tasks.update(current, task_id, body.model_dump(exclude_unset=True))


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, current: Principal = Depends(current_user), ctx: AppContext = Depends(get_ctx)):
    ctx.tasks.delete(current, task_id)
    return {"message": "Task deleted successfully"}


# ----------------------
# App factory
# ----------------------
def create_app(context: Optional[AppContext] = None) -> FastAPI:
    if context is None:
        settings = Settings.from_env()
        setup_logging(settings.log_level, settings.log_format)
        context = build_context(settings)

    app = FastAPI(title="Campus Portal API")
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, error_response=unexpected_error_response)
    install_error_handlers(app)

    @app.get("/")
    def root():
        return {"message": "Campus Portal API running"}

    @app.get("/test")
    def test_database():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["collections"] = app.state.context.db.list_collection_names()
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            logger.warning("Health check could not reach the database: %s", e)
            response["database"] = "⚠️ Connected but error"
        return response

    app.include_router(router)
    logger.info("Campus Portal API ready")
    return app


if __name__ == "__main__":
    import uvicorn

    application = create_app()
    uvicorn.run(application, host="0.0.0.0", port=application.state.context.settings.port)
