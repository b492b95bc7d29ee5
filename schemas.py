"""
Database Schemas for the Campus Portal

Each Pydantic model corresponds to a MongoDB collection. The collection name is the
snake_case of the class name (e.g., AlumniMessage -> "alumni_message"), except for
CalendarEntry, which lives in "academic_calendar".
"""
from typing import Optional, Literal, List
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

Role = Literal["student", "teacher", "alumni"]
ROLES = ("student", "teacher", "alumni")


class FileRef(BaseModel):
    name: str
    url: str


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Password hash")
    role: Role = Field(..., description="User role, fixed at signup")
    degree: str
    department: str
    additional_info: Optional[str] = Field(None, description="Free-text profile info")


class Section(BaseModel):
    title: str = ""
    content: str = ""
    files: List[FileRef] = []


class Unit(BaseModel):
    title: str = ""
    sections: List[Section] = []


class Subject(BaseModel):
    title: str
    degree: str
    department: str
    creator_id: str = Field(..., description="Teacher user id")
    units: List[Unit] = []


class Submission(BaseModel):
    student_id: str
    file: FileRef
    submitted_at: datetime


class Assignment(BaseModel):
    title: str
    description: str
    due_date: datetime
    subject_id: str
    creator_id: str
    file: Optional[FileRef] = None
    submissions: List[Submission] = []


class Grade(BaseModel):
    student_id: str
    subject_id: str
    cycle_test1: float = 0
    cycle_test2: float = 0
    assignments: float = 0


class Message(BaseModel):
    text: str = Field(..., min_length=1)
    sender_id: str
    subject_id: str


class AlumniMessage(BaseModel):
    text: str = Field(..., min_length=1)
    sender_id: str
    degree: str
    department: str


class Task(BaseModel):
    text: str
    category: str
    priority: str
    due_date: datetime
    completed: bool = False
    creator_id: str
    notification_sent: bool = False


class CalendarEntry(BaseModel):
    day: Optional[str] = None
    date: Optional[str] = Field(None, description="YYYY-MM-DD")
    description: Optional[str] = None
