"""
Populate a development database with sample campus data.

    python seed.py           # insert sample data
    python seed.py --drop    # clear the collections first

Every seeded account uses the password `password123`.
"""
import argparse
from datetime import timedelta

from pymongo.database import Database

from config import Settings
from database import connect, create_document, ensure_indexes, utcnow
from logging_config import get_logger, setup_logging
from security import PasswordVerifier

logger = get_logger("seed")

COLLECTIONS = ("user", "subject", "assignment", "grade", "message", "alumni_message", "academic_calendar", "task")
SEED_PASSWORD = "password123"

USERS = [
    {"name": "Dr. Meera Rao", "email": "meera.rao@campus.edu", "role": "teacher", "degree": "BCA", "department": "Computer Science"},
    {"name": "Prof. Arun Das", "email": "arun.das@campus.edu", "role": "teacher", "degree": "MSc", "department": "Maths"},
    {"name": "Priya Nair", "email": "priya.nair@campus.edu", "role": "student", "degree": "BCA", "department": "Computer Science"},
    {"name": "Rahul Verma", "email": "rahul.verma@campus.edu", "role": "student", "degree": "BCA", "department": "Computer Science"},
    {"name": "Sneha Iyer", "email": "sneha.iyer@campus.edu", "role": "student", "degree": "MSc", "department": "Maths"},
    {"name": "Karthik Menon", "email": "karthik.menon@campus.edu", "role": "alumni", "degree": "BCA", "department": "Computer Science",
     "additional_info": "Software engineer, class of 2019"},
    {"name": "Anita Joseph", "email": "anita.joseph@campus.edu", "role": "alumni", "degree": "MSc", "department": "Maths",
     "additional_info": "Data scientist, class of 2018"},
]

SUBJECTS = [
    {
        "title": "Data Structures",
        "degree": "BCA",
        "department": "Computer Science",
        "units": [
            {"title": "Linear Structures", "sections": [
                {"title": "Arrays and Lists", "content": "Contiguous storage, dynamic arrays, linked lists.", "files": []},
                {"title": "Stacks and Queues", "content": "LIFO and FIFO structures and their uses.", "files": []},
            ]},
            {"title": "Trees", "sections": [
                {"title": "Binary Search Trees", "content": "Insertion, deletion and traversal.", "files": []},
            ]},
        ],
    },
    {"title": "Database Systems", "degree": "BCA", "department": "Computer Science", "units": []},
    {"title": "Linear Algebra", "degree": "MSc", "department": "Maths", "units": []},
]

CALENDAR = [
    {"day": "Monday", "date": "2025-06-02", "description": "Semester begins"},
    {"day": "Friday", "date": "2025-08-15", "description": "Independence Day holiday"},
    {"day": "Monday", "date": "2025-09-22", "description": "Cycle test 1"},
    {"day": "Monday", "date": "2025-11-03", "description": "Cycle test 2"},
    {"day": "Wednesday", "date": "2025-11-26", "description": "Semester examinations begin"},
]


def drop_all(db: Database) -> None:
    for name in COLLECTIONS:
        db[name].delete_many({})
    logger.info("Cleared %d collections", len(COLLECTIONS))


def seed(db: Database, passwords: PasswordVerifier) -> None:
    digest = passwords.hash(SEED_PASSWORD)
    users = {u["email"]: create_document(db, "user", {**u, "password_hash": digest}) for u in USERS}
    logger.info("Users seeded")

    teachers = {u["department"]: str(u["_id"]) for u in users.values() if u["role"] == "teacher"}
    subjects = [create_document(db, "subject", {**s, "creator_id": teachers[s["department"]]}) for s in SUBJECTS]
    logger.info("Subjects seeded")

    now = utcnow()
    ds = subjects[0]
    create_document(db, "assignment", {
        "title": "Implement a linked list",
        "description": "Singly linked list with insert, delete and search.",
        "due_date": now + timedelta(days=7),
        "subject_id": str(ds["_id"]),
        "creator_id": ds["creator_id"],
        "file": None,
        "submissions": [],
    })
    logger.info("Assignments seeded")

    students = [u for u in users.values() if u["role"] == "student"]
    for student, subject, scores in [
        (students[0], subjects[0], (42, 45, 18)),
        (students[1], subjects[0], (35, 38, 15)),
        (students[2], subjects[2], (47, 44, 19)),
    ]:
        create_document(db, "grade", {
            "student_id": str(student["_id"]),
            "subject_id": str(subject["_id"]),
            "cycle_test1": scores[0],
            "cycle_test2": scores[1],
            "assignments": scores[2],
        })
    logger.info("Grades seeded")

    create_document(db, "message", {"text": "Welcome to Data Structures!", "sender_id": ds["creator_id"], "subject_id": str(ds["_id"])})
    create_document(db, "message", {"text": "Will the linked list assignment be graded on style?", "sender_id": str(students[0]["_id"]), "subject_id": str(ds["_id"])})
    logger.info("Messages seeded")

    for u in users.values():
        if u["role"] == "alumni":
            create_document(db, "alumni_message", {
                "text": f"Hi everyone, {u['name']} here. Happy to answer questions about careers.",
                "sender_id": str(u["_id"]),
                "degree": u["degree"],
                "department": u["department"],
            })
    logger.info("Alumni messages seeded")

    for entry in CALENDAR:
        create_document(db, "academic_calendar", entry)
    logger.info("Academic calendar seeded")

    for offset, text, priority in [(timedelta(hours=12), "Finish linked list assignment", "high"),
                                   (timedelta(days=3), "Revise trees for cycle test", "medium")]:
        create_document(db, "task", {
            "text": text,
            "category": "study",
            "priority": priority,
            "due_date": now + offset,
            "completed": False,
            "creator_id": str(students[0]["_id"]),
            "notification_sent": False,
        })
    logger.info("Tasks seeded")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed the campus portal database with sample data")
    parser.add_argument("--drop", action="store_true", help="clear all collections before seeding")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_format)
    db = connect(settings)
    if args.drop:
        drop_all(db)
    ensure_indexes(db)
    seed(db, PasswordVerifier(settings.bcrypt_rounds))
    logger.info("Database seeded successfully")


if __name__ == "__main__":
    main()
