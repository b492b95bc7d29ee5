"""
Academic calendar: teacher-only edits and wholesale JSON import.
"""
import json

import pytest
from bson import ObjectId

from errors import ValidationError
from managers import normalize_date


def _upload(client, user, payload, name="calendar.json"):
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return client.post(
        "/api/academic-calendar/upload",
        files={"file": (name, raw, "application/json")},
        headers=user["headers"],
    )


@pytest.mark.parametrize(
    "raw,expected",
    [("05.11.2025", "2025-11-05"), ("5.1.2026", "2026-01-05"), ("2025-11-05", "2025-11-05"), (None, None)],
)
def test_normalize_date(raw, expected):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize("raw", ["31.02.2025", "2025/11/05", "tomorrow", "05-11-2025"])
def test_normalize_date_rejects_invalid(raw):
    with pytest.raises(ValidationError):
        normalize_date(raw)


def test_import_normalizes_dates_and_replaces_calendar(client, ctx, accounts):
    teacher = accounts.signup("teacher")
    client.post("/api/academic-calendar", json={"day": "Mon", "date": "2025-06-02", "description": "Old"}, headers=teacher["headers"])
    client.post("/api/academic-calendar", json={"day": "Tue", "date": "2025-06-03", "description": "Old 2"}, headers=teacher["headers"])

    r = _upload(client, teacher, [
        {"day": "Wednesday", "date": "05.11.2025", "description": "Cycle test"},
        {"day": "Friday", "date": "7.11.2025", "description": "Sports day"},
    ])
    assert r.status_code == 201
    assert [e["date"] for e in r.json()] == ["2025-11-05", "2025-11-07"]

    entries = client.get("/api/academic-calendar", headers=teacher["headers"]).json()
    assert len(entries) == 2
    assert [e["description"] for e in entries] == ["Cycle test", "Sports day"]
    assert ctx.db["academic_calendar"].count_documents({}) == 2


def test_bad_import_leaves_calendar_untouched(client, ctx, accounts):
    teacher = accounts.signup("teacher")
    client.post("/api/academic-calendar", json={"day": "Mon", "date": "02.06.2025", "description": "Keep"}, headers=teacher["headers"])

    assert _upload(client, teacher, b"{not json").json()["message"] == "Invalid JSON file"
    assert _upload(client, teacher, {"date": "05.11.2025"}).status_code == 400
    assert _upload(client, teacher, [{"day": "x", "date": "99.99.2025"}]).status_code == 400
    assert _upload(client, teacher, [{"day": "x"}]).status_code == 400
    assert ctx.db["academic_calendar"].count_documents({}) == 1


def test_import_requires_file_and_teacher(client, accounts):
    teacher = accounts.signup("teacher")
    student = accounts.signup("student")
    r = client.post("/api/academic-calendar/upload", headers=teacher["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "No file uploaded"
    assert _upload(client, student, [{"date": "05.11.2025"}]).status_code == 403


def test_calendar_crud(client, accounts):
    teacher = accounts.signup("teacher")
    student = accounts.signup("student")

    r = client.post("/api/academic-calendar", json={"day": "Mon", "date": "01.12.2025", "description": "Exams"}, headers=teacher["headers"])
    assert r.status_code == 201
    entry = r.json()
    assert entry["date"] == "2025-12-01"

    r = client.put(f"/api/academic-calendar/{entry['id']}", json={"description": "Final exams"}, headers=teacher["headers"])
    assert r.status_code == 200
    assert r.json()["description"] == "Final exams"
    assert r.json()["date"] == "2025-12-01"

    assert client.get("/api/academic-calendar", headers=student["headers"]).status_code == 200
    assert client.post("/api/academic-calendar", json={"description": "x"}, headers=student["headers"]).status_code == 403
    assert client.delete(f"/api/academic-calendar/{entry['id']}", headers=student["headers"]).status_code == 403

    r = client.delete(f"/api/academic-calendar/{entry['id']}", headers=teacher["headers"])
    assert r.json() == {"message": "Calendar entry deleted successfully"}
    assert client.delete(f"/api/academic-calendar/{entry['id']}", headers=teacher["headers"]).status_code == 404
    assert client.put(f"/api/academic-calendar/{ObjectId()}", json={"day": "x"}, headers=teacher["headers"]).status_code == 404
