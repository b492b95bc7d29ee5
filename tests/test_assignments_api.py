"""
Assignments, submissions and file storage.

Submissions are append-only: a student may submit several times and every
submission is kept. Students only ever see their own submissions.
"""
import io
from pathlib import Path

from bson import ObjectId

from storage import LocalFileStorage


def _subject(client, teacher, degree="BCA", department="Computer Science"):
    r = client.post(
        "/api/subjects",
        json={"title": "Data Structures", "degree": degree, "department": department},
        headers=teacher["headers"],
    )
    return r.json()


def _assignment(client, teacher, subject, with_file=False):
    files = {"file": ("brief.pdf", b"%PDF-1.4 brief", "application/pdf")} if with_file else None
    r = client.post(
        f"/api/assignments/{subject['id']}",
        data={"title": "Linked lists", "description": "Implement one", "dueDate": "2030-01-15T17:00:00Z"},
        files=files,
        headers=teacher["headers"],
    )
    assert r.status_code == 201, r.text
    return r.json()


def _submit(client, student, assignment, content=b"def solve(): pass"):
    return client.post(
        f"/api/assignments/{assignment['id']}/submit",
        files={"file": ("solution.py", content, "text/x-python")},
        headers=student["headers"],
    )


def test_teacher_creates_assignment_with_file(client, accounts):
    teacher = accounts.signup("teacher")
    subject = _subject(client, teacher)
    assignment = _assignment(client, teacher, subject, with_file=True)
    assert assignment["subject_id"] == subject["id"]
    assert assignment["creator_id"] == teacher["id"]
    assert assignment["file"]["name"] == "brief.pdf"
    assert assignment["file"]["url"].startswith("/api/files/")
    assert assignment["due_date"].startswith("2030-01-15T17:00:00")
    assert assignment["submissions"] == []


def test_only_subject_owner_creates_assignments(client, ctx, accounts):
    owner = accounts.signup("teacher")
    other = accounts.signup("teacher")
    subject = _subject(client, owner)
    r = client.post(
        f"/api/assignments/{subject['id']}",
        data={"title": "t", "description": "d", "dueDate": "2030-01-15T17:00:00Z"},
        files={"file": ("x.txt", b"x", "text/plain")},
        headers=other["headers"],
    )
    assert r.status_code == 403
    assert ctx.db["assignment"].count_documents({}) == 0
    # nothing written to disk for a rejected request
    assert list(Path(ctx.settings.upload_dir).iterdir()) == []


def test_assignment_for_unknown_subject_is_404(client, accounts):
    teacher = accounts.signup("teacher")
    r = client.post(
        f"/api/assignments/{ObjectId()}",
        data={"title": "t", "description": "d", "dueDate": "2030-01-15T17:00:00Z"},
        headers=teacher["headers"],
    )
    assert r.status_code == 404


def test_student_submissions_are_appended(client, ctx, accounts):
    teacher = accounts.signup("teacher")
    student = accounts.signup("student")
    assignment = _assignment(client, teacher, _subject(client, teacher))

    first = _submit(client, student, assignment, b"v1")
    second = _submit(client, student, assignment, b"v2")
    assert first.status_code == 201
    assert first.json()["message"] == "Assignment submitted successfully"
    assert second.status_code == 201

    stored = ctx.db["assignment"].find_one({"_id": ObjectId(assignment["id"])})
    assert len(stored["submissions"]) == 2
    assert {s["student_id"] for s in stored["submissions"]} == {student["id"]}
    urls = [s["file"]["url"] for s in stored["submissions"]]
    assert len(set(urls)) == 2


def test_submit_requires_a_file(client, accounts):
    teacher = accounts.signup("teacher")
    student = accounts.signup("student")
    assignment = _assignment(client, teacher, _subject(client, teacher))
    r = client.post(f"/api/assignments/{assignment['id']}/submit", headers=student["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "No file uploaded"


def test_only_students_in_scope_submit(client, accounts):
    teacher = accounts.signup("teacher")
    assignment = _assignment(client, teacher, _subject(client, teacher))
    outsider = accounts.signup("student", degree="MSc", department="Maths")
    assert _submit(client, outsider, assignment).status_code == 403
    assert _submit(client, teacher, assignment).status_code == 403


def test_submit_to_unknown_assignment_is_404(client, accounts):
    student = accounts.signup("student")
    assert _submit(client, student, {"id": str(ObjectId())}).status_code == 404


def test_listing_hides_other_students_submissions(client, accounts):
    teacher = accounts.signup("teacher")
    subject = _subject(client, teacher)
    assignment = _assignment(client, teacher, subject)
    s1 = accounts.signup("student")
    s2 = accounts.signup("student")
    _submit(client, s1, assignment)
    _submit(client, s2, assignment)

    mine = client.get(f"/api/assignments/{subject['id']}", headers=s1["headers"]).json()
    assert [s["student_id"] for s in mine[0]["submissions"]] == [s1["id"]]

    everything = client.get(f"/api/assignments/{subject['id']}", headers=teacher["headers"]).json()
    assert {s["student_id"] for s in everything[0]["submissions"]} == {s1["id"], s2["id"]}


def test_listing_is_scoped_for_students_and_other_teachers(client, accounts):
    teacher = accounts.signup("teacher")
    subject = _subject(client, teacher)
    _assignment(client, teacher, subject)
    outsider = accounts.signup("student", degree="MSc", department="Maths")
    other_teacher = accounts.signup("teacher")
    assert client.get(f"/api/assignments/{subject['id']}", headers=outsider["headers"]).status_code == 403
    assert client.get(f"/api/assignments/{subject['id']}", headers=other_teacher["headers"]).status_code == 403


def test_upload_and_download_roundtrip(client, accounts):
    student = accounts.signup("student")
    r = client.post("/api/upload", files={"file": ("notes.txt", b"hello campus", "text/plain")}, headers=student["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "File uploaded successfully"
    assert body["name"] == "notes.txt"

    r = client.get(body["url"], headers=student["headers"])
    assert r.status_code == 200
    assert r.content == b"hello campus"
    assert "attachment" in r.headers["content-disposition"]


def test_download_requires_auth_and_existing_file(client, accounts):
    student = accounts.signup("student")
    r = client.post("/api/upload", files={"file": ("notes.txt", b"x", "text/plain")}, headers=student["headers"])
    assert client.get(r.json()["url"]).status_code == 401
    assert client.get("/api/files/missing.txt", headers=student["headers"]).status_code == 404


def test_upload_without_file_is_400(client, accounts):
    student = accounts.signup("student")
    assert client.post("/api/upload", headers=student["headers"]).status_code == 400


def test_storage_generates_unique_names(tmp_path):
    storage = LocalFileStorage(str(tmp_path))
    a = storage.save(io.BytesIO(b"one"), "same.txt")
    b = storage.save(io.BytesIO(b"two"), "same.txt")
    assert a["url"] != b["url"]
    assert a["name"] == b["name"] == "same.txt"
    assert len(list(tmp_path.iterdir())) == 2


def test_storage_sanitizes_names_and_refuses_traversal(tmp_path):
    storage = LocalFileStorage(str(tmp_path / "files"))
    (tmp_path / "secret.txt").write_text("top secret")
    ref = storage.save(io.BytesIO(b"x"), "../../etc/pass wd")
    stored = ref["url"].rsplit("/", 1)[1]
    assert "/" not in stored and ".." not in stored
    assert storage.resolve(stored) is not None
    assert storage.resolve("../secret.txt") is None
    assert storage.resolve(".hidden") is None
    assert storage.resolve("") is None
