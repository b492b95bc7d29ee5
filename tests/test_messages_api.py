"""
Class messages (per subject) and alumni messages (per degree and department).
"""


def _subject(client, teacher, degree="BCA", department="Computer Science"):
    return client.post(
        "/api/subjects",
        json={"title": "Data Structures", "degree": degree, "department": department},
        headers=teacher["headers"],
    ).json()


def test_subject_messages_in_creation_order_with_sender(client, accounts):
    teacher = accounts.signup("teacher", name="Dr. Rao")
    student = accounts.signup("student", name="Priya")
    subject = _subject(client, teacher)

    r1 = client.post("/api/messages", json={"text": "Welcome!", "subjectId": subject["id"]}, headers=teacher["headers"])
    r2 = client.post("/api/messages", json={"text": "Thanks", "subjectId": subject["id"]}, headers=student["headers"])
    assert r1.status_code == 201
    assert r1.json()["sender"] == {"id": teacher["id"], "name": "Dr. Rao", "role": "teacher"}
    assert r2.status_code == 201

    messages = client.get(f"/api/messages/{subject['id']}", headers=student["headers"]).json()
    assert [m["text"] for m in messages] == ["Welcome!", "Thanks"]
    assert messages[1]["sender"]["name"] == "Priya"


def test_subject_messages_are_scoped(client, ctx, accounts):
    teacher = accounts.signup("teacher")
    subject = _subject(client, teacher)
    outsider = accounts.signup("student", degree="MSc", department="Maths")
    other_teacher = accounts.signup("teacher")

    assert client.get(f"/api/messages/{subject['id']}", headers=outsider["headers"]).status_code == 403
    r = client.post("/api/messages", json={"text": "hi", "subjectId": subject["id"]}, headers=outsider["headers"])
    assert r.status_code == 403
    r = client.post("/api/messages", json={"text": "hi", "subjectId": subject["id"]}, headers=other_teacher["headers"])
    assert r.status_code == 403
    assert ctx.db["message"].count_documents({}) == 0


def test_empty_message_is_rejected(client, accounts):
    teacher = accounts.signup("teacher")
    subject = _subject(client, teacher)
    r = client.post("/api/messages", json={"text": "", "subjectId": subject["id"]}, headers=teacher["headers"])
    assert r.status_code == 400


def test_alumni_messages_are_auto_scoped(client, ctx, accounts):
    cs_alum = accounts.signup("alumni", degree="BCA", department="Computer Science")
    cs_student = accounts.signup("student", degree="BCA", department="Computer Science")
    maths_alum = accounts.signup("alumni", degree="MSc", department="Maths")

    r = client.post("/api/alumni-messages", json={"text": "Now at a startup"}, headers=cs_alum["headers"])
    assert r.status_code == 201
    assert r.json()["degree"] == "BCA"
    assert r.json()["department"] == "Computer Science"
    client.post("/api/alumni-messages", json={"text": "Hello maths"}, headers=maths_alum["headers"])
    client.post("/api/alumni-messages", json={"text": "Any tips?"}, headers=cs_student["headers"])

    seen = [m["text"] for m in client.get("/api/alumni-messages", headers=cs_student["headers"]).json()]
    assert seen == ["Now at a startup", "Any tips?"]
    seen = [m["text"] for m in client.get("/api/alumni-messages", headers=maths_alum["headers"]).json()]
    assert seen == ["Hello maths"]


def test_alumni_message_ignores_client_supplied_scope(client, ctx, accounts):
    alum = accounts.signup("alumni", degree="BCA", department="Computer Science")
    client.post(
        "/api/alumni-messages",
        json={"text": "sneaky", "degree": "MSc", "department": "Maths"},
        headers=alum["headers"],
    )
    stored = ctx.db["alumni_message"].find_one({"text": "sneaky"})
    assert (stored["degree"], stored["department"]) == ("BCA", "Computer Science")
