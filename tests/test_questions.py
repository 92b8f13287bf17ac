from drivetheory.features.audit.model import AdminAuditLog
from drivetheory.models.enums import AuditAction


QUESTION = {
    "category": "signs",
    "question": "What does a red octagon mean?",
    "options": ["Stop", "Yield", "No entry"],
    "correct_answer": 0,
}


def test_admin_creates_question(client, admin_headers):
    r = client.post("/api/v1/questions", json=QUESTION, headers=admin_headers)
    assert r.status_code == 201
    assert r.json()["options"] == ["Stop", "Yield", "No entry"]


def test_user_cannot_create_question(client, headers):
    r = client.post("/api/v1/questions", json=QUESTION, headers=headers)
    assert r.status_code == 403


def test_correct_answer_must_index_an_option(client, admin_headers):
    r = client.post("/api/v1/questions", json=dict(QUESTION, correct_answer=3), headers=admin_headers)
    assert r.status_code == 422


def test_list_and_filter_by_category(client, headers, questions):
    r = client.get("/api/v1/questions", headers=headers)
    assert r.status_code == 200
    assert len(r.json()) == 25

    r = client.get("/api/v1/questions", params={"category": "rules"}, headers=headers)
    assert {q["category"] for q in r.json()} == {"rules"}

    r = client.get("/api/v1/questions/categories", headers=headers)
    assert r.json() == ["rules", "signs"]


def test_bulk_import(client, admin_headers):
    r = client.post("/api/v1/questions/bulk", json=[QUESTION, dict(QUESTION, question="Second?")], headers=admin_headers)
    assert r.status_code == 201
    assert len(r.json()) == 2


def test_update_rejects_out_of_range_answer(client, admin_headers, questions):
    qid = questions[0].id
    r = client.patch(f"/api/v1/questions/{qid}", json={"correct_answer": 9}, headers=admin_headers)
    assert r.status_code == 400

    r = client.patch(f"/api/v1/questions/{qid}", json={"correct_answer": 3}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["correct_answer"] == 3


def test_delete_question(client, admin_headers, headers, questions):
    qid = questions[0].id
    assert client.delete(f"/api/v1/questions/{qid}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/v1/questions/{qid}", headers=headers).status_code == 404
    assert client.delete(f"/api/v1/questions/{qid}", headers=admin_headers).status_code == 404


def test_update_rejects_explicit_nulls(client, admin_headers, questions):
    qid = questions[0].id
    for field in ("options", "correct_answer", "category", "question"):
        r = client.patch(f"/api/v1/questions/{qid}", json={field: None}, headers=admin_headers)
        assert r.status_code == 422, field

    r = client.patch(f"/api/v1/questions/{qid}", json={"question": "Reworded?"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["options"] == ["A", "B", "C", "D"]


def test_question_changes_are_audited(client, db, admin, admin_headers):
    qid = client.post("/api/v1/questions", json=QUESTION, headers=admin_headers).json()["id"]
    client.patch(f"/api/v1/questions/{qid}", json={"correct_answer": 2}, headers=admin_headers)
    client.delete(f"/api/v1/questions/{qid}", headers=admin_headers)

    logs = db.query(AdminAuditLog).order_by(AdminAuditLog.id).all()
    assert [log.action for log in logs] == [
        AuditAction.QUESTION_CREATED, AuditAction.QUESTION_UPDATED, AuditAction.QUESTION_DELETED,
    ]
    assert {log.admin_id for log in logs} == {admin.id}
    assert {log.target_id for log in logs} == {qid}

    updated = logs[1]
    assert updated.details["before"]["correct_answer"] == 0
    assert updated.details["after"]["correct_answer"] == 2
    assert updated.user_agent == "testclient"
    assert updated.ip_address == "testclient"
    assert logs[2].details["before"]["question"] == QUESTION["question"]


def test_bulk_import_is_audited_once(client, db, admin_headers):
    created = client.post("/api/v1/questions/bulk", json=[QUESTION, QUESTION], headers=admin_headers).json()
    log = db.query(AdminAuditLog).one()
    assert log.action == AuditAction.QUESTIONS_IMPORTED
    assert log.details["after"]["ids"] == [q["id"] for q in created]


def test_rejected_update_is_not_audited(client, db, admin_headers, questions):
    r = client.patch(f"/api/v1/questions/{questions[0].id}", json={"correct_answer": 9}, headers=admin_headers)
    assert r.status_code == 400
    assert db.query(AdminAuditLog).count() == 0
