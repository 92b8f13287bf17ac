from datetime import datetime, timedelta
import pytest
from conftest import auth_headers, make_payment
from drivetheory.core.config import settings
from drivetheory.features.payment.entitlement import EntitlementService
from drivetheory.features.payment.journey import apply_stage, new_journey
from drivetheory.features.payment.service import PaymentService
from drivetheory.models.enums import JourneyStatus, PackageType, PaymentStatus


def checkout(client, headers, package_type="daily", payment_method="mobilemoney"):
    r = client.post(
        "/api/v1/payments/checkout",
        json={"package_type": package_type, "payment_method": payment_method},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_package_catalogue(client):
    packages = {p["package_type"]: p for p in client.get("/api/v1/payments/packages").json()}
    assert packages["single"]["price"] == 200
    assert packages["daily"]["price"] == 800
    assert packages["weekly"]["price"] == 4000
    assert packages["monthly"]["price"] == 10000
    assert packages["monthly"]["currency"] == "RWF"


def test_valid_until_per_package():
    start = datetime(2024, 1, 31, 10, 0)
    assert PaymentService.calculate_valid_until(PackageType.SINGLE, start) == start + timedelta(hours=1)
    assert PaymentService.calculate_valid_until(PackageType.DAILY, start) == start + timedelta(days=1)
    assert PaymentService.calculate_valid_until(PackageType.WEEKLY, start) == start + timedelta(days=7)
    assert PaymentService.calculate_valid_until(PackageType.MONTHLY, start) == datetime(2024, 2, 29, 10, 0)


def test_checkout_creates_pending_payment(client, headers, user, gateway):
    body = checkout(client, headers, package_type="weekly")
    payment = body["payment"]
    assert payment["status"] == "pending"
    assert payment["amount"] == 4000
    assert body["tx_ref"].startswith("DRV_")
    assert body["tx_ref"].endswith(f"_{user.id}")
    assert body["link"] == f"https://checkout.test/{body['tx_ref']}"
    assert payment["metadata"]["journey"]["status"] == "initial"
    assert payment["metadata"]["payment_method"] == "mobilemoney"
    assert gateway.initiated[0]["amount"] == 4000


def test_gateway_failure_marks_payment_failed(client, db, headers, user, gateway):
    gateway.fail_initiate = True
    r = client.post("/api/v1/payments/checkout", json={"package_type": "daily"}, headers=headers)
    assert r.status_code == 502
    assert r.json()["code"] == "payment_gateway_error"

    payment = PaymentService.get_user_payments(db, user.id)[0]
    assert payment.status == PaymentStatus.FAILED
    assert payment.meta["failure_reason"] == "Gateway unavailable"


def test_redirect_reconciliation_completes_payment(client, db, headers, user, gateway):
    body = checkout(client, headers)
    gateway.succeed(body["tx_ref"], 800)

    r = client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=headers)
    assert r.status_code == 200
    payment = r.json()
    assert payment["status"] == "completed"
    assert payment["metadata"]["verification_method"] == "redirect"
    assert payment["metadata"]["transaction_id"] == 4242
    assert EntitlementService.has_valid_payment(db, user.id)

    active = client.get("/api/v1/payments/active", headers=headers)
    assert active.status_code == 200
    assert active.json()["id"] == payment["id"]


def test_reconcile_is_idempotent(client, db, headers, gateway):
    body = checkout(client, headers)
    gateway.succeed(body["tx_ref"], 800)
    first = PaymentService.reconcile(db, body["tx_ref"], gateway, verification_method="webhook")
    verified_at = first.meta["verified_at"]

    gateway.fail(body["tx_ref"])
    second = PaymentService.reconcile(db, body["tx_ref"], gateway, verification_method="redirect")
    assert second.status == PaymentStatus.COMPLETED
    assert second.meta["verified_at"] == verified_at
    assert gateway.verified == [body["tx_ref"]]


def test_underpayment_is_not_completed(client, db, headers, gateway):
    body = checkout(client, headers)
    gateway.succeed(body["tx_ref"], 100)
    payment = PaymentService.reconcile(db, body["tx_ref"], gateway, verification_method="redirect")
    assert payment.status == PaymentStatus.FAILED
    assert "Amount mismatch" in payment.meta["failure_reason"]


def test_failed_verification_records_reason(client, headers, gateway):
    body = checkout(client, headers)
    gateway.fail(body["tx_ref"], reason="Declined by issuer")
    payment = client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=headers).json()
    assert payment["status"] == "failed"
    assert payment["metadata"]["failure_reason"] == "Declined by issuer"


def test_pending_verification_changes_nothing(client, headers, gateway):
    body = checkout(client, headers)
    payment = client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=headers).json()
    assert payment["status"] == "pending"


def test_status_of_foreign_payment_is_hidden(client, headers, other_user, gateway):
    body = checkout(client, headers)
    r = client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=auth_headers(other_user))
    assert r.status_code == 404


def test_retry_issues_new_reference(client, db, headers, gateway):
    body = checkout(client, headers)
    gateway.fail(body["tx_ref"])
    client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=headers)

    r = client.post(
        "/api/v1/payments/retry",
        json={"payment_id": body["payment"]["id"], "payment_method": "card"},
        headers=headers,
    )
    assert r.status_code == 200
    retried = r.json()
    assert retried["tx_ref"] != body["tx_ref"]
    assert retried["payment"]["status"] == "pending"
    assert retried["payment"]["metadata"]["retry_count"] == 1
    assert retried["payment"]["metadata"]["previous_tx_refs"] == [body["tx_ref"]]
    assert "failure_reason" not in retried["payment"]["metadata"]
    assert gateway.initiated[-1]["payment_method"] == "card"


def test_retry_rules(client, db, headers, user, other_user, gateway):
    completed = make_payment(db, user)
    r = client.post("/api/v1/payments/retry", json={"payment_id": completed.id}, headers=headers)
    assert r.status_code == 409

    foreign = make_payment(db, other_user, status=PaymentStatus.FAILED)
    r = client.post("/api/v1/payments/retry", json={"payment_id": foreign.id}, headers=headers)
    assert r.status_code == 403

    r = client.post("/api/v1/payments/retry", json={"payment_id": 9999}, headers=headers)
    assert r.status_code == 404


def test_webhook_requires_signature(client, headers, gateway, monkeypatch):
    monkeypatch.setattr(settings, "FLUTTERWAVE_WEBHOOK_HASH", "whsec")
    body = checkout(client, headers)
    gateway.succeed(body["tx_ref"], 800)
    payload = {"event": "charge.completed", "data": {"tx_ref": body["tx_ref"], "status": "successful"}}

    assert client.post("/api/v1/payments/webhook", json=payload).status_code == 401
    assert client.post("/api/v1/payments/webhook", json=payload, headers={"verif-hash": "nope"}).status_code == 401

    r = client.post("/api/v1/payments/webhook", json=payload, headers={"verif-hash": "whsec"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "payment_status": "completed"}


def test_webhook_without_tx_ref(client, monkeypatch):
    monkeypatch.setattr(settings, "FLUTTERWAVE_WEBHOOK_HASH", "whsec")
    r = client.post("/api/v1/payments/webhook", json={"data": {}}, headers={"verif-hash": "whsec"})
    assert r.status_code == 400


def test_history_lists_own_payments(client, db, headers, user, other_user):
    make_payment(db, user)
    make_payment(db, user, status=PaymentStatus.FAILED)
    make_payment(db, other_user)
    history = client.get("/api/v1/payments/history", headers=headers).json()
    assert len(history) == 2
    assert {p["user_id"] for p in history} == {user.id}


def test_admin_refund_revokes_access(client, db, user, admin_headers):
    payment = make_payment(db, user)
    r = client.patch(
        f"/api/v1/admin/payments/{payment.id}", json={"status": "refunded", "reason": "duplicate"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    meta = r.json()["metadata"]
    assert meta["status_history"][-1]["reason"] == "duplicate"
    assert meta["refunded_at"]
    assert not EntitlementService.has_valid_payment(db, user.id)

    r = client.patch(f"/api/v1/admin/payments/{payment.id}", json={"status": "pending"}, headers=admin_headers)
    assert r.status_code == 409

    logs = client.get("/api/v1/admin/audit-logs", params={"action": "payment_status_changed"}, headers=admin_headers).json()
    assert len(logs) == 1
    assert logs[0]["target_id"] == payment.id
    assert logs[0]["details"]["before"] == {"status": "completed"}
    assert logs[0]["details"]["after"] == {"status": "refunded"}
    assert logs[0]["details"]["message"] == "duplicate"


def test_admin_lists_payments_by_status(client, db, user, admin_headers):
    make_payment(db, user)
    make_payment(db, user, status=PaymentStatus.FAILED)
    r = client.get("/api/v1/admin/payments", params={"status": "failed"}, headers=admin_headers)
    assert [p["status"] for p in r.json()] == ["failed"]


@pytest.mark.parametrize("status", list(PaymentStatus))
def test_expired_payment_never_grants_access(db, user, status):
    make_payment(db, user, status=status, valid_until=datetime.now() - timedelta(seconds=1))
    assert EntitlementService.get_active_payment(db, user.id) is None
    assert not EntitlementService.has_valid_payment(db, user.id)


def test_only_completed_payments_grant_access(db, user):
    make_payment(db, user, status=PaymentStatus.PENDING)
    make_payment(db, user, status=PaymentStatus.FAILED)
    assert not EntitlementService.has_valid_payment(db, user.id)
    make_payment(db, user)
    assert EntitlementService.has_valid_payment(db, user.id)


def test_journey_only_moves_forward():
    now = datetime(2024, 5, 1, 12, 0)
    journey = apply_stage(new_journey(now), JourneyStatus.EXAM_COMPLETED, questions_attempted=20, correct_answers=15, now=now)
    later = apply_stage(journey, JourneyStatus.EXAM_STARTED, now=now + timedelta(hours=1))

    assert later["status"] == "exam_completed"
    assert later["exam_started_at"] == (now + timedelta(hours=1)).isoformat()
    assert later["exam_completed_at"] == now.isoformat()
    assert later["total_questions_attempted"] == 20
    assert later["correct_answers"] == 15
    # the input is not mutated
    assert journey.get("exam_started_at") is None


def test_paid_superseded_reference_still_completes(client, db, headers, user, gateway):
    body = checkout(client, headers)
    old_ref = body["tx_ref"]
    r = client.post("/api/v1/payments/retry", json={"payment_id": body["payment"]["id"]}, headers=headers)
    assert r.status_code == 200
    new_ref = r.json()["tx_ref"]
    assert gateway.verified == [old_ref]

    # the first checkout went through after all
    gateway.succeed(old_ref, 800)
    r = client.get("/api/v1/payments/status", params={"tx_ref": old_ref}, headers=headers)
    assert r.status_code == 200
    payment = r.json()
    assert payment["id"] == body["payment"]["id"]
    assert payment["status"] == "completed"
    assert payment["tx_ref"] == new_ref
    assert payment["metadata"]["paid_tx_ref"] == old_ref
    assert EntitlementService.has_valid_payment(db, user.id)


def test_failed_superseded_reference_leaves_retry_pending(client, headers, gateway):
    body = checkout(client, headers)
    retried = client.post("/api/v1/payments/retry", json={"payment_id": body["payment"]["id"]}, headers=headers).json()

    gateway.fail(body["tx_ref"])
    payment = client.get("/api/v1/payments/status", params={"tx_ref": body["tx_ref"]}, headers=headers).json()
    assert payment["status"] == "pending"
    assert payment["tx_ref"] == retried["tx_ref"]
    assert "failure_reason" not in payment["metadata"]


def test_retry_of_paid_pending_checkout_is_refused(client, db, headers, user, gateway):
    body = checkout(client, headers)
    gateway.succeed(body["tx_ref"], 800)

    r = client.post("/api/v1/payments/retry", json={"payment_id": body["payment"]["id"]}, headers=headers)
    assert r.status_code == 409
    payment = PaymentService.get_payment_by_id(db, body["payment"]["id"])
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.tx_ref == body["tx_ref"]
    assert payment.meta["verification_method"] == "retry"
    assert len(gateway.initiated) == 1


def test_retry_restarts_validity_window(client, db, headers, user, gateway):
    stale = make_payment(
        db, user, status=PaymentStatus.FAILED,
        valid_until=datetime.now() - timedelta(hours=2), package_type=PackageType.SINGLE,
    )
    r = client.post("/api/v1/payments/retry", json={"payment_id": stale.id}, headers=headers)
    assert r.status_code == 200
    tx_ref = r.json()["tx_ref"]

    gateway.succeed(tx_ref, 800)
    payment = client.get("/api/v1/payments/status", params={"tx_ref": tx_ref}, headers=headers).json()
    assert payment["status"] == "completed"
    assert EntitlementService.has_valid_payment(db, user.id)
    db.refresh(stale)
    assert stale.valid_until > datetime.now() + timedelta(minutes=50)
