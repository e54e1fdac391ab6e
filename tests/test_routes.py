"""HTTP tests through FastAPI TestClient: auth, looks, chat, try-ons, credits, webhook."""

import hashlib
import hmac
import json

import rate_limit
from conftest import auth_headers, casual_wardrobe, fresh, make_item, make_photo, make_user
from credits import initiate_purchase
from looks_service import create_look
from models import CreditPurchase, Look, PushToken, User, UserImage


# ---------------------------------------------------------------------------
# Health / auth
# ---------------------------------------------------------------------------

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    assert client.get("/v1/looks").status_code == 401
    bad = client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_first_request_creates_user(client, db):
    from jose import jwt

    token = jwt.encode({"sub": "ext_new", "email": "new@example.com", "given_name": "Zawadi"},
                       "test-secret", algorithm="HS256")
    r = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert r.status_code == 200
    body = r.json()
    assert body["first_name"] == "Zawadi"
    assert body["credits"]["total"] == 5
    assert db.query(User).filter(User.external_id == "ext_new").count() == 1


def test_patch_me_validates(client, db):
    user = make_user(db)
    h = auth_headers(user)

    assert client.patch("/v1/auth/me", json={"gender": "other"}, headers=h).status_code == 400

    r = client.patch("/v1/auth/me", json={"budget_range": "premium", "style_preferences": [" Boho ", ""]},
                     headers=h)
    assert r.status_code == 200
    assert r.json()["style_preferences"] == ["boho"]
    assert fresh(db, User, user.id).budget_range == "premium"


# ---------------------------------------------------------------------------
# Looks
# ---------------------------------------------------------------------------

def test_foreign_look_is_404(client, db):
    owner = make_user(db)
    look = create_look(db, [make_item(db)], creator=owner)
    db.commit()

    assert client.get(f"/v1/looks/{look.id}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/v1/looks/{look.id}", headers=auth_headers(make_user(db))).status_code == 404


def test_retry_of_pending_look_is_conflict(client, db):
    user = make_user(db)
    look = create_look(db, [make_item(db)], creator=user)
    db.commit()

    r = client.post(f"/v1/looks/{look.id}/retry", headers=auth_headers(user))
    assert r.status_code == 409


def test_list_looks_filters_by_status(client, db):
    user = make_user(db)
    create_look(db, [make_item(db)], creator=user)
    failed = create_look(db, [make_item(db)], creator=user)
    failed.generation_status = "failed"
    db.commit()

    h = auth_headers(user)
    assert client.get("/v1/looks", headers=h).json()["total"] == 2
    only_failed = client.get("/v1/looks", params={"status": "failed"}, headers=h).json()
    assert [lk["id"] for lk in only_failed["items"]] == [failed.id]


def test_from_items_status_codes(client, db, blobs, queue):
    user = make_user(db, free_credits_used_this_week=4)
    make_photo(db, user, blobs)
    w = casual_wardrobe(db, blobs)
    h = auth_headers(user)
    body = {"item_ids": [w["top"].id, w["bottom"].id]}

    ok = client.post("/v1/looks/from-items", json=body, headers=h)
    assert ok.status_code == 200
    assert ok.json()["status"] == "pending"
    assert queue.args_for("jobs.generate_look_image") == [(ok.json()["look_id"], user.id)]

    assert client.post("/v1/looks/from-items", json=body, headers=h).status_code == 402

    for _ in range(10):
        rate_limit.hit("create_look", user.id)
    assert client.post("/v1/looks/from-items", json=body, headers=h).status_code == 429


def test_hard_delete_via_api(client, db):
    user = make_user(db)
    look = create_look(db, [make_item(db)], creator=user)
    db.commit()

    r = client.delete(f"/v1/looks/{look.id}", params={"hard": "true"}, headers=auth_headers(user))

    assert r.status_code == 200
    assert fresh(db, Look, look.id) is None


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def test_chat_business_failures_are_payloads(client, db):
    user = make_user(db)
    r = client.post("/v1/chat/looks", json={"occasion": "date"}, headers=auth_headers(user))

    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["message"] == "no_photo"


def test_chat_rate_limit_is_429(client, db, blobs):
    user = make_user(db)
    make_photo(db, user, blobs)
    for _ in range(10):
        rate_limit.hit("create_look", user.id)

    r = client.post("/v1/chat/look", json={"occasion": "casual"}, headers=auth_headers(user))
    assert r.status_code == 429


def test_chat_looks_success(client, db, blobs, queue):
    user = make_user(db)
    make_photo(db, user, blobs)
    casual_wardrobe(db, blobs)

    r = client.post("/v1/chat/looks", json={"occasion": "casual"}, headers=auth_headers(user))

    body = r.json()
    assert body["success"] is True
    assert len(queue.args_for("jobs.generate_look_image")) == len(body["look_ids"])


# ---------------------------------------------------------------------------
# Try-ons
# ---------------------------------------------------------------------------

def test_try_on_flow(client, db, blobs):
    user = make_user(db)
    make_photo(db, user, blobs)
    item = make_item(db, blobs, name="Cotton Tee", category="top")
    h = auth_headers(user)

    started = client.post("/v1/try-ons", json={"item_id": item.id, "selected_size": "M"}, headers=h).json()
    assert started["charged"] is True

    listed = client.get("/v1/try-ons", headers=h).json()
    assert [t["id"] for t in listed["items"]] == [started["try_on_id"]]

    assert client.post(f"/v1/try-ons/{started['try_on_id']}/retry", headers=h).status_code == 409
    assert client.get(f"/v1/try-ons/{started['try_on_id']}", headers=auth_headers(make_user(db))).status_code == 404
    assert client.delete(f"/v1/try-ons/{started['try_on_id']}", headers=h).status_code == 200


def test_try_on_without_credits_is_402(client, db, blobs):
    user = make_user(db, free_credits_used_this_week=5)
    make_photo(db, user, blobs)
    item = make_item(db, name="Cotton Tee", category="top")

    r = client.post("/v1/try-ons", json={"item_id": item.id}, headers=auth_headers(user))
    assert r.status_code == 402


# ---------------------------------------------------------------------------
# Users / onboarding
# ---------------------------------------------------------------------------

def test_photo_upload_becomes_primary(client, db, blobs):
    user = make_user(db)
    old = make_photo(db, user, blobs)
    h = auth_headers(user)

    r = client.post("/v1/users/photos", files={"file": ("me.png", b"PNG", "image/png")}, headers=h)

    assert r.status_code == 200
    assert r.json()["is_primary"] is True
    assert fresh(db, UserImage, old.id).is_primary is False
    assert client.post("/v1/users/photos", files={"file": ("a.txt", b"x", "text/plain")},
                       headers=h).status_code == 400


def test_push_token_moves_between_accounts(client, db):
    a = make_user(db)
    b = make_user(db)
    body = {"token": "ExponentPushToken[abc]", "platform": "android"}

    client.post("/v1/notifications/tokens", json=body, headers=auth_headers(a))
    client.post("/v1/notifications/tokens", json=body, headers=auth_headers(b))

    db.expire_all()
    rows = db.query(PushToken).all()
    assert [(r.user_id, r.platform) for r in rows] == [(b.id, "android")]

    client.delete("/v1/notifications/tokens/ExponentPushToken[abc]", headers=auth_headers(b))
    db.expire_all()
    assert db.query(PushToken).count() == 0


def test_onboarding_routes(client, db, blobs, queue):
    user = make_user(db)
    h = auth_headers(user)
    assert client.post("/v1/onboarding/start", headers=h).status_code == 400

    make_photo(db, user, blobs)
    assert client.post("/v1/onboarding/start", headers=h).json() == {"status": "processing", "looks_requested": 3}
    assert client.post("/v1/onboarding/start", headers=h).status_code == 429
    assert queue.names() == ["jobs.process_onboarding_looks"]


# ---------------------------------------------------------------------------
# Credits / webhook
# ---------------------------------------------------------------------------

def test_credit_endpoints(client, db, queue):
    user = make_user(db)
    h = auth_headers(user)

    assert client.get("/v1/credits", headers=h).json()["total"] == 5
    ids = [p["id"] for p in client.get("/v1/credits/packages").json()["items"]]
    assert ids == ["pack_10", "pack_20", "pack_50", "pack_100"]

    bad = client.post("/v1/credits/purchase", json={"package_id": "pack_10", "phone_number": "123"}, headers=h)
    assert bad.status_code == 400

    ok = client.post("/v1/credits/purchase", json={"package_id": "pack_10", "phone_number": "0712345678"},
                     headers=h).json()
    assert ok["status"] == "pending"
    got = client.get(f"/v1/credits/purchases/{ok['purchase_id']}", headers=h).json()
    assert got["credit_amount"] == 10
    assert client.get(f"/v1/credits/purchases/{ok['purchase_id']}",
                      headers=auth_headers(make_user(db))).status_code == 404


def test_webhook_completes_purchase_once(client, db, queue):
    user = make_user(db)
    mid = initiate_purchase(db, user, "pack_10", "0712345678").merchant_transaction_id
    event = {"type": "payment.completed", "data": {"merchantTransactionId": mid, "mpesaReceiptNumber": "QWE123"}}

    first = client.post("/webhooks/fingo", json=event).json()
    second = client.post("/webhooks/fingo", json=event).json()

    assert first["credits_added"] == 10
    assert second["already_completed"] is True
    assert fresh(db, User, user.id).credits == 10
    db.expire_all()
    p = db.query(CreditPurchase).filter(CreditPurchase.merchant_transaction_id == mid).one()
    assert p.provider_transaction_id == "QWE123"


def test_webhook_failure_and_unknown_status(client, db):
    user = make_user(db)
    mid = initiate_purchase(db, user, "pack_10", "0712345678").merchant_transaction_id

    ignored = client.post("/webhooks/fingo", json={"merchantTransactionId": mid, "status": "unsuccessful"}).json()
    assert ignored["ignored"] is True

    client.post("/webhooks/fingo", json={"merchantTransactionId": mid, "status": "cancelled"})
    db.expire_all()
    p = db.query(CreditPurchase).filter(CreditPurchase.merchant_transaction_id == mid).one()
    assert (p.status, p.failure_reason) == ("cancelled", "Payment cancelled")


def test_webhook_requires_merchant_id(client):
    assert client.post("/webhooks/fingo", json={"status": "completed"}).status_code == 400
    assert client.post("/webhooks/fingo", content=b"not json").status_code == 400


def test_webhook_signature_mismatch_is_logged_not_rejected(client, db, monkeypatch, caplog):
    monkeypatch.setenv("FINGO_WEBHOOK_SECRET", "whsec")
    user = make_user(db)
    mid = initiate_purchase(db, user, "pack_10", "0712345678").merchant_transaction_id
    body = json.dumps({"merchantTransactionId": mid, "status": "completed"}).encode()
    good = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()

    r = client.post("/webhooks/fingo", content=body, headers={"x-webhook-signature": "sha256=" + good})
    assert r.json()["success"] is True
    assert "signature mismatch" not in caplog.text

    client.post("/webhooks/fingo", content=body, headers={"x-webhook-signature": "wrong"})
    assert "signature mismatch" in caplog.text
