import pytest
from pymongo.errors import AutoReconnect

import database
import payments
import visits
from conftest import add_artist, add_service, login_owner, order_signature, sign


@pytest.fixture
def catalog(db):
    return {
        "cut": add_service(db, "Haircut", 300),
        "colour": add_service(db, "Colour", 500),
        "artist": add_artist(db, "Ravi", "9876543210", commission=20),
    }


def visit_body(catalog, **overrides):
    body = {
        "name": "Asha",
        "contact": "9123456789",
        "age": "28",
        "gender": "female",
        "date": "2026-10-12",
        "startTime": "10:00",
        "endTime": "11:30",
        "artist": "Ravi",
        "artistId": catalog["artist"],
        "serviceType": "Hair",
        "serviceIds": [catalog["cut"], catalog["colour"]],
        "discountPercent": "10",
        "paymentMethod": "cash",
    }
    body.update(overrides)
    return body


def pay_online(client, amount, payment_id="pay_1"):
    order = client.post("/api/create-order", json={"name": "Asha", "phone": "9123456789", "amount": amount}).json()
    res = client.post("/api/verify-order-payment", json={
        "razorpay_order_id": order["order_id"],
        "razorpay_payment_id": payment_id,
        "razorpay_signature": order_signature(order["order_id"], payment_id),
    })
    assert res.status_code == 200, res.text
    return res.json()


def test_cash_visit(client, receptionist, catalog, db):
    res = client.post("/api/visits", json=visit_body(catalog, razorpayPaymentId="pay_stray"))
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["finalTotal"] == 720

    visit = db["visit"].find_one()
    assert visit["subtotal"] == 800
    assert visit["discount_amount"] == 80
    assert visit["cash_amount"] == 720
    assert visit["online_amount"] == 0
    assert visit["razorpay_payment_id"] is None
    assert visit["payment_status"] == "success"
    assert visit["filled_by"] == "Desk"
    assert visit["artist"] == "Ravi"
    assert visit["artist_id"] == catalog["artist"]
    assert visit["artist_commission"] == 20


def test_zero_services_rejected_before_anything_is_written(client, receptionist, catalog, db, razorpay_client):
    res = client.post("/api/visits", json=visit_body(catalog, serviceIds=[]))
    assert res.status_code == 400
    assert {"field": "serviceIds", "message": "Select at least one service"} in res.json()["errors"]
    assert db["visit"].count_documents({}) == 0
    assert razorpay_client.orders == []


def test_field_validation_messages(client, receptionist, catalog):
    res = client.post("/api/visits", json=visit_body(catalog, contact="12345", startTime="9am", gender="x"))
    assert res.status_code == 400
    errors = {e["field"]: e["message"] for e in res.json()["errors"]}
    assert errors["contact"] == "Valid 10-digit Indian mobile required"
    assert errors["startTime"] == "Time is required (HH:mm)"
    assert "gender" in errors


def test_discount_out_of_range(client, receptionist, catalog):
    res = client.post("/api/visits", json=visit_body(catalog, discountPercent="150"))
    assert res.status_code == 400
    assert res.json()["errors"][0]["message"] == "Discount must be 0–100"


@pytest.mark.parametrize("discount", [True, False, "abc", "NaN"])
def test_discount_must_be_a_number(client, receptionist, catalog, db, discount):
    res = client.post("/api/visits", json=visit_body(catalog, discountPercent=discount))
    assert res.status_code == 400
    assert res.json()["errors"][0] == {"field": "discountPercent", "message": "Discount must be 0–100"}
    assert db["visit"].count_documents({}) == 0


def test_only_inactive_services(client, receptionist, catalog, db):
    db["service"].update_many({}, {"$set": {"is_active": False}})
    res = client.post("/api/visits", json=visit_body(catalog))
    assert res.status_code == 400
    assert res.json()["error"] == "No valid active services found"


def test_online_visit_claims_verified_payment(client, receptionist, catalog, db):
    verified = pay_online(client, 720)
    assert verified["amount"] == 720

    res = client.post("/api/visits", json=visit_body(catalog, paymentMethod="online", razorpayPaymentId="pay_1"))
    assert res.status_code == 201
    visit_id = res.json()["visitId"]
    entry = db["payment"].find_one({"payment_id": "pay_1"})
    assert entry["status"] == "reconciled"
    assert entry["visit_id"] == visit_id

    again = client.post("/api/visits", json=visit_body(catalog, paymentMethod="online", razorpayPaymentId="pay_1"))
    assert again.status_code == 400
    assert again.json()["error"] == "Payment has already been used for a visit"


def test_partial_visit_split(client, receptionist, catalog, db):
    pay_online(client, 520)
    res = client.post("/api/visits", json=visit_body(
        catalog, paymentMethod="partial", cashAmount="200", razorpayPaymentId="pay_1",
    ))
    assert res.status_code == 201
    visit = db["visit"].find_one()
    assert (visit["cash_amount"], visit["online_amount"]) == (200, 520)


def test_partial_with_full_cash_is_rejected(client, receptionist, catalog, db):
    res = client.post("/api/visits", json=visit_body(
        catalog, paymentMethod="partial", cashAmount="720", razorpayPaymentId="pay_1",
    ))
    assert res.status_code == 400
    assert "between ₹1 and total minus ₹1" in res.json()["error"]
    assert db["visit"].count_documents({}) == 0


def test_online_visit_with_unverified_payment(client, receptionist, catalog, db):
    res = client.post("/api/visits", json=visit_body(catalog, paymentMethod="online", razorpayPaymentId="pay_fake"))
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Payment has not been verified"}
    assert db["visit"].count_documents({}) == 0


def test_payment_amount_must_match_online_due(client, receptionist, catalog, db):
    pay_online(client, 1)
    res = client.post("/api/visits", json=visit_body(catalog, paymentMethod="online", razorpayPaymentId="pay_1"))
    assert res.status_code == 400
    assert res.json()["error"] == "Payment amount does not match the online amount due"
    assert db["payment"].find_one({"payment_id": "pay_1"})["status"] == "verified"


def test_tampered_signature_is_rejected(client, receptionist, db):
    order = client.post("/api/create-order", json={"name": "Asha", "phone": "9123456789", "amount": 720}).json()
    res = client.post("/api/verify-order-payment", json={
        "razorpay_order_id": order["order_id"],
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": order_signature(order["order_id"], "pay_2"),
    })
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Invalid payment signature"}
    entry = db["payment"].find_one({"order_id": order["order_id"]})
    assert entry["status"] == "created"
    assert "payment_id" not in entry
    assert db["visit"].count_documents({}) == 0


def test_missing_verification_parameters(client, receptionist):
    res = client.post("/api/verify-order-payment", json={"razorpay_order_id": "order_1"})
    assert res.status_code == 400
    assert res.json()["error"] == "Missing payment parameters"


def test_order_amount_must_be_at_least_one_rupee(client, receptionist, razorpay_client):
    res = client.post("/api/create-order", json={"name": "Asha", "phone": "9123456789", "amount": 0.5})
    assert res.status_code == 400
    assert res.json()["error"] == "Amount must be at least ₹1"
    assert razorpay_client.orders == []


def test_create_order_response(client, receptionist, db):
    res = client.post("/api/create-order", json={"name": "Asha", "phone": "9123456789", "amount": 720})
    body = res.json()
    assert body["amount"] == 72000
    assert body["currency"] == "INR"
    assert body["key_id"] == "rzp_test_key"
    assert db["payment"].find_one({"order_id": body["order_id"]})["amount_paise"] == 72000


def test_payment_link_flow(client, receptionist, razorpay_client, gateway, db):
    res = client.post("/api/create-payment-link", json={"name": "Asha", "phone": "9123456789", "amount": 720})
    assert res.json()["payment_link_url"].startswith("https://rzp.io/i/")
    link_id = db["payment"].find_one({"kind": "payment_link"})["link_id"]
    razorpay_client.payments["pay_9"] = {
        "id": "pay_9", "amount": 72000, "currency": "INR", "status": "captured",
        "notes": {"customer_name": "Asha", "customer_phone": "9123456789"},
    }
    params = {
        "razorpay_payment_id": "pay_9",
        "razorpay_payment_link_id": link_id,
        "razorpay_payment_link_reference_id": "",
        "razorpay_payment_link_status": "paid",
    }
    params["razorpay_signature"] = sign(f"{link_id}||paid|pay_9")
    res = client.get("/api/verify-payment", params=params)
    assert res.status_code == 200, res.text
    assert res.json()["amount"] == 720
    assert res.json()["name"] == "Asha"
    assert db["payment"].find_one({"link_id": link_id})["status"] == "verified"

    params["razorpay_payment_link_status"] = "failed"
    assert client.get("/api/verify-payment", params=params).status_code == 400


def test_write_failure_keeps_payment_for_reconciliation(client, receptionist, catalog, db, monkeypatch):
    pay_online(client, 720)

    def failing_create(collection, data):
        if collection == "visit":
            raise AutoReconnect("connection reset")
        return database.create_document(collection, data)

    monkeypatch.setattr(visits, "create_document", failing_create)
    res = client.post("/api/visits", json=visit_body(catalog, paymentMethod="online", razorpayPaymentId="pay_1"))
    assert res.status_code == 202
    body = res.json()
    assert body["warning"] == "visit record creation failed"
    assert body["paymentId"] == "pay_1"
    assert body["visitId"] is None
    entry = db["payment"].find_one({"payment_id": "pay_1"})
    assert entry["status"] == "unreconciled"
    assert entry["visit_draft"]["final_total"] == 720

    monkeypatch.setattr(visits, "create_document", database.create_document)
    login_owner(client)
    pending = client.get("/api/payments/unreconciled").json()
    assert [p["payment_id"] for p in pending] == ["pay_1"]
    res = client.post("/api/payments/pay_1/reconcile")
    assert res.status_code == 201
    assert db["visit"].count_documents({}) == 1
    entry = db["payment"].find_one({"payment_id": "pay_1"})
    assert entry["status"] == "reconciled"
    assert "visit_draft" not in entry
    assert client.post("/api/payments/pay_1/reconcile").status_code == 404


def test_cash_write_failure_is_a_database_error(client, receptionist, catalog, monkeypatch):
    def failing_create(collection, data):
        raise AutoReconnect("connection reset")

    monkeypatch.setattr(visits, "create_document", failing_create)
    res = client.post("/api/visits", json=visit_body(catalog))
    assert res.status_code == 503
    assert res.json()["error"] == "Database unavailable"


def test_price_change_does_not_rewrite_history(client, receptionist, catalog, db):
    client.post("/api/visits", json=visit_body(catalog))
    db["service"].update_one({"name": "Haircut"}, {"$set": {"price": 999}})
    visit = db["visit"].find_one()
    assert [s["price"] for s in visit["services"]] == [300, 500]
    assert visit["final_total"] == 720


def test_visit_listing_is_for_managers(client, receptionist, catalog, db):
    client.post("/api/visits", json=visit_body(catalog))
    assert client.get("/api/visits").status_code == 403


def test_visit_listing_and_detail(client, owner, catalog, db):
    res = client.post("/api/visits", json=visit_body(catalog))
    visit_id = res.json()["visitId"]
    listed = client.get("/api/visits", params={"from": "2026-10-01", "to": "2026-10-31"}).json()
    assert [v["id"] for v in listed] == [visit_id]
    detail = client.get(f"/api/visits/{visit_id}").json()
    assert detail["date"].startswith("2026-10-12")
    assert client.get("/api/visits/" + "0" * 24).status_code == 404


def test_unknown_artist_id(client, receptionist, catalog):
    res = client.post("/api/visits", json=visit_body(catalog, artistId="0" * 24))
    assert res.status_code == 400
    assert res.json()["error"] == "Artist not found"


def unreconciled_entry(db):
    db["payment"].insert_one({
        "kind": "order", "order_id": "order_9", "payment_id": "pay_9", "amount_paise": 72000,
        "status": "unreconciled", "visit_draft": {"name": "Asha", "final_total": 720}, "last_error": "reset",
    })


def test_reconciliation_retry_is_taken_once(db):
    unreconciled_entry(db)
    taken = payments.claim_unreconciled("pay_9")
    assert taken["status"] == "claimed"
    assert payments.claim_unreconciled("pay_9") is None

    with pytest.raises(LookupError):
        visits.retry_reconciliation("pay_9")
    assert db["visit"].count_documents({}) == 0


def test_failed_retry_puts_payment_back(db, monkeypatch):
    unreconciled_entry(db)

    def failing_create(collection, data):
        raise AutoReconnect("still down")

    monkeypatch.setattr(visits, "create_document", failing_create)
    with pytest.raises(AutoReconnect):
        visits.retry_reconciliation("pay_9")
    entry = db["payment"].find_one({"payment_id": "pay_9"})
    assert entry["status"] == "unreconciled"
    assert entry["visit_draft"]["final_total"] == 720
    assert entry["last_error"] == "still down"

    monkeypatch.setattr(visits, "create_document", database.create_document)
    visit_id = visits.retry_reconciliation("pay_9")
    assert db["payment"].find_one({"payment_id": "pay_9"})["visit_id"] == visit_id
