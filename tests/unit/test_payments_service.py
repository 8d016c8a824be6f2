import pytest
from fastapi import HTTPException

from academy.payments import service as payments_service

USER = "test-user"

def _order(db, order_id):
    return db.rows("orders", id=order_id)[0]

# --- Initiation ---

def test_card_intent_creates_processing_order_and_pending_payment(db, catalog, fake_stripe):
    res = payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)

    assert res["success"] is True
    assert res["clientSecret"] == f"{res['paymentIntentId']}_secret"
    order = _order(db, res["orderId"])
    assert order["status"] == "processing"
    assert order["amount"] == 49.99
    assert order["currency"] == "USD"
    assert order["payment_method"] == "stripe"
    payments = db.rows("payments")
    assert len(payments) == 1
    assert payments[0]["provider_payment_id"] == res["paymentIntentId"]
    assert payments[0]["status"] == "pending"
    intent = fake_stripe.intents[res["paymentIntentId"]]
    assert intent["amount"] == 4999
    assert intent["metadata"] == {"order_id": order["id"], "user_id": USER, "product_id": "course-1", "product_type": "course"}

def test_inactive_product_is_not_found_and_writes_no_order(db, catalog, fake_stripe):
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_card_intent(user_id=USER, product_id="course-old", amount=10.0)
    assert exc.value.status_code == 404
    assert exc.value.detail == "Product not found"
    assert db.rows("orders") == []

def test_unknown_product_is_not_found(db, catalog, fake_stripe):
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_checkout_session(user_id=USER, product_id="nope")
    assert exc.value.status_code == 404

def test_existing_access_blocks_purchase_before_any_order(db, catalog, fake_stripe, fake_momo):
    db.seed("user_access", {"user_id": USER, "product_id": "course-1", "is_active": True})

    for call in (
        lambda: payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99),
        lambda: payments_service.initiate_checkout_session(user_id=USER, product_id="course-1"),
        lambda: payments_service.initiate_momo_payment(user_id=USER, product_id="course-1", phone_number="0771234567"),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 400
        assert exc.value.detail == "You already have access to this product"
    assert db.rows("orders") == []
    assert fake_stripe.intents == {} and fake_stripe.sessions == {}
    assert fake_momo.requests == []

def test_amount_mismatch_is_rejected(db, catalog, fake_stripe):
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=1.0)
    assert exc.value.status_code == 400
    assert db.rows("orders") == []

def test_provider_rejection_marks_order_failed(db, catalog, fake_stripe):
    fake_stripe.error = "Your card was declined."
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)
    assert exc.value.status_code == 400
    assert exc.value.detail == "Your card was declined."
    orders = db.rows("orders")
    assert len(orders) == 1 and orders[0]["status"] == "failed"
    assert db.rows("payments") == []

def test_order_write_failure_is_a_server_error(db, catalog, fake_stripe):
    db.fail_on("orders", "insert")
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")
    assert exc.value.status_code == 500
    assert exc.value.detail == "Failed to create order"
    assert fake_stripe.sessions == {}

def test_payment_record_failure_is_not_fatal(db, catalog, fake_stripe):
    db.fail_on("payments", "upsert")
    res = payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)
    assert res["success"] is True
    assert _order(db, res["orderId"])["status"] == "processing"

def test_checkout_session_urls_and_payment_key(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")

    session = fake_stripe.sessions[res["sessionId"]]
    assert res["url"] == session["url"]
    assert "session_id={CHECKOUT_SESSION_ID}" in session["success_url"]
    assert f"order_id={res['orderId']}" in session["success_url"]
    assert session["cancel_url"].endswith("/checkout?product=course-1&canceled=true")
    assert session["client_reference_id"] == res["orderId"]
    assert db.rows("payments")[0]["provider_payment_id"] == res["sessionId"]

def test_momo_payment_request(db, catalog, fake_momo):
    res = payments_service.initiate_momo_payment(user_id=USER, product_id="course-1", phone_number="+256771234567")

    assert res["referenceId"] == "ref-1"
    assert res["message"] == "Payment request sent. Please approve on your phone."
    assert len(res["instructions"]) == 3
    assert _order(db, res["orderId"])["status"] == "processing"
    payment = db.rows("payments", provider_payment_id="ref-1")[0]
    assert payment["provider"] == "mtn_momo"
    assert payment["metadata"] == {"phone_number": "+256771234567"}
    assert fake_momo.requests[0]["amount"] == 49.99

@pytest.mark.parametrize("phone", ["12345", "0671234567", "+254771234567"])
def test_momo_invalid_phone_rejected_before_lookup(db, catalog, fake_momo, phone):
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_momo_payment(user_id=USER, product_id="nope", phone_number=phone)
    assert exc.value.status_code == 400
    assert "Invalid phone number format" in exc.value.detail
    assert db.rows("orders") == []

def test_momo_rejection_marks_order_failed(db, catalog, fake_momo):
    fake_momo.error = "Payer not found"
    with pytest.raises(HTTPException) as exc:
        payments_service.initiate_momo_payment(user_id=USER, product_id="course-1", phone_number="0771234567")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Payer not found"
    assert db.rows("orders")[0]["status"] == "failed"

# --- Vérification Checkout ---

def test_verify_paid_session_completes_order_and_grants_access(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")
    fake_stripe.pay(res["sessionId"], payment_intent="pi_abc")

    out = payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    assert out == {"success": True, "message": "Access granted"}
    assert _order(db, res["orderId"])["status"] == "completed"
    payments = db.rows("payments")
    assert len(payments) == 1
    assert payments[0]["status"] == "completed"
    access = db.rows("user_access", user_id=USER, product_id="course-1")
    assert len(access) == 1 and access[0]["is_active"] is True

def test_verify_twice_is_idempotent(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="signal-1")
    fake_stripe.pay(res["sessionId"])

    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)
    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    assert len(db.rows("payments")) == 1
    assert len(db.rows("user_access", user_id=USER, product_id="signal-1")) == 1
    assert len(db.rows("subscriptions", user_id=USER, plan_id="signal-1")) == 1

def test_replayed_verification_does_not_renew_expired_signal_access(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="signal-1")
    fake_stripe.pay(res["sessionId"])
    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)
    access = db.find("user_access", {"user_id": USER, "product_id": "signal-1"})
    access["access_expires_at"] = "2020-01-01T00:00:00+00:00"

    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    access = db.rows("user_access", user_id=USER, product_id="signal-1")[0]
    assert access["access_expires_at"] == "2020-01-01T00:00:00+00:00"

def test_verify_unpaid_session_mutates_nothing(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")

    with pytest.raises(HTTPException) as exc:
        payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    assert exc.value.status_code == 400
    assert exc.value.detail == "Payment not completed or pending"
    assert _order(db, res["orderId"])["status"] == "processing"
    assert [p["status"] for p in db.rows("payments")] == ["pending"]
    assert db.rows("user_access") == []

def test_verify_session_without_metadata(db, catalog, fake_stripe):
    fake_stripe.sessions["cs_bare"] = {"id": "cs_bare", "payment_status": "paid", "metadata": {}}
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_checkout_session("cs_bare", current_user_id=USER)
    assert exc.value.status_code == 400
    assert exc.value.detail == "Missing metadata in session"
    assert db.rows("user_access") == []

def test_verify_session_of_another_user(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id="someone-else", product_id="course-1")
    fake_stripe.pay(res["sessionId"])
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)
    assert exc.value.status_code == 403
    assert db.rows("user_access") == []

def test_verify_unknown_session(db, catalog, fake_stripe):
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_checkout_session("cs_missing", current_user_id=USER)
    assert exc.value.status_code == 400

def test_card_intent_then_paid_verification_end_to_end(db, catalog, fake_stripe):
    res = payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)
    session_id = fake_stripe.paid_session_for_intent(res["paymentIntentId"])

    payments_service.verify_checkout_session(session_id, current_user_id=USER)

    assert _order(db, res["orderId"])["status"] == "completed"
    payments = db.rows("payments")
    assert len(payments) == 1
    assert payments[0]["provider_payment_id"] == res["paymentIntentId"]
    assert payments[0]["status"] == "completed"
    access = db.rows("user_access", user_id=USER, product_id="course-1")
    assert len(access) == 1
    assert access[0]["is_active"] is True
    assert access[0]["order_id"] == res["orderId"]

def test_access_grant_failure_is_a_server_error(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")
    fake_stripe.pay(res["sessionId"])
    db.fail_on("user_access", "insert")
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)
    assert exc.value.status_code == 500

# --- Webhook Stripe ---

def test_webhook_checkout_completed_grants_access(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="bot-1")
    session = fake_stripe.pay(res["sessionId"])

    out = payments_service.handle_stripe_event({"type": "checkout.session.completed", "data": {"object": session}})

    assert out == {"received": True}
    assert _order(db, res["orderId"])["status"] == "completed"
    assert len(db.rows("user_access", user_id=USER, product_id="bot-1")) == 1

def test_webhook_after_verification_does_not_duplicate(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")
    session = fake_stripe.pay(res["sessionId"])
    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    payments_service.handle_stripe_event({"type": "checkout.session.completed", "data": {"object": session}})

    assert len(db.rows("payments")) == 1
    assert len(db.rows("user_access")) == 1

def test_webhook_intent_succeeded(db, catalog, fake_stripe):
    res = payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)
    intent = dict(fake_stripe.intents[res["paymentIntentId"]], amount_received=4999)

    payments_service.handle_stripe_event({"type": "payment_intent.succeeded", "data": {"object": intent}})

    assert _order(db, res["orderId"])["status"] == "completed"
    assert db.rows("payments")[0]["status"] == "completed"
    assert len(db.rows("user_access", user_id=USER)) == 1

def test_checkout_intent_event_completes_the_session_payment(db, catalog, fake_stripe):
    res = payments_service.initiate_checkout_session(user_id=USER, product_id="course-1")
    session = fake_stripe.pay(res["sessionId"], payment_intent="pi_checkout_1")
    intent = {"id": "pi_checkout_1", "amount_received": 4999, "currency": "usd", "metadata": dict(session["metadata"])}

    payments_service.handle_stripe_event({"type": "payment_intent.succeeded", "data": {"object": intent}})
    payments_service.verify_checkout_session(res["sessionId"], current_user_id=USER)

    payments = db.rows("payments")
    assert len(payments) == 1
    assert payments[0]["provider_payment_id"] == res["sessionId"]
    assert payments[0]["status"] == "completed"
    assert payments[0]["metadata"]["payment_intent_id"] == "pi_checkout_1"
    assert _order(db, res["orderId"])["status"] == "completed"

def test_webhook_intent_failed(db, catalog, fake_stripe):
    res = payments_service.initiate_card_intent(user_id=USER, product_id="course-1", amount=49.99)
    intent = fake_stripe.intents[res["paymentIntentId"]]

    payments_service.handle_stripe_event({"type": "payment_intent.payment_failed", "data": {"object": intent}})

    assert _order(db, res["orderId"])["status"] == "failed"
    assert db.rows("payments")[0]["status"] == "failed"
    assert db.rows("user_access") == []

def test_webhook_ignores_other_events(db):
    assert payments_service.handle_stripe_event({"type": "customer.created", "data": {"object": {"id": "cus_1"}}}) == {"received": True}
    assert db.rows("orders") == []

# --- MTN Mobile Money ---

def _momo_order(db, catalog, fake_momo, product_id="course-1"):
    return payments_service.initiate_momo_payment(user_id=USER, product_id=product_id, phone_number="0771234567")

def test_momo_verify_successful(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    fake_momo.settle(res["referenceId"], "SUCCESSFUL", txn="fin-42")

    out = payments_service.verify_momo_payment(user_id=USER, order_id=res["orderId"], reference_id=res["referenceId"])

    assert out["status"] == "SUCCESSFUL"
    assert out["order"] == {"id": res["orderId"], "status": "completed"}
    assert out["payment"] == {"status": "completed", "transactionId": "fin-42"}
    payment = db.rows("payments", provider_payment_id=res["referenceId"])[0]
    assert payment["metadata"]["financial_transaction_id"] == "fin-42"
    assert "verified_at" in payment["metadata"]
    assert payment["metadata"]["phone_number"] == "0771234567"
    assert _order(db, res["orderId"])["status"] == "completed"
    assert len(db.rows("user_access", user_id=USER, product_id="course-1")) == 1

def test_momo_verify_pending_keeps_processing(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)

    out = payments_service.verify_momo_payment(user_id=USER, order_id=res["orderId"], reference_id=res["referenceId"])

    assert out["status"] == "PENDING"
    assert out["order"]["status"] == "processing"
    assert out["payment"]["status"] == "pending"
    assert db.rows("user_access") == []

def test_momo_verify_failed(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    fake_momo.settle(res["referenceId"], "FAILED", txn=None)

    out = payments_service.verify_momo_payment(user_id=USER, order_id=res["orderId"], reference_id=res["referenceId"])

    assert out["order"]["status"] == "failed"
    assert _order(db, res["orderId"])["status"] == "failed"
    assert db.rows("user_access") == []

def test_momo_verify_order_of_another_user(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_momo_payment(user_id="intruder", order_id=res["orderId"], reference_id=res["referenceId"])
    assert exc.value.status_code == 404

def test_momo_verify_reference_of_another_order(db, catalog, fake_momo):
    first = _momo_order(db, catalog, fake_momo, "course-1")
    second = _momo_order(db, catalog, fake_momo, "signal-1")
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_momo_payment(user_id=USER, order_id=first["orderId"], reference_id=second["referenceId"])
    assert exc.value.status_code == 404

def test_momo_verify_provider_unavailable(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    fake_momo.status_error = True
    with pytest.raises(HTTPException) as exc:
        payments_service.verify_momo_payment(user_id=USER, order_id=res["orderId"], reference_id=res["referenceId"])
    assert exc.value.status_code == 500
    assert _order(db, res["orderId"])["status"] == "processing"

def test_momo_callback_completes_order_and_notifies(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo, "signal-1")
    fake_momo.settle(res["referenceId"])

    out = payments_service.handle_momo_callback(res["referenceId"])

    assert out["success"] is True
    assert _order(db, res["orderId"])["status"] == "completed"
    payment = db.rows("payments", provider_payment_id=res["referenceId"])[0]
    assert "webhook_received_at" in payment["metadata"]
    assert db.rows("user_access", user_id=USER, product_id="signal-1")[0]["access_expires_at"] is not None
    notes = db.rows("notifications", user_id=USER)
    assert len(notes) == 1
    assert notes[0]["title"] == "Payment Successful"
    assert notes[0]["link"] == "/signals/signal-1"

def test_momo_callback_failure_notifies(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    fake_momo.settle(res["referenceId"], "FAILED")

    payments_service.handle_momo_callback(res["referenceId"])

    assert _order(db, res["orderId"])["status"] == "failed"
    assert db.rows("notifications")[0]["title"] == "Payment Failed"

def test_repeated_momo_callback_notifies_once(db, catalog, fake_momo):
    res = _momo_order(db, catalog, fake_momo)
    fake_momo.settle(res["referenceId"])

    payments_service.handle_momo_callback(res["referenceId"])
    payments_service.handle_momo_callback(res["referenceId"])

    notes = db.rows("notifications", user_id=USER)
    assert [n["title"] for n in notes] == ["Payment Successful"]
    assert len(db.rows("user_access", user_id=USER, product_id="course-1")) == 1

def test_momo_callback_unknown_reference(db, fake_momo):
    with pytest.raises(HTTPException) as exc:
        payments_service.handle_momo_callback("ref-unknown")
    assert exc.value.status_code == 404
