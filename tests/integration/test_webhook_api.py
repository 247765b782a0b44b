from decimal import Decimal

from marketplace.checkout.metadata import CartCheckoutMetadata, SingleCheckoutMetadata, to_stripe_metadata
from marketplace.checkout.models import CartItem

from fakes import checkout_event, paid_session, sign_payload

URL = "/api/v1/stripe/webhook"


def _cart_session(session_id="cs_test_api"):
    items = [
        CartItem(activity_id=101, quantity=2, price=100, title="Elephant Sanctuary", provider_id="prov-1"),
        CartItem(activity_id=102, quantity=1, price=50, title="Cooking Class", provider_id="prov-2"),
    ]
    return paid_session(session_id, to_stripe_metadata(CartCheckoutMetadata(items=items)), amount_total=25000)


def _post(client, payload, signature=None):
    headers = {"Content-Type": "application/json"}
    headers["Stripe-Signature"] = signature if signature is not None else sign_payload(payload)
    return client.post(URL, content=payload, headers=headers)


def test_invalid_signature_is_rejected_without_side_effects(client, db, sender):
    payload = checkout_event(_cart_session())
    r = _post(client, payload, signature=sign_payload(payload, secret="whsec_attacker"))

    assert r.status_code == 400
    assert r.json()["code"] == "untrusted_event"
    assert db.rows("bookings") == []
    assert db.rows("notification_outbox") == []
    assert db.rows("stripe_webhook_events") == []
    assert sender.sent == []


def test_missing_signature_is_rejected(client, db):
    payload = checkout_event(_cart_session())
    r = client.post(URL, content=payload, headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert db.rows("bookings") == []


def test_cart_event_creates_bookings_and_sends_emails(client, db, sender):
    r = _post(client, checkout_event(_cart_session()))

    assert r.status_code == 200
    body = r.json()
    assert body["received"] is True
    assert body["status"] == "processed"
    assert body["created"] == 2
    assert len(db.rows("bookings")) == 2
    # Drain après réponse (BackgroundTasks)
    assert sorted(m["to"] for m in sender.sent) == sorted([
        "bob@example.com", "bob@example.com", "owner1@example.com", "owner2@example.com",
    ])
    assert all(row["status"] == "sent" for row in db.rows("notification_outbox"))


def test_duplicate_delivery_is_idempotent(client, db, sender):
    payload = checkout_event(_cart_session())
    assert _post(client, payload).status_code == 200
    again = _post(client, payload)

    assert again.status_code == 200
    assert again.json()["status"] == "duplicate"
    assert len(db.rows("bookings")) == 2

    # Même session via un autre événement: rien de nouveau
    other = _post(client, checkout_event(_cart_session(), event_id="evt_2", event_type="checkout.session.async_payment_succeeded"))
    assert other.json()["created"] == 0
    assert len(db.rows("bookings")) == 2
    assert len(db.rows("notification_outbox")) == 4
    assert len(sender.sent) == 4


def test_partial_cart_answers_500_for_retry(client, db):
    db.fail("bookings", "insert", when=lambda row: row.get("cart_item_index") == 1)
    payload = checkout_event(_cart_session())

    r = _post(client, payload)
    assert r.status_code == 500
    assert r.json()["code"] == "persistence_failed"
    assert r.json()["failed"] == [1]
    assert len(db.rows("bookings")) == 1

    db.clear_failures()
    retry = _post(client, payload)
    assert retry.status_code == 200
    assert retry.json()["created"] == 1
    assert len(db.rows("bookings")) == 2


def test_single_booking_failure_answers_500(client, db):
    db.fail("bookings", "insert")
    meta = SingleCheckoutMetadata(activity_id="101", base_amount=Decimal("100"))
    r = _post(client, checkout_event(paid_session("cs_test_single_api", to_stripe_metadata(meta), amount_total=10000)))

    assert r.status_code == 500
    assert r.json()["code"] == "persistence_failed"


def test_malformed_metadata_is_acknowledged(client, db):
    session = paid_session("cs_test_bad_api", {"isCartCheckout": "false"}, amount_total=100)
    r = _post(client, checkout_event(session))

    assert r.status_code == 200
    assert r.json()["status"] == "malformed"
    assert db.rows("bookings") == []


def test_unhandled_event_type_is_ignored(client, db):
    r = _post(client, checkout_event({"id": "cus_1"}, event_type="customer.created"))
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"
