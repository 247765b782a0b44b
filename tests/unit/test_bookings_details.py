from datetime import datetime, timedelta, timezone

from marketplace.bookings.details import resolve_booking_details
from marketplace.checkout.metadata import CartCheckoutMetadata, SingleCheckoutMetadata, to_stripe_metadata
from marketplace.checkout.models import CartItem

from fakes import paid_session

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _cart_session(gateway, session_id="cs_test_d1"):
    items = [
        CartItem(activity_id=101, quantity=2, price=100, title="Elephant Sanctuary"),
        CartItem(activity_id=102, quantity=1, price=50, title="Cooking Class"),
    ]
    session = paid_session(session_id, to_stripe_metadata(CartCheckoutMetadata(items=items)), amount_total=25000)
    gateway.sessions[session_id] = session
    return session


def _booking_row(session_id, index, total, email="bob@example.com", created_at=NOW):
    return {
        "activity_id": 101 + index,
        "participants": 1,
        "total_amount": total,
        "status": "confirmed",
        "customer_email": email,
        "stripe_session_id": session_id,
        "cart_item_index": index,
        "created_at": created_at.isoformat(),
        "booking_date": created_at.isoformat(),
    }


def test_placeholder_while_webhook_pending(db, gateway):
    _cart_session(gateway)
    out = resolve_booking_details(db, gateway, "cs_test_d1", "cart", now=NOW)

    assert out["status"] == "processing"
    assert out["isCartCheckout"] is True
    assert out["paymentStatus"] == "paid"
    assert out["totalAmount"] == 250.0
    assert [b["activityTitle"] for b in out["bookings"]] == ["Elephant Sanctuary", "Cooking Class"]
    assert all(b["id"] is None and b["status"] == "processing" for b in out["bookings"])
    assert db.calls.count(("bookings", "insert")) == 0


def test_confirmed_bookings_by_session(db, gateway):
    _cart_session(gateway)
    db.seed("bookings", _booking_row("cs_test_d1", 1, 50.0), _booking_row("cs_test_d1", 0, 200.0))

    out = resolve_booking_details(db, gateway, "cs_test_d1", now=NOW)

    assert out["status"] == "confirmed"
    assert out["type"] == "cart"
    assert [b["totalAmount"] for b in out["bookings"]] == [200.0, 50.0]


def test_recent_legacy_email_bookings_when_session_not_linked(db, gateway):
    meta = SingleCheckoutMetadata(activity_id="101", title="Elephant Sanctuary")
    gateway.sessions["cs_test_d2"] = paid_session("cs_test_d2", to_stripe_metadata(meta), amount_total=10000)
    # Réservations historiques sans stripe_session_id
    db.seed("bookings",
            _booking_row(None, 0, 70.0, created_at=NOW - timedelta(hours=3)),
            _booking_row(None, 0, 100.0, created_at=NOW - timedelta(minutes=10)))

    out = resolve_booking_details(db, gateway, "cs_test_d2", "single", now=NOW)

    assert out["status"] == "confirmed"
    assert out["booking"]["totalAmount"] == 100.0


def test_other_session_of_same_customer_is_not_returned(db, gateway):
    meta = SingleCheckoutMetadata(activity_id="102", title="Cooking Class", participants=1)
    gateway.sessions["cs_test_B"] = paid_session("cs_test_B", to_stripe_metadata(meta), amount_total=5000)
    # Session A du même client réglée une minute plus tôt
    db.seed("bookings", _booking_row("cs_test_A", 0, 100.0, created_at=NOW - timedelta(minutes=1)))

    out = resolve_booking_details(db, gateway, "cs_test_B", "single", now=NOW)

    assert out["status"] == "processing"
    assert out["booking"]["id"] is None
    assert out["booking"]["activityId"] == "102"
    assert out["totalAmount"] == 50.0


def test_processor_unreachable_still_answers(db, gateway):
    gateway.fail_retrieve = True
    out = resolve_booking_details(db, gateway, "cs_missing", "single", now=NOW)

    assert out["paymentStatus"] == "unknown"
    assert out["status"] == "processing"
    assert out["booking"]["id"] is None
    assert out["totalAmount"] is None
