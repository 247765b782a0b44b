from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marketplace.bookings.materializer import materialize_session
from marketplace.checkout.metadata import CartCheckoutMetadata, SingleCheckoutMetadata, parse_stripe_metadata, to_stripe_metadata
from marketplace.checkout.models import CartItem
from marketplace.commissions.repository import get_commission_record
from marketplace.errors import PersistenceError
from marketplace.referrals import service as referrals

from fakes import paid_session

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _cart_session(session_id="cs_test_cart", customer_id=None, **meta_fields):
    items = [
        CartItem(activity_id=101, quantity=2, price=100, title="Elephant Sanctuary", provider_id="prov-1"),
        CartItem(activity_id=102, quantity=1, price=50, title="Cooking Class", provider_id="prov-2"),
        CartItem(activity_id=103, quantity=3, price="12.50", title="Temple Tour"),
    ]
    raw = to_stripe_metadata(CartCheckoutMetadata(items=items, customer_id=customer_id, **meta_fields))
    return paid_session(session_id, raw, amount_total=28800)


def _run(db, session, now=NOW):
    return materialize_session(db, session, parse_stripe_metadata(session["metadata"]), now=now)


def test_cart_creates_one_booking_per_item(db):
    result = _run(db, _cart_session())

    bookings = sorted(db.rows("bookings"), key=lambda b: b["cart_item_index"])
    assert [b["cart_item_index"] for b in bookings] == [0, 1, 2]
    assert [b["total_amount"] for b in bookings] == [200.0, 50.0, 37.5]
    assert [b["participants"] for b in bookings] == [2, 1, 3]
    assert all(b["status"] == "confirmed" for b in bookings)
    assert all(b["stripe_session_id"] == "cs_test_cart" for b in bookings)
    assert bookings[0]["customer_email"] == "bob@example.com"
    assert bookings[0]["customer_name"] == "Bob Traveller"
    assert len(result.created) == 3 and result.failed == []
    assert result.booking_ids == [b["id"] for b in bookings]


def test_cart_bookings_are_settled_and_notified(db):
    _run(db, _cart_session())

    bookings = db.rows("bookings")
    assert all(b["commission_invoice_generated"] for b in bookings)
    assert len(db.rows("commission_invoices")) == 3
    # Le prestataire de l'article sans providerId est retrouvé via l'activité
    invoice = next(i for i in db.rows("commission_invoices") if i["total_booking_amount"] == 37.5)
    assert invoice["provider_id"] == "prov-1"
    kinds = sorted(row["kind"] for row in db.rows("notification_outbox"))
    assert kinds == ["customer_confirmation"] * 3 + ["provider_booking"] * 3


def test_duplicate_delivery_creates_nothing_new(db):
    session = _cart_session()
    _run(db, session)
    second = _run(db, session, now=NOW + timedelta(minutes=5))

    assert len(db.rows("bookings")) == 3
    assert len(second.created) == 0 and len(second.existing) == 3
    assert len(db.rows("commission_invoices")) == 3
    assert len(db.rows("notification_outbox")) == 6
    assert second.notifications == 0


def test_failed_item_does_not_block_the_others(db):
    db.fail("bookings", "insert", when=lambda row: row.get("cart_item_index") == 1)
    session = _cart_session()
    result = _run(db, session)

    assert result.failed == [1]
    assert sorted(b["cart_item_index"] for b in db.rows("bookings")) == [0, 2]

    # Relivraison après rétablissement: seul l'article manquant est créé
    db.clear_failures()
    retry = _run(db, session)
    assert retry.failed == []
    assert len(retry.created) == 1 and retry.created[0]["cart_item_index"] == 1
    assert len(db.rows("bookings")) == 3


def test_cart_with_referral_link_pays_establishment(db):
    referrals.record_visit(db, "est-1", user_id="user-1", now=NOW - timedelta(days=1))
    _run(db, _cart_session(customer_id="user-1"))

    first = sorted(db.rows("bookings"), key=lambda b: b["cart_item_index"])[0]
    assert first["booking_source"] == "qr_code"
    assert get_commission_record(db, first["id"])["commission_amount"] == 20.0
    assert len([r for r in db.rows("notification_outbox") if r["kind"] == "partner_commission"]) == 3


def test_single_booking_uses_session_amount(db):
    meta = SingleCheckoutMetadata(
        activity_id="102", provider_id="prov-2", title="Cooking Class", participants=3,
        base_amount=Decimal("1499.50"), customer_name="Carol",
    )
    session = paid_session("cs_test_single", to_stripe_metadata(meta), amount_total=150000)
    result = _run(db, session)

    [booking] = db.rows("bookings")
    assert booking["total_amount"] == 1500.0
    assert booking["participants"] == 3
    assert booking["customer_name"] == "Carol"
    assert booking["cart_item_index"] == 0
    assert result.kind == "single" and len(result.created) == 1

    again = _run(db, session)
    assert len(db.rows("bookings")) == 1 and len(again.existing) == 1


def test_single_falls_back_to_base_amount(db):
    meta = SingleCheckoutMetadata(activity_id="101", base_amount=Decimal("80.00"))
    session = paid_session("cs_test_base", to_stripe_metadata(meta), amount_total=None)
    _run(db, session)
    assert db.rows("bookings")[0]["total_amount"] == 80.0


def test_single_insert_failure_raises(db):
    db.fail("bookings", "insert")
    meta = SingleCheckoutMetadata(activity_id="101", base_amount=Decimal("80.00"))
    with pytest.raises(PersistenceError):
        _run(db, paid_session("cs_test_fail", to_stripe_metadata(meta), amount_total=8000))
    assert db.rows("bookings") == []


def test_notification_failure_keeps_booking(db):
    db.fail("notification_outbox", "upsert")
    meta = SingleCheckoutMetadata(activity_id="101", base_amount=Decimal("80.00"))
    result = _run(db, paid_session("cs_test_notify", to_stripe_metadata(meta), amount_total=8000))

    assert len(result.created) == 1
    assert result.notifications == 0
    assert db.rows("bookings")[0]["commission_invoice_generated"] is True


def test_session_without_id_is_rejected(db):
    meta = SingleCheckoutMetadata(activity_id="101")
    with pytest.raises(PersistenceError):
        materialize_session(db, {"metadata": {}}, meta, now=NOW)


def test_notifications_use_the_session_currency(db):
    meta = SingleCheckoutMetadata(activity_id="101", provider_id="prov-1", title="Elephant Sanctuary")
    _run(db, paid_session("cs_test_usd", to_stripe_metadata(meta), amount_total=10000, currency="usd"))

    by_kind = {r["kind"]: r["html"] for r in db.rows("notification_outbox")}
    assert "Total paid: 100.00 USD" in by_kind["customer_confirmation"]
    assert "THB" not in by_kind["provider_booking"]
