from datetime import datetime, timedelta, timezone

import pytest

from marketplace.commissions.calculator import compute_breakdown
from marketplace.errors import NotificationError
from marketplace.notifications import composer, sender as sender_mod, worker
from marketplace.notifications import repository as outbox

from fakes import FakeSender

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _booking(booking_id=7, email="bob@example.com"):
    return {
        "id": booking_id,
        "activity_id": 101,
        "participants": 2,
        "customer_name": "Bob Traveller",
        "customer_email": email,
        "booking_date": NOW.isoformat(),
        "total_amount": 200.0,
    }


def _enqueue(db, booking, establishment_id=None):
    return composer.enqueue_booking_notifications(
        db, booking, compute_breakdown(booking["total_amount"], establishment_id), provider_id="prov-1", now=NOW,
    )


def test_compose_three_messages_with_establishment(db):
    messages = composer.compose_booking_notifications(
        db, _booking(), compute_breakdown(200, "est-1"), provider_id="prov-1", currency="thb",
    )
    by_kind = {m["kind"]: m for m in messages}

    assert set(by_kind) == {"customer_confirmation", "provider_booking", "partner_commission"}
    assert by_kind["customer_confirmation"]["recipient"] == "bob@example.com"
    assert by_kind["customer_confirmation"]["subject"] == "Booking confirmed: Elephant Sanctuary (#7)"
    assert by_kind["provider_booking"]["recipient"] == "owner1@example.com"
    assert "160.00 THB" in by_kind["provider_booking"]["html"]
    assert by_kind["partner_commission"]["recipient"] == "partner@example.com"
    assert "Hotel Riverside" in by_kind["partner_commission"]["html"]
    assert "20.00 THB" in by_kind["partner_commission"]["html"]


def test_compose_skips_unknown_recipients(db):
    messages = composer.compose_booking_notifications(
        db, _booking(email=None), compute_breakdown(200), provider_id="prov-unknown",
    )
    assert messages == []


def test_html_is_escaped(db):
    booking = {**_booking(), "customer_name": "<script>x</script>"}
    [customer, _] = composer.compose_booking_notifications(db, booking, compute_breakdown(200), provider_id="prov-1")
    assert "<script>" not in customer["html"]


def test_enqueue_is_idempotent_per_booking_and_kind(db):
    assert _enqueue(db, _booking(), "est-1") == 3
    assert _enqueue(db, _booking(), "est-1") == 0

    keys = sorted(r["idempotency_key"] for r in db.rows("notification_outbox"))
    assert keys == ["7:customer_confirmation", "7:partner_commission", "7:provider_booking"]
    assert all(r["status"] == "pending" and r["attempts"] == 0 for r in db.rows("notification_outbox"))


def test_dispatch_sends_pending_messages(db):
    _enqueue(db, _booking())
    sender = FakeSender()

    stats = worker.dispatch_pending(db, sender, now=NOW)

    assert stats == {"sent": 2, "retry": 0, "failed": 0}
    assert sorted(m["to"] for m in sender.sent) == ["bob@example.com", "owner1@example.com"]
    assert all(r["status"] == "sent" and r["attempts"] == 1 for r in db.rows("notification_outbox"))
    assert worker.dispatch_pending(db, sender, now=NOW) == {"sent": 0, "retry": 0, "failed": 0}


def test_failed_send_is_retried_after_backoff(db):
    composer.enqueue_booking_notifications(db, _booking(), compute_breakdown(200), provider_id="prov-none", now=NOW)
    sender = FakeSender(failures=1)

    assert worker.dispatch_pending(db, sender, now=NOW)["retry"] == 1
    [row] = db.rows("notification_outbox")
    assert row["status"] == "pending"
    assert row["attempts"] == 1
    assert row["next_attempt_at"] == (NOW + timedelta(seconds=60)).isoformat()
    assert row["last_error"] == "smtp down"

    # Pas encore échu
    assert worker.dispatch_pending(db, sender, now=NOW + timedelta(seconds=30))["sent"] == 0
    assert worker.dispatch_pending(db, sender, now=NOW + timedelta(seconds=61))["sent"] == 1
    assert db.rows("notification_outbox")[0]["status"] == "sent"
    assert db.rows("notification_outbox")[0]["attempts"] == 2


def test_message_fails_after_max_attempts(db):
    composer.enqueue_booking_notifications(db, _booking(), compute_breakdown(200), provider_id="prov-none", now=NOW)
    sender = FakeSender(failures=-1)

    later = NOW
    outcomes = []
    for _ in range(3):
        outcomes.append(worker.dispatch_pending(db, sender, now=later, max_attempts=3))
        later += timedelta(hours=2)

    assert [o["retry"] for o in outcomes] == [1, 1, 0]
    assert outcomes[-1]["failed"] == 1
    [row] = db.rows("notification_outbox")
    assert row["status"] == "failed"
    assert row["attempts"] == 3
    assert worker.dispatch_pending(db, sender, now=later) == {"sent": 0, "retry": 0, "failed": 0}


def test_dispatch_for_bookings_only_drains_given_bookings(db):
    _enqueue(db, _booking(booking_id=7))
    _enqueue(db, _booking(booking_id=8))
    sender = FakeSender()

    stats = worker.dispatch_for_bookings(db, sender, [8, None])

    assert stats["sent"] == 2
    assert {r["booking_id"] for r in db.rows("notification_outbox") if r["status"] == "sent"} == {8}
    assert worker.dispatch_for_bookings(db, sender, []) == {"sent": 0, "retry": 0, "failed": 0}


def test_overlapping_dispatchers_send_each_message_once(db):
    _enqueue(db, _booking())
    deliveries = []

    class _RecordingSender(FakeSender):
        def __init__(self, overlap=False):
            super().__init__()
            self.overlap = overlap

        def send(self, to, subject, html):
            if self.overlap:
                self.overlap = False
                # Un second drain démarre pendant le premier envoi
                worker.dispatch_pending(db, _RecordingSender(), now=NOW)
            deliveries.append(to)
            return super().send(to, subject, html)

    worker.dispatch_pending(db, _RecordingSender(overlap=True), now=NOW)

    assert sorted(deliveries) == ["bob@example.com", "owner1@example.com"]
    assert all(r["status"] == "sent" and r["attempts"] == 1 for r in db.rows("notification_outbox"))


def test_claimed_row_is_skipped_then_released_when_stale(db):
    _enqueue(db, _booking())
    [first, second] = sorted(db.rows("notification_outbox"), key=lambda r: r["id"])

    assert outbox.claim(db, first["id"], NOW.isoformat()) is True
    assert outbox.claim(db, first["id"], NOW.isoformat()) is False

    sender = FakeSender()
    assert worker.dispatch_pending(db, sender, now=NOW + timedelta(seconds=60))["sent"] == 1
    assert [m["to"] for m in sender.sent] == [second["recipient"]]

    # Réservation abandonnée: reprise après le délai
    later = NOW + timedelta(seconds=601)
    assert worker.dispatch_pending(db, sender, now=later, claim_timeout=600)["sent"] == 1
    assert all(r["status"] == "sent" for r in db.rows("notification_outbox"))
    assert len(sender.sent) == 2


@pytest.mark.parametrize("attempts,expected", [(1, 60), (2, 120), (3, 240), (6, 1920), (7, 3600), (12, 3600)])
def test_backoff_is_exponential_and_capped(attempts, expected):
    assert worker.backoff_seconds(attempts) == expected


def test_resend_sender_wraps_errors(monkeypatch):
    def _boom(params):
        raise RuntimeError("401 invalid api key")

    monkeypatch.setattr(sender_mod.resend.Emails, "send", _boom)
    with pytest.raises(NotificationError):
        sender_mod.ResendEmailSender("re_test").send("bob@example.com", "Hi", "<p>hi</p>")


def test_resend_sender_returns_message_id(monkeypatch):
    captured = {}

    def _send(params):
        captured.update(params)
        return {"id": "email_123"}

    monkeypatch.setattr(sender_mod.resend.Emails, "send", _send)
    out = sender_mod.ResendEmailSender("re_test", from_email="Shop <noreply@example.com>").send("bob@example.com", "Hi", "<p>hi</p>")

    assert out == "email_123"
    assert captured["to"] == ["bob@example.com"]
    assert captured["from"] == "Shop <noreply@example.com>"


def test_logging_sender_never_fails():
    assert sender_mod.LoggingEmailSender().send("bob@example.com", "Hi", "<p>hi</p>") is None
