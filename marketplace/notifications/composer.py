"""
Compose les notifications d'une réservation réglée et les dépose dans l'outbox.

Jusqu'à trois messages indépendants par réservation:
- customer_confirmation: client (si email connu)
- provider_booking: prestataire (activity_owners.provider_id), avec la commission due
- partner_commission: partenaire de l'établissement apporteur, seulement si une commission établissement existe
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from jinja2 import Environment, FileSystemLoader, select_autoescape

from marketplace.config import DEFAULT_CURRENCY, TEMPLATES_DIR
from marketplace.bookings import repository as bookings_repo
from marketplace.commissions.calculator import CommissionBreakdown
from . import repository

logger = logging.getLogger(__name__)

CUSTOMER_CONFIRMATION = "customer_confirmation"
PROVIDER_BOOKING = "provider_booking"
PARTNER_COMMISSION = "partner_commission"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)

# module marketplace.notifications.composer
def _money(value: Any, currency: str) -> str:
    return f"{Decimal(str(value or 0)):,.2f} {currency.upper()}"

def render(template_name: str, context: Dict[str, Any]) -> str:
    return _env.get_template(template_name).render(**context)

def idempotency_key(booking_id: Any, kind: str) -> str:
    return f"{booking_id}:{kind}"

def compose_booking_notifications(
    db: Any,
    booking: Dict[str, Any],
    breakdown: CommissionBreakdown,
    *,
    provider_id: Optional[str] = None,
    activity_title: Optional[str] = None,
    currency: str = DEFAULT_CURRENCY,
) -> List[Dict[str, Any]]:
    """
    Construit les messages (sans écrire) d'une réservation.
    Retour: [{"kind", "recipient", "subject", "html"}, ...]
    """
    booking_id = booking.get("id")
    title = activity_title
    if not title or not provider_id:
        activity = bookings_repo.get_activity(db, booking.get("activity_id")) or {}
        title = title or activity.get("title")
        provider_id = provider_id or (str(activity["provider_id"]) if activity.get("provider_id") else None)
    title = title or "Activity"

    context = {
        "booking_id": booking_id,
        "activity_title": title,
        "participants": booking.get("participants") or 1,
        "customer_name": booking.get("customer_name") or "Customer",
        "customer_email": booking.get("customer_email"),
        "booking_date": booking.get("booking_date"),
        "total": _money(breakdown.total, currency),
        "platform_fee": _money(breakdown.platform_fee_gross, currency),
        "provider_amount": _money(breakdown.provider_amount, currency),
        "establishment_commission": _money(breakdown.establishment_commission, currency),
    }
    messages: List[Dict[str, Any]] = []

    if booking.get("customer_email"):
        messages.append({
            "kind": CUSTOMER_CONFIRMATION,
            "recipient": booking["customer_email"],
            "subject": f"Booking confirmed: {title} (#{booking_id})",
            "html": render(f"{CUSTOMER_CONFIRMATION}.html", context),
        })
    else:
        logger.warning("notifications.composer no customer email booking=%s", booking_id)

    owner = repository.get_owner(db, provider_id)
    if owner and owner.get("email"):
        messages.append({
            "kind": PROVIDER_BOOKING,
            "recipient": owner["email"],
            "subject": f"New booking: {title} (#{booking_id})",
            "html": render(f"{PROVIDER_BOOKING}.html", {**context, "owner_name": owner.get("business_name") or "Partner"}),
        })
    else:
        logger.warning("notifications.composer no provider contact booking=%s provider=%s", booking_id, provider_id)

    if breakdown.has_establishment_commission:
        establishment = repository.get_establishment(db, breakdown.establishment_id) or {}
        partner = repository.get_partner(db, establishment.get("partner_id"))
        if partner and partner.get("email"):
            messages.append({
                "kind": PARTNER_COMMISSION,
                "recipient": partner["email"],
                "subject": f"Commission earned: booking #{booking_id}",
                "html": render(f"{PARTNER_COMMISSION}.html", {
                    **context,
                    "partner_name": partner.get("business_name") or "Partner",
                    "establishment_name": establishment.get("name") or "your establishment",
                }),
            })
        else:
            logger.warning("notifications.composer no partner contact booking=%s establishment=%s", booking_id, breakdown.establishment_id)

    return messages

def enqueue_booking_notifications(
    db: Any,
    booking: Dict[str, Any],
    breakdown: CommissionBreakdown,
    *,
    provider_id: Optional[str] = None,
    activity_title: Optional[str] = None,
    currency: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Dépose les messages dans notification_outbox (idempotent par "{booking_id}:{kind}").
    Retourne le nombre de nouvelles lignes.
    """
    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    created = 0
    messages = compose_booking_notifications(
        db, booking, breakdown, provider_id=provider_id, activity_title=activity_title, currency=currency or DEFAULT_CURRENCY,
    )
    for msg in messages:
        inserted = repository.enqueue(db, {
            "idempotency_key": idempotency_key(booking.get("id"), msg["kind"]),
            "booking_id": booking.get("id"),
            "kind": msg["kind"],
            "recipient": msg["recipient"],
            "subject": msg["subject"],
            "html": msg["html"],
            "status": "pending",
            "attempts": 0,
            "next_attempt_at": now_iso,
            "created_at": now_iso,
        })
        if inserted:
            created += 1
    logger.info("notifications.enqueue booking=%s created=%s", booking.get("id"), created)
    return created
