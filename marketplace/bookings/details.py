"""
Lecture pour la page de confirmation post-paiement.
Tolérante à un règlement partiel: sans réservation en base, un résumé provisoire
(status "processing") est construit à partir de la session. Aucune écriture.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from marketplace.checkout.cart import from_minor_units, item_total
from marketplace.checkout.metadata import CartCheckoutMetadata, parse_stripe_metadata
from marketplace.config import BOOKING_LOOKUP_WINDOW_MINUTES
from . import repository

logger = logging.getLogger(__name__)

# module marketplace.bookings.details
def _summary(booking: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": booking.get("id"),
        "activityId": booking.get("activity_id"),
        "participants": booking.get("participants"),
        "totalAmount": booking.get("total_amount"),
        "status": booking.get("status"),
        "bookingDate": booking.get("booking_date"),
        "customerName": booking.get("customer_name"),
        "customerEmail": booking.get("customer_email"),
    }

def _placeholders(session: Optional[Dict[str, Any]], customer_email: Optional[str]) -> List[Dict[str, Any]]:
    """Résumés non persistés construits depuis les métadonnées (ou une ligne vide)."""
    base = {"id": None, "status": "processing", "customerEmail": customer_email, "bookingDate": None}
    meta = None
    if session:
        try:
            meta = parse_stripe_metadata(session.get("metadata"))
        except Exception:
            logger.warning("bookings.details placeholder without metadata session=%s", session.get("id"))
    if isinstance(meta, CartCheckoutMetadata):
        return [
            {**base, "activityId": it.activity_id, "activityTitle": it.title, "participants": it.quantity, "totalAmount": float(item_total(it))}
            for it in meta.items
        ]
    if meta is not None:
        total = float(meta.base_amount) if meta.base_amount is not None else None
        return [{**base, "activityId": meta.activity_id, "activityTitle": meta.title, "participants": meta.participants, "totalAmount": total, "customerName": meta.customer_name}]
    return [{**base, "activityId": None, "participants": None, "totalAmount": None}]

def resolve_booking_details(
    db: Any,
    gateway: Any,
    session_id: str,
    checkout_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Résumé de réservation pour une session Stripe.
    1) réservations portant stripe_session_id
    2) sinon réservations historiques (sans stripe_session_id) de l'email client
       créées depuis BOOKING_LOOKUP_WINDOW_MINUTES
    3) sinon résumé provisoire "processing"
    Stripe injoignable -> paymentStatus "unknown", jamais d'erreur.
    """
    now = now or datetime.now(timezone.utc)
    session: Optional[Dict[str, Any]] = None
    try:
        session = gateway.retrieve_session(session_id)
    except Exception:
        logger.exception("bookings.details retrieve_session failed session=%s", session_id)

    metadata = (session or {}).get("metadata") or {}
    details = (session or {}).get("customer_details") or {}
    customer_email = details.get("email") or (session or {}).get("customer_email") or metadata.get("customerEmail")
    is_cart = checkout_type == "cart" if checkout_type else str(metadata.get("isCartCheckout") or "").lower() == "true"

    try:
        bookings = repository.list_by_session(db, session_id)
    except Exception:
        logger.exception("bookings.details list_by_session failed session=%s", session_id)
        bookings = []
    if not bookings and customer_email:
        since = (now - timedelta(minutes=BOOKING_LOOKUP_WINDOW_MINUTES)).isoformat()
        bookings = repository.find_recent_by_email(db, customer_email, since)
        if bookings and not is_cart:
            bookings = bookings[:1]

    if bookings:
        summaries = [_summary(b) for b in bookings]
        status = "confirmed"
    else:
        summaries = _placeholders(session, customer_email)
        status = "processing"

    if session and session.get("amount_total") is not None:
        total_amount = float(from_minor_units(session["amount_total"], session.get("currency") or ""))
    else:
        total_amount = sum(float(s.get("totalAmount") or 0) for s in summaries) or None

    out: Dict[str, Any] = {
        "sessionId": session_id,
        "type": "cart" if is_cart else "single",
        "isCartCheckout": is_cart,
        "customerEmail": customer_email,
        "totalAmount": total_amount,
        "paymentStatus": (session or {}).get("payment_status") or "unknown",
        "status": status,
    }
    if is_cart:
        out["bookings"] = summaries
    else:
        out["booking"] = summaries[0]
    return out
