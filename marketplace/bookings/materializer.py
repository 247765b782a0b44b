"""
Transforme une session Stripe payée en réservations confirmées.

- Panier: une réservation par article (total = prix × quantité), échec isolé par article.
- Simple: une réservation à partir des métadonnées et du amount_total de la session.
- Idempotence: clé naturelle (stripe_session_id, cart_item_index); les index déjà
  présents sont sautés, un 23505 concurrent compte comme "déjà créé".
- Chaque réservation est réglée (commissions) puis ses notifications partent en outbox.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import logging

from marketplace.checkout.cart import from_minor_units, item_total
from marketplace.checkout.metadata import CartCheckoutMetadata, SingleCheckoutMetadata
from marketplace.commissions import service as commissions
from marketplace.errors import PersistenceError
from marketplace.notifications import composer
from . import repository

logger = logging.getLogger(__name__)

# module marketplace.bookings.materializer
class MaterializationResult:
    def __init__(self, session_id: str, kind: str):
        self.session_id = session_id
        self.kind = kind
        self.created: List[Dict[str, Any]] = []
        self.existing: List[Dict[str, Any]] = []
        self.failed: List[int] = []
        self.notifications = 0

    @property
    def bookings(self) -> List[Dict[str, Any]]:
        return sorted(self.created + self.existing, key=lambda b: b.get("cart_item_index") or 0)

    @property
    def booking_ids(self) -> List[Any]:
        return [b.get("id") for b in self.bookings if b.get("id") is not None]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "type": self.kind,
            "created": len(self.created),
            "existing": len(self.existing),
            "failed": list(self.failed),
            "notifications": self.notifications,
            "bookingIds": self.booking_ids,
        }


def _customer_email(session: Dict[str, Any], meta: Any) -> Optional[str]:
    details = session.get("customer_details") or {}
    return meta.customer_email or details.get("email") or session.get("customer_email")

def _base_row(session: Dict[str, Any], meta: Any, now: datetime) -> Dict[str, Any]:
    details = session.get("customer_details") or {}
    return {
        "customer_id": meta.customer_id,
        "customer_name": meta.customer_name or details.get("name"),
        "customer_email": _customer_email(session, meta),
        "customer_phone": meta.customer_phone or details.get("phone"),
        "status": "confirmed",
        "booking_date": now.isoformat(),
        "created_at": now.isoformat(),
        "booking_source": "direct",
        "commission_invoice_generated": False,
        "stripe_session_id": session.get("id"),
        "stripe_payment_intent_id": session.get("payment_intent"),
    }

def _provider_for(db: Any, booking: Dict[str, Any], provider_id: Optional[str]) -> Optional[str]:
    if provider_id:
        return provider_id
    activity = repository.get_activity(db, booking.get("activity_id"))
    return str(activity["provider_id"]) if activity and activity.get("provider_id") else None

def _settle_and_notify(
    db: Any,
    booking: Dict[str, Any],
    meta: Any,
    *,
    provider_id: Optional[str],
    title: str,
    currency: Optional[str],
    result: MaterializationResult,
    now: datetime,
) -> None:
    provider_id = _provider_for(db, booking, provider_id)
    breakdown = commissions.settle_booking(db, booking, snapshot=meta, provider_id=provider_id, now=now)
    try:
        result.notifications += composer.enqueue_booking_notifications(
            db, booking, breakdown, provider_id=provider_id, activity_title=title, currency=currency,
        )
    except Exception:
        # Les notifications ne remettent jamais en cause la réservation
        logger.exception("bookings.materializer notifications enqueue failed booking=%s", booking.get("id"))

def _materialize_cart(
    db: Any, session: Dict[str, Any], meta: CartCheckoutMetadata, result: MaterializationResult, now: datetime
) -> None:
    existing = {b.get("cart_item_index"): b for b in repository.list_by_session(db, session["id"])}
    base = _base_row(session, meta, now)
    for index, item in enumerate(meta.items):
        try:
            booking = existing.get(index)
            if booking is None:
                row = {
                    **base,
                    "activity_id": item.activity_id,
                    "participants": item.quantity,
                    "total_amount": float(item_total(item)),
                    "cart_item_index": index,
                }
                booking = repository.insert_booking(db, row)
                if booking is None:
                    # Créée entre-temps par une livraison concurrente
                    booking = next((b for b in repository.list_by_session(db, session["id"]) if b.get("cart_item_index") == index), None)
                    if booking is None:
                        raise PersistenceError(f"Réservation introuvable après doublon index={index}")
                    result.existing.append(booking)
                else:
                    result.created.append(booking)
            else:
                result.existing.append(booking)
            _settle_and_notify(db, booking, meta, provider_id=item.provider_id, title=item.title, currency=session.get("currency"), result=result, now=now)
        except Exception:
            logger.exception("bookings.materializer cart item failed session=%s index=%s", session.get("id"), index)
            result.failed.append(index)

def _materialize_single(
    db: Any, session: Dict[str, Any], meta: SingleCheckoutMetadata, result: MaterializationResult, now: datetime
) -> None:
    try:
        existing = repository.list_by_session(db, session["id"])
        booking = existing[0] if existing else None
        if booking is None:
            if session.get("amount_total") is not None:
                total = from_minor_units(session.get("amount_total"), session.get("currency") or "")
            else:
                total = meta.base_amount or 0
            row = {
                **_base_row(session, meta, now),
                "activity_id": meta.activity_id,
                "participants": meta.participants,
                "total_amount": float(total),
                "cart_item_index": 0,
            }
            booking = repository.insert_booking(db, row)
            if booking is None:
                existing = repository.list_by_session(db, session["id"])
                booking = existing[0] if existing else None
                if booking is None:
                    raise PersistenceError("Réservation introuvable après doublon")
                result.existing.append(booking)
            else:
                result.created.append(booking)
        else:
            result.existing.append(booking)
    except PersistenceError:
        raise
    except Exception as e:
        logger.exception("bookings.materializer single booking failed session=%s", session.get("id"))
        raise PersistenceError(f"Réservation non créée: {e}")
    _settle_and_notify(db, booking, meta, provider_id=meta.provider_id, title=meta.title, currency=session.get("currency"), result=result, now=now)

def materialize_session(
    db: Any,
    session: Dict[str, Any],
    meta: Union[CartCheckoutMetadata, SingleCheckoutMetadata],
    now: Optional[datetime] = None,
) -> MaterializationResult:
    """
    Crée (au plus une fois) les réservations d'une session payée.
    - Panier: continue après un article en échec; les index en échec sont listés
      dans result.failed (l'appelant répond 500: Stripe relivre, les articles
      déjà créés sont sautés).
    - Simple: PersistenceError si la réservation ne peut être créée ou réglée.
    """
    now = now or datetime.now(timezone.utc)
    if not session.get("id"):
        raise PersistenceError("Session Stripe sans identifiant")
    result = MaterializationResult(session["id"], meta.kind)
    if isinstance(meta, CartCheckoutMetadata):
        _materialize_cart(db, session, meta, result, now)
        if result.failed:
            logger.warning(
                "bookings.materialize_session partial session=%s ok=%s failed=%s",
                session["id"], len(result.bookings), result.failed,
            )
    else:
        _materialize_single(db, session, meta, result, now)
    logger.info(
        "bookings.materialize_session session=%s type=%s created=%s existing=%s",
        session["id"], meta.kind, len(result.created), len(result.existing),
    )
    return result
