"""
Traitement des webhooks Stripe: vérification, journal, aiguillage par type d'événement.

- checkout.session.completed (payée) et checkout.session.async_payment_succeeded
  -> matérialisation des réservations
- checkout.session.completed non payée -> acquitté, l'événement async suivra
- payment_intent.succeeded, checkout.session.async_payment_failed -> log seulement
- tout autre type -> ignoré (200)
"""
from typing import Any, Dict, Optional
import logging

from marketplace.bookings.materializer import MaterializationResult, materialize_session
from marketplace.checkout.metadata import parse_stripe_metadata
from marketplace.errors import MalformedMetadataError, PersistenceError
from . import repository

logger = logging.getLogger(__name__)

MATERIALIZING_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
LOG_ONLY_EVENTS = {"payment_intent.succeeded", "checkout.session.async_payment_failed"}
SETTLED_PAYMENT_STATUSES = {"paid", "no_payment_required"}

# module marketplace.webhooks.service
class WebhookOutcome:
    def __init__(self, status: str, event_id: str, event_type: str, result: Optional[MaterializationResult] = None, detail: Optional[str] = None):
        self.status = status
        self.event_id = event_id
        self.event_type = event_type
        self.result = result
        self.detail = detail

    @property
    def booking_ids(self):
        return self.result.booking_ids if self.result else []

    @property
    def partial(self) -> bool:
        return bool(self.result and self.result.failed)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"received": True, "status": self.status, "eventId": self.event_id, "type": self.event_type}
        if self.detail:
            out["detail"] = self.detail
        if self.result:
            out.update(self.result.as_dict())
        return out


def _journal(action, db: Any, event_id: str, *args) -> Any:
    # Le journal est best-effort: l'idempotence des réservations ne dépend pas de lui
    try:
        return action(db, event_id, *args)
    except Exception:
        logger.exception("webhooks.service journal %s failed event=%s", getattr(action, "__name__", action), event_id)
        return None

def handle_event(db: Any, event: Dict[str, Any]) -> WebhookOutcome:
    """
    Aiguille un événement déjà vérifié.
    - Événement déjà traité -> "duplicate" sans effet.
    - Métadonnées illisibles -> "malformed" journalisé et acquitté.
    - Réservation simple impossible -> PersistenceError (500, Stripe relivre).
    - Panier partiel -> "partial" (la vue répond 500).
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    logger.info("webhooks.service event=%s type=%s", event_id, event_type)

    if event_id:
        existing = _journal(repository.get_event, db, event_id)
        if existing and existing.get("processed"):
            logger.info("webhooks.service duplicate event=%s", event_id)
            return WebhookOutcome("duplicate", event_id, event_type)
        _journal(repository.record_event, db, event_id, event_type)

    obj = ((event.get("data") or {}).get("object")) or {}

    if event_type in LOG_ONLY_EVENTS:
        logger.info("webhooks.service log-only event=%s type=%s object=%s", event_id, event_type, obj.get("id"))
        _journal(repository.mark_processed, db, event_id)
        return WebhookOutcome("acknowledged", event_id, event_type)

    if event_type not in MATERIALIZING_EVENTS:
        _journal(repository.mark_processed, db, event_id)
        return WebhookOutcome("ignored", event_id, event_type)

    if event_type == "checkout.session.completed" and obj.get("payment_status") not in SETTLED_PAYMENT_STATUSES:
        logger.info("webhooks.service payment pending session=%s payment_status=%s", obj.get("id"), obj.get("payment_status"))
        _journal(repository.mark_processed, db, event_id)
        return WebhookOutcome("awaiting_payment", event_id, event_type)

    try:
        meta = parse_stripe_metadata(obj.get("metadata"))
    except MalformedMetadataError as e:
        logger.error("webhooks.service malformed metadata event=%s session=%s error=%s", event_id, obj.get("id"), e)
        _journal(repository.mark_processed, db, event_id, f"{e.code}: {e}")
        return WebhookOutcome("malformed", event_id, event_type, detail=str(e))

    try:
        result = materialize_session(db, obj, meta)
    except PersistenceError as e:
        _journal(repository.mark_error, db, event_id, f"{e.code}: {e}")
        raise

    if result.failed:
        _journal(repository.mark_error, db, event_id, f"cart items failed: {result.failed}")
        return WebhookOutcome("partial", event_id, event_type, result=result)

    _journal(repository.mark_processed, db, event_id)
    return WebhookOutcome("processed", event_id, event_type, result=result)

def process_webhook(db: Any, gateway: Any, payload: bytes, sig_header: Optional[str]) -> WebhookOutcome:
    """
    Vérifie la signature puis traite l'événement.
    UntrustedEventError remonte sans aucun effet de bord (ni journal, ni écriture).
    """
    event = gateway.verify_event(payload, sig_header)
    return handle_event(db, event)
