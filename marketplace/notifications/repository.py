"""
Accès aux données pour la feature 'notifications':
- outbox (table notification_outbox), clé d'idempotence "{booking_id}:{kind}"
- contacts (activity_owners, establishments, partner_registrations)
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

OUTBOX = "notification_outbox"

# module marketplace.notifications.repository
def enqueue(db: Any, entry: Dict[str, Any]) -> bool:
    """
    Ajoute une notification en attente.
    - Doublon sur idempotency_key ignoré (retourne False).
    """
    res = (
        db.table(OUTBOX)
        .upsert(entry, on_conflict="idempotency_key", ignore_duplicates=True)
        .execute()
    )
    return bool(res.data)

def fetch_pending(
    db: Any,
    now_iso: str,
    limit: int = 50,
    booking_ids: Optional[Iterable[Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Notifications 'pending' dont next_attempt_at est échu, plus anciennes d'abord.
    - booking_ids: restreint aux réservations données (drain ciblé après un webhook).
    """
    query = (
        db.table(OUTBOX)
        .select("*")
        .eq("status", "pending")
        .lte("next_attempt_at", now_iso)
    )
    if booking_ids is not None:
        query = query.in_("booking_id", [b for b in booking_ids])
    res = query.order("next_attempt_at").limit(limit).execute()
    return res.data or []

def claim(db: Any, entry_id: Any, now_iso: str) -> bool:
    """
    Réserve une ligne avant envoi: 'pending' -> 'sending' (update conditionnel).
    - False si un autre drain l'a déjà prise: ne pas envoyer.
    """
    res = (
        db.table(OUTBOX)
        .update({"status": "sending", "claimed_at": now_iso})
        .eq("id", entry_id)
        .eq("status", "pending")
        .execute()
    )
    return bool(res.data)

def release_stale(db: Any, claimed_before_iso: str) -> int:
    """Rend à 'pending' les lignes 'sending' réservées avant claimed_before_iso."""
    res = (
        db.table(OUTBOX)
        .update({"status": "pending", "claimed_at": None})
        .eq("status", "sending")
        .lte("claimed_at", claimed_before_iso)
        .execute()
    )
    return len(res.data or [])

def mark_sent(db: Any, entry_id: Any, attempts: int, now_iso: str, message_id: Optional[str] = None) -> None:
    db.table(OUTBOX).update({
        "status": "sent",
        "attempts": attempts,
        "sent_at": now_iso,
        "provider_message_id": message_id,
        "last_error": None,
    }).eq("id", entry_id).execute()

def mark_retry(db: Any, entry_id: Any, attempts: int, next_attempt_iso: str, error: str) -> None:
    db.table(OUTBOX).update({
        "status": "pending",
        "claimed_at": None,
        "attempts": attempts,
        "next_attempt_at": next_attempt_iso,
        "last_error": error[:1000],
    }).eq("id", entry_id).execute()

def mark_failed(db: Any, entry_id: Any, attempts: int, error: str) -> None:
    db.table(OUTBOX).update({
        "status": "failed",
        "attempts": attempts,
        "last_error": error[:1000],
    }).eq("id", entry_id).execute()

def _first(db: Any, table: str, columns: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
    if value in (None, ""):
        return None
    try:
        res = db.table(table).select(columns).eq(column, value).limit(1).execute()
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("notifications.repository lookup failed table=%s %s=%s", table, column, value)
        return None

def get_owner(db: Any, provider_id: Any) -> Optional[Dict[str, Any]]:
    return _first(db, "activity_owners", "email, business_name, provider_id", "provider_id", provider_id)

def get_establishment(db: Any, establishment_id: Any) -> Optional[Dict[str, Any]]:
    return _first(db, "establishments", "id, name, partner_id", "id", establishment_id)

def get_partner(db: Any, partner_id: Any) -> Optional[Dict[str, Any]]:
    return _first(db, "partner_registrations", "id, email, business_name", "id", partner_id)
