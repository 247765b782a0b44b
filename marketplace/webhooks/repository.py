"""
Journal des événements Stripe (table stripe_webhook_events).
Un événement marqué processed n'est jamais retraité.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

TABLE = "stripe_webhook_events"

# module marketplace.webhooks.repository
def get_event(db: Any, event_id: str) -> Optional[Dict[str, Any]]:
    res = db.table(TABLE).select("*").eq("stripe_event_id", event_id).limit(1).execute()
    rows = res.data or []
    return rows[0] if rows else None

def record_event(db: Any, event_id: str, event_type: str) -> None:
    """Journalise la réception (une ligne par event id, sans écraser l'état existant)."""
    db.table(TABLE).upsert(
        {
            "stripe_event_id": event_id,
            "event_type": event_type,
            "processed": False,
            "created_at": datetime.now(timezone.utc).isoformat(),
        },
        on_conflict="stripe_event_id",
        ignore_duplicates=True,
    ).execute()

def mark_processed(db: Any, event_id: str, error: Optional[str] = None) -> None:
    db.table(TABLE).update({
        "processed": True,
        "error_message": error,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }).eq("stripe_event_id", event_id).execute()

def mark_error(db: Any, event_id: str, error: str) -> None:
    db.table(TABLE).update({"processed": False, "error_message": error[:1000]}).eq("stripe_event_id", event_id).execute()
