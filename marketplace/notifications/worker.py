"""
Worker de l'outbox: envoie les notifications en attente avec retries bornés.

- Échec d'envoi: attempts += 1, prochaine tentative après un backoff exponentiel
  (60 s × 2^(attempts-1), plafonné à 1 h).
- Au-delà de OUTBOX_MAX_ATTEMPTS: statut 'failed', plus de tentative.
- Chaque ligne est réservée (pending -> sending) avant envoi: deux drains
  concurrents (webhook et boucle périodique) n'envoient jamais deux fois.
- Aucune erreur d'envoi ne remonte à l'appelant (webhook, boucle périodique).
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional
import logging
import time

from marketplace.config import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_CLAIM_TIMEOUT_SECONDS,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_POLL_SECONDS,
)
from . import repository

logger = logging.getLogger(__name__)

BASE_BACKOFF_SECONDS = 60
MAX_BACKOFF_SECONDS = 3600

# module marketplace.notifications.worker
def backoff_seconds(attempts: int) -> int:
    return min(BASE_BACKOFF_SECONDS * (2 ** max(attempts - 1, 0)), MAX_BACKOFF_SECONDS)

def _deliver(db: Any, sender: Any, entry: Dict[str, Any], now: datetime, max_attempts: int) -> str:
    attempts = int(entry.get("attempts") or 0) + 1
    try:
        message_id = sender.send(entry["recipient"], entry["subject"], entry["html"])
    except Exception as e:
        error = str(e) or type(e).__name__
        if attempts >= max_attempts:
            logger.error("notifications.worker giving up id=%s kind=%s attempts=%s error=%s", entry.get("id"), entry.get("kind"), attempts, error)
            repository.mark_failed(db, entry["id"], attempts, error)
            return "failed"
        retry_at = now + timedelta(seconds=backoff_seconds(attempts))
        logger.warning("notifications.worker retry id=%s kind=%s attempts=%s at=%s error=%s", entry.get("id"), entry.get("kind"), attempts, retry_at.isoformat(), error)
        repository.mark_retry(db, entry["id"], attempts, retry_at.isoformat(), error)
        return "retry"
    repository.mark_sent(db, entry["id"], attempts, now.isoformat(), message_id)
    return "sent"

def dispatch_pending(
    db: Any,
    sender: Any,
    *,
    booking_ids: Optional[Iterable[Any]] = None,
    now: Optional[datetime] = None,
    batch_size: int = OUTBOX_BATCH_SIZE,
    max_attempts: int = OUTBOX_MAX_ATTEMPTS,
    claim_timeout: int = OUTBOX_CLAIM_TIMEOUT_SECONDS,
) -> Dict[str, int]:
    """
    Envoie un lot de notifications échues.
    Sans booking_ids (boucle périodique), les réservations abandonnées depuis
    claim_timeout secondes sont d'abord rendues à 'pending'.
    Retour: {"sent": n, "retry": n, "failed": n}
    """
    now = now or datetime.now(timezone.utc)
    stats = {"sent": 0, "retry": 0, "failed": 0}
    if booking_ids is None:
        try:
            released = repository.release_stale(db, (now - timedelta(seconds=claim_timeout)).isoformat())
            if released:
                logger.warning("notifications.worker released %s stale claims", released)
        except Exception:
            logger.exception("notifications.worker release_stale failed")
    try:
        entries = repository.fetch_pending(db, now.isoformat(), limit=batch_size, booking_ids=booking_ids)
    except Exception:
        logger.exception("notifications.worker fetch_pending failed")
        return stats
    for entry in entries:
        try:
            if not repository.claim(db, entry["id"], now.isoformat()):
                logger.info("notifications.worker already claimed id=%s", entry.get("id"))
                continue
            outcome = _deliver(db, sender, entry, now, max_attempts)
        except Exception:
            # Échec d'écriture du statut: la ligne reste réservée jusqu'à release_stale
            logger.exception("notifications.worker status update failed id=%s", entry.get("id"))
            continue
        stats[outcome] += 1
    if entries:
        logger.info("notifications.worker dispatched %s", stats)
    return stats

def dispatch_for_bookings(db: Any, sender: Any, booking_ids: Iterable[Any]) -> Dict[str, int]:
    """Drain ciblé, planifié par le webhook (BackgroundTasks) après la réponse HTTP."""
    ids = [b for b in booking_ids if b is not None]
    if not ids:
        return {"sent": 0, "retry": 0, "failed": 0}
    return dispatch_pending(db, sender, booking_ids=ids)

def run_forever(db: Any, sender: Any, poll_seconds: int = OUTBOX_POLL_SECONDS) -> None:
    logger.info("notifications.worker started poll=%ss", poll_seconds)
    while True:
        stats = dispatch_pending(db, sender)
        # Lot plein: on enchaîne sans attendre
        if sum(stats.values()) < OUTBOX_BATCH_SIZE:
            time.sleep(poll_seconds)
