"""
Suivi des liens d'apport établissement (QR code).

Règles:
- Une visite crée un lien valable REFERRAL_LINK_DAYS jours (15 par défaut); les liens antérieurs restent intacts.
- Résolution: utilisateur connecté -> lien le plus récent de ce visitor_id,
  puis session anonyme -> lien le plus récent de ce session_id sans visitor_id.
- Un lien expiré ou inactif n'est jamais retourné.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from marketplace.config import REFERRAL_LINK_DAYS
from marketplace.errors import PersistenceError
from . import repository

logger = logging.getLogger(__name__)

# module marketplace.referrals.service
def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def record_visit(
    db: Any,
    establishment_id: str,
    *,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Enregistre une visite (scan QR) et retourne le lien créé.
    - Exige establishment_id et au moins un sujet (user_id ou session_id): sinon ValueError.
    - Échec d'écriture -> PersistenceError.
    """
    if not establishment_id:
        raise ValueError("establishment_id requis")
    if not user_id and not session_id:
        raise ValueError("user_id ou session_id requis")
    created_at = now or _utcnow()
    row = {
        "establishment_id": establishment_id,
        "visitor_id": user_id or None,
        "session_id": session_id or None,
        "created_at": created_at.isoformat(),
        "expires_at": (created_at + timedelta(days=REFERRAL_LINK_DAYS)).isoformat(),
        "is_active": True,
        "metadata": metadata or {},
        "user_agent": user_agent or "unknown",
        "ip_address": ip_address or "unknown",
    }
    try:
        link = repository.insert_link(db, row)
    except Exception as e:
        logger.exception("referrals.service.record_visit failed establishment_id=%s", establishment_id)
        raise PersistenceError(f"Visite non enregistrée: {e}")
    if not link:
        raise PersistenceError("Visite non enregistrée: aucune ligne retournée")
    logger.info("referrals.record_visit link=%s establishment=%s user=%s", link.get("id"), establishment_id, bool(user_id))
    return link

def get_active_link(
    db: Any,
    *,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Retourne le lien actif le plus récent pour un utilisateur ou une session, ou None.
    """
    now_iso = (now or _utcnow()).isoformat()
    if user_id:
        link = repository.find_latest_for_user(db, user_id, now_iso)
        if link:
            return link
    if session_id:
        return repository.find_latest_for_session(db, session_id, now_iso)
    return None

def claim_for_user(db: Any, session_id: str, user_id: str, now: Optional[datetime] = None) -> int:
    """
    Rattache les liens anonymes non expirés d'une session à un utilisateur.
    Retourne le nombre de liens rattachés (0 si rien à rattacher).
    """
    if not session_id or not user_id:
        return 0
    now_iso = (now or _utcnow()).isoformat()
    try:
        claimed = repository.claim_session_links(db, session_id, user_id, now_iso)
    except Exception as e:
        logger.exception("referrals.service.claim_for_user failed session_id=%s", session_id)
        raise PersistenceError(f"Rattachement impossible: {e}")
    logger.info("referrals.claim_for_user user=%s claimed=%s", user_id, len(claimed))
    return len(claimed)
