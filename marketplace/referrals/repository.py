"""
Accès aux données pour la feature 'referrals' (table establishment_referral_links).
Le client Supabase est toujours passé en paramètre.
"""
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

TABLE = "establishment_referral_links"

# module marketplace.referrals.repository
def insert_link(db: Any, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = db.table(TABLE).insert(row).execute()
    rows = res.data or []
    return rows[0] if rows else None

def find_latest_for_user(db: Any, user_id: str, now_iso: str) -> Optional[Dict[str, Any]]:
    """
    Lien actif le plus récent rattaché à un utilisateur (visitor_id), non expiré.
    - Retourne None en cas d'erreur (lecture best-effort).
    """
    try:
        res = (
            db.table(TABLE)
            .select("*")
            .eq("visitor_id", user_id)
            .eq("is_active", True)
            .gt("expires_at", now_iso)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("referrals.repository.find_latest_for_user failed user_id=%s", user_id)
        return None

def find_latest_for_session(db: Any, session_id: str, now_iso: str) -> Optional[Dict[str, Any]]:
    """
    Lien actif le plus récent d'une session anonyme (visitor_id NULL), non expiré.
    """
    try:
        res = (
            db.table(TABLE)
            .select("*")
            .eq("session_id", session_id)
            .is_("visitor_id", "null")
            .eq("is_active", True)
            .gt("expires_at", now_iso)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("referrals.repository.find_latest_for_session failed session_id=%s", session_id)
        return None

def claim_session_links(db: Any, session_id: str, user_id: str, now_iso: str) -> List[Dict[str, Any]]:
    """
    Rattache à user_id les liens anonymes encore valides d'une session.
    Retourne les lignes mises à jour.
    """
    res = (
        db.table(TABLE)
        .update({"visitor_id": user_id})
        .eq("session_id", session_id)
        .is_("visitor_id", "null")
        .eq("is_active", True)
        .gt("expires_at", now_iso)
        .execute()
    )
    return res.data or []
