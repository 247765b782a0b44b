"""
Accès aux données pour la feature 'bookings' (tables bookings, activities, activity_owners).
"""
from typing import Any, Dict, List, Optional
import logging

from marketplace.infra.supabase_client import is_unique_violation

logger = logging.getLogger(__name__)

# module marketplace.bookings.repository
def list_by_session(db: Any, session_id: str) -> List[Dict[str, Any]]:
    """
    Réservations déjà créées pour une session Stripe, triées par cart_item_index.
    Les erreurs remontent: le matérialiseur ne doit pas supposer "aucune réservation".
    """
    res = (
        db.table("bookings")
        .select("*")
        .eq("stripe_session_id", session_id)
        .order("cart_item_index")
        .execute()
    )
    return res.data or []

def insert_booking(db: Any, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Insère une réservation.
    - Retourne None si (stripe_session_id, cart_item_index) existe déjà (23505).
    - Toute autre erreur remonte à l'appelant.
    """
    try:
        res = db.table("bookings").insert(row).execute()
    except Exception as e:
        if is_unique_violation(e):
            logger.info(
                "bookings.repository.insert_booking duplicate session=%s index=%s",
                row.get("stripe_session_id"), row.get("cart_item_index"),
            )
            return None
        raise
    rows = res.data or []
    return rows[0] if rows else None

def get_booking(db: Any, booking_id: Any) -> Optional[Dict[str, Any]]:
    res = db.table("bookings").select("*").eq("id", booking_id).limit(1).execute()
    rows = res.data or []
    return rows[0] if rows else None

def update_booking(db: Any, booking_id: Any, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = db.table("bookings").update(fields).eq("id", booking_id).execute()
    rows = res.data or []
    return rows[0] if rows else None

def find_recent_by_email(db: Any, email: str, since_iso: str, limit: int = 20) -> List[Dict[str, Any]]:
    """
    Réservations récentes d'un client (page de confirmation, avant/pendant le webhook).
    - Seulement les lignes sans stripe_session_id: une réservation rattachée
      à une autre session n'est jamais renvoyée.
    - Retourne [] en cas d'erreur.
    """
    try:
        res = (
            db.table("bookings")
            .select("*")
            .eq("customer_email", email)
            .is_("stripe_session_id", "null")
            .gte("created_at", since_iso)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("bookings.repository.find_recent_by_email failed email=%s", email)
        return []

def get_activity(db: Any, activity_id: Any) -> Optional[Dict[str, Any]]:
    """
    Activité (title, description, provider_id). None si introuvable ou en erreur.
    """
    try:
        res = (
            db.table("activities")
            .select("id, title, description, provider_id")
            .eq("id", activity_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("bookings.repository.get_activity failed activity_id=%s", activity_id)
        return None
