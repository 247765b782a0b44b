"""
Accès aux données pour la feature 'commissions'
(tables establishment_commissions et commission_invoices).
Écritures en upsert sur booking_id: un recalcul réécrit la même ligne.
"""
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

# module marketplace.commissions.repository
def upsert_commission_record(db: Any, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = db.table("establishment_commissions").upsert(row, on_conflict="booking_id").execute()
    rows = res.data or []
    return rows[0] if rows else None

def upsert_invoice(db: Any, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = db.table("commission_invoices").upsert(row, on_conflict="booking_id").execute()
    rows = res.data or []
    return rows[0] if rows else None

def get_commission_record(db: Any, booking_id: Any) -> Optional[Dict[str, Any]]:
    """Fiche commission établissement d'une réservation (None si aucune ou en erreur)."""
    try:
        res = (
            db.table("establishment_commissions")
            .select("*")
            .eq("booking_id", booking_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("commissions.repository.get_commission_record failed booking_id=%s", booking_id)
        return None
