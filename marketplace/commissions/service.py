"""
Règlement d'une réservation: répartition, fiche commission établissement, facture.

- Attribution re-résolue au règlement (lien actif en base); à défaut, le snapshot
  pris au checkout est utilisé s'il n'a pas expiré.
- Une réservation déjà réglée garde son attribution: un recalcul réécrit les mêmes lignes.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
import logging

from marketplace.config import INVOICE_DUE_DAYS, PLATFORM_FEE_RATE
from marketplace.errors import PersistenceError
from marketplace.bookings import repository as bookings_repo
from marketplace.referrals import service as referrals
from . import repository
from .calculator import CommissionBreakdown, NOMINAL_ESTABLISHMENT_RATE, compute_breakdown

logger = logging.getLogger(__name__)

# module marketplace.commissions.service
def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)

def resolve_attribution(
    db: Any,
    *,
    customer_id: Optional[str],
    session_id: Optional[str],
    snapshot: Any = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Retourne (establishment_id, referral_link_id) pour le règlement.
    1) lien actif trouvé maintenant (utilisateur puis session anonyme)
    2) sinon snapshot du checkout, si son lien n'a pas expiré
    3) sinon (None, None)
    """
    now = now or datetime.now(timezone.utc)
    link = referrals.get_active_link(db, user_id=customer_id, session_id=session_id, now=now)
    if link and link.get("establishment_id"):
        return str(link["establishment_id"]), (str(link["id"]) if link.get("id") else None)

    if snapshot is not None and getattr(snapshot, "has_active_establishment_link", False):
        est_id = getattr(snapshot, "linked_establishment_id", None)
        expires_at = _parse_dt(getattr(snapshot, "establishment_link_expires_at", None))
        if est_id and (expires_at is None or expires_at > now):
            return est_id, getattr(snapshot, "establishment_link_id", None)
    return None, None

def invoice_number(booking: Dict[str, Any], issued: date) -> str:
    """Numéro déterministe: INV-YYYYMMDD-<booking id>."""
    return f"INV-{issued.strftime('%Y%m%d')}-{booking.get('id')}"

def _issue_date(booking: Dict[str, Any], now: datetime) -> date:
    issued = _parse_dt(booking.get("created_at")) or _parse_dt(booking.get("booking_date")) or now
    return issued.date()

def settle_booking(
    db: Any,
    booking: Dict[str, Any],
    *,
    snapshot: Any = None,
    provider_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CommissionBreakdown:
    """
    Calcule et persiste la répartition d'une réservation.
    - Met à jour bookings (platform_fee, provider_amount, referral_commission, attribution, horodatage).
    - Upsert establishment_commissions si un établissement est attribué.
    - Upsert commission_invoices (échéance INVOICE_DUE_DAYS jours).
    - Idempotent par booking_id. Échec d'écriture -> PersistenceError.
    """
    now = now or datetime.now(timezone.utc)
    booking_id = booking.get("id")

    if booking.get("commission_calculated_at"):
        establishment_id = booking.get("establishment_id")
        link_id = booking.get("referral_visit_id")
    else:
        establishment_id, link_id = resolve_attribution(
            db,
            customer_id=booking.get("customer_id"),
            session_id=getattr(snapshot, "referral_session_id", None),
            snapshot=snapshot,
            now=now,
        )
    establishment_id = str(establishment_id) if establishment_id else None

    breakdown = compute_breakdown(booking.get("total_amount") or 0, establishment_id)
    booking_source = "qr_code" if establishment_id else "direct"
    issued = _issue_date(booking, now)

    try:
        bookings_repo.update_booking(db, booking_id, {
            "platform_fee": float(breakdown.platform_fee_gross),
            "provider_amount": float(breakdown.provider_amount),
            "referral_commission": float(breakdown.establishment_commission),
            "establishment_id": establishment_id,
            "referral_visit_id": link_id,
            "booking_source": booking_source,
            "commission_calculated_at": booking.get("commission_calculated_at") or now.isoformat(),
            "commission_invoice_generated": True,
        })

        if breakdown.has_establishment_commission:
            repository.upsert_commission_record(db, {
                "establishment_id": establishment_id,
                "booking_id": booking_id,
                "activity_id": booking.get("activity_id"),
                "customer_id": booking.get("customer_id"),
                "referral_visit_id": link_id,
                "booking_amount": float(breakdown.total),
                "commission_rate": float(NOMINAL_ESTABLISHMENT_RATE),
                "commission_amount": float(breakdown.establishment_commission),
                "commission_status": "pending",
                "booking_source": booking_source,
            })

        repository.upsert_invoice(db, {
            "booking_id": booking_id,
            "provider_id": provider_id,
            "invoice_number": invoice_number(booking, issued),
            "total_booking_amount": float(breakdown.total),
            "platform_commission_rate": float(PLATFORM_FEE_RATE * 100),
            "platform_commission_amount": float(breakdown.platform_fee_gross),
            "partner_commission_rate": float(NOMINAL_ESTABLISHMENT_RATE) if breakdown.has_establishment_commission else None,
            "partner_commission_amount": float(breakdown.establishment_commission) if breakdown.has_establishment_commission else None,
            "establishment_id": establishment_id,
            "invoice_status": "pending",
            "due_date": (issued + timedelta(days=INVOICE_DUE_DAYS)).isoformat(),
        })
    except Exception as e:
        logger.exception("commissions.service.settle_booking failed booking_id=%s", booking_id)
        raise PersistenceError(f"Règlement impossible pour la réservation {booking_id}: {e}")

    logger.info(
        "commissions.settle_booking booking=%s total=%s fee=%s establishment=%s commission=%s",
        booking_id, breakdown.total, breakdown.platform_fee_gross, establishment_id, breakdown.establishment_commission,
    )
    return breakdown