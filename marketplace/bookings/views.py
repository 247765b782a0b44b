import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.infra.dependencies import AppDependencies, get_dependencies
from .details import resolve_booking_details

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/bookings", tags=["Bookings API"])

# module marketplace.bookings.views
@router.get("/details")
def booking_details(
    session_id: str = Query(..., alias="sessionId"),
    checkout_type: Optional[str] = Query(None, alias="type"),
    deps: AppDependencies = Depends(get_dependencies),
):
    """
    Résumé de réservation pour la page de succès (?sessionId=cs_...&type=single|cart).
    Jamais d'écriture; "processing" tant que le webhook n'a pas créé les réservations.
    """
    if not session_id.strip():
        raise HTTPException(status_code=400, detail="sessionId manquant")
    if checkout_type not in (None, "single", "cart"):
        raise HTTPException(status_code=400, detail="type doit valoir single ou cart")
    return resolve_booking_details(deps.db, deps.gateway, session_id.strip(), checkout_type)
