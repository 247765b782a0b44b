import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from marketplace.infra.dependencies import AppDependencies, get_dependencies
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import get_optional_user
from .models import CheckoutRequest, CheckoutSessionOut
from .service import build_checkout_session

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])

# module marketplace.checkout.views
@router.post("/sessions", response_model=CheckoutSessionOut, dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout_session(
    body: CheckoutRequest,
    deps: AppDependencies = Depends(get_dependencies),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    """
    Crée une session Stripe Checkout (panier ou réservation simple).
    - Entrée JSON: { "cartItems": [ {activityId, scheduleId, quantity, providerId, title, price}, ... ], ... }
      ou { "activityId", "participants", "price" | "totalAmount", ... }
    - Utilisateur optionnel: customerId en métadonnées s'il est authentifié
    - Rate limit: 10 req / 60s
    - Erreurs: SessionCreationError -> 400 {"error", "code"}
    """
    session = build_checkout_session(
        deps.db,
        deps.gateway,
        body,
        user_id=(user or {}).get("id"),
    )
    return CheckoutSessionOut(id=session["id"], url=session.get("url"))
