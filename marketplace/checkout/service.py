"""
Cas d'usage 'checkout': orchestre panier, attribution, métadonnées et Stripe.
Aucune écriture locale: la session Stripe est la seule trace jusqu'au webhook.
"""
from typing import Any, Dict, List, Optional
import logging

from marketplace.config import BASE_URL, CHECKOUT_SUCCESS_PATH, CHECKOUT_CANCEL_PATH, DEFAULT_CURRENCY
from marketplace.errors import SessionCreationError
from marketplace.referrals import service as referrals
from . import cart as cart_logic
from .metadata import CartCheckoutMetadata, SingleCheckoutMetadata, to_stripe_metadata
from .models import CartItem, CheckoutRequest

logger = logging.getLogger(__name__)

# module marketplace.checkout.service
def _items_from_request(req: CheckoutRequest) -> List[CartItem]:
    if req.is_cart:
        return list(req.cart_items or [])
    if req.activity_id:
        participants = req.participants or 1
        if req.price is not None:
            return [CartItem(
                activity_id=req.activity_id, schedule_id=req.schedule_id, quantity=participants,
                provider_id=req.provider_id, title=req.title, price=req.price,
            )]
        if req.total_amount is not None:
            # Montant global déjà calculé par le front: une seule ligne
            return [CartItem(
                activity_id=req.activity_id, schedule_id=req.schedule_id, quantity=1,
                provider_id=req.provider_id, title=req.title, price=req.total_amount,
            )]
        raise SessionCreationError("Prix ou montant total requis", code="missing_amount")
    raise SessionCreationError("Ni panier ni activité fournis", code="missing_items")

def _attribution_snapshot(db: Any, req: CheckoutRequest, user_id: Optional[str]) -> Dict[str, Any]:
    """
    Snapshot d'attribution au moment du checkout.
    - Lien actif (utilisateur puis session) en priorité.
    - Sinon, establishmentId explicite (page QR) sans lien ni expiration.
    """
    link = referrals.get_active_link(db, user_id=user_id, session_id=req.session_id)
    if link:
        return {
            "has_active_establishment_link": True,
            "linked_establishment_id": str(link.get("establishment_id")),
            "establishment_link_id": str(link.get("id")) if link.get("id") else None,
            "establishment_link_expires_at": link.get("expires_at"),
        }
    if req.establishment_id:
        return {"has_active_establishment_link": True, "linked_establishment_id": req.establishment_id}
    return {"has_active_establishment_link": False}

def with_return_params(url: str, checkout_type: str) -> str:
    """
    Ajoute session_id={CHECKOUT_SESSION_ID} et type=single|cart si absents.
    Le placeholder Stripe ne doit pas être encodé.
    """
    out = url
    if "session_id=" not in out:
        out += ("&" if "?" in out else "?") + "session_id={CHECKOUT_SESSION_ID}"
    if "type=" not in out:
        out += ("&" if "?" in out else "?") + f"type={checkout_type}"
    return out

def build_checkout_session(
    db: Any,
    gateway: Any,
    req: CheckoutRequest,
    *,
    user_id: Optional[str] = None,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée la session Stripe Checkout.
    - Total = plafond(Σ prix × quantité), porté exactement par les line_items.
    - Métadonnées: isCartCheckout, panier (découpé), client, snapshot d'attribution.
    - Soulève SessionCreationError (entrée inexploitable ou refus Stripe).
    Retour: {"id", "url", "amountTotal", "currency", "type"}
    """
    items = _items_from_request(req)
    currency = cart_logic.normalize_currency(req.currency or DEFAULT_CURRENCY)
    line_items, total = cart_logic.to_line_items(items, currency)

    common = {
        "customer_id": user_id,
        "customer_email": req.customer_email,
        "customer_name": req.customer_name,
        "customer_phone": req.customer_phone,
        "referral_session_id": req.session_id,
        **_attribution_snapshot(db, req, user_id),
    }
    if req.is_cart:
        checkout_type = "cart"
        meta = CartCheckoutMetadata(items=items, **common)
    else:
        checkout_type = "single"
        item = items[0]
        meta = SingleCheckoutMetadata(
            activity_id=item.activity_id,
            schedule_id=item.schedule_id,
            provider_id=item.provider_id,
            title=item.title,
            participants=req.participants or item.quantity,
            base_amount=cart_logic.item_total(item),
            **common,
        )

    root = (base_url or BASE_URL).rstrip("/")
    success_url = with_return_params(req.success_url or f"{root}{CHECKOUT_SUCCESS_PATH}", checkout_type)
    cancel_url = req.cancel_url or f"{root}{CHECKOUT_CANCEL_PATH}"

    session = gateway.create_session(
        line_items=line_items,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=to_stripe_metadata(meta),
        customer_email=req.customer_email,
    )
    logger.info(
        "checkout.build_checkout_session session=%s type=%s items=%s total=%s linked=%s",
        session.get("id"), checkout_type, len(items), total, meta.has_active_establishment_link,
    )
    return {
        "id": session.get("id"),
        "url": session.get("url"),
        "amountTotal": float(total),
        "currency": currency,
        "type": checkout_type,
    }
