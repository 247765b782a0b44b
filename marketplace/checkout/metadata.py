"""
Sérialisation/désérialisation des métadonnées Stripe de la session.

Stripe impose des valeurs de 500 caractères maximum (50 clés): le panier JSON
est découpé en cartItems_0..cartItems_n (cartChunks = n + 1) puis réassemblé
au webhook. Le résultat est validé une seule fois en variante typée:
CartCheckoutMetadata | SingleCheckoutMetadata.
"""
import json
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from marketplace.errors import MalformedMetadataError, SessionCreationError
from .models import CamelModel, CartItem

METADATA_VALUE_LIMIT = 500
MAX_CART_CHUNKS = 30
CART_KEY_PREFIX = "cartItems_"

# module marketplace.checkout.metadata
class _SessionMetadata(CamelModel):
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    # Snapshot d'attribution pris à la création de la session
    has_active_establishment_link: bool = False
    linked_establishment_id: Optional[str] = None
    establishment_link_id: Optional[str] = None
    establishment_link_expires_at: Optional[datetime] = None
    # Session navigateur anonyme: permet de re-résoudre le lien au règlement
    referral_session_id: Optional[str] = None


class CartCheckoutMetadata(_SessionMetadata):
    kind: Literal["cart"] = "cart"
    items: List[CartItem] = Field(min_length=1)


class SingleCheckoutMetadata(_SessionMetadata):
    kind: Literal["single"] = "single"
    activity_id: str
    schedule_id: Optional[str] = None
    provider_id: Optional[str] = None
    title: str = ""
    participants: int = Field(default=1, ge=1)
    base_amount: Optional[Decimal] = None


CheckoutMetadata = Annotated[Union[CartCheckoutMetadata, SingleCheckoutMetadata], Field(discriminator="kind")]
_adapter: TypeAdapter = TypeAdapter(CheckoutMetadata)


def _compact_items(items: List[CartItem]) -> str:
    rows = [
        {k: v for k, v in it.model_dump(mode="json", by_alias=True).items() if v not in (None, "")}
        for it in items
    ]
    return json.dumps(rows, separators=(",", ":"), ensure_ascii=False)


def to_stripe_metadata(meta: Union[CartCheckoutMetadata, SingleCheckoutMetadata]) -> Dict[str, str]:
    """
    Aplati les métadonnées en dict[str, str] accepté par Stripe.
    - Les valeurs vides sont omises.
    - Panier: isCartCheckout="true" + cartChunks + cartItems_i (≤ 500 caractères chacun).
    - Soulève SessionCreationError si le panier dépasse le budget de clés.
    """
    dumped = meta.model_dump(mode="json", by_alias=True, exclude={"kind", "items"})
    out: Dict[str, str] = {}
    for key, value in dumped.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = str(value)

    if isinstance(meta, CartCheckoutMetadata):
        payload = _compact_items(meta.items)
        chunks = [payload[i:i + METADATA_VALUE_LIMIT] for i in range(0, len(payload), METADATA_VALUE_LIMIT)]
        if len(chunks) > MAX_CART_CHUNKS:
            raise SessionCreationError(
                f"Panier trop volumineux pour les métadonnées ({len(meta.items)} articles)",
                code="cart_too_large",
            )
        out["isCartCheckout"] = "true"
        out["cartChunks"] = str(len(chunks))
        for idx, chunk in enumerate(chunks):
            out[f"{CART_KEY_PREFIX}{idx}"] = chunk
    else:
        out["isCartCheckout"] = "false"
    return out


def _reassemble_cart(raw: Mapping[str, Any]) -> str:
    if raw.get("cartChunks"):
        try:
            count = int(raw["cartChunks"])
        except (TypeError, ValueError):
            raise MalformedMetadataError("cartChunks invalide")
        parts = []
        for idx in range(count):
            part = raw.get(f"{CART_KEY_PREFIX}{idx}")
            if part is None:
                raise MalformedMetadataError(f"Fragment de panier manquant: {CART_KEY_PREFIX}{idx}")
            parts.append(part)
        return "".join(parts)
    # Ancien format: panier complet dans une seule clé
    legacy = raw.get("cartItems")
    if legacy:
        return legacy
    raise MalformedMetadataError("Panier absent des métadonnées")


def parse_stripe_metadata(raw: Optional[Mapping[str, Any]]) -> Union[CartCheckoutMetadata, SingleCheckoutMetadata]:
    """
    Valide les métadonnées d'une session Stripe.
    - isCartCheckout == "true" -> CartCheckoutMetadata (panier réassemblé)
    - sinon activityId requis -> SingleCheckoutMetadata
    - Toute incohérence -> MalformedMetadataError (jamais de dict partiellement rempli)
    """
    data: Dict[str, Any] = {k: v for k, v in dict(raw or {}).items() if v not in (None, "")}
    is_cart = str(data.get("isCartCheckout") or "").lower() == "true"
    if is_cart:
        try:
            items = json.loads(_reassemble_cart(data))
        except json.JSONDecodeError as e:
            raise MalformedMetadataError(f"Panier JSON illisible: {e}")
        data["items"] = items
        data["kind"] = "cart"
    elif data.get("activityId"):
        data["kind"] = "single"
    else:
        raise MalformedMetadataError("Métadonnées sans panier ni activityId")

    try:
        return _adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMetadataError(f"Métadonnées invalides: {e.error_count()} erreur(s): {e.errors()[0].get('msg')}")
