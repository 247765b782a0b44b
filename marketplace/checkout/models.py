"""
Schémas d'entrée du checkout (JSON camelCase côté front, snake_case côté Python).
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from marketplace.commissions.calculator import to_money

# module marketplace.checkout.models
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_str_id(v):
    # Les ids d'activité/créneau sont des entiers côté base, des chaînes dans les métadonnées
    if v is None or v == "":
        return None
    return str(v).strip()


class CartItem(CamelModel):
    """Ligne de panier figée au moment du checkout (prix unitaire = snapshot)."""
    activity_id: str
    schedule_id: Optional[str] = None
    quantity: int = Field(ge=1)
    provider_id: Optional[str] = None
    title: str = ""
    price: Decimal = Field(gt=0)

    @field_validator("activity_id", "schedule_id", "provider_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return _as_str_id(v)

    @field_validator("price")
    @classmethod
    def _price_to_cents(cls, v: Decimal) -> Decimal:
        return to_money(v)


class CheckoutRequest(CamelModel):
    """
    Requête de création de session.
    - Panier: cartItems (≥ 1 ligne)
    - Réservation simple (legacy): activityId + participants + price (unitaire) ou totalAmount
    """
    cart_items: Optional[List[CartItem]] = None

    activity_id: Optional[str] = None
    schedule_id: Optional[str] = None
    provider_id: Optional[str] = None
    title: str = ""
    participants: Optional[int] = Field(default=None, ge=1)
    price: Optional[Decimal] = Field(default=None, gt=0)
    total_amount: Optional[Decimal] = Field(default=None, gt=0)

    currency: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    # Attribution: établissement explicite (page QR) et identifiant de session navigateur
    establishment_id: Optional[str] = None
    session_id: Optional[str] = None

    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    @field_validator("activity_id", "schedule_id", "provider_id", "establishment_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return _as_str_id(v)

    @property
    def is_cart(self) -> bool:
        return bool(self.cart_items)


class CheckoutSessionOut(BaseModel):
    id: str
    url: Optional[str] = None
