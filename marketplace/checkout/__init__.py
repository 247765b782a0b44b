"""
Module 'checkout' (feature-first): point d'entrée public.
Réunit logique panier, métadonnées Stripe et construction de la session.
"""

from .cart import ceiling_total, cart_subtotal, item_total, to_line_items, to_minor_units, from_minor_units
from .metadata import CartCheckoutMetadata, SingleCheckoutMetadata, parse_stripe_metadata, to_stripe_metadata
from .models import CartItem, CheckoutRequest
from .service import build_checkout_session

__all__ = [
    # cart
    "ceiling_total",
    "cart_subtotal",
    "item_total",
    "to_line_items",
    "to_minor_units",
    "from_minor_units",
    # metadata
    "CartCheckoutMetadata",
    "SingleCheckoutMetadata",
    "parse_stripe_metadata",
    "to_stripe_metadata",
    # models
    "CartItem",
    "CheckoutRequest",
    # service
    "build_checkout_session",
]
