"""
Logique panier pure (pas de Stripe, pas de DB).
- Totaux en Decimal, plafond à l'unité monétaire supérieure.
- Construction des line_items Stripe en unités mineures.
"""
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Dict, List, Sequence, Tuple

from marketplace.commissions.calculator import to_money
from marketplace.errors import SessionCreationError
from .models import CartItem

# Devises sans décimale chez Stripe (unit_amount = montant entier)
ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}

ROUNDING_LINE_NAME = "Arrondi"

# module marketplace.checkout.cart
def item_total(item: CartItem) -> Decimal:
    """Total exact d'une ligne: prix unitaire × quantité (au centime)."""
    return to_money(item.price * item.quantity)

def cart_subtotal(items: Sequence[CartItem]) -> Decimal:
    return to_money(sum((item_total(i) for i in items), Decimal("0")))

def ceiling_total(amount: Decimal) -> Decimal:
    """Arrondit à l'unité supérieure: 250.01 -> 251.00, 250.00 -> 250.00."""
    return to_money(to_money(amount).to_integral_value(rounding=ROUND_CEILING))

def normalize_currency(currency: str) -> str:
    cur = (currency or "").strip().lower()
    if len(cur) != 3 or not cur.isalpha():
        raise SessionCreationError(f"Devise invalide: {currency!r}", code="invalid_currency")
    return cur

def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convertit un montant en unités mineures Stripe (centimes, ou unités pour les devises sans décimale)."""
    factor = 1 if currency in ZERO_DECIMAL_CURRENCIES else 100
    return int((to_money(amount) * factor).to_integral_value(rounding=ROUND_HALF_UP))

def to_line_items(items: Sequence[CartItem], currency: str) -> Tuple[List[Dict[str, Any]], Decimal]:
    """
    Construit les line_items Stripe et le total plafonné.
    - Une ligne par article (unit_amount = prix unitaire, quantity = quantité).
    - Si le plafond ajoute une fraction, une ligne "Arrondi" la porte:
      le amount_total Stripe vaut exactement le total plafonné.
    - Soulève SessionCreationError si aucun article, ou si un prix unitaire
      a des décimales dans une devise sans décimale (la ligne serait arrondie).
    Retour: (line_items, total plafonné)
    """
    if not items:
        raise SessionCreationError("Panier vide", code="empty_cart")
    cur = normalize_currency(currency)
    line_items: List[Dict[str, Any]] = []
    for item in items:
        if cur in ZERO_DECIMAL_CURRENCIES and item.price != item.price.to_integral_value():
            raise SessionCreationError(
                f"Prix fractionnaire {item.price} impossible en {cur.upper()} (activité {item.activity_id})",
                code="invalid_price",
            )
        line_items.append({
            "quantity": item.quantity,
            "price_data": {
                "currency": cur,
                "unit_amount": to_minor_units(item.price, cur),
                "product_data": {"name": item.title or f"Activité {item.activity_id}"},
            },
        })

    subtotal = cart_subtotal(items)
    total = ceiling_total(subtotal)
    remainder = to_minor_units(total, cur) - sum(
        li["price_data"]["unit_amount"] * li["quantity"] for li in line_items
    )
    if remainder > 0:
        line_items.append({
            "quantity": 1,
            "price_data": {
                "currency": cur,
                "unit_amount": remainder,
                "product_data": {"name": ROUNDING_LINE_NAME},
            },
        })
    return line_items, total

def from_minor_units(amount: int, currency: str) -> Decimal:
    """Inverse de to_minor_units: 25000 (thb) -> Decimal("250.00")."""
    factor = 1 if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES else 100
    return to_money(Decimal(int(amount or 0)) / factor)
