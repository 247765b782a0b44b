"""
Calcul pur de la répartition d'un montant payé (pas de DB, pas de Stripe).

- platform_fee_gross = total × PLATFORM_FEE_RATE (20 %)
- avec lien établissement actif: establishment_commission = gross × ESTABLISHMENT_SHARE_RATE (50 %)
- provider_amount = total − platform_fee_gross (par soustraction: la somme reste exacte)
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from marketplace.config import PLATFORM_FEE_RATE, ESTABLISHMENT_SHARE_RATE

CENT = Decimal("0.01")

# Taux nominal affiché sur la fiche commission établissement (en %)
NOMINAL_ESTABLISHMENT_RATE = Decimal("10")

# module marketplace.commissions.calculator
def to_money(value: Any) -> Decimal:
    """Convertit int/float/str/Decimal en Decimal arrondi au centime (ROUND_HALF_UP)."""
    if isinstance(value, Decimal):
        d = value
    else:
        d = Decimal(str(value if value is not None else 0))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


class CommissionBreakdown:
    def __init__(
        self,
        total: Decimal,
        platform_fee_gross: Decimal,
        establishment_commission: Decimal,
        platform_net: Decimal,
        provider_amount: Decimal,
        establishment_id: Optional[str] = None,
    ):
        self.total = total
        self.platform_fee_gross = platform_fee_gross
        self.establishment_commission = establishment_commission
        self.platform_net = platform_net
        self.provider_amount = provider_amount
        self.establishment_id = establishment_id

    @property
    def has_establishment_commission(self) -> bool:
        return bool(self.establishment_id) and self.establishment_commission > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": float(self.total),
            "platform_fee": float(self.platform_fee_gross),
            "establishment_commission": float(self.establishment_commission),
            "platform_net": float(self.platform_net),
            "provider_amount": float(self.provider_amount),
            "establishment_id": self.establishment_id,
        }


def compute_breakdown(
    total: Any,
    establishment_id: Optional[str] = None,
    *,
    fee_rate: Decimal = PLATFORM_FEE_RATE,
    share_rate: Decimal = ESTABLISHMENT_SHARE_RATE,
) -> CommissionBreakdown:
    """
    Répartit `total` entre plateforme, prestataire et éventuel établissement apporteur.
    - establishment_id: établissement du lien actif (None = pas de commission d'apport).
    - Les montants sont des Decimal au centime; aucune écriture.
    Exemple: 100.00 avec lien -> gross 20.00, établissement 10.00, net 10.00, prestataire 80.00
    """
    amount = to_money(total)
    if amount < 0:
        raise ValueError("total must be >= 0")
    gross = (amount * fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    if establishment_id:
        establishment = (gross * share_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        establishment = Decimal("0.00")
    return CommissionBreakdown(
        total=amount,
        platform_fee_gross=gross,
        establishment_commission=establishment,
        platform_net=gross - establishment,
        provider_amount=amount - gross,
        establishment_id=establishment_id or None,
    )
