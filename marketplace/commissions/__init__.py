"""
Module 'commissions': répartition plateforme / prestataire / établissement,
fiche commission et facture.
"""

from .calculator import CommissionBreakdown, compute_breakdown, to_money
from .service import resolve_attribution, settle_booking

__all__ = [
    "CommissionBreakdown",
    "compute_breakdown",
    "to_money",
    "resolve_attribution",
    "settle_booking",
]
