"""
Adaptateur Stripe: centralise les appels Checkout et la vérification des webhooks.
Construit une seule fois au démarrage (lifespan) puis injecté dans les services.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from marketplace.errors import SessionCreationError, UntrustedEventError

logger = logging.getLogger(__name__)

# module marketplace.infra.stripe_gateway
class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: str, tolerance: int = 300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def create_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Crée une session Stripe Checkout (mode "payment").
        - La clé API est passée par appel: aucun état global sur le module stripe.
        - Toute erreur SDK/API devient SessionCreationError (affichée au client, pas de retry).
        Retour: dict session (ex: {"id": "cs_test_...", "url": "https://...", "amount_total": 25000})
        """
        if not self.api_key:
            raise SessionCreationError("STRIPE_SECRET_KEY manquant", code="processor_not_configured")
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except Exception as e:
            logger.exception("stripe_gateway.create_session failed")
            raise SessionCreationError(f"Session de paiement refusée: {e}")
        return dict(session)

    def retrieve_session(self, session_id: str) -> Dict[str, Any]:
        """
        Récupère une session Checkout par son identifiant.
        Retour: dict incluant "id", "payment_status", "amount_total", "metadata", ...
        """
        session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        return dict(session)

    def verify_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Vérifie la signature Stripe-Signature puis décode l'événement.
        - Sans secret configuré, rien n'est accepté (pas de mode "dev" non signé).
        - Signature invalide / payload illisible -> UntrustedEventError.
        """
        if not self.webhook_secret:
            raise UntrustedEventError("STRIPE_WEBHOOK_SECRET manquant: événement refusé")
        if not sig_header:
            raise UntrustedEventError("En-tête Stripe-Signature absent")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret, self.tolerance)
            event = json.loads(body)
        except Exception as e:
            raise UntrustedEventError(f"Webhook invalide: {e}")
        if not isinstance(event, dict) or not event.get("type"):
            raise UntrustedEventError("Webhook invalide: type d'événement absent")
        return event
