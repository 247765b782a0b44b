"""
Conteneur des dépendances partagées (Supabase, Stripe, email).
- Construit une fois dans le lifespan, rangé sur app.state.deps.
- Les vues le récupèrent via Depends(get_dependencies) et passent chaque
  collaborateur explicitement aux services.
"""
import logging
from typing import Any, Optional

from fastapi import HTTPException, Request

from marketplace import config
from marketplace.infra.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

# module marketplace.infra.dependencies
class AppDependencies:
    def __init__(self, db: Any, gateway: Any, sender: Any, auth_client: Optional[Any] = None):
        self.db = db
        self.gateway = gateway
        self.sender = sender
        # Client anon: uniquement pour auth.get_user (lecture du porteur d'un token)
        self.auth_client = auth_client


def build_dependencies() -> AppDependencies:
    """
    Assemble les clients réels à partir de marketplace.config.
    - Supabase service-role pour les écritures serveur (webhook, outbox).
    - Client anon optionnel: absent si SUPABASE_ANON_KEY n'est pas configurée.
    - Expéditeur Resend si RESEND_API_KEY, sinon expéditeur de log.
    """
    from marketplace.infra.supabase_client import create_anon_client, create_service_client
    from marketplace.notifications.sender import build_sender

    db = create_service_client()
    auth_client = None
    if config.SUPABASE_ANON:
        try:
            auth_client = create_anon_client()
        except Exception:
            logger.exception("infra.dependencies anon client init failed")
    gateway = StripeGateway(
        api_key=config.STRIPE_SECRET_KEY,
        webhook_secret=config.STRIPE_WEBHOOK_SECRET,
        tolerance=config.STRIPE_WEBHOOK_TOLERANCE,
    )
    return AppDependencies(db=db, gateway=gateway, sender=build_sender(), auth_client=auth_client)


def get_dependencies(request: Request) -> AppDependencies:
    deps = getattr(request.app.state, "deps", None)
    if deps is None:
        raise HTTPException(status_code=503, detail="Service non initialisé")
    return deps
