"""
Factory d'application pour les entrypoints (marketplace.asgi, tests).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from typing import Optional

from fastapi import FastAPI

from marketplace.infra.dependencies import AppDependencies
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_no_cache_middleware
from .exceptions import register_exception_handlers
from .routers import register_routers

def create_app(deps: Optional[AppDependencies] = None) -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - middlewares de base et no-cache
      - gestionnaires d'exceptions (taxonomie SettlementError)
      - routers (checkout, webhook, bookings, referrals, health)
    deps: conteneur déjà construit (tests); sinon construit au démarrage.
    """
    app = FastAPI(title="Marketplace Settlement API", lifespan=lifespan)
    app.state.deps = deps
    register_basic_middlewares(app)
    register_no_cache_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
