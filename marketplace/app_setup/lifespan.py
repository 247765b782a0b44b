"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit le conteneur AppDependencies (Supabase, Stripe, email) s'il n'a pas été fourni à la factory.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import os
import logging
import redis.asyncio as aioredis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from marketplace.config import RATE_LIMIT_REDIS_URL
from marketplace.infra.dependencies import build_dependencies

logger = logging.getLogger("uvicorn.error")

def _init_dependencies(app: FastAPI) -> None:
    if getattr(app.state, "deps", None) is not None:
        logger.info("Dependencies provided by the app factory")
        return
    try:
        app.state.deps = build_dependencies()
        logger.info("Dependencies initialized (supabase, stripe, email)")
    except Exception as e:
        # Démarrage quand même: /health répond, les routes métier renvoient 503
        app.state.deps = None
        logger.error(f"Dependencies init failed: {e}")

async def _init_rate_limiter(app: FastAPI) -> None:
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            r = aioredis.from_url(RATE_LIMIT_REDIS_URL, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Prépare les dépendances et le rate limiting.
    Les logs indiquent l'état effectif (enabled/disabled) pour observabilité.
    """
    _init_dependencies(app)
    await _init_rate_limiter(app)
    yield
    if getattr(app.state, "rate_limit_enabled", False) and getattr(FastAPILimiter, "redis", None) is not None:
        try:
            await FastAPILimiter.close()
        except Exception as e:
            logger.warning(f"Rate limiter close failed: {e}")
