"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn + uvicorn workers) importe `marketplace.asgi:app`.
- Toute la configuration FastAPI est centralisée dans marketplace.app_setup.factory.
"""
import logging

from marketplace.app_setup.factory import create_app
from marketplace.config import LOG_LEVEL

logging.basicConfig(level=LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = create_app()
