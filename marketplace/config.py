# marketplace.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

TEMPLATES_DIR = Path(__file__).resolve().parent / "notifications" / "templates"

"""
Configuration centrale du service de règlement (checkout -> réservations).

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Resend)
- Expose les constantes métier (taux de commission, fenêtres de rattachement, échéances)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

def _decimal_env(name: str, default: str) -> Decimal:
    raw = _clean_env(os.getenv(name) or "") or default
    try:
        return Decimal(raw)
    except Exception:
        return Decimal(default)

# Supabase: URL et clés (anon pour l'auth utilisateur, service pour les écritures serveur)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé secrète et secret de signature des webhooks
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_WEBHOOK_TOLERANCE = _int_env("STRIPE_WEBHOOK_TOLERANCE", 300)
DEFAULT_CURRENCY = (_clean_env(os.getenv("DEFAULT_CURRENCY") or "") or "thb").lower()

# URLs de retour du checkout hébergé
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:3000")
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/booking/success")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/booking/cancelled")

# Règles de commission
PLATFORM_FEE_RATE = _decimal_env("PLATFORM_FEE_RATE", "0.20")
ESTABLISHMENT_SHARE_RATE = _decimal_env("ESTABLISHMENT_SHARE_RATE", "0.50")
REFERRAL_LINK_DAYS = _int_env("REFERRAL_LINK_DAYS", 15)
INVOICE_DUE_DAYS = _int_env("INVOICE_DUE_DAYS", 30)

# Page de confirmation: fenêtre de recherche par email quand le webhook n'a pas encore tourné
BOOKING_LOOKUP_WINDOW_MINUTES = _int_env("BOOKING_LOOKUP_WINDOW_MINUTES", 60)

# Emails transactionnels (Resend) et outbox
RESEND_API_KEY = _clean_env(os.getenv("RESEND_API_KEY") or "")
EMAIL_FROM = _clean_env(os.getenv("EMAIL_FROM") or "") or "Guidestination <noreply@guidestination.com>"
OUTBOX_MAX_ATTEMPTS = _int_env("OUTBOX_MAX_ATTEMPTS", 5)
OUTBOX_BATCH_SIZE = _int_env("OUTBOX_BATCH_SIZE", 50)
OUTBOX_POLL_SECONDS = _int_env("OUTBOX_POLL_SECONDS", 30)
# Ligne "sending" abandonnée (worker tué en plein envoi): rendue à "pending" après ce délai
OUTBOX_CLAIM_TIMEOUT_SECONDS = _int_env("OUTBOX_CLAIM_TIMEOUT_SECONDS", 600)

# CORS / hôtes
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "info").lower()

# Rate limiting (fastapi-limiter)
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or "") or "redis://127.0.0.1:6379/0"
