from typing import Any, Optional
from supabase import create_client, Client
from postgrest.exceptions import APIError
from marketplace.config import SUPABASE_URL, SUPABASE_ANON, SUPABASE_SERVICE_KEY

# module marketplace.infra.supabase_client
# Pas d'instance globale: les clients sont construits une fois au démarrage (lifespan)
# puis transmis explicitement aux services.

UNIQUE_VIOLATION = "23505"

def create_service_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Client service-role (bypass RLS) pour le pipeline serveur (webhook, règlement, outbox).
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_SERVICE_KEY
    if not url or not key:
        raise RuntimeError("SUPABASE_URL/SUPABASE_SERVICE_KEY manquants pour create_service_client()")
    return create_client(url, key)

def create_anon_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Client 'anon' utilisé uniquement pour résoudre un token utilisateur (auth.get_user).
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_ANON
    if not url or not key:
        raise RuntimeError("SUPABASE_URL/SUPABASE_ANON_KEY manquants pour create_anon_client()")
    return create_client(url, key)

def error_code(exc: BaseException) -> Optional[str]:
    """Code Postgres d'une APIError PostgREST (attribut .code, ou dict brut en args[0])."""
    if not isinstance(exc, APIError):
        return None
    code: Any = getattr(exc, "code", None)
    if not code and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return str(code) if code else None

def is_unique_violation(exc: BaseException) -> bool:
    return error_code(exc) == UNIQUE_VIOLATION
