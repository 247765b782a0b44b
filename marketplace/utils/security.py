from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any
import logging

from marketplace.infra.dependencies import AppDependencies, get_dependencies

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"

# module marketplace.utils.security
def token_from_request(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None

def get_optional_user(request: Request, deps: AppDependencies = Depends(get_dependencies)) -> Optional[Dict[str, Any]]:
    """
    Client authentifié si un token valide est présent, sinon None (checkout invité).
    - Résolution via auth.get_user du client anon; aucune écriture.
    """
    token = token_from_request(request)
    if not token or deps.auth_client is None:
        return None
    try:
        res = deps.auth_client.auth.get_user(token)
        user = getattr(res, "user", None)
        if not user or not getattr(user, "id", None):
            return None
        return {"id": str(user.id), "email": getattr(user, "email", None), "token": token}
    except Exception as e:
        logger.warning("utils.security.get_optional_user token rejected: %s", e)
        return None

def require_user(user: Optional[Dict[str, Any]] = Depends(get_optional_user)) -> Dict[str, Any]:
    if not user:
        raise HTTPException(status_code=401, detail="Non authentifié")
    return user
