from typing import Any, Dict
from fastapi import Request, Response, HTTPException
from urllib.parse import urlparse
import os
import time
import hashlib

from marketplace.config import RATE_LIMIT_REDIS_URL
from marketplace.utils.security import COOKIE_NAME

# module marketplace.utils.rate_limit
def _client_key(req: Request) -> str:
    # Priorité: token de session (hashé) puis IP
    token = req.cookies.get(COOKIE_NAME)
    path = req.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = req.client.host if req.client else "local"
    return f"ip:{ip}:{path}"

def optional_rate_limit(times: int, seconds: int):
    """
    Dépendance de rate limiting tolérante:
    - LOCAL_RATE_LIMIT_FALLBACK=1: compteur mémoire par clé (dev)
    - app.state.rate_limit_enabled False: aucun contrôle
    - sinon fastapi-limiter (Redis); une panne du limiteur ne bloque pas la requête
    """
    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = _client_key(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Too Many Requests")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return

        try:
            from fastapi_limiter.depends import RateLimiter

            async def _identifier(req: Request) -> str:
                return _client_key(req)
            return await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)
        except HTTPException:
            raise
        except Exception:
            return
    return _dep

def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    try:
        from fastapi_limiter import FastAPILimiter
        ready = getattr(FastAPILimiter, "redis", None) is not None
    except Exception:
        ready = False
    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": ready,
        "backend": "redis" if ready else None,
    }
    if ready:
        p = urlparse(RATE_LIMIT_REDIS_URL)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}
    return info
