import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from marketplace.config import SUPABASE_URL
from marketplace.infra.dependencies import AppDependencies, get_dependencies
from marketplace.utils.rate_limit import rate_limit_health_info

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# module marketplace.health.router
def health_supabase_info(db: Any) -> Dict[str, Any]:
    """
    Sonde Supabase: lecture minimale sur bookings.
    Ne lève jamais: l'erreur est renvoyée dans le corps.
    """
    info: Dict[str, Any] = {"url_configured": bool(SUPABASE_URL), "connect_ok": False}
    try:
        db.table("bookings").select("id").limit(1).execute()
        info["connect_ok"] = True
    except Exception as e:
        logger.exception("health.supabase probe failed")
        info["error"] = str(e)
    return info

@router.get("")
def health_root(request: Request):
    return {"ok": True, "rate_limit": rate_limit_health_info(request)}

@router.get("/supabase")
def health_supabase(deps: AppDependencies = Depends(get_dependencies)):
    info = health_supabase_info(deps.db)
    return JSONResponse(info, status_code=200 if info["connect_ok"] else 503)
