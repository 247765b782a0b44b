import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from marketplace.infra.dependencies import AppDependencies, get_dependencies
from marketplace.utils.security import get_optional_user, require_user
from . import service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals API"])

# module marketplace.referrals.views

class VisitRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    establishment_id: str = Field(min_length=1)
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClaimRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    session_id: str = Field(min_length=1)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None

def _link_out(link: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": link.get("id"),
        "establishmentId": link.get("establishment_id"),
        "createdAt": link.get("created_at"),
        "expiresAt": link.get("expires_at"),
    }

@router.post("/visits", status_code=201)
def record_visit(
    body: VisitRequest,
    request: Request,
    deps: AppDependencies = Depends(get_dependencies),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    """
    Enregistre un scan de QR code établissement (lien valable 15 jours).
    - Sujet: utilisateur authentifié et/ou sessionId navigateur
    - Capture user-agent et IP (premier saut de X-Forwarded-For)
    """
    try:
        link = service.record_visit(
            deps.db,
            body.establishment_id,
            user_id=(user or {}).get("id"),
            session_id=body.session_id,
            metadata=body.metadata,
            user_agent=request.headers.get("user-agent"),
            ip_address=client_ip(request),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _link_out(link)

@router.get("/active")
def active_link(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    deps: AppDependencies = Depends(get_dependencies),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    link = service.get_active_link(deps.db, user_id=(user or {}).get("id"), session_id=session_id)
    return {"active": link is not None, "link": _link_out(link) if link else None}

@router.post("/claim")
def claim(
    body: ClaimRequest,
    deps: AppDependencies = Depends(get_dependencies),
    user: Dict[str, Any] = Depends(require_user),
):
    """Rattache les liens anonymes de la session à l'utilisateur connecté."""
    return {"claimed": service.claim_for_user(deps.db, body.session_id, user["id"])}
