import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace.infra.dependencies import AppDependencies, get_dependencies
from marketplace.notifications.worker import dispatch_for_bookings
from .service import process_webhook

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/stripe", tags=["Stripe Webhooks"])

# module marketplace.webhooks.views
@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    deps: AppDependencies = Depends(get_dependencies),
):
    """
    Webhook Stripe.
    - Signature: Stripe-Signature + STRIPE_WEBHOOK_SECRET (UntrustedEventError -> 400, aucun effet)
    - Réservations créées/réglées de façon synchrone; notifications envoyées après la réponse
    - Réponses: 200 {"received": true, "status": ...}; 500 si une réservation n'a pu être créée
    """
    payload = await request.body()
    outcome = await run_in_threadpool(process_webhook, deps.db, deps.gateway, payload, request.headers.get("stripe-signature"))

    if outcome.booking_ids:
        background_tasks.add_task(dispatch_for_bookings, deps.db, deps.sender, outcome.booking_ids)

    if outcome.partial:
        logger.error("webhooks.views partial settlement event=%s failed=%s", outcome.event_id, outcome.result.failed)
        return JSONResponse(
            status_code=500,
            content={**outcome.as_dict(), "error": "Certaines réservations n'ont pas pu être créées", "code": "persistence_failed"},
            background=background_tasks,
        )
    return JSONResponse(outcome.as_dict(), background=background_tasks)
