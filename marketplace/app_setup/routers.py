"""
Registre central des routers (API v1 + health).
"""
from fastapi import FastAPI
from marketplace.checkout import views as checkout_views
from marketplace.webhooks import views as webhooks_views
from marketplace.bookings import views as bookings_views
from marketplace.referrals import views as referrals_views
from marketplace.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(checkout_views.router)
    app.include_router(webhooks_views.router)
    app.include_router(bookings_views.router)
    app.include_router(referrals_views.router)
    # Health & monitoring
    app.include_router(health_router)
