"""
Registre central des routers (API v1 + health).
- API v1: passes, payments (callback/webhook/statut), validation (scan)
- Health: health_router
"""
from fastapi import FastAPI
from backend.passes import views as passes_views
from backend.payments import views as payments_views
from backend.validation import views as validation_views
from backend.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(passes_views.router)
    app.include_router(payments_views.router)
    app.include_router(validation_views.router)
    # Health & monitoring
    app.include_router(health_router)
