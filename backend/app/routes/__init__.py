from fastapi import APIRouter
from app.routes import recurring_payments, alerts, events

api_router = APIRouter()

api_router.include_router(recurring_payments.router, prefix="/recurring-payments", tags=["recurring-payments"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
