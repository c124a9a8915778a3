from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
from uuid import UUID

from app.db_helpers import get_user_id
from app.dependencies import get_repository
from app.exceptions import InvalidPaymentInput
from app.schemas import AlertResponse, SnoozeRequest
from app.services.alert_guard import AlertService
from app.services.recurring_repository import RecurringPaymentRepository

router = APIRouter()


def _alert_or_404(alert) -> AlertResponse:
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return AlertResponse.model_validate(alert)


@router.get("/", response_model=List[AlertResponse])
def list_alerts(
    status: Optional[str] = Query(None, description="Filter by alert status"),
    user_id: Optional[str] = None,
    repository: RecurringPaymentRepository = Depends(get_repository),
):
    user_id = get_user_id(user_id)
    try:
        alerts = AlertService(repository).list_alerts(user_id, status)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [AlertResponse.model_validate(a) for a in alerts]


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
def acknowledge_alert(
    alert_id: UUID,
    user_id: Optional[str] = None,
    repository: RecurringPaymentRepository = Depends(get_repository),
):
    user_id = get_user_id(user_id)
    try:
        alert = AlertService(repository).acknowledge(str(alert_id), user_id, datetime.utcnow())
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _alert_or_404(alert)


@router.post("/{alert_id}/snooze", response_model=AlertResponse)
def snooze_alert(
    alert_id: UUID,
    body: Optional[SnoozeRequest] = None,
    user_id: Optional[str] = None,
    repository: RecurringPaymentRepository = Depends(get_repository),
):
    user_id = get_user_id(user_id)
    minutes = body.minutes if body else SnoozeRequest().minutes
    try:
        alert = AlertService(repository).snooze(str(alert_id), user_id, datetime.utcnow(), minutes)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _alert_or_404(alert)


@router.post("/{alert_id}/dismiss", response_model=AlertResponse)
def dismiss_alert(
    alert_id: UUID,
    user_id: Optional[str] = None,
    repository: RecurringPaymentRepository = Depends(get_repository),
):
    user_id = get_user_id(user_id)
    try:
        alert = AlertService(repository).dismiss(str(alert_id), user_id, datetime.utcnow())
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _alert_or_404(alert)
