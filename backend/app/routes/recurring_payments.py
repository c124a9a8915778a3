from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from typing import List, Optional
from uuid import UUID
import logging

from app.db_helpers import get_user_id
from app.dependencies import get_recurring_service
from app.exceptions import InvalidPaymentInput, RecurringPaymentNotFound
from app.schemas import (
    BillSummaryResponse,
    BusinessDayAdjustmentRequest,
    BusinessDayAdjustmentResponse,
    CostAnalysisResponse,
    MarkPaidRequest,
    MissedPaymentResponse,
    MonthlyProjectionResponse,
    RecurringDetectionResponse,
    RecurringPaymentCreate,
    RecurringPaymentResponse,
    RecurringPaymentUpdate,
    ReminderSettingsUpdate,
)
from app.services.recurring_config import detection_config_from_settings
from app.services.recurring_detector import RecurringPaymentDetection
from app.services.recurring_payment_service import RecurringPaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_detection(detection: RecurringPaymentDetection) -> RecurringDetectionResponse:
    pattern = detection.pattern
    return RecurringDetectionResponse(
        account_id=pattern.account_id,
        merchant_signature=pattern.merchant_signature,
        suggested_name=detection.suggested_name,
        suggested_category_id=detection.suggested_category_id,
        frequency=pattern.frequency,
        confidence=round(pattern.confidence, 4),
        risk_score=round(detection.risk_score, 4),
        average_amount=pattern.average_amount,
        occurrences=pattern.occurrences,
        first_occurrence=pattern.first_occurrence,
        last_occurrence=pattern.last_occurrence,
        next_expected_date=pattern.next_expected_date,
        amount_consistency=round(pattern.amount_consistency, 4),
        timing_regularity=round(pattern.timing_regularity, 4),
        existing_payment_id=detection.existing_payment_id,
        is_new=detection.is_new,
        transaction_ids=pattern.transaction_ids,
    )


@router.get("/detections", response_model=List[RecurringDetectionResponse])
def detect_recurring_patterns(
    min_occurrences: Optional[int] = Query(None, description="Minimum transactions per pattern"),
    amount_tolerance_percent: Optional[float] = Query(None, description="Amount tolerance band in percent"),
    date_variance_days: Optional[int] = Query(None, description="Base interval tolerance in days"),
    lookback_months: Optional[int] = Query(None, description="History window in months"),
    confidence_threshold: Optional[float] = Query(None, description="Minimum confidence to report"),
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """
    Detect recurring payments in the user's transaction history.

    Results are sorted by confidence, highest first. Each detection says whether
    an already declared payment tracks it.
    """
    user_id = get_user_id(user_id)
    try:
        config = detection_config_from_settings(
            min_occurrences=min_occurrences,
            amount_tolerance_percent=amount_tolerance_percent,
            date_variance_days=date_variance_days,
            lookback_months=lookback_months,
            confidence_threshold=confidence_threshold,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid detection settings: {e.errors()[0]['msg']}")

    detections = service.detect_recurring_patterns(user_id, datetime.utcnow(), config)
    return [_serialize_detection(d) for d in detections]


@router.get("/cost-analysis", response_model=CostAnalysisResponse)
def get_cost_analysis(
    refresh: bool = Query(False, description="Bypass the cached analysis"),
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """Monthly, quarterly and yearly cost of the user's active recurring payments."""
    user_id = get_user_id(user_id)
    analysis = service.get_cost_analysis(user_id, datetime.utcnow(), use_cache=not refresh)
    return CostAnalysisResponse.model_validate(analysis)


@router.get("/cost-analysis/projections", response_model=List[MonthlyProjectionResponse])
def get_cost_projections(
    months: Optional[int] = Query(None, description="Number of months to project"),
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    try:
        projections = service.get_cost_projections(user_id, datetime.utcnow(), months)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [MonthlyProjectionResponse.model_validate(p) for p in projections]


@router.get("/missed", response_model=List[MissedPaymentResponse])
def get_missed_payments(
    grace_period_days: Optional[int] = Query(None, description="Days after the due date before a payment counts as missed"),
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    try:
        missed = service.detect_missed_payments(user_id, datetime.utcnow(), grace_period_days)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [MissedPaymentResponse.model_validate(m) for m in missed]


@router.get("/summary", response_model=BillSummaryResponse)
def get_bill_summary(
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """Upcoming and overdue bill counts for the dashboard."""
    user_id = get_user_id(user_id)
    return BillSummaryResponse.model_validate(service.get_dashboard_summary(user_id, datetime.utcnow()))


@router.post("/business-day-adjustment", response_model=BusinessDayAdjustmentResponse)
def adjust_due_dates(
    body: BusinessDayAdjustmentRequest,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """Move due dates that fall on weekends or holidays to a business day."""
    user_id = get_user_id(user_id)
    try:
        adjusted = service.adjust_due_dates_for_business_days(user_id, body.direction)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BusinessDayAdjustmentResponse(adjusted_count=adjusted)


@router.get("/", response_model=List[RecurringPaymentResponse])
def list_recurring_payments(
    status: Optional[str] = Query(None, description="Filter by status"),
    account_id: Optional[UUID] = Query(None, description="Filter by account"),
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    try:
        payments = service.list_payments(user_id, status=status, account_id=str(account_id) if account_id else None)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [RecurringPaymentResponse.model_validate(p) for p in payments]


@router.post("/", response_model=RecurringPaymentResponse, status_code=201)
def create_recurring_payment(
    body: RecurringPaymentCreate,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """
    Declare a recurring payment.

    Pass source_signature to confirm a detection: its transactions are linked to
    the new payment and next_due_date defaults to the predicted date.
    """
    user_id = get_user_id(user_id)
    try:
        payment = service.create_payment(
            user_id,
            datetime.utcnow(),
            account_id=str(body.account_id),
            name=body.name,
            amount=body.amount,
            frequency=body.frequency,
            next_due_date=body.next_due_date,
            category_id=str(body.category_id) if body.category_id else None,
            merchant=body.merchant,
            reminder_days=body.reminder_days,
            source_signature=body.source_signature,
        )
    except RecurringPaymentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RecurringPaymentResponse.model_validate(payment)


@router.patch("/{payment_id}", response_model=RecurringPaymentResponse)
def update_recurring_payment(
    payment_id: UUID,
    body: RecurringPaymentUpdate,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    fields = body.model_dump(exclude_unset=True)
    if "category_id" in fields and fields["category_id"] is not None:
        fields["category_id"] = str(fields["category_id"])
    try:
        payment = service.update_payment(str(payment_id), user_id, fields)
    except RecurringPaymentNotFound:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RecurringPaymentResponse.model_validate(payment)


@router.post("/{payment_id}/mark-paid", response_model=RecurringPaymentResponse)
def mark_payment_as_paid(
    payment_id: UUID,
    body: Optional[MarkPaidRequest] = None,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    """Confirm the current cycle and advance the due date by one frequency period."""
    user_id = get_user_id(user_id)
    payment_date = body.payment_date if body else None
    try:
        payment = service.mark_payment_as_paid(str(payment_id), user_id, datetime.utcnow(), payment_date)
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not payment:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    return RecurringPaymentResponse.model_validate(payment)


@router.post("/{payment_id}/cancel", response_model=RecurringPaymentResponse)
def cancel_recurring_payment(
    payment_id: UUID,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    try:
        payment = service.cancel_payment(str(payment_id), user_id)
    except RecurringPaymentNotFound:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    return RecurringPaymentResponse.model_validate(payment)


@router.put("/{payment_id}/reminders", response_model=RecurringPaymentResponse)
def update_reminder_settings(
    payment_id: UUID,
    body: ReminderSettingsUpdate,
    user_id: Optional[str] = None,
    service: RecurringPaymentService = Depends(get_recurring_service),
):
    user_id = get_user_id(user_id)
    try:
        payment = service.update_reminder_settings(str(payment_id), user_id, body.reminder_days)
    except RecurringPaymentNotFound:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    except InvalidPaymentInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RecurringPaymentResponse.model_validate(payment)
