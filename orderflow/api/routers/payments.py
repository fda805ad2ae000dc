# orderflow/api/routers/payments.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow.api.deps import get_cache, get_publisher, http_error
from orderflow.data.database import get_db
from orderflow.domain.errors import OrderFlowError
from orderflow.domain.schemas import (
    CallbackResultOut,
    GatewayReferenceIn,
    PaymentCallbackIn,
    PaymentOut,
    PaymentPage,
)
from orderflow.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(
    db: Session = Depends(get_db),
    publisher=Depends(get_publisher),
    cache=Depends(get_cache),
) -> PaymentService:
    return PaymentService(db, publisher=publisher, cache=cache)


@router.post("/callback", response_model=CallbackResultOut)
def payment_callback(payload: PaymentCallbackIn, svc: PaymentService = Depends(get_service)):
    """
    Webhook bramki. Podpis jest sprawdzany przed tym endpointem.
    Powtorzony callback zwraca 200 z applied=false.
    """
    try:
        return svc.apply_callback(payload.external_reference, payload.status, payload.amount)
    except OrderFlowError as e:
        raise http_error(e)


@router.get("", response_model=PaymentPage)
def list_payments(
    user_id: int = Query(..., gt=0),
    page: int = Query(1),
    limit: int = Query(10),
    svc: PaymentService = Depends(get_service),
):
    try:
        return svc.list_payments(user_id, page=page, limit=limit)
    except OrderFlowError as e:
        raise http_error(e)


@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(
    payment_id: int,
    user_id: int = Query(..., gt=0),
    svc: PaymentService = Depends(get_service),
):
    try:
        return svc.get_payment(payment_id, user_id)
    except OrderFlowError as e:
        raise http_error(e)


@router.put("/{payment_id}/gateway", response_model=PaymentOut)
def attach_gateway_reference(
    payment_id: int,
    payload: GatewayReferenceIn,
    svc: PaymentService = Depends(get_service),
):
    try:
        return svc.attach_gateway_reference(payment_id, payload.external_reference, payload.payment_url)
    except OrderFlowError as e:
        raise http_error(e)
