# orderflow/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow.api.deps import get_cache, get_publisher, get_shipping_policy, http_error
from orderflow.data.database import get_db
from orderflow.domain.errors import OrderFlowError
from orderflow.domain.schemas import (
    CancelIn,
    CheckoutIn,
    OrderOut,
    OrderPage,
    StatusChangeIn,
    StatusHistoryOut,
)
from orderflow.services.order_service import OrderService
from orderflow.services.shipping import ShippingAddress

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


def get_service(
    db: Session = Depends(get_db),
    shipping=Depends(get_shipping_policy),
    publisher=Depends(get_publisher),
    cache=Depends(get_cache),
) -> OrderService:
    return OrderService(db, shipping=shipping, publisher=publisher, cache=cache)


@router.post("/checkout", response_model=OrderOut, status_code=201)
def checkout(payload: CheckoutIn, svc: OrderService = Depends(get_service)):
    """
    Tworzy zamowienie z koszyka (caly albo wybrane linie).
    OrderCreated wysylane po commicie.
    """
    try:
        return svc.checkout(
            user_id=payload.user_id,
            address=ShippingAddress(
                address=payload.address,
                city=payload.city,
                province=payload.province,
                postal_code=payload.postal_code,
            ),
            line_ids=payload.line_ids,
            payment_method=payload.payment_method,
            notes=payload.notes,
        )
    except OrderFlowError as e:
        raise http_error(e)


@router.get("", response_model=OrderPage)
def list_orders(
    user_id: int = Query(..., gt=0),
    page: int = Query(1),
    limit: int = Query(10),
    svc: OrderService = Depends(get_service),
):
    try:
        return svc.list_orders(user_id, page=page, limit=limit)
    except OrderFlowError as e:
        raise http_error(e)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    user_id: int = Query(..., gt=0),
    svc: OrderService = Depends(get_service),
):
    try:
        return svc.get_order(order_id, user_id)
    except OrderFlowError as e:
        raise http_error(e)


@router.get("/{order_id}/history", response_model=List[StatusHistoryOut])
def get_order_history(
    order_id: int,
    user_id: int = Query(..., gt=0),
    svc: OrderService = Depends(get_service),
):
    try:
        return svc.get_order_history(order_id, user_id=user_id)
    except OrderFlowError as e:
        raise http_error(e)


@router.put("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: CancelIn | None = None,
    user_id: int = Query(..., gt=0),
    svc: OrderService = Depends(get_service),
):
    try:
        return svc.cancel_order(order_id, user_id, reason=payload.reason if payload else None)
    except OrderFlowError as e:
        raise http_error(e)


@router.put("/{order_id}/status", response_model=OrderOut)
def change_status(
    order_id: int,
    payload: StatusChangeIn,
    svc: OrderService = Depends(get_service),
):
    """Operator: przejscie statusu wg tabeli przejsc."""
    try:
        return svc.transition_order(order_id, payload.status, note=payload.note, actor_id=payload.actor_id)
    except OrderFlowError as e:
        raise http_error(e)


@router.delete("/{order_id}", status_code=204)
def delete_order(order_id: int, svc: OrderService = Depends(get_service)):
    try:
        svc.delete_order(order_id)
    except OrderFlowError as e:
        raise http_error(e)


@admin_router.get("", response_model=OrderPage)
def list_all_orders(
    page: int = Query(1),
    limit: int = Query(10),
    status: str | None = Query(None),
    svc: OrderService = Depends(get_service),
):
    try:
        return svc.list_all_orders(page=page, limit=limit, status=status)
    except OrderFlowError as e:
        raise http_error(e)
