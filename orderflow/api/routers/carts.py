# orderflow/api/routers/carts.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow.api.deps import http_error
from orderflow.data.database import get_db
from orderflow.domain.errors import OrderFlowError
from orderflow.domain.schemas import (
    ItemIn,
    LineUpdateIn,
    CartLineOut,
    CartOut,
)
from orderflow.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session = Depends(get_db)) -> CartService:
    return CartService(db)


@router.get("", response_model=CartOut)
def get_cart(
    user_id: int = Query(..., gt=0),
    svc: CartService = Depends(get_service),
):
    return svc.get_cart(user_id)


@router.post("/items", response_model=CartLineOut)
def add_item(
    payload: ItemIn,
    user_id: int = Query(..., gt=0),
    svc: CartService = Depends(get_service),
):
    try:
        return svc.add_to_cart(user_id, payload.product_id, payload.quantity)
    except OrderFlowError as e:
        raise http_error(e)


@router.put("/items/{line_id}", response_model=CartLineOut)
def update_item(
    line_id: int,
    payload: LineUpdateIn,
    user_id: int = Query(..., gt=0),
    svc: CartService = Depends(get_service),
):
    try:
        return svc.update_line(line_id, user_id, payload.quantity)
    except OrderFlowError as e:
        raise http_error(e)


@router.delete("/items/{line_id}", status_code=204)
def remove_item(
    line_id: int,
    user_id: int = Query(..., gt=0),
    svc: CartService = Depends(get_service),
):
    try:
        svc.remove_line(line_id, user_id)
    except OrderFlowError as e:
        raise http_error(e)


@router.delete("", status_code=204)
def clear_cart(
    user_id: int = Query(..., gt=0),
    svc: CartService = Depends(get_service),
):
    try:
        svc.clear_cart(user_id)
    except OrderFlowError as e:
        raise http_error(e)
