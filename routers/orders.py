from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

import config
import orders
from security import get_current_user, require_admin

router = APIRouter(prefix="/api/orders", tags=["orders"])


class CartLine(BaseModel):
    product: Optional[str] = None
    size: Optional[str] = None
    quantity: Optional[int] = None


class PlaceOrderBody(BaseModel):
    phone_number: Optional[str] = None
    products: Optional[List[CartLine]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None


class OrderStatusBody(BaseModel):
    order_status: Optional[str] = None


class PaymentStatusBody(BaseModel):
    payment_status: Optional[str] = None


def frontend_redirect(page: str, order_id: Optional[str]) -> RedirectResponse:
    return RedirectResponse(f"{config.FRONTEND_URL}/{page}?order_id={order_id or ''}", status_code=303)


# ----------------------- Checkout -----------------------
@router.post("")
def create_order(body: PlaceOrderBody, user=Depends(get_current_user)):
    lines = [line.model_dump() for line in body.products] if body.products is not None else None
    status_code, content = orders.place_order(
        user,
        body.phone_number,
        lines,
        body.shipping_address,
        body.payment_method,
    )
    return JSONResponse(status_code=status_code, content=content)


# ----------------------- Gateway callbacks -----------------------
@router.post("/ssl-success")
def ssl_success(tran_id: Optional[str] = Form(None), val_id: Optional[str] = Form(None)):
    orders.confirm_payment(tran_id, val_id)
    return frontend_redirect("order-success", tran_id)


@router.post("/ssl-fail")
def ssl_fail(tran_id: Optional[str] = Form(None)):
    orders.abandon_payment(tran_id, "Failed")
    return frontend_redirect("order-fail", tran_id)


@router.post("/ssl-cancel")
def ssl_cancel(tran_id: Optional[str] = Form(None)):
    orders.abandon_payment(tran_id, "Cancelled")
    return frontend_redirect("order-cancelled", tran_id)


# ----------------------- Tracking -----------------------
@router.get("/track-order")
def track_order(phone_number: Optional[str] = None, order_id: Optional[str] = None):
    return {"order": orders.serialize_order(orders.track_order(phone_number, order_id))}


# ----------------------- Admin -----------------------
@router.get("")
def list_orders(user=Depends(require_admin)):
    return {"orders": orders.list_orders()}


@router.put("/{order_id}")
def update_order_status(order_id: str, body: OrderStatusBody, user=Depends(require_admin)):
    order = orders.update_order_status(order_id, body.order_status)
    return {"message": "Order status updated", "order": orders.serialize_order(order)}


@router.put("/{order_id}/payment")
def update_payment_status(order_id: str, body: PaymentStatusBody, user=Depends(require_admin)):
    order = orders.update_payment_status(order_id, body.payment_status)
    return {"message": "Payment status updated", "order": orders.serialize_order(order)}
