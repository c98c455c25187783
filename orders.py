"""
Order workflow.

Placing an order checks every cart line against the live product stock,
prices it on the server (offer price first, list price otherwise), snapshots
the line into the order and then either leaves the order for cash on delivery
or opens an SSLCommerz checkout session.

Stock is reserved at order time when RESERVE_STOCK is on: each line is
decremented with a compare-and-set write on the product's stock array, and the
reservation is handed back if the payment fails, is cancelled, the gateway
session can't be opened, or an admin cancels the order.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from pymongo import ReturnDocument

import config
import database
import payments
from database import create_document, now
from schemas import (ADDRESS_FIELDS, ONLINE, ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES,
                     Order, OrderItem, ShippingAddress)
from security import public_user, serialize_doc, to_object_id

logger = logging.getLogger(__name__)

STOCK_WRITE_ATTEMPTS = 5


def bad_request(message: str):
    return HTTPException(status_code=400, detail=message)


def not_found(message: str = "Order not found"):
    return HTTPException(status_code=404, detail=message)


def effective_price(product: dict) -> float:
    offer = product.get("offer_price")
    return offer if offer is not None else product["price"]


def find_stock_entry(stock: List[dict], size: str) -> Optional[dict]:
    wanted = size.lower()
    for entry in stock:
        if entry["size"].lower() == wanted:
            return entry
    return None


# ----------------------- Stock -----------------------
def adjust_stock(product_id, size: str, delta: int) -> bool:
    """Add `delta` to the quantity of `size`; False if that would go below zero.

    The write only lands if the stock array is still the one we read, so two
    concurrent checkouts can't both take the last units.
    """
    products = database.db["product"]
    for _ in range(STOCK_WRITE_ATTEMPTS):
        product = products.find_one({"_id": product_id}, {"stock": 1})
        if not product:
            return False
        stock = product.get("stock", [])
        entry = find_stock_entry(stock, size)
        if entry is None or entry["quantity"] + delta < 0:
            return False
        updated = [
            {**e, "quantity": e["quantity"] + delta} if e is entry else e
            for e in stock
        ]
        result = products.update_one({"_id": product_id, "stock": stock},
                                     {"$set": {"stock": updated, "updated_at": now()}})
        if result.matched_count:
            return True
        logger.debug("Stock for %s changed while reserving, retrying", product_id)
    return False


def reserve_stock(items: List[OrderItem], requested_sizes: Optional[List[str]] = None) -> None:
    """Take every line out of stock or none of them.

    `requested_sizes` holds the sizes as the client spelled them, one per item,
    for the error message.
    """
    sizes = requested_sizes or [item.size for item in items]
    taken: List[OrderItem] = []
    for item, size in zip(items, sizes):
        if not adjust_stock(item.product, item.size, -item.quantity):
            for done in taken:
                adjust_stock(done.product, done.size, done.quantity)
            raise bad_request(f"Not enough stock for '{item.name}' in size '{size}'")
        taken.append(item)


def release_stock(order_id: str) -> None:
    """Return an order's reserved units to stock, at most once."""
    order = database.db["order"].find_one_and_update(
        {"order_id": order_id, "stock_reserved": True},
        {"$set": {"stock_reserved": False, "updated_at": now()}},
    )
    if not order:
        return
    for item in order["products"]:
        if not adjust_stock(item["product"], item["size"], item["quantity"]):
            logger.warning("Could not return %s x '%s' of product %s for order %s",
                           item["quantity"], item["size"], item["product"], order_id)


# ----------------------- Placing -----------------------
def validate_address(address: Optional[Dict[str, Any]]) -> ShippingAddress:
    if not isinstance(address, dict) or not all(
        isinstance(address.get(f), str) and address[f].strip() for f in ADDRESS_FIELDS
    ):
        raise bad_request("Complete shipping address is required")
    return ShippingAddress(**{f: address[f].strip() for f in ADDRESS_FIELDS})


def price_cart(lines: List[Dict[str, Any]]) -> Tuple[List[OrderItem], float]:
    """Check each cart line against its product and snapshot it.

    Lines repeating a product and size are checked against stock together.
    Returns the order items and the server-computed total.
    """
    items: List[OrderItem] = []
    requested: Dict[Tuple[Any, str], int] = {}
    total = 0.0
    for line in lines:
        product_id, size, quantity = line.get("product"), line.get("size"), line.get("quantity")
        if not product_id or not size or not quantity or quantity <= 0:
            raise bad_request("Each product must include product ID, size, and quantity")

        oid = to_object_id(product_id)
        product = database.db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise not_found(f"Product with ID {product_id} not found")

        entry = find_stock_entry(product.get("stock", []), size)
        if entry is None:
            raise bad_request(f"Size '{size}' not available for product '{product['name']}'")
        key = (product["_id"], entry["size"].lower())
        requested[key] = requested.get(key, 0) + quantity
        if entry["quantity"] < requested[key]:
            raise bad_request(f"Not enough stock for '{product['name']}' in size '{size}'")

        total += effective_price(product) * quantity
        items.append(OrderItem(
            product=product["_id"],
            name=product["name"],
            size=entry["size"],
            quantity=quantity,
            price=product["price"],
            offer_price=product.get("offer_price"),
        ))
    return items, round(total, 2)


def place_order(user: Optional[dict], phone_number: Optional[str], lines: Optional[List[Dict[str, Any]]],
                shipping_address: Optional[Dict[str, Any]], payment_method: Optional[str]) -> Tuple[int, dict]:
    """Validate and persist an order. Returns (status_code, response body)."""
    if not user:
        raise bad_request("User is required")
    phone_number = (phone_number or "").strip()
    if not phone_number:
        raise bad_request("Phone number is required")
    if config.ONE_ORDER_PER_PHONE and database.db["order"].find_one({"phone_number": phone_number}):
        raise bad_request("An order has already been placed using this phone number")
    if not lines:
        raise bad_request("Products array is required")
    address = validate_address(shipping_address)
    if payment_method not in PAYMENT_METHODS:
        raise bad_request("Invalid payment method")

    items, total = price_cart(lines)

    reserved = config.RESERVE_STOCK
    if reserved:
        reserve_stock(items, [line["size"] for line in lines])

    order = Order(
        order_id=str(uuid.uuid4()),
        user=user["_id"],
        phone_number=phone_number,
        products=items,
        total_price=total,
        shipping_address=address,
        payment_method=payment_method,
        stock_reserved=reserved,
    )
    doc = order.model_dump()
    try:
        create_document("order", doc)
    except Exception:
        if reserved:
            for item in items:
                adjust_stock(item.product, item.size, item.quantity)
        raise
    logger.info("Order %s placed by %s: %s, total %.2f", order.order_id, user.get("email"), payment_method, total)

    if payment_method == ONLINE:
        try:
            gateway_url = payments.init_session(doc, {"name": user.get("name"), "email": user.get("email")})
        except payments.PaymentGatewayError:
            release_stock(order.order_id)
            database.db["order"].delete_one({"order_id": order.order_id})
            raise bad_request("Payment gateway error")
        return 200, {"message": "Redirect to payment", "gateway_url": gateway_url, "order_id": order.order_id}

    stored = database.db["order"].find_one({"order_id": order.order_id})
    return 201, {
        "message": "Order created successfully",
        "redirect_url": f"{config.FRONTEND_URL}/order-success?order_id={order.order_id}",
        "order": serialize_order(stored),
    }


# ----------------------- Gateway callbacks -----------------------
def confirm_payment(tran_id: Optional[str], val_id: Optional[str]) -> dict:
    """Mark an order Paid, but only once the gateway itself says VALID."""
    if not tran_id or not val_id:
        raise bad_request("Invalid request body")
    try:
        verification = payments.validate(val_id)
    except payments.PaymentGatewayError:
        raise bad_request("Payment verification failed")

    if verification.get("status") != "VALID" or verification.get("tran_id", tran_id) != tran_id:
        logger.warning("Rejected payment for %s: status %s", tran_id, verification.get("status"))
        raise bad_request("Payment verification failed")

    order = database.db["order"].find_one({"order_id": tran_id})
    if not order:
        raise not_found()

    changes = {"payment_status": "Paid", "payment_info": verification, "updated_at": now()}
    if (order.get("payment_status") in ("Failed", "Cancelled") and config.RESERVE_STOCK
            and not order.get("stock_reserved")):
        # Its units went back to stock when the payment was abandoned.
        try:
            reserve_stock([OrderItem(**item) for item in order["products"]])
        except HTTPException:
            logger.warning("Refusing late payment for %s order %s: stock no longer available",
                           order["payment_status"].lower(), tran_id)
            raise bad_request("Order can no longer be fulfilled")
        changes["stock_reserved"] = True

    order = database.db["order"].find_one_and_update(
        {"order_id": tran_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s paid", tran_id)
    return order


def abandon_payment(tran_id: Optional[str], payment_status: str) -> None:
    """Handle a failed or cancelled checkout for order `tran_id`.

    With ONE_ORDER_PER_PHONE the order is dropped so the phone number can be
    used again, otherwise it stays with the given payment status.
    """
    if not tran_id:
        raise bad_request("Invalid request body")
    order = database.db["order"].find_one({"order_id": tran_id})
    if not order:
        logger.warning("Payment %s callback for unknown order %s", payment_status.lower(), tran_id)
        return
    if order.get("payment_status") == "Paid":
        logger.warning("Ignoring %s callback for paid order %s", payment_status.lower(), tran_id)
        return

    release_stock(tran_id)
    if config.ONE_ORDER_PER_PHONE:
        database.db["order"].delete_one({"order_id": tran_id})
        logger.info("Order %s removed after payment %s", tran_id, payment_status.lower())
    else:
        database.db["order"].update_one(
            {"order_id": tran_id},
            {"$set": {"payment_status": payment_status, "updated_at": now()}},
        )
        logger.info("Order %s payment %s", tran_id, payment_status.lower())


# ----------------------- Reads -----------------------
def serialize_order(order: dict) -> dict:
    out = serialize_doc(order)
    out.pop("stock_reserved", None)
    return out


def track_order(phone_number: Optional[str], order_id: Optional[str] = None) -> dict:
    if not phone_number:
        raise bad_request("Phone number required")
    query = {"phone_number": phone_number.strip()}
    if order_id:
        query["order_id"] = order_id
    order = database.db["order"].find_one(query, sort=[("created_at", -1)])
    if not order:
        raise not_found()
    return order


def list_orders() -> List[dict]:
    """All orders newest first, each carrying a summary of its user."""
    orders = list(database.db["order"].find().sort("created_at", -1))
    user_ids = list({o["user"] for o in orders})
    users = {u["_id"]: u for u in database.db["user"].find({"_id": {"$in": user_ids}})}
    out = []
    for order in orders:
        item = serialize_order(order)
        user = users.get(order["user"])
        item["user"] = public_user(user) if user else None
        out.append(item)
    return out


# ----------------------- Admin updates -----------------------
def _set_status(order_id: str, field: str, value: str) -> dict:
    order = database.db["order"].find_one_and_update(
        {"order_id": order_id},
        {"$set": {field: value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        logger.info("Order with order_id %s not found", order_id)
        raise not_found()
    return order


def update_order_status(order_id: str, order_status: Optional[str]) -> dict:
    if order_status not in ORDER_STATUSES:
        raise bad_request("Invalid order status")
    order = _set_status(order_id, "order_status", order_status)
    if order_status == "Cancelled" and order.get("stock_reserved"):
        release_stock(order_id)
        order = database.db["order"].find_one({"order_id": order_id})
    return order


def update_payment_status(order_id: str, payment_status: Optional[str]) -> dict:
    if payment_status not in PAYMENT_STATUSES:
        raise bad_request("Invalid payment status")
    return _set_status(order_id, "payment_status", payment_status)
