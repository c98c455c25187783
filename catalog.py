"""
Product form handling.

Admin clients post products as multipart forms, so stock arrives flattened as
`stock[0].size`, `stock[0].quantity`, `stock[1].size`, ... and every scalar
arrives as a string. The helpers here turn such a form into validated product
fields and raise HTTPException(400) with a field-specific message otherwise.
"""
import math
import re
from typing import Any, Dict, List, Mapping, Optional

from fastapi import HTTPException

from schemas import validate_stock

STOCK_KEY = re.compile(r"^stock\[(\d+)\]\.(size|quantity)$")
INT_PATTERN = re.compile(r"^\s*\d+\s*$")

REQUIRED_TEXT_FIELDS = (
    ("name", "Product name is required"),
    ("description", "Product description is required"),
    ("category", "Product category is required"),
    ("sub_category", "Sub-category is required"),
    ("brand", "Brand is required"),
)


def bad_request(message: str):
    return HTTPException(status_code=400, detail=message)


def _text(form: Mapping[str, Any], key: str) -> Optional[str]:
    value = form.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise bad_request(f"Invalid {key.replace('_', ' ')}")
    return value.strip()


def parse_flag(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    return value.strip().lower() == "true"


def parse_stock_form(form: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Collect the indexed stock fields of a form into a list ordered by index."""
    entries: Dict[int, Dict[str, Any]] = {}
    for key in form.keys():
        match = STOCK_KEY.match(key)
        if not match:
            continue
        index, field = int(match.group(1)), match.group(2)
        entries.setdefault(index, {})[field] = form.get(key)

    stock = []
    for index in sorted(entries):
        entry = entries[index]
        size = entry.get("size")
        if not isinstance(size, str) or not size.strip():
            raise bad_request("Each stock entry must have a size")
        quantity = entry.get("quantity")
        if not isinstance(quantity, str) or not INT_PATTERN.match(quantity):
            raise bad_request("Each stock entry must have a valid non-negative integer quantity")
        stock.append({"size": size.strip(), "quantity": int(quantity)})
    return stock


def check_stock(stock: List[Dict[str, Any]]) -> None:
    if not stock:
        raise bad_request("At least one stock entry is required")
    try:
        validate_stock(stock)
    except ValueError as e:
        raise bad_request(str(e))


def parse_price(raw: Optional[str], message: str) -> float:
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise bad_request(message)
    if not math.isfinite(price) or price <= 0:
        raise bad_request(message)
    return price


def parse_offer_price(raw: Optional[str], price: float, current: Optional[float] = None) -> Optional[float]:
    """An empty or missing offer price keeps `current` (None on create)."""
    if raw is None or raw == "":
        offer = current
    else:
        offer = parse_price(raw, "Offer price must be a number greater than 0")
    if offer is not None and offer >= price:
        raise bad_request("Offer price must be less than the regular price")
    return offer


def product_from_form(form: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a create form. The image is handled by the caller."""
    fields: Dict[str, Any] = {}
    for key, message in REQUIRED_TEXT_FIELDS[:2]:
        value = _text(form, key)
        if not value:
            raise bad_request(message)
        fields[key] = value

    fields["price"] = parse_price(form.get("price"), "Valid price is required (greater than 0)")
    fields["offer_price"] = parse_offer_price(form.get("offer_price"), fields["price"])

    for key, message in REQUIRED_TEXT_FIELDS[2:]:
        value = _text(form, key)
        if not value:
            raise bad_request(message)
        fields[key] = value

    stock = parse_stock_form(form)
    check_stock(stock)
    fields["stock"] = stock
    fields["best_selling"] = bool(parse_flag(form.get("best_selling")))
    fields["new_arrival"] = bool(parse_flag(form.get("new_arrival")))
    return fields


def product_update_from_form(form: Mapping[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    """Validate an update form against the stored product.

    Stock is required and replaces the stored list; every other field is
    optional and keeps its stored value when omitted.
    """
    stock = parse_stock_form(form)
    if not stock:
        raise bad_request("Stock is required")
    check_stock(stock)

    changes: Dict[str, Any] = {"stock": stock}
    for key, _ in REQUIRED_TEXT_FIELDS:
        value = _text(form, key)
        if value:
            changes[key] = value

    price = current["price"]
    if form.get("price") is not None:
        price = parse_price(form.get("price"), "Price must be a number greater than 0")
    changes["price"] = price
    changes["offer_price"] = parse_offer_price(form.get("offer_price"), price, current.get("offer_price"))

    for key in ("best_selling", "new_arrival"):
        flag = parse_flag(form.get(key))
        if flag is not None:
            changes[key] = flag
    return changes
