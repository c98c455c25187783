"""
SSLCommerz hosted-checkout adapter.

Two server-to-server calls: `init_session` opens a checkout session and yields
the URL the buyer is redirected to, `validate` re-checks a transaction the
gateway reported as successful before we trust the callback.
"""
import logging
from typing import Any, Dict

import httpx

import config

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.sslcommerz.com"
LIVE_URL = "https://securepay.sslcommerz.com"


class PaymentGatewayError(Exception):
    pass


def base_url() -> str:
    return LIVE_URL if config.SSLCOMMERZ_IS_LIVE else SANDBOX_URL


def build_session_payload(order: dict, customer: dict) -> Dict[str, Any]:
    address = order["shipping_address"]
    order_id = order["order_id"]
    return {
        "store_id": config.SSLCOMMERZ_STORE_ID,
        "store_passwd": config.SSLCOMMERZ_STORE_PASSWORD,
        "total_amount": order["total_price"],
        "currency": config.SSLCOMMERZ_CURRENCY,
        "tran_id": order_id,
        "success_url": f"{config.BACKEND_URL}/api/orders/ssl-success",
        "fail_url": f"{config.BACKEND_URL}/api/orders/ssl-fail",
        "cancel_url": f"{config.BACKEND_URL}/api/orders/ssl-cancel",
        "shipping_method": "Courier",
        "num_of_item": sum(item["quantity"] for item in order["products"]),
        "product_name": ", ".join(item["name"] for item in order["products"])[:255],
        "product_category": "Clothing",
        "product_profile": "general",
        "cus_name": customer.get("name", ""),
        "cus_email": customer.get("email", ""),
        "cus_add1": address["street"],
        "cus_city": address["city"],
        "cus_state": address["state"],
        "cus_postcode": address["postal_code"],
        "cus_country": address["country"],
        "cus_phone": order["phone_number"],
        "ship_name": customer.get("name", ""),
        "ship_add1": address["street"],
        "ship_city": address["city"],
        "ship_state": address["state"],
        "ship_postcode": address["postal_code"],
        "ship_country": address["country"],
    }


def init_session(order: dict, customer: dict) -> str:
    """Open a checkout session and return the hosted GatewayPageURL."""
    payload = build_session_payload(order, customer)
    try:
        response = httpx.post(f"{base_url()}/gwprocess/v4/api.php", data=payload,
                              timeout=config.GATEWAY_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("SSLCommerz session init failed for %s: %s", order["order_id"], e)
        raise PaymentGatewayError("Payment gateway error") from e

    url = data.get("GatewayPageURL")
    if data.get("status") != "SUCCESS" or not url:
        logger.error("SSLCommerz rejected session for %s: %s", order["order_id"], data.get("failedreason"))
        raise PaymentGatewayError(data.get("failedreason") or "Payment gateway error")
    return url


def validate(val_id: str) -> Dict[str, Any]:
    """Fetch the gateway's own view of a transaction by validation id."""
    params = {
        "val_id": val_id,
        "store_id": config.SSLCOMMERZ_STORE_ID,
        "store_passwd": config.SSLCOMMERZ_STORE_PASSWORD,
        "v": 1,
        "format": "json",
    }
    try:
        response = httpx.get(f"{base_url()}/validator/api/validationserverAPI.php", params=params,
                             timeout=config.GATEWAY_TIMEOUT)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("SSLCommerz validation failed for val_id %s: %s", val_id, e)
        raise PaymentGatewayError("Payment verification failed") from e
