"""
Mercado Pago REST client.

Creates checkout preferences and reads the authoritative status of a
payment. Both calls are bearer-token authenticated and map every failure
to ``GatewayError``.
"""
import json
import logging
import math
from typing import Dict, List, Optional
from uuid import uuid4

import requests

from .errors import GatewayError, InvalidAmount, ValidationError
from .orders import DEFAULT_ITEM_TITLE

logger = logging.getLogger(__name__)

CURRENCY_ID = "ARS"
AUTO_RETURN = "approved"
DEFAULT_API_BASE = "https://api.mercadopago.com"
DEFAULT_BACK_URLS = {
    "success": "http://localhost:5000/success",
    "failure": "http://localhost:5000/cancel",
    "pending": "https://yourapp.com/pending",
}


def coerce_price(value, field: str = "unit_price") -> float:
    if isinstance(value, bool):
        raise ValidationError("must be a number", field=field)
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ValidationError("must be a number", field=field)
    if not math.isfinite(numeric):
        raise ValidationError("must be a finite number", field=field)
    return numeric


def coerce_quantity(value, field: str = "quantity") -> int:
    if isinstance(value, bool):
        raise ValidationError("must be an integer", field=field)
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ValidationError("must be an integer", field=field)
    if not math.isfinite(numeric) or not numeric.is_integer():
        raise ValidationError("must be a whole number", field=field)
    if numeric < 1:
        raise ValidationError("must be at least 1", field=field)
    return int(numeric)


def normalize_line_item(payload) -> Dict:
    if not isinstance(payload, dict):
        raise ValidationError("each item must be an object", field="items")

    title = str(payload.get("title") or "").strip() or DEFAULT_ITEM_TITLE
    normalized = {
        "title": title,
        "quantity": coerce_quantity(payload.get("quantity")),
        "unit_price": coerce_price(
            payload.get("unit_price", payload.get("unitPrice"))
        ),
    }
    size = str(payload.get("size") or "").strip()
    if size:
        normalized["size"] = size
    return normalized


def calculate_total(items: List[Dict]) -> float:
    return sum(item["unit_price"] * item["quantity"] for item in items)


class MercadoPagoClient:
    """Thin outbound caller for the checkout preference and payment APIs."""

    def __init__(
        self,
        access_token: str,
        api_base: str = DEFAULT_API_BASE,
        back_urls: Optional[Dict[str, str]] = None,
        timeout: float = 5.0,
        session=None,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.back_urls = {**DEFAULT_BACK_URLS, **(back_urls or {})}
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise GatewayError("Mercado Pago configuration is incomplete.")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }

    @staticmethod
    def _error_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {response.status_code}"

    def build_preference(
        self, items, payer_email: str, shipping_address: str
    ) -> Dict:
        """
        Normalise the cart into a preference request body.

        Raises ``InvalidAmount`` when the cart total is not strictly positive.
        """
        normalized_items = [normalize_line_item(entry) for entry in items or []]
        if calculate_total(normalized_items) <= 0:
            raise InvalidAmount()

        return {
            "items": [
                {
                    "title": item["title"],
                    "quantity": item["quantity"],
                    "unit_price": item["unit_price"],
                    "currency_id": CURRENCY_ID,
                }
                for item in normalized_items
            ],
            "payer": {"email": payer_email},
            "back_urls": dict(self.back_urls),
            "auto_return": AUTO_RETURN,
            "additional_info": json.dumps({"shipping_address": shipping_address}),
        }

    def create_preference(
        self, items, payer_email: str, shipping_address: str
    ) -> str:
        body = self.build_preference(items, payer_email, shipping_address)
        headers = self._headers()
        headers["X-Idempotency-Key"] = uuid4().hex

        url = f"{self.api_base}/checkout/preferences"
        try:
            response = self.session.post(
                url, json=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            logger.error(f"Mercado Pago preference request failed: {exc}")
            raise GatewayError(f"Failed to create payment preference: {exc}")

        if not response.ok:
            message = self._error_message(response)
            logger.error(f"Mercado Pago preference rejected: {message}")
            raise GatewayError(f"Failed to create payment preference: {message}")

        try:
            preference_id = (response.json() or {}).get("id")
        except (ValueError, AttributeError):
            preference_id = None
        if not preference_id:
            raise GatewayError("Invalid response from Mercado Pago")

        logger.info(f"Created Mercado Pago preference {preference_id}")
        return str(preference_id)

    def get_payment_status(self, payment_id: str) -> str:
        """Return the gateway's own status for a payment, e.g. ``approved``."""
        headers = self._headers()
        url = f"{self.api_base}/v1/payments/{payment_id}"
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error(f"Mercado Pago payment lookup failed: {exc}")
            raise GatewayError(f"Failed to fetch payment {payment_id}: {exc}")

        if not response.ok:
            message = self._error_message(response)
            logger.error(f"Mercado Pago payment lookup rejected: {message}")
            raise GatewayError(f"Failed to fetch payment {payment_id}: {message}")

        try:
            status = (response.json() or {}).get("status")
        except (ValueError, AttributeError):
            status = None
        if not status:
            raise GatewayError("Invalid response from Mercado Pago")
        return str(status)
