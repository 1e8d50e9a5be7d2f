"""
Order lifecycle: checkout preference -> pending order -> paid.

An order only ever moves from ``pending`` to ``paid``, and only after a
webhook notification has passed signature verification and the gateway
itself reports the payment as approved.
"""
import json
import logging
from typing import Dict, Optional

from .errors import NotFound, StoreError, ValidationError
from .orders import OrderStore, serialize_order
from .payments import normalize_line_item
from .webhooks import verify_signature

logger = logging.getLogger(__name__)

PAYMENT_NOTIFICATION_TYPE = "payment"
APPROVED_STATUS = "approved"


def _required_text(value, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError("is required", field=field)
    return text


class OrderLifecycleManager:
    def __init__(self, store: OrderStore, payment_client, webhook_secret: str):
        self.store = store
        self.payment_client = payment_client
        self.webhook_secret = webhook_secret

    def create_order(
        self, payment_id, shipping_address, payer_email, items=None
    ) -> Dict:
        payment_id = _required_text(payment_id, "paymentId")
        shipping_address = _required_text(shipping_address, "shippingAddress")
        payer_email = _required_text(payer_email, "payerEmail")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValidationError("must be a list", field="items")

        normalized_items = [normalize_line_item(entry) for entry in items]
        order_document = self.store.insert(
            payment_id, shipping_address, payer_email, normalized_items
        )
        logger.info(f"Created pending order for payment {payment_id}")
        return serialize_order(order_document)

    def get_order_details(self, payment_id: str) -> Dict:
        order_document = self.store.find_by_payment_id(payment_id)
        if not order_document:
            raise NotFound("Order", payment_id)
        return serialize_order(order_document)

    def create_checkout_session(
        self, items, payer_email, shipping_address
    ) -> str:
        """
        Create a gateway preference and record the matching pending order.

        Recording the order is best effort: the shopper already has a
        preference to pay against, so a failure there is only logged. The
        payer and shipping fields are checked before the preference exists.
        """
        _required_text(payer_email, "payerEmail")
        _required_text(shipping_address, "shippingAddress")

        preference_id = self.payment_client.create_preference(
            items, payer_email, shipping_address
        )

        try:
            self.create_order(preference_id, shipping_address, payer_email, items)
        except StoreError as exc:
            logger.error(
                f"Could not record order for preference {preference_id}: {exc.message}"
            )
        except Exception as exc:
            logger.error(
                f"Could not record order for preference {preference_id}: {exc}",
                exc_info=True,
            )

        return preference_id

    def handle_payment_notification(
        self, raw_body: bytes, signature: Optional[str]
    ) -> Dict:
        verify_signature(self.webhook_secret, raw_body, signature)

        try:
            event = json.loads(raw_body)
        except (TypeError, ValueError):
            event = None
        if not isinstance(event, dict):
            logger.warning("Signed notification body is not a JSON object; ignoring")
            return {"status": "ignored"}

        event_type = event.get("type")
        if event_type != PAYMENT_NOTIFICATION_TYPE:
            logger.info(f"Ignoring notification of type {event_type!r}")
            return {"status": "ignored"}

        data = event.get("data") or {}
        payment_id = data.get("id") if isinstance(data, dict) else None
        if payment_id is None or str(payment_id).strip() == "":
            logger.warning("Payment notification without data.id; ignoring")
            return {"status": "ignored"}
        payment_id = str(payment_id)

        status = self.payment_client.get_payment_status(payment_id)
        if status != APPROVED_STATUS:
            logger.info(f"Payment {payment_id} reported as {status}; order unchanged")
            return {"status": "ok", "paymentStatus": status}

        if self.store.mark_paid(payment_id):
            logger.info(f"Order for payment {payment_id} marked as paid")
        else:
            logger.info(f"No pending order for payment {payment_id}; nothing to update")
        return {"status": "ok", "paymentStatus": status}
