"""
Durable order records keyed by the Mercado Pago preference identifier.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from .errors import DuplicateOrder

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PAID = "paid"

DEFAULT_ITEM_TITLE = "Product"


class OrderStore:
    """Insert, look up and settle orders in a MongoDB collection."""

    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index(
                [("paymentId", ASCENDING)], unique=True, name="paymentId_unique"
            )
        except Exception as exc:
            logger.warning("Unable to ensure unique index for orders: %s", exc)

    def insert(
        self,
        payment_id: str,
        shipping_address: str,
        payer_email: str,
        items: List[Dict],
    ) -> Dict:
        document = {
            "paymentId": payment_id,
            "shippingAddress": shipping_address,
            "payerEmail": payer_email,
            "items": items,
            "status": STATUS_PENDING,
            "created_at": datetime.utcnow(),
        }
        try:
            insert_result = self.collection.insert_one(document)
        except DuplicateKeyError:
            raise DuplicateOrder(payment_id)
        document["_id"] = insert_result.inserted_id
        return document

    def find_by_payment_id(self, payment_id: str) -> Optional[Dict]:
        return self.collection.find_one({"paymentId": payment_id})

    def mark_paid(self, payment_id: str) -> bool:
        # Filtering on the pending status makes a repeated delivery match nothing.
        result = self.collection.update_one(
            {"paymentId": payment_id, "status": STATUS_PENDING},
            {"$set": {"status": STATUS_PAID, "paid_at": datetime.utcnow()}},
        )
        return result.modified_count > 0


def serialize_order(order_document) -> Dict:
    return {
        "id": str(order_document.get("_id", "")),
        "paymentId": order_document.get("paymentId", ""),
        "shippingAddress": order_document.get("shippingAddress", ""),
        "payerEmail": order_document.get("payerEmail", ""),
        "items": [
            {
                "title": item.get("title") or DEFAULT_ITEM_TITLE,
                "quantity": item.get("quantity", 0),
                "unit_price": item.get("unit_price", 0),
                **({"size": item["size"]} if item.get("size") else {}),
            }
            for item in order_document.get("items") or []
            if isinstance(item, dict)
        ],
        "status": order_document.get("status", STATUS_PENDING),
    }
