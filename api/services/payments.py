# SPDX-License-Identifier: Apache-2.0

"""
Payment data source for benefit release.
"""

import threading
from typing import Dict, Optional
import logging

from models.entities import PaymentChannel

logger = logging.getLogger(__name__)


class PaymentInfoProvider:
    """Looks up the payment channel registered for a beneficiary."""

    def get_payment_channel(self, beneficiary_id: str) -> Optional[PaymentChannel]:
        raise NotImplementedError


class StaticPaymentInfoProvider(PaymentInfoProvider):
    """In-memory payment channels, for local development and tests."""

    def __init__(self, channels: Optional[Dict[str, PaymentChannel]] = None):
        self._channels: Dict[str, PaymentChannel] = dict(channels or {})
        self._lock = threading.Lock()

    def register(self, beneficiary_id: str, channel: PaymentChannel) -> None:
        with self._lock:
            self._channels[beneficiary_id] = channel

    def get_payment_channel(self, beneficiary_id: str) -> Optional[PaymentChannel]:
        with self._lock:
            return self._channels.get(beneficiary_id)


class MongoPaymentInfoProvider(PaymentInfoProvider):
    """Reads payment channels from the ``payment_channels`` collection."""

    def __init__(self, mongo_service, collection: str = "payment_channels"):
        self.mongo_service = mongo_service
        self.collection = collection

    def get_payment_channel(self, beneficiary_id: str) -> Optional[PaymentChannel]:
        document = self.mongo_service.get_collection(self.collection).find_one(
            {"beneficiary_id": beneficiary_id, "active": {"$ne": False}}
        )
        if document is None:
            logger.debug(f"No payment channel for beneficiary {beneficiary_id}")
            return None
        return PaymentChannel(
            method=document.get("method", "pix"),
            pix_key=document.get("pix_key"),
            bank_account=document.get("bank_account")
        )
