# orderflow/services/shipping.py
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence

import requests
from requests import RequestException

from orderflow.domain.errors import TransientStorageError
from orderflow.utils.retry import http_retry
from orderflow.utils.settings import SHIPPING_FLAT_RATE, SHIPPING_SERVICE_URL
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ShippingAddress:
    address: str
    city: str | None = None
    province: str | None = None
    postal_code: str | None = None


@dataclass(frozen=True)
class ShipmentLine:
    product_id: int
    quantity: int


class ShippingPolicy(Protocol):
    def quote(self, address: ShippingAddress, lines: Sequence[ShipmentLine], subtotal: Decimal) -> Decimal:
        ...


class FlatRateShipping:
    def __init__(self, rate: Decimal = SHIPPING_FLAT_RATE):
        self.rate = Decimal(rate).quantize(CENTS)

    def quote(self, address: ShippingAddress, lines: Sequence[ShipmentLine], subtotal: Decimal) -> Decimal:
        return self.rate


class RateServiceShipping:
    """Pyta zewnetrzny serwis stawek: POST {base_url}/rates -> {"cost": "12.50"}."""

    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or SHIPPING_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    def quote(self, address: ShippingAddress, lines: Sequence[ShipmentLine], subtotal: Decimal) -> Decimal:
        try:
            data = self._fetch_rate(
                {
                    "address": address.address,
                    "city": address.city,
                    "province": address.province,
                    "postal_code": address.postal_code,
                    "subtotal": str(subtotal),
                    "items": [{"product_id": l.product_id, "quantity": l.quantity} for l in lines],
                }
            )
        except RequestException as e:
            logger.error(f"Shipping rate lookup failed: {e}")
            raise TransientStorageError("Shipping rate service unavailable, retry the request") from e

        return Decimal(str(data["cost"])).quantize(CENTS)

    @http_retry()
    def _fetch_rate(self, payload: dict) -> dict:
        url = f"{self.base_url}/rates"
        logger.info(f"ShippingClient POST {url}")

        resp = requests.post(url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()


def default_shipping_policy() -> ShippingPolicy:
    if SHIPPING_SERVICE_URL:
        return RateServiceShipping()
    return FlatRateShipping()
