# orderflow/api/deps.py
from fastapi import HTTPException

from orderflow.domain.errors import OrderFlowError
from orderflow.services.cache_service import CacheService
from orderflow.services.event_publisher import EventPublisher
from orderflow.services.shipping import ShippingPolicy, default_shipping_policy


def get_cache() -> CacheService:
    return CacheService()


def get_publisher() -> EventPublisher:
    return EventPublisher()


def get_shipping_policy() -> ShippingPolicy:
    return default_shipping_policy()


def http_error(e: OrderFlowError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())
