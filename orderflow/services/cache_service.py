import json
from datetime import date, datetime

import redis
from redis.exceptions import RedisError

from orderflow.utils.retry import redis_retry
from orderflow.utils.settings import REDIS_URL
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


def json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


def product_key(product_id: int) -> str:
    return f"product:{product_id}"


class CacheService:
    """
    -read-through cache dla odczytow (nigdy zrodlo prawdy)
    -bledy redisa sa logowane i polykane, nie moga wywrocic transakcji
    -po kazdej zmianie stanu klucze sa usuwane, nie aktualizowane
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    def get(self, key: str) -> dict | None:
        try:
            raw = self._get(key)
        except RedisError as e:
            logger.warning(f"Cache GET {key} failed: {e}")
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: dict, ttl: int) -> None:
        try:
            self._set(key, json.dumps(value, default=json_default), ttl)
        except RedisError as e:
            logger.warning(f"Cache SET {key} failed: {e}")

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._delete(*keys)
        except RedisError as e:
            logger.warning(f"Cache DEL {keys} failed: {e}")

    @redis_retry()
    def _get(self, key: str):
        return self.redis.get(key)

    @redis_retry()
    def _set(self, key: str, raw: str, ttl: int):
        #SET order:1 "{...}" EX 300
        return self.redis.set(name=key, value=raw, ex=ttl)

    @redis_retry()
    def _delete(self, *keys: str):
        logger.info(f"Invalidate cache keys {list(keys)}")
        return self.redis.delete(*keys)
