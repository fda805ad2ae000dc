# orderflow/repos/unit_of_work.py
"""
Unit of work over a SQLAlchemy session.

Everything written inside ``with UnitOfWork(...)`` commits together or not at
all. Events and cache invalidations registered during the block are handed to
the publisher and the cache only after a successful commit, so nothing is
published for a transaction that rolled back.
"""
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from orderflow.domain.errors import TransientStorageError
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class UnitOfWork:
    def __init__(self, db: Session, publisher=None, cache=None):
        self.db = db
        self.publisher = publisher
        self.cache = cache
        self._events = []
        self._stale_keys = set()

    def __enter__(self) -> "UnitOfWork":
        self._events = []
        self._stale_keys = set()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.db.rollback()
            if isinstance(exc, OperationalError):
                logger.warning(f"Transaction aborted by storage: {exc}")
                raise TransientStorageError() from exc
            return False

        try:
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.warning(f"Commit failed: {e}")
            raise TransientStorageError() from e
        except Exception:
            self.db.rollback()
            raise

        self._after_commit()
        return False

    def record(self, event) -> None:
        self._events.append(event)

    def invalidate(self, *keys: str) -> None:
        self._stale_keys.update(keys)

    def _after_commit(self) -> None:
        if self.cache is not None and self._stale_keys:
            self.cache.delete(*sorted(self._stale_keys))

        if self.publisher is not None:
            for event in self._events:
                self.publisher.publish(event)

        self._events = []
        self._stale_keys = set()
