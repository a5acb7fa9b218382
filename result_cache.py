"""
Result Cache

Memoizes optimization results under a key derived from the cart contents
and the strategy. Two handles share the same async get/set-with-TTL
contract and are passed to the engine at construction:

- InMemoryResultCache: per-process dict, used in tests and single-worker runs
- DatabaseResultCache: optimization_cache table, shared across workers

Values are JSON-encoded on write, so a hit always returns a fresh dict.
Concurrent writers on the same key just overwrite each other. Every write
also drops entries that have already expired.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from shopping_cart import CartItem, OptimizationStrategy

logger = logging.getLogger(__name__)


class ResultCache(Protocol):
    async def get(self, key: str) -> Optional[Dict]: ...

    async def set(self, key: str, value: Dict, ttl: int) -> None: ...


def build_cache_key(cart: List[CartItem], strategy: OptimizationStrategy) -> str:
    """
    Key from the sorted (product_id, quantity) pairs and the strategy.

    Row order in the cart does not matter. Strategy parameters that change
    the result (store limits and store lists) are part of the key.
    """
    cart_hash = "|".join(sorted(f"{item.product_id}:{item.quantity}" for item in cart))
    params = [f"max={strategy.max_stores or ''}"]
    if strategy.preferred_stores:
        params.append("pref=" + ",".join(strategy.preferred_stores))
    if strategy.quality_stores is not None:
        params.append("quality=" + ",".join(strategy.quality_stores))
    return f"optimization:{strategy.type}:{';'.join(params)}:{cart_hash}"


class InMemoryResultCache:
    """Process-local cache with per-entry expiry"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, tuple] = {}

    async def get(self, key: str) -> Optional[Dict]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, payload = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None

        return json.loads(payload)

    async def set(self, key: str, value: Dict, ttl: int) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]

        self._entries[key] = (now + ttl, json.dumps(value))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseResultCache:
    """Cache backed by the optimization_cache table"""

    def __init__(self, db_manager):
        """
        Args:
            db_manager: DatabaseManager with the schema already created
        """
        self.db_manager = db_manager

    async def get(self, key: str) -> Optional[Dict]:
        try:
            return await asyncio.to_thread(self._get, key)
        except SQLAlchemyError as e:
            logger.error(f"✗ Cache read failed, treating as miss: {e}")
            return None

    async def set(self, key: str, value: Dict, ttl: int) -> None:
        try:
            await asyncio.to_thread(self._set, key, json.dumps(value), ttl)
        except SQLAlchemyError as e:
            logger.error(f"✗ Cache write failed, result not cached: {e}")

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete, key)
        except SQLAlchemyError as e:
            logger.error(f"✗ Cache delete failed: {e}")

    def _get(self, key: str) -> Optional[Dict]:
        from models import OptimizationCacheEntry

        with self.db_manager.session_scope() as session:
            entry = session.query(OptimizationCacheEntry).filter(
                OptimizationCacheEntry.cache_key == key
            ).first()

            if entry is None:
                return None

            if entry.expires_at <= datetime.utcnow():
                session.delete(entry)
                return None

            return json.loads(entry.payload)

    def _set(self, key: str, payload: str, ttl: int) -> None:
        from models import OptimizationCacheEntry

        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=ttl)
        with self.db_manager.session_scope() as session:
            session.query(OptimizationCacheEntry).filter(
                OptimizationCacheEntry.expires_at <= now,
                OptimizationCacheEntry.cache_key != key
            ).delete(synchronize_session=False)

            entry = session.query(OptimizationCacheEntry).filter(
                OptimizationCacheEntry.cache_key == key
            ).first()

            if entry:
                entry.payload = payload
                entry.expires_at = expires_at
            else:
                session.add(OptimizationCacheEntry(
                    cache_key=key,
                    payload=payload,
                    expires_at=expires_at
                ))

    def _delete(self, key: str) -> None:
        from models import OptimizationCacheEntry

        with self.db_manager.session_scope() as session:
            session.query(OptimizationCacheEntry).filter(
                OptimizationCacheEntry.cache_key == key
            ).delete()

    def purge_expired(self) -> int:
        """Remove expired rows. Returns the number deleted."""
        from models import OptimizationCacheEntry

        with self.db_manager.session_scope() as session:
            deleted = session.query(OptimizationCacheEntry).filter(
                OptimizationCacheEntry.expires_at <= datetime.utcnow()
            ).delete()

        logger.info(f"✓ Purged {deleted} expired cache entries")
        return deleted
