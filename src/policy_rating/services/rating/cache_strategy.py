"""Caching strategy for rating catalog lookups.

``CachedRatingCatalog`` wraps a :class:`MutableRatingCatalog` and keeps validity
lookups in Redis. Records are immutable once admitted, so a cached lookup can
only go stale when a new record is admitted for the same type and key; the
wrapper clears those entries on ``add``. Admissions made by other processes
become visible when the TTL expires.

Overlap lookups feed conflict detection and always go to the store.
"""

from datetime import date

from beartype import beartype
from redis.exceptions import RedisError

from ...core.cache import Cache
from ...core.logging_utils import get_logger
from ...models.rating import InsuranceType, RatingFactor
from .catalog import MutableRatingCatalog

logger = get_logger(__name__)

CACHE_PREFIX = "rating:"


@beartype
class CachedRatingCatalog:
    """Read-through Redis cache in front of a rating catalog."""

    def __init__(
        self,
        catalog: MutableRatingCatalog,
        cache: Cache,
        ttl_seconds: int | None = None,
    ) -> None:
        """Initialize cached catalog.

        Args:
            catalog: Catalog holding the authoritative records
            cache: Connected Redis cache
            ttl_seconds: Entry TTL, defaults to the cache's configured TTL
        """
        self._catalog = catalog
        self._cache = cache
        self._ttl = ttl_seconds or cache.default_ttl
        self._cache_stats = {"hits": 0, "misses": 0, "errors": 0}

    @staticmethod
    def _valid_key(insurance_type: InsuranceType, rating_key: str, as_of: date) -> str:
        return f"{CACHE_PREFIX}valid:{insurance_type.value}:{rating_key}:{as_of.isoformat()}"

    @staticmethod
    def _type_key(insurance_type: InsuranceType, as_of: date) -> str:
        return f"{CACHE_PREFIX}type:{insurance_type.value}:{as_of.isoformat()}"

    async def _read(self, cache_key: str) -> list[RatingFactor] | None:
        try:
            cached = await self._cache.get(cache_key)
        except RedisError as e:
            self._cache_stats["errors"] += 1
            logger.warning("Rating cache read failed for %s: %s", cache_key, e)
            return None

        if cached is None:
            self._cache_stats["misses"] += 1
            return None

        self._cache_stats["hits"] += 1
        return [RatingFactor.model_validate(item) for item in cached]

    async def _write(self, cache_key: str, records: list[RatingFactor]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        try:
            await self._cache.set(cache_key, payload, ttl=self._ttl)
        except RedisError as e:
            self._cache_stats["errors"] += 1
            logger.warning("Rating cache write failed for %s: %s", cache_key, e)

    @beartype
    async def find_valid(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Cached lookup of records valid on ``as_of``."""
        cache_key = self._valid_key(insurance_type, rating_key, as_of)
        cached = await self._read(cache_key)
        if cached is not None:
            return cached

        records = await self._catalog.find_valid(
            insurance_type, rating_key, as_of, timeout=timeout
        )
        await self._write(cache_key, records)
        return records

    @beartype
    async def find_overlapping(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        valid_from: date,
        valid_to: date | None,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Uncached overlap lookup."""
        return await self._catalog.find_overlapping(
            insurance_type, rating_key, valid_from, valid_to, timeout=timeout
        )

    @beartype
    async def find_valid_for_type(
        self,
        insurance_type: InsuranceType,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Cached lookup of every record of a type valid on ``as_of``."""
        cache_key = self._type_key(insurance_type, as_of)
        cached = await self._read(cache_key)
        if cached is not None:
            return cached

        records = await self._catalog.find_valid_for_type(
            insurance_type, as_of, timeout=timeout
        )
        await self._write(cache_key, records)
        return records

    @beartype
    async def add(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> RatingFactor:
        """Store the record and drop cached lookups it could change.

        The record is committed before invalidation. A Redis failure at that
        point is logged and the stale entries expire with their TTL.
        """
        stored = await self._catalog.add(record, timeout=timeout)
        try:
            await self.invalidate(record.insurance_type, record.rating_key)
        except RedisError as e:
            self._cache_stats["errors"] += 1
            logger.warning(
                "Rating cache invalidation failed for %s: %s", record.description, e
            )
        return stored

    @beartype
    async def invalidate(self, insurance_type: InsuranceType, rating_key: str) -> int:
        """Clear cached lookups for a type and key. Returns entries removed."""
        patterns = (
            f"{CACHE_PREFIX}valid:{insurance_type.value}:{rating_key}:*",
            f"{CACHE_PREFIX}type:{insurance_type.value}:*",
        )
        removed = 0
        for pattern in patterns:
            removed += await self._cache.clear_pattern(pattern)
        logger.debug(
            "Invalidated %d cached rating lookups for %s/%s",
            removed,
            insurance_type.value,
            rating_key,
        )
        return removed

    @property
    def cache_stats(self) -> dict[str, int]:
        """Hit, miss and error counters since construction."""
        return dict(self._cache_stats)
