# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Rating catalog: typed access to time-bounded rating factors.

The catalog answers two questions for the engine: which records for
``(insurance_type, rating_key)`` are valid on a day, and which records have a
validity window overlapping a given interval. It returns raw records in no
guaranteed order; interpreting zero, one or many matches is the caller's job.

Every lookup accepts a ``timeout`` (seconds) that bounds the store call.
Cancellation follows the usual asyncio task cancellation. Store failures are
never retried here.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from beartype import beartype

from ...core.database import Database
from ...core.logging_utils import get_logger
from ...models.rating import InsuranceType, RatingFactor

logger = get_logger(__name__)


@runtime_checkable
class RatingCatalog(Protocol):
    """Lookups the rating engine needs to resolve and validate requests."""

    async def find_valid(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Records for the type and key whose window contains ``as_of``."""
        ...

    async def find_overlapping(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        valid_from: date,
        valid_to: date | None,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Records for the type and key whose window intersects the interval."""
        ...


@runtime_checkable
class MutableRatingCatalog(RatingCatalog, Protocol):
    """Catalog that also lists records per type and admits new ones."""

    async def find_valid_for_type(
        self,
        insurance_type: InsuranceType,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """All records of an insurance type valid on ``as_of``."""
        ...

    async def add(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> RatingFactor:
        """Store a new record and return it with its assigned id."""
        ...


_COLUMNS = "id, insurance_type, rating_key, multiplier, valid_from, valid_to"


@beartype
class PostgresRatingCatalog:
    """Rating catalog backed by the ``rating_tables`` relation."""

    def __init__(self, db: Database) -> None:
        """Initialize catalog with a database connection manager."""
        self._db = db

    @beartype
    async def find_valid(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """Records for the type and key whose window contains ``as_of``."""
        query = f"""
            SELECT {_COLUMNS}
            FROM rating_tables
            WHERE insurance_type = $1
                AND rating_key = $2
                AND valid_from <= $3
                AND (valid_to IS NULL OR valid_to >= $3)
        """
        rows = await self._db.fetch(
            query, insurance_type.value, rating_key, as_of, timeout=timeout
        )
        return [self._row_to_rating_factor(row) for row in rows]

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
        """Records for the type and key whose window intersects the interval."""
        query = f"""
            SELECT {_COLUMNS}
            FROM rating_tables
            WHERE insurance_type = $1
                AND rating_key = $2
                AND ($4::date IS NULL OR valid_from <= $4)
                AND (valid_to IS NULL OR valid_to >= $3)
        """
        rows = await self._db.fetch(
            query,
            insurance_type.value,
            rating_key,
            valid_from,
            valid_to,
            timeout=timeout,
        )
        return [self._row_to_rating_factor(row) for row in rows]

    @beartype
    async def find_valid_for_type(
        self,
        insurance_type: InsuranceType,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """All records of an insurance type valid on ``as_of``."""
        query = f"""
            SELECT {_COLUMNS}
            FROM rating_tables
            WHERE insurance_type = $1
                AND valid_from <= $2
                AND (valid_to IS NULL OR valid_to >= $2)
            ORDER BY rating_key, valid_from
        """
        rows = await self._db.fetch(
            query, insurance_type.value, as_of, timeout=timeout
        )
        return [self._row_to_rating_factor(row) for row in rows]

    @beartype
    async def add(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> RatingFactor:
        """Insert a record and return it with the generated id."""
        query = f"""
            INSERT INTO rating_tables (
                insurance_type, rating_key, multiplier, valid_from, valid_to
            ) VALUES ($1, $2, $3, $4, $5)
            RETURNING {_COLUMNS}
        """
        row = await self._db.fetchrow(
            query,
            record.insurance_type.value,
            record.rating_key,
            record.multiplier,
            record.valid_from,
            record.valid_to,
            timeout=timeout,
        )
        if row is None:
            raise RuntimeError(
                f"Insert of rating factor {record.description} returned no row"
            )
        return self._row_to_rating_factor(row)

    @beartype
    def _row_to_rating_factor(self, row: Any) -> RatingFactor:
        """Convert database row to RatingFactor model."""
        return RatingFactor(
            id=row["id"],
            insurance_type=InsuranceType(row["insurance_type"]),
            rating_key=row["rating_key"],
            multiplier=Decimal(str(row["multiplier"])),
            valid_from=row["valid_from"],
            valid_to=row["valid_to"],
        )


@beartype
class InMemoryRatingCatalog:
    """List-backed rating catalog for seeding, embedding and tests.

    Lookups never block, so the ``timeout`` argument is accepted and ignored.
    """

    def __init__(self, records: Iterable[RatingFactor] = ()) -> None:
        """Initialize catalog, assigning ids to records that have none."""
        self._records: list[RatingFactor] = []
        self._next_id = 1
        for record in records:
            self._store(record)

    def _store(self, record: RatingFactor) -> RatingFactor:
        if record.id is None:
            record = record.model_copy(update={"id": self._next_id})
        elif any(existing.id == record.id for existing in self._records):
            raise ValueError(f"Duplicate rating factor id {record.id}")
        self._next_id = max(self._next_id, record.id) + 1
        self._records.append(record)
        return record

    @beartype
    async def find_valid(
        self,
        insurance_type: InsuranceType,
        rating_key: str,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        return [
            record
            for record in self._records
            if record.insurance_type == insurance_type
            and record.rating_key == rating_key
            and record.is_valid_for_date(as_of)
        ]

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
        return [
            record
            for record in self._records
            if record.insurance_type == insurance_type
            and record.rating_key == rating_key
            and record.overlaps(valid_from, valid_to)
        ]

    @beartype
    async def find_valid_for_type(
        self,
        insurance_type: InsuranceType,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        matches = [
            record
            for record in self._records
            if record.insurance_type == insurance_type
            and record.is_valid_for_date(as_of)
        ]
        return sorted(matches, key=lambda r: (r.rating_key, r.valid_from))

    @beartype
    async def add(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> RatingFactor:
        stored = self._store(record)
        logger.debug("Stored rating factor %s with id %s", stored.description, stored.id)
        return stored

    @beartype
    def remove(self, record_id: int) -> bool:
        """Delete a record by id. Returns False when no record matched."""
        before = len(self._records)
        self._records = [r for r in self._records if r.id != record_id]
        return len(self._records) < before

    @beartype
    def remove_key(self, insurance_type: InsuranceType, rating_key: str) -> int:
        """Delete every record for a type and key. Returns the count removed."""
        before = len(self._records)
        self._records = [
            r
            for r in self._records
            if not (r.insurance_type == insurance_type and r.rating_key == rating_key)
        ]
        return before - len(self._records)

    def __len__(self) -> int:
        return len(self._records)
