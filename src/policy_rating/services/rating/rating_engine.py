# PolicyCore - Policy Decision Management System
# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.
"""Main rating engine that orchestrates resolution, validation and calculation.

This module is the entry point for the policy-issuance workflow. It is
stateless between calls: every request resolves its rating keys afresh, so
calls may run concurrently. The only coordination is an advisory per-key lock
around admission of new rating factors, which makes the overlap warning
meaningful within one process.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from datetime import date

from beartype import beartype

from ...core.cache import Cache, get_cache
from ...core.config import Settings, get_settings
from ...core.database import Database, get_database
from ...core.exceptions import (
    InvalidRatingFactorError,
    InvalidVehicleCharacteristicError,
    MissingRatingDataError,
    RatingEngineError,
)
from ...core.logging_utils import get_logger
from ...core.result_types import Err, Ok, Result
from ...models.rating import (
    AdmissionOutcome,
    InsuranceType,
    PremiumBreakdown,
    RatingFactor,
    RequiredFactorSet,
    ValidationResult,
    VehicleProfile,
)
from .cache_strategy import CachedRatingCatalog
from .calculator import PremiumCalculator
from .catalog import MutableRatingCatalog, PostgresRatingCatalog, RatingCatalog
from .resolver import RatingResolver
from .validator import RatingValidator

logger = get_logger(__name__)


@beartype
class RatingEngine:
    """Premium rating engine over a rating catalog."""

    def __init__(
        self,
        catalog: RatingCatalog,
        *,
        today: Callable[[], date] = date.today,
        settings: Settings | None = None,
    ) -> None:
        """Initialize rating engine.

        Args:
            catalog: Rating data store. Admission and listings need a
                MutableRatingCatalog; resolution and validation need only
                the two validity lookups
            today: Clock for age buckets and date plausibility checks
            settings: Engine settings (defaults to the global settings)
        """
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._today = today
        self._resolver = RatingResolver(catalog, today=today)
        self._validator = RatingValidator(catalog, self._resolver, today=today)
        self._calculator = PremiumCalculator()
        # One lock per admitted (type, key), kept for the engine lifetime.
        # Bounded by the rating key namespace.
        self._admission_locks: defaultdict[
            tuple[InsuranceType, str], asyncio.Lock
        ] = defaultdict(asyncio.Lock)

    def _mutable_catalog(self) -> MutableRatingCatalog:
        if not isinstance(self._catalog, MutableRatingCatalog):
            raise TypeError(
                f"{type(self._catalog).__name__} does not support listing or admitting"
                " rating factors"
            )
        return self._catalog

    def _deadline(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._settings.catalog_timeout_seconds

    @beartype
    def required_factors(
        self, insurance_type: InsuranceType, vehicle: VehicleProfile
    ) -> RequiredFactorSet:
        """Rating keys that must resolve for the vehicle and insurance type."""
        return self._resolver.required_factors(insurance_type, vehicle)

    @beartype
    async def validate_rating_factors(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> ValidationResult:
        """Validate business constraints and rating data availability.

        Args:
            insurance_type: Insurance product
            vehicle: Vehicle to rate
            as_of: Policy effective date
            timeout: Deadline for each catalog lookup in seconds

        Returns:
            Validation result with every error and warning found
        """
        return await self._validator.validate_rating_factors(
            insurance_type, vehicle, as_of, timeout=self._deadline(timeout)
        )

    @beartype
    async def can_calculate_premium(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> bool:
        """Whether validation reports no errors for the request."""
        return await self._validator.can_calculate_premium(
            insurance_type, vehicle, as_of, timeout=self._deadline(timeout)
        )

    @beartype
    async def get_missing_rating_factors(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[str]:
        """Names of required rating keys without data on the policy date."""
        return await self._validator.get_missing_rating_factors(
            insurance_type, vehicle, as_of, timeout=self._deadline(timeout)
        )

    @beartype
    async def validate_rating_factor(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> ValidationResult:
        """Validate a single rating factor against the rules and existing data."""
        return await self._validator.validate_rating_factor(
            record, timeout=self._deadline(timeout)
        )

    @beartype
    async def compute_premium_multiplier(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> Result[PremiumBreakdown, RatingEngineError]:
        """Validate the request and compute its premium multiplier.

        Rating keys are resolved once and the same lookups feed both
        validation and calculation, so the result cannot mix two catalog
        states.

        Returns:
            Result containing the breakdown, MissingRatingDataError when rating
            data is missing, or InvalidVehicleCharacteristicError for any
            other validation error
        """
        resolved = await self._resolver.resolve(
            insurance_type, vehicle, as_of, timeout=self._deadline(timeout)
        )
        validation = self._validator.validate_resolved(vehicle, resolved)

        missing = resolved.missing_keys()
        if missing:
            return Err(MissingRatingDataError(missing, insurance_type.value, as_of))
        if not validation.valid:
            return Err(InvalidVehicleCharacteristicError(validation.errors))

        for warning in validation.warnings:
            logger.debug("Rating warning for %s on %s: %s", insurance_type.value, as_of, warning)

        return self._calculator.calculate(resolved)

    @beartype
    async def admit_rating_factor(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> Result[AdmissionOutcome, InvalidRatingFactorError]:
        """Validate and store a new rating factor.

        Records with validation errors are rejected. Overlaps and naming
        issues are accepted and returned as warnings. Admissions for the same
        type and key are serialised within this process; concurrent admissions
        from other processes may both pass the overlap check.

        Raises:
            TypeError: If the catalog cannot store records
        """
        catalog = self._mutable_catalog()
        lock = self._admission_locks[(record.insurance_type, record.rating_key)]
        async with lock:
            validation = await self.validate_rating_factor(record, timeout=timeout)
            if not validation.valid:
                logger.warning(
                    "Rejected rating factor %s: %s",
                    record.description,
                    "; ".join(validation.errors),
                )
                return Err(InvalidRatingFactorError(validation.errors))

            stored = await catalog.add(record, timeout=self._deadline(timeout))

        logger.info(
            "Admitted rating factor %s (id=%s, valid %s..%s)%s",
            stored.description,
            stored.id,
            stored.valid_from,
            stored.valid_to or "open",
            f" with {len(validation.warnings)} warning(s)" if validation.warnings else "",
        )
        return Ok(AdmissionOutcome(record=stored, warnings=validation.warnings))

    @beartype
    async def get_rating_factors_for_date(
        self,
        insurance_type: InsuranceType,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> list[RatingFactor]:
        """All rating factors of an insurance type valid on a date."""
        return await self._mutable_catalog().find_valid_for_type(
            insurance_type, as_of, timeout=self._deadline(timeout)
        )

    @beartype
    async def get_current_rating_factors(
        self, insurance_type: InsuranceType, *, timeout: float | None = None
    ) -> list[RatingFactor]:
        """All rating factors of an insurance type valid today."""
        return await self.get_rating_factors_for_date(
            insurance_type, self._today(), timeout=timeout
        )


@beartype
def build_catalog(
    db: Database | None = None,
    cache: Cache | None = None,
    *,
    settings: Settings | None = None,
) -> MutableRatingCatalog:
    """Create the production catalog, cached when enabled in settings.

    Defaults to the process-wide database and cache managers.
    """
    settings = settings or get_settings()
    catalog: MutableRatingCatalog = PostgresRatingCatalog(db or get_database())
    if settings.rating_cache_enabled:
        catalog = CachedRatingCatalog(
            catalog, cache or get_cache(), ttl_seconds=settings.redis_ttl_seconds
        )
        logger.info("Rating catalog lookups cached for %ss", settings.redis_ttl_seconds)
    return catalog
