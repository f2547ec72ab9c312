# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Business rule validation for rating requests and rating data.

Validation always accumulates: every check runs and appends to the same
error/warning lists, so a caller sees all problems of a request at once.
Errors block premium calculation; warnings never do.

Check categories for a rating request, in reporting order:

1. Vehicle characteristics (ranges, registration date, very old vehicles)
2. Insurance-type rules (age limits per product)
3. Rating data availability (missing and ambiguous keys)
4. General plausibility (policy date distance, odd engine/power pairs)
"""

from collections.abc import Callable
from datetime import date
from typing import Final, assert_never

from beartype import beartype

from ...core.logging_utils import get_logger
from ...models.rating import (
    MAX_MULTIPLIER,
    MIN_MULTIPLIER,
    InsuranceType,
    LookupStatus,
    RatingFactor,
    ValidationResult,
    ValidationResultBuilder,
    VehicleProfile,
)
from .catalog import RatingCatalog
from .resolver import RatingResolver, ResolvedFactors

logger = get_logger(__name__)

MIN_ENGINE_CAPACITY: Final = 50  # cc
MAX_ENGINE_CAPACITY: Final = 8000  # cc
MIN_POWER: Final = 10  # HP
MAX_POWER: Final = 1000  # HP
VERY_OLD_VEHICLE_AGE: Final = 50

MAX_VEHICLE_AGE_FOR_AC: Final = 15
AC_SMALL_ENGINE_CAPACITY: Final = 800
OC_OLD_VEHICLE_AGE: Final = 30
NNW_OLD_VEHICLE_AGE: Final = 25

MAX_YEARS_AHEAD: Final = 1
MAX_YEARS_BEHIND: Final = 2
LARGE_ENGINE_CAPACITY: Final = 3000
LARGE_ENGINE_MIN_POWER: Final = 150
SMALL_ENGINE_CAPACITY: Final = 1000
SMALL_ENGINE_MAX_POWER: Final = 200

RATING_KEY_PREFIXES: Final = (
    "VEHICLE_AGE_",
    "ENGINE_",
    "POWER_",
    "REGION_",
    "SEASONAL_",
    "OC_",
    "AC_",
    "NNW_",
    "HISTORICAL_",
    "FUTURE_",
)


@beartype
def shift_years(day: date, years: int) -> date:
    """Move a date by whole years; 29 February falls back to 28 February."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


@beartype
class RatingValidator:
    """Validates rating requests and individual rating factor records."""

    def __init__(
        self,
        catalog: RatingCatalog,
        resolver: RatingResolver | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialize validator.

        Args:
            catalog: Rating data store, used for overlap checks
            resolver: Resolver for required keys (built on ``catalog`` if omitted)
            today: Clock shared with the resolver
        """
        self._catalog = catalog
        self._resolver = resolver or RatingResolver(catalog, today=today)
        self._today = today

    @beartype
    async def validate_rating_factors(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        policy_date: date,
        *,
        timeout: float | None = None,
    ) -> ValidationResult:
        """Validate that a premium can be rated for the request."""
        resolved = await self._resolver.resolve(
            insurance_type, vehicle, policy_date, timeout=timeout
        )
        return self.validate_resolved(vehicle, resolved)

    @beartype
    def validate_resolved(
        self, vehicle: VehicleProfile, resolved: ResolvedFactors
    ) -> ValidationResult:
        """Run every check against already resolved rating data."""
        today = self._today()
        result = ValidationResultBuilder()

        self._check_vehicle_characteristics(vehicle, today, result)
        self._check_insurance_type_rules(
            resolved.insurance_type, vehicle, resolved.as_of_date, result
        )
        self._check_data_availability(resolved, result)
        self._check_plausibility(vehicle, resolved.as_of_date, today, result)

        validation = result.build()
        if validation.has_errors:
            logger.info(
                "Rating validation failed for %s on %s: %s",
                resolved.insurance_type.value,
                resolved.as_of_date,
                "; ".join(validation.errors),
            )
        return validation

    @beartype
    async def can_calculate_premium(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        policy_date: date,
        *,
        timeout: float | None = None,
    ) -> bool:
        """True when validation reports no errors; warnings do not block."""
        result = await self.validate_rating_factors(
            insurance_type, vehicle, policy_date, timeout=timeout
        )
        return result.valid

    @beartype
    async def get_missing_rating_factors(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        policy_date: date,
        *,
        timeout: float | None = None,
    ) -> list[str]:
        """Required keys without any record valid on the policy date."""
        resolved = await self._resolver.resolve(
            insurance_type, vehicle, policy_date, timeout=timeout
        )
        return resolved.missing_keys()

    @beartype
    async def validate_rating_factor(
        self, record: RatingFactor, *, timeout: float | None = None
    ) -> ValidationResult:
        """Check one record before it is admitted into the catalog.

        Overlapping validity windows are reported as a warning only: historical
        correction windows are legitimate.
        """
        result = ValidationResultBuilder()

        if record.multiplier < MIN_MULTIPLIER:
            result.error(
                f"Multiplier {record.multiplier} is below minimum allowed value "
                f"{MIN_MULTIPLIER}"
            )
        if record.multiplier > MAX_MULTIPLIER:
            result.error(
                f"Multiplier {record.multiplier} exceeds maximum allowed value "
                f"{MAX_MULTIPLIER}"
            )

        if record.valid_to is not None and record.valid_from > record.valid_to:
            result.error("Valid from date must be before valid to date")
        else:
            overlapping = await self._catalog.find_overlapping(
                record.insurance_type,
                record.rating_key,
                record.valid_from,
                record.valid_to,
                timeout=timeout,
            )
            others = [
                other
                for other in overlapping
                if record.id is None or other.id != record.id
            ]
            if others:
                result.warning(
                    f"Rating table has overlapping validity periods with "
                    f"{len(others)} other entries"
                )

        self._check_rating_key_format(record.rating_key, record.insurance_type, result)

        return result.build()

    def _check_vehicle_characteristics(
        self,
        vehicle: VehicleProfile,
        today: date,
        result: ValidationResultBuilder,
    ) -> None:
        capacity = vehicle.engine_capacity_cc
        if capacity < MIN_ENGINE_CAPACITY:
            result.error(
                f"Engine capacity {capacity}cc is below minimum {MIN_ENGINE_CAPACITY}cc"
            )
        if capacity > MAX_ENGINE_CAPACITY:
            result.error(
                f"Engine capacity {capacity}cc exceeds maximum {MAX_ENGINE_CAPACITY}cc"
            )

        if vehicle.power_hp < MIN_POWER:
            result.error(f"Power {vehicle.power_hp}HP is below minimum {MIN_POWER}HP")
        if vehicle.power_hp > MAX_POWER:
            result.error(f"Power {vehicle.power_hp}HP exceeds maximum {MAX_POWER}HP")

        if vehicle.first_registration_date > today:
            result.error("First registration date cannot be in the future")

        age = vehicle.age_on(today)
        if age > VERY_OLD_VEHICLE_AGE:
            result.warning(
                f"Vehicle is very old ({age} years), premium calculation "
                "may not be accurate"
            )

    def _check_insurance_type_rules(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        policy_date: date,
        result: ValidationResultBuilder,
    ) -> None:
        age = vehicle.age_on(policy_date)

        match insurance_type:
            case InsuranceType.AC:
                if age > MAX_VEHICLE_AGE_FOR_AC:
                    result.error(
                        "AC insurance is not available for vehicles older than "
                        f"{MAX_VEHICLE_AGE_FOR_AC} years"
                    )
                if vehicle.engine_capacity_cc < AC_SMALL_ENGINE_CAPACITY:
                    result.warning(
                        "AC insurance for very small engines may have limited "
                        "coverage options"
                    )
            case InsuranceType.OC:
                # OC is mandatory, so there is no age ceiling
                if age > OC_OLD_VEHICLE_AGE:
                    result.warning("Very old vehicles may have limited OC coverage options")
            case InsuranceType.NNW:
                if age > NNW_OLD_VEHICLE_AGE:
                    result.warning(
                        "NNW insurance for very old vehicles may have different terms"
                    )
            case _:
                assert_never(insurance_type)

    def _check_data_availability(
        self, resolved: ResolvedFactors, result: ValidationResultBuilder
    ) -> None:
        for lookup in resolved.lookups:
            if lookup.status is LookupStatus.MISSING:
                result.error(
                    f"Missing rating factor: {lookup.rating_key} for "
                    f"{resolved.insurance_type.value} insurance on "
                    f"{resolved.as_of_date.isoformat()}"
                )
            elif lookup.status is LookupStatus.AMBIGUOUS:
                result.warning(
                    f"Multiple rating entries ({len(lookup.candidates)}) found for "
                    f"factor: {lookup.rating_key}, using the most recently "
                    f"effective one (id={lookup.chosen.id if lookup.chosen else None})"
                )

    def _check_plausibility(
        self,
        vehicle: VehicleProfile,
        policy_date: date,
        today: date,
        result: ValidationResultBuilder,
    ) -> None:
        if policy_date > shift_years(today, MAX_YEARS_AHEAD):
            result.warning(
                "Policy date is more than 1 year in the future, rating factors "
                "may not be accurate"
            )
        if policy_date < shift_years(today, -MAX_YEARS_BEHIND):
            result.warning(
                "Policy date is more than 2 years in the past, using historical "
                "rating factors"
            )

        capacity = vehicle.engine_capacity_cc
        if capacity > LARGE_ENGINE_CAPACITY and vehicle.power_hp < LARGE_ENGINE_MIN_POWER:
            result.warning("Unusual combination: large engine capacity with low power output")
        if capacity < SMALL_ENGINE_CAPACITY and vehicle.power_hp > SMALL_ENGINE_MAX_POWER:
            result.warning("Unusual combination: small engine capacity with high power output")

    def _check_rating_key_format(
        self,
        rating_key: str,
        insurance_type: InsuranceType,
        result: ValidationResultBuilder,
    ) -> None:
        if not rating_key.strip():
            result.error("Rating key cannot be empty")
            return

        if not rating_key.startswith(RATING_KEY_PREFIXES):
            result.warning(
                f"Rating key '{rating_key}' does not follow standard naming conventions"
            )

        match insurance_type:
            case InsuranceType.OC:
                foreign_prefixes: tuple[str, ...] = ("AC_",)
            case InsuranceType.AC:
                foreign_prefixes = ("OC_",)
            case InsuranceType.NNW:
                foreign_prefixes = ("OC_", "AC_")
            case _:
                assert_never(insurance_type)

        if rating_key.startswith(foreign_prefixes):
            result.warning(
                f"Rating key '{rating_key}' seems inconsistent with insurance type "
                f"{insurance_type.value}"
            )
