# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Rating key derivation and catalog resolution.

A vehicle is mapped onto four rating keys (age, engine, power, coverage) and
each key is looked up in the catalog for the policy date.

Two dates are involved and they are intentionally different: the age bucket
is derived from the vehicle's age *today*, while the records are looked up
for the *policy* date. A policy issued for a future start date therefore
prices the vehicle at its current age bucket.
"""

import warnings
from collections.abc import Callable
from datetime import date
from typing import Final, assert_never

from beartype import beartype
from pydantic import Field

from ...core.exceptions import AmbiguousRatingDataWarning
from ...core.logging_utils import get_logger
from ...models.base import BaseModelConfig
from ...models.rating import (
    FactorLookup,
    InsuranceType,
    LookupStatus,
    RequiredFactorSet,
    VehicleProfile,
    full_years_between,
)
from .catalog import RatingCatalog

logger = get_logger(__name__)

MAX_AGE_BUCKET: Final = 10

# (inclusive upper bound, bucket name); values above the last bound fall in
# the open-ended bucket.
ENGINE_CAPACITY_BUCKETS: Final = ((1000, "SMALL"), (1600, "MEDIUM"), (2000, "LARGE"))
ENGINE_CAPACITY_OPEN_BUCKET: Final = "XLARGE"
POWER_BUCKETS: Final = ((75, "LOW"), (150, "MEDIUM"), (250, "HIGH"))
POWER_OPEN_BUCKET: Final = "VERY_HIGH"


@beartype
def vehicle_age_key(first_registration_date: date, reference_date: date) -> str:
    """Age bucket key; ages above 10 share the ``VEHICLE_AGE_10`` bucket."""
    age = full_years_between(first_registration_date, reference_date)
    return f"VEHICLE_AGE_{min(age, MAX_AGE_BUCKET)}"


def _bucket(value: int, bounds: tuple[tuple[int, str], ...], open_bucket: str) -> str:
    for upper, name in bounds:
        if value <= upper:
            return name
    return open_bucket


@beartype
def engine_key(engine_capacity_cc: int) -> str:
    """Engine capacity bucket key, e.g. ``ENGINE_MEDIUM`` for 1600cc."""
    return "ENGINE_" + _bucket(
        engine_capacity_cc, ENGINE_CAPACITY_BUCKETS, ENGINE_CAPACITY_OPEN_BUCKET
    )


@beartype
def power_key(power_hp: int) -> str:
    """Power bucket key, e.g. ``POWER_MEDIUM`` for 132 HP."""
    return "POWER_" + _bucket(power_hp, POWER_BUCKETS, POWER_OPEN_BUCKET)


@beartype
def coverage_key(insurance_type: InsuranceType) -> str:
    """Coverage key of an insurance product."""
    match insurance_type:
        case InsuranceType.OC:
            return "OC_STANDARD"
        case InsuranceType.AC:
            return "AC_COMPREHENSIVE"
        case InsuranceType.NNW:
            return "NNW_STANDARD"
        case _:
            assert_never(insurance_type)


@beartype
class ResolvedFactors(BaseModelConfig):
    """Per-key catalog results for one rating request, in audit order."""

    insurance_type: InsuranceType
    as_of_date: date
    required: RequiredFactorSet
    lookups: tuple[FactorLookup, ...] = Field(..., min_length=4, max_length=4)

    def missing_keys(self) -> list[str]:
        """Keys without any valid record."""
        return [lookup.rating_key for lookup in self.lookups if lookup.is_missing]

    def ambiguous(self) -> list[FactorLookup]:
        """Lookups that matched more than one record."""
        return [
            lookup
            for lookup in self.lookups
            if lookup.status is LookupStatus.AMBIGUOUS
        ]

    @property
    def is_complete(self) -> bool:
        """Every key has at least one valid record."""
        return not any(lookup.is_missing for lookup in self.lookups)


@beartype
class RatingResolver:
    """Derives the required rating keys and resolves them against the catalog."""

    def __init__(
        self,
        catalog: RatingCatalog,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialize resolver.

        Args:
            catalog: Rating data store
            today: Clock used for the age bucket
        """
        self._catalog = catalog
        self._today = today

    @beartype
    def required_factors(
        self, insurance_type: InsuranceType, vehicle: VehicleProfile
    ) -> RequiredFactorSet:
        """Rating keys that must resolve for the vehicle and insurance type."""
        return RequiredFactorSet(
            insurance_type=insurance_type,
            vehicle_age_key=vehicle_age_key(
                vehicle.first_registration_date, self._today()
            ),
            engine_key=engine_key(vehicle.engine_capacity_cc),
            power_key=power_key(vehicle.power_hp),
            coverage_key=coverage_key(insurance_type),
        )

    @beartype
    async def resolve(
        self,
        insurance_type: InsuranceType,
        vehicle: VehicleProfile,
        as_of: date,
        *,
        timeout: float | None = None,
    ) -> ResolvedFactors:
        """Look up every required key for the policy date."""
        required = self.required_factors(insurance_type, vehicle)

        lookups = []
        for category, rating_key in required.items():
            records = await self._catalog.find_valid(
                insurance_type, rating_key, as_of, timeout=timeout
            )
            lookup = FactorLookup.from_candidates(rating_key, category, records)
            if lookup.status is LookupStatus.AMBIGUOUS:
                logger.warning(
                    "Ambiguous rating data: %d records for %s/%s on %s, applying id=%s",
                    len(lookup.candidates),
                    insurance_type.value,
                    rating_key,
                    as_of,
                    lookup.chosen.id if lookup.chosen else None,
                )
                warnings.warn(
                    f"{len(lookup.candidates)} rating records match "
                    f"{insurance_type.value}/{rating_key} on {as_of}",
                    AmbiguousRatingDataWarning,
                    stacklevel=2,
                )
            lookups.append(lookup)

        resolved = ResolvedFactors(
            insurance_type=insurance_type,
            as_of_date=as_of,
            required=required,
            lookups=tuple(lookups),
        )
        logger.debug(
            "Resolved %s for %s on %s: %s",
            required.keys(),
            insurance_type.value,
            as_of,
            [lookup.status.value for lookup in resolved.lookups],
        )
        return resolved
