# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Premium multiplier calculation.

The multiplier is the exact Decimal product of the four resolved rating
factors. Calculation is all-or-nothing: a missing key yields an error, never
a neutral 1.0 factor and never a partial product.
"""

from decimal import Decimal
from typing import Final

from beartype import beartype

from ...core.exceptions import MissingRatingDataError, RatingEngineError
from ...core.logging_utils import get_logger
from ...core.result_types import Err, Ok, Result
from ...models.rating import (
    AppliedFactor,
    LookupStatus,
    PremiumBreakdown,
    RatingCategory,
)
from .resolver import ResolvedFactors

logger = get_logger(__name__)

BASE_FACTOR: Final = Decimal("1.0")

_AUDIT_ORDER: Final = {category: index for index, category in enumerate(RatingCategory)}


@beartype
class PremiumCalculator:
    """Multiplies resolved rating factors into an auditable breakdown."""

    @staticmethod
    @beartype
    def calculate(
        resolved: ResolvedFactors,
    ) -> Result[PremiumBreakdown, RatingEngineError]:
        """Compute the premium multiplier for fully resolved rating data.

        Args:
            resolved: Resolver output; every key must have a valid record

        Returns:
            Result containing the breakdown, or MissingRatingDataError naming
            every key without data
        """
        missing = resolved.missing_keys()
        if missing:
            logger.warning(
                "Refusing to compute %s multiplier on %s, missing rating data: %s",
                resolved.insurance_type.value,
                resolved.as_of_date,
                ", ".join(missing),
            )
            return Err(
                MissingRatingDataError(
                    missing, resolved.insurance_type.value, resolved.as_of_date
                )
            )

        ordered = sorted(resolved.lookups, key=lambda lookup: _AUDIT_ORDER[lookup.category])

        applied = []
        total = BASE_FACTOR
        for lookup in ordered:
            record = lookup.chosen
            if record is None:
                raise RuntimeError(f"Lookup for {lookup.rating_key} has no record")
            applied.append(
                AppliedFactor(
                    rating_key=lookup.rating_key,
                    category=lookup.category,
                    multiplier=record.multiplier,
                    record_id=record.id,
                    ambiguous=lookup.status is LookupStatus.AMBIGUOUS,
                )
            )
            total *= record.multiplier

        breakdown = PremiumBreakdown(
            insurance_type=resolved.insurance_type,
            as_of_date=resolved.as_of_date,
            base_factor=BASE_FACTOR,
            applied_factors=tuple(applied),
            total_multiplier=total,
        )
        logger.info(
            "Computed %s multiplier %s on %s from %s",
            resolved.insurance_type.value,
            breakdown.total_multiplier,
            resolved.as_of_date,
            ", ".join(f"{key}=x{value}" for key, value in breakdown.factors),
        )
        return Ok(breakdown)
