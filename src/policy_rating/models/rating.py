# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Rating domain models.

This module defines the immutable values the rating engine works with:

- RatingFactor: one priced rule, valid for an inclusive date window.
- VehicleProfile: the vehicle attributes that drive bucket selection.
- RequiredFactorSet / FactorLookup: the keys a calculation needs and what the
  catalog returned for each of them.
- ValidationResult: accumulated errors and warnings of one validation pass.
- PremiumBreakdown: the ordered multipliers and their product.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Final

from beartype import beartype
from pydantic import Field, model_validator

from ..core.exceptions import InvalidRatingFactorError
from .base import BaseModelConfig

MIN_MULTIPLIER: Final = Decimal("0.1000")
MAX_MULTIPLIER: Final = Decimal("5.0000")
MULTIPLIER_SCALE: Final = 4

_REQUIRED_FACTOR_FIELDS: Final = {
    "insurance_type": "Insurance type",
    "rating_key": "Rating key",
    "multiplier": "Multiplier",
    "valid_from": "Valid from date",
}


class InsuranceType(str, Enum):
    """Motor insurance products that can be rated."""

    OC = "OC"  # compulsory third-party liability
    AC = "AC"  # autocasco, own-damage cover
    NNW = "NNW"  # personal accident cover


class RatingCategory(str, Enum):
    """Pricing dimensions, declared in breakdown audit order."""

    VEHICLE_AGE = "vehicle_age"
    ENGINE = "engine"
    POWER = "power"
    COVERAGE = "coverage"


class LookupStatus(str, Enum):
    """Outcome of looking up one rating key in the catalog."""

    MISSING = "missing"
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"


@beartype
def full_years_between(start: date, end: date) -> int:
    """Count whole years from ``start`` to ``end``, truncated toward zero.

    Negative when ``end`` precedes ``start``. A vehicle registered on
    29 February completes its year on 1 March in non-leap years.
    """
    if end < start:
        return -full_years_between(end, start)

    years = end.year - start.year
    if (end.month, end.day) < (start.month, start.day):
        years -= 1
    return years


@beartype
class RatingFactor(BaseModelConfig):
    """A single priced rule for one insurance type and rating key.

    Records are created by the admission process and never mutated. A change
    of price is a new record with a new validity window.
    """

    id: int | None = Field(default=None, ge=1, description="Store-assigned id")
    insurance_type: InsuranceType = Field(..., description="Insurance product")
    rating_key: str = Field(..., min_length=1, max_length=100)
    multiplier: Decimal = Field(..., description="Premium multiplier")
    valid_from: date = Field(..., description="First day the rule applies")
    valid_to: date | None = Field(
        default=None, description="Last day the rule applies (None = open-ended)"
    )

    @model_validator(mode="before")
    @classmethod
    def require_fields(cls, data: Any) -> Any:
        """Reject records with absent or blank required fields."""
        if not isinstance(data, dict):
            return data

        errors = []
        for name, label in _REQUIRED_FACTOR_FIELDS.items():
            value = data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors.append(f"{label} is required")
        if errors:
            raise InvalidRatingFactorError(errors)
        return data

    @model_validator(mode="after")
    def check_business_rules(self) -> "RatingFactor":
        """Enforce multiplier bounds and window ordering."""
        errors = []
        if self.multiplier <= 0:
            errors.append("Multiplier must be positive")
        elif self.multiplier < MIN_MULTIPLIER:
            errors.append(
                f"Multiplier {self.multiplier} is below minimum allowed value "
                f"{MIN_MULTIPLIER}"
            )
        elif self.multiplier > MAX_MULTIPLIER:
            errors.append(
                f"Multiplier {self.multiplier} exceeds maximum allowed value "
                f"{MAX_MULTIPLIER}"
            )

        exponent = self.multiplier.normalize().as_tuple().exponent
        if isinstance(exponent, int) and -exponent > MULTIPLIER_SCALE:
            errors.append(
                f"Multiplier {self.multiplier} has more than "
                f"{MULTIPLIER_SCALE} decimal places"
            )

        if self.valid_to is not None and self.valid_from > self.valid_to:
            errors.append("Valid from date must be before valid to date")

        if errors:
            raise InvalidRatingFactorError(errors)
        return self

    def is_valid_for_date(self, on: date | None) -> bool:
        """Check whether the record applies on the given day (inclusive)."""
        if on is None:
            return False
        return self.valid_from <= on and (self.valid_to is None or on <= self.valid_to)

    def overlaps(self, valid_from: date, valid_to: date | None) -> bool:
        """Check whether the validity window intersects ``[valid_from, valid_to]``.

        Open ends on either side extend to infinity.
        """
        starts_before_other_ends = valid_to is None or self.valid_from <= valid_to
        other_starts_before_end = self.valid_to is None or valid_from <= self.valid_to
        return starts_before_other_ends and other_starts_before_end

    def is_currently_valid(self, today: date | None = None) -> bool:
        """Check whether the record applies today."""
        return self.is_valid_for_date(today or date.today())

    def is_expired(self, today: date | None = None) -> bool:
        """Check whether the validity window has ended."""
        return self.valid_to is not None and (today or date.today()) > self.valid_to

    def is_future_effective(self, today: date | None = None) -> bool:
        """Check whether the record has not started to apply yet."""
        return (today or date.today()) < self.valid_from

    def applies_to(self, insurance_type: InsuranceType) -> bool:
        """Check whether the record belongs to the given insurance type."""
        return self.insurance_type == insurance_type

    @property
    def description(self) -> str:
        """Short human-readable label, e.g. ``OC - ENGINE_SMALL (x0.8500)``."""
        return f"{self.insurance_type.value} - {self.rating_key} (x{self.multiplier})"


@beartype
class VehicleProfile(BaseModelConfig):
    """Vehicle attributes used for bucket derivation and eligibility checks.

    Ranges are not enforced here; the validator reports them together with
    every other problem.
    """

    engine_capacity_cc: int = Field(..., description="Engine capacity in cc")
    power_hp: int = Field(..., description="Engine power in HP")
    first_registration_date: date = Field(..., description="First registration")

    def age_on(self, reference: date) -> int:
        """Vehicle age in whole years on the reference date."""
        return full_years_between(self.first_registration_date, reference)


@beartype
class RequiredFactorSet(BaseModelConfig):
    """The four rating keys that must resolve before a premium is computed."""

    insurance_type: InsuranceType
    vehicle_age_key: str = Field(..., pattern=r"^VEHICLE_AGE_-?\d+$")
    engine_key: str = Field(..., pattern=r"^ENGINE_")
    power_key: str = Field(..., pattern=r"^POWER_")
    coverage_key: str = Field(..., min_length=1)

    def items(self) -> tuple[tuple[RatingCategory, str], ...]:
        """Category/key pairs in audit order."""
        return (
            (RatingCategory.VEHICLE_AGE, self.vehicle_age_key),
            (RatingCategory.ENGINE, self.engine_key),
            (RatingCategory.POWER, self.power_key),
            (RatingCategory.COVERAGE, self.coverage_key),
        )

    def keys(self) -> tuple[str, ...]:
        """Rating keys in audit order: age, engine, power, coverage."""
        return tuple(key for _, key in self.items())


@beartype
def tie_break_order(records: Iterable[RatingFactor]) -> tuple[RatingFactor, ...]:
    """Order competing records so that the first one is the one applied.

    The most recently effective record wins; records starting on the same day
    are ordered by lowest store id, with records that have no id last.
    """
    return tuple(
        sorted(
            records,
            key=lambda record: (
                -record.valid_from.toordinal(),
                record.id is None,
                record.id or 0,
            ),
        )
    )


@beartype
class FactorLookup(BaseModelConfig):
    """Catalog result for one required rating key."""

    rating_key: str
    category: RatingCategory
    status: LookupStatus
    candidates: tuple[RatingFactor, ...] = Field(default_factory=tuple)

    @classmethod
    def from_candidates(
        cls,
        rating_key: str,
        category: RatingCategory,
        records: Iterable[RatingFactor],
    ) -> "FactorLookup":
        """Classify raw catalog records as missing, resolved or ambiguous."""
        ordered = tie_break_order(records)
        if not ordered:
            status = LookupStatus.MISSING
        elif len(ordered) == 1:
            status = LookupStatus.RESOLVED
        else:
            status = LookupStatus.AMBIGUOUS
        return cls(
            rating_key=rating_key,
            category=category,
            status=status,
            candidates=ordered,
        )

    @property
    def chosen(self) -> RatingFactor | None:
        """The record applied in calculation (first candidate)."""
        return self.candidates[0] if self.candidates else None

    @property
    def is_missing(self) -> bool:
        return self.status is LookupStatus.MISSING


@beartype
class ValidationResult(BaseModelConfig):
    """Outcome of one validation pass. Warnings never affect ``valid``."""

    valid: bool
    errors: tuple[str, ...] = Field(default_factory=tuple)
    warnings: tuple[str, ...] = Field(default_factory=tuple)

    @model_validator(mode="after")
    def check_consistency(self) -> "ValidationResult":
        """A result is valid exactly when it carries no errors."""
        if self.valid == bool(self.errors):
            raise ValueError("valid must be True exactly when there are no errors")
        return self

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


@beartype
class ValidationResultBuilder:
    """Accumulates errors and warnings during a single validation pass."""

    __slots__ = ("_errors", "_warnings")

    def __init__(self) -> None:
        self._errors: list[str] = []
        self._warnings: list[str] = []

    def error(self, message: str) -> None:
        self._errors.append(message)

    def warning(self, message: str) -> None:
        self._warnings.append(message)

    def build(self) -> ValidationResult:
        """Freeze the accumulated messages into a result."""
        return ValidationResult(
            valid=not self._errors,
            errors=tuple(self._errors),
            warnings=tuple(self._warnings),
        )


@beartype
class AppliedFactor(BaseModelConfig):
    """One line of a premium breakdown."""

    rating_key: str
    category: RatingCategory
    multiplier: Decimal = Field(..., gt=Decimal("0"))
    record_id: int | None = Field(default=None)
    ambiguous: bool = Field(
        default=False, description="Chosen by tie-break among several records"
    )


@beartype
class PremiumBreakdown(BaseModelConfig):
    """Auditable premium multiplier: the ordered factors and their product."""

    insurance_type: InsuranceType
    as_of_date: date
    base_factor: Decimal = Field(default=Decimal("1.0"))
    applied_factors: tuple[AppliedFactor, ...]
    total_multiplier: Decimal

    @model_validator(mode="after")
    def check_product(self) -> "PremiumBreakdown":
        """The total must be the exact product of the applied multipliers."""
        expected = self.base_factor
        for factor in self.applied_factors:
            expected *= factor.multiplier
        if expected != self.total_multiplier:
            raise ValueError(
                f"total_multiplier {self.total_multiplier} does not match "
                f"product of applied factors {expected}"
            )
        return self

    @property
    def factors(self) -> tuple[tuple[str, Decimal], ...]:
        """``(rating_key, multiplier)`` pairs in audit order."""
        return tuple(
            (factor.rating_key, factor.multiplier) for factor in self.applied_factors
        )


@beartype
class AdmissionOutcome(BaseModelConfig):
    """A rating factor accepted into the catalog, with its admission warnings."""

    record: RatingFactor
    warnings: tuple[str, ...] = Field(default_factory=tuple)
