"""Domain models for the rating engine."""

from .base import BaseModelConfig
from .rating import (
    AdmissionOutcome,
    AppliedFactor,
    FactorLookup,
    InsuranceType,
    LookupStatus,
    PremiumBreakdown,
    RatingCategory,
    RatingFactor,
    RequiredFactorSet,
    ValidationResult,
    ValidationResultBuilder,
    VehicleProfile,
)

__all__ = [
    "AdmissionOutcome",
    "BaseModelConfig",
    "InsuranceType",
    "RatingCategory",
    "LookupStatus",
    "RatingFactor",
    "VehicleProfile",
    "RequiredFactorSet",
    "FactorLookup",
    "ValidationResult",
    "ValidationResultBuilder",
    "AppliedFactor",
    "PremiumBreakdown",
]
