"""Rating engine services.

This package resolves vehicle characteristics into rating keys, validates
rating requests and rating data, and computes premium multipliers:

- catalog: access to time-bounded rating factors (Postgres and in-memory)
- cache_strategy: Redis read-through cache in front of a catalog
- resolver: bucket derivation and per-key lookup classification
- validator: business rules for requests and for single rating factors
- calculator: exact multiplier product with an auditable breakdown
- rating_engine: facade used by the policy-issuance workflow
"""

from .cache_strategy import CachedRatingCatalog
from .calculator import PremiumCalculator
from .catalog import (
    InMemoryRatingCatalog,
    MutableRatingCatalog,
    PostgresRatingCatalog,
    RatingCatalog,
)
from .rating_engine import RatingEngine, build_catalog
from .resolver import (
    RatingResolver,
    ResolvedFactors,
    coverage_key,
    engine_key,
    power_key,
    vehicle_age_key,
)
from .validator import RatingValidator

__all__ = [
    "RatingCatalog",
    "MutableRatingCatalog",
    "PostgresRatingCatalog",
    "InMemoryRatingCatalog",
    "CachedRatingCatalog",
    "RatingResolver",
    "ResolvedFactors",
    "RatingValidator",
    "PremiumCalculator",
    "RatingEngine",
    "build_catalog",
    "vehicle_age_key",
    "engine_key",
    "power_key",
    "coverage_key",
]
