"""Core infrastructure for the rating engine.

Configuration, logging, error types and the storage/cache adapters the
rating services are built on.
"""

from .config import Settings, get_settings
from .exceptions import (
    AmbiguousRatingDataWarning,
    InvalidRatingFactorError,
    InvalidVehicleCharacteristicError,
    MissingRatingDataError,
    RatingEngineError,
)
from .result_types import Err, Ok, Result

__all__ = [
    "Settings",
    "get_settings",
    "RatingEngineError",
    "MissingRatingDataError",
    "InvalidVehicleCharacteristicError",
    "InvalidRatingFactorError",
    "AmbiguousRatingDataWarning",
    "Ok",
    "Err",
    "Result",
]
