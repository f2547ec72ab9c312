# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Error taxonomy for the rating engine.

Errors are fatal to the current request only. Warning-class conditions are
reported as text in a ``ValidationResult`` and, for ambiguous lookups, also
through :class:`AmbiguousRatingDataWarning`.
"""

from collections.abc import Iterable
from datetime import date
from typing import Any

from beartype import beartype


class RatingEngineError(Exception):
    """Base class for rating engine failures."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize rating engine error."""
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable error payload."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class MissingRatingDataError(RatingEngineError):
    """A required rating key has no valid record for the requested date."""

    def __init__(
        self,
        missing_keys: Iterable[str],
        insurance_type: str,
        as_of: date,
    ) -> None:
        """Initialize missing rating data error."""
        self.missing_keys = tuple(missing_keys)
        self.insurance_type = insurance_type
        self.as_of = as_of
        super().__init__(
            f"Missing rating data for {insurance_type} insurance on {as_of}: "
            f"{', '.join(self.missing_keys)}",
            {
                "missing_keys": list(self.missing_keys),
                "insurance_type": insurance_type,
                "as_of": as_of.isoformat(),
            },
        )


class InvalidVehicleCharacteristicError(RatingEngineError):
    """Vehicle or policy data violates a business constraint."""

    def __init__(self, errors: Iterable[str]) -> None:
        """Initialize invalid vehicle characteristic error."""
        self.errors = tuple(errors)
        super().__init__(
            "Vehicle is not eligible for rating: " + "; ".join(self.errors),
            {"errors": list(self.errors)},
        )


class InvalidRatingFactorError(RatingEngineError):
    """A rating factor record is malformed and cannot be admitted."""

    def __init__(self, errors: Iterable[str] | str) -> None:
        """Initialize invalid rating factor error."""
        self.errors = (errors,) if isinstance(errors, str) else tuple(errors)
        super().__init__(
            "Invalid rating factor: " + "; ".join(self.errors),
            {"errors": list(self.errors)},
        )


class AmbiguousRatingDataWarning(UserWarning):
    """More than one rating record matches the same key and date."""
