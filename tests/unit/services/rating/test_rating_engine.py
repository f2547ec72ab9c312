"""Unit tests for the rating engine facade."""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from beartype.roar import BeartypeCallHintParamViolation

from policy_rating.core import cache as cache_module
from policy_rating.core import database as database_module
from policy_rating.core.cache import Cache
from policy_rating.core.config import Settings
from policy_rating.core.database import Database
from policy_rating.core.exceptions import (
    AmbiguousRatingDataWarning,
    InvalidRatingFactorError,
    InvalidVehicleCharacteristicError,
    MissingRatingDataError,
)
from policy_rating.models.rating import InsuranceType, RatingFactor
from policy_rating.services.rating.cache_strategy import CachedRatingCatalog
from policy_rating.services.rating.catalog import (
    InMemoryRatingCatalog,
    MutableRatingCatalog,
    PostgresRatingCatalog,
)
from policy_rating.services.rating.rating_engine import RatingEngine, build_catalog
from tests.fixtures.rating_data import TODAY, make_factor, seed_rating_factors

POLICY_DATE = date(2025, 6, 1)


class YieldingCatalog(InMemoryRatingCatalog):
    """In-memory catalog that yields to the event loop after overlap reads."""

    async def find_overlapping(self, *args, **kwargs):
        records = await super().find_overlapping(*args, **kwargs)
        await asyncio.sleep(0)
        return records


class LookupOnlyStore:
    """Store offering only the two validity lookups."""

    def __init__(self):
        self._inner = InMemoryRatingCatalog(seed_rating_factors())

    async def find_valid(self, insurance_type, rating_key, as_of, *, timeout=None):
        return await self._inner.find_valid(
            insurance_type, rating_key, as_of, timeout=timeout
        )

    async def find_overlapping(
        self, insurance_type, rating_key, valid_from, valid_to, *, timeout=None
    ):
        return await self._inner.find_overlapping(
            insurance_type, rating_key, valid_from, valid_to, timeout=timeout
        )


class TestComputePremiumMultiplier:
    """Test end-to-end premium multiplier computation."""

    @pytest.mark.asyncio
    async def test_standard_oc_vehicle(self, engine, make_vehicle):
        """Test 1600cc / 132HP OC multiplies age, engine, power and coverage."""
        result = await engine.compute_premium_multiplier(
            InsuranceType.OC, make_vehicle(), POLICY_DATE
        )

        assert result.is_ok()
        breakdown = result.unwrap()
        assert [key for key, _ in breakdown.factors] == [
            "VEHICLE_AGE_3",
            "ENGINE_MEDIUM",
            "POWER_MEDIUM",
            "OC_STANDARD",
        ]
        assert breakdown.total_multiplier == (
            Decimal("1.0500") * Decimal("1.0000") * Decimal("1.0000") * Decimal("1.0000")
        )

    @pytest.mark.asyncio
    async def test_missing_power_factor(self, catalog, engine, make_vehicle):
        """Test a missing key fails validation and computation consistently."""
        catalog.remove_key(InsuranceType.OC, "POWER_MEDIUM")
        vehicle = make_vehicle()

        validation = await engine.validate_rating_factors(
            InsuranceType.OC, vehicle, POLICY_DATE
        )
        can_calculate = await engine.can_calculate_premium(
            InsuranceType.OC, vehicle, POLICY_DATE
        )
        result = await engine.compute_premium_multiplier(
            InsuranceType.OC, vehicle, POLICY_DATE
        )

        assert len(validation.errors) == 1
        assert "POWER_MEDIUM" in validation.errors[0]
        assert not can_calculate
        assert await engine.get_missing_rating_factors(
            InsuranceType.OC, vehicle, POLICY_DATE
        ) == ["POWER_MEDIUM"]
        assert result.is_err()
        assert isinstance(result.unwrap_err(), MissingRatingDataError)
        with pytest.raises(MissingRatingDataError):
            result.unwrap()

    @pytest.mark.asyncio
    async def test_ineligible_vehicle(self, engine, make_vehicle):
        """Test AC for a 20 year old vehicle fails while OC succeeds."""
        vehicle = make_vehicle(first_registration_date=date(2005, 1, 1))

        ac_result = await engine.compute_premium_multiplier(
            InsuranceType.AC, vehicle, POLICY_DATE
        )
        oc_result = await engine.compute_premium_multiplier(
            InsuranceType.OC, vehicle, POLICY_DATE
        )

        error = ac_result.unwrap_err()
        assert isinstance(error, InvalidVehicleCharacteristicError)
        assert error.errors == (
            "AC insurance is not available for vehicles older than 15 years",
        )
        assert oc_result.is_ok()
        assert oc_result.unwrap().factors[0] == ("VEHICLE_AGE_10", Decimal("1.4000"))

    @pytest.mark.asyncio
    async def test_missing_data_reported_before_other_errors(
        self, catalog, engine, make_vehicle
    ):
        """Test missing data wins when both kinds of error occur."""
        catalog.remove_key(InsuranceType.AC, "VEHICLE_AGE_10")
        vehicle = make_vehicle(first_registration_date=date(2005, 1, 1))

        result = await engine.compute_premium_multiplier(
            InsuranceType.AC, vehicle, POLICY_DATE
        )

        assert result.unwrap_err().missing_keys == ("VEHICLE_AGE_10",)

    @pytest.mark.asyncio
    async def test_warnings_do_not_block(self, catalog, engine, make_vehicle):
        """Test ambiguous data still produces a multiplier."""
        await catalog.add(
            make_factor(
                InsuranceType.OC, "VEHICLE_AGE_3", "1.0800", valid_from=date(2025, 1, 1)
            )
        )

        with pytest.warns(AmbiguousRatingDataWarning):
            result = await engine.compute_premium_multiplier(
                InsuranceType.OC, make_vehicle(), POLICY_DATE
            )

        assert result.unwrap().total_multiplier == Decimal("1.08")

    @pytest.mark.asyncio
    async def test_repeated_calls_are_identical(self, engine, make_vehicle):
        """Test identical inputs against unchanged data give identical results."""
        vehicle = make_vehicle(engine_capacity_cc=2200, power_hp=260)

        first = await engine.compute_premium_multiplier(InsuranceType.NNW, vehicle, POLICY_DATE)
        second = await engine.compute_premium_multiplier(InsuranceType.NNW, vehicle, POLICY_DATE)

        assert first.unwrap() == second.unwrap()

    @pytest.mark.asyncio
    async def test_none_inputs_rejected(self, engine, make_vehicle):
        """Test missing arguments are a programming error."""
        with pytest.raises(BeartypeCallHintParamViolation):
            await engine.compute_premium_multiplier(None, make_vehicle(), POLICY_DATE)

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, engine, make_vehicle):
        """Test independent requests may run concurrently."""
        vehicle = make_vehicle()

        results = await asyncio.gather(
            *(
                engine.compute_premium_multiplier(insurance_type, vehicle, POLICY_DATE)
                for insurance_type in InsuranceType
            )
        )

        assert all(result.is_ok() for result in results)
        assert [r.unwrap().insurance_type for r in results] == list(InsuranceType)


class TestDeadlines:
    """Test catalog deadline propagation."""

    @pytest.mark.asyncio
    async def test_default_deadline_from_settings(self, catalog, today, make_vehicle):
        """Test the configured deadline is used when none is given."""
        catalog.find_valid = AsyncMock(return_value=[])
        engine = RatingEngine(
            catalog, today=today, settings=Settings(catalog_timeout_seconds=1.5)
        )

        await engine.get_missing_rating_factors(InsuranceType.OC, make_vehicle(), POLICY_DATE)

        assert {call.kwargs["timeout"] for call in catalog.find_valid.await_args_list} == {1.5}

    @pytest.mark.asyncio
    async def test_explicit_deadline_wins(self, catalog, today, make_vehicle):
        """Test a per-call deadline overrides the settings."""
        catalog.find_valid = AsyncMock(return_value=[])
        engine = RatingEngine(
            catalog, today=today, settings=Settings(catalog_timeout_seconds=1.5)
        )

        await engine.can_calculate_premium(
            InsuranceType.OC, make_vehicle(), POLICY_DATE, timeout=0.2
        )

        assert {call.kwargs["timeout"] for call in catalog.find_valid.await_args_list} == {0.2}

    @pytest.mark.asyncio
    async def test_catalog_failures_propagate(self, catalog, engine, make_vehicle):
        """Test store errors surface unchanged."""
        catalog.find_valid = AsyncMock(side_effect=TimeoutError)

        with pytest.raises(TimeoutError):
            await engine.compute_premium_multiplier(
                InsuranceType.OC, make_vehicle(), POLICY_DATE
            )


class TestAdmission:
    """Test admission of new rating factors."""

    @pytest.mark.asyncio
    async def test_admit_with_overlap_warning(self, catalog, engine):
        """Test an overlapping record is stored and its warning returned."""
        before = len(catalog)

        result = await engine.admit_rating_factor(
            make_factor(
                InsuranceType.OC, "VEHICLE_AGE_3", "1.0700", valid_from=date(2025, 7, 1)
            )
        )

        outcome = result.unwrap()
        assert outcome.record.id is not None
        assert outcome.warnings == (
            "Rating table has overlapping validity periods with 1 other entries",
        )
        assert len(catalog) == before + 1

    @pytest.mark.asyncio
    async def test_reject_invalid_record(self, catalog, engine):
        """Test records with errors are not stored."""
        before = len(catalog)
        record = RatingFactor.model_construct(
            id=None,
            insurance_type=InsuranceType.NNW,
            rating_key="NNW_STANDARD",
            multiplier=Decimal("0.05"),
            valid_from=date(2025, 1, 1),
            valid_to=None,
        )

        result = await engine.admit_rating_factor(record)

        error = result.unwrap_err()
        assert isinstance(error, InvalidRatingFactorError)
        assert error.errors == (
            "Multiplier 0.05 is below minimum allowed value 0.1000",
        )
        assert len(catalog) == before

    @pytest.mark.asyncio
    async def test_concurrent_admissions_see_each_other(self, today, settings):
        """Test admissions for one key are serialised within a process."""
        engine = RatingEngine(YieldingCatalog(), today=today, settings=settings)
        records = [
            make_factor(InsuranceType.AC, "AC_COMPREHENSIVE", "1.0", valid_from=date(2025, 1, 1)),
            make_factor(InsuranceType.AC, "AC_COMPREHENSIVE", "1.1", valid_from=date(2025, 3, 1)),
        ]

        results = await asyncio.gather(
            *(engine.admit_rating_factor(record) for record in records)
        )

        warnings = sorted(len(result.unwrap().warnings) for result in results)
        assert warnings == [0, 1]

    @pytest.mark.asyncio
    async def test_admitted_record_is_used(self, catalog, engine, make_vehicle):
        """Test a superseding record changes later calculations."""
        await engine.admit_rating_factor(
            make_factor(
                InsuranceType.NNW,
                "NNW_STANDARD",
                "1.2000",
                valid_from=date(2025, 7, 1),
            )
        )

        before = await engine.compute_premium_multiplier(
            InsuranceType.NNW, make_vehicle(), POLICY_DATE
        )
        with pytest.warns(AmbiguousRatingDataWarning):
            after = await engine.compute_premium_multiplier(
                InsuranceType.NNW, make_vehicle(), date(2025, 7, 1)
            )

        assert before.unwrap().total_multiplier == Decimal("1")
        assert after.unwrap().total_multiplier == Decimal("1.2")


class TestRatingFactorQueries:
    """Test rating factor listings."""

    @pytest.mark.asyncio
    async def test_factors_for_date(self, engine):
        """Test all factors of a type valid on a date are listed."""
        factors = await engine.get_rating_factors_for_date(InsuranceType.OC, POLICY_DATE)

        assert len(factors) == 20
        assert all(f.insurance_type is InsuranceType.OC for f in factors)

    @pytest.mark.asyncio
    async def test_current_factors_use_clock(self, catalog, engine):
        """Test the current listing is evaluated on the injected today."""
        await catalog.add(
            make_factor(
                InsuranceType.AC,
                "AC_COMPREHENSIVE",
                "1.1",
                valid_from=date(2026, 1, 1),
            )
        )

        current = await engine.get_current_rating_factors(InsuranceType.AC)

        assert len(current) == 20
        assert all(f.is_valid_for_date(TODAY) for f in current)

    @pytest.mark.asyncio
    async def test_required_factors(self, engine, make_vehicle):
        """Test the required keys are exposed for callers."""
        required = engine.required_factors(InsuranceType.NNW, make_vehicle())

        assert required.coverage_key == "NNW_STANDARD"


class TestBuildCatalog:
    """Test production catalog assembly."""

    def _db(self):
        return MagicMock(spec=Database)

    def test_uncached_by_default(self):
        """Test the Postgres catalog is used directly when caching is off."""
        catalog = build_catalog(self._db(), settings=Settings())

        assert isinstance(catalog, PostgresRatingCatalog)

    def test_cached_when_enabled(self):
        """Test the cache wrapper is applied when enabled."""
        cache = MagicMock(spec=Cache)
        settings = Settings(rating_cache_enabled=True, redis_ttl_seconds=120)

        catalog = build_catalog(self._db(), cache, settings=settings)

        assert isinstance(catalog, CachedRatingCatalog)

    def test_defaults_to_global_managers(self, monkeypatch):
        """Test the process-wide database and cache are used when omitted."""
        monkeypatch.setattr(database_module, "_database", None)
        monkeypatch.setattr(cache_module, "_cache", None)

        catalog = build_catalog(settings=Settings(rating_cache_enabled=True))

        assert isinstance(catalog, CachedRatingCatalog)
        assert cache_module._cache is not None
        assert database_module._database is not None


class TestLookupOnlyCatalog:
    """Test an engine over a store with only the validity lookups."""

    @pytest.fixture
    def lookup_engine(self, today, settings):
        return RatingEngine(LookupOnlyStore(), today=today, settings=settings)

    def test_store_is_not_mutable(self):
        """Test the two-lookup store does not satisfy the admission interface."""
        assert not isinstance(LookupOnlyStore(), MutableRatingCatalog)

    @pytest.mark.asyncio
    async def test_validation_and_computation(self, lookup_engine, make_vehicle):
        """Test requests are validated and priced from the two lookups."""
        vehicle = make_vehicle()

        validation = await lookup_engine.validate_rating_factors(
            InsuranceType.OC, vehicle, POLICY_DATE
        )
        result = await lookup_engine.compute_premium_multiplier(
            InsuranceType.OC, vehicle, POLICY_DATE
        )

        assert validation.valid
        assert result.unwrap().total_multiplier == Decimal("1.05")

    @pytest.mark.asyncio
    async def test_single_record_validation(self, lookup_engine):
        """Test overlap checks only need the overlap lookup."""
        validation = await lookup_engine.validate_rating_factor(
            make_factor(
                InsuranceType.OC, "VEHICLE_AGE_3", "1.0700", valid_from=date(2025, 7, 1)
            )
        )

        assert validation.valid
        assert len(validation.warnings) == 1

    @pytest.mark.asyncio
    async def test_admission_requires_mutable_catalog(self, lookup_engine):
        """Test admission and listings report the missing capability."""
        with pytest.raises(TypeError, match="LookupOnlyStore"):
            await lookup_engine.admit_rating_factor(
                make_factor(InsuranceType.OC, "OC_STANDARD", "1.1", valid_from=date(2025, 7, 1))
            )
        with pytest.raises(TypeError, match="does not support"):
            await lookup_engine.get_current_rating_factors(InsuranceType.OC)
