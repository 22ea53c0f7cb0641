"""Shared pytest fixtures for american_pricing tests."""

import datetime as dt

import pytest

from american_pricing.enums import OptionType
from american_pricing.valuation import (
    ExerciseBoundarySolver,
    OptionParameters,
    OptionPricingEngine,
    PricingSettings,
)


# ---------------------------------------------------------------------------
# Scalar constants
# ---------------------------------------------------------------------------

PRICING_DATE = dt.datetime(2025, 1, 1)
SPOT = 100.0
STRIKE = 100.0
RATE = 0.05
DIVIDEND_YIELD = 0.02
VOL = 0.30
EXPIRY = 0.5


@pytest.fixture()
def pricing_date() -> dt.datetime:
    return PRICING_DATE


# ---------------------------------------------------------------------------
# Settings / engines
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def fast_settings() -> PricingSettings:
    """Reduced collocation order so boundary solves stay quick under test."""
    return PricingSettings(collocation_order=12, quadrature_order=16, tolerance=1e-7)


@pytest.fixture(scope="session")
def engine(fast_settings: PricingSettings) -> OptionPricingEngine:
    return OptionPricingEngine(fast_settings)


@pytest.fixture(scope="session")
def solver(fast_settings: PricingSettings) -> ExerciseBoundarySolver:
    return ExerciseBoundarySolver(fast_settings)


# ---------------------------------------------------------------------------
# Common parameter sets
# ---------------------------------------------------------------------------


@pytest.fixture()
def atm_put() -> OptionParameters:
    return OptionParameters(SPOT, STRIKE, RATE, DIVIDEND_YIELD, VOL, EXPIRY, OptionType.PUT)


@pytest.fixture()
def atm_call() -> OptionParameters:
    return OptionParameters(SPOT, STRIKE, RATE, DIVIDEND_YIELD, VOL, EXPIRY, OptionType.CALL)


@pytest.fixture()
def negative_rate_put() -> OptionParameters:
    """q < r < 0: two exercise boundaries."""
    return OptionParameters(100.0, 70.0, -0.02, -0.04, 0.20, 1.0, OptionType.PUT)
