"""Enums for American option pricing."""

from enum import Enum

__all__ = [
    "OptionType",
    "BoundaryRegime",
    "RootPath",
    "FixedPointEquation",
    "SweepMode",
    "DividendModel",
    "NearExpiryRecommendation",
    "DayCountConvention",
]


class OptionType(Enum):
    CALL = "call"
    PUT = "put"


class BoundaryRegime(Enum):
    """Topology of the early-exercise region."""

    SINGLE = "single"
    DOUBLE = "double"
    NO_EARLY_EXERCISE = "no_early_exercise"


class RootPath(Enum):
    """Which branch of the characteristic root solver produced the roots."""

    SUPER_HALLEY = "super_halley"
    BISECTION = "bisection"


class FixedPointEquation(Enum):
    SMOOTH_PASTING = "smooth_pasting"
    VALUE_MATCHING = "value_matching"
    AUTO = "auto"


class SweepMode(Enum):
    JACOBI = "jacobi"
    GAUSS_SEIDEL = "gauss_seidel"


class DividendModel(Enum):
    SPOT = "spot"
    ESCROWED = "escrowed"


class NearExpiryRecommendation(Enum):
    MODEL = "model"
    BLENDED = "blended"
    INTRINSIC = "intrinsic"


class DayCountConvention(Enum):
    ACT_360 = "ACT/360"
    ACT_365F = "ACT/365F"
