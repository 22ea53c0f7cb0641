from .enums import (
    BoundaryRegime,
    DividendModel,
    FixedPointEquation,
    NearExpiryRecommendation,
    OptionType,
    RootPath,
    SweepMode,
)
from .exceptions import (
    AmericanPricingError,
    ConfigurationError,
    ConvergenceError,
    InvalidParametersError,
    NumericalDegeneracyError,
    NumericalError,
    UnsupportedFeatureError,
)
from .dividends import CashDividend, DividendSchedule
from .valuation import (
    OptionParameters,
    OptionPricingEngine,
    PricingResult,
    PricingSettings,
    compute_boundaries,
    price,
    price_batch,
    price_with_greeks,
)


__all__ = [
    "BoundaryRegime",
    "DividendModel",
    "FixedPointEquation",
    "NearExpiryRecommendation",
    "OptionType",
    "RootPath",
    "SweepMode",
    "AmericanPricingError",
    "ConfigurationError",
    "ConvergenceError",
    "InvalidParametersError",
    "NumericalDegeneracyError",
    "NumericalError",
    "UnsupportedFeatureError",
    "CashDividend",
    "DividendSchedule",
    "OptionParameters",
    "OptionPricingEngine",
    "PricingResult",
    "PricingSettings",
    "compute_boundaries",
    "price",
    "price_batch",
    "price_with_greeks",
]
