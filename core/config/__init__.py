"""
Configuration module for dexsim.

Contains the configuration models and utilities for loading the simulation
settings.
"""

from .models import (
    LiquidityDropConfig,
    PaperTradingConfig,
    PriceCheckConfig,
    PriceFeedConfig,
    PriceValidationConfig,
    ReferencePriceConfig,
    SellConfig,
    SimulationConfig,
    StrategiesConfig,
    SwapConfig,
    config_to_dict,
    create_default_config,
    load_config_from_dict,
)

__all__ = [
    # Models
    "LiquidityDropConfig",
    "PaperTradingConfig",
    "PriceCheckConfig",
    "PriceFeedConfig",
    "PriceValidationConfig",
    "ReferencePriceConfig",
    "SellConfig",
    "SimulationConfig",
    "StrategiesConfig",
    "SwapConfig",

    # Utilities
    "config_to_dict",
    "create_default_config",
    "load_config_from_dict",
]
