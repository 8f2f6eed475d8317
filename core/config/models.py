"""
Pydantic models for the dexsim configuration system.

These models provide type safety, validation, and defaults for the simulation
config file. Every component receives the validated SimulationConfig instead
of reading raw JSON.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PriceCheckConfig(BaseModel):
    """Retry policy for pair price lookups."""
    max_retries: int = Field(default=15, ge=1, description="Maximum fetch attempts per price request")
    initial_delay_seconds: float = Field(default=3.0, ge=0, description="Delay after the first failed attempt")
    max_delay_seconds: float = Field(default=5.0, ge=0, description="Upper bound for the backoff delay")

    @model_validator(mode="after")
    def validate_delays(self):
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class PaperTradingConfig(BaseModel):
    """Simulated account and loop settings."""
    initial_balance: Decimal = Field(default=Decimal("5"), ge=0, description="Starting virtual balance in SOL")
    tick_interval_seconds: float = Field(default=5.0, gt=0, description="Seconds between simulation ticks")
    max_open_positions: int = Field(default=5, ge=0, description="Maximum simultaneously open positions")
    verbose_log: bool = Field(default=False, description="Log every per-token hold decision")
    price_check: PriceCheckConfig = Field(default_factory=PriceCheckConfig)


class SwapConfig(BaseModel):
    """Buy-side sizing and execution costs."""
    amount_lamports: int = Field(default=1_000_000_000, gt=0, description="Spend per buy in lamports")
    prio_fee_max_lamports: int = Field(default=10_000_000, ge=0, description="Fee charged per buy in lamports")
    slippage_bps: int = Field(default=200, ge=0, le=10_000, description="Maximum adverse slippage in basis points")


class SellConfig(BaseModel):
    """Sell-side execution costs and exit thresholds."""
    prio_fee_max_lamports: int = Field(default=10_000_000, ge=0, description="Fee charged per sell in lamports")
    slippage_bps: int = Field(default=200, ge=0, le=10_000, description="Maximum adverse slippage in basis points")
    auto_sell: bool = Field(default=True, description="Execute sells decided by the engine")
    stop_loss_percent: Decimal = Field(default=Decimal("30"), gt=0, description="Sell when price falls this % below buy")
    take_profit_percent: Decimal = Field(default=Decimal("26"), gt=0, description="Sell when price rises this % above buy")


class PriceFeedConfig(BaseModel):
    """DEX pair price endpoint."""
    api_url: Optional[str] = Field(None, description="Pair endpoint base URL; falls back to DEXSCREENER_API_URL")
    trusted_dex_ids: List[str] = Field(default_factory=lambda: ["raydium"], description="DEX ids whose pairs are trusted")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")

    @field_validator("trusted_dex_ids")
    @classmethod
    def validate_trusted_dex_ids(cls, v):
        """At least one DEX must be trusted, ids compared lowercase."""
        if not v:
            raise ValueError("trusted_dex_ids must not be empty")
        return [dex.lower() for dex in v]


class ReferencePriceConfig(BaseModel):
    """SOL/USD reference price refresher."""
    enabled: bool = Field(default=True, description="Run the reference price refresher")
    url: Optional[str] = Field(None, description="Reference endpoint; falls back to COINDESK_HTTPS_URI")
    refresh_interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between refreshes")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")


class PriceValidationConfig(BaseModel):
    """Rolling-window sanity check applied to fetched prices."""
    enabled: bool = Field(default=False, description="Reject outlier prices before they reach the engine")
    window_size: int = Field(default=12, ge=1, description="Price points kept per token")
    max_deviation: Decimal = Field(default=Decimal("0.05"), gt=0, description="Allowed fractional deviation")
    min_data_points: int = Field(default=6, ge=1, description="History required before prices can be rejected")


class LiquidityDropConfig(BaseModel):
    """Sell when pair liquidity falls from its high-water mark."""
    enabled: bool = Field(default=True, description="Whether the strategy runs")
    threshold_percent: Decimal = Field(default=Decimal("20"), gt=0, le=100, description="Drop % that triggers a sell")
    check_interval_seconds: float = Field(default=5.0, ge=0, description="Minimum seconds between checks per token")


class StrategiesConfig(BaseModel):
    """Per-strategy configuration."""
    liquidity_drop: LiquidityDropConfig = Field(default_factory=LiquidityDropConfig)


class SimulationConfig(BaseModel):
    """Root configuration for the paper trading simulation."""
    paper_trading: PaperTradingConfig = Field(default_factory=PaperTradingConfig)
    swap: SwapConfig = Field(default_factory=SwapConfig)
    sell: SellConfig = Field(default_factory=SellConfig)
    price_feed: PriceFeedConfig = Field(default_factory=PriceFeedConfig)
    reference_price: ReferencePriceConfig = Field(default_factory=ReferencePriceConfig)
    price_validation: PriceValidationConfig = Field(default_factory=PriceValidationConfig)
    strategies: StrategiesConfig = Field(default_factory=StrategiesConfig)


def create_default_config() -> SimulationConfig:
    """Create a default configuration with sensible defaults."""
    return SimulationConfig()


def load_config_from_dict(config_dict: Dict[str, Any]) -> SimulationConfig:
    """
    Load configuration from a dictionary (e.g., parsed from the JSON file).

    Missing sections take their defaults.

    Raises:
        ValidationError: If configuration is invalid
    """
    return SimulationConfig.model_validate(config_dict or {})


def config_to_dict(config: SimulationConfig) -> Dict[str, Any]:
    """Convert configuration to a JSON-compatible dictionary."""
    return config.model_dump(mode="json")
