"""Configuration management for the strategy backtester."""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Simulation Configuration
# =============================================================================


class SimulationConfig(BaseSettings):
    """Defaults applied by the runner and the simulation engine."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", env_prefix="SIM_"
    )

    initial_capital: float = Field(default=10000.0)
    transaction_cost_percentage: float = Field(default=0.0)
    slippage_percentage: float = Field(default=0.0)
    quote_currency: str = Field(default="USDC")
    default_pair: str = Field(default="SOL/USDC")
    default_interval: str = Field(default="1h")
    default_data_source: str = Field(default="mock")

    # Context handed to strategies
    last_prices_window: int = Field(default=51)
    recent_trades_window_ms: int = Field(default=24 * 60 * 60 * 1000)
    confidence_level: float = Field(default=0.5)

    # Parameter-grid optimization
    optimize_max_combinations: int = Field(default=50)

    @field_validator("transaction_cost_percentage", "slippage_percentage")
    @classmethod
    def validate_percentage(cls, v: float) -> float:
        """Validate fee and slippage are fractions in [0, 1]."""
        if not 0 <= v <= 1:
            raise ValueError(f"Percentage must be between 0 and 1, got {v}")
        return v

    @field_validator("last_prices_window")
    @classmethod
    def validate_window(cls, v: int) -> int:
        if v < 2:
            raise ValueError("last_prices_window must be at least 2")
        return v


# =============================================================================
# Historical Data Configuration
# =============================================================================


class DataConfig(BaseSettings):
    """Historical data loader configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", env_prefix="DATA_"
    )

    cache_dir: str = Field(default="data/historical")
    exchange_id: str = Field(default="binance")
    fetch_limit: int = Field(default=1000)
    request_delay_seconds: float = Field(default=0.1)
    mock_seed: int = Field(default=7)
    mock_max_candles: int = Field(default=1000)


# =============================================================================
# LLM Strategy Configuration
# =============================================================================


class LLMConfig(BaseSettings):
    """Language-model strategy defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", env_prefix="LLM_"
    )

    inference_model: Optional[str] = Field(default=None)
    temperature: float = Field(default=0.7)
    max_tokens: Optional[int] = Field(default=None)
    default_trade_size_percentage: float = Field(default=0.01)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Log level
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")

    # Log settings
    log_file: str = Field(default="logs/backtester.log")


# =============================================================================
# Global Configuration Instances
# =============================================================================

simulation_config = SimulationConfig()
data_config = DataConfig()
llm_config = LLMConfig()
logging_config = LoggingConfig()


__all__ = [
    "SimulationConfig",
    "DataConfig",
    "LLMConfig",
    "LoggingConfig",
    "simulation_config",
    "data_config",
    "llm_config",
    "logging_config",
]
