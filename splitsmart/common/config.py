"""
Classification configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from splitsmart.common.schemas.receipt_classification import ClassificationMethod


DEFAULT_STRATEGY_ORDER = (
    ClassificationMethod.GEOMETRIC,
    ClassificationMethod.HEURISTIC,
    ClassificationMethod.PRICE_RELATIONSHIP,
    ClassificationMethod.LLM,
)


class ClassificationEngine(str, Enum):
    """Which classifier turns raw lines into a receipt"""
    CHAIN = "chain"  # Per-line strategy chain, LLM only as fallback
    BATCH_LLM = "batch_llm"  # Whole receipt in one LLM call, chain as fallback


class ClassificationConfig(BaseSettings):
    """Classification thresholds and strategy toggles from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Engine
    engine: ClassificationEngine = Field(default=ClassificationEngine.CHAIN, alias="RECEIPT_ENGINE")

    # Strategy chain
    stop_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0, alias="RECEIPT_STOP_CONFIDENCE_THRESHOLD")
    minimum_acceptable_confidence: float = Field(default=0.7, ge=0.0, le=1.0, alias="RECEIPT_MINIMUM_ACCEPTABLE_CONFIDENCE")
    strategy_order: Tuple[ClassificationMethod, ...] = Field(default=DEFAULT_STRATEGY_ORDER, alias="RECEIPT_STRATEGY_ORDER")

    # Review / bucketing
    review_threshold: float = Field(default=0.7, ge=0.0, le=1.0, alias="RECEIPT_REVIEW_THRESHOLD")
    demoted_confidence: float = Field(default=0.5, ge=0.0, le=1.0, alias="RECEIPT_DEMOTED_CONFIDENCE")

    # Validation
    sum_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0, alias="RECEIPT_SUM_TOLERANCE")
    tip_rate_min: Decimal = Field(default=Decimal("0.10"), alias="RECEIPT_TIP_RATE_MIN")
    tip_rate_max: Decimal = Field(default=Decimal("0.30"), alias="RECEIPT_TIP_RATE_MAX")

    # LLM fallback
    llm_enabled: bool = Field(default=True, alias="RECEIPT_LLM_ENABLED")
    llm_timeout_seconds: float = Field(default=5.0, gt=0, alias="RECEIPT_LLM_TIMEOUT_SECONDS")
    llm_batch_timeout_seconds: float = Field(default=30.0, gt=0, alias="RECEIPT_LLM_BATCH_TIMEOUT_SECONDS")
    llm_model: str = Field(default="claude-sonnet-4-5", alias="RECEIPT_LLM_MODEL")
    max_llm_calls_per_receipt: int = Field(default=5, ge=0, alias="RECEIPT_MAX_LLM_CALLS_PER_RECEIPT")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # Application
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_thresholds(self) -> "ClassificationConfig":
        """Reject strategy orders and thresholds the chain cannot honour"""
        if ClassificationMethod.MANUAL in self.strategy_order:
            raise ValueError("Manual classification is assigned by corrections only, not the strategy chain")
        if len(set(self.strategy_order)) != len(self.strategy_order):
            raise ValueError("strategy_order must not repeat a strategy")
        if self.minimum_acceptable_confidence > self.stop_confidence_threshold:
            raise ValueError("minimum_acceptable_confidence must not exceed stop_confidence_threshold")
        if self.tip_rate_min > self.tip_rate_max:
            raise ValueError("tip_rate_min must not exceed tip_rate_max")
        return self


# Named presets, applied on top of environment settings
PRESETS = {
    "default": {},
    "conservative": {
        "stop_confidence_threshold": 0.9,
        "minimum_acceptable_confidence": 0.8,
        "llm_enabled": False,
    },
    "aggressive": {
        "stop_confidence_threshold": 0.7,
        "minimum_acceptable_confidence": 0.6,
        "max_llm_calls_per_receipt": 10,
    },
}


def load_config(preset: str = "default", **overrides) -> ClassificationConfig:
    """
    Build a configuration from environment, a named preset and overrides.

    Args:
        preset: One of "default", "conservative", "aggressive"
        **overrides: Field values applied last (by field name)

    Returns:
        Validated, immutable ClassificationConfig
    """
    if preset not in PRESETS:
        raise ValueError(f"Unknown preset {preset!r}, expected one of {sorted(PRESETS)}")

    base = ClassificationConfig()
    values = base.model_dump()
    values.update(PRESETS[preset])
    values.update(overrides)

    # Re-validate so presets and overrides go through the same checks as env values
    return ClassificationConfig.model_validate(values)
