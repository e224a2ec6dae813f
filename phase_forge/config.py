"""Pipeline configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Planner budgets live on a separate frozen
model (:class:`PhaseGeneratorConfig`) so callers can override them per
plan without touching process settings.
"""

VERSION = "0.1.0"

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_STRICTNESS_LEVELS = ("relaxed", "standard", "strict")


class Settings(BaseSettings):
    """Pipeline settings — sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # optional rotating log file for the HTTP app
    FRONTEND_URL: str = "http://localhost:5174"

    # -- restore points --
    MAX_RESTORE_POINTS: int = 10
    RESTORE_POINTS_PATH: str = ""  # JSON file; empty = in-memory only

    # -- planner budgets (defaults for PhaseGeneratorConfig) --
    MAX_TOKENS_PER_PHASE: int = 8000
    TARGET_TOKENS_PER_PHASE: int = 5000
    MAX_FEATURES_PER_PHASE: int = 4
    MIN_PHASES: int = 2
    MAX_PHASES: int = 30

    # -- quality gate --
    REVIEW_STRICTNESS: str = "standard"  # "relaxed" | "standard" | "strict"
    ENFORCE_QUALITY_GATE: bool = True
    REVIEW_MAX_ISSUES_PER_FILE: int = 50

    @model_validator(mode="after")
    def _check_values(self) -> "Settings":
        if self.REVIEW_STRICTNESS not in _STRICTNESS_LEVELS:
            raise ValueError(
                f"REVIEW_STRICTNESS must be one of {', '.join(_STRICTNESS_LEVELS)}"
            )
        if self.MAX_RESTORE_POINTS < 1:
            self.MAX_RESTORE_POINTS = 1
        return self


settings = Settings()


# ---------------------------------------------------------------------------
# Planner configuration
# ---------------------------------------------------------------------------


class TokenEstimates(BaseModel):
    """Baseline token costs used when a feature has no better estimate."""

    model_config = ConfigDict(frozen=True)

    simple_feature: int = 1200
    moderate_feature: int = 2000
    complex_feature: int = 3500
    setup_phase: int = 2000
    polish_phase: int = 2500


class PhaseGeneratorConfig(BaseModel):
    """Budgets that bound how features are packed into phases."""

    model_config = ConfigDict(frozen=True)

    max_tokens_per_phase: int = Field(default=8000, ge=1)
    target_tokens_per_phase: int = Field(default=5000, ge=1)
    max_features_per_phase: int = Field(default=4, ge=1)
    min_features_per_phase: int = Field(default=1, ge=1)
    min_phases: int = Field(default=2, ge=2)
    max_phases: int = Field(default=30, ge=2)
    base_token_estimates: TokenEstimates = Field(default_factory=TokenEstimates)

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "PhaseGeneratorConfig":
        """Build planner budgets from process settings."""
        s = source or settings
        return cls(
            max_tokens_per_phase=s.MAX_TOKENS_PER_PHASE,
            target_tokens_per_phase=s.TARGET_TOKENS_PER_PHASE,
            max_features_per_phase=s.MAX_FEATURES_PER_PHASE,
            min_phases=s.MIN_PHASES,
            max_phases=s.MAX_PHASES,
        )
