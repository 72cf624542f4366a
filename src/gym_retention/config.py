import logging.config
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# === Core Directories ===
RAW_DIR = Path("data/raw")
PROCESSED_DIR = Path("data/processed")

# === Signal Windows ===
ATTENDANCE_LOOKBACK_DAYS = 30
PAYMENT_LOOKBACK_DAYS = 180
FEEDBACK_LOOKBACK_DAYS = 180
INACTIVITY_DAYS = 14
LOW_FREQUENCY_VISITS_PER_DAY = 0.2  # fewer than 6 visits a month
LOW_RATING_CUTOFF = 3.0
NEUTRAL_RATING = 3.0

# === Risk Tiers ===
HIGH_RISK_THRESHOLD = 0.70
MEDIUM_RISK_THRESHOLD = 0.40

# === Alerting ===
OVERDUE_HIGH_SEVERITY_DAYS = 7
RECENT_ALERT_DAYS = 7

# === Model Evaluation ===
EVALUATION_DECISION_BOUNDARY = 0.5  # fixed; independent of the tier thresholds
DEFAULT_EVALUATION_DAYS = 30
FEATURE_IMPORTANCE = {
    "attendance": 0.40,
    "payment": 0.30,
    "feedback": 0.15,
    "demographics": 0.10,
    "other": 0.05,
}

# === Scoring ===
MODEL_PATH: Optional[Path] = None  # joblib artifact consumed by ModelScorer


class Settings(BaseSettings):
    """Runtime overrides, read from GYM_RETENTION_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="GYM_RETENTION_", env_file=".env", extra="ignore")

    raw_dir: Path = RAW_DIR
    processed_dir: Path = PROCESSED_DIR
    model_path: Optional[Path] = MODEL_PATH

    high_risk_threshold: float = HIGH_RISK_THRESHOLD
    medium_risk_threshold: float = MEDIUM_RISK_THRESHOLD
    inactivity_days: int = INACTIVITY_DAYS
    overdue_high_severity_days: int = OVERDUE_HIGH_SEVERITY_DAYS

    log_level: str = "INFO"

    def alert_settings(self) -> "AlertSettings":
        return AlertSettings(
            inactivity_days=self.inactivity_days,
            overdue_high_severity_days=self.overdue_high_severity_days,
        )


@dataclass(frozen=True)
class RiskThresholds:
    """Probability cut points for the risk tiers (inclusive lower bounds)."""

    high: float = HIGH_RISK_THRESHOLD
    medium: float = MEDIUM_RISK_THRESHOLD

    def __post_init__(self) -> None:
        if not 0.0 <= self.medium <= self.high <= 1.0:
            raise ValueError(
                f"Risk thresholds must satisfy 0 <= medium <= high <= 1 "
                f"(got medium={self.medium}, high={self.high})."
            )


@dataclass(frozen=True)
class AlertSettings:
    inactivity_days: int = INACTIVITY_DAYS
    overdue_high_severity_days: int = OVERDUE_HIGH_SEVERITY_DAYS


def setup_logging(level: str = "INFO") -> None:
    """Configure console logging for the API and CLI entry points."""

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "simple": {
                    "format": "[{asctime}] [{levelname}] [{name}] {message}",
                    "style": "{",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "level": level,
                    "class": "logging.StreamHandler",
                    "formatter": "simple",
                    "stream": sys.stdout,
                },
            },
            "loggers": {
                "": {"level": level, "handlers": ["console"]},
                "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            },
        }
    )
