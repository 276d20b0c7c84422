import os
from dataclasses import dataclass

from .calculations import resolve_one_rm_formula
from .logging import LOG_FORMATS


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    log_format: str = "json"
    one_rm_formula: str = "brzycki"
    weekly_target: int = 3
    balance_weeks: int = 4
    rpe_coverage_threshold: float = 0.3
    timezone: str | None = None

    def __post_init__(self) -> None:
        resolve_one_rm_formula(self.one_rm_formula)
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {self.log_format!r}")
        if self.weekly_target <= 0:
            raise ValueError("weekly_target must be positive")
        if self.balance_weeks <= 0:
            raise ValueError("balance_weeks must be positive")
        if not 0.0 <= self.rpe_coverage_threshold <= 1.0:
            raise ValueError("rpe_coverage_threshold must be within [0, 1]")

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            log_format=os.environ.get("LIFTLOG_LOG_FORMAT", "json"),
            one_rm_formula=os.environ.get("LIFTLOG_ONE_RM_FORMULA", "brzycki").strip().lower(),
            weekly_target=int(os.environ.get("LIFTLOG_WEEKLY_TARGET", "3")),
            balance_weeks=int(os.environ.get("LIFTLOG_BALANCE_WEEKS", "4")),
            rpe_coverage_threshold=float(os.environ.get("LIFTLOG_RPE_COVERAGE", "0.3")),
            timezone=os.environ.get("LIFTLOG_TIMEZONE") or None,
        )
