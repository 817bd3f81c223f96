"""Scheduler timing settings."""

from __future__ import annotations

from dataclasses import dataclass

from .utils import getenv_seconds

DEFAULT_SUCCESS_DELAY_S = 4.0
DEFAULT_ERROR_DELAY_S = 1.0
DEFAULT_RATE_LIMIT_COOLDOWN_S = 30.0
DEFAULT_DESCRIPTOR_SETTLE_S = 2.0


@dataclass(frozen=True)
class SchedulerSettings:
    # Floor between successful requests; keeps a free-tier key under ~15 RPM.
    success_delay_s: float = DEFAULT_SUCCESS_DELAY_S
    error_delay_s: float = DEFAULT_ERROR_DELAY_S
    rate_limit_cooldown_s: float = DEFAULT_RATE_LIMIT_COOLDOWN_S
    # Pause between the descriptor call and the image call of one cell.
    descriptor_settle_s: float = DEFAULT_DESCRIPTOR_SETTLE_S

    def __post_init__(self) -> None:
        for name in ("success_delay_s", "error_delay_s", "rate_limit_cooldown_s", "descriptor_settle_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative.")

    @classmethod
    def from_env(cls) -> SchedulerSettings:
        return cls(
            success_delay_s=getenv_seconds("GENMATRIX_SUCCESS_DELAY_S", DEFAULT_SUCCESS_DELAY_S),
            error_delay_s=getenv_seconds("GENMATRIX_ERROR_DELAY_S", DEFAULT_ERROR_DELAY_S),
            rate_limit_cooldown_s=getenv_seconds("GENMATRIX_RATE_LIMIT_COOLDOWN_S", DEFAULT_RATE_LIMIT_COOLDOWN_S),
            descriptor_settle_s=getenv_seconds("GENMATRIX_DESCRIPTOR_SETTLE_S", DEFAULT_DESCRIPTOR_SETTLE_S),
        )
