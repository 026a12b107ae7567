from __future__ import annotations

import os
from datetime import timedelta

from pydantic import BaseModel, Field

from .models.quote import DEFAULT_VALIDITY_DAYS


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class EngineSettings(BaseModel):
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    idle_timeout_seconds: int = Field(default=900, gt=0)
    auto_confirm: bool = False
    quote_validity_days: int = Field(default=DEFAULT_VALIDITY_DAYS, gt=0)

    @property
    def idle_timeout(self) -> timedelta:
        return timedelta(seconds=self.idle_timeout_seconds)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ``QUOTE_*`` environment variables."""
        return cls(
            confidence_threshold=float(os.getenv("QUOTE_CONFIDENCE_THRESHOLD", "0.7")),
            idle_timeout_seconds=int(os.getenv("QUOTE_SESSION_IDLE_TIMEOUT_SECONDS", "900")),
            auto_confirm=_env_bool("QUOTE_AUTO_CONFIRM", False),
            quote_validity_days=int(os.getenv("QUOTE_VALIDITY_DAYS", str(DEFAULT_VALIDITY_DAYS))),
        )


__all__ = ["EngineSettings"]
