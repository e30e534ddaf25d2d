# settings.py
"""Runtime configuration for the trend tracker.

Defaults match the Deribit test environment. Every field can be overridden
through a ``TRACKER_<FIELD>`` environment variable (see ``from_env``) and,
in console mode, through command-line flags.
"""

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

DERIBIT_TEST_WS_URL = "wss://test.deribit.com/ws/api/v2"
ENV_PREFIX = "TRACKER_"


class TrackerSettings(BaseModel):
    instrument: str = "BTC-PERPETUAL"
    interval: Literal["raw", "100ms", "agg2"] = "100ms"
    window_seconds: int = Field(10, gt=0)
    min_points: int = Field(5, gt=0)
    report_interval_ms: int = Field(1000, gt=0)
    poll_interval_ms: int = Field(100, gt=0)
    direction_epsilon: float = Field(0.00001, ge=0.0)
    feed_url: str = DERIBIT_TEST_WS_URL
    feed: Literal["deribit", "stub"] = "deribit"

    @field_validator("instrument")
    @classmethod
    def _normalize_instrument(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("instrument must not be blank")
        return value

    @property
    def channel(self) -> str:
        """Ticker subscription channel, e.g. ``ticker.BTC-PERPETUAL.100ms``."""
        return f"ticker.{self.instrument}.{self.interval}"

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "TrackerSettings":
        """Build settings from ``TRACKER_*`` variables, then apply explicit overrides.

        Overrides whose value is ``None`` are ignored so argparse results can be
        passed through unchanged.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
