from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _require_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite")


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f"{name} must be a whole number, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class ThresholdSettings:
    """Multipliers and floors turning a running std estimate into detection thresholds."""

    t1_mult: float = 0.9
    t1_floor: float = 23.0
    t2_mult: float = 2.2
    t2_floor: float = 60.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def validate(self) -> None:
        for name, value in asdict(self).items():
            _require_finite(name, value)
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        if self.t2_mult < self.t1_mult:
            raise ConfigurationError("t2_mult must not be below t1_mult")
        if self.t2_floor < self.t1_floor:
            raise ConfigurationError("t2_floor must not be below t1_floor")


@dataclass(frozen=True)
class PipelineSettings:
    """Configuration fixed at pipeline construction.

    Defaults describe a 32-channel MEA recording sampled at 30 kHz.
    """

    num_channels: int = 32
    sample_rate: float = 30_000.0
    cutoff_hz: float = 300.0
    spike_length: int = 22
    before_peak: int = 5
    min_spike_gap: int = 22
    spike_buffer_length: int = 100
    thresholds: ThresholdSettings = field(default_factory=ThresholdSettings)

    def validate(self) -> None:
        if self.num_channels <= 0:
            raise ConfigurationError("num_channels must be positive")
        _require_finite("sample_rate", self.sample_rate)
        _require_finite("cutoff_hz", self.cutoff_hz)
        if self.sample_rate <= 0:
            raise ConfigurationError("sample_rate must be positive")
        nyquist = self.sample_rate / 2.0
        if not (0 < self.cutoff_hz < nyquist):
            raise ConfigurationError("cutoff_hz must be between 0 and Nyquist")
        if self.spike_length <= 0:
            raise ConfigurationError("spike_length must be positive")
        if self.before_peak <= 0:
            raise ConfigurationError("before_peak must be positive")
        if self.min_spike_gap < 0:
            raise ConfigurationError("min_spike_gap must be non-negative")
        if self.spike_buffer_length <= 0:
            raise ConfigurationError("spike_buffer_length must be positive")
        self.thresholds.validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineSettings":
        if not isinstance(data, Mapping):
            raise ConfigurationError("settings payload must be a mapping")
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}")
        payload = dict(data)
        thresholds = payload.pop("thresholds", None)
        try:
            if thresholds is not None:
                if isinstance(thresholds, ThresholdSettings):
                    payload["thresholds"] = thresholds
                else:
                    payload["thresholds"] = ThresholdSettings(**{k: float(v) for k, v in dict(thresholds).items()})
            for name in ("num_channels", "spike_length", "before_peak", "min_spike_gap", "spike_buffer_length"):
                if name in payload:
                    payload[name] = _as_int(name, payload[name])
            for name in ("sample_rate", "cutoff_hz"):
                if name in payload:
                    payload[name] = float(payload[name])
            return cls(**payload)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ConfigurationError(f"invalid settings payload: {exc}") from exc


def load_settings(path: str | Path) -> PipelineSettings:
    """Read and validate pipeline settings from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc
    settings = PipelineSettings.from_dict(data)
    settings.validate()
    logger.info("Loaded pipeline settings from %s", path)
    return settings


def save_settings(settings: PipelineSettings, path: str | Path) -> Path:
    path = Path(path)
    if path.suffix.lower() != ".json":
        path = path.with_suffix(".json")
    path.write_text(json.dumps(settings.to_dict(), indent=2))
    return path


__all__ = ["ThresholdSettings", "PipelineSettings", "load_settings", "save_settings"]
