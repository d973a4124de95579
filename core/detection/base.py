from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DetectorState(Enum):
    IDLE = "idle"
    CANDIDATE = "candidate"


@dataclass(frozen=True)
class Candidate:
    """Tentative first-threshold crossing awaiting second-threshold confirmation."""

    start_index: int

    def offset(self, count: int) -> int:
        return count - self.start_index


@dataclass
class DetectorCounters:
    candidates_opened: int = 0
    candidates_expired: int = 0
    spikes_confirmed: int = 0

    def snapshot(self) -> dict:
        return {
            "candidates_opened": self.candidates_opened,
            "candidates_expired": self.candidates_expired,
            "spikes_confirmed": self.spikes_confirmed,
        }


__all__ = ["DetectorState", "Candidate", "DetectorCounters"]
