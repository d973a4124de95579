from .base import Candidate, DetectorCounters, DetectorState
from .two_threshold import SpikeDetector

__all__ = [
    "Candidate",
    "DetectorCounters",
    "DetectorState",
    "SpikeDetector",
]
