# daq/simulated_source.py
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


def make_spike_template(n_samples: int, amplitude: float) -> np.ndarray:
    """Biphasic extracellular spike: a sharp negative trough followed by a
    smaller positive rebound, pinned to zero at both ends."""
    n_samples = max(8, int(n_samples))
    t_spike = np.linspace(-1, 1, n_samples)
    template = -(1 - t_spike**2) * np.exp(-t_spike**2 / 0.1)
    template += 0.35 * np.exp(-((t_spike - 0.55) ** 2) / 0.05)
    template -= np.linspace(template[0], template[-1], n_samples)
    peak = np.max(np.abs(template))
    if peak > 1e-12:
        template /= peak
    return (template * amplitude).astype(np.float64)


@dataclass
class PlantedSpike:
    channel: int
    start_sample: int
    amplitude: float


class SimulatedRecording:
    """
    Synthetic multichannel MEA recording with a known spike ground truth.

    Every channel carries a DC offset with a slow drift, Gaussian noise and
    spikes planted at Poisson-distributed times. The same seed always renders
    the same recording.
    """

    def __init__(
        self,
        num_channels: int,
        sample_rate: float,
        *,
        duration_sec: float = 1.0,
        spike_rate_hz: float = 20.0,
        spike_amplitude: float = 250.0,
        spike_width_samples: int = 16,
        noise_std: float = 10.0,
        dc_offset: float = 500.0,
        drift_hz: float = 0.5,
        refractory_samples: int = 60,
        seed: Optional[int] = None,
    ) -> None:
        if num_channels <= 0:
            raise ValueError("num_channels must be positive")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if duration_sec <= 0:
            raise ValueError("duration_sec must be positive")
        self.num_channels = int(num_channels)
        self.sample_rate = float(sample_rate)
        self.n_samples = int(duration_sec * sample_rate)
        self._noise_std = float(noise_std)
        self._dc_offset = float(dc_offset)
        self._drift_omega = 2.0 * np.pi * float(drift_hz) / self.sample_rate
        self._seed = seed
        self._template = make_spike_template(spike_width_samples, 1.0)

        rng = np.random.default_rng(seed)
        self._offsets = self._dc_offset * (0.5 + rng.random(self.num_channels))
        self.spikes: List[PlantedSpike] = []
        p_spike = spike_rate_hz / self.sample_rate
        last_end = self.n_samples - len(self._template)
        for ch in range(self.num_channels):
            next_allowed = 0
            starts = np.flatnonzero(rng.random(self.n_samples) < p_spike)
            for start in starts:
                if start < next_allowed or start >= last_end:
                    continue
                amp = spike_amplitude * (0.8 + 0.4 * rng.random())
                self.spikes.append(PlantedSpike(channel=ch, start_sample=int(start), amplitude=float(amp)))
                next_allowed = start + len(self._template) + refractory_samples
        logger.debug(
            "Simulated recording: %d channels, %d samples, %d planted spikes",
            self.num_channels,
            self.n_samples,
            len(self.spikes),
        )

    @property
    def spike_times(self) -> Dict[int, List[int]]:
        """Planted spike start samples grouped by channel."""
        grouped: Dict[int, List[int]] = {ch: [] for ch in range(self.num_channels)}
        for spike in self.spikes:
            grouped[spike.channel].append(spike.start_sample)
        return grouped

    def as_array(self) -> np.ndarray:
        """Render the full recording as a (n_samples, num_channels) array."""
        rng = np.random.default_rng(None if self._seed is None else self._seed + 1)
        idx = np.arange(self.n_samples, dtype=np.float64)
        drift = 0.1 * self._dc_offset * np.sin(self._drift_omega * idx)
        data = self._offsets[None, :] + drift[:, None]
        data = data + rng.normal(0.0, self._noise_std, size=data.shape)
        templ_len = len(self._template)
        for spike in self.spikes:
            end = spike.start_sample + templ_len
            data[spike.start_sample:end, spike.channel] += self._template * spike.amplitude
        return data

    def rows(self) -> Iterator[np.ndarray]:
        for row in self.as_array():
            yield row

    def __iter__(self) -> Iterator[np.ndarray]:
        return self.rows()
