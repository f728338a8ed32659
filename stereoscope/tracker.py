"""
Band Energy Tracker Module

Smoothed per-band energy with bounded history, the input of every
higher-order analysis.

energy = energy * alpha + new_energy * (1 - alpha), starting from 0.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

import numpy as np

from stereoscope.params import TrackerParams


@dataclass
class BandState:
    """
    Mutable state of one band.

    CONTRACT:
    - energy is always in [0, 1]
    - len(history) <= history_length (oldest entry evicted first)
    - trend / volatility are 0.0 and classification is None until the
      trend analyzer has enough history
    """
    index: int
    history_length: int
    energy: float = 0.0
    history: Deque[float] = field(default=None)
    trend: float = 0.0
    volatility: float = 0.0
    classification: Optional[str] = None

    def __post_init__(self) -> None:
        if self.history is None:
            self.history = deque(maxlen=self.history_length)

    def reset(self) -> None:
        """Reset state to initial values."""
        self.energy = 0.0
        self.history.clear()
        self.trend = 0.0
        self.volatility = 0.0
        self.classification = None


class BandEnergyTracker:
    """
    One BandState per band, stored flat and indexed by band index.
    """

    def __init__(self, band_count: int, params: Optional[TrackerParams] = None) -> None:
        self.params = params or TrackerParams()
        self.states: List[BandState] = [
            BandState(index=i, history_length=self.params.history_length)
            for i in range(band_count)
        ]

    @property
    def band_count(self) -> int:
        return len(self.states)

    def __len__(self) -> int:
        return len(self.states)

    def __getitem__(self, index: int) -> BandState:
        return self.states[index]

    def reset(self) -> None:
        for state in self.states:
            state.reset()

    def update(self, energies: np.ndarray) -> np.ndarray:
        """
        Fold one block of normalized band energies into the smoothed state.

        Non-finite entries count as 0 energy; values are clamped to [0, 1].

        Returns:
            Smoothed energies after the update
        """
        energies = np.nan_to_num(np.asarray(energies, dtype=np.float64),
                                 nan=0.0, posinf=0.0, neginf=0.0)
        if len(energies) != len(self.states):
            raise ValueError(
                f"Expected {len(self.states)} band energies, got {len(energies)}"
            )
        energies = np.clip(energies, 0.0, 1.0)
        alpha = self.params.alpha

        for state, new_energy in zip(self.states, energies):
            state.energy = float(np.clip(state.energy * alpha + new_energy * (1.0 - alpha), 0.0, 1.0))
            state.history.append(state.energy)

        return self.energies()

    def energies(self) -> np.ndarray:
        return np.array([s.energy for s in self.states], dtype=np.float64)

    def history_length(self) -> int:
        """Number of samples currently held (identical for every band)."""
        return len(self.states[0].history) if self.states else 0

    def history_matrix(self, length: Optional[int] = None) -> np.ndarray:
        """
        Recent history of every band as a (band_count, k) array.

        k is min(length, samples held); the newest sample is the last column.
        """
        held = self.history_length()
        k = held if length is None else min(length, held)
        if k == 0:
            return np.zeros((len(self.states), 0))
        return np.array([list(s.history)[-k:] for s in self.states], dtype=np.float64)
