"""Recording of curves and network states produced by simulations.

Simulations emit samples through a :class:`Recorder`. The base class ignores all
samples; :class:`InMemoryRecorder` keeps them in lists for inspection or for
writers outside porenet.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


class Recorder:
    """Receiver of simulation output. All methods are no-ops."""

    def record_capillary_pressure(self, stage: str, sw: float, pc: float) -> None:
        pass

    def record_relative_permeability(
        self, stage: str, sw: float, kro: float, krw: float
    ) -> None:
        pass

    def record_saturation(self, stage: str, injected_pvs: float, sw: float) -> None:
        pass

    def record_fractional_flow(
        self, stage: str, injected_pvs: float, fo: float, fw: float
    ) -> None:
        pass

    def record_pressure_drop(
        self, stage: str, injected_pvs: float, delta_p: float
    ) -> None:
        pass

    def record_state(
        self,
        stage: str,
        frame: int,
        phase: np.ndarray,
        concentration: np.ndarray,
    ) -> None:
        pass


@dataclass
class StateSnapshot:
    """Per-element phase and concentration at one output instant."""

    stage: str
    frame: int
    phase: np.ndarray
    concentration: np.ndarray


@dataclass
class InMemoryRecorder(Recorder):
    """Recorder keeping every sample.

    Curves are stored per stage name as lists of tuples.

    """

    capillary_pressure: dict[str, list[tuple[float, float]]] = field(
        default_factory=dict
    )
    """Stage name mapped to (Sw, Pc) samples."""
    relative_permeability: dict[str, list[tuple[float, float, float]]] = field(
        default_factory=dict
    )
    """Stage name mapped to (Sw, kro, krw) samples."""
    saturation: dict[str, list[tuple[float, float]]] = field(default_factory=dict)
    """Stage name mapped to (injected pore volumes, Sw) samples."""
    fractional_flow: dict[str, list[tuple[float, float, float]]] = field(
        default_factory=dict
    )
    """Stage name mapped to (injected pore volumes, Fo, Fw) samples."""
    pressure_drop: dict[str, list[tuple[float, float]]] = field(default_factory=dict)
    """Stage name mapped to (injected pore volumes, delta p) samples."""
    states: list[StateSnapshot] = field(default_factory=list)
    """Network states in the order they were recorded."""

    def record_capillary_pressure(self, stage: str, sw: float, pc: float) -> None:
        self.capillary_pressure.setdefault(stage, []).append((sw, pc))

    def record_relative_permeability(
        self, stage: str, sw: float, kro: float, krw: float
    ) -> None:
        self.relative_permeability.setdefault(stage, []).append((sw, kro, krw))

    def record_saturation(self, stage: str, injected_pvs: float, sw: float) -> None:
        self.saturation.setdefault(stage, []).append((injected_pvs, sw))

    def record_fractional_flow(
        self, stage: str, injected_pvs: float, fo: float, fw: float
    ) -> None:
        self.fractional_flow.setdefault(stage, []).append((injected_pvs, fo, fw))

    def record_pressure_drop(
        self, stage: str, injected_pvs: float, delta_p: float
    ) -> None:
        self.pressure_drop.setdefault(stage, []).append((injected_pvs, delta_p))

    def record_state(
        self,
        stage: str,
        frame: int,
        phase: np.ndarray,
        concentration: np.ndarray,
    ) -> None:
        self.states.append(
            StateSnapshot(stage, frame, phase.copy(), concentration.copy())
        )
        logger.debug(f"Recorded state {frame} of {stage}")
