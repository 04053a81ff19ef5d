"""Quasi-static invasion percolation.

The capillary pressure is swept over an effective radius ``r = f sigma / Pc``
between the extreme thresholds of the network, in ``two_phase_simulation_steps``
equal increments. At every pressure step the controller

    1. invades candidates eligible for snap-off (spontaneous displacements only),
    2. repeatedly invades all candidates passing the bulk invasion predicate,
       reclustering the conductor clusters after every batch, until no candidate
       invades,
    3. dismisses candidates whose displaced phase is trapped,
    4. updates film volumes, the water saturation and the output curves.

Within a batch, candidates are visited in ascending id order and all eligible
candidates invade together. An element invaded during a run leaves the candidate
set and is never reconsidered by the same run.

The rules of each displacement are supplied by a
:class:`~porenet.simulations.displacements.DisplacementStrategy`.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import porenet as pn
from porenet.network import network_operations
from porenet.network.network_model import NetworkModel
from porenet.params.simulation_config import SimulationConfig
from porenet.simulations.displacements import DisplacementStrategy
from porenet.simulations.simulation import Simulation
from porenet.utils.logging import time_logger
from porenet.viz.recorders import Recorder

__all__ = ["InvasionPercolation"]

logger = logging.getLogger(__name__)

module_sections = ["simulations"]

SATURATION_OUTPUT_INCREMENT = 0.01
"""Change of water saturation between two curve samples."""


class InvasionPercolation(Simulation):
    """Controller of one quasi-static displacement.

    Parameters:
        network: The network. Its geometry must be initialized.
        config: The configuration.
        strategy: The displacement rules.
        recorder: Receiver of capillary pressure and relative permeability samples.

    """

    def __init__(
        self,
        network: NetworkModel,
        config: SimulationConfig,
        strategy: DisplacementStrategy,
        recorder: Optional[Recorder] = None,
    ) -> None:
        super().__init__(network, config, recorder)
        self.strategy = strategy
        self.name = strategy.name

        self.steps: int = config.two_phase_simulation_steps
        """Number of pressure steps of the sweep."""
        self.step: int = 0
        """Number of completed pressure steps."""
        self.current_pc: float = 0.0
        """Capillary pressure of the current step [Pa]."""
        self.current_radius: float = 0.0
        """Effective radius of the current step [m]."""
        self.radius_step: float = 0.0
        self.current_sw: float = 1.0

        self.candidates = np.zeros(network.num_elements, dtype=bool)
        """Elements that may still be invaded."""
        self.invaded = np.zeros(network.num_elements, dtype=bool)
        """Elements invaded during this run."""
        self.invasion_history: list[np.ndarray] = []
        """Ids of the elements invaded in every pressure step."""

        self._step_invaded: list[np.ndarray] = []
        self._last_sampled_sw: float = 1.0
        self._initialized = False

    @property
    def progress(self) -> int:
        if self.steps <= 0:
            return 100
        return int(min(self.step / self.steps, 1.0) * 100)

    @property
    def status(self) -> str:
        return (
            f"{self.name}: Current PC (psi): {pn.pa_to_psi(self.current_pc):.4f} / "
            f"Sw: {self.current_sw:.4f}"
        )

    @property
    def terminated(self) -> bool:
        return (
            self.step >= self.steps
            or not np.any(self.candidates)
            or self.strategy.terminated(self)
        )

    def run(self) -> None:
        """Sweep the capillary pressure until termination or interruption."""
        self.initialize()
        while not self.interrupted and not self.terminated:
            self.invasion_step()
            self.update_listeners()
        self.strategy.finalize(self)
        logger.info(
            f"{self.name} stopped after {self.step} steps, Sw={self.current_sw:.4f}, "
            f"{int(self.invaded.sum())} elements invaded"
        )

    def initialize(self) -> None:
        """Prepare the network and the pressure sweep."""
        network = self.network
        strategy = self.strategy
        strategy.initialize(self)
        self.recluster()

        self.candidates = strategy.initial_candidates(network) & ~network.closed
        self.invaded[:] = False
        self.invasion_history = []
        self.step = 0

        sigma = self.config.ow_surface_tension
        min_pc, max_pc = strategy.pressure_extremes(network, sigma)
        # Neutral contact angles give vanishing thresholds.
        max_pc = max(max_pc, 1.0)
        if min_pc <= 0:
            min_pc = 1e-3 * max_pc
        radius_factor = strategy.radius_factor
        min_radius = radius_factor * sigma / max_pc
        max_radius = radius_factor * sigma / min_pc

        if np.isclose(min_radius, max_radius, rtol=1e-12, atol=0.0):
            self.steps = 1
            self.radius_step = 0.0
            self.current_radius = min_radius
        else:
            self.steps = self.config.two_phase_simulation_steps
            self.radius_step = (max_radius - min_radius) / self.steps
            if strategy.radius_decreasing:
                self.current_radius = max_radius - self.radius_step
            else:
                self.current_radius = min_radius + self.radius_step
        self.current_pc = self._pressure_of(self.current_radius)

        self.current_sw = network_operations.water_saturation(network)
        self._last_sampled_sw = self.current_sw
        self._step_invaded = []
        self._initialized = True
        logger.info(
            f"{self.name}: sweeping capillary pressure between {min_pc:.4e} and "
            f"{max_pc:.4e} Pa in {self.steps} steps, "
            f"{int(self.candidates.sum())} candidates"
        )

    def _pressure_of(self, radius: float) -> float:
        return (
            self.strategy.pressure_sign
            * self.strategy.radius_factor
            * self.config.ow_surface_tension
            / radius
        )

    def recluster(self) -> None:
        self.clustering.cluster_water_conductor_elements()
        self.clustering.cluster_oil_conductor_elements()

    @time_logger(sections=module_sections)
    def invasion_step(self) -> None:
        """Invade all eligible candidates at the current capillary pressure and
        advance the pressure."""
        if not self._initialized:
            self.initialize()
        strategy = self.strategy
        self.current_pc = self._pressure_of(self.current_radius)
        invaded_before = int(self.invaded.sum())

        candidates = np.flatnonzero(self.candidates)
        if candidates.size > 0:
            snapped = candidates[strategy.snap_off(self, candidates)]
            if snapped.size > 0:
                self._invade(snapped)

        while True:
            candidates = np.flatnonzero(self.candidates)
            if candidates.size == 0:
                break
            invadable = candidates[strategy.bulk(self, candidates)]
            if invadable.size == 0:
                break
            self._invade(invadable)

        candidates = np.flatnonzero(self.candidates)
        if candidates.size > 0:
            self.candidates[candidates[strategy.trapped(self, candidates)]] = False

        strategy.adjust_film_volumes(self)
        self.current_sw = network_operations.water_saturation(self.network)
        self.step += 1
        self.invasion_history.append(
            np.sort(np.concatenate(self._step_invaded))
            if self._step_invaded
            else np.zeros(0, dtype=int)
        )
        self._step_invaded = []
        logger.debug(
            f"{self.name} step {self.step}: Pc={self.current_pc:.4e} Pa, "
            f"Sw={self.current_sw:.4f}, "
            f"{int(self.invaded.sum()) - invaded_before} invaded"
        )

        self.write_outputs()
        if self.step < self.steps:
            if strategy.radius_decreasing:
                self.current_radius -= self.radius_step
            else:
                self.current_radius += self.radius_step

    def _invade(self, elements: np.ndarray) -> None:
        network = self.network
        self.strategy.fill(network, elements)
        self.candidates[elements] = False
        self.invaded[elements] = True
        self._step_invaded.append(elements)

        new = self.strategy.new_candidates(self, elements)
        new = new[~self.invaded[new] & ~network.closed[new]]
        self.candidates[new] = True
        self.recluster()

    def write_outputs(self) -> None:
        """Sample the curves once the saturation has changed enough."""
        if (
            abs(self.current_sw - self._last_sampled_sw) < SATURATION_OUTPUT_INCREMENT
            and not self.terminated
        ):
            return
        if self.current_sw == self._last_sampled_sw:
            return
        self._last_sampled_sw = self.current_sw
        self.recorder.record_capillary_pressure(
            self.name, self.current_sw, self.current_pc
        )
        if self.config.relative_permeabilities_calculation:
            kro, krw = self.solver.calculate_relative_permeabilities()
            self.recorder.record_relative_permeability(
                self.name, self.current_sw, kro, krw
            )
        self.record_network_state()
