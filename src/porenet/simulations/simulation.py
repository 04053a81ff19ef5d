"""Base class of displacement and transport simulations.

A simulation mutates a shared network step by step until its termination condition
holds. It exposes its progress (0-100) and a short status string, notifies
listeners after every step and polls an interruption flag at step boundaries: an
interruption lets the current step finish and then stops the run.

"""

from __future__ import annotations

import abc
import logging
import threading
import time
from typing import Callable, Optional

from porenet.network.clustering import Clustering
from porenet.network.network_model import NetworkModel
from porenet.numerics.pressure_solver import PressureSolver
from porenet.params.simulation_config import SimulationConfig
from porenet.viz.recorders import Recorder

logger = logging.getLogger(__name__)


class Simulation(abc.ABC):
    """Skeleton shared by all simulation stages.

    Parameters:
        network: The network to operate on. It is exclusively used by this stage
            while it runs.
        config: The configuration of the session.
        recorder: Receiver of curves and states. Defaults to a recorder ignoring
            all samples.

    """

    name: str = "Simulation"
    """Name of the stage, used for recorded curves and status strings."""

    def __init__(
        self,
        network: NetworkModel,
        config: SimulationConfig,
        recorder: Optional[Recorder] = None,
    ) -> None:
        self.network = network
        self.config = config
        self.recorder = recorder if recorder is not None else Recorder()
        self.solver = PressureSolver(network, config)
        self.clustering = Clustering(network)

        self.interruption = threading.Event()
        """Flag polled at step boundaries. May be shared with an orchestrator."""
        self.listeners: list[Callable[[Simulation], None]] = []
        """Callables invoked with the simulation after every step."""
        self.frame_count = 0

    @property
    def interrupted(self) -> bool:
        return self.interruption.is_set()

    def interrupt(self) -> None:
        """Request the run to stop after the current step."""
        self.interruption.set()

    @property
    @abc.abstractmethod
    def progress(self) -> int:
        """Completion of the stage in percent."""

    @property
    @abc.abstractmethod
    def status(self) -> str:
        """Short human-readable description of the current state."""

    @abc.abstractmethod
    def run(self) -> None:
        """Advance the simulation to completion or interruption."""

    def execute(self) -> None:
        """Run the stage with logging of its start, end and duration."""
        logger.info(f"Starting {self.name}")
        tic = time.time()
        self.run()
        state = "interrupted" if self.interrupted else "finished"
        logger.info(f"{self.name} {state} after {time.time() - tic:.2f} seconds")

    def update_listeners(self) -> None:
        for listener in self.listeners:
            listener(self)

    def record_network_state(self) -> None:
        """Emit a snapshot of phases and concentrations if configured."""
        if not self.config.record_network_states:
            return
        self.recorder.record_state(
            self.name,
            self.frame_count,
            self.network.phase,
            self.network.concentration,
        )
        self.frame_count += 1
