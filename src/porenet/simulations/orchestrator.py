"""Sequencing of simulation stages over one network.

The orchestrator owns the network for the duration of a run. Stages are created
lazily from factories, run one at a time and share the orchestrator's interruption
flag, so that :meth:`SimulationOrchestrator.interrupt` stops the active stage after
its current step and skips all remaining stages.

A run is either synchronous (:meth:`SimulationOrchestrator.run`) or executed on a
dedicated worker thread (:meth:`SimulationOrchestrator.start` followed by
:meth:`SimulationOrchestrator.wait`). Progress and status always refer to the
active stage and may be polled from any thread.

Example:

    >>> network = pn.regular_lattice(5, 5, 5)
    >>> config = pn.SimulationConfig(spontaneous_imbibition=True)
    >>> recorder = pn.InMemoryRecorder()
    >>> orchestrator = pn.SimulationOrchestrator(network, config, recorder=recorder)
    >>> orchestrator.run()

"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

import porenet as pn
from porenet.network import network_operations
from porenet.network.network_model import NetworkModel
from porenet.params.simulation_config import SimulationConfig, SimulationKind
from porenet.simulations.displacements import (
    DisplacementStrategy,
    ForcedWaterInjection,
    PrimaryDrainage,
    SecondaryOilDrainage,
    SpontaneousImbibition,
    SpontaneousOilInvasion,
)
from porenet.simulations.invasion_percolation import InvasionPercolation
from porenet.simulations.simulation import Simulation
from porenet.simulations.tracer_flow import TracerFlow
from porenet.simulations.unsteady_state import UnsteadyStateFlow
from porenet.utils.errors import NetworkPreconditionError
from porenet.utils.ui_and_logging import DummyProgressBar, progressbar_class
from porenet.utils.ui_and_logging import (
    logging_redirect_tqdm_with_level as logging_redirect_tqdm,
)
from porenet.viz.recorders import Recorder

__all__ = ["StageFactory", "build_stages", "SimulationOrchestrator"]

logger = logging.getLogger(__name__)

StageFactory = Callable[[NetworkModel, SimulationConfig, Optional[Recorder]], Simulation]
"""Callable creating a stage from the network, the configuration and a recorder."""


def _invasion_stage(strategy_class: type[DisplacementStrategy]) -> StageFactory:
    def create(
        network: NetworkModel,
        config: SimulationConfig,
        recorder: Optional[Recorder] = None,
    ) -> Simulation:
        return InvasionPercolation(network, config, strategy_class(), recorder)

    create.__name__ = strategy_class.__name__
    return create


def build_stages(config: SimulationConfig) -> list[StageFactory]:
    """Stages of a session as selected by the configuration.

    A steady-state session runs the enabled displacements in the order primary
    drainage, spontaneous imbibition, forced water injection, spontaneous oil
    invasion and secondary oil drainage. Unsteady-state and tracer sessions consist
    of a single stage.

    Parameters:
        config: The configuration.

    Raises:
        ValueError: For an unknown simulation kind.

    Returns:
        Factories of the stages, in execution order.

    """
    kind = config.simulation_kind
    if kind == SimulationKind.STEADY_STATE:
        cycle = [
            (config.primary_drainage, PrimaryDrainage),
            (config.spontaneous_imbibition, SpontaneousImbibition),
            (config.forced_water_injection, ForcedWaterInjection),
            (config.spontaneous_oil_invasion, SpontaneousOilInvasion),
            (config.secondary_oil_drainage, SecondaryOilDrainage),
        ]
        return [_invasion_stage(strategy) for enabled, strategy in cycle if enabled]
    elif kind == SimulationKind.UNSTEADY_STATE:
        return [UnsteadyStateFlow]
    elif kind == SimulationKind.TRACER:
        return [TracerFlow]
    else:
        raise ValueError(f"Unknown simulation kind {kind}")


class SimulationOrchestrator:
    """Run an ordered list of stages over one network.

    Parameters:
        network: The network. Its geometry must be initialized.
        config: The configuration of the session.
        stages: Factories of the stages to run. Defaults to
            :func:`build_stages` of the configuration.
        recorder: Receiver of the curves and states of all stages.
        progressbars: Whether to show a tqdm progress bar for every stage.

    Raises:
        NetworkPreconditionError: If the network is not ready for simulation.

    """

    def __init__(
        self,
        network: NetworkModel,
        config: SimulationConfig,
        stages: Optional[Sequence[StageFactory]] = None,
        recorder: Optional[Recorder] = None,
        progressbars: bool = False,
    ) -> None:
        network.validate()
        if network.total_network_volume <= 0:
            raise NetworkPreconditionError(
                "The network volume is not set. Call initialize_geometry first"
            )
        self.network = network
        self.config = config
        self.stages: list[StageFactory] = (
            build_stages(config) if stages is None else list(stages)
        )
        self.recorder = recorder if recorder is not None else Recorder()
        self.progressbars = progressbars

        self.interruption = threading.Event()
        """Flag shared with every stage."""
        self.current_stage: Optional[Simulation] = None
        """The stage currently running, or the last one run."""
        self.completed_stages: list[Simulation] = []
        self.listeners: list[Callable[[Simulation], None]] = []
        """Callables invoked with the active stage after each of its steps."""
        self.error: Optional[Exception] = None
        """Exception that ended the last run. Reported by :attr:`status`."""
        self._status = "Idle"
        self._thread: Optional[threading.Thread] = None

    def __repr__(self) -> str:
        return (
            f"Simulation orchestrator with {len(self.stages)} stages on {self.network}"
        )

    @property
    def interrupted(self) -> bool:
        return self.interruption.is_set()

    @property
    def progress(self) -> int:
        """Progress of the active stage in percent."""
        if self.current_stage is None:
            return 0
        return self.current_stage.progress

    @property
    def status(self) -> str:
        """Status of the active stage, or of the orchestrator between stages."""
        if self.error is not None or self.current_stage is None:
            return self._status
        return self.current_stage.status

    def add_listener(self, listener: Callable[[Simulation], None]) -> None:
        self.listeners.append(listener)

    def interrupt(self) -> None:
        """Stop the active stage after its current step and skip the rest."""
        logger.info("Interruption requested")
        self.interruption.set()

    def prepare_network(self) -> None:
        """Output folder, wettability after ageing and single-phase properties."""
        if self.config.output_folder is not None:
            self.config.output_folder.mkdir(parents=True, exist_ok=True)
        network_operations.assign_wettabilities(self.network, self.config)
        pn.PressureSolver(self.network, self.config).calculate_permeability_and_porosity()

    def run(self) -> None:
        """Run all stages on the calling thread.

        Exceptions raised by a stage interrupt the run and are propagated.

        """
        tic = time.time()
        self._status = "Running"
        self.error = None
        try:
            self.prepare_network()
            with logging_redirect_tqdm([logging.root]):
                for factory in self.stages:
                    if self.interrupted:
                        break
                    self._run_stage(factory)
        except Exception as err:
            self._status = f"Error: {err}"
            self.error = err
            self.interruption.set()
            raise
        self._status = "Interrupted" if self.interrupted else "Finished"
        logger.info(
            f"{len(self.completed_stages)} of {len(self.stages)} stages run in "
            f"{time.time() - tic:.2f} seconds"
        )

    def _run_stage(self, factory: StageFactory) -> None:
        stage = factory(self.network, self.config, self.recorder)
        stage.interruption = self.interruption
        self.current_stage = stage

        if self.progressbars:
            progressbar = progressbar_class(
                total=100, desc=stage.name, position=0, dynamic_ncols=True
            )
        else:
            progressbar = DummyProgressBar()
        shown = 0

        def on_step(simulation: Simulation) -> None:
            nonlocal shown
            progressbar.update(n=max(simulation.progress - shown, 0))
            shown = max(shown, simulation.progress)
            progressbar.set_postfix_str(simulation.status)
            for listener in self.listeners:
                listener(simulation)

        stage.listeners.append(on_step)
        try:
            stage.execute()
        finally:
            progressbar.close()
        self.completed_stages.append(stage)

    def start(self) -> threading.Thread:
        """Run all stages on a dedicated worker thread.

        Returns:
            The worker thread.

        """
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("The orchestrator is already running")
        self.error = None
        self._thread = threading.Thread(
            target=self._run_on_worker, name="porenet-worker", daemon=True
        )
        self._thread.start()
        return self._thread

    def _run_on_worker(self) -> None:
        try:
            self.run()
        except Exception as err:
            # Re-raised on the caller's thread by wait().
            logger.error(f"Simulation stopped by an error: {err}")
            self.error = err

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the worker thread finishes.

        Parameters:
            timeout: Maximum time to wait in seconds. Waits indefinitely by
                default.

        Raises:
            Exception: The exception that stopped the worker, if any.

        """
        if self._thread is not None:
            self._thread.join(timeout)
        if self.error is not None:
            raise self.error
