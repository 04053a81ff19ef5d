"""   porenet.

Root directory for the porenet package. Contains the following sub-packages:

network: Pore-network data model, clustering and network-wide operations.

numerics: Conductance assembly and pressure solvers.

params: Simulation configuration.

simulations: Displacement (invasion percolation) and transport simulations, and
    the orchestrator sequencing them.

utils: Constants, errors, logging and progress bars.

viz: Recording of curves and network states.

applications: Network builders used for testing and demonstration.


isort:skip_file

"""

import os
from pathlib import Path
import configparser


__version__ = "0.3.0"

# Read the config file from the directory where the python process was launched.
# A missing file leaves the configuration empty.
cfg = configparser.ConfigParser()
cfg.read(Path(os.getcwd()) / Path("porenet.cfg"))
config = {section: dict(cfg[section]) for section in cfg.sections()}

# ------------------------------------
# Simplified namespaces. Classes and functions a user is exposed to have a
# shortcut here.

from porenet.utils.common_constants import *
from porenet.utils.errors import (
    NetworkPreconditionError,
    InconsistentBoundaryConditionError,
    ConcentrationOutOfRangeError,
    SaturationOutOfRangeError,
)
from porenet.utils.logging import time_logger

# Configuration
from porenet.params.simulation_config import (
    SimulationConfig,
    LinearSolverChoice,
    WaterDistribution,
    NetworkWettability,
    SimulationKind,
)

# Network
from porenet.network.network_model import NetworkModel, Phase, Wettability
from porenet.network.clustering import (
    ClusterKind,
    ClusterRegistry,
    Clustering,
    cluster_elements,
)
from porenet.network import network_operations

# Numerics
from porenet.numerics.pressure_solver import PressureSolver

# Recorders
from porenet.viz.recorders import Recorder, InMemoryRecorder

# Simulations
from porenet.simulations.simulation import Simulation
from porenet.simulations.displacements import (
    DisplacementStrategy,
    PrimaryDrainage,
    SpontaneousImbibition,
    ForcedWaterInjection,
    SpontaneousOilInvasion,
    SecondaryOilDrainage,
)
from porenet.simulations.invasion_percolation import InvasionPercolation
from porenet.simulations.tracer_flow import TracerFlow
from porenet.simulations.unsteady_state import UnsteadyStateFlow
from porenet.simulations.orchestrator import SimulationOrchestrator, build_stages

# Builders
from porenet.applications.regular_lattice import regular_lattice
