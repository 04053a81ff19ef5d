"""Immutable configuration of a porenet run.

A single :class:`SimulationConfig` is created by the caller and passed to the
orchestrator, which threads it through to every stage, the pressure solver and the
network operations. All values are in SI units.

Example:

    >>> config = pn.SimulationConfig(
    ...     simulation_kind=pn.SimulationKind.STEADY_STATE,
    ...     primary_drainage=True,
    ...     spontaneous_imbibition=True,
    ...     two_phase_simulation_steps=50,
    ... )

"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import numpy as np

__all__ = [
    "LinearSolverChoice",
    "WaterDistribution",
    "NetworkWettability",
    "SimulationKind",
    "SimulationConfig",
]


class LinearSolverChoice(Enum):
    """Solver for the pressure system."""

    DIRECT = "direct"
    """Sparse direct LU factorization of the SPD system."""
    CONJUGATE_GRADIENT = "conjugate_gradient"
    """Jacobi-preconditioned conjugate gradients."""


class WaterDistribution(Enum):
    """Placement of the initial water saturation."""

    RANDOM = "random"
    SMALL_CAPILLARIES = "small_capillaries"
    BIG_CAPILLARIES = "big_capillaries"
    AFTER_PRIMARY_DRAINAGE = "after_primary_drainage"


class NetworkWettability(Enum):
    """Wettability state assigned by
    :func:`~porenet.network.network_operations.assign_wettabilities`."""

    WATER_WET = "water_wet"
    OIL_WET = "oil_wet"
    FRACTIONAL_WET = "fractional_wet"
    MIXED_WET_LARGE = "mixed_wet_large"
    MIXED_WET_SMALL = "mixed_wet_small"


class SimulationKind(Enum):
    """Family of stages run by the orchestrator."""

    STEADY_STATE = "steady_state"
    UNSTEADY_STATE = "unsteady_state"
    TRACER = "tracer"


@dataclass(frozen=True, kw_only=True)
class SimulationConfig:
    """Configuration values of a simulation session."""

    simulation_kind: SimulationKind = SimulationKind.STEADY_STATE
    """Which family of stages :func:`~porenet.simulations.orchestrator.build_stages`
    creates."""

    # Solver
    solver: LinearSolverChoice = LinearSolverChoice.DIRECT
    """Linear solver used for the pressure system."""
    cg_tolerance: float = 1e-14
    """Relative residual tolerance of the conjugate gradient solver."""
    cg_max_iterations: int = 10000
    """Iteration limit of the conjugate gradient solver."""

    # Fluids
    oil_viscosity: float = 1.39e-3
    """Oil viscosity [Pa s]."""
    water_viscosity: float = 1.0e-3
    """Water viscosity [Pa s]."""
    ow_surface_tension: float = 30e-3
    """Oil/water interfacial tension [N/m]."""

    # Conductance and volume laws
    conductivity_constant: float = 1.0
    """Prefactor of the conductance power law."""
    conductivity_exponent: float = 4.0
    """Radius exponent of the conductance power law."""
    film_conductance_resistivity: float = 1.0
    """Divisor applied to film conductances in relative permeability solves."""

    # Wettability
    wettability: NetworkWettability = NetworkWettability.WATER_WET
    """Wettability state of the network after primary drainage."""
    min_water_wet_theta: float = 0.0
    """Lower bound of water-wet contact angles [rad]."""
    max_water_wet_theta: float = np.pi / 6
    """Upper bound of water-wet contact angles [rad]."""
    min_oil_wet_theta: float = 2 * np.pi / 3
    """Lower bound of oil-wet contact angles [rad]."""
    max_oil_wet_theta: float = np.pi
    """Upper bound of oil-wet contact angles [rad]."""
    oil_wet_fraction: float = 0.0
    """Fraction of oil-wet nodes for fractional and mixed wettability."""

    seed: int = 0
    """Seed of the random generator used for wettability, half angles and the
    initial water distribution."""

    # Steady-state cycle
    primary_drainage: bool = True
    spontaneous_imbibition: bool = False
    forced_water_injection: bool = False
    spontaneous_oil_invasion: bool = False
    secondary_oil_drainage: bool = False
    two_phase_simulation_steps: int = 100
    """Number of capillary pressure steps of each displacement stage."""
    final_water_saturation: float = 0.0
    """Primary drainage stops once the water saturation drops below this value."""
    relative_permeabilities_calculation: bool = True
    """Compute relative permeabilities alongside capillary pressure curves."""

    # Transport
    flow_rate: float = 1e-12
    """Total injection rate [m^3/s]."""
    simulation_time: float = 1.0
    """Physical time simulated by transport stages [s]."""
    override_by_injected_pvs: bool = False
    """Derive the simulation time from ``injected_pvs`` instead."""
    injected_pvs: float = 1.0
    """Pore volumes to inject when ``override_by_injected_pvs`` is set."""
    tracer_diffusion_coefficient: float = 1e-9
    """Molecular diffusion coefficient of the tracer [m^2/s]."""
    initial_water_saturation: float = 0.0
    """Water saturation set up before transport stages."""
    water_distribution: WaterDistribution = WaterDistribution.RANDOM
    """Placement of the initial water saturation."""

    # Output
    record_network_states: bool = False
    """Emit per-element state snapshots to the recorder."""
    output_folder: Optional[Path] = None
    """Folder created before the run; None to skip."""

    def __post_init__(self) -> None:
        if self.two_phase_simulation_steps < 1:
            raise ValueError("two_phase_simulation_steps must be at least 1")
        if not 0.0 <= self.initial_water_saturation <= 1.0:
            raise ValueError(
                "initial_water_saturation must be in [0, 1], got "
                f"{self.initial_water_saturation}"
            )
        if not 0.0 <= self.oil_wet_fraction <= 1.0:
            raise ValueError(
                f"oil_wet_fraction must be in [0, 1], got {self.oil_wet_fraction}"
            )
        for name in ("oil_viscosity", "water_viscosity", "ow_surface_tension"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> SimulationConfig:
        """Create a configuration from a plain dictionary.

        Enum-valued fields accept their string values, e.g.
        ``{"solver": "conjugate_gradient"}``.

        Parameters:
            values: Field names mapped to values.

        Raises:
            ValueError: If a key is not a field of the configuration.

        Returns:
            The configuration.

        """
        fields = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(values) - set(fields)
        if unknown:
            raise ValueError(f"Unknown configuration keys {sorted(unknown)}")

        enums = {
            "simulation_kind": SimulationKind,
            "solver": LinearSolverChoice,
            "wettability": NetworkWettability,
            "water_distribution": WaterDistribution,
        }
        converted: dict[str, Any] = {}
        for key, value in values.items():
            if key in enums and not isinstance(value, enums[key]):
                value = enums[key](value)
            elif key == "output_folder" and value is not None:
                value = Path(value)
            converted[key] = value
        return cls(**converted)
