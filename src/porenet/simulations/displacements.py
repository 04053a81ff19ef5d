"""Displacement strategies of the steady-state cycle.

Each strategy parametrizes :class:`~porenet.simulations.invasion_percolation.
InvasionPercolation` with the rules of one displacement:

    - the invading and displaced phases,
    - the capillary pressure sweep (sign, radius factor and direction),
    - the candidate elements,
    - the snap-off and bulk invadability predicates,
    - the phase flip of an invaded element, including its films,
    - trapping of candidates, film volume updates and termination.

Entry pressures are ``c_e sigma cos(theta) / r`` for bulk (piston-like) invasion and
``sigma cos(theta) / r`` for snap-off, with ``c_e`` the entry-pressure coefficient
of the element. Drainage-type displacements (invasion by oil) invade once the
capillary pressure exceeds the entry pressure, imbibition-type displacements
(invasion by water) once it has dropped below.

"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

import numpy as np

import porenet as pn
from porenet.network import network_operations
from porenet.network.clustering import ClusterKind
from porenet.network.network_model import NetworkModel, Phase, Wettability

if TYPE_CHECKING:
    from porenet.simulations.invasion_percolation import InvasionPercolation

__all__ = [
    "DisplacementStrategy",
    "PrimaryDrainage",
    "SpontaneousImbibition",
    "ForcedWaterInjection",
    "SpontaneousOilInvasion",
    "SecondaryOilDrainage",
]

TOLERANCE = pn.CAPILLARY_PRESSURE_TOLERANCE


class DisplacementStrategy(abc.ABC):
    """Rules of one quasi-static displacement."""

    name: str
    invading_phase: Phase
    displaced_phase: Phase

    radius_factor: float
    """Factor ``f`` in ``Pc = sign f sigma / r``."""
    pressure_sign: float
    """Sign of the capillary pressure during the sweep."""
    radius_decreasing: bool
    """Whether the sweep walks the effective radius downwards."""

    @property
    def drainage(self) -> bool:
        """Invasion by oil: elements invade once ``Pc`` exceeds their threshold."""
        return self.invading_phase == Phase.OIL

    @property
    def invading_conductor(self) -> ClusterKind:
        if self.invading_phase == Phase.OIL:
            return ClusterKind.OIL_CONDUCTOR
        return ClusterKind.WATER_CONDUCTOR

    @property
    def displaced_conductor(self) -> ClusterKind:
        if self.displaced_phase == Phase.OIL:
            return ClusterKind.OIL_CONDUCTOR
        return ClusterKind.WATER_CONDUCTOR

    # ------------------------------------------------------------------
    # Set-up

    def initialize(self, simulation: InvasionPercolation) -> None:
        """Prepare the network before the sweep. Nothing by default."""

    def finalize(self, simulation: InvasionPercolation) -> None:
        """Restore network properties after the sweep. Nothing by default."""

    def pressure_extremes(self, network: NetworkModel, sigma: float) -> tuple:
        """Smallest and largest magnitudes of the thresholds met during the sweep."""
        open_elements = ~network.closed
        entry = np.abs(entry_pressure(network, sigma)[open_elements])
        return entry.min(), entry.max()

    @abc.abstractmethod
    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        """Mask of the elements that may be invaded."""

    # ------------------------------------------------------------------
    # Invasion rules

    def snap_off(
        self, simulation: InvasionPercolation, candidates: np.ndarray
    ) -> np.ndarray:
        """Mask over ``candidates`` of elements invaded by snap-off. None by
        default."""
        return np.zeros(candidates.size, dtype=bool)

    def bulk(self, simulation: InvasionPercolation, candidates: np.ndarray) -> np.ndarray:
        """Mask over ``candidates`` of elements invaded by piston-like invasion.

        An element qualifies if it is next to an invading-phase element whose
        conductor cluster reaches the inlet, or if it is an inlet pore. Its displaced
        phase must escape to the outlet, and the capillary pressure must have passed
        its entry pressure. Pore bodies are only reached through such a cluster,
        also on the inlet, and their entry pressure is divided by the number of
        neighbours filled with the displaced phase.
        """
        network = simulation.network
        sigma = simulation.config.ow_surface_tension

        invading = network.clusters[self.invading_conductor]
        feeding = (network.phase == self.invading_phase) & invading.element_inlet()
        connected = _count_neighbors(network, candidates, feeding) > 0
        inlet_pores = network.inlet[candidates] & network.is_pore[candidates]
        accessible = inlet_pores | connected

        displaced = network.clusters[self.displaced_conductor]
        escapes = displaced.element_outlet(candidates)

        entry = entry_pressure(network, sigma, candidates)
        entry = self.body_filling(network, candidates, entry)
        return accessible & escapes & self.threshold_passed(simulation.current_pc, entry)

    def body_filling(
        self, network: NetworkModel, candidates: np.ndarray, entry: np.ndarray
    ) -> np.ndarray:
        """Entry pressures of pore bodies; unchanged by default."""
        return entry

    def threshold_passed(self, pc: float, threshold: np.ndarray) -> np.ndarray:
        if self.drainage:
            return pc + TOLERANCE >= threshold
        return pc - TOLERANCE <= threshold

    @abc.abstractmethod
    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        """Flip invaded elements to the invading phase."""

    def new_candidates(
        self, simulation: InvasionPercolation, invaded: np.ndarray
    ) -> np.ndarray:
        """Elements added to the candidates after an invasion. None by default."""
        return np.zeros(0, dtype=int)

    def trapped(
        self, simulation: InvasionPercolation, candidates: np.ndarray
    ) -> np.ndarray:
        """Mask over ``candidates`` of elements whose displaced phase cannot reach
        the outlet."""
        registry = simulation.network.clusters[self.displaced_conductor]
        return ~registry.element_outlet(candidates)

    @abc.abstractmethod
    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        """Update film volumes and conductivities at the current pressure."""

    def terminated(self, simulation: InvasionPercolation) -> bool:
        """Variant-specific termination. Never by default."""
        return False


def entry_pressure(
    network: NetworkModel, sigma: float, elements: np.ndarray | slice = slice(None)
) -> np.ndarray:
    """Threshold capillary pressure of piston-like invasion."""
    return (
        network.entry_pressure_coefficient[elements]
        * sigma
        * np.cos(network.theta[elements])
        / network.radius[elements]
    )


def snap_off_pressure(
    network: NetworkModel, sigma: float, elements: np.ndarray | slice = slice(None)
) -> np.ndarray:
    """Threshold capillary pressure of snap-off."""
    return sigma * np.cos(network.theta[elements]) / network.radius[elements]


def _count_neighbors(
    network: NetworkModel, elements: np.ndarray, mask: np.ndarray
) -> np.ndarray:
    """Number of neighbours of each element selected by ``mask``."""
    rows = network.adjacency[elements].astype(int)
    return np.asarray(rows @ mask.astype(int)).ravel()


def _film_radius_squared(simulation: InvasionPercolation) -> float:
    return (simulation.config.ow_surface_tension / simulation.current_pc) ** 2


def _divide_by_neighbors(
    network: NetworkModel, candidates: np.ndarray, entry: np.ndarray, phase: Phase
) -> np.ndarray:
    """Pore-body filling: the entry pressure of a body is divided by the number of
    neighbours filled with ``phase``, and vanishes without such neighbours."""
    count = _count_neighbors(network, candidates, network.phase == phase)
    bodies = network.is_node[candidates]
    divided = np.where(count > 0, entry / np.maximum(count, 1), 0.0)
    return np.where(bodies, divided, entry)


class PrimaryDrainage(DisplacementStrategy):
    """Oil invades a water-filled, strongly water-wet network from the inlet.

    Parameters:
        final_swi: The displacement stops once the water saturation drops below
            this value. Defaults to ``config.final_water_saturation``.

    """

    name = "Primary Drainage"
    invading_phase = Phase.OIL
    displaced_phase = Phase.WATER
    radius_factor = 2.0
    pressure_sign = 1.0
    radius_decreasing = True

    def __init__(self, final_swi: float | None = None) -> None:
        self.final_swi = final_swi

    def initialize(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        network_operations.assign_water_wet_wettability(network)
        network_operations.fill_with_water(network)
        network_operations.assign_half_angles(network, simulation.config)
        network_operations.assign_films_stability(network)

        network.concentration[:] = 0.0
        for films in (
            network.water_film_volume,
            network.water_film_conductivity,
            network.oil_film_volume,
            network.oil_film_conductivity,
        ):
            films[:] = 0.0
        network.water_corner_activated[:] = False
        network.oil_layer_activated[:] = False
        network.effective_volume = network.volume.copy()
        if self.final_swi is None:
            self.final_swi = simulation.config.final_water_saturation

    def finalize(self, simulation: InvasionPercolation) -> None:
        network_operations.restore_wettability(simulation.network)
        network_operations.assign_films_stability(simulation.network)

    def pressure_extremes(self, network: NetworkModel, sigma: float) -> tuple:
        entry = entry_pressure(network, sigma)[~network.closed]
        return entry.min(), entry.max()

    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        return network.inlet & ~network.closed

    def bulk(self, simulation: InvasionPercolation, candidates: np.ndarray) -> np.ndarray:
        network = simulation.network
        entry = entry_pressure(network, simulation.config.ow_surface_tension, candidates)
        registry = network.clusters[ClusterKind.WATER_CONDUCTOR]
        return (simulation.current_pc + TOLERANCE >= entry) & registry.element_outlet(
            candidates
        )

    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        network.phase[elements] = Phase.OIL
        network.oil_conductor[elements] = True
        network.oil_fraction[elements] = 1.0
        network.water_fraction[elements] = 0.0
        films = network.water_can_flow_via_film[elements]
        network.water_corner_activated[elements] = films
        network.water_conductor[elements] = films

    def new_candidates(
        self, simulation: InvasionPercolation, invaded: np.ndarray
    ) -> np.ndarray:
        network = simulation.network
        neighbors = np.unique(network.adjacency[invaded].indices)
        return neighbors[network.phase[neighbors] == Phase.WATER]

    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        registry = network.clusters[ClusterKind.WATER_CONDUCTOR]
        films = np.flatnonzero(
            (network.phase == Phase.OIL)
            & network.water_corner_activated
            & registry.element_outlet()
        )
        r_squared = _film_radius_squared(simulation)
        length = network.length[films]
        volume = r_squared * network.film_area_coefficient[films] * length
        network.water_film_volume[films] = volume
        network.water_film_conductivity[films] = (
            r_squared * volume / length / (simulation.config.water_viscosity * length)
        )
        network.effective_volume[films] = network.volume[films] - volume

    def terminated(self, simulation: InvasionPercolation) -> bool:
        return simulation.current_sw < self.final_swi


class _WaterInvasion(DisplacementStrategy):
    """Shared rules of displacements in which water invades oil."""

    invading_phase = Phase.WATER
    displaced_phase = Phase.OIL

    def _oil_wet_water_films(self, simulation: InvasionPercolation) -> np.ndarray:
        """Water-filled oil-wet elements holding oil layers connected to the inlet
        water and to escaping oil."""
        network = simulation.network
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        return np.flatnonzero(
            (network.phase == Phase.WATER)
            & (network.wettability == Wettability.OIL_WET)
            & network.oil_layer_activated
            & water.element_inlet()
            & oil.element_outlet()
        )


class SpontaneousImbibition(_WaterInvasion):
    """Water imbibes water-wet elements while the capillary pressure decreases."""

    name = "Spontaneous Imbibition"
    radius_factor = 1.0
    pressure_sign = 1.0
    radius_decreasing = False

    def pressure_extremes(self, network: NetworkModel, sigma: float) -> tuple:
        open_elements = ~network.closed
        snap = np.abs(snap_off_pressure(network, sigma)[open_elements])
        entry = np.abs(entry_pressure(network, sigma)[open_elements])
        return snap.min(), entry.max()

    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        return (network.phase == Phase.OIL) & (
            network.wettability == Wettability.WATER_WET
        )

    def snap_off(
        self, simulation: InvasionPercolation, candidates: np.ndarray
    ) -> np.ndarray:
        network = simulation.network
        threshold = snap_off_pressure(
            network, simulation.config.ow_surface_tension, candidates
        )
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        return (
            network.is_pore[candidates]
            & (simulation.current_pc - TOLERANCE <= threshold)
            & network.water_corner_activated[candidates]
            & water.element_inlet(candidates)
            & oil.element_outlet(candidates)
        )

    def body_filling(
        self, network: NetworkModel, candidates: np.ndarray, entry: np.ndarray
    ) -> np.ndarray:
        return _divide_by_neighbors(network, candidates, entry, Phase.OIL)

    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        network.phase[elements] = Phase.WATER
        network.water_conductor[elements] = True
        network.oil_fraction[elements] = 0.0
        network.water_fraction[elements] = 1.0
        network.water_corner_activated[elements] = False
        network.water_film_volume[elements] = 0.0
        network.water_film_conductivity[elements] = pn.CLOSED_CONDUCTIVITY
        network.oil_conductor[elements] = False

    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        films = np.flatnonzero(
            (network.phase == Phase.OIL)
            & (network.wettability == Wettability.WATER_WET)
            & network.water_corner_activated
            & water.element_inlet()
            & oil.element_outlet()
        )
        r_squared = _film_radius_squared(simulation)
        length = network.length[films]
        volume = np.minimum(
            r_squared * network.film_area_coefficient[films] * length,
            (1 - 4 * np.pi * network.shape_factor[films]) * network.volume[films],
        )
        network.water_film_volume[films] = volume
        network.water_film_conductivity[films] = (
            r_squared * volume / length / (simulation.config.water_viscosity * length)
        )
        network.effective_volume[films] = network.volume[films] - volume


class ForcedWaterInjection(_WaterInvasion):
    """Water is forced into the remaining oil at negative capillary pressure."""

    name = "Forced Water Injection"
    radius_factor = 2.0
    pressure_sign = -1.0
    radius_decreasing = True

    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        return network.phase == Phase.OIL

    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        network.phase[elements] = Phase.WATER
        network.water_conductor[elements] = True
        network.oil_fraction[elements] = 0.0
        network.water_fraction[elements] = 1.0

        layers = network.oil_can_flow_via_film[elements]
        with_layers = elements[layers]
        network.oil_layer_activated[with_layers] = True
        network.oil_conductor[with_layers] = True

        without = elements[~layers]
        network.oil_conductor[without] = False
        network.water_corner_activated[without] = False
        network.water_film_volume[without] = 0.0
        network.water_film_conductivity[without] = pn.CLOSED_CONDUCTIVITY

    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        layers = self._oil_wet_water_films(simulation)
        r_squared = _film_radius_squared(simulation)
        length = network.length[layers]
        volume = np.minimum(
            r_squared * network.film_area_coefficient[layers] * length,
            (1 - 4 * np.pi * network.shape_factor[layers]) * network.volume[layers],
        )
        oil_volume = np.maximum(0.0, volume - network.water_film_volume[layers])
        network.oil_film_volume[layers] = oil_volume
        network.oil_film_conductivity[layers] = (
            r_squared * oil_volume / length / (simulation.config.oil_viscosity * length)
        )
        network.effective_volume[layers] = (
            network.volume[layers] - oil_volume - network.water_film_volume[layers]
        )


class _OilInvasion(DisplacementStrategy):
    """Shared rules of displacements in which oil invades water."""

    invading_phase = Phase.OIL
    displaced_phase = Phase.WATER

    def _water_wet_oil_films(self, simulation: InvasionPercolation) -> np.ndarray:
        network = simulation.network
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        return np.flatnonzero(
            (network.phase == Phase.OIL)
            & (network.wettability == Wettability.WATER_WET)
            & network.water_corner_activated
            & oil.element_inlet()
            & water.element_outlet()
        )

    def _fill_with_oil(self, network: NetworkModel, elements: np.ndarray) -> None:
        network.phase[elements] = Phase.OIL
        network.oil_conductor[elements] = True
        network.oil_fraction[elements] = 1.0
        network.water_fraction[elements] = 0.0
        network.oil_layer_activated[elements] = False
        network.oil_film_volume[elements] = 0.0
        network.oil_film_conductivity[elements] = pn.CLOSED_CONDUCTIVITY


class SpontaneousOilInvasion(_OilInvasion):
    """Oil spontaneously invades oil-wet elements at negative capillary
    pressure."""

    name = "Spontaneous Oil Invasion"
    radius_factor = 1.0
    pressure_sign = -1.0
    radius_decreasing = False

    def pressure_extremes(self, network: NetworkModel, sigma: float) -> tuple:
        open_elements = ~network.closed
        snap = np.abs(snap_off_pressure(network, sigma)[open_elements])
        entry = np.abs(entry_pressure(network, sigma)[open_elements])
        return snap.min(), entry.max()

    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        return (network.phase == Phase.WATER) & (
            network.wettability == Wettability.OIL_WET
        )

    def snap_off(
        self, simulation: InvasionPercolation, candidates: np.ndarray
    ) -> np.ndarray:
        network = simulation.network
        threshold = snap_off_pressure(
            network, simulation.config.ow_surface_tension, candidates
        )
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        return (
            network.is_pore[candidates]
            & (simulation.current_pc + TOLERANCE >= threshold)
            & network.oil_layer_activated[candidates]
            & oil.element_inlet(candidates)
            & water.element_outlet(candidates)
        )

    def body_filling(
        self, network: NetworkModel, candidates: np.ndarray, entry: np.ndarray
    ) -> np.ndarray:
        return _divide_by_neighbors(network, candidates, entry, Phase.WATER)

    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        self._fill_with_oil(network, elements)
        network.water_conductor[elements] = network.water_corner_activated[elements]

    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        water = network.clusters[ClusterKind.WATER_CONDUCTOR]
        oil = network.clusters[ClusterKind.OIL_CONDUCTOR]
        layers = np.flatnonzero(
            (network.phase == Phase.WATER)
            & (network.wettability == Wettability.OIL_WET)
            & network.oil_layer_activated
            & oil.element_inlet()
            & water.element_outlet()
        )
        r_squared = _film_radius_squared(simulation)
        length = network.length[layers]
        volume = np.minimum(
            r_squared * network.film_area_coefficient[layers] * length,
            (1 - 4 * np.pi * network.shape_factor[layers]) * network.volume[layers],
        )
        network.oil_film_volume[layers] = volume
        network.oil_film_conductivity[layers] = (
            r_squared * volume / length / (simulation.config.oil_viscosity * length)
        )
        network.effective_volume[layers] = (
            network.volume[layers] - volume - network.water_film_volume[layers]
        )


class SecondaryOilDrainage(_OilInvasion):
    """Oil is forced back into water-filled elements at positive capillary
    pressure."""

    name = "Secondary Oil Drainage"
    radius_factor = 2.0
    pressure_sign = 1.0
    radius_decreasing = True

    def initial_candidates(self, network: NetworkModel) -> np.ndarray:
        return network.phase == Phase.WATER

    def fill(self, network: NetworkModel, elements: np.ndarray) -> None:
        self._fill_with_oil(network, elements)
        corners = network.water_corner_activated[elements] | (
            network.water_can_flow_via_film[elements]
        )
        network.water_corner_activated[elements] = corners
        network.water_conductor[elements] = corners

    def adjust_film_volumes(self, simulation: InvasionPercolation) -> None:
        network = simulation.network
        films = self._water_wet_oil_films(simulation)
        r_squared = _film_radius_squared(simulation)
        length = network.length[films]
        volume = np.minimum(
            r_squared * network.film_area_coefficient[films] * length,
            network.water_film_volume[films],
        )
        conductivity = np.minimum(
            r_squared * volume / length / (simulation.config.water_viscosity * length),
            network.water_film_conductivity[films],
        )
        network.water_film_volume[films] = volume
        network.water_film_conductivity[films] = conductivity
        network.effective_volume[films] = network.volume[films] - volume
