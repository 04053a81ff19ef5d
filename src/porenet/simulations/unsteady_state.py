"""Unsteady-state water injection.

Water is injected at a constant rate into an oil-filled network (with its initial
water saturation), starting from a water channel along the inlet. The displacement
is advanced explicitly in time:

    1. Trapping. Water is trapped unless its cluster reaches the inlet, oil unless
       its cluster reaches the outlet. Oil pores with a water interface stay mobile
       if they reach the outlet through an oil-filled endpoint.
    2. Capillary pressures. Oil pores with an oil/water interface get the entry
       pressure of the pore, water pores next to an oil node the filling pressure
       of that node.
    3. Pressure. The system is solved at the injection rate. Pores outside the
       spanning active cluster and pores where oil would flow into the water
       (counter-current flow) are closed until the flow field is consistent.
    4. Time step. The time needed to fill the first interface element with water,
       capped at one tenth of the pore volume once water spans the network.
    5. Fractions. Interface elements take up the water flowing into them. An
       element whose water fraction reaches one flips to water, which triggers a
       new trapping analysis and pressure solve.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import porenet as pn
from porenet.network import network_operations
from porenet.network.clustering import ClusterKind
from porenet.network.network_model import NetworkModel, Phase
from porenet.params.simulation_config import SimulationConfig
from porenet.simulations.simulation import Simulation
from porenet.utils.errors import SaturationOutOfRangeError
from porenet.utils.logging import time_logger
from porenet.viz.recorders import Recorder

__all__ = ["UnsteadyStateFlow"]

logger = logging.getLogger(__name__)

module_sections = ["simulations"]

FLOW_THRESHOLD = 1e-50
WATER_FRACTION_THRESHOLD = 1e-20
"""Water fraction above which a node counts as water-bearing for counter-current
flow."""
FLIP_TOLERANCE = 1e-8
"""An element flips to water once its water fraction exceeds ``1 - tol``."""
SATURATION_TOLERANCE = 1e-5
PV_OUTPUT_INCREMENT = 0.01


class UnsteadyStateFlow(Simulation):
    """Two-phase unsteady-state displacement of oil by water.

    Parameters:
        network: The network.
        config: Configuration providing the injection rate, the simulated time or
            injected pore volumes, fluid properties and the initial saturation.
        recorder: Receiver of saturation, fractional flow and pressure drop
            samples.

    """

    name = "Unsteady-State Flow"

    def __init__(
        self,
        network: NetworkModel,
        config: SimulationConfig,
        recorder: Optional[Recorder] = None,
    ) -> None:
        super().__init__(network, config, recorder)
        self.time_step: float = pn.TIME_STEP_SENTINEL
        self.time_so_far: float = 0.0
        self.injected_pvs: float = 0.0
        self.simulation_time: float = config.simulation_time
        self.current_sw: float = 0.0
        self.capillary_number: float = 0.0
        self.flow_velocity: float = 0.0
        """Darcy velocity at the inlet [m/day]."""

        self.update_pressure = True
        """Whether the fluid distribution changed since the last pressure solve."""
        self.pores_to_check = np.zeros(0, dtype=int)
        """Oil pores adjacent to mobile water."""
        self.nodes_to_check = np.zeros(0, dtype=int)
        """Oil nodes adjacent to mobile water pores."""
        self._output_counter = 0.0

    @property
    def progress(self) -> int:
        if self.simulation_time <= 0:
            return 100
        return int(min(self.time_so_far / self.simulation_time, 1.0) * 100)

    @property
    def status(self) -> str:
        return (
            "Two-Phase Unsteady-State Simulation: "
            f"Capillary Number (1e-5): {self.capillary_number * 1e5:.2f} / "
            f"Flow Velocity (m/day): {self.flow_velocity:.2f} / "
            f"Injected PVs: {self.injected_pvs:.2f} / Sw: {self.current_sw:.2f}"
        )

    def run(self) -> None:
        self.initialize()
        while not self.interrupted and self.time_so_far < self.simulation_time:
            self.time_integration_step()
            self.update_listeners()

    @time_logger(sections=module_sections)
    def time_integration_step(self) -> None:
        """One explicit step: flow field if needed, fractions, flags and outputs."""
        if self.update_pressure:
            self.fetch_trapped_elements()
            self.update_capillary_properties()
            self.solve_pressure_field()
            self.update_pressure = False
        self.calculate_time_step()
        self.update_fluid_fractions()
        self.update_terminal_flags()
        self.update_variables()
        self.write_outputs()

    # ------------------------------------------------------------------
    # Initialization

    def initialize(self) -> None:
        network = self.network
        config = self.config
        network_operations.set_initial_water_saturation(network, config)
        self.add_water_channel()
        self.set_initial_terminal_flags()

        if config.override_by_injected_pvs:
            self.simulation_time = (
                network.total_network_volume * config.injected_pvs / config.flow_rate
            )
        else:
            self.simulation_time = config.simulation_time
        self.time_so_far = 0.0
        self.injected_pvs = 0.0
        self._output_counter = 0.0
        self.update_pressure = True
        self.current_sw = network_operations.water_saturation_from_fractions(network)

        if network.inlet_pores_area > 0:
            inlet_flux = config.flow_rate / network.inlet_pores_area
            self.capillary_number = (
                config.water_viscosity * inlet_flux / config.ow_surface_tension
            )
            self.flow_velocity = inlet_flux * 86400
        logger.info(
            f"Unsteady-state injection at {config.flow_rate:.4e} m^3/s, initial "
            f"Sw={self.current_sw:.4f}, simulated time {self.simulation_time:.4e} s"
        )

    def _inlet_nodes(self) -> np.ndarray:
        """Mask of nodes on the inlet boundary or behind an inlet pore."""
        network = self.network
        inlet = network.inlet & network.is_node
        behind = network.node_out[network.inlet_pores]
        inlet[behind[behind >= 0]] = True
        return inlet & ~network.closed

    def add_water_channel(self) -> None:
        """Fill the inlet pores, the inlet nodes and the pores between two inlet
        nodes with water."""
        network = self.network
        num_pores = network.num_pores
        inlet_nodes = self._inlet_nodes()
        node_in, node_out = network.node_in, network.node_out
        internal = (node_in >= 0) & (node_out >= 0)
        between = (
            internal
            & inlet_nodes[np.maximum(node_in, 0)]
            & inlet_nodes[np.maximum(node_out, 0)]
        )
        channel = np.zeros(network.num_elements, dtype=bool)
        channel[:num_pores] = (node_in < 0) | between
        channel |= inlet_nodes
        network.phase[channel & ~network.closed] = Phase.WATER

    def set_initial_terminal_flags(self) -> None:
        network = self.network
        self.clustering.cluster_water_elements()
        network.concentration[:] = 0.0
        network.oil_fraction = (network.phase == Phase.OIL).astype(float)
        network.water_fraction = (network.phase == Phase.WATER).astype(float)

        pore_phase = network.phase[: network.num_pores]
        network.node_in_oil = pore_phase == Phase.OIL
        network.node_out_oil = network.node_in_oil.copy()
        network.node_in_water = pore_phase == Phase.WATER
        network.node_out_water = network.node_in_water.copy()

        water_nodes = network.is_node & (network.phase == Phase.WATER)
        self._mark_water_ends(water_nodes)

    def _mark_water_ends(self, nodes: np.ndarray) -> None:
        """Oil pores attached to the given nodes see water at that end.

        Parameters:
            nodes: ``shape=(num_elements,)`` Mask of the water-filled nodes.

        """
        network = self.network
        oil = network.phase[: network.num_pores] == Phase.OIL
        node_in, node_out = network.node_in, network.node_out
        at_in = oil & (node_in >= 0) & nodes[np.maximum(node_in, 0)]
        at_out = oil & (node_out >= 0) & nodes[np.maximum(node_out, 0)]
        network.node_in_oil[at_in] = False
        network.node_in_water[at_in] = True
        network.node_out_oil[at_out] = False
        network.node_out_water[at_out] = True

    # ------------------------------------------------------------------
    # Flow field

    def fetch_trapped_elements(self) -> None:
        """Trapped flags of both phases."""
        network = self.network
        num_pores = network.num_pores
        node_in, node_out = network.node_in, network.node_out

        water_registry = self.clustering.cluster_water_elements()

        pore_oil = network.phase[:num_pores] == Phase.OIL
        partially_filled = np.flatnonzero(
            pore_oil & (network.node_in_water | network.node_out_water)
        )
        network.phase[partially_filled] = Phase.TEMP

        water = network.phase == Phase.WATER
        network.water_trapped = water & ~water_registry.element_inlet()

        oil_registry = self.clustering.cluster_oil_elements()
        oil = network.phase == Phase.OIL
        network.oil_trapped = ~(oil & oil_registry.element_outlet())

        # Interface pores are mobile if their oil reaches the outlet directly or
        # through an oil-filled endpoint.
        node_oil_outlet = (network.phase == Phase.OIL) & oil_registry.element_outlet()
        p = partially_filled
        mobile = node_out[p] < 0
        mobile |= (
            network.node_in_oil[p]
            & (node_in[p] >= 0)
            & node_oil_outlet[np.maximum(node_in[p], 0)]
        )
        mobile |= (
            network.node_out_oil[p]
            & (node_out[p] >= 0)
            & node_oil_outlet[np.maximum(node_out[p], 0)]
        )
        network.oil_trapped[p[mobile]] = False
        network.phase[partially_filled] = Phase.OIL
        logger.debug(
            f"{int(np.sum(network.oil_trapped & (network.phase == Phase.OIL)))} "
            f"trapped oil and {int(network.water_trapped.sum())} trapped water "
            "elements"
        )

    def update_capillary_properties(self) -> None:
        """Conductivities, active flags, interface elements and capillary
        pressures."""
        network = self.network
        config = self.config
        num_pores = network.num_pores
        sigma = config.ow_surface_tension
        network_operations.assign_viscosities(network, config)
        network_operations.assign_conductivities(network, config)

        oil = network.phase == Phase.OIL
        water = network.phase == Phase.WATER
        trapped = (oil & network.oil_trapped) | (water & network.water_trapped)
        network.active = ~trapped & ~network.closed
        network.capillary_pressure[:] = 0.0

        node_in, node_out = network.node_in, network.node_out
        has_in, has_out = node_in >= 0, node_out >= 0
        safe_in, safe_out = np.maximum(node_in, 0), np.maximum(node_out, 0)
        internal = has_in & has_out
        mobile_water = water & ~network.water_trapped
        mobile_oil = oil & ~network.oil_trapped

        pores_oil = mobile_oil[:num_pores]
        near_water = (has_in & mobile_water[safe_in]) | (has_out & mobile_water[safe_out])
        self.pores_to_check = np.flatnonzero(pores_oil & near_water)

        pores_water = mobile_water[:num_pores]
        nodes = np.zeros(network.num_elements, dtype=bool)
        nodes[node_in[pores_water & has_in & mobile_oil[safe_in]]] = True
        nodes[node_out[pores_water & has_out & mobile_oil[safe_out]]] = True
        self.nodes_to_check = np.flatnonzero(nodes)

        pc = np.zeros(num_pores)
        pore_entry = (
            network.entry_pressure_coefficient[:num_pores]
            * sigma
            * np.cos(network.theta[:num_pores])
            / network.radius[:num_pores]
        )
        oil_to_water = internal & oil[safe_in] & water[safe_out]
        water_to_oil = internal & water[safe_in] & oil[safe_out]
        pc = np.where(pores_oil & oil_to_water, pore_entry, pc)
        pc = np.where(pores_oil & water_to_oil, -pore_entry, pc)

        filling = self._node_filling_pressure()
        pc = np.where(pores_water & oil_to_water, filling[safe_in], pc)
        pc = np.where(pores_water & water_to_oil, -filling[safe_out], pc)
        network.capillary_pressure[:num_pores] = pc

    def _node_filling_pressure(self) -> np.ndarray:
        """Pressure for water to fill each node from a water pore.

        Oil-wet nodes need the drainage entry pressure; in water-wet nodes the
        entry pressure is lowered by the number of oil-filled neighbours.
        """
        network = self.network
        sigma = self.config.ow_surface_tension
        theta = network.theta
        with np.errstate(divide="ignore", invalid="ignore"):
            entry = (
                network.entry_pressure_coefficient * sigma * np.cos(theta) / network.radius
            )
            oil_neighbors = np.asarray(
                network.adjacency.astype(int) @ (network.phase == Phase.OIL).astype(int)
            ).ravel()
            imbibition = entry - oil_neighbors * sigma / network.radius
        filling = np.zeros(network.num_elements)
        filling = np.where(theta > np.pi / 2, entry, filling)
        filling = np.where(theta < np.pi / 2, imbibition, filling)
        filling[network.closed] = 0.0
        return filling

    def solve_pressure_field(self) -> None:
        """Solve at the injection rate, closing pores until the flow field is free
        of isolated and counter-current pores."""
        network = self.network
        num_pores = network.num_pores
        node_in, node_out = network.node_in, network.node_out
        internal = (node_in >= 0) & (node_out >= 0)
        safe_in, safe_out = np.maximum(node_in, 0), np.maximum(node_out, 0)

        iterations = 0
        while True:
            iterations += 1
            registry = self.clustering.cluster_active_elements()
            pores = network.is_pore & network.active
            isolated = pores & ~registry.element_spanning()
            network.capillary_pressure[isolated] = 0.0
            network.active[isolated] = False

            self.solver.solve_constant_flow_rate(self.config.flow_rate)

            flow = network.flow[:num_pores]
            oil = network.phase == Phase.OIL
            water_bearing = network.water_fraction > WATER_FRACTION_THRESHOLD
            counter = internal & (
                ((flow > 0) & oil[safe_in] & water_bearing[safe_out])
                | ((flow < 0) & water_bearing[safe_in] & oil[safe_out])
            )
            counter |= (node_out < 0) & (flow < 0)
            counter &= network.active[:num_pores]
            if not np.any(counter):
                break
            closing = np.flatnonzero(counter)
            network.capillary_pressure[closing] = 0.0
            network.active[closing] = False
        logger.debug(f"Pressure field consistent after {iterations} solves")

    # ------------------------------------------------------------------
    # Saturation advance

    def _moving_interfaces(self) -> np.ndarray:
        network = self.network
        elements = np.concatenate((self.pores_to_check, self.nodes_to_check))
        moving = network.active[elements] & (
            np.abs(network.flow[elements]) > FLOW_THRESHOLD
        )
        return elements[moving]

    def calculate_time_step(self) -> None:
        network = self.network
        elements = self._moving_interfaces()
        self.time_step = pn.TIME_STEP_SENTINEL
        if elements.size > 0:
            steps = (
                network.volume[elements]
                * network.oil_fraction[elements]
                / np.abs(network.flow[elements])
            )
            self.time_step = float(steps.min())
        if self.clustering.is_water_spanning:
            one_tenth_pv = network.total_network_volume / self.config.flow_rate / 10
            self.time_step = min(self.time_step, one_tenth_pv)

    def update_fluid_fractions(self) -> None:
        """Advance the water fractions of the interface elements.

        Raises:
            SaturationOutOfRangeError: If a water fraction exceeds one beyond
                tolerance. The run is interrupted first.

        """
        network = self.network
        elements = self._moving_interfaces()
        if elements.size == 0:
            return
        incremental_water = np.abs(network.flow[elements]) * self.time_step
        self.current_sw += float(incremental_water.sum()) / network.total_network_volume

        water_fraction = (
            network.water_fraction[elements] + incremental_water / network.volume[elements]
        )
        if np.any(water_fraction > 1 + SATURATION_TOLERANCE):
            worst = int(np.argmax(water_fraction))
            self.interrupt()
            raise SaturationOutOfRangeError(
                int(elements[worst]), float(water_fraction[worst])
            )
        network.water_fraction[elements] = water_fraction
        network.oil_fraction[elements] = 1 - water_fraction

        flipped = elements[water_fraction > 1 - FLIP_TOLERANCE]
        if flipped.size > 0:
            network.phase[flipped] = Phase.WATER
            network.water_fraction[flipped] = 1.0
            network.oil_fraction[flipped] = 0.0
            self.update_pressure = True
            logger.debug(f"{flipped.size} elements filled with water")

    def update_terminal_flags(self) -> None:
        """Water and oil flags at the ends of pores after phase flips."""
        network = self.network
        water = network.phase == Phase.WATER
        water_nodes = network.is_node & water
        reconnected: list[int] = []

        pores = self.pores_to_check[water[self.pores_to_check]]
        for p in pores:
            node = -1
            if network.node_in_oil[p]:
                node = network.node_in[p]
            if network.node_out_oil[p]:
                node = network.node_out[p]
            network.node_in_oil[p] = False
            network.node_out_oil[p] = False
            network.node_in_water[p] = True
            network.node_out_water[p] = True
            if node >= 0 and water[node] and network.water_trapped[node]:
                reconnected.append(node)

        nodes = self.nodes_to_check[water[self.nodes_to_check]]
        if nodes.size > 0:
            mask = np.zeros(network.num_elements, dtype=bool)
            mask[nodes] = True
            self._mark_water_ends(mask)
            for node in nodes:
                for p in network.neighbors(node):
                    if water[p] and network.water_trapped[p]:
                        reconnected.append(p)

        # Formerly trapped water joined by the invading water.
        if reconnected:
            labels = network.clusters[ClusterKind.WATER].labels
            joined = np.unique(labels[reconnected])
            joined = joined[joined >= 0]
            self._mark_water_ends(water_nodes & np.isin(labels, joined))

    def update_variables(self) -> None:
        self.time_so_far += self.time_step
        self.injected_pvs += (
            self.time_step * self.config.flow_rate / self.network.total_network_volume
        )

    def write_outputs(self) -> None:
        if abs(self._output_counter - self.injected_pvs) < PV_OUTPUT_INCREMENT:
            return
        fw = network_operations.phase_flow(self.network, Phase.WATER) / (
            self.config.flow_rate
        )
        self.recorder.record_saturation(self.name, self.injected_pvs, self.current_sw)
        self.recorder.record_fractional_flow(self.name, self.injected_pvs, 1 - fw, fw)
        self.recorder.record_pressure_drop(
            self.name, self.injected_pvs, pn.pa_to_psi(self.solver.delta_p())
        )
        self.record_network_state()
        self._output_counter = self.injected_pvs
