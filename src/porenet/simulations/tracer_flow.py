"""Tracer transport in the flowing oil of a network.

Oil carries the tracer. The pressure field is solved once at the configured flow
rate, restricted to the spanning oil cluster; pores touching a water-filled node do
not conduct. Concentrations are then advanced by an explicit upwind scheme with
diffusion between neighbouring oil elements:

    c_new = c + dt (m_in - |q| c) / V + dt (sum_j w_ij c_j - c sum_j w_ij),

where ``m_in`` is the tracer mass flowing in, and ``w_ij = D / min(V_i / L_i,
V_j / L_j)`` the diffusive weight of the oil neighbours ``j``. Inlet pores inject
unit concentration. Nodes mix the tracer of all pores flowing into them; pores take
the mixture of their upstream node. The step

    dt = min 1 / (|q| / V + sum_j w_ij)

over the spanning oil keeps every update a convex combination of old
concentrations.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sps

import porenet as pn
from porenet.network import network_operations
from porenet.network.network_model import NetworkModel, Phase
from porenet.params.simulation_config import SimulationConfig
from porenet.simulations.simulation import Simulation
from porenet.utils.errors import ConcentrationOutOfRangeError
from porenet.utils.logging import time_logger
from porenet.viz.recorders import Recorder

__all__ = ["TracerFlow"]

logger = logging.getLogger(__name__)

module_sections = ["simulations"]

FLOW_THRESHOLD = 1e-30
"""Flows below this magnitude carry no tracer."""
CONCENTRATION_TOLERANCE = (-1e-5, 1.0001)
PV_OUTPUT_INCREMENT = 0.01
"""Injected pore volumes between two outputs."""


class TracerFlow(Simulation):
    """Explicit tracer transport at a constant flow rate.

    Parameters:
        network: The network.
        config: Configuration providing the flow rate, the simulated time or
            injected pore volumes and the diffusion coefficient.
        recorder: Receiver of network states.

    """

    name = "Tracer Flow"

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
        """Physical time to simulate [s]."""
        self.flow_velocity: float = 0.0
        """Darcy velocity at the inlet [m/day]."""

        self.carrier = np.zeros(network.num_elements, dtype=bool)
        """Oil elements of a spanning oil cluster, whose concentration evolves."""
        self.diffusion: sps.csr_matrix = sps.csr_matrix(
            (network.num_elements, network.num_elements)
        )
        """Diffusive weights between neighbouring oil elements."""
        self._output_counter = 0.0

    @property
    def progress(self) -> int:
        if self.simulation_time <= 0:
            return 100
        return int(min(self.time_so_far / self.simulation_time, 1.0) * 100)

    @property
    def status(self) -> str:
        return (
            f"Tracer Flow Simulation: Flow Velocity (m/day): {self.flow_velocity:.2f} "
            f"/ Injected PVs: {self.injected_pvs:.2f}"
        )

    def run(self) -> None:
        self.initialize()
        while not self.interrupted and self.time_so_far < self.simulation_time:
            self.update_concentrations()
            self.update_variables()
            self.write_outputs()
            self.update_listeners()

    def initialize(self) -> None:
        """Initial fluid distribution, flow field and time step."""
        network = self.network
        config = self.config
        network_operations.set_initial_water_saturation(network, config)
        network.concentration[:] = 0.0
        network.capillary_pressure[:] = 0.0
        network.oil_fraction = (network.phase == Phase.OIL).astype(float)
        network.water_fraction = (network.phase == Phase.WATER).astype(float)

        if config.override_by_injected_pvs:
            self.simulation_time = (
                network.total_network_volume * config.injected_pvs / config.flow_rate
            )
        else:
            self.simulation_time = config.simulation_time
        self.time_so_far = 0.0
        self.injected_pvs = 0.0
        self._output_counter = 0.0
        if network.inlet_pores_area > 0:
            self.flow_velocity = config.flow_rate / network.inlet_pores_area * 86400

        self.fetch_non_flowing_elements()
        self.solve_pressure_field()
        self.calculate_time_step()
        logger.info(
            f"Tracer flow over {int(self.carrier.sum())} oil elements, "
            f"time step {self.time_step:.4e} s, "
            f"simulated time {self.simulation_time:.4e} s"
        )

    def fetch_non_flowing_elements(self) -> None:
        """Deactivate water, trapped oil and pores attached to water-filled nodes."""
        network = self.network
        registry = self.clustering.cluster_oil_elements()
        oil = network.phase == Phase.OIL
        self.carrier = oil & registry.element_spanning()

        water = network.phase == Phase.WATER
        node_in, node_out = network.node_in, network.node_out
        water_end = ((node_in >= 0) & water[np.maximum(node_in, 0)]) | (
            (node_out >= 0) & water[np.maximum(node_out, 0)]
        )
        active = self.carrier.copy()
        active[: network.num_pores] &= ~water_end
        network.active = active & ~network.closed

        # Diffusion acts between any two neighbouring oil elements.
        rows, cols = network.adjacency.nonzero()
        pairs = oil[rows] & oil[cols]
        rows, cols = rows[pairs], cols[pairs]
        with np.errstate(divide="ignore", invalid="ignore"):
            section = network.volume / network.length
        weights = self.config.tracer_diffusion_coefficient / np.minimum(
            section[rows], section[cols]
        )
        self.diffusion = sps.csr_matrix(
            (weights, (rows, cols)), shape=(network.num_elements, network.num_elements)
        )

    def solve_pressure_field(self) -> None:
        network_operations.assign_viscosities(self.network, self.config)
        network_operations.assign_conductivities(self.network, self.config)
        self.solver.solve_constant_flow_rate(self.config.flow_rate)

    def calculate_time_step(self) -> None:
        """Stability bound of the explicit scheme over the spanning oil."""
        network = self.network
        diffusion_sum = np.asarray(self.diffusion.sum(axis=1)).ravel()
        with np.errstate(divide="ignore", invalid="ignore"):
            rate = np.abs(network.flow) / network.volume + diffusion_sum
        valid = self.carrier & (rate > FLOW_THRESHOLD)
        self.time_step = (
            float(np.min(1.0 / rate[valid])) if np.any(valid) else pn.TIME_STEP_SENTINEL
        )

    def _node_mass_inflow(self) -> np.ndarray:
        """Tracer mass flowing into every node from its active oil pores."""
        network = self.network
        num_pores = network.num_pores
        flow = network.flow[:num_pores]
        concentration = network.concentration[:num_pores]
        node_in, node_out = network.node_in, network.node_out

        feeding = (network.phase[:num_pores] == Phase.OIL) & network.active[:num_pores]
        forward = feeding & (flow > FLOW_THRESHOLD) & (node_out >= 0)
        backward = feeding & (flow < -FLOW_THRESHOLD) & (node_in >= 0)

        mass = np.zeros(network.num_elements)
        np.add.at(
            mass, node_out[forward], concentration[forward] * np.abs(flow[forward])
        )
        np.add.at(
            mass, node_in[backward], concentration[backward] * np.abs(flow[backward])
        )
        mass[:num_pores] = 0.0
        return mass

    def _pore_inflow(self) -> tuple[np.ndarray, np.ndarray]:
        """Upwind mass and flow entering every pore."""
        network = self.network
        num_pores = network.num_pores
        flow = network.flow[:num_pores]
        abs_flow = np.abs(flow)
        active = network.active[:num_pores]
        node_in, node_out = network.node_in, network.node_out
        oil = network.phase == Phase.OIL

        mass_in = np.zeros(num_pores)
        flow_in = np.zeros(num_pores)
        inlet = node_in < 0
        outlet = (node_out < 0) & ~inlet
        internal = ~inlet & ~outlet
        flowing = (abs_flow > FLOW_THRESHOLD) & active

        injecting = inlet & flowing
        mass_in[injecting] = abs_flow[injecting]
        flow_in[injecting] = abs_flow[injecting]

        upstream = np.full(num_pores, -1)
        upstream[outlet] = node_in[outlet]
        forward = internal & (flow > FLOW_THRESHOLD)
        backward = internal & (flow < -FLOW_THRESHOLD)
        upstream[forward] = node_in[forward]
        upstream[backward] = node_out[backward]
        upstream_oil = (upstream >= 0) & oil[np.maximum(upstream, 0)]
        from_node = flowing & (upstream >= 0) & (outlet | upstream_oil)
        mass_in[from_node] = network.mass_flow[upstream[from_node]]
        flow_in[from_node] = network.flow[upstream[from_node]]

        blocked = (abs_flow < FLOW_THRESHOLD) | (flow_in < FLOW_THRESHOLD) | ~active
        mass_in[blocked] = 0.0
        flow_in[blocked] = 1.0
        return mass_in, flow_in

    @time_logger(sections=module_sections)
    def update_concentrations(self) -> None:
        """Advance the concentrations of the spanning oil by one time step.

        Raises:
            ConcentrationOutOfRangeError: If a concentration leaves [0, 1] beyond
                tolerance. The run is interrupted first.

        """
        network = self.network
        num_pores = network.num_pores
        dt = self.time_step
        concentration = network.concentration
        abs_flow = np.abs(network.flow)

        carrier_nodes = self.carrier.copy()
        carrier_nodes[:num_pores] = False
        mass = self._node_mass_inflow()
        network.mass_flow = np.where(carrier_nodes, mass, 0.0)

        inflow = np.zeros(network.num_elements)
        inflow[num_pores:] = network.mass_flow[num_pores:]
        mass_in, flow_in = self._pore_inflow()
        inflow[:num_pores] = abs_flow[:num_pores] / flow_in * mass_in

        diffusion_in = self.diffusion @ concentration
        diffusion_out = concentration * np.asarray(self.diffusion.sum(axis=1)).ravel()
        with np.errstate(divide="ignore", invalid="ignore"):
            updated = (
                concentration
                + (inflow - abs_flow * concentration) * dt / network.volume
                + diffusion_in * dt
                - diffusion_out * dt
            )
        network.concentration = np.where(self.carrier, updated, concentration)

        low, high = CONCENTRATION_TOLERANCE
        violation = self.carrier & (
            (network.concentration < low) | (network.concentration > high)
        )
        if np.any(violation):
            element = int(np.flatnonzero(violation)[0])
            self.interrupt()
            raise ConcentrationOutOfRangeError(
                element, float(network.concentration[element])
            )

    def update_variables(self) -> None:
        self.time_so_far += self.time_step
        self.injected_pvs += (
            self.time_step * self.config.flow_rate / self.network.total_network_volume
        )

    def write_outputs(self) -> None:
        if abs(self._output_counter - self.injected_pvs) < PV_OUTPUT_INCREMENT:
            return
        self.record_network_state()
        self._output_counter = self.injected_pvs
