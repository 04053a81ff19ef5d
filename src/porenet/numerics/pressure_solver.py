"""Pressure solver for conductance networks.

The unknowns are the pressures of the active, open nodes. Mass conservation at every
such node gives a symmetric positive definite system once each connected component
of the conducting network is anchored by a boundary pore. Two kinds of boundary
conditions are supported:

    - constant pressure: the inlet and outlet boundaries are held at given pressures,
    - constant flow rate: the outlet boundary is held at zero pressure, and the
      total rate is injected through the inlet pores proportionally to their volume.

Components that cannot carry flow under the boundary condition (no boundary
contact, or, for a constant flow rate, no outlet contact) are removed from the
system, get the reference pressure and zero flow.

A pore carries the flow ``q = g (p_in - p_out - pc)``, positive from ``node_in`` to
``node_out``, where ``pc`` is the capillary pressure jump across the pore. Boundary
pores use the boundary pressure in place of the missing node.

"""

from __future__ import annotations

import logging
import time

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

from porenet.network import network_operations
from porenet.network.clustering import ClusterKind, cluster_elements
from porenet.network.network_model import NetworkModel, Phase
from porenet.params.simulation_config import LinearSolverChoice, SimulationConfig
from porenet.utils.errors import InconsistentBoundaryConditionError
from porenet.utils.logging import time_logger

__all__ = ["PressureSolver"]

logger = logging.getLogger(__name__)

module_sections = ["solver"]


class PressureSolver:
    """Assembly and solution of the network pressure system.

    Conductivities, active flags and capillary pressures are read from the network;
    node pressures and element flows are written back to it.

    Parameters:
        network: The network to solve on.
        config: Configuration selecting the linear solver.

    """

    def __init__(self, network: NetworkModel, config: SimulationConfig) -> None:
        self.network = network
        self.config = config
        self.outlet_flow: float = 0.0
        """Total flow leaving through the outlet pores in the last solve."""
        self.num_unknowns: int = 0
        """Size of the last assembled system."""

    # ------------------------------------------------------------------
    # Public interface

    def solve_constant_pressure(
        self, pressure_in: float = 1.0, pressure_out: float = 0.0
    ) -> float:
        """Solve with fixed inlet and outlet pressures.

        Parameters:
            pressure_in: Inlet boundary pressure.
            pressure_out: Outlet boundary pressure, also the reference pressure of
                isolated components.

        Returns:
            The total outlet flow.

        """
        return self._solve(pressure_in, pressure_out, flow_rate=None)

    def solve_constant_flow_rate(self, flow_rate: float | None = None) -> float:
        """Solve with a fixed total injection rate and the outlet at zero pressure.

        Parameters:
            flow_rate: Total rate. Defaults to ``config.flow_rate``.

        Raises:
            InconsistentBoundaryConditionError: If a nonzero rate is demanded but
                no conducting path connects the inlet to the outlet.

        Returns:
            The total outlet flow.

        """
        if flow_rate is None:
            flow_rate = self.config.flow_rate
        return self._solve(0.0, 0.0, flow_rate=flow_rate)

    def delta_p(self) -> float:
        """Mean pressure of the nodes behind the active inlet pores minus that of
        the nodes in front of the active outlet pores."""
        network = self.network
        inlet = network.inlet_pores
        inlet = inlet[network.active[inlet]]
        outlet = network.outlet_pores
        outlet = outlet[network.active[outlet]]
        if inlet.size == 0 or outlet.size == 0:
            return 0.0
        p_in = network.pressure[network.pore_nodes[inlet, 1]].mean()
        p_out = network.pressure[network.pore_nodes[outlet, 0]].mean()
        return float(p_in - p_out)

    @time_logger(sections=module_sections)
    def calculate_permeability_and_porosity(self) -> tuple[float, float]:
        """Absolute permeability and porosity of the network.

        Single-phase flow at unit viscosity is solved under a unit pressure drop.
        The outlet flow is stored as the normalisation of relative permeabilities.

        Returns:
            Permeability [m^2] and porosity.

        """
        network = self.network
        saved_viscosity = network.viscosity.copy()
        saved_active = network.active.copy()
        saved_capillary_pressure = network.capillary_pressure.copy()
        saved_conductivity = network.conductivity.copy()

        try:
            network.viscosity = np.ones(network.num_elements)
            network.capillary_pressure = np.zeros(network.num_elements)
            network.active = ~network.closed
            network_operations.assign_conductivities(network, self.config)
            flow = self.solve_constant_pressure(1.0, 0.0)
        finally:
            network.viscosity = saved_viscosity
            network.active = saved_active
            network.capillary_pressure = saved_capillary_pressure
            network.conductivity = saved_conductivity

        length_x, length_y, length_z = network.domain_lengths
        network.normalised_flow = flow
        network.absolute_permeability = flow * length_x / (length_y * length_z)
        network.porosity = network.total_network_volume / (
            length_x * length_y * length_z
        )
        logger.info(
            f"Absolute permeability {network.absolute_permeability:.4e} m^2, "
            f"porosity {network.porosity:.4f}"
        )
        return network.absolute_permeability, network.porosity

    @time_logger(sections=module_sections)
    def calculate_relative_permeabilities(self) -> tuple[float, float]:
        """Oil and water relative permeabilities of the current fluid distribution.

        Each phase is solved under a unit pressure drop over its spanning conductor
        cluster, films included, and its flow scaled by the phase viscosity is
        normalised by the single-phase flow.

        Returns:
            The relative permeabilities of oil and water, zero for a phase that
            does not span the network.

        """
        network = self.network
        if network.normalised_flow <= 0:
            self.calculate_permeability_and_porosity()
        if network.normalised_flow <= 0:
            logger.warning("No single-phase flow through the network; kr set to zero")
            return 0.0, 0.0

        saved_viscosity = network.viscosity.copy()
        saved_active = network.active.copy()
        saved_flow = network.flow.copy()
        saved_pressure = network.pressure.copy()
        saved_capillary_pressure = network.capillary_pressure.copy()
        saved_conductivity = network.conductivity.copy()

        relative_permeabilities = []
        try:
            network.capillary_pressure = np.zeros(network.num_elements)
            network_operations.assign_viscosities(network, self.config)
            for phase, viscosity in (
                (Phase.OIL, self.config.oil_viscosity),
                (Phase.WATER, self.config.water_viscosity),
            ):
                spanning = network_operations.assign_phase_conductivities(
                    network, self.config, phase
                )
                if spanning:
                    flow = self.solve_constant_pressure(1.0, 0.0)
                    relative_permeabilities.append(
                        flow * viscosity / network.normalised_flow
                    )
                else:
                    relative_permeabilities.append(0.0)
        finally:
            network.viscosity = saved_viscosity
            network.active = saved_active
            network.flow = saved_flow
            network.pressure = saved_pressure
            network.capillary_pressure = saved_capillary_pressure
            network.conductivity = saved_conductivity
        kro, krw = relative_permeabilities
        logger.debug(f"Relative permeabilities kro={kro:.4e}, krw={krw:.4e}")
        return kro, krw

    # ------------------------------------------------------------------
    # Assembly and solution

    def _conducting_elements(self) -> tuple[np.ndarray, np.ndarray]:
        """Masks of the nodes entering the system and the pores conducting flow."""
        network = self.network
        solvable_nodes = network.is_node & network.active & ~network.closed
        node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]
        pores = network.active[: network.num_pores] & ~network.closed[: network.num_pores]
        pores &= (node_in < 0) | solvable_nodes[np.maximum(node_in, 0)]
        pores &= (node_out < 0) | solvable_nodes[np.maximum(node_out, 0)]
        return solvable_nodes, pores

    @time_logger(sections=module_sections)
    def _solve(
        self, pressure_in: float, pressure_out: float, flow_rate: float | None
    ) -> float:
        network = self.network
        num_pores = network.num_pores
        node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]

        solvable_nodes, conducting = self._conducting_elements()
        inlet_pores = conducting & (node_in < 0)
        outlet_pores = conducting & (node_out < 0)

        # Connected components of the conducting network and their boundary contact.
        mask = solvable_nodes.copy()
        mask[:num_pores] = conducting
        registry = cluster_elements(network, mask, ClusterKind.ACTIVE)
        network.clusters[ClusterKind.ACTIVE] = registry
        labels = registry.labels
        num_clusters = registry.num_clusters
        touches_inlet = np.zeros(num_clusters, dtype=bool)
        touches_outlet = np.zeros(num_clusters, dtype=bool)
        touches_inlet[labels[:num_pores][inlet_pores]] = True
        touches_outlet[labels[:num_pores][outlet_pores]] = True

        if flow_rate is None:
            solved_clusters = touches_inlet | touches_outlet
            reference = pressure_out
        else:
            solved_clusters = touches_outlet
            reference = 0.0
        in_system = (labels >= 0) & solved_clusters[np.maximum(labels, 0)]

        injection = np.zeros(num_pores)
        if flow_rate is not None:
            injecting = inlet_pores & in_system[:num_pores]
            injecting_volume = network.volume[:num_pores][injecting].sum()
            if flow_rate != 0 and injecting_volume <= 0:
                raise InconsistentBoundaryConditionError(
                    f"Cannot inject a flow rate of {flow_rate:.3e} m^3/s: no "
                    "conducting path connects the inlet to the outlet"
                )
            if injecting_volume > 0:
                injection[injecting] = (
                    network.volume[:num_pores][injecting] / injecting_volume * flow_rate
                )

        unknowns = np.flatnonzero(solvable_nodes & in_system)
        network.rank[:] = -1
        network.rank[unknowns] = np.arange(unknowns.size)
        self.num_unknowns = unknowns.size

        network.pressure[network.is_node] = reference
        if unknowns.size > 0:
            matrix, rhs = self._assemble(
                conducting & in_system[:num_pores],
                injection,
                pressure_in,
                pressure_out,
                flow_rate is None,
            )
            network.pressure[unknowns] = self._solve_linear_system(
                matrix, rhs, network.pressure[unknowns]
            )

        self._update_flows(
            conducting & in_system[:num_pores],
            injection,
            pressure_in,
            pressure_out,
            flow_rate is None,
        )
        self.outlet_flow = float(network.flow[:num_pores][outlet_pores].sum())
        logger.debug(
            f"Solved {unknowns.size} node pressures, "
            f"{num_clusters - int(solved_clusters.sum())} isolated components, "
            f"outlet flow {self.outlet_flow:.6e}"
        )
        return self.outlet_flow

    def _assemble(
        self,
        pores: np.ndarray,
        injection: np.ndarray,
        pressure_in: float,
        pressure_out: float,
        fixed_pressure: bool,
    ) -> tuple[sps.csr_matrix, np.ndarray]:
        network = self.network
        rank = network.rank
        num_unknowns = self.num_unknowns
        g = network.conductivity[: network.num_pores]
        pc = network.capillary_pressure[: network.num_pores]
        node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]

        internal = pores & (node_in >= 0) & (node_out >= 0)
        inlet = pores & (node_in < 0)
        outlet = pores & (node_out < 0)

        a = rank[node_in[internal]]
        b = rank[node_out[internal]]
        g_int = g[internal]
        rows = np.concatenate((a, b, a, b))
        cols = np.concatenate((a, b, b, a))
        data = np.concatenate((g_int, g_int, -g_int, -g_int))

        rhs = np.zeros(num_unknowns)
        np.add.at(rhs, a, g_int * pc[internal])
        np.add.at(rhs, b, -g_int * pc[internal])

        n_out = rank[node_in[outlet]]
        rows = np.concatenate((rows, n_out))
        cols = np.concatenate((cols, n_out))
        data = np.concatenate((data, g[outlet]))
        np.add.at(rhs, n_out, g[outlet] * pressure_out)

        n_in = rank[node_out[inlet]]
        if fixed_pressure:
            rows = np.concatenate((rows, n_in))
            cols = np.concatenate((cols, n_in))
            data = np.concatenate((data, g[inlet]))
            np.add.at(rhs, n_in, g[inlet] * pressure_in)
        else:
            np.add.at(rhs, n_in, injection[inlet])

        matrix = sps.csr_matrix(
            (data, (rows, cols)), shape=(num_unknowns, num_unknowns)
        )
        return matrix, rhs

    def _solve_linear_system(
        self, matrix: sps.csr_matrix, rhs: np.ndarray, initial_guess: np.ndarray
    ) -> np.ndarray:
        """Solve the symmetric positive definite pressure system.

        The direct choice uses the sparse LU factorization of
        ``scipy.sparse.linalg.spsolve`` rather than a Cholesky factorization, which
        scipy does not provide for sparse matrices. Both give the same solution for
        the SPD system. The iterative choice runs Jacobi-preconditioned conjugate
        gradients, warm started from the previous pressures.

        Parameters:
            matrix: The system matrix over the unknown node pressures.
            rhs: The right-hand side.
            initial_guess: Start vector of the iterative solver.

        Raises:
            ValueError: For an unknown solver choice or illegal input to the
                conjugate gradient solver.

        Returns:
            The node pressures.

        """
        # Conductances are tiny in SI units; scale to unit diagonal magnitude.
        scaling = matrix.diagonal().max()
        matrix = matrix / scaling
        rhs = rhs / scaling

        solver = self.config.solver
        tic = time.time()
        if solver == LinearSolverChoice.DIRECT:
            solution = spla.spsolve(matrix.tocsc(), rhs)
        elif solver == LinearSolverChoice.CONJUGATE_GRADIENT:
            preconditioner = sps.diags(1.0 / matrix.diagonal())
            solution, info = spla.cg(
                matrix,
                rhs,
                x0=initial_guess,
                rtol=self.config.cg_tolerance,
                atol=0.0,
                maxiter=self.config.cg_max_iterations,
                M=preconditioner,
            )
            if info > 0:
                logger.warning(
                    f"Conjugate gradients did not converge in {info} iterations"
                )
            elif info < 0:
                raise ValueError("Illegal input to the conjugate gradient solver")
        else:
            raise ValueError(f"Unknown linear solver {solver}")
        logger.debug(f"Solved linear system in {time.time() - tic:.2e} seconds")
        return np.atleast_1d(solution)

    def _update_flows(
        self,
        pores: np.ndarray,
        injection: np.ndarray,
        pressure_in: float,
        pressure_out: float,
        fixed_pressure: bool,
    ) -> None:
        network = self.network
        num_pores = network.num_pores
        p = network.pressure
        g = network.conductivity[:num_pores]
        node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]
        p_in = np.where(node_in >= 0, p[np.maximum(node_in, 0)], pressure_in)
        p_out = np.where(node_out >= 0, p[np.maximum(node_out, 0)], pressure_out)

        internal = (node_in >= 0) & (node_out >= 0)
        pc = np.where(internal, network.capillary_pressure[:num_pores], 0.0)
        flow = g * (p_in - p_out - pc)
        if not fixed_pressure:
            inlet = node_in < 0
            flow[inlet] = injection[inlet]
        flow[~pores] = 0.0

        network.flow[:] = 0.0
        network.flow[:num_pores] = flow

        # Node flow: total rate entering the node.
        forward = (flow > 0) & (node_out >= 0)
        backward = (flow < 0) & (node_in >= 0)
        np.add.at(network.flow, node_out[forward], flow[forward])
        np.add.at(network.flow, node_in[backward], -flow[backward])
