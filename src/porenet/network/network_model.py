"""Module containing the pore-network data model.

A network consists of nodes (pore bodies) and pores (throats). Both are capillary
elements sharing geometric and simulation fields, which are stored column-wise:
every field is a numpy array indexed by the element id. Pores occupy the ids
``0 .. num_pores - 1``, nodes the ids ``num_pores .. num_elements - 1``.

Pores extend the shared record with two endpoint node ids, ``-1`` denoting a
missing endpoint. A pore without ``node_in`` connects the inlet boundary to
``node_out``; a pore without ``node_out`` connects ``node_in`` to the outlet
boundary. Positive pore flow runs from ``node_in`` to ``node_out``.

Nodes extend the shared record with coordinates, lattice indices, a solver rank and
a pressure.

The topology (endpoints, adjacency) is fixed at construction. Geometry is set by a
builder, followed by :meth:`NetworkModel.initialize_geometry`; all later mutation
is restricted to simulation fields.

"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Optional

import numpy as np
import scipy.sparse as sps

import porenet as pn
from porenet.utils.errors import NetworkPreconditionError

if TYPE_CHECKING:
    from porenet.network.clustering import ClusterKind, ClusterRegistry

__all__ = ["ElementKind", "Phase", "Wettability", "NetworkModel"]


class ElementKind(IntEnum):
    PORE = 0
    NODE = 1


class Phase(IntEnum):
    """Fluid occupying the bulk of an element."""

    OIL = 0
    WATER = 1
    TEMP = 2
    INVALID = 3


class Wettability(IntEnum):
    OIL_WET = 0
    WATER_WET = 1
    INVALID = 2


class NetworkModel:
    """Pore network with column-wise storage of element fields.

    Parameters:
        node_coordinates: ``shape=(num_nodes, 3)`` Absolute node coordinates.
        pore_nodes: ``shape=(num_pores, 2)`` Local node indices (0-based, within the
            node list) of the ``node_in`` and ``node_out`` endpoints of each pore,
            ``-1`` for a missing endpoint.
        node_indices: ``shape=(num_nodes, 3)`` Lattice indices of the nodes, only
            meaningful for regular lattices.
        inlet_nodes: Local indices of nodes lying on the inlet boundary.
        outlet_nodes: Local indices of nodes lying on the outlet boundary.
        domain_lengths: Extents of the sample in x, y and z. Computed from the node
            coordinates if not given.
        is_2d: Whether the network is two-dimensional.

    Raises:
        NetworkPreconditionError: If the topology is inconsistent.

    """

    def __init__(
        self,
        node_coordinates: np.ndarray,
        pore_nodes: np.ndarray,
        node_indices: Optional[np.ndarray] = None,
        inlet_nodes: Optional[np.ndarray] = None,
        outlet_nodes: Optional[np.ndarray] = None,
        domain_lengths: Optional[np.ndarray] = None,
        is_2d: bool = False,
    ) -> None:
        node_coordinates = np.atleast_2d(np.asarray(node_coordinates, dtype=float))
        pore_nodes = np.asarray(pore_nodes, dtype=int).reshape((-1, 2))

        self.num_nodes: int = node_coordinates.shape[0]
        """Number of nodes (pore bodies)."""
        self.num_pores: int = pore_nodes.shape[0]
        """Number of pores (throats)."""
        self.num_elements: int = self.num_nodes + self.num_pores
        """Total number of capillary elements."""

        self._check_topology(node_coordinates, pore_nodes)

        self.node_coordinates = node_coordinates
        """``shape=(num_nodes, 3)`` Node coordinates."""
        self.node_indices = (
            np.zeros((self.num_nodes, 3), dtype=int)
            if node_indices is None
            else np.asarray(node_indices, dtype=int)
        )
        """``shape=(num_nodes, 3)`` Lattice indices of the nodes."""
        self.is_2d = is_2d

        # Endpoints in element ids.
        self.pore_nodes: np.ndarray = np.where(
            pore_nodes >= 0, pore_nodes + self.num_pores, -1
        )
        """``shape=(num_pores, 2)`` Element ids of ``node_in`` and ``node_out``."""

        self.kind = np.full(self.num_elements, ElementKind.NODE, dtype=np.int8)
        """Discriminator between pores and nodes."""
        self.kind[: self.num_pores] = ElementKind.PORE

        self.adjacency: sps.csr_matrix = self._build_adjacency()
        """Symmetric element-element adjacency. Pores are adjacent to their
        endpoint nodes, nodes to the pores they connect."""

        # Boundary flags
        self.inlet = np.zeros(self.num_elements, dtype=bool)
        """Elements touching the inlet boundary."""
        self.outlet = np.zeros(self.num_elements, dtype=bool)
        """Elements touching the outlet boundary."""
        self.inlet[: self.num_pores] = self.pore_nodes[:, 0] < 0
        self.outlet[: self.num_pores] = self.pore_nodes[:, 1] < 0
        if inlet_nodes is not None:
            self.inlet[np.asarray(inlet_nodes, dtype=int) + self.num_pores] = True
        if outlet_nodes is not None:
            self.outlet[np.asarray(outlet_nodes, dtype=int) + self.num_pores] = True

        if domain_lengths is None:
            extent = node_coordinates.max(axis=0) - node_coordinates.min(axis=0)
            domain_lengths = extent
        self.domain_lengths = np.asarray(domain_lengths, dtype=float)
        """Extents of the sample in x, y and z."""

        # Geometry, set by the builder.
        n = self.num_elements
        self.radius = np.zeros(n)
        self.length = np.zeros(n)
        self.volume = np.zeros(n)
        self.shape_factor = np.zeros(n)
        self.shape_factor_constant = np.zeros(n)
        self.entry_pressure_coefficient = np.zeros(n)
        self.full_length = np.zeros(self.num_pores)
        """Centre-to-centre length of the pores."""
        self.node_in_length = np.zeros(self.num_pores)
        self.node_out_length = np.zeros(self.num_pores)

        # Wettability
        self.theta = np.zeros(n)
        """Current contact angle [rad]."""
        self.original_theta = np.zeros(n)
        """Contact angle backed up before primary drainage."""
        self.wettability = np.full(n, Wettability.WATER_WET, dtype=np.int8)

        self.closed = np.zeros(n, dtype=bool)
        """Elements removed from the network. See :meth:`close_elements`."""
        self.clusters: dict[ClusterKind, ClusterRegistry] = {}
        """Registries of the latest clustering pass of each kind."""

        # Aggregates, see network_operations.calculate_network_volume.
        self.total_pores_volume = 0.0
        self.total_nodes_volume = 0.0
        self.total_network_volume = 0.0
        self.inlet_pores_area = 0.0
        self.absolute_permeability = 0.0
        self.porosity = 0.0
        self.normalised_flow = 0.0
        """Single-phase outlet flow at unit pressure drop and viscosity."""

        self.reset_simulation_state()

    def __repr__(self) -> str:
        return (
            f"Pore network with {self.num_nodes} nodes and {self.num_pores} pores, "
            f"{self.inlet_pores.size} inlet and {self.outlet_pores.size} outlet "
            "pores"
        )

    def _check_topology(
        self, node_coordinates: np.ndarray, pore_nodes: np.ndarray
    ) -> None:
        if node_coordinates.shape[1] != 3:
            raise NetworkPreconditionError("Node coordinates must be three-dimensional")
        if self.num_pores == 0:
            raise NetworkPreconditionError("A network needs at least one pore")
        if np.any(pore_nodes < -1) or np.any(pore_nodes >= self.num_nodes):
            raise NetworkPreconditionError("Pore endpoints outside the node range")
        if np.any(np.all(pore_nodes < 0, axis=1)):
            raise NetworkPreconditionError("Pores must have at least one endpoint")
        if np.any((pore_nodes[:, 0] == pore_nodes[:, 1]) & (pore_nodes[:, 0] >= 0)):
            raise NetworkPreconditionError("Pores cannot connect a node to itself")

    def _build_adjacency(self) -> sps.csr_matrix:
        pores = np.tile(np.arange(self.num_pores), 2)
        nodes = np.concatenate((self.pore_nodes[:, 0], self.pore_nodes[:, 1]))
        present = nodes >= 0
        rows = np.concatenate((pores[present], nodes[present]))
        cols = np.concatenate((nodes[present], pores[present]))
        data = np.ones(rows.size, dtype=bool)
        adjacency = sps.csr_matrix(
            (data, (rows, cols)), shape=(self.num_elements, self.num_elements)
        )
        adjacency.sort_indices()
        return adjacency

    # ------------------------------------------------------------------
    # Element access

    @property
    def pores(self) -> np.ndarray:
        """Element ids of all pores."""
        return np.arange(self.num_pores)

    @property
    def nodes(self) -> np.ndarray:
        """Element ids of all nodes."""
        return np.arange(self.num_pores, self.num_elements)

    @property
    def is_pore(self) -> np.ndarray:
        return self.kind == ElementKind.PORE

    @property
    def is_node(self) -> np.ndarray:
        return self.kind == ElementKind.NODE

    @property
    def inlet_pores(self) -> np.ndarray:
        """Ids of pores without ``node_in``."""
        return np.flatnonzero(self.pore_nodes[:, 0] < 0)

    @property
    def outlet_pores(self) -> np.ndarray:
        """Ids of pores without ``node_out``."""
        return np.flatnonzero(self.pore_nodes[:, 1] < 0)

    @property
    def node_in(self) -> np.ndarray:
        return self.pore_nodes[:, 0]

    @property
    def node_out(self) -> np.ndarray:
        return self.pore_nodes[:, 1]

    def neighbors(self, element: int) -> np.ndarray:
        """Ids of the elements adjacent to an element, in ascending order."""
        start, end = self.adjacency.indptr[element], self.adjacency.indptr[element + 1]
        return self.adjacency.indices[start:end]

    def other_node(self, pore: int, node: int) -> int:
        """The endpoint of a pore opposite to ``node``, ``-1`` at the boundary."""
        node_in, node_out = self.pore_nodes[pore]
        return int(node_out if node == node_in else node_in)

    def connected_nodes(self, node: int) -> np.ndarray:
        """Nodes reachable from a node through a single pore."""
        others = [self.other_node(p, node) for p in self.neighbors(node)]
        return np.array([n for n in others if n >= 0], dtype=int)

    @property
    def coordination_number(self) -> np.ndarray:
        """Number of open pores attached to each node."""
        open_pores = (~self.closed).astype(int)
        block = self.adjacency[self.num_pores :, : self.num_pores].astype(int)
        counts = block @ open_pores
        return np.asarray(counts).ravel()

    @property
    def max_coordination_number(self) -> int:
        return int(self.coordination_number.max(initial=0))

    def coordinates(self, element: int) -> np.ndarray:
        """Coordinates of a node, or of the midpoint of a pore.

        Boundary pores are placed half a pore length beyond their node along x.
        """
        if element >= self.num_pores:
            return self.node_coordinates[element - self.num_pores]
        node_in, node_out = self.pore_nodes[element]
        if node_in >= 0 and node_out >= 0:
            return 0.5 * (
                self.node_coordinates[node_in - self.num_pores]
                + self.node_coordinates[node_out - self.num_pores]
            )
        node = node_in if node_in >= 0 else node_out
        shift = np.array([self.length[element] / 2, 0.0, 0.0])
        sign = 1.0 if node_in >= 0 else -1.0
        return self.node_coordinates[node - self.num_pores] + sign * shift

    # ------------------------------------------------------------------
    # Geometry and state

    def initialize_geometry(self) -> None:
        """Derive geometric quantities from radius, length, volume and shape
        factor, and validate them.

        Sets the shape-factor constants and entry-pressure coefficients, pore full
        and stub lengths, effective volumes and the network aggregates.

        Raises:
            NetworkPreconditionError: If an open element has non-positive geometry.

        """
        self.validate()
        pn.network_operations.assign_shape_factor_constants(self)

        internal = np.all(self.pore_nodes >= 0, axis=1)
        coords = self.node_coordinates
        full = self.length[: self.num_pores].copy()
        if np.any(internal):
            a = self.pore_nodes[internal, 0] - self.num_pores
            b = self.pore_nodes[internal, 1] - self.num_pores
            full[internal] = np.linalg.norm(coords[a] - coords[b], axis=1)
        self.full_length = full
        node_length = self.length[self.num_pores :]
        self.node_in_length = np.where(
            self.pore_nodes[:, 0] >= 0,
            node_length[np.maximum(self.pore_nodes[:, 0] - self.num_pores, 0)] / 2,
            0.0,
        )
        self.node_out_length = np.where(
            self.pore_nodes[:, 1] >= 0,
            node_length[np.maximum(self.pore_nodes[:, 1] - self.num_pores, 0)] / 2,
            0.0,
        )
        self.effective_volume = self.volume.copy()
        pn.network_operations.calculate_network_volume(self)

    def validate(self) -> None:
        """Check that every open element carries usable geometry.

        Raises:
            NetworkPreconditionError: On missing or non-positive geometry.

        """
        open_elements = ~self.closed
        for name in ("radius", "length", "volume", "shape_factor"):
            values = getattr(self, name)[open_elements]
            if values.size and not np.all(np.isfinite(values) & (values > 0)):
                raise NetworkPreconditionError(
                    f"Network field {name} must be positive for all open elements"
                )
        if not np.any(open_elements[: self.num_pores]):
            raise NetworkPreconditionError("All pores of the network are closed")

    def reset_simulation_state(self) -> None:
        """Set all simulation fields to their initial values: water everywhere,
        no films, no flow."""
        n = self.num_elements
        self.phase = np.full(n, Phase.WATER, dtype=np.int8)
        self.oil_fraction = np.zeros(n)
        self.water_fraction = np.ones(n)
        self.oil_trapped = np.zeros(n, dtype=bool)
        self.water_trapped = np.zeros(n, dtype=bool)
        self.flow = np.zeros(n)
        """Pore flow, positive from ``node_in`` to ``node_out``. For nodes, the
        total flow entering the node."""
        self.mass_flow = np.zeros(n)
        """Tracer mass entering a node per unit time."""
        self.concentration = np.zeros(n)
        self.viscosity = np.ones(n)
        self.conductivity = np.zeros(n)
        self.capillary_pressure = np.zeros(n)
        """Capillary pressure jump across a pore, opposing flow from ``node_in``."""
        self.active = np.ones(n, dtype=bool)
        self.effective_volume = self.volume.copy()

        # Corners and films
        self.beta = np.zeros((n, 3))
        """Half angles of the corners of triangular sections."""
        self.film_area_coefficient = np.zeros(n)
        self.water_film_volume = np.zeros(n)
        self.oil_film_volume = np.zeros(n)
        self.water_film_conductivity = np.zeros(n)
        self.oil_film_conductivity = np.zeros(n)
        self.water_can_flow_via_film = np.zeros(n, dtype=bool)
        self.oil_can_flow_via_film = np.zeros(n, dtype=bool)
        self.water_corner_activated = np.zeros(n, dtype=bool)
        self.oil_layer_activated = np.zeros(n, dtype=bool)
        self.water_conductor = np.ones(n, dtype=bool)
        self.oil_conductor = np.zeros(n, dtype=bool)

        # Nodes
        self.pressure = np.zeros(n)
        self.rank = np.full(n, -1, dtype=int)

        # Fluid at the ends of partially filled pores, unsteady-state flow.
        self.node_in_oil = np.zeros(self.num_pores, dtype=bool)
        self.node_out_oil = np.zeros(self.num_pores, dtype=bool)
        self.node_in_water = np.zeros(self.num_pores, dtype=bool)
        self.node_out_water = np.zeros(self.num_pores, dtype=bool)

        self.clusters = {}
        self._apply_closed_state()

    def close_elements(self, elements: np.ndarray) -> None:
        """Remove elements from all clustering and solving passes.

        Closed elements are inactive, their phase and wettability are invalid and
        their conductivity is pinned to the closed sentinel.

        Parameters:
            elements: Ids of the elements to close.

        """
        self.closed[np.asarray(elements, dtype=int)] = True
        self._apply_closed_state()

    def _apply_closed_state(self) -> None:
        closed = self.closed
        self.active[closed] = False
        self.phase[closed] = Phase.INVALID
        self.wettability[closed] = Wettability.INVALID
        self.conductivity[closed] = pn.CLOSED_CONDUCTIVITY
        self.oil_fraction[closed] = 0.0
        self.water_fraction[closed] = 0.0
        self.oil_conductor[closed] = False
        self.water_conductor[closed] = False

    def closed_invariant_holds(self) -> bool:
        """Whether closed elements, and only those, carry the closed state."""
        closed = self.closed
        invalid = (
            (self.phase == Phase.INVALID)
            & (self.wettability == Wettability.INVALID)
            & (self.conductivity == pn.CLOSED_CONDUCTIVITY)
            & ~self.active
        )
        return bool(np.all(invalid[closed]) and not np.any(invalid[~closed]))
