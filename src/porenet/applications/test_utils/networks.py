"""The module contains small networks with known topology for testing.

All networks use circular cross sections of a single radius, nodes spaced along x
and node lengths equal to their diameter. Their geometry is initialized.

"""

from __future__ import annotations

import numpy as np

import porenet as pn
from porenet.applications.regular_lattice import regular_lattice
from porenet.network.network_model import NetworkModel

SPACING = 100 * pn.MICRO
RADIUS = 10 * pn.MICRO


def _uniform_geometry(network: NetworkModel, radius: float = RADIUS) -> None:
    num_pores = network.num_pores
    network.radius[:] = radius
    network.shape_factor[:] = pn.CIRCLE_SHAPE_FACTOR
    network.length[num_pores:] = 2 * radius
    ends = (network.pore_nodes >= 0).sum(axis=1)
    network.length[:num_pores] = SPACING - ends * radius
    network.volume = (
        network.length * network.radius**2 / (4 * network.shape_factor)
    )
    network.initialize_geometry()


def two_node_network() -> NetworkModel:
    """Two nodes joined by one pore. The first node lies on the inlet, the second on
    the outlet; there are no boundary pores."""
    network = NetworkModel(
        np.array([[0.0, 0.0, 0.0], [SPACING, 0.0, 0.0]]),
        np.array([[0, 1]]),
        inlet_nodes=[0],
        outlet_nodes=[1],
        domain_lengths=np.full(3, SPACING),
    )
    _uniform_geometry(network)
    return network


def chain_network(num_nodes: int) -> NetworkModel:
    """Nodes in a row along x with an inlet and an outlet pore at the ends.

    Pore ``i`` connects node ``i - 1`` to node ``i``, so that the pore ids run from
    the inlet to the outlet.

    """
    return regular_lattice(num_nodes, 1, 1, spacing=SPACING, pore_radius=RADIUS)


def disconnected_network() -> NetworkModel:
    """A chain of three nodes spanning inlet to outlet, and a separate pair of nodes
    joined by one pore without any boundary contact.

    Pores 0 to 3 form the chain, pore 4 the separate pair (nodes 3 and 4).

    """
    coordinates = np.array(
        [
            [0.0, 0.0, 0.0],
            [SPACING, 0.0, 0.0],
            [2 * SPACING, 0.0, 0.0],
            [0.0, SPACING, 0.0],
            [SPACING, SPACING, 0.0],
        ]
    )
    pore_nodes = np.array([[-1, 0], [0, 1], [1, 2], [2, -1], [3, 4]])
    network = NetworkModel(
        coordinates,
        pore_nodes,
        domain_lengths=np.array([2 * SPACING, SPACING, SPACING]),
    )
    _uniform_geometry(network)
    return network
