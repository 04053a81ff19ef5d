"""Builder of regular cubic pore networks.

Nodes sit on the integer lattice ``(i, j, k) * spacing`` and are numbered
``i * ny * nz + j * nz + k``. Pores connect lattice neighbours; along x, an extra
layer of pores connects the first node column to the inlet and the last one to the
outlet. Pores are ordered x, y, z, and point in the positive lattice direction:
``node_in`` is the node with the smaller index.

Element volumes follow ``V = L r^2 / (4 G)``, which is the volume of a circular
cylinder for ``G = 1 / (4 pi)``. Node lengths are their diameters, pore lengths the
lattice spacing minus the radii of their endpoint nodes.

"""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np

import porenet as pn
from porenet.network.clustering import cluster_elements
from porenet.network.network_model import NetworkModel

__all__ = ["regular_lattice"]

logger = logging.getLogger(__name__)

Range = Union[float, tuple[float, float]]
"""A fixed value, or the bounds of a uniform distribution."""


def _sample(value: Range, size: int, rng: np.random.Generator) -> np.ndarray:
    if isinstance(value, tuple):
        low, high = value
        return rng.uniform(low, high, size)
    return np.full(size, float(value))


def _node_id(i: np.ndarray, j: np.ndarray, k: np.ndarray, ny: int, nz: int):
    return i * ny * nz + j * nz + k


def _pore_nodes(nx: int, ny: int, nz: int) -> np.ndarray:
    """Local endpoint indices of all pores, ``-1`` beyond the x boundaries."""
    i, j, k = np.meshgrid(
        np.arange(nx + 1), np.arange(ny), np.arange(nz), indexing="ij"
    )
    i, j, k = i.ravel(), j.ravel(), k.ravel()
    x_in = np.where(i > 0, _node_id(i - 1, j, k, ny, nz), -1)
    x_out = np.where(i < nx, _node_id(i, j, k, ny, nz), -1)
    pores = [np.column_stack((x_in, x_out))]

    for axis, shape in ((1, (nx, ny - 1, nz)), (2, (nx, ny, nz - 1))):
        if 0 in shape:
            continue
        i, j, k = np.meshgrid(*(np.arange(n) for n in shape), indexing="ij")
        i, j, k = i.ravel(), j.ravel(), k.ravel()
        start = _node_id(i, j, k, ny, nz)
        end = start + (nz if axis == 1 else 1)
        pores.append(np.column_stack((start, end)))
    return np.vstack(pores)


def regular_lattice(
    nx: int,
    ny: int,
    nz: int,
    spacing: float = 100 * pn.MICRO,
    pore_radius: Range = 10 * pn.MICRO,
    node_radius: Optional[Range] = None,
    shape_factor: Range = pn.CIRCLE_SHAPE_FACTOR,
    coordination_number: float = 6.0,
    seed: int = 0,
) -> NetworkModel:
    """Create a regular lattice network with initialized geometry.

    Parameters:
        nx: Number of nodes along the flow direction x.
        ny: Number of nodes along y.
        nz: Number of nodes along z. ``nz == 1`` gives a 2d network.
        spacing: Distance between neighbouring nodes [m].
        pore_radius: Radius of the pores [m], or bounds of a uniform distribution.
        node_radius: Radius of the nodes [m], or bounds of a uniform
            distribution. Defaults to ``pore_radius``.
        shape_factor: Shape factor of all elements, or bounds of a uniform
            distribution.
        coordination_number: Target mean coordination number. Below the lattice
            value (6, or 4 in 2d), randomly chosen internal pores are closed.
            Elements cut off from the inlet or the outlet are closed as well.
        seed: Seed of the random generator.

    Raises:
        ValueError: If a dimension is smaller than one, or if the radii leave no
            room for the pores between the nodes.

    Returns:
        The network.

    """
    if min(nx, ny, nz) < 1:
        raise ValueError(f"Invalid lattice dimensions {nx}x{ny}x{nz}")
    rng = np.random.default_rng(seed)
    node_radius = pore_radius if node_radius is None else node_radius

    i, j, k = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij")
    indices = np.column_stack((i.ravel(), j.ravel(), k.ravel()))
    coordinates = indices * spacing
    pore_nodes = _pore_nodes(nx, ny, nz)

    domain_lengths = np.array(
        [spacing if n == 1 else (n - 1) * spacing for n in (nx, ny, nz)]
    )
    network = NetworkModel(
        coordinates,
        pore_nodes,
        node_indices=indices,
        inlet_nodes=np.flatnonzero(indices[:, 0] == 0),
        outlet_nodes=np.flatnonzero(indices[:, 0] == nx - 1),
        domain_lengths=domain_lengths,
        is_2d=nz == 1,
    )
    num_pores, num_nodes = network.num_pores, network.num_nodes

    network.radius[:num_pores] = _sample(pore_radius, num_pores, rng)
    network.radius[num_pores:] = _sample(node_radius, num_nodes, rng)
    network.shape_factor[:] = _sample(shape_factor, network.num_elements, rng)

    node_radii = network.radius[num_pores:]
    network.length[num_pores:] = 2 * node_radii
    ends = network.pore_nodes - num_pores
    radius_in = np.where(ends[:, 0] >= 0, node_radii[np.maximum(ends[:, 0], 0)], 0.0)
    radius_out = np.where(ends[:, 1] >= 0, node_radii[np.maximum(ends[:, 1], 0)], 0.0)
    network.length[:num_pores] = spacing - radius_in - radius_out
    if np.any(network.length[:num_pores] <= 0):
        raise ValueError(
            f"Node radii up to {node_radii.max():.3e} m leave no room for pores at "
            f"spacing {spacing:.3e} m"
        )
    network.volume = network.length * network.radius**2 / (4 * network.shape_factor)

    _reduce_coordination(network, coordination_number, rng)
    network.initialize_geometry()
    logger.info(
        f"Regular lattice {nx}x{ny}x{nz}: {network}, "
        f"{int(network.closed.sum())} closed elements"
    )
    return network


def _reduce_coordination(
    network: NetworkModel, coordination_number: float, rng: np.random.Generator
) -> None:
    """Close random internal pores, then everything not connecting inlet and
    outlet."""
    lattice_value = 4.0 if network.is_2d else 6.0
    if coordination_number < lattice_value:
        internal = np.flatnonzero(np.all(network.pore_nodes >= 0, axis=1))
        num_closed = int(network.num_pores * (1 - coordination_number / lattice_value))
        num_closed = min(num_closed, internal.size)
        network.close_elements(rng.permutation(internal)[:num_closed])

    registry = cluster_elements(network, ~network.closed)
    cut_off = ~network.closed & ~registry.element_spanning()
    if np.any(cut_off):
        network.close_elements(np.flatnonzero(cut_off))
