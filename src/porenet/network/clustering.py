"""Connected-component labelling of predicate-selected parts of a pore network.

Clusters are used for trapping detection: a cluster of the displaced phase that no
longer reaches its exit boundary is trapped. Each clustering pass produces a
:class:`ClusterRegistry` holding the cluster index of every element (``-1`` for
unselected elements) and the boundary flags of every cluster. Registries are
rebuilt on every pass; elements only refer to clusters through indices.

Cluster indices are assigned in ascending order of the smallest element id in the
cluster, which is also the cluster representative. Two passes over an unchanged
network therefore yield identical registries.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
import scipy.sparse as sps
from scipy.sparse.csgraph import connected_components

from porenet.network.network_model import NetworkModel, Phase, Wettability
from porenet.utils.logging import time_logger

__all__ = ["ClusterKind", "ClusterRegistry", "cluster_elements", "Clustering"]

logger = logging.getLogger(__name__)

module_sections = ["clustering"]


class ClusterKind(Enum):
    """Predicates for which cluster registries are kept on the network."""

    ACTIVE = "active"
    OIL = "oil"
    WATER = "water"
    OIL_WET = "oil_wet"
    WATER_WET = "water_wet"
    OIL_CONDUCTOR = "oil_conductor"
    """Oil in bulk or in layers (oil films)."""
    WATER_CONDUCTOR = "water_conductor"
    """Water in bulk or in corners (water films)."""


@dataclass
class ClusterRegistry:
    """Result of one clustering pass."""

    kind: ClusterKind
    labels: np.ndarray
    """Cluster index of every element, ``-1`` for elements not selected."""
    representative: np.ndarray
    """Smallest element id of every cluster."""
    size: np.ndarray
    """Number of elements in every cluster."""
    inlet: np.ndarray
    """Whether a cluster contains an inlet element."""
    outlet: np.ndarray
    """Whether a cluster contains an outlet element."""

    @property
    def num_clusters(self) -> int:
        return self.representative.size

    @property
    def spanning(self) -> np.ndarray:
        """Clusters touching both the inlet and the outlet."""
        return self.inlet & self.outlet

    @property
    def any_spanning(self) -> bool:
        return bool(np.any(self.spanning))

    def _lookup(self, flags: np.ndarray, elements) -> np.ndarray:
        labels = self.labels[elements]
        return np.where(labels >= 0, flags[np.maximum(labels, 0)], False)

    def element_inlet(self, elements=slice(None)) -> np.ndarray:
        """Whether the clusters of the given elements touch the inlet. Unselected
        elements give False."""
        return self._lookup(self.inlet, elements)

    def element_outlet(self, elements=slice(None)) -> np.ndarray:
        return self._lookup(self.outlet, elements)

    def element_spanning(self, elements=slice(None)) -> np.ndarray:
        return self._lookup(self.spanning, elements)

    def members(self, cluster: int) -> np.ndarray:
        """Element ids of a cluster in ascending order."""
        return np.flatnonzero(self.labels == cluster)


@time_logger(sections=module_sections)
def cluster_elements(
    network: NetworkModel, mask: np.ndarray, kind: ClusterKind = ClusterKind.ACTIVE
) -> ClusterRegistry:
    """Partition the selected elements into connected clusters.

    Two selected elements belong to the same cluster if and only if they are
    connected by a path of selected elements. Closed elements are never selected.

    Parameters:
        network: The network.
        mask: ``shape=(num_elements,)`` Predicate selecting the elements.
        kind: Kind recorded in the registry.

    Returns:
        The registry of the clusters.

    """
    selected = np.asarray(mask, dtype=bool) & ~network.closed
    ids = np.flatnonzero(selected)
    labels = np.full(network.num_elements, -1, dtype=int)

    if ids.size == 0:
        empty_int = np.zeros(0, dtype=int)
        empty_bool = np.zeros(0, dtype=bool)
        return ClusterRegistry(
            kind, labels, empty_int, empty_int, empty_bool, empty_bool.copy()
        )

    # Components of the subgraph induced by the selection. The undirected labelling
    # visits vertices in ascending order, so components are numbered by their
    # smallest member.
    subgraph: sps.csr_matrix = network.adjacency[ids][:, ids]
    num_clusters, local_labels = connected_components(
        subgraph, directed=False, return_labels=True
    )
    labels[ids] = local_labels

    representative = np.full(num_clusters, network.num_elements, dtype=int)
    np.minimum.at(representative, local_labels, ids)
    # Renumber by representative in case the graph traversal did not.
    order = np.argsort(representative, kind="stable")
    if np.any(order != np.arange(num_clusters)):
        renumber = np.empty(num_clusters, dtype=int)
        renumber[order] = np.arange(num_clusters)
        local_labels = renumber[local_labels]
        labels[ids] = local_labels
        representative = representative[order]

    size = np.bincount(local_labels, minlength=num_clusters)
    inlet = np.zeros(num_clusters, dtype=bool)
    outlet = np.zeros(num_clusters, dtype=bool)
    inlet[local_labels[network.inlet[ids]]] = True
    outlet[local_labels[network.outlet[ids]]] = True

    registry = ClusterRegistry(kind, labels, representative, size, inlet, outlet)
    logger.debug(
        f"Clustered {ids.size} {kind.value} elements into {num_clusters} clusters, "
        f"{int(registry.spanning.sum())} spanning"
    )
    return registry


class Clustering:
    """Clustering passes over the standard element predicates of a network.

    Every pass stores its registry in ``network.clusters`` under its kind, and
    updates the corresponding spanning flag of this object.

    Parameters:
        network: The network to cluster.

    """

    def __init__(self, network: NetworkModel) -> None:
        self.network = network
        self.is_active_spanning = False
        self.is_oil_spanning = False
        self.is_water_spanning = False
        self.is_oil_wet_spanning = False
        self.is_water_wet_spanning = False
        self.is_oil_conductor_spanning = False
        self.is_water_conductor_spanning = False

    def _run(self, mask: np.ndarray, kind: ClusterKind) -> ClusterRegistry:
        registry = cluster_elements(self.network, mask, kind)
        self.network.clusters[kind] = registry
        setattr(self, f"is_{kind.value}_spanning", registry.any_spanning)
        return registry

    def cluster_active_elements(self) -> ClusterRegistry:
        return self._run(self.network.active, ClusterKind.ACTIVE)

    def cluster_oil_elements(self) -> ClusterRegistry:
        return self._run(self.network.phase == Phase.OIL, ClusterKind.OIL)

    def cluster_water_elements(self) -> ClusterRegistry:
        return self._run(self.network.phase == Phase.WATER, ClusterKind.WATER)

    def cluster_oil_wet_elements(self) -> ClusterRegistry:
        return self._run(
            self.network.wettability == Wettability.OIL_WET, ClusterKind.OIL_WET
        )

    def cluster_water_wet_elements(self) -> ClusterRegistry:
        return self._run(
            self.network.wettability == Wettability.WATER_WET, ClusterKind.WATER_WET
        )

    def cluster_oil_conductor_elements(self) -> ClusterRegistry:
        return self._run(self.network.oil_conductor, ClusterKind.OIL_CONDUCTOR)

    def cluster_water_conductor_elements(self) -> ClusterRegistry:
        return self._run(self.network.water_conductor, ClusterKind.WATER_CONDUCTOR)
