"""Network-wide assignment of geometric, wettability and flow properties.

The functions act on all open elements of a network in place. Closed elements are
skipped and keep the closed state set by
:meth:`~porenet.network.network_model.NetworkModel.close_elements`.

Conductances follow the power law

    g = C k r^n / (16 G) / (L mu) * 10^(6 n - 24),

with ``C`` and ``n`` the configured constant and exponent, ``k`` the shape-factor
constant and ``G`` the shape factor. The decimal factor makes the law exact for the
Poiseuille exponent ``n = 4`` and keeps other exponents in the unit system where
radii are expressed in micrometres. A pore conducts in series with half of each of
its endpoint nodes.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import porenet as pn
from porenet.network.clustering import ClusterKind, cluster_elements
from porenet.network.network_model import NetworkModel, Phase, Wettability
from porenet.params.simulation_config import (
    NetworkWettability,
    SimulationConfig,
    WaterDistribution,
)
from porenet.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["operations"]


def assign_shape_factor_constants(network: NetworkModel) -> None:
    """Conductance constant of the cross-section shape and the entry-pressure
    coefficient ``1 + 2 sqrt(pi G)``."""
    shape_factor = network.shape_factor
    network.shape_factor_constant = np.select(
        [
            shape_factor <= pn.TRIANGLE_SHAPE_FACTOR,
            shape_factor <= pn.SQUARE_SHAPE_FACTOR,
        ],
        [0.6, 0.5623],
        default=0.5,
    )
    network.entry_pressure_coefficient = 1 + 2 * np.sqrt(np.pi * shape_factor)


def calculate_network_volume(network: NetworkModel) -> None:
    """Total pore, node and network volumes and the inlet cross-section area."""
    open_elements = ~network.closed
    pores = open_elements[: network.num_pores]
    nodes = open_elements[network.num_pores :]
    network.total_pores_volume = float(network.volume[: network.num_pores][pores].sum())
    network.total_nodes_volume = float(network.volume[network.num_pores :][nodes].sum())
    network.total_network_volume = network.total_pores_volume + network.total_nodes_volume

    inlet = network.inlet_pores
    inlet = inlet[open_elements[inlet]]
    network.inlet_pores_area = float(
        np.sum(network.volume[inlet] / network.length[inlet])
    )


def inlet_pores_volume(network: NetworkModel) -> float:
    """Volume of the active inlet pores."""
    inlet = network.inlet_pores
    return float(network.volume[inlet][network.active[inlet]].sum())


def assign_viscosities(network: NetworkModel, config: SimulationConfig) -> None:
    """Volume-fraction weighted viscosity of every element."""
    network.viscosity = (
        network.oil_fraction * config.oil_viscosity
        + network.water_fraction * config.water_viscosity
    )
    # Closed elements carry no fluid; keep their viscosity finite.
    network.viscosity[network.closed] = 1.0


def bulk_conductivity(
    network: NetworkModel,
    config: SimulationConfig,
    elements: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Conductivity of the bulk of elements from the power law, without the
    series combination with nodes.

    Parameters:
        network: The network.
        config: Configuration providing the power law.
        elements: Ids of the elements. Defaults to all elements.

    Returns:
        The conductivities.

    """
    if elements is None:
        elements = np.arange(network.num_elements)
    exponent = config.conductivity_exponent
    with np.errstate(divide="ignore", invalid="ignore"):
        return (
            config.conductivity_constant
            * network.shape_factor_constant[elements]
            * network.radius[elements] ** exponent
            / (16 * network.shape_factor[elements])
            / (network.length[elements] * network.viscosity[elements])
            * 10 ** (6 * exponent - 24)
        )


def _combine_with_nodes(
    network: NetworkModel, throat_conductivity: np.ndarray
) -> np.ndarray:
    """Series combination of pore bodies with half of their endpoint nodes."""
    node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]
    inverse = 1.0 / throat_conductivity
    with np.errstate(divide="ignore"):
        inverse = inverse + np.where(
            node_in >= 0, 1.0 / (2 * network.conductivity[np.maximum(node_in, 0)]), 0.0
        )
        inverse = inverse + np.where(
            node_out >= 0,
            1.0 / (2 * network.conductivity[np.maximum(node_out, 0)]),
            0.0,
        )
    return 1.0 / inverse


@time_logger(sections=module_sections)
def assign_conductivities(network: NetworkModel, config: SimulationConfig) -> None:
    """Single-phase conductivities of all open elements, using the current
    viscosities."""
    nodes = network.nodes
    network.conductivity[nodes] = bulk_conductivity(network, config, nodes)
    pores = network.pores
    network.conductivity[pores] = _combine_with_nodes(
        network, bulk_conductivity(network, config, pores)
    )
    network.conductivity[network.closed] = pn.CLOSED_CONDUCTIVITY


def assign_phase_conductivities(
    network: NetworkModel, config: SimulationConfig, phase: Phase
) -> bool:
    """Conductivities of one phase for a relative permeability solve.

    Elements filled with the phase conduct in bulk, elements filled with the other
    phase conduct through films of the phase if these are activated. Only elements
    of a spanning conductor cluster of the phase are active.

    Parameters:
        network: The network.
        config: The configuration.
        phase: Phase.OIL or Phase.WATER.

    Returns:
        Whether the phase spans the network. If not, all elements are inactive.

    """
    if phase == Phase.OIL:
        conductor, kind = network.oil_conductor, ClusterKind.OIL_CONDUCTOR
        films = network.oil_layer_activated
        film_conductivity = network.oil_film_conductivity
    else:
        conductor, kind = network.water_conductor, ClusterKind.WATER_CONDUCTOR
        films = network.water_corner_activated
        film_conductivity = network.water_film_conductivity

    registry = cluster_elements(network, conductor, kind)
    network.clusters[kind] = registry
    assign_conductivities(network, config)

    spanning = registry.element_spanning() & ~network.closed
    bulk = spanning & (network.phase == phase)
    via_film = spanning & (network.phase != phase) & films

    conductivity = network.conductivity.copy()
    film = film_conductivity / config.film_conductance_resistivity
    throat = bulk_conductivity(network, config)
    throat[via_film] = film[via_film]

    nodes = network.is_node
    conductivity[nodes & via_film] = film[nodes & via_film]
    network.active = (bulk | via_film) & ~network.closed

    # Pores need both endpoints active.
    node_in, node_out = network.pore_nodes[:, 0], network.pore_nodes[:, 1]
    pores_active = network.active[: network.num_pores].copy()
    pores_active &= (node_in < 0) | network.active[np.maximum(node_in, 0)]
    pores_active &= (node_out < 0) | network.active[np.maximum(node_out, 0)]
    network.active[: network.num_pores] = pores_active

    network.conductivity = conductivity
    network.conductivity[: network.num_pores] = _combine_with_nodes(
        network, throat[: network.num_pores]
    )
    network.conductivity[~network.active] = pn.CLOSED_CONDUCTIVITY
    return registry.any_spanning


def assign_half_angles(network: NetworkModel, config: SimulationConfig) -> None:
    """Random corner half angles of triangular cross sections, consistent with
    their shape factor. Other shapes get zero half angles."""
    rng = np.random.default_rng(config.seed)
    shape_factor = network.shape_factor
    triangle = (shape_factor <= pn.TRIANGLE_SHAPE_FACTOR) & ~network.closed
    beta = np.zeros((network.num_elements, 3))

    g = shape_factor[triangle]
    angle = np.arccos(-12 * np.sqrt(3) * g) / 3
    beta2_min = np.arctan(2 / np.sqrt(3) * np.cos(angle + 4 * np.pi / 3))
    beta2_max = np.arctan(2 / np.sqrt(3) * np.cos(angle))
    beta2 = rng.uniform(beta2_min, beta2_max)
    beta1 = -0.5 * beta2 + 0.5 * np.arcsin(
        (np.tan(beta2) + 4 * g) / (np.tan(beta2) - 4 * g) * np.sin(beta2)
    )
    beta[triangle, 0] = beta1
    beta[triangle, 1] = beta2
    beta[triangle, 2] = np.pi / 2 - beta1 - beta2
    network.beta = beta


def assign_films_stability(network: NetworkModel) -> None:
    """Which corners can hold wetting films, and the film area coefficient.

    A corner of half angle beta holds a wetting film if ``theta < pi/2 - beta``
    for water-wet and ``pi - theta < pi/2 - beta`` for oil-wet elements.
    """
    theta = network.theta[:, None]
    beta = network.beta
    triangle = (network.shape_factor <= pn.TRIANGLE_SHAPE_FACTOR)[:, None]
    water_wet = (network.wettability == Wettability.WATER_WET)[:, None]
    oil_wet = (network.wettability == Wettability.OIL_WET)[:, None]

    with np.errstate(divide="ignore", invalid="ignore"):
        water_corners = triangle & water_wet & (theta < np.pi / 2 - beta)
        water_area = np.cos(theta) * np.cos(theta + beta) / np.sin(beta) - (
            np.pi / 2 - theta - beta
        )
        oil_corners = triangle & oil_wet & (np.pi - theta < np.pi / 2 - beta)
        oil_area = np.cos(theta) * np.cos(theta - beta) / np.sin(beta) + (
            np.pi / 2 - theta + beta
        )

    network.water_can_flow_via_film = water_corners.any(axis=1)
    network.oil_can_flow_via_film = oil_corners.any(axis=1)
    network.film_area_coefficient = np.where(water_corners, water_area, 0.0).sum(
        axis=1
    ) + np.where(oil_corners, oil_area, 0.0).sum(axis=1)


def backup_wettability(network: NetworkModel) -> None:
    network.original_theta = network.theta.copy()


def restore_wettability(network: NetworkModel) -> None:
    """Reinstate the backed-up contact angles and the wettability they imply."""
    open_elements = ~network.closed
    network.theta = network.original_theta.copy()
    network.wettability[open_elements] = np.where(
        network.theta[open_elements] <= np.pi / 2,
        Wettability.WATER_WET,
        Wettability.OIL_WET,
    )


def assign_water_wet_wettability(network: NetworkModel) -> None:
    """Strongly water-wet state (zero contact angle) of pristine rock."""
    open_elements = ~network.closed
    network.theta[open_elements] = 0.0
    network.wettability[open_elements] = Wettability.WATER_WET


@time_logger(sections=module_sections)
def assign_wettabilities(network: NetworkModel, config: SimulationConfig) -> None:
    """Contact angles and wettability flags after ageing, backed up as the
    original wettability.

    Nodes are assigned first according to ``config.wettability``. Boundary pores
    inherit the state of their node; internal pores the mean angle of equally wet
    endpoints, or the angle of a randomly picked endpoint otherwise.

    Parameters:
        network: The network.
        config: Configuration providing angle ranges, oil-wet fraction and seed.

    Raises:
        ValueError: For an unknown wettability state.

    """
    rng = np.random.default_rng(config.seed)
    open_elements = np.flatnonzero(~network.closed)
    kind = config.wettability

    def make_oil_wet(elements: np.ndarray) -> None:
        network.theta[elements] = rng.uniform(
            config.min_oil_wet_theta, config.max_oil_wet_theta, elements.size
        )
        network.wettability[elements] = Wettability.OIL_WET

    if kind == NetworkWettability.OIL_WET:
        make_oil_wet(open_elements)
        backup_wettability(network)
        return

    network.theta[open_elements] = rng.uniform(
        config.min_water_wet_theta, config.max_water_wet_theta, open_elements.size
    )
    network.wettability[open_elements] = Wettability.WATER_WET
    if kind == NetworkWettability.WATER_WET:
        backup_wettability(network)
        return

    nodes = network.nodes[~network.closed[network.num_pores :]]
    num_oil_wet = int(np.ceil(config.oil_wet_fraction * network.num_nodes))
    num_oil_wet = min(num_oil_wet, nodes.size)
    if kind == NetworkWettability.FRACTIONAL_WET:
        chosen = rng.permutation(nodes)[:num_oil_wet]
    elif kind == NetworkWettability.MIXED_WET_LARGE:
        chosen = nodes[np.argsort(-network.radius[nodes], kind="stable")][:num_oil_wet]
    elif kind == NetworkWettability.MIXED_WET_SMALL:
        chosen = nodes[np.argsort(network.radius[nodes], kind="stable")][:num_oil_wet]
    else:
        raise ValueError(f"Unknown wettability {kind}")
    make_oil_wet(np.sort(chosen))

    for p in network.pores[~network.closed[: network.num_pores]]:
        node_in, node_out = network.pore_nodes[p]
        if node_in < 0 or node_out < 0:
            node = node_out if node_in < 0 else node_in
            network.theta[p] = network.theta[node]
            network.wettability[p] = network.wettability[node]
        elif network.wettability[node_in] == network.wettability[node_out]:
            network.theta[p] = 0.5 * (network.theta[node_in] + network.theta[node_out])
            network.wettability[p] = network.wettability[node_in]
        else:
            network.theta[p] = network.theta[node_in if rng.integers(2) else node_out]
            network.wettability[p] = (
                Wettability.OIL_WET
                if network.theta[p] > np.pi / 2
                else Wettability.WATER_WET
            )
    backup_wettability(network)
    logger.info(
        f"Assigned {kind.value} wettability, "
        f"{int(np.sum(network.wettability == Wettability.OIL_WET))} oil-wet elements"
    )


def update_fractions_from_phase(network: NetworkModel) -> None:
    """Volume fractions and conductor flags consistent with the bulk phase."""
    oil = network.phase == Phase.OIL
    water = network.phase == Phase.WATER
    network.oil_fraction = oil.astype(float)
    network.water_fraction = water.astype(float)
    network.oil_conductor = oil.copy()
    network.water_conductor = water.copy()


def fill_with_water(network: NetworkModel) -> None:
    network.phase[~network.closed] = Phase.WATER
    update_fractions_from_phase(network)


def fill_with_oil(network: NetworkModel) -> None:
    network.phase[~network.closed] = Phase.OIL
    update_fractions_from_phase(network)


@time_logger(sections=module_sections)
def set_initial_water_saturation(
    network: NetworkModel, config: SimulationConfig
) -> None:
    """Initial distribution of water in an oil-filled network.

    Water is placed in nodes according to ``config.water_distribution`` until
    ``config.initial_water_saturation`` is reached; pores then take the phase of
    their nodes. With ``AFTER_PRIMARY_DRAINAGE`` a primary drainage is run down to
    the target saturation instead.

    Parameters:
        network: The network.
        config: Configuration providing the saturation target, distribution and
            seed.

    Raises:
        ValueError: For an unknown water distribution.

    """
    rng = np.random.default_rng(config.seed)
    target = config.initial_water_saturation
    open_elements = ~network.closed

    if target == 1.0:
        fill_with_water(network)
        return
    fill_with_oil(network)
    if target == 0.0:
        return

    distribution = config.water_distribution
    if distribution == WaterDistribution.AFTER_PRIMARY_DRAINAGE:
        # Imported here; the simulations depend on this module.
        from porenet.simulations.displacements import PrimaryDrainage
        from porenet.simulations.invasion_percolation import InvasionPercolation

        drainage = InvasionPercolation(network, config, PrimaryDrainage(final_swi=target))
        drainage.run()
        return

    nodes = network.nodes[open_elements[network.num_pores :]]
    if distribution == WaterDistribution.RANDOM:
        ordered = rng.permutation(nodes)
        reference_volume = network.total_nodes_volume
    elif distribution == WaterDistribution.SMALL_CAPILLARIES:
        ordered = nodes[np.argsort(network.radius[nodes], kind="stable")]
        reference_volume = network.total_network_volume
    elif distribution == WaterDistribution.BIG_CAPILLARIES:
        ordered = nodes[np.argsort(-network.radius[nodes], kind="stable")]
        reference_volume = network.total_network_volume
    else:
        raise ValueError(f"Unknown water distribution {distribution}")

    water_volume = 0.0
    for node in ordered:
        if water_volume / reference_volume >= target:
            break
        network.phase[node] = Phase.WATER
        water_volume += network.volume[node]

    for p in network.pores[open_elements[: network.num_pores]]:
        node_in, node_out = network.pore_nodes[p]
        if node_in < 0 or node_out < 0:
            network.phase[p] = network.phase[node_out if node_in < 0 else node_in]
        elif network.phase[node_in] == network.phase[node_out]:
            network.phase[p] = network.phase[node_in]
        else:
            network.phase[p] = network.phase[node_in if rng.integers(2) else node_out]
    update_fractions_from_phase(network)
    logger.info(
        f"Initial water saturation {water_saturation_from_fractions(network):.3f} "
        f"({distribution.value})"
    )


def water_saturation(network: NetworkModel) -> float:
    """Water saturation accounting for corner films and oil layers.

    Water-filled water-wet elements count fully, water-filled oil-wet elements
    count without their oil layers, oil-filled elements count their water films.
    """
    water = network.phase == Phase.WATER
    oil = network.phase == Phase.OIL
    water_wet = network.wettability == Wettability.WATER_WET
    volume = np.where(
        water & water_wet,
        network.volume,
        np.where(
            water,
            network.effective_volume + network.water_film_volume,
            np.where(oil, network.water_film_volume, 0.0),
        ),
    )
    return float(volume[~network.closed].sum() / network.total_network_volume)


def water_saturation_from_fractions(network: NetworkModel) -> float:
    """Water saturation from the bulk water fractions."""
    volume = network.volume * network.water_fraction
    return float(volume[~network.closed].sum() / network.total_network_volume)


def phase_flow(network: NetworkModel, phase: Phase) -> float:
    """Flow of one phase leaving through the active outlet pores."""
    outlet = network.outlet_pores
    selected = outlet[network.active[outlet] & (network.phase[outlet] == phase)]
    return float(network.flow[selected].sum())
