"""Tests of network-wide property assignment."""

import numpy as np
import pytest

import porenet as pn
from porenet.applications.test_utils import networks
from porenet.network import network_operations
from porenet.network.network_model import Phase, Wettability


@pytest.fixture
def lattice():
    return pn.regular_lattice(
        4, 4, 4, pore_radius=(5 * pn.MICRO, 15 * pn.MICRO), seed=4
    )


def test_shape_factor_constants():
    network = networks.chain_network(2)
    network.shape_factor[:3] = [0.03, 0.06, 0.07]
    network_operations.assign_shape_factor_constants(network)
    np.testing.assert_allclose(network.shape_factor_constant[:3], [0.6, 0.5623, 0.5])
    np.testing.assert_allclose(
        network.entry_pressure_coefficient, 1 + 2 * np.sqrt(np.pi * network.shape_factor)
    )


def test_poiseuille_conductivity():
    network = networks.chain_network(2)
    config = pn.SimulationConfig()
    network.viscosity[:] = 2.0
    conductivity = network_operations.bulk_conductivity(network, config)
    expected = np.pi * network.radius**4 / (8 * 2.0 * network.length)
    np.testing.assert_allclose(conductivity, expected)


def test_series_conductivity_and_closed_sentinel():
    network = networks.chain_network(3)
    config = pn.SimulationConfig()
    network.close_elements(np.array([3]))
    network_operations.assign_conductivities(network, config)
    bulk = network_operations.bulk_conductivity(network, config)
    node_in, node_out = network.pore_nodes[1]
    expected = 1 / (1 / bulk[1] + 1 / (2 * bulk[node_in]) + 1 / (2 * bulk[node_out]))
    assert network.conductivity[1] == pytest.approx(expected)
    assert network.conductivity[3] == pn.CLOSED_CONDUCTIVITY


def test_network_volume():
    network = networks.chain_network(3)
    network.close_elements(np.array([0]))
    network_operations.calculate_network_volume(network)
    assert network.total_pores_volume == pytest.approx(network.volume[1:4].sum())
    assert network.total_nodes_volume == pytest.approx(network.volume[4:].sum())
    # The only inlet pore is closed.
    assert network.inlet_pores_area == 0.0


class TestWettability:
    def test_water_wet(self, lattice):
        config = pn.SimulationConfig(max_water_wet_theta=0.4)
        network_operations.assign_wettabilities(lattice, config)
        assert np.all(lattice.wettability == Wettability.WATER_WET)
        assert np.all((lattice.theta >= 0) & (lattice.theta <= 0.4))
        np.testing.assert_array_equal(lattice.original_theta, lattice.theta)

    def test_oil_wet(self, lattice):
        config = pn.SimulationConfig(wettability=pn.NetworkWettability.OIL_WET)
        network_operations.assign_wettabilities(lattice, config)
        assert np.all(lattice.wettability == Wettability.OIL_WET)
        assert np.all(lattice.theta >= config.min_oil_wet_theta)

    @pytest.mark.parametrize(
        "kind",
        [
            pn.NetworkWettability.FRACTIONAL_WET,
            pn.NetworkWettability.MIXED_WET_LARGE,
            pn.NetworkWettability.MIXED_WET_SMALL,
        ],
    )
    def test_fraction_of_oil_wet_nodes(self, lattice, kind):
        config = pn.SimulationConfig(wettability=kind, oil_wet_fraction=0.25)
        network_operations.assign_wettabilities(lattice, config)
        nodes = lattice.nodes
        oil_wet = lattice.wettability[nodes] == Wettability.OIL_WET
        assert oil_wet.sum() == 16

        radius = lattice.radius[nodes]
        if kind == pn.NetworkWettability.MIXED_WET_LARGE:
            assert radius[oil_wet].min() >= radius[~oil_wet].max()
        elif kind == pn.NetworkWettability.MIXED_WET_SMALL:
            assert radius[oil_wet].max() <= radius[~oil_wet].min()

        # Angles match the flags everywhere.
        open_elements = ~lattice.closed
        np.testing.assert_array_equal(
            lattice.wettability[open_elements] == Wettability.OIL_WET,
            lattice.theta[open_elements] > np.pi / 2,
        )

    def test_boundary_pores_inherit_node_state(self, lattice):
        config = pn.SimulationConfig(
            wettability=pn.NetworkWettability.FRACTIONAL_WET, oil_wet_fraction=0.5
        )
        network_operations.assign_wettabilities(lattice, config)
        inlet = lattice.inlet_pores
        nodes = lattice.pore_nodes[inlet, 1]
        np.testing.assert_array_equal(lattice.theta[inlet], lattice.theta[nodes])

    def test_restore_after_water_wet_override(self, lattice):
        config = pn.SimulationConfig(wettability=pn.NetworkWettability.OIL_WET)
        network_operations.assign_wettabilities(lattice, config)
        theta = lattice.theta.copy()
        network_operations.assign_water_wet_wettability(lattice)
        assert np.all(lattice.theta == 0)
        network_operations.restore_wettability(lattice)
        np.testing.assert_array_equal(lattice.theta, theta)
        assert np.all(lattice.wettability == Wettability.OIL_WET)


class TestInitialWaterSaturation:
    @pytest.mark.parametrize("target, phase", [(0.0, Phase.OIL), (1.0, Phase.WATER)])
    def test_uniform_fill(self, lattice, target, phase):
        config = pn.SimulationConfig(initial_water_saturation=target)
        network_operations.set_initial_water_saturation(lattice, config)
        assert np.all(lattice.phase == phase)

    @pytest.mark.parametrize(
        "distribution",
        [
            pn.WaterDistribution.RANDOM,
            pn.WaterDistribution.SMALL_CAPILLARIES,
            pn.WaterDistribution.BIG_CAPILLARIES,
        ],
    )
    def test_partial_saturation(self, lattice, distribution):
        config = pn.SimulationConfig(
            initial_water_saturation=0.3, water_distribution=distribution
        )
        network_operations.set_initial_water_saturation(lattice, config)
        water = lattice.phase == Phase.WATER
        assert np.any(water) and np.any(lattice.phase == Phase.OIL)
        np.testing.assert_array_equal(lattice.water_fraction, water.astype(float))
        np.testing.assert_array_equal(lattice.water_conductor, water)

        nodes = lattice.nodes
        radius = lattice.radius[nodes]
        water_nodes = water[nodes]
        if distribution == pn.WaterDistribution.SMALL_CAPILLARIES:
            assert radius[water_nodes].max() <= radius[~water_nodes].min()
        elif distribution == pn.WaterDistribution.BIG_CAPILLARIES:
            assert radius[water_nodes].min() >= radius[~water_nodes].max()

    def test_pores_between_equal_nodes(self, lattice):
        config = pn.SimulationConfig(initial_water_saturation=0.5)
        network_operations.set_initial_water_saturation(lattice, config)
        node_in, node_out = lattice.node_in, lattice.node_out
        internal = (node_in >= 0) & (node_out >= 0)
        same = internal & (lattice.phase[node_in] == lattice.phase[node_out])
        np.testing.assert_array_equal(
            lattice.phase[: lattice.num_pores][same], lattice.phase[node_in[same]]
        )

    def test_after_primary_drainage(self, lattice):
        config = pn.SimulationConfig(
            initial_water_saturation=0.5,
            water_distribution=pn.WaterDistribution.AFTER_PRIMARY_DRAINAGE,
            two_phase_simulation_steps=20,
            relative_permeabilities_calculation=False,
        )
        network_operations.set_initial_water_saturation(lattice, config)
        assert network_operations.water_saturation(lattice) < 0.9
        assert np.any(lattice.phase == Phase.OIL)


def test_water_saturation_counts_films():
    network = networks.chain_network(2)
    network_operations.fill_with_oil(network)
    assert network_operations.water_saturation(network) == 0.0
    network.water_film_volume[1] = 0.1 * network.volume[1]
    expected = 0.1 * network.volume[1] / network.total_network_volume
    assert network_operations.water_saturation(network) == pytest.approx(expected)


def test_phase_flow():
    network = networks.chain_network(2)
    network.flow[2] = 3.0
    network.phase[2] = Phase.OIL
    assert network_operations.phase_flow(network, Phase.OIL) == 3.0
    assert network_operations.phase_flow(network, Phase.WATER) == 0.0
