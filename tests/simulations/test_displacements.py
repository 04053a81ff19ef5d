"""Tests of the invasion rules of single displacements on small chains.

The chains have uniform circular elements of radius ``RADIUS``, so that with
``sigma = 0.03`` N/m the snap-off threshold of a water-wet element is
``sigma / RADIUS = 3000`` Pa and its piston-like entry pressure ``6000`` Pa.

"""

import numpy as np
import pytest

import porenet as pn
from porenet.applications.test_utils import networks
from porenet.network import network_operations
from porenet.network.network_model import Phase, Wettability
from porenet.simulations.displacements import entry_pressure, snap_off_pressure

SIGMA = 0.03
OIL_WET_THETA = 2 * np.pi / 3


def _controller(network, strategy, pc=0.0):
    simulation = pn.InvasionPercolation(
        network, pn.SimulationConfig(ow_surface_tension=SIGMA), strategy
    )
    simulation.recluster()
    simulation.current_pc = pc
    return simulation


def _set_phases(network, oil):
    network.phase[:] = Phase.WATER
    network.phase[oil] = Phase.OIL
    network_operations.update_fractions_from_phase(network)


def _make_oil_wet(network):
    network.theta[:] = OIL_WET_THETA
    network.wettability[:] = Wettability.OIL_WET


def test_thresholds_of_water_wet_circles():
    network = networks.chain_network(2)
    threshold = SIGMA / networks.RADIUS
    np.testing.assert_allclose(snap_off_pressure(network, SIGMA), threshold)
    np.testing.assert_allclose(entry_pressure(network, SIGMA), 2 * threshold)


class TestSpontaneousImbibition:
    def _network(self):
        # Oil everywhere but the inlet pore, water films in all corners.
        network = networks.chain_network(3)
        _set_phases(network, oil=np.arange(1, network.num_elements))
        network.water_corner_activated[1:] = True
        network.water_conductor[:] = True
        return network

    def test_pores_snap_off_below_threshold(self):
        network = self._network()
        candidates = np.arange(1, network.num_elements)
        threshold = SIGMA / networks.RADIUS

        simulation = _controller(network, pn.SpontaneousImbibition(), 0.9 * threshold)
        snapped = pn.SpontaneousImbibition().snap_off(simulation, candidates)
        np.testing.assert_array_equal(candidates[snapped], [1, 2, 3])

        simulation.current_pc = 1.1 * threshold
        assert not np.any(pn.SpontaneousImbibition().snap_off(simulation, candidates))

    def test_no_snap_off_without_corner_water(self):
        network = self._network()
        network.water_corner_activated[2] = False
        candidates = np.arange(1, network.num_elements)
        simulation = _controller(network, pn.SpontaneousImbibition(), 0.0)
        snapped = pn.SpontaneousImbibition().snap_off(simulation, candidates)
        np.testing.assert_array_equal(candidates[snapped], [1, 3])

    def test_snap_off_in_a_step(self):
        # Oil in every element, the oil-wet inlet pore is no candidate. Water only
        # reaches the chain through the corner films.
        network = self._network()
        _set_phases(network, oil=np.arange(network.num_elements))
        network.water_corner_activated[1:] = True
        network.water_conductor[:] = True
        network.theta[0] = OIL_WET_THETA
        network.wettability[0] = Wettability.OIL_WET

        strategy = pn.SpontaneousImbibition()
        simulation = _controller(network, strategy)
        simulation.candidates = strategy.initial_candidates(network)
        simulation._initialized = True
        simulation.current_radius = 0.9 * networks.RADIUS
        simulation.invasion_step()
        # At 1.11 times the snap-off threshold the pores keep their oil.
        assert not np.any(simulation.invaded)

        simulation.current_radius = 1.5 * networks.RADIUS
        simulation.invasion_step()
        np.testing.assert_array_equal(simulation.invasion_history[-1], [1, 2, 3])
        assert np.all(network.phase[[1, 2, 3]] == Phase.WATER)
        # Nodes without oil-filled neighbours have a zero body-filling pressure,
        # and the oil of node 4 is cut off from the outlet.
        assert np.all(network.phase[[0, 4, 5, 6]] == Phase.OIL)

    def test_pore_bodies_need_inlet_water_cluster(self):
        network = networks.chain_network(2)
        _set_phases(network, oil=np.arange(network.num_elements))
        strategy = pn.SpontaneousImbibition()
        simulation = _controller(network, strategy, 0.0)
        candidates = np.arange(network.num_elements)

        # Only the inlet pore is reachable, not the oil-filled inlet node.
        invadable = strategy.bulk(simulation, candidates)
        np.testing.assert_array_equal(candidates[invadable], [0])
        assert network.inlet[3]

        strategy.fill(network, np.array([0]))
        simulation.recluster()
        candidates = np.arange(1, network.num_elements)
        invadable = strategy.bulk(simulation, candidates)
        np.testing.assert_array_equal(candidates[invadable], [3])


class TestSpontaneousOilInvasion:
    def _network(self):
        # Oil in the inlet pore of an oil-wet chain filled with water.
        network = networks.chain_network(2)
        _make_oil_wet(network)
        _set_phases(network, oil=[0])
        return network

    def test_candidates_are_oil_wet_water(self):
        network = self._network()
        network.wettability[2] = Wettability.WATER_WET
        candidates = pn.SpontaneousOilInvasion().initial_candidates(network)
        np.testing.assert_array_equal(np.flatnonzero(candidates), [1, 3, 4])

    @pytest.mark.parametrize("factor, invades", [(1.2, False), (0.8, True)])
    def test_invades_above_negative_entry_pressure(self, factor, invades):
        network = self._network()
        strategy = pn.SpontaneousOilInvasion()
        entry = entry_pressure(network, SIGMA, np.array([3]))[0]
        assert entry < 0

        simulation = _controller(network, strategy, factor * entry)
        candidates = np.arange(1, network.num_elements)
        invadable = strategy.bulk(simulation, candidates)
        # The node behind the oil-filled inlet pore is the only accessible element.
        expected = [3] if invades else []
        np.testing.assert_array_equal(candidates[invadable], expected)

    def test_oil_layers_snap_off(self):
        network = self._network()
        network.oil_layer_activated[1:] = True
        network.oil_conductor[:] = True
        strategy = pn.SpontaneousOilInvasion()
        threshold = snap_off_pressure(network, SIGMA, np.array([1]))[0]
        candidates = np.arange(1, network.num_elements)

        simulation = _controller(network, strategy, 0.9 * threshold)
        snapped = strategy.snap_off(simulation, candidates)
        np.testing.assert_array_equal(candidates[snapped], [1, 2])

        simulation.current_pc = 1.1 * threshold
        assert not np.any(strategy.snap_off(simulation, candidates))

    def test_fill_keeps_water_films(self):
        network = self._network()
        network.water_corner_activated[3] = True
        pn.SpontaneousOilInvasion().fill(network, np.array([3, 4]))
        assert np.all(network.phase[[3, 4]] == Phase.OIL)
        np.testing.assert_array_equal(network.water_conductor[[3, 4]], [True, False])
        assert not np.any(network.oil_layer_activated[[3, 4]])


class TestSecondaryOilDrainage:
    def test_trapped_water_stays(self):
        # Oil in the inlet pore and in the pore before the last node: the water
        # between them has no path to the outlet.
        network = networks.chain_network(4)
        _set_phases(network, oil=[0, 3])
        strategy = pn.SecondaryOilDrainage()
        simulation = _controller(network, strategy)
        simulation.run()

        trapped = np.array([1, 2, 5, 6, 7])
        assert np.all(network.phase[trapped] == Phase.WATER)
        assert not np.any(simulation.invaded)
        np.testing.assert_array_equal(np.flatnonzero(simulation.candidates), [4, 8])

    def test_trapped_predicate(self):
        network = networks.chain_network(4)
        _set_phases(network, oil=[0, 3])
        strategy = pn.SecondaryOilDrainage()
        simulation = _controller(network, strategy)
        candidates = np.flatnonzero(strategy.initial_candidates(network))
        np.testing.assert_array_equal(candidates, [1, 2, 4, 5, 6, 7, 8])
        trapped = strategy.trapped(simulation, candidates)
        np.testing.assert_array_equal(candidates[trapped], [1, 2, 5, 6, 7])

    def test_drains_connected_water(self):
        network = networks.chain_network(3)
        _set_phases(network, oil=[0])
        simulation = _controller(network, pn.SecondaryOilDrainage())
        simulation.run()
        assert np.all(network.phase == Phase.OIL)
        assert simulation.current_sw == 0.0
