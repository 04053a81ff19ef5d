"""Tests of tracer transport and unsteady-state water injection."""

import numpy as np
import pytest

import porenet as pn
from porenet.applications.test_utils import networks
from porenet.network.network_model import Phase
from porenet.simulations.tracer_flow import CONCENTRATION_TOLERANCE


class TestTracerFlow:
    def _run(self, network, **kwargs):
        config = pn.SimulationConfig(
            simulation_kind=pn.SimulationKind.TRACER,
            flow_rate=1e-12,
            override_by_injected_pvs=True,
            **kwargs,
        )
        recorder = pn.InMemoryRecorder()
        simulation = pn.TracerFlow(network, config, recorder)
        simulation.run()
        return simulation, recorder

    def test_concentrations_stay_bounded(self):
        network = pn.regular_lattice(
            5, 3, 3, pore_radius=(5 * pn.MICRO, 10 * pn.MICRO), seed=5
        )
        simulation, _ = self._run(network, injected_pvs=1.0)
        low, high = CONCENTRATION_TOLERANCE
        assert np.all(network.concentration >= low)
        assert np.all(network.concentration <= high)
        # Tracer entered through the inlet and advanced into the network.
        assert np.all(network.concentration[network.inlet_pores] > 0)
        assert network.concentration[network.nodes].max() > 0
        assert simulation.injected_pvs == pytest.approx(1.0, rel=0.1)

    def test_upstream_elements_lead(self):
        network = networks.chain_network(6)
        self._run(network, injected_pvs=0.5, tracer_diffusion_coefficient=0.0)
        nodes = network.concentration[network.nodes]
        # Advection without diffusion keeps the profile decreasing downstream.
        assert np.all(np.diff(nodes) <= 1e-12)
        assert nodes[0] > nodes[-1]

    def test_time_step_bound(self):
        network = networks.chain_network(4)
        config = pn.SimulationConfig(flow_rate=1e-12, tracer_diffusion_coefficient=0.0)
        simulation = pn.TracerFlow(network, config)
        simulation.initialize()
        expected = network.volume.min() / 1e-12
        assert simulation.time_step == pytest.approx(expected)

    def test_water_is_excluded(self):
        network = pn.regular_lattice(5, 4, 4, seed=2)
        config = pn.SimulationConfig(initial_water_saturation=0.2, seed=3)
        simulation = pn.TracerFlow(network, config)
        simulation.initialize()
        water = network.phase == Phase.WATER
        assert np.any(water)
        assert not np.any(simulation.carrier & water)
        assert not np.any(network.active & water)

        # Pores attached to a water-filled node carry no tracer.
        node_in, node_out = network.node_in, network.node_out
        water_end = ((node_in >= 0) & water[np.maximum(node_in, 0)]) | (
            (node_out >= 0) & water[np.maximum(node_out, 0)]
        )
        assert not np.any(network.active[: network.num_pores] & water_end)
        np.testing.assert_array_equal(network.flow[: network.num_pores][water_end], 0.0)

    def test_blocked_inlet_raises(self):
        network = networks.chain_network(4)
        config = pn.SimulationConfig(
            initial_water_saturation=0.3,
            water_distribution=pn.WaterDistribution.SMALL_CAPILLARIES,
        )
        simulation = pn.TracerFlow(network, config)
        # Water fills all nodes and with them the inlet pore; no oil can be injected.
        with pytest.raises(pn.InconsistentBoundaryConditionError):
            simulation.initialize()

    def test_concentration_violation_raises(self):
        network = networks.chain_network(3)
        config = pn.SimulationConfig(simulation_time=1.0)
        simulation = pn.TracerFlow(network, config)
        simulation.initialize()
        simulation.time_step *= 10
        with pytest.raises(pn.ConcentrationOutOfRangeError):
            for _ in range(100):
                simulation.update_concentrations()
        assert simulation.interrupted

    def test_records_states(self):
        network = networks.chain_network(3)
        _, recorder = self._run(
            network, injected_pvs=0.2, record_network_states=True
        )
        assert len(recorder.states) > 0
        assert recorder.states[0].stage == "Tracer Flow"
        assert recorder.states[-1].concentration.shape == (network.num_elements,)


class TestUnsteadyStateFlow:
    def _config(self, **kwargs):
        return pn.SimulationConfig(
            simulation_kind=pn.SimulationKind.UNSTEADY_STATE,
            flow_rate=1e-12,
            override_by_injected_pvs=True,
            **kwargs,
        )

    def test_water_channel(self):
        network = pn.regular_lattice(3, 2, 2)
        simulation = pn.UnsteadyStateFlow(network, self._config())
        simulation.initialize()
        water = network.phase == Phase.WATER
        inlet_nodes = network.is_node & network.inlet
        assert np.all(water[inlet_nodes])
        assert np.all(water[network.inlet_pores])
        # Pores joining two inlet nodes are filled as well.
        node_in, node_out = network.node_in, network.node_out
        between = (node_in >= 0) & (node_out >= 0)
        between &= network.inlet[np.maximum(node_in, 0)]
        between &= network.inlet[np.maximum(node_out, 0)]
        assert np.any(between)
        assert np.all(water[: network.num_pores][between])
        assert np.all(network.phase[~water] == Phase.OIL)

    def test_displacement_in_chain(self):
        network = networks.chain_network(5)
        recorder = pn.InMemoryRecorder()
        simulation = pn.UnsteadyStateFlow(
            network, self._config(injected_pvs=1.0), recorder
        )
        simulation.run()

        samples = recorder.saturation["Unsteady-State Flow"]
        assert len(samples) > 0
        sw = np.array([s[1] for s in samples])
        assert np.all(np.diff(sw) >= -1e-12)
        assert np.all((sw >= 0) & (sw <= 1 + 1e-5))
        assert simulation.current_sw > sw[0] - 1e-12

        for _, fo, fw in recorder.fractional_flow["Unsteady-State Flow"]:
            assert fo + fw == pytest.approx(1.0)
        assert np.all(network.water_fraction >= 0)
        assert np.all(network.water_fraction <= 1 + 1e-5)

    def test_water_breaks_through(self):
        network = networks.chain_network(4)
        simulation = pn.UnsteadyStateFlow(network, self._config(injected_pvs=2.0))
        simulation.run()
        # A chain is displaced completely once water has crossed it.
        assert np.all(network.phase == Phase.WATER)
        assert simulation.current_sw == pytest.approx(1.0, abs=1e-5)

    def test_status(self):
        network = networks.chain_network(3)
        simulation = pn.UnsteadyStateFlow(network, self._config())
        simulation.initialize()
        assert simulation.status.startswith(
            "Two-Phase Unsteady-State Simulation: Capillary Number"
        )
        assert simulation.progress == 0
