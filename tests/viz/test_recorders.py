import numpy as np

import porenet as pn
from porenet.applications.test_utils import networks


def test_base_recorder_ignores_samples():
    recorder = pn.Recorder()
    recorder.record_capillary_pressure("Stage", 0.5, 1.0)
    recorder.record_state("Stage", 0, np.zeros(2), np.zeros(2))
    assert not hasattr(recorder, "states")


def test_curves_are_grouped_by_stage():
    recorder = pn.InMemoryRecorder()
    recorder.record_capillary_pressure("Primary Drainage", 1.0, 10.0)
    recorder.record_capillary_pressure("Primary Drainage", 0.5, 20.0)
    recorder.record_capillary_pressure("Spontaneous Imbibition", 0.6, 5.0)
    recorder.record_fractional_flow("Unsteady-State Flow", 0.1, 0.7, 0.3)
    recorder.record_pressure_drop("Unsteady-State Flow", 0.1, 2.0)

    assert recorder.capillary_pressure == {
        "Primary Drainage": [(1.0, 10.0), (0.5, 20.0)],
        "Spontaneous Imbibition": [(0.6, 5.0)],
    }
    assert recorder.fractional_flow["Unsteady-State Flow"] == [(0.1, 0.7, 0.3)]
    assert recorder.pressure_drop["Unsteady-State Flow"] == [(0.1, 2.0)]
    assert recorder.saturation == {}


def test_states_are_copies():
    network = networks.chain_network(2)
    recorder = pn.InMemoryRecorder()
    recorder.record_state("Tracer Flow", 3, network.phase, network.concentration)
    network.concentration[:] = 1.0

    (state,) = recorder.states
    assert state.stage == "Tracer Flow"
    assert state.frame == 3
    assert np.all(state.concentration == 0.0)
    assert state.phase.shape == (network.num_elements,)
