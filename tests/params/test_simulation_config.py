import dataclasses
from pathlib import Path

import pytest

import porenet as pn


def test_defaults():
    config = pn.SimulationConfig()
    assert config.simulation_kind == pn.SimulationKind.STEADY_STATE
    assert config.primary_drainage
    assert not config.spontaneous_imbibition
    assert config.solver == pn.LinearSolverChoice.DIRECT


def test_frozen():
    config = pn.SimulationConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.flow_rate = 2.0


def test_from_dict_converts_values():
    config = pn.SimulationConfig.from_dict(
        {
            "simulation_kind": "tracer",
            "solver": "conjugate_gradient",
            "wettability": pn.NetworkWettability.OIL_WET,
            "water_distribution": "big_capillaries",
            "output_folder": "results",
            "flow_rate": 3e-12,
        }
    )
    assert config.simulation_kind == pn.SimulationKind.TRACER
    assert config.solver == pn.LinearSolverChoice.CONJUGATE_GRADIENT
    assert config.wettability == pn.NetworkWettability.OIL_WET
    assert config.water_distribution == pn.WaterDistribution.BIG_CAPILLARIES
    assert config.output_folder == Path("results")
    assert config.flow_rate == 3e-12


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="flowrate"):
        pn.SimulationConfig.from_dict({"flowrate": 1.0})


def test_from_dict_rejects_unknown_enum_value():
    with pytest.raises(ValueError):
        pn.SimulationConfig.from_dict({"solver": "gmres"})


@pytest.mark.parametrize(
    "values",
    [
        {"two_phase_simulation_steps": 0},
        {"initial_water_saturation": 1.5},
        {"oil_wet_fraction": -0.1},
        {"oil_viscosity": 0.0},
        {"ow_surface_tension": -1.0},
    ],
)
def test_invalid_values(values):
    with pytest.raises(ValueError):
        pn.SimulationConfig(**values)
