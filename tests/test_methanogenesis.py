"""The methanol-uptake network."""

from __future__ import annotations

import numpy as np
import pytest

from isoflux.methanogenesis import (
    FIXED,
    VARIABLE,
    analytic_steady_deltas,
    default_values,
    methanol_network,
    seed_scenarios,
)


@pytest.fixture(scope="module")
def network():
    return methanol_network()


def test_structure(network):
    assert network.isotope_names == ("C",)
    assert network.isotopes[0].standard == "VPDB"
    assert network.fixed_components == FIXED
    assert network.variable_components == VARIABLE
    assert set(network.parameters) == {
        "net", "f_CH4", "f_CO2", "f_lipid", "eps_CH4", "eps_CO2",
        "eps_methyl", "eps_carboxyl", "eps_lipid",
    }
    assert all(r.abscissa is not None for r in network.reactions)


def test_fixation_streams(network):
    rxn = network.reaction("fixation")
    env = {"X.C": -40.0, "CO2.C": -20.0, "eps_methyl": -3.0, "eps_carboxyl": -1.0}
    assert rxn.stream("X", "C").evaluate(env) == pytest.approx(-43.0)
    assert rxn.stream("CO2", "C").evaluate(env) == pytest.approx(-21.0)
    assert rxn.stream("AcCoA", "C").evaluate(env) == pytest.approx(-32.0)


def test_biomass_gets_complement_of_lipid(network):
    rxn = network.reaction("synthesis")
    env = {"AcCoA.C": -30.0, "eps_lipid": -6.0}
    assert rxn.stream("lipid", "C").evaluate(env) == pytest.approx(-36.0)
    assert rxn.stream("biomass", "C").evaluate(env) == pytest.approx(-27.0)


def test_balanced_branching_keeps_pool_sizes(network):
    (s,) = seed_scenarios(network)
    dx = network.derivatives(s.constants(), s.initial_state())
    assert np.allclose(dx[: len(VARIABLE)], 0.0)


def test_seed_values():
    values = default_values(pool_size=5.0)
    assert values["MeOH.C"] == -46.2
    assert values["X"] == 5.0
    assert values["cells.C"] == 0.0
    assert values["eps_CH4"] == -83.5


def test_seed_scenarios_table(network):
    low, high = seed_scenarios(network, [{"name": "low"}, {"name": "high", "net": 1.0}])
    assert (low["net"], high["net"]) == (0.1, 1.0)


def test_analytic_deltas():
    d = analytic_steady_deltas(default_values())
    assert d["X.C"] == pytest.approx(-37.85)
    assert d["CH4.C"] == pytest.approx(-121.35)
    assert d["CH4.C"] < default_values()["MeOH.C"]


def test_ode_rows_mention_fractionation(network):
    rows = dict(network.ode_table())
    assert "eps_CH4" in rows["d(X.C)/dt"]
    assert "eps_CH4" in rows["d(CH4.C)/dt"]
    assert rows["d(X)/dt"]
