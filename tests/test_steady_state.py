"""Steady-state solving."""

from __future__ import annotations

import numpy as np
import pytest

from isoflux import NetworkBuilder, bind, rebind, run, solve_all, solve_steady_state
from isoflux.exceptions import ConvergenceError
from isoflux.methanogenesis import analytic_steady_deltas, methanol_network, seed_scenarios


@pytest.fixture(scope="module")
def network():
    return methanol_network()


@pytest.fixture(scope="module")
def seed(network):
    (s,) = seed_scenarios(network)
    return s


@pytest.fixture(scope="module")
def steady(network, seed):
    return solve_steady_state(network, seed, 1e-5, 1e-3)


class TestMethanolScenario:
    def test_matches_closed_form(self, steady, seed):
        expected = analytic_steady_deltas(seed.values)
        assert expected["X.C"] == pytest.approx(-37.85)
        assert expected["CH4.C"] == pytest.approx(-121.35)
        assert steady.delta("X") == pytest.approx(expected["X.C"], abs=1e-3)
        assert steady.delta("CH4") == pytest.approx(expected["CH4.C"], abs=1e-3)

    def test_methane_lighter_than_methanol(self, steady, seed):
        assert steady.delta("CH4") < seed["MeOH.C"]

    def test_converged_within_tolerance(self, steady, network):
        assert steady.converged
        assert steady.strategy == "relaxation"
        assert steady.time > 0
        n = len(network.variable_components)
        res = np.array([steady.residuals[k] for k in network.state_keys])
        assert np.all(res[:n] <= 1e-5)
        assert np.all(res[n:] <= 1e-3)

    def test_pool_sizes_unchanged(self, steady):
        for comp in ("X", "CH4", "CO2", "AcCoA", "lipid", "biomass"):
            assert steady.mass(comp) == pytest.approx(10.0)

    def test_fixed_pools_reported(self, steady):
        assert steady.delta("MeOH") == pytest.approx(-46.2)
        assert "MeOH" in steady.deltas["C"]
        assert "MeOH" not in steady.masses

    def test_relaxation_alone_with_tight_tolerance(self, network, seed):
        ss = solve_steady_state(network, seed, 1e-9, 1e-8, polish=False)
        assert ss.delta("CH4") == pytest.approx(-121.35, abs=1e-2)

    def test_root_strategy_agrees(self, network, seed, steady):
        ss = solve_steady_state(network, seed, strategy="root")
        assert ss.strategy == "root" and ss.time is None
        assert np.allclose(ss.state, steady.state, atol=1e-3)


def test_idempotence(network, steady):
    again = solve_steady_state(network, steady.as_scenario())
    assert again.time == 0.0
    assert np.allclose(again.state, steady.state, atol=1e-6)


def test_rebinding_isolation(network, seed, steady):
    overrides = {"f_CO2": 0.7, "f_lipid": 0.2, "eps_CO2": -10.0}
    (changed,) = rebind(seed, overrides)
    for key, value in seed.values.items():
        if key not in overrides:
            assert changed[key] == value

    other = solve_steady_state(network, changed)
    expected = analytic_steady_deltas(changed.values)["X.C"]
    assert expected == pytest.approx(-46.2 + 8.35 + 7.0)
    assert other.delta("X") == pytest.approx(expected, abs=1e-3)

    # solving the base again is unaffected by the derived scenario
    repeat = solve_steady_state(network, seed)
    assert np.array_equal(repeat.state, steady.state)


def test_net_flux_only_sets_the_timescale(network, seed, steady):
    (fast,) = rebind(seed, {"net": 0.5, "name": "fast"})
    ss = solve_steady_state(network, fast)
    for comp in network.variable_components:
        assert ss.delta(comp) == pytest.approx(steady.delta(comp), abs=1e-3)


def test_unbalanced_branching_does_not_converge(network, seed):
    (drain,) = rebind(seed, {"f_CH4": 0.3, "name": "drain"})
    with pytest.raises(ConvergenceError) as info:
        solve_steady_state(network, drain, max_time=50.0)
    err = info.value
    assert err.scenario == "drain"
    assert err.time == 50.0
    assert err.residuals["X"] == pytest.approx(0.02)
    assert set(err.state) == set(network.state_keys)

    with pytest.raises(ConvergenceError):
        solve_steady_state(network, drain, strategy="root")


@pytest.mark.parametrize(
    "kwargs",
    [{"strategy": "newton"}, {"size_tolerance": 0.0}, {"relative_tolerance": -1.0}, {"max_time": 0.0}],
)
def test_bad_arguments(network, seed, kwargs):
    with pytest.raises(ValueError):
        solve_steady_state(network, seed, **kwargs)


def test_solve_all(network, seed):
    scenarios = rebind(seed, [{"name": "a"}, {"name": "b", "eps_CH4": -60.0}])
    serial = solve_all(network, scenarios)
    threaded = solve_all(network, scenarios, max_workers=2)
    assert list(serial) == ["a", "b"]
    for name in serial:
        assert np.allclose(serial[name].state, threaded[name].state)
    assert serial["b"].delta("CH4") == pytest.approx(-46.2 + 0.1 * 60.0 - 60.0, abs=1e-3)


def test_as_row(steady):
    row = steady.as_row()
    assert row["name"] == "seed"
    assert row["strategy"] == "relaxation"
    assert row["CH4.C"] == steady.delta("CH4")


def cycle_network():
    b = NetworkBuilder().add_isotope("C").add_components(["A", "B"])
    b.add_reaction("A", "B", "k1 * A", name="forward")
    b.add_reaction("B", "A", "k2 * B", name="backward")
    return b.compile()


def test_conserved_total_is_pinned():
    net = cycle_network()
    (s,) = bind(net, {"k1": 1.0, "k2": 1.0, "A": 3.0, "B": 1.0, "A.C": -10.0, "B.C": 10.0})

    relaxed = solve_steady_state(net, s, 1e-7, 1e-7)
    assert relaxed.mass("A") == pytest.approx(2.0, abs=1e-6)
    assert relaxed.mass("B") == pytest.approx(2.0, abs=1e-6)
    # isotope inventory 3 * -10 + 1 * 10 spread over 4 units of carbon
    assert relaxed.delta("A") == pytest.approx(-5.0, abs=1e-4)
    assert relaxed.delta("B") == pytest.approx(-5.0, abs=1e-4)

    rooted = solve_steady_state(net, s, strategy="root")
    assert rooted.mass("A") == pytest.approx(2.0, abs=1e-6)
    assert rooted.mass("B") == pytest.approx(2.0, abs=1e-6)
    assert rooted.delta("A") == pytest.approx(-5.0, abs=1e-6)
    assert rooted.delta("B") == pytest.approx(-5.0, abs=1e-6)


def test_polish_lands_on_the_cycle_fixed_point():
    net = cycle_network()
    (s,) = bind(net, {"k1": 2.0, "k2": 1.0, "A": 1.0, "B": 5.0, "A.C": 20.0, "B.C": -4.0})
    # loose relaxation leaves room for the polish
    ss = solve_steady_state(net, s, 1e-3, 1e-3)
    assert ss.mass("A") == pytest.approx(2.0, abs=1e-6)
    assert ss.mass("B") == pytest.approx(4.0, abs=1e-6)
    # (20 - 20) / 6 permil
    assert ss.delta("A") == pytest.approx(0.0, abs=1e-6)
    assert ss.delta("B") == pytest.approx(0.0, abs=1e-6)


def test_masses_are_those_of_the_long_run(network, seed, steady):
    traj = run(network, seed, 200, time_step=100.0, method="LSODA")
    final = traj.final
    for comp in network.variable_components:
        assert steady.mass(comp) >= 0.0
        assert steady.mass(comp) == pytest.approx(final[comp], abs=1e-6)
        assert steady.delta(comp) == pytest.approx(final[f"{comp}.C"], abs=1e-3)


def test_root_strategy_keeps_unread_pool_sizes(network, seed):
    # no rate reads a pool size here, so the steady equations cannot move them
    ss = solve_steady_state(network, seed, strategy="root")
    for comp in network.variable_components:
        assert ss.mass(comp) == seed[comp]


def test_polished_deltas_match_relaxed_ones(network, seed, steady):
    relaxed = solve_steady_state(network, seed, 1e-10, 1e-9, polish=False)
    for comp in network.variable_components:
        assert steady.delta(comp) == pytest.approx(relaxed.delta(comp), abs=1e-5)


def test_unreachable_root_raises(network, seed):
    # branching sums to 1.2, so X drains whatever the deltas
    (drain,) = rebind(seed, {"f_CH4": 0.3, "name": "drain"})
    with pytest.raises(ConvergenceError, match="admissible") as info:
        solve_steady_state(network, drain, strategy="root")
    assert info.value.time is None
    assert info.value.state["X"] == pytest.approx(10.0)


def test_converged_is_always_reported(steady):
    assert steady.converged is True
    assert steady.as_row()["converged"] is True
