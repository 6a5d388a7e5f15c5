"""Scenario binding and incremental re-binding."""

from __future__ import annotations

import math

import numpy as np
import pytest

from isoflux import bind, rebind, scenario_table
from isoflux.exceptions import ConfigurationError, MissingParameterError
from isoflux.methanogenesis import default_values, methanol_network


@pytest.fixture(scope="module")
def network():
    return methanol_network()


def test_bind_with_defaults(network):
    rows = [{"name": "low", "net": 0.1}, {"name": "high", "net": 0.5}]
    low, high = bind(network, rows, defaults=default_values())
    assert (low.name, high.name) == ("low", "high")
    assert low["net"] == 0.1 and high["net"] == 0.5
    assert low["MeOH.C"] == high["MeOH.C"] == pytest.approx(-46.2)
    assert low.initial_masses["X"] == 10.0
    assert low.initial_deltas["C"]["MeOH"] == pytest.approx(-46.2)
    assert set(low.parameters) == set(network.parameters)


def test_default_names(network):
    a, b = bind(network, [{}, {}], defaults=default_values())
    assert (a.name, b.name) == ("scenario 1", "scenario 2")


def test_vectors_follow_layout(network):
    (s,) = bind(network, default_values())
    assert s.constants().shape == (len(network.constant_keys),)
    assert np.allclose(s.initial_state(), [s[k] for k in network.state_keys])


def test_missing_parameter_reports_first_gap(network):
    values = default_values()
    del values["f_CO2"]
    del values["X"]
    with pytest.raises(MissingParameterError) as info:
        bind(network, [default_values(), dict(values, name="broken")])
    assert info.value.symbol == "f_CO2"
    assert info.value.scenario == "broken"


def test_missing_delta(network):
    values = default_values()
    del values["cells.C"]
    with pytest.raises(MissingParameterError, match="cells.C"):
        bind(network, values)


def test_unknown_key(network):
    with pytest.raises(ConfigurationError, match="unknown key 'f_XYZ'"):
        bind(network, dict(default_values(), f_XYZ=1.0))


@pytest.mark.parametrize("bad", ["0.1", None, math.nan, math.inf, True])
def test_bad_values(network, bad):
    with pytest.raises(ValueError):
        bind(network, dict(default_values(), net=bad))


def test_duplicate_names(network):
    with pytest.raises(ValueError, match="duplicate"):
        bind(network, [{"name": "a"}, {"name": "a"}], defaults=default_values())


def test_empty_table(network):
    with pytest.raises(ValueError, match="empty"):
        bind(network, [])


def test_fixed_pool_size_is_optional(network):
    (s,) = bind(network, dict(default_values(), MeOH=1000.0))
    assert s["MeOH"] == 1000.0
    assert s.initial_masses["MeOH"] == 1000.0


def test_rebind_overrides_only_named_values(network):
    (base,) = bind(network, dict(default_values(), name="base"))
    (derived,) = rebind(base, {"f_CO2": 0.7, "f_lipid": 0.2})
    assert derived.name == "base"
    assert derived["f_CO2"] == 0.7 and derived["f_lipid"] == 0.2
    for key, value in base.values.items():
        if key not in ("f_CO2", "f_lipid"):
            assert derived[key] == value
    # the base scenario is untouched
    assert base["f_CO2"] == 0.8


def test_rebind_many_rows(network):
    (base,) = bind(network, dict(default_values(), name="base"))
    a, b = rebind(base, [{"net": 0.2}, {"net": 0.3, "name": "fast"}])
    assert (a.name, b.name) == ("base #1", "fast")
    assert (a["net"], b["net"]) == (0.2, 0.3)


def test_rebind_by_name(network):
    bases = bind(network, [{"name": "a"}, {"name": "b", "net": 0.5}], defaults=default_values())
    a2, b2 = rebind(bases, [{"name": "a", "eps_CH4": -70.0}, {"base": "b", "name": "b2"}])
    assert a2["eps_CH4"] == -70.0 and a2["net"] == 0.1
    assert b2.name == "b2" and b2["net"] == 0.5
    with pytest.raises(ValueError, match="no base scenario"):
        rebind(bases, {"name": "zzz"})


def test_rebind_validates(network):
    (base,) = bind(network, default_values())
    with pytest.raises(ConfigurationError):
        rebind(base, {"nope": 1.0})
    with pytest.raises(ValueError):
        base.override(net=math.nan)


def test_override_keeps_network(network):
    (base,) = bind(network, default_values())
    other = base.override(name="other", net=0.3)
    assert other.network is network
    assert other.name == "other"
    assert base["net"] == 0.1


def test_scenario_table(network):
    scenarios = bind(network, [{"name": "a"}, {"name": "b"}], defaults=default_values())
    rows = scenario_table(scenarios)
    assert [r["name"] for r in rows] == ["a", "b"]
    assert rows[0]["net"] == 0.1
    assert "X.C" in rows[1]
