"""Methanogenesis from methanol: carbon-13 routing through a methylotrophic cell.

Fixed (buffered) pools:
  MeOH (substrate), CH4_out, CO2_out (headspace), cells (exported biomass)
Variable pools:
  X (methyl intermediate), CH4, CO2, AcCoA, lipid, biomass

Reactions (net flux, all driven by the uptake flux ``net``):
  uptake      MeOH -> X                       net
  methane     X -> CH4                        net * f_CH4      (eps_CH4)
  oxidation   X -> CO2                        net * f_CO2      (eps_CO2)
  fixation    X + CO2 -> AcCoA   (1/2, 1/2)   2 * net * f_lipid
  synthesis   AcCoA -> lipid + biomass (1/3, 2/3)   2 * net * f_lipid
  CH4 efflux, CO2 efflux, lipid and biomass export to the fixed pools

Fixation draws its methyl carbon at X + eps_methyl and its carboxyl carbon at
CO2 + eps_carboxyl; lipids are made at AcCoA + eps_lipid and the rest of the
cell receives the complementary composition.

With f_CH4 + f_CO2 + f_lipid = 1 every pool size is constant and, at steady
state, d(X) = d(MeOH) - f_CH4 eps_CH4 - f_CO2 eps_CO2 - f_lipid eps_methyl.
"""

from __future__ import annotations

from typing import Any, Mapping

from .binding import Scenario, bind
from .network import Network, NetworkBuilder

FIXED = ("MeOH", "CH4_out", "CO2_out", "cells")
VARIABLE = ("X", "CH4", "CO2", "AcCoA", "lipid", "biomass")

# permil vs VPDB
MEOH_DELTA = -46.2

DEFAULT_PARAMETERS: dict[str, float] = {
    "net": 0.1,
    "f_CH4": 0.1,
    "f_CO2": 0.8,
    "f_lipid": 0.1,
    "eps_CH4": -83.5,
    "eps_CO2": 0.0,
    "eps_methyl": 0.0,
    "eps_carboxyl": 0.0,
    "eps_lipid": 0.0,
}


def methanol_network() -> Network:
    b = NetworkBuilder().add_isotope("C", standard="VPDB")
    b.add_component("MeOH", variable=False, label="methanol")
    b.add_component("CH4_out", variable=False, label="headspace CH4")
    b.add_component("CO2_out", variable=False, label="headspace CO2")
    b.add_component("cells", variable=False, label="exported biomass")
    b.add_component("X", label="methyl intermediate")
    b.add_component("CH4", label="intracellular CH4")
    b.add_component("CO2", label="intracellular CO2")
    b.add_component("AcCoA", label="acetyl-CoA")
    b.add_component("lipid")
    b.add_component("biomass", label="other biomass")

    b.add_reaction("MeOH", "X", "net", name="uptake", abscissa=0.0)
    b.add_reaction("X", "CH4", "net * f_CH4", name="methane", eps="eps_CH4", abscissa=1.0)
    b.add_reaction("X", "CO2", "net * f_CO2", name="oxidation", eps="eps_CO2", abscissa=1.0)
    b.add_reaction(
        {"X": 0.5, "CO2": 0.5},
        "AcCoA",
        "2 * net * f_lipid",
        name="fixation",
        isotopes={"X": "X.C + eps_methyl", "CO2": "CO2.C + eps_carboxyl"},
        label="Wood-Ljungdahl carbon fixation",
        abscissa=2.0,
    )
    b.add_reaction(
        "AcCoA",
        {"lipid": 1 / 3, "biomass": 2 / 3},
        "2 * net * f_lipid",
        name="synthesis",
        isotopes={"lipid": "AcCoA.C + eps_lipid"},
        abscissa=3.0,
    )
    b.add_reaction("CH4", "CH4_out", "net * f_CH4", name="CH4_efflux", abscissa=2.0)
    b.add_reaction("CO2", "CO2_out", "net * (f_CO2 - f_lipid)", name="CO2_efflux", abscissa=2.0)
    b.add_reaction("lipid", "cells", "2 * net * f_lipid / 3", name="lipid_export", abscissa=4.0)
    b.add_reaction("biomass", "cells", "4 * net * f_lipid / 3", name="biomass_export", abscissa=4.0)
    return b.compile()


def default_values(pool_size: float = 10.0) -> dict[str, float]:
    """Seed values: every variable pool at ``pool_size``, every delta 0 except MeOH."""
    values: dict[str, float] = dict(DEFAULT_PARAMETERS)
    for name in VARIABLE:
        values[name] = pool_size
    for name in FIXED + VARIABLE:
        values[f"{name}.C"] = 0.0
    values["MeOH.C"] = MEOH_DELTA
    return values


def seed_scenarios(
    network: Network, table: Mapping[str, Any] | list[Mapping[str, Any]] | None = None
) -> list[Scenario]:
    """Bind ``table`` rows over the default values (one default row if omitted)."""
    return bind(network, table if table is not None else {"name": "seed"}, defaults=default_values())


def analytic_steady_deltas(values: Mapping[str, float]) -> dict[str, float]:
    """Closed-form steady deltas of X and CH4 for a balanced parameter set."""
    x = (
        values["MeOH.C"]
        - values["f_CH4"] * values["eps_CH4"]
        - values["f_CO2"] * values["eps_CO2"]
        - values["f_lipid"] * values["eps_methyl"]
    )
    return {"X.C": x, "CH4.C": x + values["eps_CH4"]}
