"""Parameter binding: attach numbers to a compiled network.

A scenario row maps flat keys to numbers:
- parameter names (``net``, ``f_CH4``, ``eps_CH4``)
- ``"<component>"``: initial pool size (required for variable pools, and for
  fixed pools whose size appears in an expression)
- ``"<component>.<isotope>"``: initial delta (required for every pool)
- ``"name"`` (optional): the scenario name

The only broadcasting rule: a value in ``defaults`` applies to every row
unless the row sets that key itself. ``rebind()`` and ``Scenario.override()``
derive new scenarios from a previous binding, overriding a subset of values
and inheriting the rest unchanged.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError, MissingParameterError
from .network import Network
from .utils import state_key

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]


@dataclass(frozen=True)
class Scenario:
    """One fully bound parameter set over a compiled network."""

    name: str
    values: Mapping[str, float]
    network: Network = field(repr=False, compare=False)

    def __getitem__(self, key: str) -> float:
        return self.values[key]

    @property
    def parameters(self) -> dict[str, float]:
        return {p: self.values[p] for p in self.network.parameters}

    @property
    def initial_masses(self) -> dict[str, float]:
        return {c: self.values[c] for c in self.network.component_names if c in self.values}

    @property
    def initial_deltas(self) -> dict[str, dict[str, float]]:
        return {
            iso: {c: self.values[state_key(c, iso)] for c in self.network.component_names}
            for iso in self.network.isotope_names
        }

    def constants(self) -> NDArray[np.float64]:
        return np.array([self.values[k] for k in self.network.constant_keys], dtype=float)

    def initial_state(self) -> NDArray[np.float64]:
        return np.array([self.values[k] for k in self.network.state_keys], dtype=float)

    def override(self, values: Row | None = None, *, name: str | None = None, **kwargs: float) -> "Scenario":
        """New scenario with some values replaced, everything else inherited."""
        merged = {**self.values, **dict(values or {}), **kwargs}
        return _make(self.network, name or self.name, merged)

    def as_row(self) -> dict[str, Any]:
        return {"name": self.name, **self.values}


def bind(network: Network, table: Row | Sequence[Row], *, defaults: Row | None = None) -> list[Scenario]:
    """Bind a table of scenario rows to a network.

    Raises:
        MissingParameterError: first unbound key of the first incomplete row.
        ConfigurationError: a key the network does not know.
        ValueError: non-numeric or non-finite values, duplicate names.
    """
    rows = _rows(table)
    base = dict(defaults or {})
    base.pop("name", None)

    scenarios = []
    for i, row in enumerate(rows):
        row = dict(row)
        name = str(row.pop("name", f"scenario {i + 1}"))
        scenarios.append(_make(network, name, {**base, **row}))
    _check_unique(scenarios)
    logger.debug("bound %d scenario(s): %s", len(scenarios), [s.name for s in scenarios])
    return scenarios


def rebind(base: Scenario | Sequence[Scenario], table: Row | Sequence[Row]) -> list[Scenario]:
    """Re-bind with a table that overrides a subset of a previous binding.

    With a single base scenario every row inherits from it. With several,
    each row inherits from the base scenario named by its ``"base"`` key, or
    else by its ``"name"``.
    """
    rows = _rows(table)
    bases = [base] if isinstance(base, Scenario) else list(base)
    if not bases:
        raise ValueError("rebind() needs at least one base scenario")
    by_name = {s.name: s for s in bases}

    scenarios = []
    for i, row in enumerate(rows):
        row = dict(row)
        ref = row.pop("base", None)
        if len(bases) == 1 and ref is None:
            parent = bases[0]
        else:
            key = ref if ref is not None else row.get("name")
            if key not in by_name:
                raise ValueError(f"row {i + 1}: no base scenario named {key!r}")
            parent = by_name[key]
        default_name = parent.name if len(rows) == 1 else f"{parent.name} #{i + 1}"
        name = str(row.pop("name", default_name))
        scenarios.append(parent.override(row, name=name))
    _check_unique(scenarios)
    logger.debug("re-bound %d scenario(s) from %s", len(scenarios), list(by_name))
    return scenarios


def scenario_table(scenarios: Iterable[Scenario]) -> list[dict[str, Any]]:
    """Rows for tabular display, one per scenario."""
    return [s.as_row() for s in scenarios]


def _rows(table: Row | Sequence[Row]) -> list[Row]:
    rows = [table] if isinstance(table, Mapping) else list(table)
    if not rows:
        raise ValueError("empty scenario table")
    return rows


def _check_unique(scenarios: Sequence[Scenario]) -> None:
    seen: set[str] = set()
    for s in scenarios:
        if s.name in seen:
            raise ValueError(f"duplicate scenario name '{s.name}'")
        seen.add(s.name)


def _make(network: Network, name: str, values: Row) -> Scenario:
    known = network.known_keys
    for key in values:
        if key not in known:
            raise ConfigurationError(f"scenario '{name}': unknown key '{key}'")

    for key in network.required_keys:
        if key not in values:
            raise MissingParameterError(key, name)

    clean: dict[str, float] = {}
    for key in network.required_keys + network.optional_keys:
        if key not in values:
            continue
        v = values[key]
        if isinstance(v, bool) or not isinstance(v, (int, float, np.number)):
            raise ValueError(f"scenario '{name}': value of '{key}' must be a number, got {v!r}")
        v = float(v)
        if not math.isfinite(v):
            raise ValueError(f"scenario '{name}': value of '{key}' is not finite")
        clean[key] = v

    return Scenario(name=name, values=MappingProxyType(clean), network=network)
