"""Steady states of a compiled network.

We provide:
- SteadyState container (pool sizes, deltas, residuals, how it was found)
- solve_steady_state(): one scenario
- solve_all(): independent scenarios, optionally on a thread pool

Strategies:
- "relaxation" (default): integrate the inventory form with LSODA over
  doubling intervals until the state stops moving, then optionally polish
  with a root finder
- "root": ``scipy.optimize.root`` directly from the scenario's initial state

A state is steady when every pool-size derivative satisfies
|dm/dt| <= size_tolerance and every delta derivative satisfies
|dd/dt| / max(|d|, 1 permil) <= relative_tolerance.

The root finder works on the pool sizes that some rate or stream reads and
on every delta; the other pool sizes cannot be recovered from the steady
equations and keep their starting value. Each conservation law replaces one
mass row with its conserved total, and, where the law also conserves the
isotope inventory sum(r * m * d), one delta row per isotope with that
inventory. Totals come from the scenario's initial state.

NOTE: A root-finder result is only used if it is finite, has no negative
pool, meets the tolerances and, when polishing, lies within reach of the
relaxed state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import solve_ivp
from scipy.optimize import root

from .binding import Scenario
from .conservation import conservation_laws
from .exceptions import ConvergenceError
from .expressions import ComponentState
from .integrator import _check_scenario, _default_isotope, map_scenarios
from .network import Network
from .utils import DELTA_FLOOR, state_key

logger = logging.getLogger(__name__)

STRATEGIES = ("relaxation", "root")

# a polished value may move this many local relaxation distances from the relaxed one
REACH = 10.0


@dataclass(frozen=True)
class SteadyState:
    """Steady state of one scenario.

    ``converged`` is always True: a solve that misses its tolerances raises
    ConvergenceError instead of returning. It is kept so tabulated results
    carry an explicit status column.
    """

    scenario: str
    state: NDArray[np.float64]  # laid out like network.state_keys
    converged: bool
    residuals: Mapping[str, float]
    strategy: str
    time: float | None = None  # relaxation time reached
    base: Scenario = field(repr=False, compare=False, default=None)

    @property
    def network(self) -> Network:
        return self.base.network

    @property
    def values(self) -> dict[str, float]:
        """Every pool size and delta by flat key, fixed pools included."""
        out = {k: v for k, v in self.base.values.items() if k not in self.network.parameters}
        out.update(zip(self.network.state_keys, (float(v) for v in self.state)))
        return out

    def mass(self, component: str) -> float:
        return self.values[state_key(component)]

    def delta(self, component: str, isotope: str | None = None) -> float:
        return self.values[state_key(component, _default_isotope(self.network, isotope))]

    @property
    def masses(self) -> dict[str, float]:
        v = self.values
        return {c: v[c] for c in self.network.component_names if c in v}

    @property
    def deltas(self) -> dict[str, dict[str, float]]:
        v = self.values
        return {
            iso: {c: v[state_key(c, iso)] for c in self.network.component_names}
            for iso in self.network.isotope_names
        }

    def as_scenario(self, name: str | None = None) -> Scenario:
        """The originating scenario with this steady state as initial values."""
        return self.base.override(dict(zip(self.network.state_keys, self.state.tolist())), name=name)

    def as_row(self) -> dict[str, Any]:
        return {"name": self.scenario, "strategy": self.strategy, "converged": self.converged, **self.values}


# =============================================================================
# Residuals and acceptance
# =============================================================================
def _residuals(
    network: Network, c: NDArray[np.float64], y: NDArray[np.float64]
) -> NDArray[np.float64]:
    """|dm/dt| and |dd/dt| / max(|d|, DELTA_FLOOR), laid out like ``state_keys``.

    The delta of an empty pool is undefined; its row is judged on the raw
    isotope balance, which vanishes when nothing flows through it.
    """
    n = len(network.variable_components)
    filled = np.where(np.isnan(y), 0.0, y)
    with np.errstate(over="ignore", invalid="ignore"):
        res = np.abs(network.balances(c, filled))
    m = np.abs(np.tile(filled[:n], len(network.isotopes)))
    scale = np.maximum(np.abs(filled[n:]), DELTA_FLOOR)
    with np.errstate(divide="ignore", invalid="ignore"):
        res[n:] = np.where(m > 0.0, res[n:] / m, res[n:]) / scale
    return res


def _meets(network: Network, res: NDArray[np.float64], size_tol: float, rel_tol: float) -> bool:
    n = len(network.variable_components)
    return bool(
        np.all(np.isfinite(res)) and np.all(res[:n] <= size_tol) and np.all(res[n:] <= rel_tol)
    )


def _within_reach(
    network: Network,
    c: NDArray[np.float64],
    relaxed: NDArray[np.float64],
    polished: NDArray[np.float64],
    size_tol: float,
    rel_tol: float,
) -> bool:
    """Whether every polished value lies where the relaxed one is still heading.

    A pool relaxing with residence time tau = m / throughput sits about
    |dx/dt| * tau from its fixed point.
    """
    n = len(network.variable_components)
    blocks = len(network.isotopes) + 1
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        dx = np.abs(network.derivatives(c, relaxed))
        flow = np.tile(network.throughput(c, relaxed), blocks)
        tau = np.where(flow > 0.0, np.abs(np.tile(relaxed[:n], blocks)) / flow, 0.0)
    tol = np.empty_like(relaxed)
    tol[:n] = size_tol
    tol[n:] = rel_tol * np.maximum(np.abs(relaxed[n:]), DELTA_FLOOR)
    return bool(np.all(np.abs(polished - relaxed) <= REACH * dx * tau + tol))


# =============================================================================
# Solver
# =============================================================================
def solve_steady_state(
    network: Network,
    scenario: Scenario,
    size_tolerance: float = 1e-5,
    relative_tolerance: float = 1e-3,
    *,
    strategy: str = "relaxation",
    max_time: float = 1e8,
    initial_interval: float = 1.0,
    polish: bool = True,
    method: str = "lm",
    rtol: float = 1e-8,
    atol: float = 1e-10,
) -> SteadyState:
    """Find the steady state reached from ``scenario``'s initial values.

    Args:
      size_tolerance: bound on every |dm/dt|
      relative_tolerance: bound on every |dd/dt| / max(|d|, 1 permil)
      strategy: "relaxation" or "root"
      max_time: relaxation gives up past this simulated time
      initial_interval: first relaxation interval; later ones double
      polish: refine a relaxed state with the root finder (kept only if it
        passes the same checks as a root result and stays within reach of
        the relaxed state)
      method: ``scipy.optimize.root`` method

    Raises:
      ConvergenceError: tolerances not met, or the root finder returned a
        state with a negative pool; carries residuals and last state.
      ValueError: bad arguments or a scenario bound to another network.
    """
    _check_scenario(network, scenario)
    if strategy not in STRATEGIES:
        raise ValueError(f"unknown strategy {strategy!r}; expected one of {STRATEGIES}")
    if not (size_tolerance > 0 and relative_tolerance > 0):
        raise ValueError("tolerances must be positive")
    if not (max_time > 0 and initial_interval > 0):
        raise ValueError("max_time and initial_interval must be positive")

    c = scenario.constants()
    y0 = scenario.initial_state()
    n = len(network.variable_components)

    def fail(message: str, y: NDArray[np.float64], t: float | None) -> ConvergenceError:
        res = _residuals(network, c, y)
        return ConvergenceError(
            message,
            scenario=scenario.name,
            residuals=dict(zip(network.state_keys, res.tolist())),
            state=dict(zip(network.state_keys, y.tolist())),
            time=t,
        )

    def accept(y: NDArray[np.float64]) -> bool:
        return (
            bool(np.all(np.isfinite(y)) and np.all(y[:n] >= -size_tolerance))
            and _meets(network, _residuals(network, c, y), size_tolerance, relative_tolerance)
        )

    if strategy == "root":
        y = _root(network, c, y0, y0, method)
        if not accept(y):
            raise fail("root finder did not reach an admissible steady state", y, None)
        t = None
    else:
        y, t = _relax(
            network, c, y0, size_tolerance, relative_tolerance,
            max_time=max_time, initial_interval=initial_interval, rtol=rtol, atol=atol, fail=fail,
        )
        if polish:
            y_polished = _root(network, c, y, y0, method)
            if accept(y_polished) and _within_reach(
                network, c, y, y_polished, size_tolerance, relative_tolerance
            ):
                y = y_polished
            else:
                logger.debug("scenario '%s': polish rejected, keeping relaxed state", scenario.name)

    res = _residuals(network, c, y)
    logger.debug(
        "scenario '%s' steady (%s, t=%s), max residual %.3g",
        scenario.name, strategy, t, float(res.max(initial=0.0)),
    )
    return SteadyState(
        scenario=scenario.name,
        state=np.array(y, dtype=float),
        converged=True,
        residuals=dict(zip(network.state_keys, res.tolist())),
        strategy=strategy,
        time=t,
        base=scenario,
    )


def _relax(
    network: Network,
    c: NDArray[np.float64],
    y0: NDArray[np.float64],
    size_tolerance: float,
    relative_tolerance: float,
    *,
    max_time: float,
    initial_interval: float,
    rtol: float,
    atol: float,
    fail,
) -> tuple[NDArray[np.float64], float]:
    def rhs(t: float, z: NDArray[np.float64]) -> NDArray[np.float64]:
        return network.inventory_rates(c, z)[0]

    t, z, dt = 0.0, network.to_inventory(y0), float(initial_interval)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        while True:
            y = network.from_inventory(z)
            if not np.all(np.isfinite(rhs(t, z))):
                raise fail("non-finite derivative during relaxation", y, t)
            if _meets(network, _residuals(network, c, y), size_tolerance, relative_tolerance):
                return y, t
            if t >= max_time:
                raise fail(f"no steady state within t={max_time:g}", y, t)

            t_next = min(t + dt, max_time)
            sol = solve_ivp(rhs, (t, t_next), z, method="LSODA", rtol=rtol, atol=atol)
            if not sol.success or not np.all(np.isfinite(sol.y[:, -1])):
                raise fail(f"relaxation failed: {sol.message}", y, t)
            logger.debug("relaxed to t=%g", t_next)
            z, t, dt = sol.y[:, -1], t_next, 2.0 * dt


# =============================================================================
# Root problem
# =============================================================================
def _free_masses(network: Network) -> list[int]:
    """Indices of the variable pools whose size some rate or stream reads."""
    read: set[str] = set()
    for rxn in network.reactions:
        exprs = [rxn.flux] + [s for ep in rxn.endpoints for s in ep.streams.values()]
        for expr in exprs:
            for node in expr.walk():
                if isinstance(node, ComponentState) and node.isotope is None:
                    read.add(node.component)
    return [i for i, name in enumerate(network.variable_components) if name in read]


def _inventory_laws(network: Network, laws: Sequence[NDArray[np.int64]]) -> list[NDArray[np.int64]]:
    """Conservation laws that also conserve sum(r * m * d) for every isotope.

    That holds when every reaction touching the law's pools has only variable
    endpoints, all with the same coefficient.
    """
    pos = {name: i for i, name in enumerate(network.variable_components)}
    out = []
    for r in laws:
        ok = True
        for rxn in network.reactions:
            touched = [pos.get(ep.component) for ep in rxn.endpoints]
            if not any(i is not None and r[i] != 0 for i in touched):
                continue
            if any(i is None for i in touched) or len({int(r[i]) for i in touched}) != 1:
                ok = False
                break
        if ok:
            out.append(r)
    return out


def _root(
    network: Network,
    c: NDArray[np.float64],
    start: NDArray[np.float64],
    reference: NDArray[np.float64],
    method: str,
) -> NDArray[np.float64]:
    """Root of the pinned steady-state equations, starting from ``start``.

    Pool sizes nothing reads keep their value in ``start``; conserved totals
    and inventories are taken from ``reference``.
    """
    n = len(network.variable_components)
    start = np.where(np.isnan(start), 0.0, start)
    free = _free_masses(network)
    laws = conservation_laws(network)

    used: set[int] = set()
    mass_pins = []
    for r in laws:
        candidates = [i for i in free if r[i] != 0 and i not in used]
        if not candidates:
            continue
        i = max(candidates, key=lambda j: abs(r[j]))
        used.add(i)
        mass_pins.append((i, r.astype(float), float(r @ reference[:n])))

    inventory_pins = []
    for r in _inventory_laws(network, laws):
        rf = r.astype(float)
        for k in range(len(network.isotopes)):
            lo = n * (k + 1)
            target = float(np.sum(rf * reference[:n] * reference[lo : lo + n]))
            candidates = [lo + int(i) for i in np.flatnonzero(r) if lo + int(i) not in used]
            if not candidates:
                continue
            j = max(candidates, key=lambda j: abs(rf[j - lo] * start[j - lo]))
            used.add(j)
            inventory_pins.append((j, lo, rf, target))

    idx = np.array(free + list(range(n, len(start))), dtype=np.int64)
    if idx.size == 0:
        return start

    def expand(x: NDArray[np.float64]) -> NDArray[np.float64]:
        y = np.array(start, dtype=float)
        y[idx] = x
        return y

    def f(x: NDArray[np.float64]) -> NDArray[np.float64]:
        y = expand(x)
        g = network.balances(c, y)
        for i, r, total in mass_pins:
            g[i] = float(r @ y[:n]) - total
        for j, lo, r, target in inventory_pins:
            g[j] = float(np.sum(r * y[:n] * y[lo : lo + n])) - target
        return g[idx]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        res = root(f, start[idx], method=method)
    if not res.success:
        logger.debug("root finder: %s", res.message)
    return expand(np.asarray(res.x, dtype=float))


def solve_all(
    network: Network,
    scenarios: Sequence[Scenario],
    size_tolerance: float = 1e-5,
    relative_tolerance: float = 1e-3,
    *,
    max_workers: int | None = None,
    **kwargs,
) -> dict[str, SteadyState]:
    """``solve_steady_state()`` every scenario independently."""
    return map_scenarios(
        lambda s: solve_steady_state(network, s, size_tolerance, relative_tolerance, **kwargs),
        scenarios,
        max_workers,
    )
