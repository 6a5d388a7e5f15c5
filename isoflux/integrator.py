"""Time-course integration of a compiled network.

We provide:
- Trajectory container (pool sizes, deltas, cumulative reaction fluxes)
- run(): integrate one scenario on a fixed output grid
- run_all(): independent scenarios, optionally on a thread pool

Two schemes:
- "RK4": classic fixed-step Runge-Kutta, ``substeps`` internal steps per
  output step
- any ``scipy.integrate.solve_ivp`` method ("RK45", "LSODA", "BDF", ...),
  integrated ``chunk_steps`` output steps at a time so that a failure keeps
  everything integrated before it

The integrated state is the inventory form [m, m * d] (see
``Network.inventory_rates``), whose isotope rows are linear in the fluxes;
deltas are recovered per output row and are NaN while a pool is empty.
The cumulative net flux of every reaction is integrated alongside; it closes
the carbon budget against the fixed pools.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence, TypeVar

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import solve_ivp

from .binding import Scenario
from .exceptions import IntegrationError
from .network import Network
from .utils import state_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _NonFiniteDerivative(Exception):
    def __init__(self, t: float):
        self.t = t
        super().__init__(f"non-finite derivative at t={t:g}")


@dataclass(frozen=True)
class Trajectory:
    """Dense time series of one scenario.

    ``states`` has one row per output time, laid out like
    ``network.state_keys``; ``cumulative_flux`` one column per reaction.
    The delta of a pool is NaN at times when the pool is empty.
    Fixed pools keep their bound values for the whole run.
    """

    scenario: str
    time: NDArray[np.float64]
    states: NDArray[np.float64]
    cumulative_flux: NDArray[np.float64]
    fixed: Mapping[str, float] = field(repr=False)
    network: Network = field(repr=False, compare=False)

    def __len__(self) -> int:
        return int(self.time.shape[0])

    def _column(self, key: str) -> NDArray[np.float64]:
        if key in self.fixed:
            return np.full(len(self), self.fixed[key])
        try:
            where, i = self.network.locate(key)
        except KeyError:
            raise KeyError(f"no value '{key}' in trajectory of scenario '{self.scenario}'") from None
        if where != "state":
            raise KeyError(f"no value '{key}' in trajectory of scenario '{self.scenario}'")
        return self.states[:, i]

    def mass(self, component: str) -> NDArray[np.float64]:
        return self._column(state_key(component))

    def delta(self, component: str, isotope: str | None = None) -> NDArray[np.float64]:
        return self._column(state_key(component, _default_isotope(self.network, isotope)))

    def flux(self, reaction: str) -> NDArray[np.float64]:
        """Cumulative net flux of one reaction."""
        return self.cumulative_flux[:, self.network.reaction_names.index(reaction)]

    @property
    def masses(self) -> dict[str, NDArray[np.float64]]:
        return {
            c: self.mass(c)
            for c in self.network.component_names
            if c in self.network.variable_components or c in self.fixed
        }

    @property
    def deltas(self) -> dict[str, dict[str, NDArray[np.float64]]]:
        return {
            iso: {c: self.delta(c, iso) for c in self.network.component_names}
            for iso in self.network.isotope_names
        }

    def snapshot(self, index: int = -1) -> dict[str, float]:
        """Every known pool size and delta at one output time, by flat key."""
        out = {c: float(v[index]) for c, v in self.masses.items()}
        for iso, per in self.deltas.items():
            out.update({state_key(c, iso): float(v[index]) for c, v in per.items()})
        return out

    @property
    def final(self) -> dict[str, float]:
        return self.snapshot(-1)

    def total_mass(self) -> NDArray[np.float64]:
        """Summed size of the variable pools at every output time."""
        n = len(self.network.variable_components)
        return self.states[:, :n].sum(axis=1)

    def boundary_exchange(self) -> NDArray[np.float64]:
        """Net carbon delivered by the fixed pools up to every output time."""
        return self.network.stoichiometry().boundary_exchange(self.cumulative_flux)


def _default_isotope(network: Network, isotope: str | None) -> str:
    if isotope is not None:
        return isotope
    if len(network.isotopes) != 1:
        raise ValueError(f"several isotopes declared {list(network.isotope_names)}; name one")
    return network.isotope_names[0]


def _check_scenario(network: Network, scenario: Scenario) -> None:
    if scenario.network is not network:
        raise ValueError(f"scenario '{scenario.name}' was bound to a different network")


def _rk4_step(
    f: Callable[[float, NDArray[np.float64]], NDArray[np.float64]],
    t: float,
    y: NDArray[np.float64],
    h: float,
) -> NDArray[np.float64]:
    k1 = f(t, y)
    k2 = f(t + 0.5 * h, y + 0.5 * h * k1)
    k3 = f(t + 0.5 * h, y + 0.5 * h * k2)
    k4 = f(t + h, y + h * k3)
    return y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def run(
    network: Network,
    scenario: Scenario,
    step_count: int,
    *,
    time_step: float = 1.0,
    method: str = "RK4",
    substeps: int = 1,
    rtol: float = 1e-8,
    atol: float = 1e-10,
    chunk_steps: int = 100,
) -> Trajectory:
    """Integrate one scenario for ``step_count`` steps of ``time_step``.

    Returns a Trajectory with ``step_count + 1`` points at ``t = k * time_step``.

    Raises:
        IntegrationError: non-finite state or derivative, or solver failure;
            carries the partial trajectory up to the last valid point.
        ValueError: bad step arguments or a scenario bound to another network.
    """
    _check_scenario(network, scenario)
    if int(step_count) != step_count or step_count < 0:
        raise ValueError(f"step_count must be a non-negative integer, got {step_count!r}")
    if not time_step > 0:
        raise ValueError(f"time_step must be positive, got {time_step!r}")
    if substeps < 1 or chunk_steps < 1:
        raise ValueError("substeps and chunk_steps must be >= 1")
    step_count = int(step_count)

    c = scenario.constants()
    ns = len(network.state_keys)
    nr = len(network.reactions)

    def rhs(t: float, y: NDArray[np.float64]) -> NDArray[np.float64]:
        dz, phi = network.inventory_rates(c, y[:ns])
        return np.concatenate([dz, phi])

    times = np.arange(step_count + 1, dtype=float) * time_step
    Y = np.empty((step_count + 1, ns + nr))
    Y[0, :ns] = network.to_inventory(scenario.initial_state())
    Y[0, ns:] = 0.0

    logger.debug(
        "integrating scenario '%s': %d steps of %g (%s)", scenario.name, step_count, time_step, method
    )

    def fail(last: int, reason: str) -> IntegrationError:
        partial = _trajectory(network, scenario, times[: last + 1], Y[: last + 1])
        logger.debug("scenario '%s' diverged after t=%g: %s", scenario.name, times[last], reason)
        return IntegrationError(
            reason,
            scenario=scenario.name,
            time=float(times[last]),
            state=partial.snapshot(-1),
            trajectory=partial,
        )

    if not np.all(np.isfinite(rhs(0.0, Y[0]))):
        raise fail(0, "non-finite derivative at the initial state")

    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        if method.upper() == "RK4":
            h = time_step / substeps
            for k in range(step_count):
                y = Y[k]
                for j in range(substeps):
                    y = _rk4_step(rhs, times[k] + j * h, y, h)
                if not np.all(np.isfinite(y)):
                    raise fail(k, "non-finite state")
                Y[k + 1] = y
        else:
            _run_solve_ivp(rhs, times, Y, method, rtol, atol, chunk_steps, fail)

    logger.debug("scenario '%s' integrated to t=%g", scenario.name, times[-1])
    return _trajectory(network, scenario, times, Y)


def _run_solve_ivp(
    rhs: Callable[[float, NDArray[np.float64]], NDArray[np.float64]],
    times: NDArray[np.float64],
    Y: NDArray[np.float64],
    method: str,
    rtol: float,
    atol: float,
    chunk_steps: int,
    fail: Callable[[int, str], IntegrationError],
) -> None:
    def guarded(t: float, y: NDArray[np.float64]) -> NDArray[np.float64]:
        dy = rhs(t, y)
        if not np.all(np.isfinite(dy)):
            raise _NonFiniteDerivative(t)
        return dy

    step_count = len(times) - 1
    k = 0
    while k < step_count:
        k_end = min(k + chunk_steps, step_count)
        try:
            sol = solve_ivp(
                guarded,
                (times[k], times[k_end]),
                Y[k],
                t_eval=times[k : k_end + 1],
                method=method,
                rtol=rtol,
                atol=atol,
            )
        except _NonFiniteDerivative as exc:
            raise fail(k, str(exc)) from None

        block = sol.y.T[1:]
        ok = np.all(np.isfinite(block), axis=1)
        n_ok = int(np.argmin(ok)) if not ok.all() else block.shape[0]
        Y[k + 1 : k + 1 + n_ok] = block[:n_ok]
        if not sol.success or n_ok < k_end - k:
            reason = sol.message if not sol.success else "non-finite state"
            raise fail(k + n_ok, f"integration failed: {reason}")
        k = k_end


def _trajectory(
    network: Network, scenario: Scenario, times: NDArray[np.float64], Y: NDArray[np.float64]
) -> Trajectory:
    ns = len(network.state_keys)
    fixed = {
        k: scenario.values[k]
        for c in network.fixed_components
        for k in [state_key(c)] + [state_key(c, iso) for iso in network.isotope_names]
        if k in scenario.values
    }
    return Trajectory(
        scenario=scenario.name,
        time=np.array(times, dtype=float),
        states=np.array([network.from_inventory(z) for z in Y[:, :ns]], dtype=float),
        cumulative_flux=np.array(Y[:, ns:], dtype=float),
        fixed=fixed,
        network=network,
    )


def map_scenarios(
    fn: Callable[[Scenario], T], scenarios: Iterable[Scenario], max_workers: int | None = None
) -> dict[str, T]:
    """Apply ``fn`` to each scenario, keyed by name in input order.

    ``max_workers`` > 1 fans the scenarios out on a thread pool; the compiled
    network and the scenarios are immutable, so nothing is shared mutably.
    """
    scenarios = list(scenarios)
    if max_workers is None or max_workers <= 1 or len(scenarios) < 2:
        results = [fn(s) for s in scenarios]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(fn, s) for s in scenarios]
            results = [f.result() for f in futures]
    return {s.name: r for s, r in zip(scenarios, results)}


def run_all(
    network: Network,
    scenarios: Sequence[Scenario],
    step_count: int,
    *,
    max_workers: int | None = None,
    **kwargs,
) -> dict[str, Trajectory]:
    """``run()`` every scenario independently; keyword arguments are shared."""
    return map_scenarios(lambda s: run(network, s, step_count, **kwargs), scenarios, max_workers)
