"""Error hierarchy for isoflux.

All errors carry enough context (offending name, scenario, last valid state)
to diagnose a failure without re-running the model.
"""

from __future__ import annotations

from typing import Any, Mapping


class IsofluxError(RuntimeError):
    """Base class for all isoflux errors."""


class ConfigurationError(IsofluxError):
    """Raised when a network declaration is malformed.

    Examples: dangling component reference, ambiguous multi-endpoint isotope
    routing, isotope referenced but not declared.
    """


class MissingParameterError(IsofluxError):
    """Raised when a scenario does not bind every symbol the network uses."""

    def __init__(self, symbol: str, scenario: str | None = None):
        self.symbol = symbol
        self.scenario = scenario
        where = f" in scenario '{scenario}'" if scenario is not None else ""
        super().__init__(f"unbound symbol '{symbol}'{where}")


class IntegrationError(IsofluxError):
    """Raised when the time-course integration produces a non-finite state.

    ``trajectory`` holds the part of the run that was integrated successfully,
    ``time`` and ``state`` the last valid point.
    """

    def __init__(
        self,
        message: str,
        *,
        scenario: str,
        time: float,
        state: Mapping[str, float] | None = None,
        trajectory: Any = None,
    ):
        self.scenario = scenario
        self.time = time
        self.state = dict(state) if state is not None else {}
        self.trajectory = trajectory
        super().__init__(f"{message} (scenario '{scenario}', last valid t={time:g})")


class ConvergenceError(IsofluxError):
    """Raised when the steady-state solver fails to meet its tolerances."""

    def __init__(
        self,
        message: str,
        *,
        scenario: str,
        residuals: Mapping[str, float],
        state: Mapping[str, float],
        time: float | None = None,
    ):
        self.scenario = scenario
        self.residuals = dict(residuals)
        self.state = dict(state)
        self.time = time
        worst = max(self.residuals.items(), key=lambda kv: kv[1], default=None)
        detail = f"; worst residual {worst[0]}={worst[1]:.3g}" if worst else ""
        super().__init__(f"{message} (scenario '{scenario}'{detail})")
