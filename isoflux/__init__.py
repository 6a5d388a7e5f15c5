"""Isotope-tracking reaction networks.

Core contract:
- inputs: components, isotopes and reactions with symbolic net fluxes and
  isotope streams
- workflow: NetworkBuilder.compile() -> bind() scenarios -> run() time
  courses / solve_steady_state()

The mass and delta ODE rows are documented in ``isoflux.network``.
"""

import logging

from .binding import Scenario, bind, rebind, scenario_table
from .conservation import conservation_laws
from .exceptions import (
    ConfigurationError,
    ConvergenceError,
    IntegrationError,
    IsofluxError,
    MissingParameterError,
)
from .expressions import const, delta, mass, param, parse_expression
from .integrator import Trajectory, run, run_all
from .network import Component, Isotope, Network, NetworkBuilder, Reaction
from .steady_state import SteadyState, solve_all, solve_steady_state
from .stoichiometry import Stoichiometry

logging.getLogger(__name__).addHandler(logging.NullHandler())
