"""Shared utilities for isoflux.

This module provides common helpers used across the package:
- Tolerance constants for floating point comparisons
- Flat state-key naming (``"X"`` for a pool size, ``"X.C"`` for its delta)
- Carbon-share (endpoint weight) normalization
"""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Mapping, Sequence

from .exceptions import ConfigurationError


# =============================================================================
# Tolerance constants
# =============================================================================
# Reference magnitude (permil) below which isotope drift is judged absolutely
DELTA_FLOOR = 1.0

# Carbon shares on one side of a reaction must sum to 1 within this tolerance
WEIGHT_TOL = 1e-9


# =============================================================================
# State keys
# =============================================================================
def state_key(component: str, isotope: str | None = None) -> str:
    """Flat key for a component's pool size (isotope=None) or delta value."""
    if isotope is None:
        return component
    return f"{component}.{isotope}"


def split_key(key: str) -> tuple[str, str | None]:
    """Inverse of :func:`state_key`."""
    component, _, isotope = key.partition(".")
    return component, (isotope or None)


# =============================================================================
# Endpoint weights
# =============================================================================
def normalize_endpoints(
    endpoints: str | Sequence[str] | Mapping[str, float],
    *,
    side: str,
    reaction: str,
) -> dict[str, float]:
    """Turn a reaction side into a ``{component: carbon share}`` mapping.

    A single name gets share 1. Several names must come with explicit shares,
    since the carbon contribution of each endpoint is reaction metadata and
    is never guessed.
    """
    if isinstance(endpoints, str):
        return {endpoints: 1.0}

    if isinstance(endpoints, Mapping):
        weights = {str(k): float(v) for k, v in endpoints.items()}
    else:
        names = [str(x) for x in endpoints]
        if len(names) > 1:
            raise ConfigurationError(
                f"reaction '{reaction}': {side} {names} need explicit carbon shares, "
                "e.g. {'X': 0.5, 'CO2': 0.5}"
            )
        weights = {name: 1.0 for name in names}

    if not weights:
        raise ConfigurationError(f"reaction '{reaction}' has no {side}")

    for name, w in weights.items():
        if not math.isfinite(w) or w <= 0.0:
            raise ConfigurationError(
                f"reaction '{reaction}': carbon share of {side[:-1]} '{name}' must be positive, got {w}"
            )

    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOL:
        raise ConfigurationError(
            f"reaction '{reaction}': {side} carbon shares sum to {total:g}, expected 1"
        )
    return weights


def as_fraction(x: float, max_den: int = 1_000_000) -> Fraction:
    """Best rational approximation of a float with bounded denominator."""
    return Fraction(x).limit_denominator(max_den)
