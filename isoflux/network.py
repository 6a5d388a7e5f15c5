"""Reaction-network declaration and compilation into an ODE system.

We provide:
- Isotope / Component / Reaction declarations
- NetworkBuilder: a mutable draft that accumulates declarations
- Network: the immutable result of ``NetworkBuilder.compile()``

Compiling resolves the isotope stream carried by every reaction endpoint and
derives, for each variable component c and isotope i, the balance of its
pool size and of its isotope inventory q_c = m_c * d_c:

  d(m_c)/dt = sum_r sign * w_rc * phi_r
  d(q_c)/dt = sum_r sign * w_rc * phi_r * stream_rc

where phi_r is the net flux of reaction r, w_rc the carbon share of c in r,
sign = +1 for products and -1 for sources. Both rows are linear in the
fluxes, so the integrators conserve the isotope inventory of closed
sub-networks exactly, and an empty pool is a valid state (its delta is
undefined until carbon arrives). Fixed components get no equations.

The delta form used for display and for steady-state residuals follows
from the quotient rule:

  d(d_c)/dt = sum_r sign * w_rc * phi_r * (stream_rc - d_c) / m_c

The symbolic rows are kept for inspection (``Network.equations``); the
numeric right-hand sides (``Network.derivatives``, ``Network.inventory_rates``)
evaluate the same terms from closures compiled once at ``compile()`` time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError
from .expressions import (
    Compiled,
    ComponentState,
    Expr,
    ExprLike,
    Parameter,
    add,
    delta,
    div,
    mass,
    mul,
    parse_expression,
    sub,
    total,
)
from .utils import normalize_endpoints, state_key

logger = logging.getLogger(__name__)

_NAME = re.compile(r"[A-Za-z_][A-Za-z_0-9]*$")

FormulaLike = Union[str, ExprLike]


@dataclass(frozen=True)
class Isotope:
    name: str
    standard: str | None = None


@dataclass(frozen=True)
class Component:
    name: str
    variable: bool = True
    label: str | None = None


@dataclass(frozen=True)
class Endpoint:
    """A source or product slot of a reaction with its resolved isotope streams."""

    component: str
    role: str  # "source" | "product"
    weight: float
    streams: Mapping[str, Expr]  # isotope -> delta of the carbon moving through this slot

    @property
    def sign(self) -> int:
        return -1 if self.role == "source" else 1


@dataclass(frozen=True)
class Reaction:
    name: str
    sources: Mapping[str, float]
    products: Mapping[str, float]
    flux: Expr
    endpoints: tuple[Endpoint, ...]
    eps: Mapping[str, Expr] = field(default_factory=dict)
    label: str | None = None
    abscissa: float | None = None

    def endpoint(self, component: str) -> Endpoint:
        for ep in self.endpoints:
            if ep.component == component:
                return ep
        raise KeyError(f"'{component}' is not an endpoint of reaction '{self.name}'")

    def stream(self, component: str, isotope: str) -> Expr:
        return self.endpoint(component).streams[isotope]

    def __str__(self) -> str:
        def side(weights: Mapping[str, float]) -> str:
            return " + ".join(name if w == 1.0 else f"{w:g} {name}" for name, w in weights.items())

        return f"{side(self.sources)} -> {side(self.products)}"


@dataclass(frozen=True)
class Equation:
    component: str
    isotope: str | None
    rhs: Expr

    @property
    def key(self) -> str:
        return state_key(self.component, self.isotope)

    @property
    def lhs(self) -> str:
        return f"d({self.key})/dt"


@dataclass(frozen=True)
class _DraftReaction:
    sources: object
    products: object
    flux: FormulaLike
    name: str | None
    eps: object
    isotopes: object
    label: str | None
    abscissa: float | None


# =============================================================================
# Builder
# =============================================================================
class NetworkBuilder:
    """Mutable draft of a network.

    Every ``add_*`` method returns the builder so declarations can be chained;
    ``compile()`` validates the draft and returns an immutable Network.
    """

    def __init__(self) -> None:
        self._isotopes: dict[str, Isotope] = {}
        self._components: dict[str, Component] = {}
        self._reactions: list[_DraftReaction] = []

    def add_isotope(self, name: str, standard: str | None = None) -> "NetworkBuilder":
        _check_name(name, "isotope")
        if name in self._isotopes:
            raise ConfigurationError(f"isotope '{name}' declared twice")
        self._isotopes[name] = Isotope(name, standard)
        return self

    def add_component(
        self, name: str, *, variable: bool = True, label: str | None = None
    ) -> "NetworkBuilder":
        _check_name(name, "component")
        if name in self._components:
            raise ConfigurationError(f"component '{name}' declared twice")
        self._components[name] = Component(name, bool(variable), label)
        return self

    def add_components(self, names: Sequence[str], *, variable: bool = True) -> "NetworkBuilder":
        for name in names:
            self.add_component(name, variable=variable)
        return self

    def add_reaction(
        self,
        sources: str | Sequence[str] | Mapping[str, float],
        products: str | Sequence[str] | Mapping[str, float],
        flux: FormulaLike,
        *,
        name: str | None = None,
        eps: FormulaLike | Mapping[str, FormulaLike] | None = None,
        isotopes: Mapping[str, object] | None = None,
        label: str | None = None,
        abscissa: float | None = None,
    ) -> "NetworkBuilder":
        """Declare a directed reaction.

        Args:
            sources, products: a component name, or ``{name: carbon share}``
                when a side has several components (shares sum to 1).
            flux: net flux, as formula string or expression.
            eps: fractionation offset in permil added to the default source
                streams; a single value applies to every isotope.
            isotopes: explicit stream expressions per endpoint, either
                ``{isotope: {component: expr}}`` or, with a single declared
                isotope, ``{component: expr}``.
            label: human-readable label.
            abscissa: layout hint for diagram tools (not used by the engine).
        """
        self._reactions.append(
            _DraftReaction(sources, products, flux, name, eps, isotopes, label, abscissa)
        )
        return self

    def compile(self) -> "Network":
        if not self._isotopes:
            raise ConfigurationError("no isotope declared")
        if not self._components:
            raise ConfigurationError("no component declared")

        isotopes = tuple(self._isotopes.values())
        components = tuple(self._components.values())
        iso_names = tuple(i.name for i in isotopes)
        comp_names = frozenset(c.name for c in components)

        reactions: list[Reaction] = []
        seen: set[str] = set()
        for i, draft in enumerate(self._reactions):
            rxn = _compile_reaction(draft, f"R{i + 1}", comp_names, iso_names)
            if rxn.name in seen:
                raise ConfigurationError(f"reaction '{rxn.name}' declared twice")
            seen.add(rxn.name)
            reactions.append(rxn)

        network = _assemble(isotopes, components, tuple(reactions))
        logger.debug(
            "compiled network: %d isotope(s), %d components (%d variable), %d reactions, %d parameters",
            len(isotopes),
            len(components),
            len(network.variable_components),
            len(reactions),
            len(network.parameters),
        )
        return network


def _check_name(name: str, kind: str) -> None:
    if not isinstance(name, str) or not _NAME.match(name):
        raise ConfigurationError(f"invalid {kind} name {name!r}: use letters, digits and '_'")


def _parse(formula: FormulaLike, where: str, comps: frozenset[str], isos: Sequence[str]) -> Expr:
    expr = parse_expression(formula, components=comps, isotopes=isos)
    for node in expr.walk():
        if isinstance(node, ComponentState):
            if node.component not in comps:
                raise ConfigurationError(f"{where}: unknown component '{node.component}'")
            if node.isotope is not None and node.isotope not in isos:
                raise ConfigurationError(f"{where}: isotope '{node.isotope}' is not declared")
        elif isinstance(node, Parameter) and node.name in comps:
            raise ConfigurationError(f"{where}: parameter '{node.name}' shadows a component name")
    return expr


def _per_isotope(value: object, isos: Sequence[str], where: str) -> dict[str, object]:
    """Spread a scalar over all isotopes, or validate an ``{isotope: value}`` map."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        for iso in value:
            if iso not in isos:
                raise ConfigurationError(f"{where}: isotope '{iso}' is not declared")
        return dict(value)
    return {iso: value for iso in isos}


def _routing(value: object, isos: Sequence[str], where: str) -> dict[str, dict[str, object]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{where}: isotopes must be a mapping")
    if value and all(isinstance(v, Mapping) for v in value.values()):
        for iso in value:
            if iso not in isos:
                raise ConfigurationError(f"{where}: isotope '{iso}' is not declared")
        return {iso: dict(v) for iso, v in value.items()}
    if len(isos) != 1:
        raise ConfigurationError(
            f"{where}: with several isotopes declared, give routing as {{isotope: {{component: expr}}}}"
        )
    return {isos[0]: dict(value)}


def _compile_reaction(
    draft: _DraftReaction, default_name: str, comps: frozenset[str], isos: Sequence[str]
) -> Reaction:
    name = draft.name or default_name
    where = f"reaction '{name}'"

    sources = normalize_endpoints(draft.sources, side="sources", reaction=name)
    products = normalize_endpoints(draft.products, side="products", reaction=name)
    for comp in list(sources) + list(products):
        if comp not in comps:
            raise ConfigurationError(f"{where} references undeclared component '{comp}'")
    both = set(sources) & set(products)
    if both:
        raise ConfigurationError(f"{where}: {sorted(both)} appear on both sides")

    flux = _parse(draft.flux, f"{where} flux", comps, isos)
    eps = {
        iso: _parse(v, f"{where} eps[{iso}]", comps, isos)
        for iso, v in _per_isotope(draft.eps, isos, where).items()
    }

    routing = _routing(draft.isotopes, isos, where)
    streams: dict[str, dict[str, Expr]] = {c: {} for c in list(sources) + list(products)}
    for iso in isos:
        explicit: dict[str, Expr] = {}
        for comp, formula in routing.get(iso, {}).items():
            if comp not in streams:
                raise ConfigurationError(f"{where}: isotope routing given for non-endpoint '{comp}'")
            explicit[comp] = _parse(formula, f"{where} stream {comp}.{iso}", comps, isos)
        resolved = _route_isotope(where, iso, sources, products, explicit, eps.get(iso))
        for comp, expr in resolved.items():
            streams[comp][iso] = expr

    endpoints = tuple(
        Endpoint(c, "source", w, MappingProxyType(streams[c])) for c, w in sources.items()
    ) + tuple(Endpoint(c, "product", w, MappingProxyType(streams[c])) for c, w in products.items())

    return Reaction(
        name=name,
        sources=MappingProxyType(sources),
        products=MappingProxyType(products),
        flux=flux,
        endpoints=endpoints,
        eps=MappingProxyType(eps),
        label=draft.label,
        abscissa=draft.abscissa,
    )


def _route_isotope(
    where: str,
    iso: str,
    sources: Mapping[str, float],
    products: Mapping[str, float],
    explicit: Mapping[str, Expr],
    eps: Expr | None,
) -> dict[str, Expr]:
    """Resolve the stream delta at every endpoint of one reaction for one isotope.

    Sources default to their own delta plus eps. A single source with all
    products explicit takes the products' blend instead. Products default to
    the sources' blend; one missing product among explicit ones gets the
    complement that closes the isotope balance. When every stream is explicit
    the two sides must carry the same isotope.
    """
    out: dict[str, Expr] = {}
    prod_explicit = {p: explicit[p] for p in products if p in explicit}
    inferred = (
        len(sources) == 1
        and not any(s in explicit for s in sources)
        and len(prod_explicit) == len(products)
    )

    if inferred:
        (only,) = sources
        out[only] = total([mul(w, prod_explicit[p]) for p, w in products.items()])
    else:
        for s in sources:
            out[s] = explicit[s] if s in explicit else add(delta(s, iso), eps if eps is not None else 0.0)

    blend = total([mul(w, out[s]) for s, w in sources.items()])
    missing = [p for p in products if p not in prod_explicit]

    if len(missing) == len(products):
        for p in products:
            out[p] = blend
    elif len(missing) == 1:
        (p_star,) = missing
        rest = total([mul(products[p], e) for p, e in prod_explicit.items()])
        out[p_star] = div(sub(blend, rest), products[p_star])
    elif missing:
        raise ConfigurationError(
            f"{where}: isotope '{iso}' streams for products {missing} are ambiguous; "
            "give all but at most one product stream explicitly"
        )
    elif not inferred:
        rest = total([mul(products[p], e) for p, e in prod_explicit.items()])
        _check_balance(where, iso, blend, rest)
    out.update(prod_explicit)
    return out


def _check_balance(where: str, iso: str, inflow: Expr, outflow: Expr) -> None:
    """Reject fully explicit streams that create or destroy isotope.

    Both sides are compared at two fixed pseudo-random points of the values
    they read; points where either side is not finite are skipped.
    """
    keys = sorted(
        {
            node.key if isinstance(node, ComponentState) else node.name
            for expr in (inflow, outflow)
            for node in expr.walk()
            if isinstance(node, (ComponentState, Parameter))
        }
    )
    rng = np.random.default_rng(0)
    for _ in range(2):
        env = dict(zip(keys, rng.uniform(-50.0, 50.0, len(keys)).tolist()))
        with np.errstate(all="ignore"):
            a, b = float(inflow.evaluate(env)), float(outflow.evaluate(env))
        if not (np.isfinite(a) and np.isfinite(b)):
            continue
        if abs(a - b) > 1e-9 * max(1.0, abs(a), abs(b)):
            raise ConfigurationError(
                f"{where}: explicit isotope '{iso}' streams do not balance "
                f"(sources carry {a:.6g}, products {b:.6g} at a test point)"
            )


# =============================================================================
# Compiled network
# =============================================================================
@dataclass(frozen=True)
class _Kernel:
    """Closures and index arrays evaluated by ``Network.derivatives``."""

    flux_fns: tuple[Compiled, ...]
    Sx: NDArray[np.float64]             # (n_variable, nR) signed carbon shares
    ep_reaction: NDArray[np.int64]      # (nE,) reaction index of each variable endpoint
    ep_state: NDArray[np.int64]         # (nE,) variable-component index of each endpoint
    ep_weight: NDArray[np.float64]      # (nE,) signed carbon share
    stream_fns: tuple[tuple[Compiled, ...], ...]  # per isotope, per variable endpoint


@dataclass(frozen=True)
class Network:
    isotopes: tuple[Isotope, ...]
    components: tuple[Component, ...]
    reactions: tuple[Reaction, ...]
    parameters: tuple[str, ...]
    state_keys: tuple[str, ...]
    constant_keys: tuple[str, ...]
    optional_keys: tuple[str, ...]
    equations: tuple[Equation, ...]
    _kernel: _Kernel = field(repr=False, compare=False)
    _index: Mapping[str, tuple[str, int]] = field(repr=False, compare=False)

    @property
    def isotope_names(self) -> tuple[str, ...]:
        return tuple(i.name for i in self.isotopes)

    @property
    def component_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.components)

    @property
    def variable_components(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.components if c.variable)

    @property
    def fixed_components(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.components if not c.variable)

    @property
    def reaction_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.reactions)

    @property
    def required_keys(self) -> tuple[str, ...]:
        """Keys every scenario must bind, in validation order."""
        n = len(self.variable_components)
        return self.parameters + self.state_keys[:n] + tuple(
            k for k in self.constant_keys if k not in self.parameters and "." not in k
        ) + self.delta_keys

    @property
    def delta_keys(self) -> tuple[str, ...]:
        return tuple(
            state_key(c.name, iso.name) for iso in self.isotopes for c in self.components
        )

    @property
    def known_keys(self) -> frozenset[str]:
        return frozenset(self.required_keys) | frozenset(self.optional_keys)

    def component(self, name: str) -> Component:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(f"no component '{name}'")

    def reaction(self, name: str) -> Reaction:
        for r in self.reactions:
            if r.name == name:
                return r
        raise KeyError(f"no reaction '{name}'")

    def locate(self, key: str) -> tuple[str, int]:
        """Where a key lives: ``("constant", i)`` or ``("state", i)``."""
        return self._index[key]

    def stoichiometry(self):
        from .stoichiometry import Stoichiometry

        return Stoichiometry.from_network(self)

    # -------------------------------------------------------------------------
    # Numeric evaluation
    # -------------------------------------------------------------------------
    def fluxes(self, constants: NDArray[np.float64], state: NDArray[np.float64]) -> NDArray[np.float64]:
        """Net flux of every reaction (same order as ``reactions``)."""
        return np.array([f(constants, state) for f in self._kernel.flux_fns], dtype=float)

    def derivatives(
        self, constants: NDArray[np.float64], state: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Right-hand side of the ODE system, ordered like ``state_keys``."""
        return self.rates(constants, state)[0]

    def rates(
        self, constants: NDArray[np.float64], state: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """``(derivatives, fluxes)`` at one state."""
        k = self._kernel
        n = k.Sx.shape[0]
        phi = self.fluxes(constants, state)

        out = np.empty(len(self.state_keys), dtype=float)
        out[:n] = k.Sx @ phi
        masses = state[:n]
        carried = k.ep_weight * phi[k.ep_reaction]

        with np.errstate(divide="ignore", invalid="ignore"):
            for i, fns in enumerate(k.stream_fns):
                lo, hi = n * (i + 1), n * (i + 2)
                deltas = state[lo:hi]
                streams = np.array([f(constants, state) for f in fns], dtype=float)
                acc = np.zeros(n)
                np.add.at(acc, k.ep_state, carried * (streams - deltas[k.ep_state]))
                out[lo:hi] = acc / masses
        return out, phi

    def balances(
        self, constants: NDArray[np.float64], state: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Mass rows, then the delta rows multiplied by pool size.

        Zero exactly where ``derivatives`` is zero for non-empty pools, and
        finite for empty ones.
        """
        k = self._kernel
        n = k.Sx.shape[0]
        phi = self.fluxes(constants, state)
        out = np.empty(len(self.state_keys), dtype=float)
        out[:n] = k.Sx @ phi
        carried = k.ep_weight * phi[k.ep_reaction]
        for i, fns in enumerate(k.stream_fns):
            lo, hi = n * (i + 1), n * (i + 2)
            deltas = state[lo:hi]
            streams = np.array([f(constants, state) for f in fns], dtype=float)
            acc = np.zeros(n)
            np.add.at(acc, k.ep_state, carried * (streams - deltas[k.ep_state]))
            out[lo:hi] = acc
        return out

    def throughput(
        self, constants: NDArray[np.float64], state: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """Gross carbon flow through each variable pool (mean of in and out)."""
        k = self._kernel
        phi = self.fluxes(constants, state)
        acc = np.zeros(k.Sx.shape[0])
        np.add.at(acc, k.ep_state, np.abs(k.ep_weight * phi[k.ep_reaction]))
        return 0.5 * acc

    # -------------------------------------------------------------------------
    # Inventory form: z = [m, m * d per isotope]
    # -------------------------------------------------------------------------
    def to_inventory(self, state: NDArray[np.float64]) -> NDArray[np.float64]:
        n = len(self.variable_components)
        z = np.array(state, dtype=float)
        z[n:] = state[n:] * np.tile(state[:n], len(self.isotopes))
        return z

    def from_inventory(self, z: NDArray[np.float64], fill: float = np.nan) -> NDArray[np.float64]:
        """Back to ``[m, d]``; ``fill`` is the delta reported for empty pools."""
        n = len(self.variable_components)
        state = np.array(z, dtype=float)
        masses = np.tile(z[:n], len(self.isotopes))
        with np.errstate(divide="ignore", invalid="ignore"):
            state[n:] = np.where(masses != 0.0, z[n:] / masses, fill)
        return state

    def inventory_rates(
        self, constants: NDArray[np.float64], z: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """``(dz/dt, fluxes)`` of the inventory form.

        Streams that read the delta of an empty pool see 0 permil; such a
        stream only matters while carbon leaves the pool, which it cannot.
        """
        k = self._kernel
        n = k.Sx.shape[0]
        state = self.from_inventory(z, fill=0.0)
        phi = self.fluxes(constants, state)

        out = np.empty(len(self.state_keys), dtype=float)
        out[:n] = k.Sx @ phi
        carried = k.ep_weight * phi[k.ep_reaction]
        for i, fns in enumerate(k.stream_fns):
            streams = np.array([f(constants, state) for f in fns], dtype=float)
            acc = np.zeros(n)
            np.add.at(acc, k.ep_state, carried * streams)
            out[n * (i + 1) : n * (i + 2)] = acc
        return out, phi

    def ode_table(self) -> list[tuple[str, str]]:
        """``(lhs, rhs)`` string rows of the symbolic ODE system for display."""
        return [(eq.lhs, str(eq.rhs)) for eq in self.equations]


def _assemble(
    isotopes: tuple[Isotope, ...],
    components: tuple[Component, ...],
    reactions: tuple[Reaction, ...],
) -> Network:
    variable = [c.name for c in components if c.variable]
    fixed = [c.name for c in components if not c.variable]
    iso_names = [i.name for i in isotopes]
    var_pos = {name: i for i, name in enumerate(variable)}

    # parameters and referenced keys, in first-use order
    exprs: list[Expr] = []
    for rxn in reactions:
        exprs.append(rxn.flux)
        for ep in rxn.endpoints:
            exprs.extend(ep.streams[iso] for iso in iso_names)
    parameters: list[str] = []
    referenced: set[str] = set()
    for expr in exprs:
        for node in expr.walk():
            if isinstance(node, Parameter) and node.name not in parameters:
                parameters.append(node.name)
            elif isinstance(node, ComponentState):
                referenced.add(node.key)

    state_keys = list(variable) + [state_key(c, iso) for iso in iso_names for c in variable]
    fixed_masses = [c for c in fixed if c in referenced]
    constant_keys = parameters + fixed_masses + [state_key(c, iso) for iso in iso_names for c in fixed]
    optional_keys = [c for c in fixed if c not in referenced]

    index: dict[str, tuple[str, int]] = {}
    for i, key in enumerate(constant_keys):
        index[key] = ("constant", i)
    for i, key in enumerate(state_keys):
        index[key] = ("state", i)

    def locate(key: str) -> tuple[str, int]:
        return index[key]

    # symbolic equations
    equations: list[Equation] = []
    touching: dict[str, list[tuple[Reaction, Endpoint]]] = {c: [] for c in variable}
    for rxn in reactions:
        for ep in rxn.endpoints:
            if ep.component in touching:
                touching[ep.component].append((rxn, ep))
    for c in variable:
        terms = [mul(ep.sign * ep.weight, rxn.flux) for rxn, ep in touching[c]]
        equations.append(Equation(c, None, total(terms)))
    for iso in iso_names:
        for c in variable:
            terms = [
                mul(ep.sign * ep.weight, mul(rxn.flux, sub(ep.streams[iso], delta(c, iso))))
                for rxn, ep in touching[c]
            ]
            equations.append(Equation(c, iso, div(total(terms), mass(c))))

    # numeric kernel
    Sx = np.zeros((len(variable), len(reactions)))
    ep_reaction, ep_state, ep_weight = [], [], []
    active: list[Endpoint] = []
    for r, rxn in enumerate(reactions):
        for ep in rxn.endpoints:
            if ep.component in var_pos:
                Sx[var_pos[ep.component], r] += ep.sign * ep.weight
                ep_reaction.append(r)
                ep_state.append(var_pos[ep.component])
                ep_weight.append(ep.sign * ep.weight)
                active.append(ep)

    kernel = _Kernel(
        flux_fns=tuple(rxn.flux.compile(locate) for rxn in reactions),
        Sx=Sx,
        ep_reaction=np.asarray(ep_reaction, dtype=np.int64),
        ep_state=np.asarray(ep_state, dtype=np.int64),
        ep_weight=np.asarray(ep_weight, dtype=float),
        stream_fns=tuple(tuple(ep.streams[iso].compile(locate) for ep in active) for iso in iso_names),
    )
    Sx.setflags(write=False)

    return Network(
        isotopes=isotopes,
        components=components,
        reactions=reactions,
        parameters=tuple(parameters),
        state_keys=tuple(state_keys),
        constant_keys=tuple(constant_keys),
        optional_keys=tuple(optional_keys),
        equations=tuple(equations),
        _kernel=kernel,
        _index=MappingProxyType(index),
    )
