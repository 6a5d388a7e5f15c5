from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .network import Network


@dataclass(frozen=True)
class Stoichiometry:
    """Carbon-share stoichiometry of a compiled network.

    Rows are pools, columns reactions; entry (i, r) is the signed carbon share
    of pool i in reaction r (+ product, - source):
      S = (S^X; S^Y)

    Shapes:
      Sx: (nX, nR)  variable pools
      Sy: (nY, nR)  fixed pools, or None when there are none

    Every column of the stacked matrix sums to 0: each reaction moves exactly
    its net flux of carbon.
    """

    Sx: np.ndarray
    Sy: np.ndarray | None = None
    x_names: tuple[str, ...] = ()
    y_names: tuple[str, ...] = ()
    reaction_names: tuple[str, ...] = ()

    def __post_init__(self):
        Sx = np.asarray(self.Sx, dtype=float)
        object.__setattr__(self, "Sx", Sx)
        if self.Sy is not None:
            Sy = np.asarray(self.Sy, dtype=float)
            if Sy.shape[1] != Sx.shape[1]:
                raise ValueError(f"Sy has nR={Sy.shape[1]} but Sx has nR={Sx.shape[1]}")
            object.__setattr__(self, "Sy", Sy)

    @property
    def nX(self) -> int:
        return int(self.Sx.shape[0])

    @property
    def nR(self) -> int:
        return int(self.Sx.shape[1])

    @property
    def nY(self) -> int:
        return 0 if self.Sy is None else int(self.Sy.shape[0])

    @classmethod
    def from_network(cls, network: "Network") -> "Stoichiometry":
        x_names = network.variable_components
        y_names = network.fixed_components
        row = {name: i for i, name in enumerate(x_names)}
        row_y = {name: i for i, name in enumerate(y_names)}

        Sx = np.zeros((len(x_names), len(network.reactions)))
        Sy = np.zeros((len(y_names), len(network.reactions)))
        for r, rxn in enumerate(network.reactions):
            for ep in rxn.endpoints:
                if ep.component in row:
                    Sx[row[ep.component], r] += ep.sign * ep.weight
                else:
                    Sy[row_y[ep.component], r] += ep.sign * ep.weight

        return cls(
            Sx=Sx,
            Sy=Sy if y_names else None,
            x_names=x_names,
            y_names=y_names,
            reaction_names=network.reaction_names,
        )

    def boundary_exchange(self, cumulative_flux: np.ndarray) -> np.ndarray:
        """Net carbon delivered to the variable pools by the fixed pools.

        Args:
          cumulative_flux: (..., nR) integrated net flux per reaction

        Returns:
          (...,) cumulative inflow from fixed pools minus outflow to them
        """
        if self.Sy is None:
            return np.zeros(np.shape(cumulative_flux)[:-1])
        return -(np.asarray(cumulative_flux) @ self.Sy.sum(axis=0))
