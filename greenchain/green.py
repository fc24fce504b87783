from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .spin import PAULI0, SPIN_VECTOR_SIZE, SpinState


GREEN_VECTOR_SIZE = 4 * SPIN_VECTOR_SIZE

_G = slice(0, 8)
_GT = slice(8, 16)
_DG = slice(16, 24)
_DGT = slice(24, 32)


@dataclass(frozen=True, eq=False)
class GreenState:
    """Riccati parametrization of a retarded quasiclassical Green's function.

    Holds the Riccati parameters g and gt together with their spatial
    derivatives. The packed real form has 32 components laid out as
    [g(1:8), gt(9:16), dg(17:24), dgt(25:32)].
    """

    g: SpinState = field(default_factory=SpinState)
    gt: SpinState = field(default_factory=SpinState)
    dg: SpinState = field(default_factory=SpinState)
    dgt: SpinState = field(default_factory=SpinState)

    @classmethod
    def from_vector(cls, vector: np.ndarray) -> GreenState:
        values = np.asarray(vector, dtype=float)
        if values.shape != (GREEN_VECTOR_SIZE,):
            raise ValueError(
                f"GreenState vectors must have {GREEN_VECTOR_SIZE} real components, got shape {values.shape}."
            )
        return cls(
            g=SpinState.from_vector(values[_G]),
            gt=SpinState.from_vector(values[_GT]),
            dg=SpinState.from_vector(values[_DG]),
            dgt=SpinState.from_vector(values[_DGT]),
        )

    def to_vector(self) -> np.ndarray:
        return np.concatenate(
            [self.g.to_vector(), self.gt.to_vector(), self.dg.to_vector(), self.dgt.to_vector()]
        )

    @classmethod
    def vacuum(cls) -> GreenState:
        """Normal-state Riccati parameters (all zero), used at vacuum interfaces."""
        return cls()

    @classmethod
    def bcs(cls, energy: complex, gap: complex = 1.0) -> GreenState:
        """Bulk BCS Riccati parameters at a complex energy for a complex gap.

        With tanh(theta) = |gap| / energy and phi the gap phase:
          g  =  tanh(theta/2) exp(+i phi) i sigma_y
          gt = -tanh(theta/2) exp(-i phi) i sigma_y
        A zero gap reproduces the vacuum state.
        """
        energy = complex(energy)
        if energy == 0:
            raise ValueError("BCS state requires a non-zero complex energy (add a scattering term).")
        magnitude = abs(complex(gap))
        phase = float(np.angle(complex(gap)))
        theta = np.arctanh(magnitude / energy)
        amplitude = complex(np.tanh(theta / 2.0))
        forward = amplitude * np.exp(1.0j * phase)
        backward = amplitude * np.exp(-1.0j * phase)
        return cls(
            g=SpinState([[0.0, forward], [-forward, 0.0]]),
            gt=SpinState([[0.0, -backward], [backward, 0.0]]),
        )

    def dos(self) -> float:
        """Local density of states, Re Tr[(1 - g gt)^-1 (1 + g gt)] / 2, clipped at zero."""
        product = self.g * self.gt
        normalization = (PAULI0 - product).inverse()
        value = 0.5 * (normalization * (PAULI0 + product)).trace().real
        return max(float(value), 0.0)

    def allclose(self, other: GreenState, atol: float = 1e-12) -> bool:
        return bool(np.allclose(self.to_vector(), other.to_vector(), rtol=0.0, atol=atol))


VACUUM = GreenState.vacuum()
