from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .green import GreenState
from .spin import SPIN_ZERO, SpinState

if TYPE_CHECKING:
    from .material import Material


SIDES = ("left", "right")


class MaterialPhysics(ABC):
    """Equations and hooks that give a Material its physics.

    A material owns one physics object. The update engine calls
    ``diffusion_equation`` inside the ODE right-hand side and the two
    interface equations inside the boundary residual; ``init`` and the
    update hooks receive the material itself so they can touch its state
    and parameters. Coupling parameters passed to ``connect`` are stored
    per side in ``self.coupling``.
    """

    kind = "material"

    def __init__(self) -> None:
        self.coupling: dict[str, dict[str, Any]] = {}

    def couple(self, side: str, **params: Any) -> None:
        if side not in SIDES:
            raise ValueError(f"side must be 'left' or 'right', got {side!r}.")
        self.coupling[side] = dict(params)

    def decouple(self, side: str) -> None:
        self.coupling.pop(side, None)

    def is_coupled(self, side: str) -> bool:
        return side in self.coupling

    def init(self, material: Material, gap: complex = 1.0) -> None:
        """Fill the state grid with bulk BCS Riccati parameters for *gap*."""
        for n, energy in enumerate(material.energy):
            green = GreenState.bcs(complex(energy, material.scattering), gap)
            for m in range(material.location.size):
                material.state[n, m] = green

    def update_prehook(self, material: Material) -> None:
        pass

    def update_posthook(self, material: Material) -> None:
        pass

    @abstractmethod
    def diffusion_equation(
        self,
        e: complex,
        z: float,
        g: SpinState,
        gt: SpinState,
        dg: SpinState,
        dgt: SpinState,
    ) -> tuple[SpinState, SpinState]:
        """Return the second derivatives (d2g, d2gt) at position z and complex energy e."""

    @abstractmethod
    def interface_equation_left(
        self,
        boundary: GreenState,
        g: SpinState,
        gt: SpinState,
        dg: SpinState,
        dgt: SpinState,
    ) -> tuple[SpinState, SpinState]:
        """Return the residuals (r, rt) at the left interface."""

    @abstractmethod
    def interface_equation_right(
        self,
        boundary: GreenState,
        g: SpinState,
        gt: SpinState,
        dg: SpinState,
        dgt: SpinState,
    ) -> tuple[SpinState, SpinState]:
        """Return the residuals (r, rt) at the right interface."""


class FreeDiffusionPhysics(MaterialPhysics):
    """Riccati parameters without curvature, pinned to the neighbouring values.

    The diffusion equation reduces to d2g = d2gt = 0 and both interfaces
    impose continuity with the boundary Green's function (the vacuum state
    when there is no neighbour).
    """

    kind = "free diffusion"

    def diffusion_equation(self, e, z, g, gt, dg, dgt):
        return SPIN_ZERO, SPIN_ZERO

    def interface_equation_left(self, boundary, g, gt, dg, dgt):
        return g - boundary.g, gt - boundary.gt

    def interface_equation_right(self, boundary, g, gt, dg, dgt):
        return g - boundary.g, gt - boundary.gt


class LinearizedUsadelPhysics(MaterialPhysics):
    """Weak-proximity (linearized) Usadel equation for a diffusive normal metal.

    d2g = -2i e g, d2gt = -2i e gt. Towards vacuum no current flows
    (dg = dgt = 0). A coupled interface obeys the linearized
    Kupriyanov-Lukichev condition with interface parameter ``zeta``
    (coupling keyword, default 0, a transparent interface):
      left:   zeta dg = g - g_neighbour
      right: -zeta dg = g - g_neighbour
    """

    kind = "linearized usadel"

    def _zeta(self, side: str) -> float:
        return float(self.coupling[side].get("zeta", 0.0))

    def diffusion_equation(self, e, z, g, gt, dg, dgt):
        factor = -2.0j * e
        return factor * g, factor * gt

    def interface_equation_left(self, boundary, g, gt, dg, dgt):
        if not self.is_coupled("left"):
            return dg, dgt
        zeta = self._zeta("left")
        return zeta * dg - (g - boundary.g), zeta * dgt - (gt - boundary.gt)

    def interface_equation_right(self, boundary, g, gt, dg, dgt):
        if not self.is_coupled("right"):
            return dg, dgt
        zeta = self._zeta("right")
        return zeta * dg + (g - boundary.g), zeta * dgt + (gt - boundary.gt)
