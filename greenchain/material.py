"""Materials as discretized Green's-function grids and the engine that updates them.

A :class:`Material` tabulates Riccati-parametrized Green's functions on an
(energy, position) grid. ``update`` solves the diffusion equation of its
physics plugin once per energy, with boundary conditions taken from the
materials linked on either side. Links are weak references: the chain never
keeps a material alive.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any, Mapping, TextIO
import weakref

import numpy as np

from . import bvp
from .bvp import ConvergenceError
from .diagnostics import write_dos
from .green import GREEN_VECTOR_SIZE, VACUUM, GreenState
from .models import MaterialParameters, SolverSettings
from .physics import MaterialPhysics


logger = logging.getLogger(__name__)

# Large enough that convergence loops always run a first update.
_INITIAL_DIFFERENCE = 1e6


class ShapeMismatchError(ValueError):
    pass


def _validate_axis(values: Any, name: str, min_size: int) -> np.ndarray:
    axis = np.array(values, dtype=float)
    if axis.ndim != 1:
        raise ValueError(f"{name} must be a 1D array.")
    if axis.size < min_size:
        raise ValueError(f"{name} must contain at least {min_size} points.")
    if np.any(~np.isfinite(axis)):
        raise ValueError(f"{name} must contain only finite values.")
    if np.any(np.diff(axis) <= 0):
        raise ValueError(f"{name} must be strictly increasing.")
    axis.setflags(write=False)
    return axis


def new_state_grid(shape: tuple[int, int], fill: GreenState = VACUUM) -> np.ndarray:
    """Allocate an (energy, position) grid of GreenState values."""
    grid = np.empty(shape, dtype=object)
    for index in np.ndindex(*shape):
        grid[index] = fill
    return grid


class StateBuffer:
    """Detached copy of a state grid that resizes to whatever is saved into it."""

    resizable = True

    def __init__(self) -> None:
        self.state: np.ndarray | None = None
        self.energy: np.ndarray | None = None
        self.location: np.ndarray | None = None

    @property
    def shape(self) -> tuple[int, int] | None:
        return None if self.state is None else tuple(self.state.shape)

    @property
    def empty(self) -> bool:
        return self.state is None


def _copy_grid(source: Any, destination: Any) -> None:
    grid = getattr(source, "state", None)
    if grid is None:
        raise ValueError("Source holds no state grid to copy.")
    # Allocate the copy before touching the destination. GreenState values
    # are immutable, so a new object array is an independent deep copy.
    copied = np.array(grid, dtype=object, copy=True)
    if not getattr(destination, "resizable", False):
        current = getattr(destination, "state", None)
        if current is None or current.shape != copied.shape:
            found = None if current is None else current.shape
            raise ShapeMismatchError(
                f"State grid shape {copied.shape} does not match destination shape {found}."
            )
    destination.state = copied
    if getattr(destination, "resizable", False):
        energy = getattr(source, "energy", None)
        location = getattr(source, "location", None)
        destination.energy = None if energy is None else np.array(energy, dtype=float)
        destination.location = None if location is None else np.array(location, dtype=float)


class Material:
    """A diffusive material on a discretized (energy, position) grid.

    Parameters
    ----------
    energy : strictly increasing energies, fixed for the lifetime of the material
    location : strictly increasing positions on the normalized domain, at least two
    physics : plugin supplying the diffusion and interface equations
    parameters : Thouless energy and inelastic scattering
    settings : BVP solver configuration
    """

    resizable = False

    def __init__(
        self,
        energy: np.ndarray,
        location: np.ndarray,
        physics: MaterialPhysics,
        *,
        parameters: MaterialParameters | None = None,
        settings: SolverSettings | None = None,
        fill: GreenState = VACUUM,
    ) -> None:
        if not isinstance(physics, MaterialPhysics):
            raise TypeError("physics must be a MaterialPhysics instance.")
        self.energy = _validate_axis(energy, "energy", 1)
        self.location = _validate_axis(location, "location", 2)
        self.physics = physics
        # Each material owns its parameters; the setters below mutate them.
        self.parameters = replace(parameters) if parameters is not None else MaterialParameters()
        self.settings = settings if settings is not None else SolverSettings()
        self.state = new_state_grid((self.energy.size, self.location.size), fill)
        self.difference = _INITIAL_DIFFERENCE
        self._left_ref: weakref.ref[Material] | None = None
        self._right_ref: weakref.ref[Material] | None = None
        self._updating = False

    def __repr__(self) -> str:
        return (
            f"Material(kind={self.kind!r}, energies={self.energy.size}, "
            f"positions={self.location.size}, difference={self.difference:.3g})"
        )

    @property
    def kind(self) -> str:
        return self.physics.kind

    @property
    def shape(self) -> tuple[int, int]:
        return (self.energy.size, self.location.size)

    @property
    def thouless(self) -> float:
        return self.parameters.thouless

    @thouless.setter
    def thouless(self, value: float) -> None:
        if value <= 0:
            raise ValueError("thouless must be positive.")
        self.parameters.thouless = float(value)

    @property
    def scattering(self) -> float:
        return self.parameters.scattering

    @scattering.setter
    def scattering(self, value: float) -> None:
        if value < 0:
            raise ValueError("scattering must be non-negative.")
        self.parameters.scattering = float(value)

    @property
    def left_neighbor(self) -> Material | None:
        return None if self._left_ref is None else self._left_ref()

    @property
    def right_neighbor(self) -> Material | None:
        return None if self._right_ref is None else self._right_ref()

    def init(self, gap: complex = 1.0) -> None:
        self.physics.init(self, gap)

    def left_boundary(self, n: int) -> GreenState:
        """Boundary Green's function seen at the left interface for energy index *n*."""
        neighbor = self.left_neighbor
        if neighbor is None:
            return VACUUM
        return neighbor.state[n, -1]

    def right_boundary(self, n: int) -> GreenState:
        """Boundary Green's function seen at the right interface for energy index *n*."""
        neighbor = self.right_neighbor
        if neighbor is None:
            return VACUUM
        return neighbor.state[n, 0]

    def pack(self, n: int) -> np.ndarray:
        """State at energy index *n* as a (32, positions) real matrix."""
        return np.stack([green.to_vector() for green in self.state[n]], axis=1)

    def unpack(self, n: int, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (GREEN_VECTOR_SIZE, self.location.size):
            raise ValueError(
                f"Packed state must have shape ({GREEN_VECTOR_SIZE}, {self.location.size}), got {values.shape}."
            )
        for m in range(self.location.size):
            self.state[n, m] = GreenState.from_vector(values[:, m])

    def dos(self) -> np.ndarray:
        """Density of states on the (energy, position) grid."""
        table = np.empty(self.shape, dtype=float)
        for index in np.ndindex(*self.shape):
            table[index] = self.state[index].dos()
        return table

    def update(self) -> float:
        """Re-solve the diffusion equation at every energy and return the largest change.

        Raises ConvergenceError for the first energy that fails; energies before
        it have already been updated.
        """
        if self._updating:
            raise RuntimeError("Material.update is not reentrant.")
        self._updating = True
        try:
            self.physics.update_prehook(self)
            verbosity = self.settings.verbosity
            if verbosity >= 0:
                logger.info(":: %s", self.kind)

            # Neighbour edges are read once so the energy loop sees a fixed snapshot.
            boundaries = [
                (self.left_boundary(n), self.right_boundary(n)) for n in range(self.energy.size)
            ]

            self.difference = 0.0
            for n, (a, b) in enumerate(boundaries):
                if verbosity >= 1:
                    logger.debug("[%4d/%4d]  E = %.5f", n + 1, self.energy.size, self.energy[n])
                change = self._update_energy(n, a, b)
                self.difference = max(self.difference, change)

            if verbosity >= 0:
                logger.info("Max change: %.8f", self.difference)
            self.physics.update_posthook(self)
        finally:
            self._updating = False
        return self.difference

    def _update_energy(self, n: int, a: GreenState, b: GreenState) -> float:
        u = self.pack(n)
        d = u.copy()
        e = complex(self.energy[n], self.scattering) / self.thouless
        physics = self.physics

        def ode(z: np.ndarray, y: np.ndarray) -> np.ndarray:
            dydz = np.empty_like(y)
            for k in range(y.shape[1]):
                green = GreenState.from_vector(y[:, k])
                d2g, d2gt = physics.diffusion_equation(e, float(z[k]), green.g, green.gt, green.dg, green.dgt)
                dydz[:, k] = GreenState(green.dg, green.dgt, d2g, d2gt).to_vector()
            return dydz

        def bc(ya: np.ndarray, yb: np.ndarray) -> np.ndarray:
            first = GreenState.from_vector(ya)
            last = GreenState.from_vector(yb)
            r1, rt1 = physics.interface_equation_left(a, first.g, first.gt, first.dg, first.dgt)
            r2, rt2 = physics.interface_equation_right(b, last.g, last.gt, last.dg, last.dgt)
            return np.concatenate([r1.to_vector(), rt1.to_vector(), r2.to_vector(), rt2.to_vector()])

        settings = self.settings
        try:
            solution = bvp.solve(
                self.location,
                u,
                ode,
                bc,
                order=settings.order,
                error_control=settings.error_control,
                tolerance=settings.tolerance,
                max_subintervals=self.location.size * settings.mesh_scaling,
                verbosity=settings.verbosity,
            )
        except ConvergenceError as exc:
            raise exc.at_energy(n, float(self.energy[n])) from exc

        u = solution.evaluate(self.location)
        self.unpack(n, u)
        return float(np.max(np.abs(u - d)))

    def save(self, backup: Any) -> None:
        """Copy the state grid into *backup* (a StateBuffer, or a material of the same shape)."""
        _copy_grid(self, backup)

    def load(self, backup: Any) -> None:
        """Replace the state grid by a copy of the one held by *backup*.

        Raises ShapeMismatchError, leaving this material untouched, when the
        grid does not fit the energy and location axes.
        """
        _copy_grid(backup, self)

    def write_dos(self, stream: TextIO, x_left: float = 0.0, x_right: float = 1.0) -> int:
        return write_dos(self, stream, x_left, x_right)


def _neighbor_ref(owner: Material, side: str, neighbor: Material) -> weakref.ref[Material]:
    """Weak link to *neighbor* that decouples *owner*'s side when the neighbour is collected."""
    owner_ref = weakref.ref(owner)
    attribute = f"_{side}_ref"

    def collected(ref: weakref.ref[Material]) -> None:
        material = owner_ref()
        # A replaced or cleared link no longer speaks for this side.
        if material is None or getattr(material, attribute) is not ref:
            return
        setattr(material, attribute, None)
        material.physics.decouple(side)
        logger.debug("%s neighbour of %r was collected", side, material)

    return weakref.ref(neighbor, collected)


def connect(
    left: Material,
    right: Material,
    *,
    left_params: Mapping[str, Any] | None = None,
    right_params: Mapping[str, Any] | None = None,
    **shared: Any,
) -> None:
    """Link *left* and *right* at a shared interface.

    Shared keyword parameters go to both physics plugins; *left_params* and
    *right_params* add parameters for the left and right material only.
    """
    if left is right:
        raise ValueError("A material cannot be connected to itself.")
    if left.energy.shape != right.energy.shape:
        raise ShapeMismatchError(
            f"Connected materials need the same number of energies ({left.energy.size} != {right.energy.size})."
        )
    if not np.allclose(left.energy, right.energy, rtol=1e-12, atol=1e-12):
        raise ValueError("Connected materials must share the same energy grid.")

    left._right_ref = _neighbor_ref(left, "right", right)
    right._left_ref = _neighbor_ref(right, "left", left)
    left.physics.couple("right", **{**shared, **dict(left_params or {})})
    right.physics.couple("left", **{**shared, **dict(right_params or {})})


def disconnect(material: Material) -> None:
    """Remove both links of *material* and the matching links of its neighbours."""
    left = material.left_neighbor
    right = material.right_neighbor
    if left is not None and left.right_neighbor is material:
        left._right_ref = None
        left.physics.decouple("right")
    if right is not None and right.left_neighbor is material:
        right._left_ref = None
        right.physics.decouple("left")
    material._left_ref = None
    material._right_ref = None
    material.physics.decouple("left")
    material.physics.decouple("right")
