"""Boundary-value solver used for the per-energy diffusion problems.

The heavy lifting is done by :func:`scipy.integrate.solve_bvp`, a collocation
solver that refines the mesh by inserting nodes until the collocation defect
meets the tolerance. This module adds the calling contract the materials rely
on: a node budget, the error-control modes, a global error estimate, and a
:class:`ConvergenceError` that records how far the solve got.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable
import warnings

import numpy as np
from scipy.integrate import solve_bvp

from .models import normalize_error_control, normalize_order


logger = logging.getLogger(__name__)

OdeFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]
BoundaryFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]

# solve_bvp warns below 100 machine epsilons.
_MIN_TOLERANCE = 1e-13
_RELAXED_DEFECT_FACTOR = 100.0
_GLOBAL_REFINEMENT = 10.0
_MAX_GLOBAL_PASSES = 4


class ConvergenceError(RuntimeError):
    """A boundary-value solve did not reach its tolerance within the node budget."""

    def __init__(
        self,
        message: str,
        *,
        energy_index: int | None = None,
        residual: float = float("nan"),
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.energy_index = energy_index
        self.residual = float(residual)
        self.status = status

    def at_energy(self, energy_index: int, energy: float | None = None) -> ConvergenceError:
        where = f"energy index {energy_index}"
        if energy is not None:
            where += f" (E = {energy:.6g})"
        return ConvergenceError(
            f"{where}: {self.message}",
            energy_index=energy_index,
            residual=self.residual,
            status=self.status,
        )


@dataclass
class BVPSolution:
    mesh: np.ndarray                 # refined mesh, a superset of the caller's mesh
    values: np.ndarray               # solution samples, shape (n, mesh.size)
    residual: float                  # largest normalized RMS collocation defect
    global_error: float | None       # estimate, None under pure defect control
    iterations: int
    interpolant: Callable[[np.ndarray], np.ndarray]

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        return np.asarray(self.interpolant(np.asarray(x, dtype=float)), dtype=float)


def _max_residual(result) -> float:
    residuals = np.asarray(result.rms_residuals, dtype=float)
    if residuals.size == 0:
        return 0.0
    return float(np.max(residuals))


def _solve_defect(
    ode: OdeFunction,
    bc: BoundaryFunction,
    mesh: np.ndarray,
    guess: np.ndarray,
    tolerance: float,
    max_nodes: int,
    verbose: int,
):
    result = solve_bvp(
        ode,
        bc,
        mesh,
        guess,
        tol=tolerance,
        bc_tol=tolerance,
        max_nodes=max_nodes,
        verbose=verbose,
    )
    residual = _max_residual(result)
    if not result.success:
        raise ConvergenceError(
            f"BVP solver failed ({result.message.strip()}); last defect {residual:.3g}, "
            f"tolerance {tolerance:.3g}, {result.x.size} nodes.",
            residual=residual,
            status=int(result.status),
        )
    return result, residual


def _midpoint_mesh(mesh: np.ndarray) -> np.ndarray:
    mid = 0.5 * (mesh[:-1] + mesh[1:])
    return np.sort(np.concatenate([mesh, mid]))


def _estimate_global_error(
    ode: OdeFunction,
    bc: BoundaryFunction,
    result,
    tolerance: float,
    max_nodes: int,
    verbose: int,
):
    """Re-solve on the mesh with interval midpoints inserted and compare at the coarse nodes.

    *tolerance* is the defect tolerance of the re-solve. A loose value keeps
    solve_bvp on the doubled mesh; a tight one lets it insert further nodes.
    """
    fine_mesh = _midpoint_mesh(result.x)
    if fine_mesh.size > max_nodes:
        raise ConvergenceError(
            f"Node budget of {max_nodes} exhausted while estimating the global error "
            f"({fine_mesh.size} nodes required).",
            residual=_max_residual(result),
            status=1,
        )
    finer, residual = _solve_defect(
        ode, bc, fine_mesh, result.sol(fine_mesh), tolerance, max_nodes, verbose
    )
    error = float(np.max(np.abs(finer.sol(result.x) - result.y)))
    return error, finer, residual


def _wrap(result, residual: float, global_error: float | None) -> BVPSolution:
    return BVPSolution(
        mesh=np.asarray(result.x, dtype=float),
        values=np.asarray(result.y, dtype=float),
        residual=residual,
        global_error=global_error,
        iterations=int(result.niter),
        interpolant=result.sol,
    )


def solve(
    mesh: np.ndarray,
    initial: np.ndarray,
    ode: OdeFunction,
    bc: BoundaryFunction,
    *,
    order: int = 4,
    error_control: int = 2,
    tolerance: float = 1e-6,
    max_subintervals: int | None = None,
    verbosity: int = 0,
) -> BVPSolution:
    """Solve y' = ode(x, y) subject to bc(y(a), y(b)) = 0.

    *ode* is called with the mesh (m,) and states (n, m) and must return the
    derivatives (n, m); *bc* returns the n boundary residuals. Nodes may be
    inserted until the mesh has *max_subintervals* intervals, but the
    caller's nodes are never moved.

    Error control modes:
      1  defect control at *tolerance*
      2  global error control: a relaxed defect solve, refined on the doubled
         mesh until the global estimate meets *tolerance*
      3  defect control, then global error control: the defect-controlled
         solution is returned once its global estimate meets *tolerance*;
         later refinements only track the global error
      4  defect and global error control: the returned solution is the
         refined one, solved at a defect tolerance ten times tighter, whose
         coarse companion met the global estimate

    Raises ConvergenceError when the tolerance cannot be met.
    """
    order = normalize_order(order)
    mode = normalize_error_control(error_control)
    x = np.asarray(mesh, dtype=float)
    y = np.asarray(initial, dtype=float)
    if x.ndim != 1 or x.size < 2:
        raise ValueError("mesh must be a 1D array with at least two points.")
    if np.any(np.diff(x) <= 0):
        raise ValueError("mesh must be strictly increasing.")
    if y.ndim != 2 or y.shape[1] != x.size:
        raise ValueError(f"initial state must have shape (n, {x.size}), got {y.shape}.")
    if not np.isfinite(tolerance) or tolerance <= 0:
        raise ValueError("tolerance must be positive.")

    subintervals = int(max_subintervals) if max_subintervals is not None else 128 * x.size
    if subintervals < x.size - 1:
        raise ValueError("max_subintervals must be at least the number of mesh intervals.")
    max_nodes = subintervals + 1
    verbose = min(max(int(verbosity), 0), 2)
    tol = max(float(tolerance), _MIN_TOLERANCE)

    if order != 4:
        warnings.warn(
            f"solve_bvp collocates with a 4th-order scheme; requested order {order} is not used.",
            stacklevel=2,
        )
    logger.debug("BVP solve: order=%d mode=%d tol=%.3g nodes=%d/%d", order, mode, tol, x.size, max_nodes)

    if mode == 1:
        result, residual = _solve_defect(ode, bc, x, y, tol, max_nodes, verbose)
        return _wrap(result, residual, None)

    relaxed_tol = tol * _RELAXED_DEFECT_FACTOR
    current, residual = _solve_defect(
        ode, bc, x, y, relaxed_tol if mode == 2 else tol, max_nodes, verbose
    )
    # Only mode 4 keeps a defect requirement once the global phase starts.
    refine_tol = max(tol / _GLOBAL_REFINEMENT, _MIN_TOLERANCE) if mode == 4 else relaxed_tol
    error = float("inf")
    for _ in range(_MAX_GLOBAL_PASSES):
        error, finer, fine_residual = _estimate_global_error(
            ode, bc, current, refine_tol, max_nodes, verbose
        )
        logger.debug("Global error estimate %.3g on %d nodes", error, finer.x.size)
        if error <= tol:
            if mode == 4:
                return _wrap(finer, fine_residual, error)
            return _wrap(current, residual, error)
        current, residual = finer, fine_residual

    raise ConvergenceError(
        f"Global error estimate {error:.3g} above tolerance {tol:.3g} after "
        f"{_MAX_GLOBAL_PASSES} refinements.",
        residual=error,
        status=None,
    )
