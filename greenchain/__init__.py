"""Diffusive Green's-function materials solved as linked boundary-value problems."""

from .bvp import BVPSolution, ConvergenceError
from .chain import MaterialChain, SweepReport
from .green import VACUUM, GreenState
from .material import Material, ShapeMismatchError, StateBuffer, connect, disconnect
from .models import InvalidConfigurationError, MaterialParameters, SolverSettings
from .physics import FreeDiffusionPhysics, LinearizedUsadelPhysics, MaterialPhysics
from .spin import PAULI0, PAULI1, PAULI2, PAULI3, SpinState
from .validation import ValidationReport, run_fast_validation_suite

__all__ = [
    "BVPSolution",
    "ConvergenceError",
    "FreeDiffusionPhysics",
    "GreenState",
    "InvalidConfigurationError",
    "LinearizedUsadelPhysics",
    "Material",
    "MaterialChain",
    "MaterialParameters",
    "MaterialPhysics",
    "PAULI0",
    "PAULI1",
    "PAULI2",
    "PAULI3",
    "ShapeMismatchError",
    "SolverSettings",
    "SpinState",
    "StateBuffer",
    "SweepReport",
    "VACUUM",
    "ValidationReport",
    "connect",
    "disconnect",
    "run_fast_validation_suite",
]
