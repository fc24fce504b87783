from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from .diagnostics import dos_table
from .green import VACUUM, GreenState
from .material import Material, connect
from .models import SolverSettings
from .physics import FreeDiffusionPhysics
from .spin import PAULI0, PAULI3


@dataclass
class ValidationReport:
    packing_roundtrip: dict[str, Any]
    vacuum_convergence: dict[str, Any]
    dos_symmetry: dict[str, Any]
    chain_propagation: dict[str, Any]

    @property
    def overall_passed(self) -> bool:
        return all(
            bool(section.get("passed", False))
            for section in (
                self.packing_roundtrip,
                self.vacuum_convergence,
                self.dos_symmetry,
                self.chain_propagation,
            )
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "packing_roundtrip": self.packing_roundtrip,
            "vacuum_convergence": self.vacuum_convergence,
            "dos_symmetry": self.dos_symmetry,
            "chain_propagation": self.chain_propagation,
            "overall_passed": self.overall_passed,
        }


def validate_packing_roundtrip(*, samples: int = 16, seed: int = 7, tolerance: float = 1e-12) -> dict[str, Any]:
    rng = np.random.default_rng(seed)
    max_error = 0.0
    for _ in range(samples):
        vector = rng.normal(size=32)
        recovered = GreenState.from_vector(vector).to_vector()
        max_error = max(max_error, float(np.max(np.abs(recovered - vector))))
    return {"passed": max_error <= tolerance, "max_error": max_error, "tolerance": tolerance}


def validate_vacuum_convergence(settings: SolverSettings) -> dict[str, Any]:
    """A free material between two vacua must stay in the vacuum state."""
    material = Material(
        energy=np.linspace(0.0, 2.0, 3),
        location=np.linspace(0.0, 1.0, 4),
        physics=FreeDiffusionPhysics(),
        settings=settings,
    )
    difference = material.update()
    deviation = max(
        float(np.max(np.abs(material.state[index].to_vector() - VACUUM.to_vector())))
        for index in np.ndindex(*material.shape)
    )
    passed = difference < settings.tolerance and deviation < settings.tolerance
    return {"passed": passed, "difference": difference, "max_deviation": deviation}


def validate_dos_symmetry() -> dict[str, Any]:
    material = Material(
        energy=[0.5, 1.5, 2.5],
        location=[0.0, 1.0],
        physics=FreeDiffusionPhysics(),
    )
    material.init(gap=1.0)
    table = dos_table(material, 0.0, 1.0)
    per_position = table[:3 * 2]
    mirrored = per_position[:3]
    direct = per_position[3:]
    passed = (
        table.shape == (12, 3)
        and np.array_equal(mirrored[:, 1], -direct[::-1, 1])
        and np.array_equal(mirrored[:, 2], direct[::-1, 2])
    )
    return {"passed": bool(passed), "rows": int(table.shape[0])}


def validate_chain_propagation(settings: SolverSettings) -> dict[str, Any]:
    """After updating the left material, its right neighbour must see the new edge."""
    energy = np.linspace(0.0, 1.0, 2)
    location = np.linspace(0.0, 1.0, 3)
    left = Material(energy, location, FreeDiffusionPhysics(), settings=settings)
    right = Material(
        energy,
        location,
        FreeDiffusionPhysics(),
        settings=settings,
        fill=GreenState(g=0.25 * PAULI0, gt=0.25 * PAULI3),
    )
    connect(left, right)
    left.update()
    fresh = all(right.left_boundary(n) is left.state[n, -1] for n in range(energy.size))
    # Free diffusion pins g and gt at the interface; the slopes differ across it.
    edge_error = max(
        float(np.max(np.abs(left.state[n, -1].to_vector()[:16] - right.state[n, 0].to_vector()[:16])))
        for n in range(energy.size)
    )
    passed = fresh and edge_error < 10.0 * settings.tolerance
    return {"passed": bool(passed), "fresh_boundary": fresh, "edge_error": edge_error}


def run_fast_validation_suite(settings: SolverSettings | None = None) -> ValidationReport:
    s = settings or SolverSettings(mesh_scaling=16, error_control=1, tolerance=1e-8, verbosity=-1)
    return ValidationReport(
        packing_roundtrip=validate_packing_roundtrip(),
        vacuum_convergence=validate_vacuum_convergence(s),
        dos_symmetry=validate_dos_symmetry(),
        chain_propagation=validate_chain_propagation(s),
    )
