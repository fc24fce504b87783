from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable, Iterator

from .bvp import ConvergenceError
from .material import Material, StateBuffer, connect


logger = logging.getLogger(__name__)

FAILURE_POLICIES = {"abort", "skip", "relax"}


def normalize_failure_policy(value: str) -> str:
    policy = str(value).strip().lower()
    if policy not in FAILURE_POLICIES:
        allowed = ", ".join(sorted(FAILURE_POLICIES))
        raise ValueError(f"Unsupported failure policy '{value}'. Supported values: {allowed}.")
    return policy


@dataclass
class SweepReport:
    differences: list[float]
    skipped: list[tuple[int, int | None]] = field(default_factory=list)  # (material id, energy index)
    converged: bool = False

    @property
    def max_difference(self) -> float:
        return max(self.differences, default=0.0)


class MaterialChain:
    """Ordered collection of materials connected end to end.

    Materials are addressed by their integer position in the chain. Each
    sweep updates them left to right (Gauss-Seidel), so every update sees
    the freshest state of the neighbour on its left and the previous state
    of the neighbour on its right.

    failure_policy decides what happens when a material update raises
    ConvergenceError: ``abort`` re-raises, ``skip`` restores the material
    and carries on, ``relax`` retries with the tolerance multiplied by
    ``relax_factor`` up to ``max_relaxations`` times.
    """

    def __init__(
        self,
        materials: Iterable[Material] = (),
        *,
        failure_policy: str = "abort",
        relax_factor: float = 10.0,
        max_relaxations: int = 2,
        **coupling: Any,
    ) -> None:
        if relax_factor <= 1.0:
            raise ValueError("relax_factor must be > 1.")
        if max_relaxations < 0:
            raise ValueError("max_relaxations must be non-negative.")
        self.failure_policy = normalize_failure_policy(failure_policy)
        self.relax_factor = float(relax_factor)
        self.max_relaxations = int(max_relaxations)
        self._materials: list[Material] = []
        for material in materials:
            self.append(material, **coupling)

    def __len__(self) -> int:
        return len(self._materials)

    def __iter__(self) -> Iterator[Material]:
        return iter(self._materials)

    def __getitem__(self, material_id: int) -> Material:
        return self._materials[material_id]

    def append(self, material: Material, **coupling: Any) -> int:
        """Add *material* at the right end, connecting it to the previous last material."""
        if any(existing is material for existing in self._materials):
            raise ValueError("Material is already part of this chain.")
        if self._materials:
            connect(self._materials[-1], material, **coupling)
        self._materials.append(material)
        return len(self._materials) - 1

    def neighbors(self, material_id: int) -> tuple[int | None, int | None]:
        if not 0 <= material_id < len(self._materials):
            raise IndexError(f"No material with id {material_id}.")
        left = material_id - 1 if material_id > 0 else None
        right = material_id + 1 if material_id + 1 < len(self._materials) else None
        return left, right

    def sweep(self, threshold: float | None = None) -> SweepReport:
        """Update every material once, left to right."""
        differences: list[float] = []
        skipped: list[tuple[int, int | None]] = []
        for material_id, material in enumerate(self._materials):
            failed_energy = self._update_material(material_id, material)
            if failed_energy is not None:
                skipped.append((material_id, failed_energy))
            differences.append(material.difference)

        converged = not skipped and all(
            material.difference < (threshold if threshold is not None else material.settings.tolerance)
            for material in self._materials
        )
        return SweepReport(differences=differences, skipped=skipped, converged=converged)

    def converge(self, threshold: float | None = None, max_sweeps: int = 16) -> list[SweepReport]:
        """Sweep until every material changes by less than *threshold*.

        Without a threshold each material is measured against its own solver
        tolerance. Returns the reports of all sweeps; check ``[-1].converged``.
        """
        if max_sweeps <= 0:
            raise ValueError("max_sweeps must be >= 1.")
        reports: list[SweepReport] = []
        for index in range(max_sweeps):
            report = self.sweep(threshold)
            reports.append(report)
            logger.info("Sweep %d: max change %.3g", index + 1, report.max_difference)
            if report.converged:
                break
        else:
            logger.warning("Chain did not converge within %d sweeps.", max_sweeps)
        return reports

    def _update_material(self, material_id: int, material: Material) -> int | None:
        """Update one material under the failure policy; returns the failed energy index if skipped."""
        if self.failure_policy == "abort":
            material.update()
            return None

        snapshot = StateBuffer()
        material.save(snapshot)

        if self.failure_policy == "skip":
            try:
                material.update()
            except ConvergenceError as exc:
                material.load(snapshot)
                # Infinite change keeps the chain from reporting convergence.
                material.difference = float("inf")
                logger.warning("Skipping material %d: %s", material_id, exc)
                return exc.energy_index
            return None

        original = material.settings
        try:
            for attempt in range(self.max_relaxations + 1):
                try:
                    material.update()
                    return None
                except ConvergenceError as exc:
                    material.load(snapshot)
                    if attempt == self.max_relaxations:
                        raise
                    material.settings = original.relaxed(self.relax_factor ** (attempt + 1))
                    logger.warning(
                        "Material %d: %s; retrying with tolerance %.3g",
                        material_id,
                        exc,
                        material.settings.tolerance,
                    )
        finally:
            material.settings = original
        return None
