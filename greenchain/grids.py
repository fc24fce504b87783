from __future__ import annotations

import numpy as np


def build_location_grid(num_points: int = 150) -> np.ndarray:
    """Uniform positions on the normalized domain [0, 1]."""
    if num_points < 2:
        raise ValueError("num_points must be >= 2.")
    return np.linspace(0.0, 1.0, int(num_points))


def build_energy_grid(
    energy_min: float,
    energy_max: float,
    num_energies: int,
) -> np.ndarray:
    """Build a uniform energy grid including both end points."""
    if num_energies <= 0:
        raise ValueError("num_energies must be >= 1.")
    if num_energies == 1:
        return np.array([float(energy_min)], dtype=float)
    if energy_max <= energy_min:
        raise ValueError("energy_max must be > energy_min for num_energies > 1.")
    return np.linspace(float(energy_min), float(energy_max), int(num_energies))


def energy_range(
    num_energies: int,
    coupling: float = 0.2,
    gap: float = 1.0,
) -> np.ndarray:
    """Non-negative energies clustered around the superconducting gap.

    Two thirds of the points resolve [0, 1.5 gap) where the density of states
    has its structure; the rest cover [1.5 gap, cutoff] with the BCS Debye
    cutoff cosh(1/coupling) in units of the gap.
    """
    if num_energies < 3:
        raise ValueError("num_energies must be >= 3.")
    if coupling <= 0:
        raise ValueError("coupling must be positive.")
    if gap <= 0:
        raise ValueError("gap must be positive.")

    cutoff = float(np.cosh(1.0 / coupling)) * gap
    knee = 1.5 * gap
    if cutoff <= knee:
        raise ValueError("coupling too strong: Debye cutoff lies below 1.5 gap.")

    n_fine = (2 * num_energies) // 3
    n_coarse = num_energies - n_fine
    fine = np.linspace(0.0, knee, n_fine, endpoint=False)
    coarse = np.linspace(knee, cutoff, n_coarse)
    return np.concatenate([fine, coarse])
