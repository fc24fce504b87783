from __future__ import annotations

from typing import Any, TextIO
import warnings

import numpy as np
from matplotlib.figure import Figure


# Energies below this count as negative; otherwise the negative branch is mirrored.
NEGATIVE_ENERGY_THRESHOLD = -1e-16
# Keeps the physical coordinates off the exact interface points.
ENDPOINT_INSET = 1e-8


def physical_positions(location: np.ndarray, x_left: float, x_right: float) -> np.ndarray:
    """Map normalized positions onto [x_left, x_right] with a small inset at both ends."""
    lo = x_left + ENDPOINT_INSET
    hi = x_right - ENDPOINT_INSET
    return lo + (hi - lo) * np.asarray(location, dtype=float)


def dos_table(material: Any, x_left: float = 0.0, x_right: float = 1.0) -> np.ndarray:
    """Density of states as (position, energy, dos) rows, position outer and energy inner.

    When every tabulated energy is non-negative the density of states is
    assumed even in energy: each position lists the mirrored energies
    -E_max ... -E_min first, then E_min ... E_max.
    """
    energy = np.asarray(material.energy, dtype=float)
    positions = physical_positions(material.location, x_left, x_right)
    dos = np.asarray(material.dos(), dtype=float)

    if energy.size and np.min(energy) < NEGATIVE_ENERGY_THRESHOLD:
        energies = energy
        values = dos
    else:
        energies = np.concatenate([-energy[::-1], energy])
        values = np.concatenate([dos[::-1], dos], axis=0)

    n_energy = energies.size
    table = np.empty((positions.size * n_energy, 3), dtype=float)
    for m, x in enumerate(positions):
        rows = slice(m * n_energy, (m + 1) * n_energy)
        table[rows, 0] = x
        table[rows, 1] = energies
        table[rows, 2] = values[:, m]
    return table


def write_dos(material: Any, stream: TextIO, x_left: float = 0.0, x_right: float = 1.0) -> int:
    """Write whitespace-separated ``position energy dos`` lines; returns the line count."""
    table = dos_table(material, x_left, x_right)
    if not np.all(np.isfinite(table[:, 2])):
        warnings.warn("Density of states contains non-finite values.", stacklevel=2)
    for x, e, d in table:
        stream.write(f"{float(x)!r} {float(e)!r} {float(d)!r}\n")
    return int(table.shape[0])


def plot_dos(
    material: Any,
    x_left: float = 0.0,
    x_right: float = 1.0,
    figure: Figure | None = None,
) -> Figure:
    """Colour map of the density of states over position and energy."""
    table = dos_table(material, x_left, x_right)
    n_positions = np.asarray(material.location).size
    n_energy = table.shape[0] // n_positions
    x = table[:, 0].reshape(n_positions, n_energy)
    e = table[:, 1].reshape(n_positions, n_energy)
    dos = table[:, 2].reshape(n_positions, n_energy)

    fig = figure if figure is not None else Figure(figsize=(6.0, 4.0))
    ax = fig.add_subplot(111)
    mesh = ax.pcolormesh(x, e, dos, shading="nearest", cmap="viridis")
    fig.colorbar(mesh, ax=ax, label="DOS")
    ax.set_xlabel("Position")
    ax.set_ylabel("Energy")
    return fig
