from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path
from typing import Any

import numpy as np

from .green import GREEN_VECTOR_SIZE, GreenState
from .material import StateBuffer
from .models import MaterialParameters, SolverSettings, utc_now_iso

STATE_FORMAT_VERSION = 1


def _write_json(path: Path, payload: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def _read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def _npz_path(path: str | Path) -> Path:
    path = Path(path)
    return path if path.suffix == ".npz" else path.with_suffix(".npz")


def grid_to_array(state: np.ndarray) -> np.ndarray:
    """Pack an (E, P) GreenState grid into an (E, P, 32) real array."""
    n_energy, n_location = state.shape
    packed = np.empty((n_energy, n_location, GREEN_VECTOR_SIZE), dtype=float)
    for n in range(n_energy):
        for m in range(n_location):
            packed[n, m] = state[n, m].to_vector()
    return packed


def grid_from_array(packed: np.ndarray) -> np.ndarray:
    packed = np.asarray(packed, dtype=float)
    if packed.ndim != 3 or packed.shape[2] != GREEN_VECTOR_SIZE:
        raise ValueError(f"Packed state must have shape (E, P, {GREEN_VECTOR_SIZE}), got {packed.shape}.")
    state = np.empty(packed.shape[:2], dtype=object)
    for n in range(packed.shape[0]):
        for m in range(packed.shape[1]):
            state[n, m] = GreenState.from_vector(packed[n, m])
    return state


def save_state(source: Any, path: str | Path) -> Path:
    """Save the state grid (and axes) of a material or StateBuffer to an .npz file."""
    if getattr(source, "state", None) is None:
        raise ValueError("Source holds no state grid to save.")
    npz_path = _npz_path(path)
    npz_path.parent.mkdir(parents=True, exist_ok=True)
    energy = getattr(source, "energy", None)
    location = getattr(source, "location", None)
    np.savez(
        str(npz_path),
        format_version=np.array(STATE_FORMAT_VERSION),
        state=grid_to_array(source.state),
        energy=np.asarray(energy if energy is not None else [], dtype=float),
        location=np.asarray(location if location is not None else [], dtype=float),
    )
    return npz_path


def load_state(path: str | Path) -> StateBuffer:
    """Load an .npz state file into a new StateBuffer."""
    with np.load(str(_npz_path(path)), allow_pickle=False) as data:
        version = int(data["format_version"])
        if version != STATE_FORMAT_VERSION:
            raise ValueError(f"Unsupported state format version {version}.")
        buffer = StateBuffer()
        buffer.state = grid_from_array(data["state"])
        energy = np.array(data["energy"], dtype=float)
        location = np.array(data["location"], dtype=float)
    buffer.energy = energy if energy.size else None
    buffer.location = location if location.size else None
    return buffer


def serialize_material_config(material: Any) -> dict[str, Any]:
    return {
        "kind": material.kind,
        "created_at": utc_now_iso(),
        "parameters": asdict(material.parameters),
        "settings": asdict(material.settings),
    }


def deserialize_material_config(payload: dict[str, Any]) -> tuple[MaterialParameters, SolverSettings]:
    params_raw = payload.get("parameters", {})
    settings_raw = payload.get("settings", {})
    parameters = MaterialParameters(
        thouless=float(params_raw.get("thouless", 1.0)),
        scattering=float(params_raw.get("scattering", 0.01)),
    )
    settings = SolverSettings(
        mesh_scaling=int(settings_raw.get("mesh_scaling", 128)),
        order=int(settings_raw.get("order", 4)),
        error_control=int(settings_raw.get("error_control", 2)),
        tolerance=float(settings_raw.get("tolerance", 1e-6)),
        verbosity=int(settings_raw.get("verbosity", 0)),
    )
    return parameters, settings


def save_material_config(material: Any, path: str | Path) -> Path:
    return _write_json(Path(path), serialize_material_config(material))


def load_material_config(path: str | Path) -> tuple[MaterialParameters, SolverSettings]:
    return deserialize_material_config(_read_json(Path(path)))
