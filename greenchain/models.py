from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import math


METHOD_ORDERS = {2, 4, 6}
ERROR_CONTROL_MODES = {1, 2, 3, 4}
VERBOSITY_LEVELS = {-1, 0, 1, 2}


class InvalidConfigurationError(ValueError):
    pass


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: object, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidConfigurationError(f"{name} must be an integer, got {value!r}.")
    try:
        number = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise InvalidConfigurationError(f"{name} must be an integer, got {value!r}.") from exc
    if number != value and not (isinstance(value, str) and value.strip() == str(number)):
        raise InvalidConfigurationError(f"{name} must be an integer, got {value!r}.")
    return number


def normalize_order(value: object) -> int:
    order = _as_int(value, "order")
    if order not in METHOD_ORDERS:
        allowed = ", ".join(str(v) for v in sorted(METHOD_ORDERS))
        raise InvalidConfigurationError(f"Unsupported method order '{value}'. Supported values: {allowed}.")
    return order


def normalize_error_control(value: object) -> int:
    mode = _as_int(value, "error_control")
    if mode not in ERROR_CONTROL_MODES:
        allowed = ", ".join(str(v) for v in sorted(ERROR_CONTROL_MODES))
        raise InvalidConfigurationError(
            f"Unsupported error control mode '{value}'. Supported values: {allowed}."
        )
    return mode


@dataclass
class SolverSettings:
    mesh_scaling: int = 128        # max growth of the mesh (power of two)
    order: int = 4                 # one-step method order (2, 4, 6)
    error_control: int = 2         # 1: defect, 2: global error, 3: 1 then 2, 4: 1 and 2
    tolerance: float = 1e-6
    verbosity: int = 0             # -1: silent ... 2: solver trace

    def __post_init__(self) -> None:
        self.mesh_scaling = _as_int(self.mesh_scaling, "mesh_scaling")
        if self.mesh_scaling < 2 or self.mesh_scaling & (self.mesh_scaling - 1):
            raise InvalidConfigurationError(
                f"mesh_scaling must be a power of two >= 2, got {self.mesh_scaling}."
            )
        self.order = normalize_order(self.order)
        self.error_control = normalize_error_control(self.error_control)
        self.tolerance = float(self.tolerance)
        if not math.isfinite(self.tolerance) or self.tolerance <= 0:
            raise InvalidConfigurationError("tolerance must be a positive finite number.")
        self.verbosity = _as_int(self.verbosity, "verbosity")
        if self.verbosity not in VERBOSITY_LEVELS:
            raise InvalidConfigurationError(f"verbosity must be one of -1, 0, 1, 2, got {self.verbosity}.")

    def relaxed(self, factor: float) -> SolverSettings:
        """Copy of these settings with the tolerance multiplied by *factor*."""
        if factor <= 1.0:
            raise InvalidConfigurationError("Relaxation factor must be > 1.")
        return replace(self, tolerance=self.tolerance * factor)


@dataclass
class MaterialParameters:
    thouless: float = 1.0      # Thouless energy (D / L^2), energy unit of the diffusion equation
    scattering: float = 0.01   # inelastic scattering, imaginary part of the energy

    def __post_init__(self) -> None:
        self.thouless = float(self.thouless)
        self.scattering = float(self.scattering)
        if not math.isfinite(self.thouless) or self.thouless <= 0:
            raise InvalidConfigurationError("thouless must be a positive finite number.")
        if not math.isfinite(self.scattering) or self.scattering < 0:
            raise InvalidConfigurationError("scattering must be a non-negative finite number.")
