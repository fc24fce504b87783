from __future__ import annotations

from numbers import Number

import numpy as np


SPIN_VECTOR_SIZE = 8


class SpinState:
    """A 2x2 complex matrix in spin space.

    Values are immutable. The real-vector form lists the matrix entries in
    column-major order, each entry as a (real, imag) pair, which gives the
    layout [re a11, im a11, re a21, im a21, re a12, im a12, re a22, im a22].
    """

    __slots__ = ("_matrix",)

    def __init__(self, matrix: np.ndarray | list | None = None) -> None:
        if matrix is None:
            data = np.zeros((2, 2), dtype=complex)
        else:
            data = np.array(matrix, dtype=complex)
            if data.shape != (2, 2):
                raise ValueError(f"SpinState requires a 2x2 matrix, got shape {data.shape}.")
        data.setflags(write=False)
        self._matrix = data

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @classmethod
    def from_vector(cls, vector: np.ndarray) -> SpinState:
        values = np.asarray(vector, dtype=float)
        if values.shape != (SPIN_VECTOR_SIZE,):
            raise ValueError(
                f"SpinState vectors must have {SPIN_VECTOR_SIZE} real components, got shape {values.shape}."
            )
        entries = values[0::2] + 1j * values[1::2]
        return cls(entries.reshape((2, 2), order="F"))

    def to_vector(self) -> np.ndarray:
        flat = self._matrix.ravel(order="F")
        vector = np.empty(SPIN_VECTOR_SIZE, dtype=float)
        vector[0::2] = flat.real
        vector[1::2] = flat.imag
        return vector

    def __add__(self, other: object) -> SpinState:
        if isinstance(other, SpinState):
            return SpinState(self._matrix + other._matrix)
        return NotImplemented

    def __sub__(self, other: object) -> SpinState:
        if isinstance(other, SpinState):
            return SpinState(self._matrix - other._matrix)
        return NotImplemented

    def __neg__(self) -> SpinState:
        return SpinState(-self._matrix)

    def __mul__(self, other: object) -> SpinState:
        # Spin-spin products are matrix products; numbers scale every entry.
        if isinstance(other, SpinState):
            return SpinState(self._matrix @ other._matrix)
        if isinstance(other, Number):
            return SpinState(self._matrix * complex(other))
        return NotImplemented

    def __rmul__(self, other: object) -> SpinState:
        if isinstance(other, Number):
            return SpinState(complex(other) * self._matrix)
        return NotImplemented

    def __truediv__(self, other: object) -> SpinState:
        if isinstance(other, Number):
            return SpinState(self._matrix / complex(other))
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SpinState):
            return NotImplemented
        return bool(np.array_equal(self._matrix, other._matrix))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"SpinState({self._matrix.tolist()!r})"

    def inverse(self) -> SpinState:
        return SpinState(np.linalg.inv(self._matrix))

    def trace(self) -> complex:
        return complex(np.trace(self._matrix))

    def conjugate(self) -> SpinState:
        return SpinState(np.conj(self._matrix))

    def norm(self) -> float:
        return float(np.max(np.abs(self._matrix)))

    def allclose(self, other: SpinState, atol: float = 1e-12) -> bool:
        return bool(np.allclose(self._matrix, other._matrix, rtol=0.0, atol=atol))


SPIN_ZERO = SpinState()
PAULI0 = SpinState([[1.0, 0.0], [0.0, 1.0]])
PAULI1 = SpinState([[0.0, 1.0], [1.0, 0.0]])
PAULI2 = SpinState([[0.0, -1.0j], [1.0j, 0.0]])
PAULI3 = SpinState([[1.0, 0.0], [0.0, -1.0]])
