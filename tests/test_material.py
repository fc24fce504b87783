from __future__ import annotations

import gc
import unittest

import numpy as np

from greenchain.bvp import ConvergenceError
from greenchain.green import VACUUM, GreenState
from greenchain.material import Material, ShapeMismatchError, StateBuffer, connect, disconnect
from greenchain.models import MaterialParameters, SolverSettings
from greenchain.physics import FreeDiffusionPhysics, LinearizedUsadelPhysics
from greenchain.spin import PAULI0, PAULI3


FAST = SolverSettings(mesh_scaling=16, error_control=1, tolerance=1e-8, verbosity=-1)
FILLED = GreenState(g=0.3 * PAULI0, gt=0.2 * PAULI3)


def _free(energies: int = 5, positions: int = 3, **kwargs) -> Material:
    kwargs.setdefault("settings", FAST)
    return Material(
        np.linspace(0.0, 1.0, energies),
        np.linspace(0.0, 1.0, positions),
        FreeDiffusionPhysics(),
        **kwargs,
    )


class _ReentrantPhysics(FreeDiffusionPhysics):
    def __init__(self) -> None:
        super().__init__()
        self.nested_error: Exception | None = None

    def update_prehook(self, material: Material) -> None:
        try:
            material.update()
        except RuntimeError as exc:
            self.nested_error = exc


class MaterialTests(unittest.TestCase):
    def test_axes_are_validated(self) -> None:
        with self.assertRaises(ValueError):
            Material([1.0, 0.5], [0.0, 1.0], FreeDiffusionPhysics())
        with self.assertRaises(ValueError):
            Material([0.5], [0.0], FreeDiffusionPhysics())
        with self.assertRaises(ValueError):
            Material([0.5], [0.0, np.nan], FreeDiffusionPhysics())
        with self.assertRaises(TypeError):
            Material([0.5], [0.0, 1.0], object())

    def test_new_material_starts_in_vacuum_with_large_difference(self) -> None:
        material = _free()
        self.assertEqual(material.shape, (5, 3))
        self.assertEqual(material.difference, 1e6)
        self.assertEqual(material.kind, "free diffusion")
        self.assertTrue(all(state is VACUUM for state in material.state.ravel()))
        self.assertTrue(np.allclose(material.dos(), 1.0))
        self.assertFalse(material.energy.flags.writeable)

    def test_parameters_reject_invalid_values(self) -> None:
        material = _free(parameters=MaterialParameters(thouless=2.0, scattering=0.05))
        self.assertEqual(material.thouless, 2.0)
        with self.assertRaises(ValueError):
            material.thouless = 0.0
        with self.assertRaises(ValueError):
            material.scattering = -1.0
        material.scattering = 0.1
        self.assertEqual(material.parameters.scattering, 0.1)

    def test_materials_do_not_share_parameters(self) -> None:
        params = MaterialParameters(thouless=2.0)
        a = _free(parameters=params)
        b = _free(parameters=params)
        a.scattering = 0.3
        a.thouless = 5.0
        self.assertEqual(b.scattering, 0.01)
        self.assertEqual(b.thouless, 2.0)
        self.assertEqual(params.scattering, 0.01)
        self.assertIsNot(a.parameters, params)

    def test_init_fills_bulk_bcs_states(self) -> None:
        material = Material([0.5, 1.5], [0.0, 0.5, 1.0], LinearizedUsadelPhysics())
        material.init(gap=1.0)
        for n, energy in enumerate(material.energy):
            expected = GreenState.bcs(complex(energy, material.scattering), 1.0)
            for m in range(3):
                self.assertTrue(material.state[n, m].allclose(expected))

    def test_pack_and_unpack_use_position_columns(self) -> None:
        material = _free(fill=FILLED)
        packed = material.pack(2)
        self.assertEqual(packed.shape, (32, 3))
        self.assertTrue(np.array_equal(packed[:, 1], FILLED.to_vector()))

        material.unpack(2, np.zeros((32, 3)))
        self.assertTrue(material.state[2, 0].allclose(VACUUM))
        self.assertTrue(material.state[1, 0].allclose(FILLED))
        with self.assertRaises(ValueError):
            material.unpack(0, np.zeros((32, 4)))

    def test_connect_links_both_sides_and_stores_coupling(self) -> None:
        left = _free()
        right = _free()
        connect(left, right, zeta=0.5, right_params={"zeta": 2.0})
        self.assertIs(left.right_neighbor, right)
        self.assertIs(right.left_neighbor, left)
        self.assertIsNone(left.left_neighbor)
        self.assertEqual(left.physics.coupling["right"], {"zeta": 0.5})
        self.assertEqual(right.physics.coupling["left"], {"zeta": 2.0})
        self.assertIs(left.right_boundary(1), right.state[1, 0])
        self.assertIs(left.left_boundary(1), VACUUM)

    def test_connect_rejects_mismatched_energy_grids(self) -> None:
        material = _free(energies=5)
        with self.assertRaises(ShapeMismatchError):
            connect(material, _free(energies=4))
        other = Material(np.linspace(0.0, 2.0, 5), [0.0, 1.0], FreeDiffusionPhysics())
        with self.assertRaises(ValueError):
            connect(material, other)
        with self.assertRaises(ValueError):
            connect(material, material)

    def test_links_do_not_keep_neighbours_alive(self) -> None:
        left = _free()
        right = _free()
        connect(left, right)
        del right
        gc.collect()
        self.assertIsNone(left.right_neighbor)
        self.assertIs(left.right_boundary(0), VACUUM)

    def test_collected_neighbour_releases_the_coupling(self) -> None:
        left = Material([0.5, 1.0], [0.0, 1.0], LinearizedUsadelPhysics(), settings=FAST)
        right = Material([0.5, 1.0], [0.0, 1.0], LinearizedUsadelPhysics(), settings=FAST)
        right.init(gap=1.0)
        connect(left, right, zeta=0.5)
        self.assertTrue(left.physics.is_coupled("right"))

        del right
        gc.collect()
        self.assertFalse(left.physics.is_coupled("right"))
        self.assertIsNone(left.right_neighbor)
        self.assertIs(left.right_boundary(0), VACUUM)

    def test_replaced_neighbour_does_not_clear_the_new_coupling(self) -> None:
        left, old, new = _free(), _free(), _free()
        connect(left, old, zeta=0.5)
        connect(left, new, zeta=1.0)
        del old
        gc.collect()
        self.assertIs(left.right_neighbor, new)
        self.assertEqual(left.physics.coupling["right"], {"zeta": 1.0})

    def test_disconnect_removes_both_links(self) -> None:
        a, b, c = _free(), _free(), _free()
        connect(a, b)
        connect(b, c)
        disconnect(b)
        self.assertIsNone(a.right_neighbor)
        self.assertIsNone(c.left_neighbor)
        self.assertIsNone(b.left_neighbor)
        self.assertIsNone(b.right_neighbor)
        self.assertFalse(a.physics.is_coupled("right"))
        self.assertFalse(c.physics.is_coupled("left"))

    def test_isolated_free_material_stays_in_vacuum(self) -> None:
        material = _free(energies=3, positions=4)
        difference = material.update()
        self.assertLess(difference, FAST.tolerance)
        for state in material.state.ravel():
            self.assertTrue(state.allclose(VACUUM, atol=FAST.tolerance))

    def test_vacuum_converges_in_one_update_with_default_settings(self) -> None:
        settings = SolverSettings(verbosity=-1)
        material = _free(settings=settings)
        self.assertLess(material.update(), settings.tolerance)
        for state in material.state.ravel():
            self.assertTrue(state.allclose(VACUUM, atol=settings.tolerance))

    def test_second_update_changes_nothing(self) -> None:
        left = _free()
        right = _free(fill=FILLED)
        connect(left, right)
        self.assertGreater(left.update(), 0.1)
        self.assertLess(left.update(), 1e-6)

    def test_update_propagates_through_the_chain(self) -> None:
        a = _free()
        b = _free(fill=FILLED)
        connect(a, b)

        a.update()
        for n in range(5):
            self.assertIs(b.left_boundary(n), a.state[n, -1])
            # a is pinned to b's left edge and to vacuum on its left.
            self.assertTrue(a.state[n, -1].g.allclose(FILLED.g, atol=1e-7))
            self.assertTrue(a.state[n, 0].g.allclose(VACUUM.g, atol=1e-7))
            self.assertTrue(a.state[n, 1].g.allclose(0.5 * FILLED.g, atol=1e-7))

        b.update()
        for n in range(5):
            self.assertTrue(b.state[n, 0].g.allclose(a.state[n, -1].g, atol=1e-7))
            self.assertTrue(b.state[n, 0].gt.allclose(a.state[n, -1].gt, atol=1e-7))
            self.assertTrue(b.state[n, -1].g.allclose(VACUUM.g, atol=1e-7))

    def test_update_logs_kind_and_change(self) -> None:
        material = _free(settings=SolverSettings(mesh_scaling=16, error_control=1, tolerance=1e-8))
        with self.assertLogs("greenchain.material", level="INFO") as logs:
            material.update()
        self.assertTrue(any("free diffusion" in line for line in logs.output))
        self.assertTrue(any("Max change" in line for line in logs.output))

    def test_convergence_failure_reports_energy_index(self) -> None:
        energy = [0.5, 1.0, 2.0]
        location = np.linspace(0.0, 1.0, 3)
        strict = SolverSettings(mesh_scaling=2, error_control=1, tolerance=1e-12, verbosity=-1)
        reservoir = Material(energy, location, LinearizedUsadelPhysics())
        reservoir.init(gap=1.0)
        wire = Material(energy, location, LinearizedUsadelPhysics(), settings=strict)
        connect(reservoir, wire)
        before = list(wire.state.ravel())

        with self.assertRaises(ConvergenceError) as ctx:
            wire.update()
        self.assertEqual(ctx.exception.energy_index, 0)
        self.assertTrue(np.isfinite(ctx.exception.residual))
        self.assertTrue(all(a is b for a, b in zip(before, wire.state.ravel())))

    def test_update_is_not_reentrant(self) -> None:
        physics = _ReentrantPhysics()
        material = Material([0.5], [0.0, 1.0], physics, settings=FAST)
        material.update()
        self.assertIsInstance(physics.nested_error, RuntimeError)
        self.assertFalse(material._updating)

    def test_save_into_buffer_resizes_and_copies(self) -> None:
        buffer = StateBuffer()
        self.assertTrue(buffer.empty)

        small = _free(energies=2, positions=2)
        small.save(buffer)
        self.assertEqual(buffer.shape, (2, 2))

        material = _free(fill=FILLED)
        material.save(buffer)
        self.assertEqual(buffer.shape, (5, 3))
        self.assertTrue(np.array_equal(buffer.energy, material.energy))

        material.state[0, 0] = VACUUM
        self.assertTrue(buffer.state[0, 0].allclose(FILLED))

        material.load(buffer)
        self.assertTrue(material.state[0, 0].allclose(FILLED))
        buffer.state[1, 1] = VACUUM
        self.assertTrue(material.state[1, 1].allclose(FILLED))

    def test_load_with_wrong_shape_leaves_material_untouched(self) -> None:
        material = _free(fill=FILLED)
        before = list(material.state.ravel())
        buffer = StateBuffer()
        _free(energies=4, positions=3).save(buffer)

        with self.assertRaises(ShapeMismatchError):
            material.load(buffer)
        with self.assertRaises(ShapeMismatchError):
            material.save(_free(energies=5, positions=4))
        with self.assertRaises(ValueError):
            material.load(StateBuffer())
        self.assertTrue(all(a is b for a, b in zip(before, material.state.ravel())))

    def test_save_into_material_of_same_shape(self) -> None:
        source = _free(fill=FILLED)
        target = _free()
        source.save(target)
        self.assertTrue(target.state[4, 2].allclose(FILLED))
        self.assertIsNot(target.state, source.state)


if __name__ == "__main__":
    unittest.main()
