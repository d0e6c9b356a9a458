"""
Tests for the headless ParametricAPI facade.
"""

import asyncio
import threading
import time
import unittest
from unittest import mock

import numpy as np

from parasolve.api import ParametricAPI, as_target
from parasolve.kernel.constraints import ConstraintTarget, ConstraintType, TargetKind
from parasolve.kernel.equations import SkipReason
from parasolve.kernel.newton_solver import SolverParams
from parasolve.kernel.variables import VariableError
from parasolve.system import SolveStatus


class TestTargetCoercion(unittest.TestCase):

    def test_int_is_variable(self):
        self.assertEqual(as_target(4), ConstraintTarget.variable(4))

    def test_float_is_constant(self):
        target = as_target(2.5)
        self.assertEqual(target.kind, TargetKind.CONSTANT)
        self.assertEqual(target.constant, 2.5)

    def test_target_passes_through(self):
        target = ConstraintTarget.point(9)
        self.assertIs(as_target(target), target)

    def test_numpy_scalars(self):
        self.assertEqual(as_target(np.int64(4)), ConstraintTarget.variable(4))
        self.assertEqual(as_target(np.int32(4)).ref, 4)
        target = as_target(np.float32(0.5))
        self.assertEqual(target.kind, TargetKind.CONSTANT)
        self.assertEqual(target.constant, 0.5)

    def test_rejects_other_types(self):
        with self.assertRaises(TypeError):
            as_target(True)
        with self.assertRaises(TypeError):
            as_target("a")


class TestParametricAPI(unittest.TestCase):

    def setUp(self):
        self.api = ParametricAPI(SolverParams(damping=1.0))
        self.a = self.api.add_variable("a", 10.0)
        self.b = self.api.add_variable("b", 3.0)

    def tearDown(self):
        self.api.shutdown()

    def test_solve_and_read_values(self):
        self.api.constrain_distance(self.a, self.b, 2.0)
        result = self.api.solve()
        self.assertTrue(result.ok)
        self.assertAlmostEqual(self.api.get_value(self.a), 7.5)
        self.assertEqual(set(self.api.values), {self.a, self.b})

    def test_on_solved_callback(self):
        seen = []
        self.api.on_solved = seen.append
        self.api.constrain_distance(self.a, self.b, 2.0)
        result = self.api.solve()
        self.assertEqual(seen, [result])

    def test_distance_to_constant(self):
        self.api.constrain_distance(self.b, 10.0, 4.0)
        self.api.lock_variable(self.a)
        self.assertTrue(self.api.solve().ok)
        self.assertAlmostEqual(self.api.get_value(self.b), 6.0)

    def test_try_set_value_on_locked(self):
        self.api.lock_variable(self.a)
        self.assertFalse(self.api.try_set_value(self.a, 1.0))
        self.assertEqual(self.api.get_value(self.a), 10.0)
        self.api.lock_variable(self.a, False)
        self.assertTrue(self.api.try_set_value(self.a, 1.0))
        self.assertEqual(self.api.get_value(self.a), 1.0)

    def test_set_value_raises(self):
        with self.assertRaises(VariableError):
            self.api.set_value(42, 1.0)
        with self.assertRaises(VariableError):
            self.api.lock_variable(42)

    def test_unknown_value_is_none(self):
        self.assertIsNone(self.api.get_value(42))

    def test_numpy_ids_from_array(self):
        ids = np.array([self.a, self.b])
        self.api.constrain_distance(ids[0], ids[1], 2.0)
        self.assertTrue(self.api.solve().ok)
        self.assertAlmostEqual(self.api.get_value(self.a), 7.5)

    def test_get_value_waits_for_lock(self):
        read = []
        with self.api._lock:
            reader = threading.Thread(target=lambda: read.append(self.api.get_value(self.a)))
            reader.start()
            reader.join(0.05)
            self.assertEqual(read, [])
        reader.join()
        self.assertEqual(read, [10.0])

    def test_single_worker_under_concurrent_requests(self):
        barrier = threading.Barrier(8)
        workers = []

        def grab():
            barrier.wait()
            workers.append(self.api._worker())

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len({id(w) for w in workers}), 1)

    def test_dependents(self):
        d = self.api.constrain_distance(self.a, self.b, 2.0)
        h = self.api.constrain_horizontal(self.b)
        p = self.api.constrain_parallel(100, 101)
        self.api.constrain_coincident(200, 201)
        self.assertEqual(self.api.dependents_of_variable(self.b), [d, h])
        self.assertEqual(self.api.dependents_of_entity(100), [p])
        self.assertEqual(self.api.constraints_of_type(ConstraintType.PARALLEL), [p])

    def test_remove_variable_and_constraint(self):
        cid = self.api.constrain_distance(self.a, self.b, 2.0)
        self.api.remove_constraint(cid)
        self.assertEqual(self.api.dependents_of_variable(self.a), [])
        self.assertIsNotNone(self.api.remove_variable(self.a))
        self.assertIsNone(self.api.get_value(self.a))

    def test_disabled_constraint_is_skipped(self):
        cid = self.api.constrain_vertical(self.a)
        self.api.enable_constraint(cid, False)
        result = self.api.solve()
        self.assertEqual(result.status, SolveStatus.UNDER_CONSTRAINED)
        self.assertEqual(result.skipped[0].reason, SkipReason.DISABLED)
        with self.assertRaises(KeyError):
            self.api.enable_constraint(999)

    def test_entity_helpers(self):
        self.api.constrain_perpendicular(1, 2)
        self.api.constrain_equal(1, 3)
        self.assertEqual(len(self.api.dependents_of_entity(1)), 2)

    def test_json_round_trip(self):
        self.api.constrain_angle(self.a, self.b, 0.5, weight=0.5)
        restored = ParametricAPI.from_json(self.api.to_json())
        self.assertEqual(restored.values, self.api.values)
        self.assertEqual(restored.constraints_of_type(ConstraintType.ANGLE), [1])

    def test_diagnose(self):
        self.api.constrain_distance(self.a, self.b, 2.0)
        self.assertTrue(self.api.diagnose().is_under_constrained)


class TestSolveAsync(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.api = ParametricAPI(SolverParams(damping=1.0))
        self.a = self.api.add_variable("a", 10.0)
        self.b = self.api.add_variable("b", 3.0)
        self.api.constrain_distance(self.a, self.b, 2.0)

    def tearDown(self):
        self.api.shutdown()

    async def test_solve_async(self):
        result = await self.api.solve_async()
        self.assertTrue(result.ok)
        self.assertAlmostEqual(self.api.get_value(self.b), 5.5)

    async def test_solves_run_in_order(self):
        results = await asyncio.gather(self.api.solve_async(), self.api.solve_async())
        self.assertEqual([r.iterations for r in results], [1, 0])
        self.assertEqual(self.api.system.stats.solve_count, 2)

    async def test_timeout(self):
        original = self.api.system.solve

        def slow_solve(params=None):
            time.sleep(0.3)
            return original(params)

        with mock.patch.object(self.api.system, "solve", side_effect=slow_solve):
            with self.assertRaises(asyncio.TimeoutError):
                await self.api.solve_async(timeout=0.01)
            self.api.shutdown(wait=True)
        # The abandoned solve still ran to completion
        self.assertEqual(self.api.system.stats.solve_count, 1)


if __name__ == "__main__":
    unittest.main()
