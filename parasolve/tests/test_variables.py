"""
Tests for variables, the variable store and the id allocator.
"""

import math
import unittest

from parasolve.kernel.ids import NULL_ID, IdAllocator, is_null
from parasolve.kernel.variables import Variable, VariableError, VariableStore


class TestVariable(unittest.TestCase):
    """Bounds and lock enforcement on a single variable."""

    def test_set_value_within_range(self):
        var = Variable("length", 10.0)
        var.set_range(0.0, 100.0)
        var.set_value(50.0)
        self.assertEqual(var.value, 50.0)

    def test_below_minimum_rejected(self):
        var = Variable("length", 10.0, min_value=0.0, max_value=100.0)
        with self.assertRaises(VariableError) as ctx:
            var.set_value(-10.0)
        self.assertIn("below minimum", str(ctx.exception))
        self.assertEqual(var.value, 10.0)

    def test_above_maximum_rejected(self):
        var = Variable("length", 10.0, max_value=20.0)
        with self.assertRaises(VariableError) as ctx:
            var.set_value(25.0)
        self.assertIn("above maximum", str(ctx.exception))

    def test_bounds_are_inclusive(self):
        var = Variable("length", 10.0, min_value=0.0, max_value=20.0)
        var.set_value(0.0)
        var.set_value(20.0)
        self.assertEqual(var.value, 20.0)

    def test_locked_rejected(self):
        var = Variable("angle", 1.0)
        var.set_locked(True)
        with self.assertRaises(VariableError) as ctx:
            var.set_value(2.0)
        self.assertEqual(str(ctx.exception), "Variable is locked")
        self.assertEqual(var.value, 1.0)

    def test_bounds_checked_before_lock(self):
        var = Variable("angle", 1.0, max_value=2.0, locked=True)
        with self.assertRaises(VariableError) as ctx:
            var.set_value(3.0)
        self.assertIn("above maximum", str(ctx.exception))

    def test_non_finite_rejected(self):
        bounded = Variable("length", 1.0, min_value=0.0, max_value=2.0)
        free = Variable("offset", 1.0)
        for var in (bounded, free):
            for bad in (math.nan, math.inf, -math.inf):
                with self.assertRaises(VariableError) as ctx:
                    var.set_value(bad)
                self.assertIn("not finite", str(ctx.exception))
            self.assertEqual(var.value, 1.0)
        self.assertFalse(bounded.in_bounds(math.nan))
        self.assertFalse(free.in_bounds(math.inf))

    def test_variable_error_is_value_error(self):
        self.assertTrue(issubclass(VariableError, ValueError))

    def test_in_bounds(self):
        var = Variable("w", 1.0, min_value=0.5)
        self.assertTrue(var.in_bounds(0.5))
        self.assertFalse(var.in_bounds(0.4))
        self.assertTrue(var.in_bounds(1e9))

    def test_dict_round_trip(self):
        var = Variable("w", 4.0, min_value=1.0, locked=True, description="width")
        var.id = 7
        restored = Variable.from_dict(var.to_dict())
        self.assertEqual(restored, var)


class TestVariableStore(unittest.TestCase):
    """Store id assignment, iteration and validated writes."""

    def setUp(self):
        self.store = VariableStore()

    def test_add_assigns_ids_from_one(self):
        a = self.store.add(Variable("a", 1.0))
        b = self.store.add(Variable("b", 2.0))
        self.assertEqual((a, b), (1, 2))
        self.assertFalse(is_null(a))

    def test_add_keeps_explicit_id(self):
        var = Variable("a", 1.0)
        var.id = 10
        self.assertEqual(self.store.add(var), 10)
        # Later ids do not collide with the explicit one
        self.assertEqual(self.store.add(Variable("b", 1.0)), 11)

    def test_remove(self):
        vid = self.store.add(Variable("a", 1.0))
        removed = self.store.remove(vid)
        self.assertEqual(removed.name, "a")
        self.assertNotIn(vid, self.store)
        self.assertIsNone(self.store.remove(vid))

    def test_iter_is_fresh_and_ordered(self):
        for name in ("a", "b", "c"):
            self.store.add(Variable(name, 0.0))
        first = [v.name for v in self.store.iter()]
        second = [v.name for v in self.store.iter()]
        self.assertEqual(first, ["a", "b", "c"])
        self.assertEqual(first, second)

    def test_set_value_unknown_id(self):
        with self.assertRaises(VariableError) as ctx:
            self.store.set_value(99, 1.0)
        self.assertIn("not found", str(ctx.exception))

    def test_set_value_validates(self):
        vid = self.store.add(Variable("a", 1.0, max_value=2.0))
        with self.assertRaises(VariableError):
            self.store.set_value(vid, 3.0)
        self.store.set_value(vid, 1.5)
        self.assertEqual(self.store.get(vid).value, 1.5)


class TestIdAllocator(unittest.TestCase):

    def test_monotonic(self):
        ids = IdAllocator()
        self.assertEqual([ids.next() for _ in range(3)], [1, 2, 3])

    def test_observe_bumps_counter(self):
        ids = IdAllocator()
        ids.observe(41)
        self.assertEqual(ids.next(), 42)
        ids.observe(5)
        self.assertEqual(ids.next(), 43)

    def test_null_start_rejected(self):
        with self.assertRaises(ValueError):
            IdAllocator(start=NULL_ID)

    def test_independent_allocators(self):
        a, b = IdAllocator(), IdAllocator()
        a.next()
        a.next()
        self.assertEqual(b.next(), 1)
