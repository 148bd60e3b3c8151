import unittest

import numpy as np

from outlet_forecast.curve import logistic, project_trend


PARAMS = {"base": 100.0, "L": 200.0, "k": 0.15, "t0": 12.0, "shift": 50.0, "shift2": -30.0}


class TestProjectTrend(unittest.TestCase):
    def test_scalar_in_scalar_out(self):
        value = project_trend(12, PARAMS, "standard")
        self.assertIsInstance(value, float)
        self.assertAlmostEqual(value, 200.0)

    def test_array_in_array_out(self):
        values = project_trend(np.arange(5), PARAMS, "standard")
        self.assertEqual(values.shape, (5,))

    def test_shift_ignored_in_standard_mode(self):
        with_shift = project_trend(40, PARAMS, "standard", shock_indices=30)
        plain = 100.0 + float(logistic(40, 200.0, 0.15, 12.0))
        self.assertAlmostEqual(with_shift, plain)

    def test_shift_applies_from_shock_month(self):
        before = project_trend(29, PARAMS, "shift", shock_indices=30)
        at = project_trend(30, PARAMS, "shift", shock_indices=30)
        base_only = project_trend(30, PARAMS, "standard")
        self.assertAlmostEqual(at - base_only, 50.0)
        self.assertAlmostEqual(before, project_trend(29, PARAMS, "standard"))

    def test_dual_shift_applies_both_steps(self):
        value = project_trend(50, PARAMS, "dual_shift", shock_indices=[20, 40])
        self.assertAlmostEqual(value - project_trend(50, PARAMS, "standard"), 20.0)

        between = project_trend(30, PARAMS, "dual_shift", shock_indices=[20, 40])
        self.assertAlmostEqual(between - project_trend(30, PARAMS, "standard"), 50.0)

    def test_unknown_mode_raises(self):
        with self.assertRaises(ValueError):
            project_trend(1, PARAMS, "quadratic")

    def test_extreme_exponent_does_not_overflow(self):
        value = project_trend(-10000, PARAMS, "standard")
        self.assertAlmostEqual(value, 100.0)


if __name__ == "__main__":
    unittest.main()
