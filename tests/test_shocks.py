import unittest

import numpy as np
import pandas as pd

from outlet_forecast.preprocess import clean_series
from outlet_forecast.shocks import detect_shocks


def _months(start="2015-01", n=48):
    return [p.strftime("%Y-%m") for p in pd.period_range(start, periods=n, freq="M")]


def _stepped_logistic(n=48, step_at=30, step=50.0):
    t = np.arange(n)
    values = 200.0 + 100.0 / (1.0 + np.exp(-0.15 * (t - 6)))
    values[step_at:] += step
    return values


class TestDetectShocks(unittest.TestCase):
    def test_step_is_found_near_its_month(self):
        series = clean_series(_stepped_logistic(), _months())
        scan = detect_shocks(series)

        self.assertIsNotNone(scan.best)
        self.assertLessEqual(abs(scan.best.index - 30), 2)
        self.assertGreater(scan.best.shift_guess, 0)
        self.assertIsNone(scan.dual_pair)

    def test_noisy_flat_series_has_no_candidates(self):
        rng = np.random.default_rng(7)
        values = 1000.0 + rng.normal(0.0, 20.0, 48)
        scan = detect_shocks(clean_series(values, _months()))
        self.assertEqual(scan.candidates, ())

    def test_short_series_is_not_scanned(self):
        values = [100.0] * 10 + [200.0] * 10
        scan = detect_shocks(clean_series(values, _months(n=20)))
        self.assertEqual(scan.candidates, ())

    def test_candidates_sorted_strongest_first(self):
        values = np.full(60, 1000.0)
        values[15:] += 200.0
        values[40:] += 600.0
        scan = detect_shocks(clean_series(values, _months("2010-01", 60)))

        self.assertGreaterEqual(len(scan.candidates), 2)
        scores = [c.score for c in scan.candidates]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertLessEqual(abs(scan.best.index - 40), 2)

    def test_dual_pair_uses_disruption_month(self):
        # 2016-01 start puts 2020-03 at index 50
        values = np.full(72, 1000.0)
        values[20:] += 300.0
        values[50:] -= 300.0
        scan = detect_shocks(clean_series(values, _months("2016-01", 72)))

        self.assertIsNotNone(scan.dual_pair)
        first, second = scan.dual_pair
        self.assertEqual(second.index, 50)
        self.assertLessEqual(abs(first.index - 20), 2)
        self.assertLess(second.shift_guess, 0)

    def test_no_dual_pair_below_sixty_months(self):
        values = np.full(59, 1000.0)
        values[20:] += 300.0
        values[50:] -= 300.0
        scan = detect_shocks(clean_series(values, _months("2016-01", 59)))
        self.assertIsNone(scan.dual_pair)


if __name__ == "__main__":
    unittest.main()
