import unittest

import numpy as np
import pandas as pd

from outlet_forecast.config import DEFAULT_CONFIG
from outlet_forecast.exceptions import SeriesFormatError
from outlet_forecast.preprocess import _rescue_recent, clean_series, parse_months


def _months(start="2020-01", n=24):
    return [p.strftime("%Y-%m") for p in pd.period_range(start, periods=n, freq="M")]


class TestParseMonths(unittest.TestCase):
    def test_accepts_slash_and_dot_separators(self):
        periods = parse_months(["2021/11", "2021.12", "2022-01"])
        self.assertEqual([str(p) for p in periods], ["2021-11", "2021-12", "2022-01"])

    def test_gap_in_labels_raises(self):
        with self.assertRaises(SeriesFormatError):
            parse_months(["2021-01", "2021-03"])

    def test_garbage_label_raises_value_error(self):
        with self.assertRaises(ValueError):
            parse_months(["2021-01", "not a month"])


class TestCleanSeries(unittest.TestCase):
    def test_length_mismatch_raises(self):
        with self.assertRaises(ValueError):
            clean_series([1.0, 2.0, 3.0], _months(n=2))

    def test_empty_series_raises(self):
        with self.assertRaises(SeriesFormatError):
            clean_series([], [])

    def test_spike_is_masked_not_dropped(self):
        values = [100.0] * 24
        values[10] = 500.0
        series = clean_series(values, _months(n=24))

        self.assertEqual(len(series), 24)
        self.assertFalse(series.keep[10])
        self.assertTrue(series.outlier[10])
        self.assertEqual(series.values[10], 500.0)
        self.assertEqual(series.n_valid, 23)

    def test_non_positive_and_missing_months_are_not_kept(self):
        values = [100.0] * 12
        values[3] = 0.0
        values[4] = -5.0
        values[5] = float("nan")
        series = clean_series(values, _months(n=12))

        self.assertEqual(len(series), 12)
        self.assertFalse(series.keep[3:6].any())
        self.assertFalse(series.outlier[3:6].any())
        self.assertEqual(series.n_valid, 9)

    def test_seasonal_swings_survive(self):
        factors = np.ones(12)
        factors[2], factors[7] = 1.3, 0.7
        values = [1000.0 * factors[i % 12] for i in range(36)]
        series = clean_series(values, _months(n=36))
        self.assertTrue(series.keep.all())

    def test_cleaned_arrays_are_read_only(self):
        series = clean_series([10.0, 11.0, 12.0], _months(n=3))
        with self.assertRaises(ValueError):
            series.values[0] = 99.0


class TestRecentRescue(unittest.TestCase):
    def test_flagged_month_near_trailing_mean_is_restored(self):
        values = np.array([100.0] * 30)
        values[-1] = 104.0
        keep = np.ones(30, dtype=bool)
        keep[-1] = False

        rescued = _rescue_recent(values, keep, DEFAULT_CONFIG)
        self.assertTrue(rescued[-1])

    def test_far_month_stays_excluded(self):
        values = np.array([100.0] * 30)
        values[-1] = 180.0
        keep = np.ones(30, dtype=bool)
        keep[-1] = False

        rescued = _rescue_recent(values, keep, DEFAULT_CONFIG)
        self.assertFalse(rescued[-1])

    def test_old_months_are_not_rescued(self):
        values = np.array([100.0] * 40)
        keep = np.ones(40, dtype=bool)
        keep[5] = False

        rescued = _rescue_recent(values, keep, DEFAULT_CONFIG)
        self.assertFalse(rescued[5])


if __name__ == "__main__":
    unittest.main()
