import unittest

import numpy as np
import pandas as pd

from outlet_forecast.config import DEFAULT_CONFIG, NetworkPriors
from outlet_forecast.curve import logistic
from outlet_forecast.fitting import (
    FittingStrategy,
    LifecycleStage,
    fit_candidates,
    fit_curve,
    initial_simplex,
)
from outlet_forecast.models import ShockCandidate, ShockScan
from outlet_forecast.preprocess import clean_series


def _months(start="2018-01", n=48):
    return [p.strftime("%Y-%m") for p in pd.period_range(start, periods=n, freq="M")]


def _logistic_series(n=48, base=100.0, L=200.0, k=0.15, t0=12.0):
    t = np.arange(n)
    return base + L / (1.0 + np.exp(-k * (t - t0)))


class TestLifecycleStage(unittest.TestCase):
    def test_boundaries(self):
        self.assertEqual(LifecycleStage.for_history(12), LifecycleStage.STARTUP)
        self.assertEqual(LifecycleStage.for_history(13), LifecycleStage.GROWTH)
        self.assertEqual(LifecycleStage.for_history(35), LifecycleStage.GROWTH)
        self.assertEqual(LifecycleStage.for_history(36), LifecycleStage.MATURE)

    def test_boundaries_follow_config(self):
        config = DEFAULT_CONFIG.with_overrides(mature_min_months=60)
        self.assertEqual(LifecycleStage.for_history(48, config), LifecycleStage.GROWTH)


class TestInitialSimplex(unittest.TestCase):
    def test_relative_and_zero_steps(self):
        simplex = initial_simplex([10.0, 0.0], step=0.2, zero_step=0.05)
        self.assertEqual(simplex.shape, (3, 2))
        np.testing.assert_allclose(simplex[0], [10.0, 0.0])
        np.testing.assert_allclose(simplex[1], [12.0, 0.0])
        np.testing.assert_allclose(simplex[2], [10.0, 0.05])


class TestCurveFitter(unittest.TestCase):
    def test_recovers_noiseless_logistic(self):
        series = clean_series(_logistic_series(), _months())
        fit = fit_curve(series, "standard", LifecycleStage.MATURE)

        self.assertEqual(fit.mode, "standard")
        self.assertAlmostEqual(fit.k, 0.15, delta=0.015)
        self.assertAlmostEqual(fit.L, 200.0, delta=20.0)
        self.assertAlmostEqual(fit.base, 100.0, delta=15.0)

    def test_fit_is_deterministic(self):
        series = clean_series(_logistic_series(), _months())
        first = fit_curve(series, "standard", LifecycleStage.MATURE)
        second = fit_curve(series, "standard", LifecycleStage.MATURE)
        self.assertEqual(first, second)

    def test_train_length_matches_truncated_series(self):
        values = _logistic_series()
        full = clean_series(values, _months())
        prefix = clean_series(values[:36], _months(n=36))

        limited = fit_curve(full, "standard", LifecycleStage.MATURE, train_length=36)
        truncated = fit_curve(prefix, "standard", LifecycleStage.MATURE)
        self.assertEqual(limited, truncated)

    def test_startup_uses_priors_exactly(self):
        priors = NetworkPriors(median_k=0.07, median_l=555.0, t0=12.0)
        quiet = clean_series([50.0, 52.0, 51.0, 53.0, 55.0, 54.0, 56.0, 58.0], _months(n=8))
        noisy = clean_series([50.0, 90.0, 20.0, 75.0, 30.0, 99.0, 10.0, 60.0], _months(n=8))

        for series in (quiet, noisy):
            fit = fit_curve(series, "startup-forced", LifecycleStage.STARTUP, priors)
            self.assertEqual(fit.k, 0.07)
            self.assertEqual(fit.L, 555.0)
            self.assertEqual(fit.t0, 12.0)
            self.assertEqual(fit.param_count, 0)

    def test_startup_base_is_deseasonalized(self):
        season = [1.0] * 12
        season[0] = 2.0
        season[1] = 0.5
        priors = NetworkPriors(median_k=0.1, median_l=0.0, t0=12.0, seasonality=tuple(season))
        series = clean_series([200.0, 50.0, 100.0], ["2022-01", "2022-02", "2022-03"])

        fit = fit_curve(series, "startup-forced", LifecycleStage.STARTUP, priors)
        self.assertAlmostEqual(fit.base, 100.0)

    def test_growth_stage_rejects_shift_mode(self):
        series = clean_series(_logistic_series(n=24), _months(n=24))
        shock = ShockCandidate(index=12, score=0.2, shift_guess=10.0)
        with self.assertRaises(ValueError):
            fit_curve(series, "shift", LifecycleStage.GROWTH, shocks=[shock])

    def test_shift_mode_needs_a_shock(self):
        series = clean_series(_logistic_series(), _months())
        with self.assertRaises(ValueError):
            fit_curve(series, "shift", LifecycleStage.MATURE)

    def test_growth_stage_pulls_k_toward_prior(self):
        series = clean_series(_logistic_series(n=24, k=0.4, t0=8.0), _months(n=24))
        free = fit_curve(series, "standard", LifecycleStage.MATURE)
        soft = fit_curve(series, "standard", LifecycleStage.GROWTH,
                         priors=NetworkPriors(median_k=0.1, median_l=200.0))
        self.assertLess(abs(soft.k - 0.1), abs(free.k - 0.1))

    def test_base_ignores_opening_month_seasonality(self):
        factors = np.ones(12)
        factors[2], factors[7] = 1.3, 0.7
        # opens in March, the strongest month
        months = (2 + np.arange(48)) % 12
        series = clean_series(1000.0 * factors[months], _months("2015-03"))

        fit = fit_curve(series, "standard", LifecycleStage.MATURE)
        trend = fit.base + logistic(np.arange(48), fit.L, fit.k, fit.t0)
        self.assertLess(float(np.max(np.abs(trend - 1000.0))), 30.0)

    def test_strategy_contract_is_abstract(self):
        with self.assertRaises(TypeError):
            FittingStrategy()


class TestFitCandidates(unittest.TestCase):
    def test_startup_yields_single_forced_fit(self):
        series = clean_series([10.0, 12.0, 11.0], _months(n=3))
        fits = fit_candidates(series, LifecycleStage.STARTUP)
        self.assertEqual([f.mode for f in fits], ["startup-forced"])

    def test_growth_stage_ignores_shock_candidates(self):
        series = clean_series(_logistic_series(n=24), _months(n=24))
        scan = ShockScan(candidates=(ShockCandidate(index=12, score=0.2, shift_guess=10.0),))
        fits = fit_candidates(series, LifecycleStage.GROWTH, scan)
        self.assertEqual([f.mode for f in fits], ["standard"])

    def test_mature_stage_adds_shift_fit(self):
        values = _logistic_series()
        values[30:] += 50.0
        series = clean_series(values, _months())
        scan = ShockScan(candidates=(ShockCandidate(index=30, score=0.14, shift_guess=50.0),))

        fits = fit_candidates(series, LifecycleStage.MATURE, scan)
        self.assertEqual([f.mode for f in fits], ["standard", "shift"])
        self.assertEqual(fits[1].shock_indices, (30,))
        self.assertLess(fits[1].sse, fits[0].sse)

    def test_every_shock_candidate_gets_a_shift_fit(self):
        values = _logistic_series()
        values[30:] += 50.0
        series = clean_series(values, _months())
        scan = ShockScan(candidates=(
            ShockCandidate(index=9, score=0.3, shift_guess=60.0),
            ShockCandidate(index=30, score=0.14, shift_guess=50.0),
        ))

        fits = fit_candidates(series, LifecycleStage.MATURE, scan)
        self.assertEqual([f.mode for f in fits], ["standard", "shift", "shift"])
        self.assertEqual([f.shock_indices for f in fits[1:]], [(9,), (30,)])
        self.assertLess(fits[2].sse, fits[1].sse)

    def test_shift_fits_are_capped(self):
        series = clean_series(_logistic_series(), _months())
        scan = ShockScan(candidates=tuple(
            ShockCandidate(index=i, score=0.2, shift_guess=10.0) for i in (10, 20, 30)
        ))
        config = DEFAULT_CONFIG.with_overrides(max_shift_candidates=1)

        fits = fit_candidates(series, LifecycleStage.MATURE, scan, config=config)
        self.assertEqual([f.shock_indices for f in fits], [(), (10,)])


if __name__ == "__main__":
    unittest.main()
