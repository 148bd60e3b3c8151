import unittest

from outlet_forecast.forecaster import forecast_frame, forecast_point, z_score
from outlet_forecast.models import ChosenFit, FitCandidate, ForecastPoint, NudgeValue, SeasonalProfile


def _fit(base=100.0, L=0.0):
    return ChosenFit(FitCandidate(mode="standard", base=base, L=L, k=0.1, t0=0.0, sse=0.0, n_obs=24), aic=0.0)


FLAT = SeasonalProfile(indices=(1.0,) * 12)


class TestForecastPoint(unittest.TestCase):
    def test_point_combines_trend_nudge_and_season(self):
        season = [1.0] * 12
        season[2] = 1.2
        profile = SeasonalProfile(indices=tuple(season))
        point, lower, upper, h = forecast_point(
            t=26, fit=_fit(100.0), seasonal=profile, nudge=NudgeValue(10.0, 12),
            sigma=0.0, last_index=23, month=2,
        )
        self.assertEqual(h, 3)
        self.assertAlmostEqual(point, 132.0)
        self.assertAlmostEqual(lower, point)
        self.assertAlmostEqual(upper, point)

    def test_never_negative(self):
        for base, nudge in [(-500.0, 0.0), (50.0, -400.0), (-10.0, -10.0)]:
            point, lower, upper, _ = forecast_point(
                t=30, fit=_fit(base), seasonal=FLAT, nudge=NudgeValue(nudge, 12),
                sigma=25.0, last_index=23, month=0,
            )
            self.assertGreaterEqual(point, 0.0)
            self.assertGreaterEqual(lower, 0.0)
            self.assertGreaterEqual(upper, point)

    def test_band_widens_with_horizon(self):
        widths = []
        for t in (24, 29, 35):
            point, lower, upper, _ = forecast_point(
                t=t, fit=_fit(1000.0), seasonal=FLAT, nudge=NudgeValue(0.0, 12),
                sigma=50.0, last_index=23, month=t % 12,
            )
            widths.append(upper - point)
        self.assertLess(widths[0], widths[1])
        self.assertLess(widths[1], widths[2])
        self.assertAlmostEqual(widths[0], z_score(0.95) * 50.0 * 1.05)

    def test_past_months_have_zero_horizon(self):
        _, _, upper, h = forecast_point(
            t=5, fit=_fit(1000.0), seasonal=FLAT, nudge=NudgeValue(0.0, 12),
            sigma=50.0, last_index=23, month=5,
        )
        self.assertEqual(h, 0)
        self.assertAlmostEqual(upper - 1000.0, z_score(0.95) * 50.0)


class TestZScore(unittest.TestCase):
    def test_ninety_five_percent(self):
        self.assertAlmostEqual(z_score(0.95), 1.959964, places=5)

    def test_invalid_confidence_raises(self):
        for bad in (0.0, 1.0, 1.5, -0.2):
            with self.assertRaises(ValueError):
                z_score(bad)


class TestForecastFrame(unittest.TestCase):
    def test_frame_columns_and_floor(self):
        points = [
            ForecastPoint(t=24, label="2022-01", horizon=1, point=10.0, lower=-5.0, upper=25.0),
            ForecastPoint(t=25, label="2022-02", horizon=2, point=12.0, lower=2.0, upper=22.0),
        ]
        df = forecast_frame(points, name="S1")
        self.assertEqual(list(df.columns), ["store", "date", "horizon", "forecast_value", "lower_ci", "upper_ci"])
        self.assertEqual(df["lower_ci"].min(), 0.0)
        self.assertEqual(df["store"].tolist(), ["S1", "S1"])


if __name__ == "__main__":
    unittest.main()
