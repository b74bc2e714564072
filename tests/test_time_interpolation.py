import unittest
from datetime import datetime, timedelta, timezone

import numpy as np

from gfs_variables import InterpolationType, lookup
from helpers import GFS_HOURS, small_domain, small_run
from solar_geometry import backwards_averaged_irradiance
from time_interpolation import find_gaps, gap_positions, interpolate, interpolate_variable


def _matrix(hours, values, n_locations=1):
    matrix = np.full((n_locations, max(hours) + 1), np.nan, dtype=np.float32)
    for hour, value in zip(hours, values):
        matrix[:, hour] = value
    return matrix


class GapSelectionTests(unittest.TestCase):
    def test_gfs_gap_positions_are_h_mod_3_equal_1(self):
        expected = [h for h in range(121, 385) if h % 3 == 1]
        self.assertEqual(gap_positions(GFS_HOURS), expected)

    def test_gfs_gaps_are_two_wide_with_member_anchors(self):
        gaps = find_gaps(GFS_HOURS)
        first = gaps[0]
        self.assertEqual(first.missing, (121, 122))
        self.assertEqual((first.outer_left, first.left, first.right, first.outer_right), (119, 120, 123, 126))
        second = gaps[1]
        # outer anchors skip the previous gap's synthesized hours
        self.assertEqual((second.outer_left, second.left, second.right, second.outer_right), (120, 123, 126, 129))
        last = gaps[-1]
        self.assertEqual((last.left, last.right, last.outer_right), (381, 384, 384))

    def test_single_hour_gap(self):
        gaps = find_gaps([0, 1, 3, 4])
        self.assertEqual(len(gaps), 1)
        self.assertEqual(gaps[0].missing, (2,))

    def test_skipped_hour0_is_not_an_anchor(self):
        gaps = find_gaps([0, 1, 4, 7], skip_first=1)
        self.assertEqual((gaps[0].outer_left, gaps[0].left), (1, 1))


class KernelTests(unittest.TestCase):
    def test_linear_kernel(self):
        matrix = _matrix([0, 3], [10.0, 16.0])
        interpolate(matrix, [0, 3], InterpolationType.LINEAR)
        np.testing.assert_allclose(matrix[0], [10.0, 12.0, 14.0, 16.0], atol=1e-5)

    def test_nearest_kernel(self):
        matrix = _matrix([0, 3], [10.0, 20.0])
        interpolate(matrix, [0, 3], InterpolationType.NEAREST)
        np.testing.assert_array_equal(matrix[0], [10.0, 10.0, 20.0, 20.0])

    def test_nearest_kernel_tie_uses_earlier_anchor(self):
        matrix = _matrix([0, 1, 3], [5.0, 10.0, 20.0])
        interpolate(matrix, [0, 1, 3], InterpolationType.NEAREST)
        self.assertEqual(float(matrix[0, 2]), 10.0)

    def test_hermite_reproduces_quadratic_on_uniform_cadence(self):
        hours = [0, 3, 6, 9, 12, 15]
        matrix = _matrix(hours, [float(h * h) for h in hours])
        interpolate(matrix, hours, InterpolationType.HERMITE)
        for hour in (4, 5, 7, 8):
            self.assertAlmostEqual(float(matrix[0, hour]), float(hour * hour), places=3)

    def test_hermite_matches_catmull_rom_in_three_hourly_region(self):
        hours = [0, 3, 6, 9, 12]
        values = [3.0, 7.0, 2.0, 11.0, 5.0]
        matrix = _matrix(hours, values)
        interpolate(matrix, hours, InterpolationType.HERMITE)
        a_, b_, c_, d_ = values[0], values[1], values[2], values[3]
        a = -a_ / 2 + 3 * b_ / 2 - 3 * c_ / 2 + d_ / 2
        b = a_ - 5 * b_ / 2 + 2 * c_ - d_ / 2
        c = -a_ / 2 + c_ / 2
        for hour, s in ((4, 1 / 3), (5, 2 / 3)):
            expected = a * s ** 3 + b * s ** 2 + c * s + b_
            self.assertAlmostEqual(float(matrix[0, hour]), expected, places=4)

    def test_hermite_degrades_to_linear_without_outer_anchors(self):
        matrix = _matrix([0, 3], [10.0, 16.0])
        interpolate(matrix, [0, 3], InterpolationType.HERMITE)
        np.testing.assert_allclose(matrix[0, 1:3], [12.0, 14.0], atol=1e-5)

    def test_skipped_hour0_clamps_to_first_available_anchor(self):
        matrix = _matrix([3, 6], [30.0, 60.0])
        interpolate(matrix, [0, 3, 6], InterpolationType.LINEAR, skip_first=1)
        self.assertTrue(np.isnan(matrix[0, 0]))
        np.testing.assert_allclose(matrix[0, 1:3], [30.0, 30.0])
        np.testing.assert_allclose(matrix[0, 4:6], [40.0, 50.0], atol=1e-5)

    def test_known_columns_are_never_modified(self):
        rng = np.random.default_rng(7)
        hours = list(GFS_HOURS)
        for kind in (
            InterpolationType.LINEAR,
            InterpolationType.NEAREST,
            InterpolationType.HERMITE,
            InterpolationType.HERMITE_BACKWARDS_AVERAGED,
        ):
            matrix = _matrix(hours, rng.uniform(0, 50, size=len(hours)), n_locations=1)
            before = matrix[:, hours].copy()
            interpolate(matrix, hours, kind)
            np.testing.assert_array_equal(matrix[:, hours], before)
            self.assertFalse(np.isnan(matrix).any(), kind)

    def test_gap_values_do_not_feed_other_gaps(self):
        hours = [0, 3, 6, 9, 12]
        clean = _matrix(hours, [1.0, 4.0, 2.0, 8.0, 3.0])
        dirty = clean.copy()
        # pre-existing garbage in gap columns must not leak into neighbouring gaps
        for hour in (1, 2, 4, 5, 7, 8, 10, 11):
            dirty[0, hour] = 1e6
        for kind in (InterpolationType.HERMITE, InterpolationType.HERMITE_BACKWARDS_AVERAGED):
            a = interpolate(clean.copy(), hours, kind)
            b = interpolate(dirty.copy(), hours, kind)
            np.testing.assert_allclose(a, b)

    def test_interpolate_variable_fills_full_gfs_series(self):
        domain = small_domain()
        run = small_run(domain)
        matrix = _matrix(list(GFS_HOURS), np.linspace(270, 290, len(GFS_HOURS)), n_locations=2)
        interpolate_variable(matrix, GFS_HOURS, lookup("temperature_2m"), run=run)
        self.assertEqual(matrix.shape, (2, 385))
        self.assertFalse(np.isnan(matrix).any())


class BackwardsAveragedKernelTests(unittest.TestCase):
    def test_running_average_constant_rate_is_preserved(self):
        hours = list(range(0, 7)) + [9, 12, 15]
        matrix = _matrix(hours, [np.nan] + [5.0] * (len(hours) - 1))
        interpolate(matrix, hours, InterpolationType.HERMITE_BACKWARDS_AVERAGED, skip_first=1, running_average=True)
        np.testing.assert_allclose(matrix[0, 1:], 5.0, atol=1e-4)

    def test_running_average_gap_total_is_conserved(self):
        increments = np.arange(1, 16, dtype=np.float64)
        running = np.concatenate([[np.nan], np.cumsum(increments) / np.arange(1, 16)])
        hours = list(range(0, 7)) + [9, 12, 15]
        matrix = _matrix(hours, running[hours])
        interpolate(matrix, hours, InterpolationType.HERMITE_BACKWARDS_AVERAGED, skip_first=1, running_average=True)
        np.testing.assert_allclose(matrix[0, hours[1:]], running[hours[1:]], rtol=1e-6)
        cumulative = matrix[0].astype(np.float64) * np.arange(16)
        rates = np.diff(cumulative[6:])
        self.assertAlmostEqual(rates[:3].sum(), increments[6:9].sum(), places=3)
        self.assertAlmostEqual(rates[3:6].sum(), increments[9:12].sum(), places=3)

    def test_period_average_constant_stays_constant(self):
        hours = [0, 3, 6, 9]
        matrix = _matrix(hours, [4.0, 4.0, 4.0, 4.0])
        interpolate(matrix, hours, InterpolationType.HERMITE_BACKWARDS_AVERAGED)
        np.testing.assert_allclose(matrix[0], 4.0, atol=1e-5)


class SolarKernelTests(unittest.TestCase):
    def setUp(self):
        self.reference = datetime(2022, 3, 20, 0, tzinfo=timezone.utc)

    def _run(self, hours):
        domain = small_domain(hours, nx=3, ny=1, lat_min=0.0)
        return domain, small_run(domain, self.reference)

    def test_requires_run(self):
        with self.assertRaises(ValueError):
            interpolate(_matrix([0, 3], [1.0, 2.0]), [0, 3], InterpolationType.SOLAR_BACKWARDS_AVERAGED)

    def test_morning_gap_follows_rising_sun(self):
        hours = [0, 3, 6, 9, 12]
        _, run = self._run(hours)
        matrix = _matrix(hours, [0.0, 0.0, 0.0, 300.0, 900.0], n_locations=3)
        interpolate(matrix, hours, InterpolationType.SOLAR_BACKWARDS_AVERAGED, run=run)
        self.assertGreater(float(matrix[0, 8]), float(matrix[0, 7]))
        self.assertGreater(float(matrix[0, 7]), 0.0)
        self.assertLess(float(matrix[0, 7]) + float(matrix[0, 8]), 900.0)
        self.assertEqual(float(matrix[0, 9]), 300.0)

    def test_night_gap_is_uniform(self):
        hours = [0, 3]
        _, run = self._run(hours)
        matrix = _matrix(hours, [0.0, 12.0], n_locations=3)
        interpolate(matrix, hours, InterpolationType.SOLAR_BACKWARDS_AVERAGED, run=run)
        np.testing.assert_allclose(matrix[:, 1:3], 12.0)

    def test_running_average_reconstructs_clear_sky_shaped_series(self):
        hours = list(range(0, 13)) + [15, 18, 21, 24]
        domain, run = self._run(hours)
        ends = [self.reference + timedelta(hours=h) for h in range(1, 25)]
        irradiance = backwards_averaged_irradiance(
            domain.grid.latitudes(), domain.grid.longitudes(), ends
        ).astype(np.float64)
        true_rates = 0.7 * irradiance
        running = np.full((3, 25), np.nan)
        running[:, 1:] = np.cumsum(true_rates, axis=1) / np.arange(1, 25)
        matrix = np.full((3, 25), np.nan, dtype=np.float32)
        matrix[:, hours[1:]] = running[:, hours[1:]]
        interpolate(
            matrix,
            hours,
            InterpolationType.SOLAR_BACKWARDS_AVERAGED,
            skip_first=1,
            running_average=True,
            run=run,
        )
        np.testing.assert_allclose(matrix[:, 1:], running[:, 1:], atol=0.05)


if __name__ == "__main__":
    unittest.main()
