import unittest

import numpy as np

from gfs_errors import ConfigurationError, MissingSnapshot
from gfs_variables import lookup
from helpers import small_domain, small_run
from series_assembly import assemble

HOURS = [0, 1, 2, 3, 6, 9]


class SnapshotAssemblyTests(unittest.TestCase):
    def setUp(self):
        self.domain = small_domain(HOURS)
        self.run = small_run(self.domain)

    def _snapshots(self, hours):
        return {h: np.array([h, 100 + h], dtype=np.float32) for h in hours}

    def test_populates_listed_hours_and_leaves_gaps_nan(self):
        matrix = assemble(self.run, lookup("temperature_2m"), HOURS, self._snapshots(HOURS))
        self.assertEqual(matrix.shape, (2, 10))
        self.assertEqual(matrix.dtype, np.float32)
        np.testing.assert_array_equal(matrix[:, 6], [6, 106])
        self.assertTrue(np.isnan(matrix[:, [4, 5, 7, 8]]).all())

    def test_skipped_hour0_is_left_unfilled(self):
        snapshots = self._snapshots(HOURS[1:])
        matrix = assemble(self.run, lookup("precipitation"), HOURS, snapshots)
        self.assertTrue(np.isnan(matrix[:, 0]).all())
        np.testing.assert_array_equal(matrix[:, 1], [1, 101])

    def test_skipped_hour0_ignores_present_snapshot(self):
        matrix = assemble(self.run, lookup("precipitation"), HOURS, self._snapshots(HOURS))
        self.assertTrue(np.isnan(matrix[:, 0]).all())

    def test_missing_required_hour_raises(self):
        snapshots = self._snapshots([h for h in HOURS if h != 6])
        with self.assertRaises(MissingSnapshot) as ctx:
            assemble(self.run, lookup("temperature_2m"), HOURS, snapshots)
        self.assertEqual(ctx.exception.forecast_hour, 6)
        self.assertEqual(ctx.exception.variable, "temperature_2m")

    def test_missing_hour0_raises_when_not_skipped(self):
        snapshots = self._snapshots(HOURS[1:])
        with self.assertRaises(MissingSnapshot):
            assemble(self.run, lookup("temperature_2m"), HOURS, snapshots)

    def test_wrong_length_snapshot_counts_as_missing(self):
        snapshots = self._snapshots(HOURS)
        snapshots[3] = np.zeros(5, dtype=np.float32)
        with self.assertRaises(MissingSnapshot):
            assemble(self.run, lookup("temperature_2m"), HOURS, snapshots)

    def test_rejects_hour_set_with_wide_gap(self):
        with self.assertRaises(ConfigurationError):
            assemble(self.run, lookup("temperature_2m"), [0, 1, 5], self._snapshots([0, 1, 5]))


if __name__ == "__main__":
    unittest.main()
