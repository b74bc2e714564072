from __future__ import annotations

import logging
from typing import Mapping, Sequence

import numpy as np

from gfs_domain import ForecastRun, validate_forecast_hours
from gfs_errors import MissingSnapshot
from gfs_variables import VariableSpec

LOGGER = logging.getLogger("gfs_forecast.series_assembly")


def empty_matrix(n_locations: int, n_time: int) -> np.ndarray:
    return np.full((n_locations, n_time), np.nan, dtype=np.float32)


def assemble(
    run: ForecastRun,
    spec: VariableSpec,
    forecast_hours: Sequence[int],
    snapshots: Mapping[int, np.ndarray],
) -> np.ndarray:
    """Build the dense [location, forecast hour] matrix from per-hour snapshots.

    Columns for hours outside ``forecast_hours`` and a skipped hour 0 are left NaN
    for the interpolator. Any other hour absent from ``snapshots`` aborts the
    variable with ``MissingSnapshot``.
    """
    hours = validate_forecast_hours(forecast_hours)
    n_locations = run.domain.grid.count
    matrix = empty_matrix(n_locations, hours[-1] + 1)

    for hour in hours:
        if hour == 0 and spec.skip_hour0:
            continue
        try:
            values = snapshots[hour]
        except KeyError as exc:
            raise MissingSnapshot(spec.name, hour) from exc
        values = np.asarray(values, dtype=np.float32).reshape(-1)
        if values.size != n_locations:
            raise MissingSnapshot(
                spec.name,
                hour,
                reason=f"expected {n_locations} values, got {values.size}",
            )
        matrix[:, hour] = values

    LOGGER.debug(
        "Assembled variable=%s locations=%d hours=%d populated=%d",
        spec.name,
        n_locations,
        matrix.shape[1],
        len(hours) - spec.skip_first,
    )
    return matrix
