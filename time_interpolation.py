from __future__ import annotations

import logging
from bisect import bisect_left
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Sequence, Tuple

import numpy as np

from gfs_domain import ForecastRun, validate_forecast_hours
from gfs_variables import InterpolationType, VariableSpec
from solar_geometry import backwards_averaged_irradiance

LOGGER = logging.getLogger("gfs_forecast.time_interpolation")

# Below this mean irradiance (W/m²) a gap is treated as night and filled uniformly.
SOLAR_NIGHT_THRESHOLD = 1e-3


@dataclass(frozen=True)
class Gap:
    """Missing hours between two known anchors; outer anchors already clamped."""

    outer_left: int
    left: int
    right: int
    outer_right: int
    missing: Tuple[int, ...]


def gap_positions(forecast_hours: Sequence[int], n_time: int | None = None) -> List[int]:
    """First hour of every run of hours absent from ``forecast_hours``.

    On a 3-hourly tail starting at a member hour these are the hours ``h % 3 == 1``.
    """
    hours = validate_forecast_hours(forecast_hours)
    n_time = hours[-1] + 1 if n_time is None else n_time
    known = set(hours)
    return [h for h in range(1, n_time) if h not in known and (h - 1) in known]


def find_gaps(forecast_hours: Sequence[int], skip_first: int = 0) -> List[Gap]:
    hours = validate_forecast_hours(forecast_hours)
    known = set(hours)
    # a skipped hour 0 is never an anchor; kernels clamp to the first delivered hour instead
    anchors = [h for h in hours if h >= skip_first]
    gaps: List[Gap] = []
    for start in gap_positions(hours):
        missing = []
        h = start
        while h not in known:
            missing.append(h)
            h += 1
        idx = bisect_left(anchors, start)
        right = anchors[idx] if idx < len(anchors) else anchors[-1]
        left = anchors[idx - 1] if idx >= 1 else right
        outer_left = anchors[idx - 2] if idx >= 2 else left
        outer_right = anchors[idx + 1] if idx + 1 < len(anchors) else right
        gaps.append(Gap(outer_left, left, right, outer_right, tuple(missing)))
    return gaps


def _hermite(p0, p1, p2, p3, t0, t1, t2, t3, t):
    """Cubic Hermite on [t1, t2] with finite-difference tangents on the true anchor times.

    A clamped outer anchor (t0 == t1 or t3 == t2) gives a one-sided tangent; with
    both clamped the curve is the straight line between p1 and p2.
    """
    width = t2 - t1
    if width == 0:
        return np.array(p1, copy=True)
    secant = (p2 - p1) / width
    m1 = secant if t0 == t1 else (p2 - p0) / (t2 - t0)
    m2 = secant if t3 == t2 else (p3 - p1) / (t3 - t1)
    s = (t - t1) / width
    s2 = s * s
    s3 = s2 * s
    return (
        (2 * s3 - 3 * s2 + 1) * p1
        + (s3 - 2 * s2 + s) * width * m1
        + (-2 * s3 + 3 * s2) * p2
        + (s3 - s2) * width * m2
    )


def _fill_linear(matrix: np.ndarray, gap: Gap) -> None:
    left = matrix[:, gap.left]
    right = matrix[:, gap.right]
    width = gap.right - gap.left
    for hour in gap.missing:
        if width == 0:
            matrix[:, hour] = left
            continue
        fraction = (hour - gap.left) / width
        matrix[:, hour] = left + (right - left) * fraction


def _fill_nearest(matrix: np.ndarray, gap: Gap) -> None:
    for hour in gap.missing:
        # ties resolve to the earlier anchor
        source = gap.left if hour - gap.left <= gap.right - hour else gap.right
        matrix[:, hour] = matrix[:, source]


def _fill_hermite(matrix: np.ndarray, gap: Gap) -> None:
    p0 = matrix[:, gap.outer_left].astype(np.float64)
    p1 = matrix[:, gap.left].astype(np.float64)
    p2 = matrix[:, gap.right].astype(np.float64)
    p3 = matrix[:, gap.outer_right].astype(np.float64)
    for hour in gap.missing:
        matrix[:, hour] = _hermite(p0, p1, p2, p3, gap.outer_left, gap.left, gap.right, gap.outer_right, hour)


class _PeriodView:
    """Reads columns as backward period rates and writes hourly rates back in column semantics.

    With ``running_average`` each column holds the mean since forecast start, so the
    cumulative amount up to hour h is ``h * value``. Otherwise a column holds the mean
    over the period since the previous known hour.
    """

    def __init__(self, matrix: np.ndarray, anchors: Sequence[int], running_average: bool) -> None:
        self.matrix = matrix
        self.anchors = list(anchors)
        self.running_average = running_average

    def cumulative(self, hour: int) -> np.ndarray:
        if hour == 0:
            return np.zeros(self.matrix.shape[0], dtype=np.float64)
        return hour * self.matrix[:, hour].astype(np.float64)

    def previous_anchor(self, hour: int) -> int:
        idx = bisect_left(self.anchors, hour)
        return self.anchors[idx - 1] if idx >= 1 else 0

    def rate(self, hour: int) -> np.ndarray:
        """Mean rate over the period ending at anchor ``hour``."""
        if not self.running_average:
            return self.matrix[:, hour].astype(np.float64)
        prev = self.previous_anchor(hour)
        if prev == hour:
            return self.matrix[:, hour].astype(np.float64)
        return (self.cumulative(hour) - self.cumulative(prev)) / (hour - prev)

    def total(self, gap: Gap) -> np.ndarray:
        width = gap.right - gap.left
        if self.running_average:
            return self.cumulative(gap.right) - self.cumulative(gap.left)
        return width * self.matrix[:, gap.right].astype(np.float64)

    def write(self, gap: Gap, hourly_rates: Dict[int, np.ndarray]) -> None:
        running = self.cumulative(gap.left)
        for hour in range(gap.left + 1, gap.right):
            running = running + hourly_rates[hour]
            if hour not in gap.missing:
                continue
            if self.running_average:
                self.matrix[:, hour] = running / hour
            else:
                self.matrix[:, hour] = hourly_rates[hour]


def _fill_hermite_backwards_averaged(matrix: np.ndarray, gap: Gap, view: _PeriodView) -> None:
    if gap.left == gap.right:
        _fill_linear(matrix, gap)
        return
    width = gap.right - gap.left
    total = view.total(gap)
    r0 = view.rate(gap.outer_left)
    r1 = view.rate(gap.left)
    r2 = total / width
    r3 = view.rate(gap.outer_right)
    hours = range(gap.left + 1, gap.right + 1)
    estimates = {
        hour: _hermite(r0, r1, r2, r3, gap.outer_left, gap.left, gap.right, gap.outer_right, hour)
        for hour in hours
    }
    correction = (total - sum(estimates.values())) / width
    view.write(gap, {hour: estimates[hour] + correction for hour in hours})


def _fill_solar_backwards_averaged(
    matrix: np.ndarray,
    gap: Gap,
    view: _PeriodView,
    solar: _SolarWeights,
) -> None:
    if gap.left == gap.right:
        _fill_linear(matrix, gap)
        return
    width = gap.right - gap.left
    total = view.total(gap)
    hours = range(gap.left + 1, gap.right + 1)
    irradiance = solar.columns(hours)
    weight_sum = sum(irradiance[hour] for hour in hours)
    night = weight_sum <= SOLAR_NIGHT_THRESHOLD * width
    safe_sum = np.where(night, 1.0, weight_sum)
    rates = {
        hour: np.where(night, total / width, total * irradiance[hour] / safe_sum)
        for hour in hours
    }
    view.write(gap, rates)


class _SolarWeights:
    """Hourly clear-sky irradiance for the run's grid, computed one gap at a time."""

    def __init__(self, run: ForecastRun) -> None:
        grid = run.domain.grid
        self.reference_time = run.reference_time
        self.dt_seconds = run.domain.dt_seconds
        self.latitudes = grid.latitudes()
        self.longitudes = grid.longitudes()

    def columns(self, hours: Sequence[int]) -> Dict[int, np.ndarray]:
        hours = list(hours)
        ends = [self.reference_time + timedelta(seconds=h * self.dt_seconds) for h in hours]
        values = backwards_averaged_irradiance(self.latitudes, self.longitudes, ends, interval_seconds=self.dt_seconds)
        return {hour: values[:, i].astype(np.float64) for i, hour in enumerate(hours)}


def interpolate(
    matrix: np.ndarray,
    forecast_hours: Sequence[int],
    kind: InterpolationType,
    *,
    skip_first: int = 0,
    running_average: bool = False,
    run: ForecastRun | None = None,
) -> np.ndarray:
    """Fill, in place, every hour of ``matrix`` that is not in ``forecast_hours``.

    Only member columns are read, so a value produced for one gap never feeds another.
    Returns ``matrix`` for chaining.
    """
    kind = InterpolationType(kind)
    gaps = find_gaps(forecast_hours, skip_first=skip_first)
    if not gaps:
        return matrix
    anchors = [h for h in validate_forecast_hours(forecast_hours) if h >= skip_first]

    if kind is InterpolationType.LINEAR:
        for gap in gaps:
            _fill_linear(matrix, gap)
    elif kind is InterpolationType.NEAREST:
        for gap in gaps:
            _fill_nearest(matrix, gap)
    elif kind is InterpolationType.HERMITE:
        for gap in gaps:
            _fill_hermite(matrix, gap)
    elif kind is InterpolationType.HERMITE_BACKWARDS_AVERAGED:
        view = _PeriodView(matrix, anchors, running_average)
        for gap in gaps:
            _fill_hermite_backwards_averaged(matrix, gap, view)
    elif kind is InterpolationType.SOLAR_BACKWARDS_AVERAGED:
        if run is None:
            raise ValueError("solar_backwards_averaged interpolation requires the forecast run")
        view = _PeriodView(matrix, anchors, running_average)
        solar = _SolarWeights(run)
        for gap in gaps:
            _fill_solar_backwards_averaged(matrix, gap, view, solar)
    else:
        raise ValueError(f"Unsupported interpolation type: {kind}")

    LOGGER.debug("Interpolated kind=%s gaps=%d", kind.value, len(gaps))
    return matrix


def interpolate_variable(
    matrix: np.ndarray,
    forecast_hours: Sequence[int],
    spec: VariableSpec,
    run: ForecastRun | None = None,
) -> np.ndarray:
    return interpolate(
        matrix,
        forecast_hours,
        spec.interpolation,
        skip_first=spec.skip_first,
        running_average=spec.averaged,
        run=run,
    )
