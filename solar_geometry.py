"""Clear-sky solar potential used to weight radiation between forecast steps.

Declination, equation of time and eccentricity follow the Spencer (1971)
Fourier series. Values are top-of-atmosphere irradiance on a horizontal surface,
averaged over the hour that ends at each requested time step. Only the relative
shape matters for interpolation, so the approximation is validated against
reference sunrise/noon/daily-mean values rather than an ephemeris.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence, Tuple

import numpy as np

SOLAR_CONSTANT = 1367.0
_TWO_PI = 2.0 * np.pi


def _day_angle(when: datetime) -> float:
    when = when.astimezone(timezone.utc)
    day_of_year = when.timetuple().tm_yday
    hours = when.hour + when.minute / 60.0 + when.second / 3600.0
    return _TWO_PI * (day_of_year - 1 + (hours - 12.0) / 24.0) / 365.0


def sun_parameters(when: datetime) -> Tuple[float, float, float]:
    """Return (declination radians, equation of time hours, eccentricity factor)."""
    g = _day_angle(when)
    declination = (
        0.006918
        - 0.399912 * np.cos(g)
        + 0.070257 * np.sin(g)
        - 0.006758 * np.cos(2 * g)
        + 0.000907 * np.sin(2 * g)
        - 0.002697 * np.cos(3 * g)
        + 0.00148 * np.sin(3 * g)
    )
    eot_minutes = 229.18 * (
        0.000075
        + 0.001868 * np.cos(g)
        - 0.032077 * np.sin(g)
        - 0.014615 * np.cos(2 * g)
        - 0.040849 * np.sin(2 * g)
    )
    eccentricity = (
        1.000110
        + 0.034221 * np.cos(g)
        + 0.001280 * np.sin(g)
        + 0.000719 * np.cos(2 * g)
        + 0.000077 * np.sin(2 * g)
    )
    return float(declination), float(eot_minutes / 60.0), float(eccentricity)


def _integrate_segment(a, b, sunset, sin_sin, cos_cos):
    lo = np.maximum(a, -sunset)
    hi = np.minimum(b, sunset)
    valid = hi > lo
    integral = sin_sin * (hi - lo) + cos_cos * (np.sin(hi) - np.sin(lo))
    return np.where(valid, integral, 0.0)


def backwards_averaged_irradiance(
    latitudes: np.ndarray,
    longitudes: np.ndarray,
    interval_ends: Sequence[datetime],
    interval_seconds: int = 3600,
) -> np.ndarray:
    """Mean extraterrestrial horizontal irradiance over each interval ending at ``interval_ends``.

    Returns float32 [n_locations, len(interval_ends)] in W/m².
    """
    lat = np.radians(np.asarray(latitudes, dtype=np.float64))
    lon = np.asarray(longitudes, dtype=np.float64)
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    span = _TWO_PI * interval_seconds / 86400.0
    out = np.zeros((lat.size, len(interval_ends)), dtype=np.float32)

    for column, end in enumerate(interval_ends):
        end = end.astimezone(timezone.utc)
        mid = datetime.fromtimestamp(end.timestamp() - interval_seconds / 2.0, tz=timezone.utc)
        declination, eot_hours, eccentricity = sun_parameters(mid)
        start_hours = (end.timestamp() - interval_seconds) / 3600.0 % 24.0
        start_angle = (start_hours + eot_hours + lon / 15.0 - 12.0) * np.pi / 12.0
        start_angle = np.mod(start_angle + np.pi, _TWO_PI) - np.pi
        end_angle = start_angle + span

        sin_sin = sin_lat * np.sin(declination)
        cos_cos = cos_lat * np.cos(declination)
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = -np.tan(lat) * np.tan(declination)
        sunset = np.arccos(np.clip(np.nan_to_num(ratio, nan=0.0), -1.0, 1.0))

        integral = _integrate_segment(start_angle, np.minimum(end_angle, np.pi), sunset, sin_sin, cos_cos)
        wrapped = end_angle > np.pi
        integral = integral + np.where(
            wrapped,
            _integrate_segment(-np.pi, end_angle - _TWO_PI, sunset, sin_sin, cos_cos),
            0.0,
        )
        out[:, column] = np.maximum(SOLAR_CONSTANT * eccentricity * integral / span, 0.0)
    return out
