from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from gfs_variables import VariableSpec

LOGGER = logging.getLogger("gfs_forecast.series_normalization")

DEAVERAGE_WINDOW_HOURS = 6


def deaverage(matrix: np.ndarray, window: int = DEAVERAGE_WINDOW_HOURS, offset: int = 0) -> np.ndarray:
    """Turn running averages since forecast start into the mean of the most recent ``window`` hours.

    ``recent(h) = (h * avg(h) - (h - W) * avg(h - W)) / W``; within the first ``window``
    hours after ``offset`` the running average is already that mean. Reads only the
    input and returns a new array.
    """
    source = matrix.astype(np.float64)
    out = np.array(matrix, dtype=np.float32, copy=True)
    n_time = source.shape[1]
    if n_time <= offset + window:
        return out
    hours = np.arange(offset + window, n_time, dtype=np.float64)
    current = source[:, offset + window:] * hours
    previous = source[:, offset:n_time - window] * (hours - window)
    out[:, offset + window:] = ((current - previous) / window).astype(np.float32)
    return out


def multiply_add(matrix: np.ndarray, multiply: float, add: float) -> np.ndarray:
    return (matrix.astype(np.float32) * np.float32(multiply) + np.float32(add)).astype(np.float32)


def deaccumulate(matrix: np.ndarray, offset: int = 0) -> np.ndarray:
    """Turn sums accumulated since ``offset`` into per-hour increments; the first hour keeps its value."""
    out = np.array(matrix, dtype=np.float32, copy=True)
    if matrix.shape[1] <= offset + 1:
        return out
    out[:, offset + 1:] = np.diff(matrix[:, offset:].astype(np.float64), axis=1).astype(np.float32)
    return out


def normalize(matrix: np.ndarray, spec: VariableSpec) -> np.ndarray:
    """Apply deaveraging, the affine unit transform and deaccumulation, in that order."""
    offset = spec.skip_first
    result = matrix
    steps: Tuple[str, ...] = ()
    if spec.averaged:
        result = deaverage(result, DEAVERAGE_WINDOW_HOURS, offset)
        steps += ("deaverage",)
    if spec.multiply_add is not None:
        result = multiply_add(result, *spec.multiply_add)
        steps += ("multiply_add",)
    if spec.accumulated:
        result = deaccumulate(result, offset)
        steps += ("deaccumulate",)
    if result is matrix:
        result = np.array(matrix, dtype=np.float32, copy=True)
    LOGGER.debug("Normalized variable=%s steps=%s", spec.name, ",".join(steps) or "none")
    return result
