from __future__ import annotations

import logging
import os
import re
import threading
import zipfile
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np

from gfs_errors import StorageError

LOGGER = logging.getLogger("gfs_forecast.timeseries_store")

QUANTIZED_DTYPE = np.int16
NODATA = np.iinfo(QUANTIZED_DTYPE).max
_QMIN = np.iinfo(QUANTIZED_DTYPE).min + 1
_QMAX = NODATA - 1
_CHUNK_NAME = re.compile(r"^chunk_(\d+)\.npz$")


def quantize(values: np.ndarray, scalefactor: float) -> np.ndarray:
    """Fixed-point encode: ``round(value * scalefactor)`` as int16, NaN as the NODATA sentinel."""
    if scalefactor <= 0:
        raise ValueError(f"scalefactor must be positive, got {scalefactor}")
    scaled = np.asarray(values, dtype=np.float64) * float(scalefactor)
    missing = ~np.isfinite(scaled)
    scaled = np.rint(np.where(missing, 0.0, scaled))
    saturated = int(np.count_nonzero((scaled < _QMIN) | (scaled > _QMAX)))
    if saturated:
        LOGGER.warning(
            "Clipped %d value(s) outside the int16 range at scalefactor=%s; readback error exceeds 0.5/scalefactor",
            saturated,
            scalefactor,
        )
    scaled = np.clip(scaled, _QMIN, _QMAX)
    out = scaled.astype(QUANTIZED_DTYPE)
    out[missing] = NODATA
    return out


def dequantize(values: np.ndarray, scalefactor: float) -> np.ndarray:
    raw = np.asarray(values)
    out = raw.astype(np.float32) / np.float32(scalefactor)
    out[raw == NODATA] = np.nan
    return out


class TimeSeriesStore:
    """Quantized time series split into files of ``n_time_per_file`` hours per variable.

    File ``k`` of a variable holds epoch hours ``[k * n_time_per_file, (k + 1) * n_time_per_file)``
    for every location. Updates merge into existing files so consecutive runs overwrite
    the overlapping hours and keep older history.
    """

    def __init__(self, base_path: Path | str, n_locations: int, n_time_per_file: int) -> None:
        if n_locations <= 0 or n_time_per_file <= 0:
            raise ValueError("n_locations and n_time_per_file must be positive")
        self.base_path = Path(base_path)
        self.n_locations = int(n_locations)
        self.n_time_per_file = int(n_time_per_file)
        self._file_locks: Dict[Path, threading.Lock] = {}
        self._file_locks_guard = threading.Lock()

    def update_from_time_oriented(
        self,
        variable: str,
        matrix: np.ndarray,
        ring_window: range,
        skip_first: int = 0,
        skip_last: int = 0,
        scalefactor: float = 1.0,
    ) -> int:
        """Write ``matrix[location, hour]`` at epoch hours ``ring_window``; returns files touched."""
        if matrix.ndim != 2 or matrix.shape[0] != self.n_locations:
            raise StorageError(
                f"Expected matrix with {self.n_locations} locations for variable={variable}, got shape {matrix.shape}"
            )
        if matrix.shape[1] != len(ring_window):
            raise StorageError(
                f"Matrix has {matrix.shape[1]} hours but ring window spans {len(ring_window)} for variable={variable}"
            )
        if skip_first < 0 or skip_last < 0 or skip_first + skip_last >= len(ring_window):
            raise StorageError(f"Invalid skip_first={skip_first} skip_last={skip_last} for variable={variable}")

        start = ring_window.start + skip_first
        stop = ring_window.stop - skip_last
        quantized = quantize(matrix[:, skip_first:matrix.shape[1] - skip_last], scalefactor)

        touched = 0
        for file_index in range(start // self.n_time_per_file, (stop - 1) // self.n_time_per_file + 1):
            file_start = file_index * self.n_time_per_file
            lo = max(start, file_start)
            hi = min(stop, file_start + self.n_time_per_file)
            path = self._chunk_path(variable, file_index)
            with self._get_file_lock(path):
                data = self._load_chunk(path, scalefactor)
                if data is None:
                    data = np.full((self.n_locations, self.n_time_per_file), NODATA, dtype=QUANTIZED_DTYPE)
                data[:, lo - file_start:hi - file_start] = quantized[:, lo - start:hi - start]
                self._save_chunk(path, data, scalefactor)
            touched += 1
        LOGGER.debug("Updated variable=%s hours=[%d,%d) files=%d", variable, start, stop, touched)
        return touched

    def read(self, variable: str, locations: int | Sequence[int], time_range: range) -> np.ndarray:
        """Dequantized float32 [n_locations_selected, len(time_range)]; NaN where nothing was stored."""
        index = np.atleast_1d(np.asarray(locations, dtype=np.int64))
        if index.size and (index.min() < 0 or index.max() >= self.n_locations):
            raise StorageError(f"Location out of range for variable={variable}")
        out = np.full((index.size, len(time_range)), np.nan, dtype=np.float32)
        if len(time_range) == 0:
            return out
        start, stop = time_range.start, time_range.stop
        for file_index in range(start // self.n_time_per_file, (stop - 1) // self.n_time_per_file + 1):
            path = self._chunk_path(variable, file_index)
            if not path.exists():
                continue
            with self._get_file_lock(path):
                data, scalefactor = self._read_chunk(path)
            file_start = file_index * self.n_time_per_file
            lo = max(start, file_start)
            hi = min(stop, file_start + self.n_time_per_file)
            out[:, lo - start:hi - start] = dequantize(data[index, lo - file_start:hi - file_start], scalefactor)
        return out

    def variables(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(p.name for p in self.base_path.iterdir() if p.is_dir())

    def chunk_indices(self, variable: str) -> List[int]:
        directory = self.base_path / variable
        if not directory.exists():
            return []
        out = []
        for path in directory.iterdir():
            match = _CHUNK_NAME.match(path.name)
            if match:
                out.append(int(match.group(1)))
        return sorted(out)

    def _chunk_path(self, variable: str, file_index: int) -> Path:
        return self.base_path / variable / f"chunk_{file_index}.npz"

    def _get_file_lock(self, path: Path) -> threading.Lock:
        with self._file_locks_guard:
            lock = self._file_locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._file_locks[path] = lock
            return lock

    def _read_chunk(self, path: Path) -> Tuple[np.ndarray, float]:
        try:
            with np.load(path) as payload:
                data = payload["data"]
                scalefactor = float(payload["scalefactor"])
        except (EOFError, OSError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise StorageError(f"Unreadable time-series file path={path}: {exc}") from exc
        if data.shape != (self.n_locations, self.n_time_per_file):
            raise StorageError(f"Time-series file path={path} has shape {data.shape}")
        return data, scalefactor

    def _load_chunk(self, path: Path, scalefactor: float) -> np.ndarray | None:
        if not path.exists():
            return None
        data, stored_scale = self._read_chunk(path)
        if not np.isclose(stored_scale, scalefactor):
            raise StorageError(
                f"Scalefactor mismatch for path={path}: stored {stored_scale}, requested {scalefactor}"
            )
        return data

    @staticmethod
    def _save_chunk(path: Path, data: np.ndarray, scalefactor: float) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("wb") as tmp_file:
                np.savez_compressed(tmp_file, data=data, scalefactor=np.float64(scalefactor))
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to write time-series file path={path}: {exc}") from exc
        LOGGER.debug("Saved time-series file path=%s bytes=%s", path, path.stat().st_size if path.exists() else -1)
