from __future__ import annotations

import logging
import os
import zipfile
from collections.abc import Mapping
from pathlib import Path
from typing import Iterator, Sequence

import numpy as np

LOGGER = logging.getLogger("gfs_forecast.snapshot_files")


class SnapshotDirectory:
    """One compressed float32 file per (variable, forecast hour) in the download directory."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path(self, variable: str, forecast_hour: int) -> Path:
        return self.directory / f"{variable}_{int(forecast_hour)}.npz"

    def exists(self, variable: str, forecast_hour: int) -> bool:
        return self.path(variable, forecast_hour).exists()

    def write(self, variable: str, forecast_hour: int, data: np.ndarray) -> Path:
        path = self.path(variable, forecast_hour)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with tmp_path.open("wb") as tmp_file:
            np.savez_compressed(tmp_file, data=np.asarray(data, dtype=np.float32).reshape(-1))
        os.replace(tmp_path, path)
        LOGGER.debug("Saved snapshot path=%s bytes=%s", path, path.stat().st_size if path.exists() else -1)
        return path

    def read(self, variable: str, forecast_hour: int) -> np.ndarray | None:
        path = self.path(variable, forecast_hour)
        if not path.exists():
            return None
        try:
            with np.load(path) as payload:
                return payload["data"].astype(np.float32, copy=False)
        except (EOFError, OSError, zipfile.BadZipFile, KeyError, ValueError):
            LOGGER.warning("Ignoring corrupt/incomplete snapshot path=%s", path)
            return None

    def for_variable(self, variable: str, forecast_hours: Sequence[int]) -> "VariableSnapshots":
        return VariableSnapshots(self, variable, forecast_hours)


class VariableSnapshots(Mapping):
    """Lazy ``hour -> array`` view of one variable's snapshot files, read on access."""

    def __init__(self, directory: SnapshotDirectory, variable: str, forecast_hours: Sequence[int]) -> None:
        self._directory = directory
        self._variable = variable
        self._hours = [int(h) for h in forecast_hours]

    def __getitem__(self, hour: int) -> np.ndarray:
        data = self._directory.read(self._variable, hour)
        if data is None:
            raise KeyError(hour)
        return data

    def __contains__(self, hour: object) -> bool:
        return isinstance(hour, int) and self._directory.exists(self._variable, hour)

    def __iter__(self) -> Iterator[int]:
        return (h for h in self._hours if self._directory.exists(self._variable, h))

    def __len__(self) -> int:
        return sum(1 for _ in self)
