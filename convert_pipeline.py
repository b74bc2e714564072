from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Protocol, Sequence

import numpy as np

from gfs_domain import DomainMeta, ForecastRun
from gfs_errors import ConvertError
from gfs_variables import VariableSpec
from series_assembly import assemble
from series_normalization import normalize
from time_interpolation import interpolate_variable

CONVERT_WORKERS = int(os.getenv("GFS_CONVERT_WORKERS", "1"))
LOGGER = logging.getLogger("gfs_forecast.convert_pipeline")

SnapshotSource = Callable[[VariableSpec, Sequence[int]], Mapping[int, np.ndarray]]


class SeriesStore(Protocol):
    def update_from_time_oriented(
        self,
        variable: str,
        matrix: np.ndarray,
        ring_window: range,
        skip_first: int = 0,
        skip_last: int = 0,
        scalefactor: float = 1.0,
    ) -> int: ...


@dataclass
class ConvertReport:
    committed: List[str] = field(default_factory=list)
    failures: Dict[str, BaseException] = field(default_factory=dict)


def build_series(
    run: ForecastRun,
    spec: VariableSpec,
    forecast_hours: Sequence[int],
    snapshots: Mapping[int, np.ndarray],
) -> np.ndarray:
    """Assemble, interpolate and normalize one variable into a dense hourly matrix."""
    matrix = assemble(run, spec, forecast_hours, snapshots)
    interpolate_variable(matrix, forecast_hours, spec, run=run)
    return normalize(matrix, spec)


class ConvertPipeline:
    """Turns downloaded snapshots of a run into store updates, one independent pipeline per variable."""

    def __init__(
        self,
        domain: DomainMeta,
        snapshot_source: SnapshotSource,
        store: SeriesStore,
        workers: int = CONVERT_WORKERS,
    ) -> None:
        self.domain = domain
        self.snapshot_source = snapshot_source
        self.store = store
        self.workers = max(1, int(workers))

    def convert_variable(self, run: ForecastRun, spec: VariableSpec) -> None:
        forecast_hours = self.domain.forecast_hours
        start = time.monotonic()
        LOGGER.info("Converting variable=%s", spec.name)
        snapshots = self.snapshot_source(spec, forecast_hours)
        series = build_series(run, spec, forecast_hours, snapshots)
        ring_window = run.ring_window(series.shape[1])
        LOGGER.info(
            "Reading and interpolation done variable=%s in %.1fs. Starting store update",
            spec.name,
            time.monotonic() - start,
        )
        store_start = time.monotonic()
        self.store.update_from_time_oriented(
            spec.name,
            series,
            ring_window,
            skip_first=spec.skip_first,
            skip_last=0,
            scalefactor=spec.scalefactor,
        )
        LOGGER.info("Store update finished variable=%s in %.1fs", spec.name, time.monotonic() - store_start)

    def convert(self, run: ForecastRun, variables: Sequence[VariableSpec]) -> ConvertReport:
        """Convert every variable; raise ``ConvertError`` afterwards if any of them failed."""
        report = ConvertReport()
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="convert") as executor:
            futures = [(spec, executor.submit(self.convert_variable, run, spec)) for spec in variables]
            for spec, future in futures:
                try:
                    future.result()
                except Exception as exc:
                    LOGGER.exception("Conversion failed variable=%s", spec.name)
                    report.failures[spec.name] = exc
                else:
                    report.committed.append(spec.name)

        LOGGER.info("Conversion finished committed=%d failed=%d", len(report.committed), len(report.failures))
        if report.failures:
            raise ConvertError(report.failures, report.committed)
        return report
