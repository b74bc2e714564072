from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np

from gfs_errors import ConfigurationError, InvalidRun, UnknownDomain

DATA_DIR = Path(os.getenv("GFS_DATA_DIR", "data"))
RUN_CYCLE_HOURS = 6
PUBLICATION_LATENCY_HOURS = 2


@dataclass(frozen=True)
class RegularGrid:
    nx: int
    ny: int
    lat_min: float
    lon_min: float
    dx: float
    dy: float

    @property
    def count(self) -> int:
        return self.nx * self.ny

    def latitudes(self) -> np.ndarray:
        """Latitude of every location, row-major (y * nx + x)."""
        lat = self.lat_min + np.arange(self.ny, dtype=np.float64) * self.dy
        return np.repeat(lat, self.nx)

    def longitudes(self) -> np.ndarray:
        lon = self.lon_min + np.arange(self.nx, dtype=np.float64) * self.dx
        return np.tile(lon, self.ny)

    def nearest_location(self, lat: float, lon: float) -> int:
        y = int(np.clip(round((lat - self.lat_min) / self.dy), 0, self.ny - 1))
        x = int(round((lon - self.lon_min) / self.dx)) % self.nx
        return y * self.nx + x

    def coordinates(self, location: int) -> Tuple[float, float]:
        y, x = divmod(int(location), self.nx)
        return self.lat_min + y * self.dy, self.lon_min + x * self.dx


@dataclass(frozen=True)
class DomainMeta:
    domain_id: str
    display_name: str
    grid: RegularGrid
    dt_seconds: int
    forecast_hours: Tuple[int, ...]
    om_file_length: int

    @property
    def download_directory(self) -> Path:
        return DATA_DIR / self.domain_id

    @property
    def omfile_directory(self) -> Path:
        return DATA_DIR / f"omfile-{self.domain_id}"

    @property
    def n_forecast_hours_dense(self) -> int:
        return max(self.forecast_hours) + 1


@dataclass(frozen=True)
class ForecastRun:
    reference_time: datetime
    domain: DomainMeta

    @property
    def epoch_hour(self) -> int:
        return int(self.reference_time.timestamp()) // 3600

    def ring_window(self, n_time: int) -> range:
        """Absolute epoch-hour range covered by a dense matrix of this run."""
        return range(self.epoch_hour, self.epoch_hour + n_time)

    @property
    def yyyymmdd(self) -> str:
        return self.reference_time.strftime("%Y%m%d")

    @property
    def hh(self) -> str:
        return self.reference_time.strftime("%H")


def _gfs025_forecast_hours() -> Tuple[int, ...]:
    return tuple(list(range(0, 120)) + list(range(120, 385, 3)))


DOMAINS: Dict[str, DomainMeta] = {
    "gfs025": DomainMeta(
        domain_id="gfs025",
        display_name="NCEP GFS 0.25°",
        grid=RegularGrid(nx=1440, ny=721, lat_min=-90.0, lon_min=-180.0, dx=0.25, dy=0.25),
        dt_seconds=3600,
        forecast_hours=_gfs025_forecast_hours(),
        om_file_length=384 + 1 + 4 * 24,
    ),
}


def parse_domain(name: str) -> DomainMeta:
    domain = DOMAINS.get(str(name).strip())
    if domain is None:
        raise UnknownDomain(f"Invalid domain '{name}'. Known domains: {', '.join(sorted(DOMAINS))}")
    return domain


def validate_forecast_hours(hours: Sequence[int]) -> List[int]:
    """Check the hour set is strictly increasing, starts at 0 and never skips more than 2 hours."""
    out = [int(h) for h in hours]
    if not out:
        raise ConfigurationError("Forecast hour set is empty")
    if out[0] != 0:
        raise ConfigurationError(f"Forecast hour set must start at 0, got {out[0]}")
    for prev, cur in zip(out, out[1:]):
        if cur <= prev:
            raise ConfigurationError(f"Forecast hours not strictly increasing at {prev} -> {cur}")
        if cur - prev - 1 > 2:
            raise ConfigurationError(f"Forecast hour gap wider than 2 hours between {prev} and {cur}")
    return out


def default_run_hour(now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    hour = (now.hour - PUBLICATION_LATENCY_HOURS + 24) % 24
    return hour - hour % RUN_CYCLE_HOURS


def parse_run_hour(value: str | None, now: datetime | None = None) -> int:
    if value is None:
        return default_run_hour(now)
    try:
        run = int(str(value).strip())
    except ValueError as exc:
        raise InvalidRun(f"Invalid run '{value}'") from exc
    if run < 0 or run > 23 or run % RUN_CYCLE_HOURS != 0:
        raise InvalidRun(f"Invalid run '{value}': expected one of 0, 6, 12, 18")
    return run


def forecast_run(domain: DomainMeta, run_hour: int, now: datetime | None = None) -> ForecastRun:
    """Most recent run at ``run_hour`` that is not later than ``now``."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    reference = now.replace(hour=run_hour, minute=0, second=0, microsecond=0)
    if reference > now:
        reference -= timedelta(days=1)
    return ForecastRun(reference_time=reference, domain=domain)


def run_from_timestamp(domain: DomainMeta, reference: datetime) -> ForecastRun:
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    reference = reference.astimezone(timezone.utc)
    if reference.minute or reference.second or reference.microsecond:
        raise InvalidRun(f"Run reference time must be a whole hour, got {reference.isoformat()}")
    return ForecastRun(reference_time=reference, domain=domain)


def epoch_hour_to_datetime(epoch_hour: int) -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(hours=int(epoch_hour))
