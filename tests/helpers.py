from datetime import datetime, timezone
from typing import Sequence

from gfs_domain import DomainMeta, ForecastRun, RegularGrid

GFS_HOURS = tuple(list(range(0, 120)) + list(range(120, 385, 3)))


def small_domain(hours: Sequence[int] = GFS_HOURS, nx: int = 2, ny: int = 1, lat_min: float = 0.0) -> DomainMeta:
    return DomainMeta(
        domain_id="test",
        display_name="test",
        grid=RegularGrid(nx=nx, ny=ny, lat_min=lat_min, lon_min=0.0, dx=1.0, dy=1.0),
        dt_seconds=3600,
        forecast_hours=tuple(hours),
        om_file_length=max(hours) + 1 + 4 * 24,
    )


def small_run(domain: DomainMeta, reference: datetime | None = None) -> ForecastRun:
    reference = reference or datetime(2022, 8, 13, 0, tzinfo=timezone.utc)
    return ForecastRun(reference_time=reference, domain=domain)
