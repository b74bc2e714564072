#!/usr/bin/env python3
"""Download a GFS run from NOAA NCEP and update the time-series store.

    python download.py gfs025 [--run HH] [--skip-existing] [--only-variables v1,v2]
"""
from __future__ import annotations

import argparse
import logging
from datetime import datetime
from typing import List, Sequence

from convert_pipeline import ConvertPipeline
from gfs_domain import forecast_run, parse_domain, parse_run_hour
from gfs_errors import ConfigurationError, ConvertError
from gfs_variables import parse_list
from grib_fetch import GfsDownloader
from log_config import configure_logging
from snapshot_files import SnapshotDirectory
from timeseries_store import TimeSeriesStore

LOGGER = logging.getLogger("gfs_forecast.download")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="download", description="Download GFS from NOAA NCEP")
    parser.add_argument("domain", help="Model domain, e.g. gfs025")
    parser.add_argument("--run", default=None, help="Run hour (0, 6, 12, 18). Defaults to the latest published run")
    parser.add_argument("--skip-existing", action="store_true", help="Do not download files already on disk")
    parser.add_argument("--only-variables", default=None, help="Comma separated variable names")
    return parser


def main(argv: Sequence[str] | None = None, now: datetime | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        domain = parse_domain(args.domain)
        run_hour = parse_run_hour(args.run, now=now)
        variables = parse_list(args.only_variables)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 2

    run = forecast_run(domain, run_hour, now=now)
    LOGGER.info(
        "Starting domain=%s run=%s variables=%d",
        domain.domain_id,
        run.reference_time.isoformat(),
        len(variables),
    )

    snapshots = SnapshotDirectory(domain.download_directory)
    downloader = GfsDownloader(domain, snapshots=snapshots)
    failed_hours = downloader.download(run, variables, skip_existing=args.skip_existing)
    if failed_hours:
        LOGGER.warning("Forecast hours not downloaded: %s", ", ".join(str(h) for h in sorted(failed_hours)))

    store = TimeSeriesStore(domain.omfile_directory, domain.grid.count, domain.om_file_length)
    pipeline = ConvertPipeline(
        domain,
        snapshot_source=lambda spec, hours: snapshots.for_variable(spec.name, hours),
        store=store,
    )
    try:
        pipeline.convert(run, variables)
    except ConvertError as exc:
        failed: List[str] = sorted(exc.failures)
        LOGGER.error("Committed %d variable(s); failed: %s", len(exc.committed), ", ".join(failed))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
