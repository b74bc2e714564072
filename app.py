from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Dict, List

import numpy as np
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from gfs_domain import DOMAINS, DomainMeta, epoch_hour_to_datetime, parse_domain
from gfs_errors import ConfigurationError, StorageError
from gfs_variables import all_variables, parse
from log_config import configure_logging
from timeseries_store import TimeSeriesStore

MAX_SERIES_HOURS = int(os.getenv("GFS_MAX_SERIES_HOURS", str(16 * 24)))

LOGGER = configure_logging()

app = FastAPI(title="GFS Time Series")


def _allowed_cors_origins() -> List[str]:
    if os.getenv("GFS_ALLOW_ALL_CORS", "").strip() == "1":
        return ["*"]
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [v.strip() for v in raw.split(",") if v.strip()]
    return ["http://127.0.0.1:8000", "http://localhost:8000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)

STORES: Dict[str, TimeSeriesStore] = {}


def _store_for(domain: DomainMeta) -> TimeSeriesStore:
    store = STORES.get(domain.domain_id)
    if store is None:
        store = TimeSeriesStore(domain.omfile_directory, domain.grid.count, domain.om_file_length)
        STORES[domain.domain_id] = store
    return store


def _parse_start(value: str) -> int:
    try:
        start = datetime.strptime(value, "%Y%m%d%H").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid start format: {value}. Expected YYYYMMDDHH") from exc
    return int(start.timestamp()) // 3600


@app.get("/api/metadata")
def metadata() -> Dict[str, object]:
    return {
        "domains": [
            {
                "domain_id": d.domain_id,
                "display_name": d.display_name,
                "nx": d.grid.nx,
                "ny": d.grid.ny,
                "forecast_hours": list(d.forecast_hours),
            }
            for d in DOMAINS.values()
        ],
        "variables": [
            {
                "variable_id": v.name,
                "unit": v.unit,
                "scalefactor": v.scalefactor,
                "interpolation": v.interpolation.value,
            }
            for v in all_variables()
        ],
    }


@app.get("/api/series")
def series(
    variable_id: str = Query(...),
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    start: str = Query(...),
    hours: int = Query(24, ge=1),
    domain_id: str = Query("gfs025"),
) -> Dict[str, object]:
    try:
        domain = parse_domain(domain_id)
        variable = parse(variable_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if hours > MAX_SERIES_HOURS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_SERIES_HOURS} hours per request")

    start_hour = _parse_start(start)
    location = domain.grid.nearest_location(lat, lon)
    grid_lat, grid_lon = domain.grid.coordinates(location)
    try:
        values = _store_for(domain).read(variable.name, location, range(start_hour, start_hour + hours))[0]
    except StorageError as exc:
        LOGGER.exception("Series read failed variable=%s location=%d", variable.name, location)
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "domain_id": domain.domain_id,
        "variable_id": variable.name,
        "unit": variable.unit,
        "grid_lat": grid_lat,
        "grid_lon": grid_lon,
        "times": [epoch_hour_to_datetime(start_hour + i).isoformat() for i in range(hours)],
        "values": [None if not np.isfinite(v) else round(float(v), 4) for v in values],
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
