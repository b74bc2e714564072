from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np
import requests

from gfs_domain import DomainMeta, ForecastRun
from gfs_errors import FetchError
from gfs_variables import VariableSpec
from snapshot_files import SnapshotDirectory

GFS_BASE_URL = os.getenv("GFS_BASE_URL", "https://nomads.ncep.noaa.gov/pub/data/nccf/com/gfs/prod").rstrip("/")
FETCH_RETRIES = int(os.getenv("GFS_FETCH_RETRIES", "4"))
FETCH_BASE_BACKOFF_SECONDS = float(os.getenv("GFS_FETCH_BACKOFF_SECONDS", "2.0"))
FETCH_WORKERS = int(os.getenv("GFS_FETCH_WORKERS", "4"))
FETCH_TIMEOUT_SECONDS = 60
LOGGER = logging.getLogger("gfs_forecast.grib_fetch")


@dataclass(frozen=True)
class IndexEntry:
    number: str
    offset: int
    line: str


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int | None

    def header(self) -> str:
        return f"bytes={self.start}-" if self.end is None else f"bytes={self.start}-{self.end}"


def gfs_url(run: ForecastRun, forecast_hour: int) -> str:
    hh = run.hh
    return f"{GFS_BASE_URL}/gfs.{run.yyyymmdd}/{hh}/atmos/gfs.t{hh}z.pgrb2.0p25.f{int(forecast_hour):03d}"


def parse_index(text: str) -> List[IndexEntry]:
    """Parse a wgrib2 ``.idx`` sidecar: ``number:offset:d=date:VAR:level:forecast:``."""
    entries: List[IndexEntry] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        parts = line.split(":", 2)
        if len(parts) < 3:
            raise FetchError(f"Malformed GRIB index line: {line!r}")
        try:
            offset = int(parts[1])
        except ValueError as exc:
            raise FetchError(f"Malformed GRIB index offset: {line!r}") from exc
        entries.append(IndexEntry(number=parts[0], offset=offset, line=":" + parts[2]))
    return entries


def match_index(entries: Sequence[IndexEntry], variables: Sequence[VariableSpec]) -> List[Tuple[VariableSpec, ByteRange]]:
    """Byte range of the first index line containing each variable's key; every key must match."""
    out: List[Tuple[VariableSpec, ByteRange]] = []
    missing: List[str] = []
    for variable in variables:
        for i, entry in enumerate(entries):
            if variable.grib_index_key in entry.line:
                end = entries[i + 1].offset - 1 if i + 1 < len(entries) else None
                out.append((variable, ByteRange(entry.offset, end)))
                break
        else:
            missing.append(variable.name)
    if missing:
        raise FetchError(f"GRIB index has no entry for variables: {', '.join(missing)}")
    return out


def merge_ranges(ranges: Sequence[ByteRange]) -> List[ByteRange]:
    """Join adjacent byte ranges so neighbouring messages are fetched with one request."""
    ordered = sorted(ranges, key=lambda r: r.start)
    merged: List[ByteRange] = []
    for current in ordered:
        if merged and merged[-1].end is not None and merged[-1].end + 1 == current.start:
            merged[-1] = ByteRange(merged[-1].start, current.end)
        else:
            merged.append(current)
    return merged


def shift180_and_flip_latitude(values: np.ndarray) -> np.ndarray:
    """Reorder a north-up 0..360° grid to south-up -180..180° and flatten row-major."""
    ny, nx = values.shape
    return np.flipud(np.roll(values, nx // 2, axis=1)).reshape(-1).astype(np.float32)


def mask_missing(values: np.ndarray, bitmap_present: bool, missing_value: float) -> np.ndarray:
    """Replace points masked by the GRIB bitmap with NaN; eccodes reports them as ``missingValue``."""
    out = np.asarray(values, dtype=np.float64)
    if bitmap_present:
        out = np.where(out == float(missing_value), np.nan, out)
    return out.astype(np.float32)


def decode_grib_message(message: bytes) -> np.ndarray:
    try:
        import eccodes
    except ImportError as exc:
        raise RuntimeError("eccodes is required for GRIB decoding. Install the project dependencies") from exc

    gid = eccodes.codes_new_from_message(message)
    try:
        nx = int(eccodes.codes_get(gid, "Ni"))
        ny = int(eccodes.codes_get(gid, "Nj"))
        bitmap_present = bool(eccodes.codes_get(gid, "bitmapPresent"))
        missing_value = float(eccodes.codes_get(gid, "missingValue"))
        values = mask_missing(eccodes.codes_get_values(gid), bitmap_present, missing_value)
    finally:
        eccodes.codes_release(gid)
    if values.size != nx * ny:
        raise FetchError(f"Decoded GRIB message has {values.size} values, expected {nx}x{ny}")
    return values.reshape(ny, nx)


class GribFetcher:
    """Downloads selected messages of a remote GRIB2 file via its ``.idx`` sidecar and HTTP ranges."""

    def __init__(
        self,
        session: requests.Session | None = None,
        retries: int = FETCH_RETRIES,
        backoff_seconds: float = FETCH_BASE_BACKOFF_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self._retries = max(1, int(retries))
        self._backoff_seconds = backoff_seconds

    def fetch_index(self, url: str) -> List[IndexEntry]:
        """Download and parse the ``.idx`` sidecar of the GRIB file at ``url``."""
        return parse_index(self._get(f"{url}.idx").decode("utf-8", errors="replace"))

    def fetch_indexed(self, url: str, variables: Sequence[VariableSpec]) -> List[Tuple[VariableSpec, np.ndarray]]:
        matched = match_index(self.fetch_index(url), variables)

        blobs: Dict[int, bytes] = {}
        for block in merge_ranges([r for _, r in matched]):
            payload = self._get(url, block)
            blobs[block.start] = payload

        out: List[Tuple[VariableSpec, np.ndarray]] = []
        for variable, byte_range in matched:
            message = self._slice(blobs, byte_range)
            grid = decode_grib_message(message)
            out.append((variable, shift180_and_flip_latitude(grid)))
        return out

    @staticmethod
    def _slice(blobs: Dict[int, bytes], byte_range: ByteRange) -> bytes:
        base = max(start for start in blobs if start <= byte_range.start)
        blob = blobs[base]
        lo = byte_range.start - base
        hi = None if byte_range.end is None else byte_range.end - base + 1
        return blob[lo:hi]

    def _get(self, url: str, byte_range: ByteRange | None = None) -> bytes:
        headers = {"Range": byte_range.header()} if byte_range is not None else {}
        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                response = self._session.get(url, headers=headers, timeout=FETCH_TIMEOUT_SECONDS)
                response.raise_for_status()
                content = response.content
                if byte_range is not None and response.status_code == 200:
                    # server ignored the Range header and sent the whole file
                    end = None if byte_range.end is None else byte_range.end + 1
                    content = content[byte_range.start:end]
                return content
            except requests.RequestException as exc:
                last_exc = exc
                if attempt >= self._retries:
                    break
                LOGGER.warning("GRIB fetch attempt %d/%d failed url=%s: %s", attempt, self._retries, url, exc)
                time.sleep(self._backoff_seconds * (2 ** (attempt - 1)))

        raise FetchError(f"GRIB fetch failed url={url} after {self._retries} attempts: {last_exc}") from last_exc


class GfsDownloader:
    """Writes one snapshot file per (variable, forecast hour) of a run."""

    def __init__(
        self,
        domain: DomainMeta,
        fetcher: GribFetcher | None = None,
        snapshots: SnapshotDirectory | None = None,
        workers: int = FETCH_WORKERS,
    ) -> None:
        self.domain = domain
        self.fetcher = fetcher or GribFetcher()
        self.snapshots = snapshots or SnapshotDirectory(domain.download_directory)
        self.workers = max(1, int(workers))

    def download(
        self, run: ForecastRun, variables: Sequence[VariableSpec], skip_existing: bool = False
    ) -> Dict[int, FetchError]:
        """Fetch every forecast hour; returns failed hours, which later surface as missing snapshots."""
        failures: Dict[int, FetchError] = {}
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="grib-fetch") as executor:
            futures = {
                hour: executor.submit(self._download_hour, run, hour, variables, skip_existing)
                for hour in self.domain.forecast_hours
            }
            for hour, future in futures.items():
                try:
                    future.result()
                except FetchError as exc:
                    LOGGER.error("Download failed forecast_hour=%d: %s", hour, exc)
                    failures[hour] = exc
        return failures

    def _download_hour(
        self, run: ForecastRun, forecast_hour: int, variables: Sequence[VariableSpec], skip_existing: bool
    ) -> int:
        pending = [
            v
            for v in variables
            if not (forecast_hour == 0 and v.skip_hour0)
            and not (skip_existing and self.snapshots.exists(v.name, forecast_hour))
        ]
        if not pending:
            return 0
        LOGGER.info("Downloading forecast_hour=%d variables=%d", forecast_hour, len(pending))
        for variable, data in self.fetcher.fetch_indexed(gfs_url(run, forecast_hour), pending):
            self.snapshots.write(variable.name, forecast_hour, data)
        return len(pending)
