#!/usr/bin/env python3
from __future__ import annotations

import json
import sys

from gfs_domain import default_run_hour, forecast_run, parse_domain
from gfs_errors import FetchError
from gfs_variables import all_variables
from grib_fetch import GribFetcher, gfs_url


def main() -> None:
    domain = parse_domain(sys.argv[1] if len(sys.argv) > 1 else "gfs025")
    run = forecast_run(domain, default_run_hour())
    fetcher = GribFetcher(retries=1)

    rows = []
    for lead in (0, 1, domain.forecast_hours[-1]):
        url = gfs_url(run, lead)
        try:
            entries = fetcher.fetch_index(url)
        except FetchError as exc:  # pragma: no cover - diagnostics script
            rows.append({"lead": lead, "status": "no-index", "error": str(exc)})
            continue
        for variable in all_variables():
            if lead == 0 and variable.skip_hour0:
                continue
            hits = [e.line for e in entries if variable.grib_index_key in e.line]
            rows.append(
                {
                    "lead": lead,
                    "variable_id": variable.name,
                    "key": variable.grib_index_key,
                    "status": "ok" if hits else "missing",
                    "matches": hits[:3],
                }
            )

    missing = [r for r in rows if r.get("status") != "ok"]
    print(f"run={run.reference_time.isoformat()} total={len(rows)} missing={len(missing)}")
    for row in missing:
        print(json.dumps(row, ensure_ascii=False))


if __name__ == "__main__":
    main()
