from __future__ import annotations

from typing import Dict, List


class GfsError(RuntimeError):
    """Base class for GFS download and conversion failures."""


class ConfigurationError(GfsError):
    """Raised for an unknown domain, variable or run before any I/O happens."""


class UnknownDomain(ConfigurationError):
    pass


class UnknownVariable(ConfigurationError):
    pass


class InvalidRun(ConfigurationError):
    pass


class FetchError(GfsError):
    """Raised when a GRIB file or its index cannot be retrieved."""


class MissingSnapshot(GfsError):
    """Raised when a required forecast-hour snapshot is absent at assembly time."""

    def __init__(self, variable: str, forecast_hour: int, reason: str = "not found") -> None:
        super().__init__(f"Missing snapshot variable={variable} forecast_hour={forecast_hour}: {reason}")
        self.variable = variable
        self.forecast_hour = forecast_hour


class StorageError(GfsError):
    """Raised when the time-series store cannot be read or updated."""


class ConvertError(GfsError):
    """Aggregate failure raised after every requested variable was attempted."""

    def __init__(self, failures: Dict[str, BaseException], committed: List[str]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"Conversion failed for {len(failures)} variable(s): {names}")
        self.failures = dict(failures)
        self.committed = list(committed)
