from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from gfs_errors import ConfigurationError, UnknownVariable


class InterpolationType(str, Enum):
    LINEAR = "linear"
    NEAREST = "nearest"
    HERMITE = "hermite"
    HERMITE_BACKWARDS_AVERAGED = "hermite_backwards_averaged"
    SOLAR_BACKWARDS_AVERAGED = "solar_backwards_averaged"


@dataclass(frozen=True)
class VariableSpec:
    name: str
    scalefactor: float
    unit: str
    interpolation: InterpolationType
    grib_index_key: str
    averaged: bool = False
    accumulated: bool = False
    skip_hour0: bool = False
    multiply_add: Tuple[float, float] | None = None
    requires_offset_correction_for_mixing: bool = False

    @property
    def skip_first(self) -> int:
        return 1 if self.skip_hour0 else 0


def _spec(name: str, scalefactor: float, unit: str, interpolation: InterpolationType, key: str, **kwargs) -> VariableSpec:
    return VariableSpec(
        name=name,
        scalefactor=scalefactor,
        unit=unit,
        interpolation=interpolation,
        grib_index_key=key,
        **kwargs,
    )


_H = InterpolationType.HERMITE
_L = InterpolationType.LINEAR
_KELVIN_TO_CELSIUS = (1.0, -273.15)
_PA_TO_HPA = (1.0 / 100.0, 0.0)

_VARIABLES: Tuple[VariableSpec, ...] = (
    _spec("temperature_2m", 20, "°C", _H, ":TMP:2 m above ground:", multiply_add=_KELVIN_TO_CELSIUS),
    _spec("cloudcover", 1, "%", _H, ":TCDC:entire atmosphere:"),
    _spec("cloudcover_low", 1, "%", _H, ":LCDC:low cloud layer:"),
    _spec("cloudcover_mid", 1, "%", _H, ":MCDC:middle cloud layer:"),
    _spec("cloudcover_high", 1, "%", _H, ":HCDC:high cloud layer:"),
    _spec("pressure_msl", 10, "hPa", _H, ":PRMSL:mean sea level:", multiply_add=_PA_TO_HPA),
    _spec("relativehumidity_2m", 1, "%", _H, ":RH:2 m above ground:"),
    # accumulated since forecast start
    _spec("precipitation", 10, "mm", _L, ":APCP:surface:0-", accumulated=True, skip_hour0=True),
    _spec("v_10m", 10, "m/s", _H, ":VGRD:10 m above ground:"),
    _spec("u_10m", 10, "m/s", _H, ":UGRD:10 m above ground:"),
    _spec("v_80m", 10, "m/s", _H, ":VGRD:80 m above ground:"),
    _spec("u_80m", 10, "m/s", _H, ":UGRD:80 m above ground:"),
    _spec("soil_temperature_0_to_10cm", 20, "°C", _H, ":TSOIL:0-0.1 m below ground:", multiply_add=_KELVIN_TO_CELSIUS),
    _spec("soil_temperature_10_to_40cm", 20, "°C", _H, ":TSOIL:0.1-0.4 m below ground:", multiply_add=_KELVIN_TO_CELSIUS),
    _spec("soil_temperature_40_to_100cm", 20, "°C", _H, ":TSOIL:0.4-1 m below ground:", multiply_add=_KELVIN_TO_CELSIUS),
    _spec("soil_temperature_100_to_200cm", 20, "°C", _H, ":TSOIL:1-2 m below ground:", multiply_add=_KELVIN_TO_CELSIUS),
    _spec("soil_moisture_0_to_10cm", 1000, "m³/m³", _H, ":SOILW:0-0.1 m below ground:", requires_offset_correction_for_mixing=True),
    _spec("soil_moisture_10_to_40cm", 1000, "m³/m³", _H, ":SOILW:0.1-0.4 m below ground:", requires_offset_correction_for_mixing=True),
    _spec("soil_moisture_40_to_100cm", 1000, "m³/m³", _H, ":SOILW:0.4-1 m below ground:", requires_offset_correction_for_mixing=True),
    _spec("soil_moisture_100_to_200cm", 1000, "m³/m³", _H, ":SOILW:1-2 m below ground:", requires_offset_correction_for_mixing=True),
    # 1 cm resolution
    _spec("snow_depth", 100, "m", _L, ":SNOD:surface:", requires_offset_correction_for_mixing=True),
    # averaged since forecast start; 0.144 keeps evapotranspiration at 0.01 mm resolution
    _spec(
        "sensible_heatflux",
        0.144,
        "W/m²",
        InterpolationType.HERMITE_BACKWARDS_AVERAGED,
        ":SHTFL:surface:",
        averaged=True,
        skip_hour0=True,
    ),
    _spec(
        "latent_heatflux",
        0.144,
        "W/m²",
        InterpolationType.HERMITE_BACKWARDS_AVERAGED,
        ":LHTFL:surface:",
        averaged=True,
        skip_hour0=True,
    ),
    _spec("showers", 10, "mm", _L, ":ACPCP:surface:0-", accumulated=True, skip_hour0=True),
    _spec("windgusts_10m", 10, "m/s", _L, ":GUST:surface:"),
    # 10 m resolution
    _spec("freezinglevel_height", 0.1, "m", _H, ":HGT:0C isotherm:"),
    _spec(
        "shortwave_radiation",
        1,
        "W/m²",
        InterpolationType.SOLAR_BACKWARDS_AVERAGED,
        ":DSWRF:surface:",
        averaged=True,
        skip_hour0=True,
    ),
)

def validate_catalog(specs: Sequence[VariableSpec]) -> Dict[str, VariableSpec]:
    catalog: Dict[str, VariableSpec] = {}
    for spec in specs:
        if spec.name in catalog:
            raise ConfigurationError(f"Duplicate variable '{spec.name}' in catalog")
        if not spec.scalefactor > 0:
            raise ConfigurationError(f"Variable '{spec.name}' needs a positive scalefactor, got {spec.scalefactor}")
        if spec.averaged and spec.accumulated:
            raise ConfigurationError(f"Variable '{spec.name}' cannot be both averaged and accumulated")
        catalog[spec.name] = spec
    return catalog


CATALOG: Dict[str, VariableSpec] = validate_catalog(_VARIABLES)


def lookup(name: str) -> VariableSpec:
    spec = CATALOG.get(name)
    if spec is None:
        raise UnknownVariable(f"Invalid variable '{name}'")
    return spec


def parse(name: str) -> VariableSpec:
    return lookup(str(name).strip())


def parse_list(value: str | None) -> List[VariableSpec]:
    """Parse a comma separated variable list; None selects every variable."""
    if value is None:
        return list(_VARIABLES)
    names = [v.strip() for v in str(value).split(",") if v.strip()]
    if not names:
        raise UnknownVariable("No variables requested")
    out: List[VariableSpec] = []
    for name in names:
        spec = parse(name)
        if spec not in out:
            out.append(spec)
    return out


def all_variables() -> List[VariableSpec]:
    return list(_VARIABLES)
