# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Information about the plate series encountered in DASCH.

The plate scales here are used to synthesize approximate astrometry for
exposures that have no fitted WCS solution. They come from the DASCH
``scanner.series`` table, using the fitted plate scale where one is available
and the nominal plate scale otherwise.
"""

from dataclasses import dataclass
from typing import Dict, Optional

__all__ = [
    "PIXELS_PER_MM",
    "SERIES",
    "SeriesInfo",
    "nominal_plate_size",
    "pixel_scale_deg",
]


PIXELS_PER_MM = 90.9090
"The sampling of the DASCH scanner, in pixels per millimeter."


@dataclass
class SeriesInfo:
    """
    General information about a plate series.
    """

    series: str
    "The series identifier"

    plate_scale: float
    "The characteristic plate scale of plates in this series, in arcsec/mm."

    nominal: bool
    "Whether the plate scale is a nominal value rather than a fitted one."


SERIES: Dict[str, SeriesInfo] = {}


def _add(series: str, plate_scale: float, nominal: bool = False):
    SERIES[series] = SeriesInfo(series, plate_scale, nominal)


_add("a", 59.57)
_add("ab", 590.0, nominal=True)
_add("ac", 606.4)
_add("aco", 611.3)
_add("adh", 68.0, nominal=True)
_add("ai", 1360.0)
_add("ak", 614.5)
_add("al", 1200.0, nominal=True)
_add("am", 610.8)
_add("an", 574.0, nominal=True)
_add("ax", 695.7)
_add("ay", 694.2)
_add("b", 179.4)
_add("bi", 1446.0)
_add("bm", 384.0)
_add("bo", 800.0, nominal=True)
_add("br", 204.0)
_add("c", 52.56)
_add("ca", 596.0)
_add("ctio", 18.0)
_add("darnor", 890.0, nominal=True)
_add("darsou", 890.0, nominal=True)
_add("dnb", 577.3)
_add("dnr", 579.7)
_add("dny", 576.1)
_add("dsb", 574.5)
_add("dsr", 579.7)
_add("dsy", 581.8)
_add("ee", 330.0)
_add("er", 390.0, nominal=True)
_add("fa", 1298.0)
_add("h", 59.6)
_add("hale", 11.06, nominal=True)
_add("i", 163.3)
_add("ir", 164.0)
_add("j", 98.0, nominal=True)
_add("jdar", 560.0, nominal=True)
_add("ka", 1200.0, nominal=True)
_add("kb", 1200.0, nominal=True)
_add("kc", 650.0, nominal=True)
_add("kd", 650.0, nominal=True)
_add("ke", 1160.0, nominal=True)
_add("kf", 1160.0, nominal=True)
_add("kg", 1160.0, nominal=True)
_add("kge", 1160.0, nominal=True)
_add("kh", 1160.0, nominal=True)
_add("lwla", 36.687)
_add("ma", 93.7)
_add("mb", 390.0)
_add("mc", 97.9)
_add("md", 193.0, nominal=True)
_add("me", 600.0, nominal=True)
_add("meteor", 1200.0, nominal=True)
_add("mf", 167.3)
_add("na", 100.0)
_add("pas", 95.64)
_add("poss", 67.19, nominal=True)
_add("pz", 1553.0)
_add("r", 390.0, nominal=True)
_add("rb", 395.5)
_add("rh", 391.3)
_add("rl", 290.0, nominal=True)
_add("ro", 390.0, nominal=True)
_add("s", 26.3, nominal=True)
_add("sb", 26.0, nominal=True)
_add("sh", 26.0, nominal=True)
_add("x", 42.3)
_add("yb", 55.0)


def pixel_scale_deg(series: str) -> Optional[float]:
    """
    Get the nominal scanner pixel scale for a series, in degrees per pixel, or
    None if the series is not known.
    """
    info = SERIES.get(series)
    if info is None:
        return None
    return info.plate_scale / PIXELS_PER_MM / 3600.0


def nominal_plate_size(series: str) -> int:
    """
    Guess the size of a plate that has never been scanned, in pixels.

    The legacy pipeline assumes 17-inch plates for the A series and 10-inch
    plates for everything else. We assume the long dimension and squareness,
    since we don't know the plate's orientation on the sky.
    """
    if series == "a":
        return 39255
    return 23091
