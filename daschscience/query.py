# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Typed request records for the DASCH science services.

These mirror the JSON payloads that DASCH API clients send. Decode a payload
with ``Request.schema().load(payload)``, which validates the field types; then
call `validate` to check the values.
"""

from dataclasses import dataclass
from typing import Optional

from dataclasses_json import dataclass_json

from .basics import SkyPoint
from .refcat import MAX_SEARCH_RADIUS_DEG, SUPPORTED_REFCATS

__all__ = ["CutoutRequest", "QueryCatRequest", "QueryExpsRequest"]


@dataclass_json
@dataclass
class CutoutRequest:
    plate_id: str
    center_ra_deg: float
    center_dec_deg: float
    solution_number: Optional[int] = None
    halfsize_arcsec: Optional[float] = None
    halfsize_pixels: Optional[float] = None

    def validate(self):
        self.center()

        if self.solution_number is not None and self.solution_number < 0:
            raise ValueError(f"illegal solution_number {self.solution_number!r}")

        if self.halfsize_arcsec is not None and self.halfsize_pixels is not None:
            raise ValueError("specify at most one of halfsize_arcsec and halfsize_pixels")

    def center(self) -> SkyPoint:
        return SkyPoint.new(self.center_ra_deg, self.center_dec_deg)


@dataclass_json
@dataclass
class QueryCatRequest:
    ra_deg: float
    dec_deg: float
    radius_arcsec: float
    refcat: str = "apass"

    def validate(self):
        self.center()

        if not 0 <= self.radius_arcsec <= 3600 * MAX_SEARCH_RADIUS_DEG:
            raise ValueError(f"illegal radius_arcsec {self.radius_arcsec!r}")

        if self.refcat not in SUPPORTED_REFCATS:
            raise ValueError(
                f"unsupported refcat {self.refcat!r}; expect one of {sorted(SUPPORTED_REFCATS)}"
            )

    def center(self) -> SkyPoint:
        return SkyPoint.new(self.ra_deg, self.dec_deg)


@dataclass_json
@dataclass
class QueryExpsRequest:
    """
    A request for the exposures covering a position: on one plate if
    *plate_id* is given, otherwise across the whole archive.
    """

    ra_deg: float
    dec_deg: float
    plate_id: Optional[str] = None

    def validate(self):
        self.center()

    def center(self) -> SkyPoint:
        return SkyPoint.new(self.ra_deg, self.dec_deg)
