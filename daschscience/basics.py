# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Basic types shared by the DASCH science services.

Pixel coordinates
=================

All pixel coordinates handled by this package are continuous, 0-based, and use
the *edge* convention: the pixel with integer index ``(i, j)`` covers the
half-open square ``[i, i+1) × [j, j+1)``. Astropy's 0-based pixel coordinates
refer to pixel *centers*, so an Astropy coordinate ``p`` corresponds to our
coordinate ``p + 0.5``. FITS 1-based coordinates (as in ``CRPIX``) correspond
to our coordinate ``p - 0.5``.

Errors
======

Every failure that crosses a component boundary is an instance of
`DaschError`, which carries a machine-readable `~DaschError.kind` and a
`~DaschError.retryable` flag.
"""

from dataclasses import dataclass
import math
import operator
from typing import Tuple

from astropy.coordinates import SkyCoord, angular_separation
from astropy import units as u


__all__ = [
    "AmbiguousExposure",
    "CorruptSource",
    "DaschError",
    "NoImaging",
    "NoSuchPlate",
    "OutOfDomain",
    "PixelCoord",
    "PixelRegion",
    "PointNotOnExposure",
    "RegionEmpty",
    "SkyPoint",
    "StorageUnavailable",
    "Timeout",
]


# Errors


class DaschError(Exception):
    """
    The base class of errors raised by the DASCH science services.
    """

    kind: str = "error"
    "A machine-readable identifier for the error class."

    retryable: bool = False
    "Whether repeating the same request might succeed."

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "retryable": self.retryable,
            "message": str(self),
        }


class OutOfDomain(DaschError):
    """
    A coordinate transform had no valid answer for its input.

    This is raised by coordinate mappings and is always handled by the caller;
    it is not expected to escape from a top-level service call.
    """

    kind = "out_of_domain"


class PointNotOnExposure(DaschError):
    kind = "point_not_on_exposure"


class RegionEmpty(DaschError):
    kind = "region_empty"


class StorageUnavailable(DaschError):
    kind = "storage_unavailable"
    retryable = True


class Timeout(DaschError):
    """
    An operation did not complete within its time budget.
    """

    kind = "timeout"
    retryable = True

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds:.1f} s")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["operation"] = self.operation
        d["timeout_seconds"] = self.timeout_seconds
        return d


class CorruptSource(DaschError):
    kind = "corrupt_source"


class NoSuchPlate(DaschError):
    kind = "no_such_plate"


class NoImaging(DaschError):
    """
    A plate exists but has no scanned mosaic or no astrometric solution, so no
    pixel data can be produced for it.
    """

    kind = "no_imaging"


class AmbiguousExposure(UserWarning):
    """
    Issued when a sky position falls on more than one exposure of a plate. The
    first exposure in sequence order is used; this is advisory only.
    """


# Coordinates


def _check_sky(ra_deg: float, dec_deg: float):
    # Negated comparisons so that NaNs are rejected
    if not (ra_deg >= 0 and ra_deg < 360):
        raise ValueError(f"illegal RA value {ra_deg!r}: must be in [0, 360)")

    if not (dec_deg >= -90 and dec_deg <= 90):
        raise ValueError(f"illegal declination value {dec_deg!r}: must be in [-90, 90]")


@dataclass(frozen=True)
class SkyPoint:
    """
    An ICRS position on the celestial sphere, in degrees.
    """

    ra_deg: float
    dec_deg: float

    def __post_init__(self):
        _check_sky(self.ra_deg, self.dec_deg)

    @classmethod
    def new(cls, ra_deg: float, dec_deg: float) -> "SkyPoint":
        """
        Construct a point from user input, accepting ``ra_deg == 360`` as an
        alias for zero.
        """
        ra_deg = float(ra_deg)
        dec_deg = float(dec_deg)

        if ra_deg == 360.0:
            ra_deg = 0.0

        return cls(ra_deg, dec_deg)

    @classmethod
    def from_skycoord(cls, coord: SkyCoord) -> "SkyPoint":
        coord = coord.icrs
        return cls.new(coord.ra.wrap_at(360 * u.deg).deg % 360.0, coord.dec.deg)

    def as_skycoord(self) -> SkyCoord:
        return SkyCoord(self.ra_deg * u.deg, self.dec_deg * u.deg, frame="icrs")

    def separation_deg(self, other: "SkyPoint") -> float:
        """
        Get the great-circle distance between two points, in degrees.
        """
        sep = angular_separation(
            self.ra_deg * u.deg,
            self.dec_deg * u.deg,
            other.ra_deg * u.deg,
            other.dec_deg * u.deg,
        )
        return sep.to_value(u.deg)


@dataclass(frozen=True)
class PixelCoord:
    """
    A continuous pixel position using the edge convention.
    """

    x: float
    y: float

    @classmethod
    def from_astropy(cls, x: float, y: float) -> "PixelCoord":
        return cls(float(x) + 0.5, float(y) + 0.5)

    def to_astropy(self) -> Tuple[float, float]:
        return (self.x - 0.5, self.y - 0.5)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)


@dataclass(frozen=True)
class PixelRegion:
    """
    A rectangle of whole pixels, ``[x0, x1) × [y0, y1)``.

    Instances are never empty: construction fails unless ``x0 < x1`` and ``y0
    < y1``.
    """

    x0: int
    x1: int
    y0: int
    y1: int

    def __post_init__(self):
        # Accept Numpy integers but never floats
        for name in ("x0", "x1", "y0", "y1"):
            object.__setattr__(self, name, operator.index(getattr(self, name)))

        if self.x0 >= self.x1 or self.y0 >= self.y1:
            raise ValueError(
                f"degenerate pixel region [{self.x0}, {self.x1}) × [{self.y0}, {self.y1})"
            )

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    @property
    def shape(self) -> Tuple[int, int]:
        "The Numpy shape of an array covering this region: ``(height, width)``."
        return (self.height, self.width)

    def contains(self, pix: PixelCoord) -> bool:
        return self.x0 <= pix.x < self.x1 and self.y0 <= pix.y < self.y1

    def __str__(self) -> str:
        return f"[{self.x0}, {self.x1}) × [{self.y0}, {self.y1})"
