# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Planning the pixel rectangle of a cutout.

Given an exposure's mapping, a sky position, and a requested cutout half-size,
we compute the whole-pixel rectangle to extract from the plate image. Angular
sizes are converted to pixels using the local scale of the mapping at the
requested position, measured by mapping four nearby points, since the
projections used for DASCH plates are not linear over the whole image.

Cutouts are square on the sky: the pixel rectangle is made large enough to
contain a sky square of the requested half-size, whatever the local rotation
of the mapping.
"""

from dataclasses import dataclass
import logging
import math
from typing import Optional, Tuple

from astropy.coordinates import Angle
from astropy import units as u

from .basics import (
    OutOfDomain,
    PixelCoord,
    PixelRegion,
    PointNotOnExposure,
    RegionEmpty,
    SkyPoint,
)
from .timeouts import Deadline, map_bounded
from .wcs import CoordinateMapping

__all__ = ["CutoutSize", "RegionPlan", "plan_region"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CutoutSize:
    """
    The requested half-size of a cutout, either as an angle or as a number of
    pixels. Use `CutoutSize.angular` or `CutoutSize.pixels` to construct one.
    """

    half_deg: Optional[float] = None
    half_pixels: Optional[float] = None

    def __post_init__(self):
        if (self.half_deg is None) == (self.half_pixels is None):
            raise ValueError("exactly one of an angular or pixel half-size must be given")

        value = self.half_deg if self.half_deg is not None else self.half_pixels
        if not (value > 0 and math.isfinite(value)):
            raise ValueError(f"cutout half-size must be positive and finite, got {value!r}")

    @classmethod
    def angular(cls, half_size: u.Quantity) -> "CutoutSize":
        return cls(half_deg=Angle(half_size).to_value(u.deg))

    @classmethod
    def pixels(cls, half_size: float) -> "CutoutSize":
        return cls(half_pixels=float(half_size))

    @property
    def is_angular(self) -> bool:
        return self.half_deg is not None


@dataclass(frozen=True)
class RegionPlan:
    region: PixelRegion
    "The rectangle to extract, within the image bounds."

    requested: Tuple[int, int, int, int]
    "The unclamped rectangle ``(x0, x1, y0, y1)``, which may extend past the image."

    center: PixelCoord
    "The pixel position of the requested center."

    clamped: bool
    "Whether clamping to the image bounds altered the rectangle."


# Position angles of the sampling offsets: north, east, south, west.
_OFFSET_PAS = (0.0, 90.0, 180.0, 270.0)


def _offset_pixel(
    mapping: CoordinateMapping, center: SkyPoint, pa_deg: float, sep_deg: float
) -> Optional[PixelCoord]:
    c = center.as_skycoord().directional_offset_by(pa_deg * u.deg, sep_deg * u.deg)

    try:
        return mapping.to_pixel(SkyPoint.from_skycoord(c))
    except (OutOfDomain, ValueError):
        return None


def _axis_derivative(
    c: PixelCoord, plus: Optional[PixelCoord], minus: Optional[PixelCoord]
) -> Tuple[float, float]:
    # Pixel displacement per unit offset along one sky axis; central difference
    # when possible, one-sided otherwise.
    if plus is not None and minus is not None:
        return (0.5 * (plus.x - minus.x), 0.5 * (plus.y - minus.y))
    if plus is not None:
        return (plus.x - c.x, plus.y - c.y)
    if minus is not None:
        return (c.x - minus.x, c.y - minus.y)
    raise PointNotOnExposure("cannot measure the pixel scale around the requested position")


def _pixel_half_widths(
    mapping: CoordinateMapping,
    center: SkyPoint,
    c: PixelCoord,
    half_deg: float,
    deadline: Optional[Deadline],
    max_workers: int,
) -> Tuple[float, float]:
    n, e, s, w = map_bounded(
        deadline,
        "pixel scale sampling",
        lambda pa: _offset_pixel(mapping, center, pa, half_deg),
        _OFFSET_PAS,
        max_workers=max_workers,
    )

    dn = _axis_derivative(c, n, s)
    de = _axis_derivative(c, e, w)

    # The half-extents of the image of a sky square with these edge vectors
    wx = abs(de[0]) + abs(dn[0])
    wy = abs(de[1]) + abs(dn[1])
    return wx, wy


def _span(c: float, half: float) -> Tuple[int, int]:
    n = max(1, int(round(2 * half)))
    lo = int(math.floor(c - 0.5 * n + 0.5))
    return lo, lo + n


def plan_region(
    mapping: CoordinateMapping,
    center: SkyPoint,
    size: CutoutSize,
    image_width: int,
    image_height: int,
    min_size: int = 1,
    deadline: Optional[Deadline] = None,
    max_workers: int = 1,
) -> RegionPlan:
    """
    Compute the pixel rectangle of a cutout.

    Parameters
    ==========
    mapping : `~daschscience.wcs.CoordinateMapping`
        The mapping of the exposure the cutout is drawn from.
    center : `~daschscience.basics.SkyPoint`
        The requested center of the cutout.
    size : `CutoutSize`
        The requested half-size.
    image_width, image_height : int
        The dimensions of the full image, in pixels.
    min_size : optional int
        The smallest acceptable extent of the delivered rectangle along
        either axis.
    deadline : optional `~daschscience.timeouts.Deadline`
        A bound on the time to spend.
    max_workers : optional int
        The number of scale-sampling transforms that may run concurrently.

    Returns
    =======
    A `RegionPlan`.

    Raises
    ======
    PointNotOnExposure
        If the center cannot be mapped to pixels.
    RegionEmpty
        If the rectangle, after clamping to the image, is smaller than
        *min_size* along either axis.
    """

    if image_width < 1 or image_height < 1:
        raise ValueError(f"illegal image dimensions {image_width}×{image_height}")

    try:
        c = mapping.to_pixel(center)
    except OutOfDomain as e:
        raise PointNotOnExposure(
            f"position ({center.ra_deg}, {center.dec_deg}) is outside the exposure's mapping"
        ) from e

    if size.is_angular:
        wx, wy = _pixel_half_widths(
            mapping, center, c, size.half_deg, deadline, max_workers
        )
    else:
        wx = wy = size.half_pixels

    rx0, rx1 = _span(c.x, wx)
    ry0, ry1 = _span(c.y, wy)

    x0 = max(rx0, 0)
    x1 = min(rx1, image_width)
    y0 = max(ry0, 0)
    y1 = min(ry1, image_height)

    if x1 - x0 < min_size or y1 - y0 < min_size:
        raise RegionEmpty(
            f"cutout [{rx0}, {rx1}) × [{ry0}, {ry1}) does not overlap the "
            f"{image_width}×{image_height} image enough to be usable"
        )

    clamped = (x0, x1, y0, y1) != (rx0, rx1, ry0, ry1)
    region = PixelRegion(x0, x1, y0, y1)

    if clamped:
        logger.info("cutout clamped from [%d, %d) × [%d, %d) to %s", rx0, rx1, ry0, ry1, region)

    return RegionPlan(region, (rx0, rx1, ry0, ry1), c, clamped)
