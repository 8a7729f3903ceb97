# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Mappings between sky and pixel coordinates.

The projection mathematics all come from `astropy.wcs` (and hence wcslib).
This module adapts those transforms to the conventions used throughout
this package:

- pixel coordinates use the edge convention described in
  `daschscience.basics`;
- a transform that has no valid answer raises `~daschscience.basics.OutOfDomain`
  rather than returning NaNs or clamping;
- a mapping can be *translated*, yielding a mapping for a sub-image whose
  pixel ``(0, 0)`` corresponds to some pixel ``(x0, y0)`` of the original.

Mappings are immutable and carry no plate-specific knowledge.
"""

import base64
import binascii
import gzip
import math
from typing import List, Optional, Union
import warnings

from astropy.io import fits
from astropy.wcs import WCS, Sip
import numpy as np

from .basics import CorruptSource, OutOfDomain, PixelCoord, SkyPoint

__all__ = [
    "CoordinateMapping",
    "LinearMapping",
    "WcsMapping",
    "approximate_mapping",
    "load_solution_mappings",
]


class CoordinateMapping:
    """
    The interface of a bidirectional sky/pixel mapping.
    """

    def to_pixel(self, point: SkyPoint) -> PixelCoord:
        """
        Map a sky position to a pixel position.

        Raises
        ======
        OutOfDomain
            If the position cannot be mapped, for instance because it lies on
            the far side of the sky from the tangent point. The result is never
            clamped.
        """
        raise NotImplementedError()

    def to_sky(self, pix: PixelCoord) -> SkyPoint:
        "Map a pixel position to a sky position, raising `OutOfDomain` on failure."
        raise NotImplementedError()

    def translated(self, x0: float, y0: float) -> "CoordinateMapping":
        """
        Get a new mapping in which pixel ``(0, 0)`` corresponds to pixel ``(x0,
        y0)`` of this mapping. The projection, rotation, scale, and distortion
        are unchanged.
        """
        raise NotImplementedError()

    def to_header(self) -> fits.Header:
        "Serialize this mapping as FITS WCS header keywords."
        raise NotImplementedError()


def _finite_sky(ra: float, dec: float) -> SkyPoint:
    if not (math.isfinite(ra) and math.isfinite(dec)):
        raise OutOfDomain("pixel position has no sky equivalent")

    if dec > 90.0 or dec < -90.0:
        # Rounding noise at the poles is tolerable; anything else is not
        if abs(dec) - 90.0 > 1e-9:
            raise OutOfDomain(f"pixel position maps to invalid declination {dec}")
        dec = math.copysign(90.0, dec)

    ra = ra % 360.0
    if ra >= 360.0:
        ra = 0.0

    return SkyPoint(ra, dec)


class WcsMapping(CoordinateMapping):
    """
    A mapping implemented by an `astropy.wcs.WCS` object.
    """

    wcs: WCS

    def __init__(self, wcs: WCS):
        if wcs.pixel_n_dim != 2 or not wcs.has_celestial:
            raise ValueError("WcsMapping requires a two-dimensional celestial WCS")

        self.wcs = wcs

    def __repr__(self) -> str:
        return f"<WcsMapping {'/'.join(self.wcs.wcs.ctype)} crpix={list(self.wcs.wcs.crpix)}>"

    def to_pixel(self, point: SkyPoint) -> PixelCoord:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                x, y = self.wcs.all_world2pix(
                    np.array([point.ra_deg]), np.array([point.dec_deg]), 0, quiet=True
                )
        except Exception as e:
            raise OutOfDomain(f"cannot map {point} to pixels: {e}") from e

        pix = PixelCoord.from_astropy(x[0], y[0])
        if not pix.is_finite():
            raise OutOfDomain(f"cannot map {point} to pixels")

        return pix

    def to_sky(self, pix: PixelCoord) -> SkyPoint:
        ax, ay = pix.to_astropy()

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                ra, dec = self.wcs.all_pix2world(np.array([ax]), np.array([ay]), 0)
        except Exception as e:
            raise OutOfDomain(f"cannot map {pix} to the sky: {e}") from e

        return _finite_sky(float(ra[0]), float(dec[0]))

    def translated(self, x0: float, y0: float) -> "WcsMapping":
        w = self.wcs.deepcopy()
        w.wcs.crpix = w.wcs.crpix - np.array([x0, y0], dtype=float)

        if w.sip is not None:
            w.sip = Sip(w.sip.a, w.sip.b, w.sip.ap, w.sip.bp, w.wcs.crpix)

        w.wcs.set()
        return WcsMapping(w)

    def to_header(self) -> fits.Header:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            return self.wcs.to_header(relax=True)


class LinearMapping(CoordinateMapping):
    """
    A mapping in which RA and declination are exactly linear in the pixel
    coordinates, with no projection at all.

    This is not physically meaningful over large areas, but it makes a
    convenient stand-in for real astrometry in synthetic data and tests.

    Parameters
    ==========
    ra0_deg, dec0_deg
        The sky position of the reference pixel.
    x0, y0
        The reference pixel, in edge-convention coordinates.
    dra_dx, ddec_dy
        The scale along each axis, in degrees per pixel. A negative *dra_dx*
        gives the usual east-left orientation.
    """

    def __init__(
        self,
        ra0_deg: float,
        dec0_deg: float,
        x0: float,
        y0: float,
        dra_dx: float,
        ddec_dy: float,
    ):
        if dra_dx == 0 or ddec_dy == 0:
            raise ValueError("LinearMapping scales must be nonzero")

        self.ra0_deg = float(ra0_deg)
        self.dec0_deg = float(dec0_deg)
        self.x0 = float(x0)
        self.y0 = float(y0)
        self.dra_dx = float(dra_dx)
        self.ddec_dy = float(ddec_dy)

    def __repr__(self) -> str:
        return (
            f"<LinearMapping ({self.ra0_deg}, {self.dec0_deg}) @ ({self.x0}, {self.y0}) "
            f"scale ({self.dra_dx}, {self.ddec_dy})>"
        )

    def to_pixel(self, point: SkyPoint) -> PixelCoord:
        dra = point.ra_deg - self.ra0_deg

        # Take the short way around
        if dra < -180.0:
            dra += 360.0
        elif dra >= 180.0:
            dra -= 360.0

        return PixelCoord(
            self.x0 + dra / self.dra_dx,
            self.y0 + (point.dec_deg - self.dec0_deg) / self.ddec_dy,
        )

    def to_sky(self, pix: PixelCoord) -> SkyPoint:
        if not pix.is_finite():
            raise OutOfDomain(f"cannot map {pix} to the sky")

        return _finite_sky(
            self.ra0_deg + (pix.x - self.x0) * self.dra_dx,
            self.dec0_deg + (pix.y - self.y0) * self.ddec_dy,
        )

    def translated(self, x0: float, y0: float) -> "LinearMapping":
        return LinearMapping(
            self.ra0_deg,
            self.dec0_deg,
            self.x0 - x0,
            self.y0 - y0,
            self.dra_dx,
            self.ddec_dy,
        )

    def to_header(self) -> fits.Header:
        hdr = fits.Header()
        hdr["WCSAXES"] = 2
        hdr["CTYPE1"] = "RA"
        hdr["CTYPE2"] = "DEC"
        hdr["CUNIT1"] = "deg"
        hdr["CUNIT2"] = "deg"
        hdr["CRVAL1"] = self.ra0_deg
        hdr["CRVAL2"] = self.dec0_deg
        hdr["CRPIX1"] = self.x0 + 0.5
        hdr["CRPIX2"] = self.y0 + 0.5
        hdr["CDELT1"] = self.dra_dx
        hdr["CDELT2"] = self.ddec_dy
        return hdr


def _decode_header(b01_header_gz: Union[str, bytes]) -> fits.Header:
    try:
        hdrtext = gzip.decompress(base64.b64decode(b01_header_gz))
    except (binascii.Error, OSError, EOFError) as e:
        raise CorruptSource(f"cannot decode compressed astrometry header: {e}") from e

    try:
        return fits.Header.fromstring(hdrtext, sep="\n")
    except Exception as e:
        raise CorruptSource(f"cannot parse astrometry header: {e}") from e


def _solution_tags(base_hdr: fits.Header) -> List[str]:
    # If there's only one solution, it will use the " " WCS tag. If there are
    # multiple solutions, the first one will use the "A" tag, the second will
    # use "B", and so on ... but then the final solution will *also* appear
    # under the " " tag.

    if "CTYPE1A" not in base_hdr:
        return [""]

    nsol = 1

    while f"CTYPE1{chr(ord('A') + nsol)}" in base_hdr:
        nsol += 1

    if nsol == 1:
        raise CorruptSource("unexpected astrometry header: CTYPE1A but no CTYPE1B")

    return [chr(ord("A") + i) for i in range(nsol)]


def _solution_header(base_hdr: fits.Header, itag: str, binning: int) -> fits.Header:
    hdr = fits.Header()
    hdr["WCSAXES"] = 2
    hdr["RADESYS"] = "ICRS"

    # The pipeline labels its solutions as TAN, but they carry TPV-style
    # distortion terms that wcslib only honors with this projection type.
    hdr["CTYPE1"] = "RA---TPV"
    hdr["CTYPE2"] = "DEC--TPV"
    hdr["CUNIT1"] = "deg"
    hdr["CUNIT2"] = "deg"
    hdr["CRVAL1"] = base_hdr["CRVAL1" + itag]
    hdr["CRVAL2"] = base_hdr["CRVAL2" + itag]

    # Distortion terms are independent of binning; only CRPIXn and CDn_m scale.
    hdr["CRPIX1"] = (base_hdr["CRPIX1" + itag] - 0.5) / binning + 0.5
    hdr["CRPIX2"] = (base_hdr["CRPIX2" + itag] - 0.5) / binning + 0.5
    hdr["CD1_1"] = base_hdr["CD1_1" + itag] * binning
    hdr["CD1_2"] = base_hdr["CD1_2" + itag] * binning
    hdr["CD2_1"] = base_hdr["CD2_1" + itag] * binning
    hdr["CD2_2"] = base_hdr["CD2_2" + itag] * binning

    for key, value in base_hdr.items():
        if not key.startswith("PV"):
            continue

        if itag == "":
            if key[-1] in "0123456789":
                hdr[key] = value
        elif key.endswith(itag):
            hdr[key[:-1]] = value

    return hdr


def load_solution_mappings(
    b01_header_gz: Union[str, bytes],
    n_solutions: Optional[int] = None,
    binning: int = 1,
) -> List[WcsMapping]:
    """
    Load the astrometric solutions of a plate from its archived header.

    Parameters
    ==========
    b01_header_gz
        The Base64 encoding of the gzipped ASCII FITS header produced by the
        DASCH astrometric pipeline for the full-resolution mosaic.
    n_solutions : optional int
        The number of solutions that the plate record claims. If given, it
        must agree with the header.
    binning : optional int
        The binning factor of the mosaic that the mappings should describe.

    Returns
    =======
    A list of mappings, one per solution, in solution-number order.

    Raises
    ======
    CorruptSource
        If the header cannot be decoded or does not describe the expected
        number of solutions.
    """

    base_hdr = _decode_header(b01_header_gz)
    tags = _solution_tags(base_hdr)

    if n_solutions is not None and n_solutions != len(tags):
        raise CorruptSource(
            f"astrometry header has {len(tags)} solution(s) but the plate record claims {n_solutions}"
        )

    mappings = []

    for itag in tags:
        try:
            hdr = _solution_header(base_hdr, itag, binning)

            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                w = WCS(hdr)
        except KeyError as e:
            raise CorruptSource(f"astrometry header lacks required keyword: {e}") from e
        except Exception as e:
            raise CorruptSource(f"astrometry header is not valid WCS: {e}") from e

        mappings.append(WcsMapping(w))

    return mappings


def approximate_mapping(
    center: SkyPoint, pixel_scale_deg: float, naxis: int
) -> WcsMapping:
    """
    Synthesize a crude gnomonic mapping for a square image with north up and
    east left, given only its center and a nominal pixel scale in degrees per
    pixel.
    """

    if not pixel_scale_deg > 0:
        raise ValueError(f"illegal pixel scale {pixel_scale_deg!r}")

    w = WCS(naxis=2)
    w.wcs.ctype = ["RA---TAN", "DEC--TAN"]
    w.wcs.cunit = ["deg", "deg"]
    w.wcs.crval = [center.ra_deg, center.dec_deg]
    w.wcs.crpix = [0.5 * (naxis + 1), 0.5 * (naxis + 1)]  # 1-based
    w.wcs.cd = [[-pixel_scale_deg, 0.0], [0.0, pixel_scale_deg]]
    w.wcs.set()
    return WcsMapping(w)
