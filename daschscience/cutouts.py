# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Assembling DASCH cutouts.

A cutout is a rectangle of a plate mosaic packaged as a standalone FITS image.
Its WCS is the exposure's mapping translated so that the cutout's pixel
``(0, 0)`` corresponds to the mosaic pixel ``(x0, y0)`` it was cut from;
nothing else about the mapping changes.

The ``cutout`` service delivers the FITS file as Base64-encoded gzipped bytes,
the form that DASCH API clients decode with::

    gzip.decompress(base64.b64decode(result))
"""

import base64
from dataclasses import dataclass
import gzip
import io
import logging
from typing import Optional

from astropy.io import fits
import numpy as np

from .basics import CorruptSource, NoImaging, PixelRegion
from .mosaics import ImageStore
from .plates import Exposure, Plate
from .region import RegionPlan
from .timeouts import Deadline
from .timeutil import exposure_midpoint

__all__ = ["CutoutResult", "assemble_cutout"]

logger = logging.getLogger(__name__)


@dataclass
class CutoutResult:
    data: np.ndarray
    "The pixel data, with shape ``region.shape``."

    header: fits.Header
    "A FITS header with the re-anchored WCS and provenance keywords."

    region: PixelRegion
    "The rectangle of the mosaic that was delivered."

    clamped: bool
    "Whether the rectangle was reduced to fit within the mosaic."

    ambiguous: bool
    "Whether the requested center fell on more than one exposure."

    exposure: Exposure
    "The exposure whose mapping the WCS derives from."

    def to_hdulist(self) -> fits.HDUList:
        return fits.HDUList([fits.PrimaryHDU(data=self.data, header=self.header)])

    def to_fits_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.to_hdulist().writeto(buf)
        return buf.getvalue()

    def to_payload(self) -> str:
        """
        Encode the cutout as Base64 text of a gzipped FITS file.
        """
        return base64.b64encode(gzip.compress(self.to_fits_bytes())).decode("ascii")


def _cutout_header(
    plate: Plate, exposure: Exposure, plan: RegionPlan, ambiguous: bool
) -> fits.Header:
    try:
        hdr = exposure.mapping.translated(plan.region.x0, plan.region.y0).to_header()
    except Exception as e:
        raise CorruptSource(
            f"cannot derive cutout WCS for plate `{plate.plate_id}`: {e}"
        ) from e

    add = lambda k, v, c: hdr.set(k, v, c)

    add("D_PLATE", plate.plate_id, "DASCH plate ID")
    add("D_SERIES", plate.series, "DASCH plate series")
    add("D_PLNUM", plate.plate_number, "DASCH plate number")
    add("D_SOLNUM", exposure.sol_num, "Astrometric solution number")
    add("D_EXPNUM", exposure.exp_num, "Logbook exposure number (-1 if unknown)")
    add("D_X0", plan.region.x0, "Mosaic pixel column of cutout pixel 0")
    add("D_Y0", plan.region.y0, "Mosaic pixel row of cutout pixel 0")
    add("D_CLAMP", plan.clamped, "Cutout was reduced to fit the mosaic")
    add("D_AMBIG", ambiguous, "Position falls on multiple exposures")

    er = exposure.record
    if er is not None:
        mid = exposure_midpoint(er.midpointDate)

        if mid is not None:
            add("DATE-OBS", mid[0], "Exposure midpoint")
            add("MJD-OBS", mid[1], "Exposure midpoint (MJD)")

        if er.durMin is not None:
            add("EXPTIME", er.durMin * 60.0, "Exposure duration (s)")

    return hdr


def assemble_cutout(
    images: ImageStore,
    plate: Plate,
    exposure: Exposure,
    plan: RegionPlan,
    deadline: Optional[Deadline] = None,
    ambiguous: bool = False,
) -> CutoutResult:
    """
    Read a planned rectangle of a plate mosaic and package it as a cutout.

    Parameters
    ==========
    images : `~daschscience.mosaics.ImageStore`
        The store holding the plate's mosaic.
    plate : `~daschscience.plates.Plate`
        The plate.
    exposure : `~daschscience.plates.Exposure`
        The exposure providing the WCS. It must have imaging (a fitted
        astrometric solution).
    plan : `~daschscience.region.RegionPlan`
        The rectangle to extract.
    deadline : optional `~daschscience.timeouts.Deadline`
        A bound on the time to spend reading pixels.
    ambiguous : optional bool
        Whether the center was ambiguous among exposures; recorded in the
        result.

    Returns
    =======
    A `CutoutResult`.
    """

    if plate.image is None:
        raise NoImaging(f"plate `{plate.plate_id}` has no scanned mosaic")

    if not exposure.has_imaging:
        raise NoImaging(
            f"exposure {exposure.seq} of plate `{plate.plate_id}` has no astrometric solution"
        )

    header = _cutout_header(plate, exposure, plan, ambiguous)
    data = images.read_region(plate.image, plan.region, deadline)

    if data.shape != plan.region.shape:
        raise CorruptSource(
            f"mosaic of plate `{plate.plate_id}` yielded {data.shape!r} pixels "
            f"for a {plan.region.shape!r} cutout"
        )

    logger.info(
        "cutout of %s sol=%d: %s%s",
        plate.plate_id,
        exposure.sol_num,
        plan.region,
        " (clamped)" if plan.clamped else "",
    )

    return CutoutResult(
        np.ascontiguousarray(data),
        header,
        plan.region,
        plan.clamped,
        ambiguous,
        exposure,
    )
