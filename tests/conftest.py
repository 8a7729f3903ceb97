# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Shared fixtures for the daschscience tests.

Most tests use synthetic plates whose exposures have exactly linear
mappings, so that expected pixel positions can be computed by hand. The
standard plate, ``p00001``, is 1000×1000 pixels with a single exposure
covering RA 10–11° and declination 20–21°.
"""

import base64
import gzip

from astropy.io import fits
import numpy as np
import pytest

from daschscience.basics import PixelRegion
from daschscience.mosaics import FitsImageStore, MemoryImageStore
from daschscience.plates import (
    AstrometryRecord,
    Exposure,
    ExposureRecord,
    MemoryPlateStore,
    MosaicRecord,
    Plate,
    PlateImage,
    PlateRecord,
)
from daschscience.wcs import LinearMapping

SIZE = 1000


def linear_exposure(
    plate_id: str,
    seq: int,
    ra0: float = 10.0,
    dec0: float = 20.0,
    width: int = SIZE,
    height: int = SIZE,
    scale: float = 0.001,
) -> Exposure:
    """
    An exposure mapping RA ``[ra0, ra0 + width*scale)`` and declination
    ``[dec0, dec0 + height*scale)`` linearly onto the whole image.
    """
    return Exposure(
        plate_id,
        seq,
        seq,
        seq + 1,
        LinearMapping(ra0, dec0, 0.0, 0.0, scale, scale),
        PixelRegion(0, width, 0, height),
    )


def make_plate(plate_id: str = "p00001", exposures=None, location=None) -> Plate:
    if exposures is None:
        exposures = [linear_exposure(plate_id, 0)]

    image = PlateImage(location or f"{plate_id}.fits", SIZE, SIZE)
    return Plate(plate_id, "p", int(plate_id[1:]), image, tuple(exposures))


def pixel_values(width: int = SIZE, height: int = SIZE) -> np.ndarray:
    "An image whose pixel values encode their own positions: 10000*row + col."
    rows, cols = np.mgrid[:height, :width]
    return (10000 * rows + cols).astype(np.int32)


def tan_header_cards(
    hdr: fits.Header,
    tag: str,
    crval=(10.5, 20.5),
    crpix=(500.5, 500.5),
    scale: float = 1e-3,
):
    "Add the cards of a DASCH-style TAN solution to a header."
    hdr["CTYPE1" + tag] = "RA---TAN"
    hdr["CTYPE2" + tag] = "DEC--TAN"
    hdr["CRVAL1" + tag] = crval[0]
    hdr["CRVAL2" + tag] = crval[1]
    hdr["CRPIX1" + tag] = crpix[0]
    hdr["CRPIX2" + tag] = crpix[1]
    hdr["CD1_1" + tag] = -scale
    hdr["CD1_2" + tag] = 0.0
    hdr["CD2_1" + tag] = 0.0
    hdr["CD2_2" + tag] = scale
    # The identity TPV distortion
    hdr["PV1_1" + tag] = 1.0
    hdr["PV2_1" + tag] = 1.0


def encode_header(hdr: fits.Header) -> str:
    "Encode a header the way the plates table stores it."
    text = hdr.tostring(sep="\n", endcard=False, padding=False)
    return base64.b64encode(gzip.compress(text.encode("ascii"))).decode("ascii")


@pytest.fixture
def plate() -> Plate:
    return make_plate()


def make_record(plate_id: str = "a01234", n_solutions: int = 1) -> PlateRecord:
    """
    A plate record with fitted TAN solutions around (10.5, 20.5) and one
    extra, unsolved logbook exposure.
    """
    hdr = fits.Header()

    if n_solutions == 1:
        tan_header_cards(hdr, "")
    else:
        for i in range(n_solutions):
            tan_header_cards(hdr, chr(ord("A") + i), crval=(10.5 + 0.1 * i, 20.5))
        tan_header_cards(hdr, "", crval=(10.5 + 0.1 * (n_solutions - 1), 20.5))

    exposures = [
        ExposureRecord(
            number=i + 1,
            centerSource="wcs",
            decDeg=20.5,
            durMin=30.0,
            midpointDate="1905-03-04T05:06:07Z",
            raDeg=10.5 + 0.1 * i,
        )
        for i in range(n_solutions)
    ]
    exposures.append(
        ExposureRecord(number=n_solutions + 1, centerSource="logbook", decDeg=20.52, raDeg=10.52)
    )

    return PlateRecord(
        plateId=plate_id,
        series=plate_id.rstrip("0123456789"),
        plateNumber=int(plate_id.lstrip("abcdefghijklmnopqrstuvwxyz")),
        plateClass="test",
        mosaic=MosaicRecord(
            b01Height=SIZE,
            b01Width=SIZE,
            s3KeyTemplate=f"{plate_id}.fits",
            creationDate="2020-01-01T00:00:00Z",
            mosNum=1,
            scanNum=1,
        ),
        astrometry=AstrometryRecord(
            b01HeaderGz=encode_header(hdr),
            nSolutions=n_solutions,
            exposures=exposures,
        ),
    )


@pytest.fixture
def plate_record() -> PlateRecord:
    return make_record()


@pytest.fixture
def plate_store(plate_record) -> MemoryPlateStore:
    return MemoryPlateStore([plate_record])


@pytest.fixture
def fits_store(tmp_path, plate) -> FitsImageStore:
    fits.PrimaryHDU(pixel_values()).writeto(tmp_path / plate.image.location)
    return FitsImageStore(str(tmp_path))


@pytest.fixture
def memory_store(plate) -> MemoryImageStore:
    return MemoryImageStore({plate.image.location: pixel_values()})
