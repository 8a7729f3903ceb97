# Copyright the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Reading rectangles of pixels from stored plate mosaics.

Full-resolution mosaics are large (often gigabytes), so we only ever read the
part of the image that a cutout needs. For tile-compressed FITS files, Astropy's
``section`` interface decompresses only the tiles overlapping the request.

A mosaic may be stored rotated relative to the frame of its astrometric
solutions. Requests are always expressed in the astrometric frame; we read the
corresponding rectangle of the stored array and rotate it into place.
"""

import logging
import os.path
from typing import Dict, Optional, Tuple

from astropy.io import fits
import numpy as np

from .basics import CorruptSource, PixelRegion, StorageUnavailable
from .plates import PlateImage
from .timeouts import Deadline, run_bounded

__all__ = ["FitsImageStore", "ImageStore", "MemoryImageStore", "stored_slices"]

logger = logging.getLogger(__name__)


def stored_slices(image: PlateImage, region: PixelRegion) -> Tuple[slice, slice]:
    """
    Get the row and column slices of the stored mosaic array that hold a
    region of the image in its astrometric frame.

    The stored array, rotated by ``numpy.rot90(..., k=image.rot_k)``, gives the
    astrometric array; the slices here select the stored pixels that end up
    in *region* after that rotation.
    """

    h_s, w_s = image.stored_shape
    x0, x1, y0, y1 = region.x0, region.x1, region.y0, region.y1
    k = image.rot_k % 4

    if k == 0:
        return slice(y0, y1), slice(x0, x1)
    elif k == 1:
        return slice(x0, x1), slice(w_s - y1, w_s - y0)
    elif k == 2:
        return slice(h_s - y1, h_s - y0), slice(w_s - x1, w_s - x0)
    else:
        return slice(h_s - x1, h_s - x0), slice(y0, y1)


def _check_region(image: PlateImage, region: PixelRegion):
    if region.x1 > image.width or region.y1 > image.height or region.x0 < 0 or region.y0 < 0:
        raise ValueError(
            f"region {region} exceeds the {image.width}×{image.height} image `{image.location}`"
        )


class ImageStore:
    """
    A source of plate mosaic pixels.
    """

    def read_region(
        self,
        image: PlateImage,
        region: PixelRegion,
        deadline: Optional[Deadline] = None,
    ) -> np.ndarray:
        """
        Read a rectangle of an image, in its astrometric frame.

        Returns
        =======
        An array of shape ``region.shape``.

        Raises
        ======
        StorageUnavailable
            If the image cannot be read.
        CorruptSource
            If the stored image is missing or has the wrong dimensions.
        Timeout
            If the read runs past the deadline.
        """
        _check_region(image, region)
        rows, cols = stored_slices(image, region)
        stored = run_bounded(
            deadline,
            f"read pixels of {image.location}",
            self._read_stored,
            image,
            rows,
            cols,
        )

        data = np.rot90(stored, k=image.rot_k)

        if data.shape != region.shape:
            raise CorruptSource(
                f"read {data.shape!r} pixels from `{image.location}` instead of {region.shape!r}"
            )

        return data

    def _read_stored(self, image: PlateImage, rows: slice, cols: slice) -> np.ndarray:
        raise NotImplementedError()


class MemoryImageStore(ImageStore):
    """
    Mosaics held in memory as stored arrays, keyed by location.
    """

    arrays: Dict[str, np.ndarray]

    def __init__(self, arrays: Optional[Dict[str, np.ndarray]] = None):
        self.arrays = dict(arrays or {})

    def _read_stored(self, image: PlateImage, rows: slice, cols: slice) -> np.ndarray:
        try:
            arr = self.arrays[image.location]
        except KeyError:
            raise StorageUnavailable(f"no such image `{image.location}`") from None

        if arr.shape != image.stored_shape:
            raise CorruptSource(
                f"unexpected mosaic shape: {arr.shape!r} instead of {image.stored_shape!r}"
            )

        return arr[rows, cols].copy()


class FitsImageStore(ImageStore):
    """
    Mosaics stored as FITS files (plain or tile-compressed) beneath a root
    directory. Image locations are paths relative to that root.
    """

    def __init__(self, root: str):
        self.root = root

    def path(self, location: str) -> str:
        root = os.path.abspath(self.root)
        p = os.path.abspath(os.path.join(root, location))

        if os.path.commonpath([root, p]) != root:
            raise ValueError(f"image location `{location}` escapes the image store")

        return p

    def _read_stored(self, image: PlateImage, rows: slice, cols: slice) -> np.ndarray:
        path = self.path(image.location)

        try:
            with fits.open(path, memmap=True, lazy_load_hdus=True) as hdul:
                hdu = _find_image_hdu(hdul, path)

                if tuple(hdu.shape) != image.stored_shape:
                    raise CorruptSource(
                        f"unexpected mosaic shape in `{path}`: {tuple(hdu.shape)!r} "
                        f"instead of {image.stored_shape!r}"
                    )

                # Copy out before the file is closed
                return np.array(hdu.section[rows, cols])
        except OSError as e:
            raise StorageUnavailable(f"error reading mosaic `{path}`: {e}") from e


def _find_image_hdu(hdul: fits.HDUList, path: str):
    for hdu in hdul:
        if getattr(hdu, "is_image", False) and hdu.header.get("NAXIS", 0) == 2:
            return hdu

    raise CorruptSource(f"mosaic `{path}` contains no two-dimensional image")
