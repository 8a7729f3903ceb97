# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

from astropy.io import fits
import numpy as np
import pytest

from conftest import pixel_values
from daschscience.basics import CorruptSource, PixelRegion, StorageUnavailable
from daschscience.mosaics import FitsImageStore, MemoryImageStore, stored_slices
from daschscience.plates import PlateImage


@pytest.mark.parametrize("k", [0, 1, 2, -1])
def test_rotated_reads(k):
    stored = pixel_values(30, 20)
    full = np.rot90(stored, k=k)
    image = PlateImage("rot.fits", full.shape[1], full.shape[0], k)
    assert image.stored_shape == stored.shape

    store = MemoryImageStore({"rot.fits": stored})

    for region in [
        PixelRegion(0, 1, 0, 1),
        PixelRegion(3, 11, 5, 9),
        PixelRegion(0, full.shape[1], 0, full.shape[0]),
        PixelRegion(full.shape[1] - 4, full.shape[1], full.shape[0] - 2, full.shape[0]),
    ]:
        data = store.read_region(image, region)
        expected = full[region.y0 : region.y1, region.x0 : region.x1]
        assert data.shape == region.shape
        np.testing.assert_array_equal(data, expected)


def test_stored_slices_identity():
    image = PlateImage("x", 100, 50)
    rows, cols = stored_slices(image, PixelRegion(10, 20, 30, 40))
    assert (rows.start, rows.stop) == (30, 40)
    assert (cols.start, cols.stop) == (10, 20)


def test_out_of_bounds(memory_store, plate):
    with pytest.raises(ValueError):
        memory_store.read_region(plate.image, PixelRegion(990, 1001, 0, 10))


def test_memory_missing(plate):
    with pytest.raises(StorageUnavailable):
        MemoryImageStore().read_region(plate.image, PixelRegion(0, 10, 0, 10))


def test_memory_wrong_shape(plate):
    store = MemoryImageStore({plate.image.location: pixel_values(999, 1000)})

    with pytest.raises(CorruptSource):
        store.read_region(plate.image, PixelRegion(0, 10, 0, 10))


def test_fits_read(fits_store, plate):
    region = PixelRegion(450, 550, 440, 560)
    data = fits_store.read_region(plate.image, region)
    np.testing.assert_array_equal(data, pixel_values()[440:560, 450:550])


def test_fits_compressed(tmp_path):
    stored = pixel_values(64, 48)
    hdul = fits.HDUList([fits.PrimaryHDU(), fits.CompImageHDU(stored)])
    hdul.writeto(tmp_path / "comp.fits.fz")

    image = PlateImage("comp.fits.fz", 48, 64, 1)
    store = FitsImageStore(str(tmp_path))
    data = store.read_region(image, PixelRegion(5, 15, 20, 40))
    np.testing.assert_array_equal(data, np.rot90(stored)[20:40, 5:15])


def test_fits_missing(tmp_path, plate):
    store = FitsImageStore(str(tmp_path))

    with pytest.raises(StorageUnavailable):
        store.read_region(plate.image, PixelRegion(0, 10, 0, 10))


def test_fits_wrong_shape(tmp_path, plate):
    fits.PrimaryHDU(pixel_values(100, 100)).writeto(tmp_path / plate.image.location)
    store = FitsImageStore(str(tmp_path))

    with pytest.raises(CorruptSource):
        store.read_region(plate.image, PixelRegion(0, 10, 0, 10))


def test_fits_no_image(tmp_path, plate):
    fits.PrimaryHDU().writeto(tmp_path / plate.image.location)
    store = FitsImageStore(str(tmp_path))

    with pytest.raises(CorruptSource):
        store.read_region(plate.image, PixelRegion(0, 10, 0, 10))


def test_fits_path_escape(tmp_path):
    store = FitsImageStore(str(tmp_path / "root"))

    with pytest.raises(ValueError):
        store.path("../elsewhere.fits")
