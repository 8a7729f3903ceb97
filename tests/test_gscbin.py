# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

from astropy import units as u
import numpy as np
import pytest

from daschscience.basics import SkyPoint
from daschscience.gscbin import GscBinning


@pytest.fixture(scope="module")
def bin64():
    return GscBinning.new64()


def test_totals(bin64):
    assert bin64.total_bins == 168966386

    b1 = GscBinning.new1()
    assert b1.total_bins == sum(b1.band_bins(i) for i in range(180))


def test_inconsistent_total():
    with pytest.raises(RuntimeError):
        GscBinning(1.0, 180, 12345)


def test_dec_bins(bin64):
    assert bin64.get_dec_bin(-90.0) == 0
    assert bin64.get_dec_bin(90.0) == bin64.dec_bins - 1

    with pytest.raises(ValueError):
        bin64.get_dec_bin(90.5)

    with pytest.raises(ValueError):
        bin64.get_dec_bin(float("nan"))


def test_ra_wrap(bin64):
    b = bin64.get_dec_bin(12.0)
    assert bin64.get_total_bin(b, 360.0) == bin64.get_total_bin(b, 0.0)
    assert bin64.get_total_bin(b, -0.001) == bin64.get_total_bin(b, 359.999)


def test_bins_increase(bin64):
    # Total bin numbers count up through each band and then band by band
    a = bin64.bin_of(SkyPoint(10.0, 5.0))
    b = bin64.bin_of(SkyPoint(10.1, 5.0))
    c = bin64.bin_of(SkyPoint(10.0, 5.1))
    assert a < b < c


def test_cover_sorted(bin64):
    bins = bin64.cover(SkyPoint(0.01, 30.0), 0.05)
    assert bins == sorted(set(bins))


def test_cover_zero_radius(bin64):
    p = SkyPoint(123.4, -56.7)
    assert bin64.bin_of(p) in bin64.cover(p, 0.0)


def test_ra_ranges_split(bin64):
    ranges = bin64.ra_ranges(SkyPoint(0.01, 0.0), 0.1)
    assert len(ranges) == 2
    assert ranges[0][0] == 0.0
    assert ranges[1][1] == 360.0


def test_ra_ranges_pole(bin64):
    assert bin64.ra_ranges(SkyPoint(45.0, 89.95), 0.1) == [(0.0, 360.0)]


def _disk_points(center: SkyPoint, radius_deg: float, n: int, seed: int):
    rng = np.random.default_rng(seed)
    pa = rng.uniform(0, 360, n) * u.deg
    sep = radius_deg * np.sqrt(rng.uniform(0, 1, n)) * u.deg

    # Include points right on the rim
    sep[:16] = radius_deg * u.deg
    pa[:16] = np.linspace(0, 360, 16, endpoint=False) * u.deg

    c = center.as_skycoord().directional_offset_by(pa, sep * 0.999999)
    return [SkyPoint.new(ra % 360.0, dec) for ra, dec in zip(c.ra.deg, c.dec.deg)]


@pytest.mark.parametrize(
    "ra,dec,radius",
    [
        (10.5, 20.5, 0.02),
        (0.005, 3.0, 0.05),
        (359.99, -12.0, 0.1),
        (200.0, 89.9, 0.2),
        (75.0, -89.99, 0.05),
        (180.0, 0.0, 1.0),
        (33.0, 75.0, 0.3),
    ],
)
def test_cover_no_false_negatives(bin64, ra, dec, radius):
    center = SkyPoint(ra, dec)
    cover = set(bin64.cover(center, radius))

    for p in _disk_points(center, radius, 300, int(ra * 1000 + dec)):
        assert bin64.bin_of(p) in cover, p


def test_cover_coarse():
    b1 = GscBinning.new1()
    center = SkyPoint(359.7, 45.2)
    cover = set(b1.cover(center, 1.5))

    for p in _disk_points(center, 1.5, 300, 7):
        assert b1.bin_of(p) in cover
