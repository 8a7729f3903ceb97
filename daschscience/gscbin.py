# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
The "GSC binning" tessellation of the sky.

The sky is divided into declination bands of fixed height, starting at -90°.
Each band is divided into equal RA bins, as many as fit given the band's
circumference at its central declination. Every bin has a "total" index,
counting up through the RA bins of each band in turn.

DASCH's reference catalogs are partitioned with 1/64° bins; the exposure
coverage index uses 1° bins.
"""

from dataclasses import dataclass
import math
from typing import List, Optional, Tuple

from .basics import SkyPoint

__all__ = ["GscBinning"]


# Degree-to-radian conversion factor. We use the literal value so that the bin
# boundaries are bit-for-bit those of the catalog partitioning.
D2R = 0.017453292519943295


@dataclass(frozen=True)
class _BandInfo:
    start_bin: int
    num_bins: int


class GscBinning:
    bin_size: float
    "The height of each declination band, in degrees."

    dec_bins: int
    "The number of declination bands."

    total_bins: int
    "The total number of bins on the sky."

    def __init__(
        self, bin_size: float, dec_bins: int, expected_total: Optional[int] = None
    ):
        self.bin_size = bin_size
        self.dec_bins = dec_bins
        self._bands = []

        ra_sum = 0

        for i_bin in range(dec_bins):
            declination = i_bin * bin_size - 90.0
            num_ra_bins = int(360.0 / bin_size * math.cos((declination + bin_size / 2.0) * D2R))
            self._bands.append(_BandInfo(ra_sum, num_ra_bins))
            ra_sum += num_ra_bins

        if expected_total is not None and ra_sum != expected_total:
            raise RuntimeError(
                f"consistency error in GSC bin definition: {ra_sum} bins, expected {expected_total}"
            )

        self.total_bins = ra_sum

    @classmethod
    def new64(cls) -> "GscBinning":
        "The 1/64° binning used to partition the reference catalogs."
        # The total is empirical
        return cls(0.015625, 11520, 168966386)

    @classmethod
    def new1(cls) -> "GscBinning":
        "The 1° binning used by the exposure coverage index."
        return cls(1.0, 180)

    def band_bins(self, dec_bin: int) -> int:
        return self._bands[dec_bin].num_bins

    def get_dec_bin(self, dec_deg: float) -> int:
        """
        Get the declination band number containing a declination, between 0
        and ``dec_bins - 1``. The northern edge of the last band is included
        in it.
        """
        if not (dec_deg >= -90.0 and dec_deg <= 90.0):
            raise ValueError(f"illegal declination {dec_deg!r}")

        b = int((dec_deg + 90.0) / self.bin_size)

        if b >= self.dec_bins:
            return self.dec_bins - 1
        return b

    def get_total_bin(self, dec_bin: int, ra_deg: float) -> int:
        """
        Get the total bin number of an RA within a declination band. The RA is
        wrapped into [0, 360).
        """
        ra_deg = ra_deg % 360.0
        return self._bands[dec_bin].start_bin + self._ra_offset(dec_bin, ra_deg)

    def bin_of(self, point: SkyPoint) -> int:
        return self.get_total_bin(self.get_dec_bin(point.dec_deg), point.ra_deg)

    def _ra_offset(self, dec_bin: int, ra_deg: float) -> int:
        # No wrapping here: ra_deg == 360 is the top of the last bin
        n = self._bands[dec_bin].num_bins
        delta = int(ra_deg * n / 360.0)
        return max(0, min(delta, n - 1))

    def ra_ranges(self, center: SkyPoint, radius_deg: float) -> List[Tuple[float, float]]:
        """
        Get the RA intervals, in degrees and within [0, 360], that contain every
        point of the spherical cap of *radius_deg* around *center*. An interval
        crossing RA = 0 is split in two.
        """

        dec = center.dec_deg

        # If the cap touches a pole it spans every RA
        if dec + radius_deg >= 90.0 or dec - radius_deg <= -90.0:
            return [(0.0, 360.0)]

        # The exact RA half-width of a cap that does not contain a pole. We pad
        # it by a hair so that rounding can only over-cover.
        ratio = math.sin(radius_deg * D2R) / math.cos(dec * D2R)
        half = math.degrees(math.asin(min(ratio, 1.0))) + 1e-9

        lo = center.ra_deg - half
        hi = center.ra_deg + half

        if hi - lo >= 360.0:
            return [(0.0, 360.0)]
        elif lo < 0.0:
            return [(0.0, hi), (lo + 360.0, 360.0)]
        elif hi > 360.0:
            return [(lo, 360.0), (0.0, hi - 360.0)]
        return [(lo, hi)]

    def cover_ranges(self, center: SkyPoint, radius_deg: float) -> List[Tuple[int, int]]:
        """
        Get half-open ranges of total bin numbers covering a disk on the sky.

        Every bin that could contain a point within *radius_deg* of *center* is
        included. Bins outside the disk may be included too. The ranges are
        sorted and disjoint.
        """

        if not radius_deg >= 0:
            raise ValueError(f"illegal search radius {radius_deg!r}")

        min_dec = max(center.dec_deg - radius_deg, -90.0)
        max_dec = min(center.dec_deg + radius_deg, 90.0)
        b0 = self.get_dec_bin(min_dec)
        b1 = self.get_dec_bin(max_dec)
        ra_ranges = self.ra_ranges(center, radius_deg)
        ranges = []

        for b in range(b0, b1 + 1):
            band = self._bands[b]
            if band.num_bins == 0:
                continue

            for lo, hi in ra_ranges:
                t0 = band.start_bin + self._ra_offset(b, lo)
                t1 = band.start_bin + self._ra_offset(b, hi) + 1
                ranges.append((t0, t1))

        # Merge overlaps, which arise when both halves of a split RA range land
        # in the same bin.
        ranges.sort()
        merged = []

        for t0, t1 in ranges:
            if merged and t0 <= merged[-1][1]:
                merged[-1] = (merged[-1][0], max(merged[-1][1], t1))
            else:
                merged.append((t0, t1))

        return merged

    def cover(self, center: SkyPoint, radius_deg: float) -> List[int]:
        """
        Get the sorted, distinct total bin numbers covering a disk on the sky.
        See `cover_ranges`.
        """
        result = []

        for t0, t1 in self.cover_ranges(center, radius_deg):
            result.extend(range(t0, t1))

        return result
