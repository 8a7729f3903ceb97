# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Cone searches of the DASCH reference catalogs.

The reference catalogs (APASS and ATLAS-refcat2) are stored partitioned by
their 1/64° GSC bin number (see `daschscience.gscbin`). A cone search
determines which bins could intersect the search disk, scans each of them,
and keeps the sources whose great-circle separation from the search center is
within the radius. Results are ordered nearest first.
"""

from dataclasses import dataclass, field
import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence

from astropy.coordinates import angular_separation
from astropy import units as u
import numpy as np

from .basics import CorruptSource, SkyPoint
from .fetch import Fetcher, join_location
from .gscbin import GscBinning
from .refnums import refnum_to_text
from .timeouts import Deadline, map_bounded, run_bounded

__all__ = [
    "MAX_SEARCH_RADIUS_DEG",
    "SUPPORTED_REFCATS",
    "CatalogMatch",
    "CatalogSource",
    "CatalogStore",
    "CsvCatalogStore",
    "MemoryCatalogStore",
    "format_catalog_lines",
    "query_catalog",
]

logger = logging.getLogger(__name__)

SUPPORTED_REFCATS = frozenset(("apass", "atlas"))

MAX_SEARCH_RADIUS_DEG = 1.0
"The largest allowed catalog search radius. A 1° cone spans about 16,000 bins."


@dataclass(frozen=True)
class CatalogSource:
    ref_number: int
    "The numeric DASCH reference number of the source."

    point: SkyPoint
    "The catalog position of the source, at epoch 2000."

    gsc_bin_index: int
    "The 1/64° GSC bin that the source is stored under."

    fields: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    "Other catalog fields, passed through as text."

    @property
    def ref_text(self) -> str:
        return refnum_to_text(self.ref_number)


@dataclass(frozen=True)
class CatalogMatch:
    source: CatalogSource
    separation_deg: float
    "The great-circle distance from the search center."

    dra_asec: float
    "The RA offset of the search center from the source, scaled by cos(dec)."

    ddec_asec: float
    "The declination offset of the search center from the source."


class CatalogStore:
    """
    A reference catalog partitioned by GSC bin.
    """

    binning: GscBinning

    def scan_bin(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CatalogSource]:
        """
        Get all of the sources stored in one bin. A bin with no sources yields
        an empty list.
        """
        raise NotImplementedError()


class MemoryCatalogStore(CatalogStore):
    def __init__(self, binning: Optional[GscBinning] = None):
        self.binning = binning or GscBinning.new64()
        self._bins: Dict[int, List[CatalogSource]] = {}

    @classmethod
    def from_sources(
        cls,
        sources: Iterable[CatalogSource],
        binning: Optional[GscBinning] = None,
    ) -> "MemoryCatalogStore":
        """
        Build a store from sources, filing each one under the bin of its
        position. The ``gsc_bin_index`` of each source is ignored.
        """
        store = cls(binning)

        for src in sources:
            store._bins.setdefault(store.binning.bin_of(src.point), []).append(src)

        return store

    @classmethod
    def from_points(
        cls, points: Iterable[SkyPoint], binning: Optional[GscBinning] = None
    ) -> "MemoryCatalogStore":
        "Build a store of bare sources numbered sequentially from 1."
        binning = binning or GscBinning.new64()
        return cls.from_sources(
            (CatalogSource(i + 1, p, binning.bin_of(p)) for i, p in enumerate(points)),
            binning,
        )

    def scan_bin(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CatalogSource]:
        return list(self._bins.get(total_bin, []))


def parse_catalog_lines(lines: Iterable[str], total_bin: int) -> List[CatalogSource]:
    """
    Parse the CSV text of one catalog bin. The first line names the columns,
    which must include ``refNumber``, ``ra``, and ``dec``. Rows lacking a
    usable position are skipped.
    """
    colnames = None
    sources = []

    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            continue

        pieces = line.split(",")

        if colnames is None:
            colnames = pieces

            for required in ("refNumber", "ra", "dec"):
                if required not in colnames:
                    raise CorruptSource(f"catalog bin {total_bin} lacks a `{required}` column")
            continue

        row = dict(zip(colnames, pieces))

        try:
            point = SkyPoint.new(float(row["ra"]), float(row["dec"]))
        except (KeyError, ValueError):
            continue

        try:
            refnum = int(row.get("refNumber") or 0)
        except ValueError:
            refnum = 0

        sources.append(CatalogSource(refnum, point, total_bin, row))

    return sources


class CsvCatalogStore(CatalogStore):
    """
    A reference catalog stored as one CSV file per bin, named ``{bin}.csv``,
    in a local directory or under an HTTP(S) base URL. Missing files are empty
    bins.
    """

    def __init__(
        self,
        location: str,
        fetcher: Optional[Fetcher] = None,
        binning: Optional[GscBinning] = None,
    ):
        self.location = location
        self.fetcher = fetcher or Fetcher()
        self.binning = binning or GscBinning.new64()

    def scan_bin(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CatalogSource]:
        deadline = Deadline.coerce(deadline)
        loc = join_location(self.location, f"{total_bin}.csv")
        text = run_bounded(
            deadline,
            f"scan catalog bin {total_bin}",
            self.fetcher.fetch_text,
            loc,
            deadline.remaining(),
        )

        if text is None:
            return []

        return parse_catalog_lines(text.splitlines(), total_bin)


def query_catalog(
    store: CatalogStore,
    center: SkyPoint,
    radius_deg: float,
    deadline: Optional[Deadline] = None,
    max_workers: int = 1,
) -> List[CatalogMatch]:
    """
    Find the catalog sources within a radius of a sky position.

    Parameters
    ==========
    store : `CatalogStore`
        The catalog to search.
    center : `~daschscience.basics.SkyPoint`
        The search center.
    radius_deg : float
        The search radius, in degrees. It may not exceed
        `MAX_SEARCH_RADIUS_DEG`.
    deadline : optional `~daschscience.timeouts.Deadline`
        A bound on the time to spend.
    max_workers : optional int
        The number of bins that may be scanned concurrently.

    Returns
    =======
    The matches, sorted by increasing separation and then by reference number.
    The result does not depend on the order in which bins are scanned.
    """

    if not (radius_deg >= 0 and math.isfinite(radius_deg)):
        raise ValueError(f"illegal search radius {radius_deg!r}")

    if radius_deg > MAX_SEARCH_RADIUS_DEG:
        raise ValueError(
            f"search radius {radius_deg!r} deg exceeds the limit of {MAX_SEARCH_RADIUS_DEG} deg"
        )

    bins = store.binning.cover(center, radius_deg)
    logger.info("catalog search r=%.1f arcsec: scanning %d bins", radius_deg * 3600, len(bins))

    scans = map_bounded(
        deadline,
        "catalog scan",
        lambda b: store.scan_bin(b, deadline),
        bins,
        max_workers=max_workers,
    )

    candidates = [src for scan in scans for src in scan]
    if not candidates:
        return []

    ra = np.array([s.point.ra_deg for s in candidates])
    dec = np.array([s.point.dec_deg for s in candidates])
    sep = angular_separation(
        center.ra_deg * u.deg, center.dec_deg * u.deg, ra * u.deg, dec * u.deg
    ).to_value(u.deg)

    # Offsets of the search center from each source, RA wrapped to (-180, 180]
    dra = center.ra_deg - ra
    dra = np.where(dra < -180, dra + 360, dra)
    dra = np.where(dra > 180, dra - 360, dra)
    factor = np.cos(np.radians(0.5 * (dec + center.dec_deg)))

    matches = [
        CatalogMatch(src, float(s), float(3600 * f * d), float(3600 * (center.dec_deg - sd)))
        for src, s, f, d, sd in zip(candidates, sep, factor, dra, dec)
        if s <= radius_deg
    ]

    matches.sort(key=lambda m: (m.separation_deg, m.source.ref_number))
    return matches


# Tabular output. Catalog fields are named in camelCase in storage and in
# snake_case in the service output.

_FLOAT_FIELDS = [
    ("pm_ra_masyr", "raPM"),
    ("pm_dec_masyr", "decPM"),
    ("u_pm_ra_masyr", "raSigmaPM"),
    ("u_pm_dec_masyr", "decSigmaPM"),
    ("stdmag", "stdmag"),
    ("color", "color"),
]

_INT_FIELDS = [
    ("class", "class"),
    ("v_flag", "vFlag"),
    ("mag_flag", "magFlag"),
]

CATALOG_COLUMNS = (
    [
        "ref_text",
        "ref_number",
        "gsc_bin_index",
        "ra_deg",
        "dec_deg",
        "dra_asec",
        "ddec_asec",
        "pos_epoch",
    ]
    + [c[0] for c in _FLOAT_FIELDS]
    + [c[0] for c in _INT_FIELDS]
    + ["num_matches"]
)


def _float_cell(text: Optional[str]) -> str:
    if not text:
        return "nan"
    try:
        float(text)
    except ValueError:
        return "nan"
    return text


def _int_cell(text: Optional[str]) -> str:
    if not text:
        return "0"
    try:
        return str(int(float(text)))
    except ValueError:
        return "0"


def format_catalog_lines(matches: Sequence[CatalogMatch]) -> List[str]:
    """
    Render catalog matches as CSV lines, header first, in the layout that DASCH
    API clients expect from the ``querycat`` service.
    """
    lines = [",".join(CATALOG_COLUMNS)]

    for m in matches:
        src = m.source
        cells = [
            src.ref_text,
            str(src.ref_number),
            str(src.gsc_bin_index),
            f"{src.point.ra_deg:.7f}",
            f"{src.point.dec_deg:.7f}",
            f"{m.dra_asec:.3f}",
            f"{m.ddec_asec:.3f}",
            "2000.000",
        ]
        cells += [_float_cell(src.fields.get(k)) for _, k in _FLOAT_FIELDS]
        cells += [_int_cell(src.fields.get(k)) for _, k in _INT_FIELDS]

        nm = src.fields.get("numMatches") or ""
        cells.append(nm if nm.isdigit() else "")
        lines.append(",".join(cells))

    return lines
