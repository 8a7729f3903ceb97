# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Determining which plate exposures cover a sky position.

A plate may hold several exposures, each with its own sky/pixel mapping. An
exposure *covers* a position if the position maps to a pixel inside the
exposure's footprint. A position that cannot be mapped at all (for instance,
because it is on the far side of the sky) is simply not covered.

The archive-wide query goes through a coarse coverage index: a set of
1°-binned lists of the plate exposures that might touch each bin. Each
candidate is then checked exactly.
"""

from collections import OrderedDict
from dataclasses import dataclass
import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import warnings

from .basics import (
    AmbiguousExposure,
    NoSuchPlate,
    OutOfDomain,
    PixelCoord,
    PointNotOnExposure,
    SkyPoint,
)
from .fetch import Fetcher, join_location
from .gscbin import GscBinning
from .plates import Exposure, Plate, PlateStore, load_plate
from .series import PIXELS_PER_MM
from .timeouts import Deadline, map_bounded, run_bounded

__all__ = [
    "CoverageEntry",
    "CoverageIndex",
    "CsvCoverageIndex",
    "ExposureMatch",
    "MemoryCoverageIndex",
    "format_exposure_lines",
    "pick_exposure",
    "query_exposures_near",
    "resolve_exposures",
]

logger = logging.getLogger(__name__)

PIXELS_PER_CM = 10.0 * PIXELS_PER_MM


@dataclass(frozen=True)
class ExposureMatch:
    """
    An exposure found to cover a sky position.
    """

    exposure: Exposure
    "The covering exposure."

    pixel: PixelCoord
    "The position of the query point on the exposure."

    center_dist_cm: float
    "The distance of the query point from the center of the image, in cm."

    edge_dist_cm: float
    "The distance of the query point from the nearest image edge, in cm."


def _match(exposure: Exposure, point: SkyPoint) -> Optional[ExposureMatch]:
    try:
        pix = exposure.mapping.to_pixel(point)
    except OutOfDomain:
        return None

    bb = exposure.bbox
    if not bb.contains(pix):
        return None

    # Pixels per cm are constant, so distances are easy in pixel space
    cx = 0.5 * (bb.x0 + bb.x1)
    cy = 0.5 * (bb.y0 + bb.y1)
    center_dist = math.hypot(pix.x - cx, pix.y - cy) / PIXELS_PER_CM
    edge_dist = min(pix.x - bb.x0, pix.y - bb.y0, bb.x1 - pix.x, bb.y1 - pix.y)
    return ExposureMatch(exposure, pix, center_dist, edge_dist / PIXELS_PER_CM)


def resolve_exposures(
    exposures: Iterable[Exposure],
    point: SkyPoint,
    deadline: Optional[Deadline] = None,
    max_workers: int = 1,
) -> List[ExposureMatch]:
    """
    Find the exposures that cover a sky position.

    Parameters
    ==========
    exposures : iterable of `~daschscience.plates.Exposure`
        The candidate exposures.
    point : `~daschscience.basics.SkyPoint`
        The position of interest.
    deadline : optional `~daschscience.timeouts.Deadline`
        A bound on the time to spend.
    max_workers : optional int
        The number of candidates that may be tested concurrently.

    Returns
    =======
    The matches, ordered by plate ID and then by exposure sequence number. The
    list is empty if nothing covers the position.
    """

    results = map_bounded(
        deadline,
        "exposure footprint test",
        lambda e: _match(e, point),
        exposures,
        max_workers=max_workers,
    )

    matches = [m for m in results if m is not None]
    matches.sort(key=lambda m: (m.exposure.plate_id, m.exposure.seq))
    return matches


def pick_exposure(matches: Sequence[ExposureMatch]) -> Tuple[ExposureMatch, bool]:
    """
    Choose one exposure from a list of matches on a single plate.

    The first match in sequence order is chosen. The second return value is
    true if there was more than one match; in that case an
    `~daschscience.basics.AmbiguousExposure` warning is also issued.

    Raises
    ======
    PointNotOnExposure
        If there are no matches.
    """

    if not matches:
        raise PointNotOnExposure("the requested position does not fall on any exposure")

    best = matches[0]
    ambiguous = len(matches) > 1

    if ambiguous:
        others = ", ".join(str(m.exposure.seq) for m in matches[1:])
        msg = (
            f"position falls on {len(matches)} exposures of plate "
            f"`{best.exposure.plate_id}`; using seq {best.exposure.seq} (also: {others})"
        )
        logger.info(msg)
        warnings.warn(msg, AmbiguousExposure, stacklevel=2)

    return best, ambiguous


# The coverage index


@dataclass(frozen=True)
class CoverageEntry:
    plate_id: str
    sol_num: int
    exp_num: int


class CoverageIndex:
    """
    A coarse index of which plate exposures might touch each region of the
    sky, keyed by 1° GSC bin number.
    """

    binning: GscBinning

    def entries(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CoverageEntry]:
        raise NotImplementedError()


class MemoryCoverageIndex(CoverageIndex):
    def __init__(self, bins: Optional[Dict[int, List[CoverageEntry]]] = None):
        self.binning = GscBinning.new1()
        self.bins = dict(bins or {})

    @classmethod
    def from_plates(cls, plates: Iterable[Plate]) -> "MemoryCoverageIndex":
        """
        Build an index from in-memory plates by sampling each exposure's
        footprint. This is only suitable for small synthetic datasets.
        """
        idx = cls()

        for plate in plates:
            for exp in plate.exposures:
                for b in _footprint_bins(idx.binning, exp):
                    idx.add(b, CoverageEntry(plate.plate_id, exp.sol_num, exp.exp_num))

        return idx

    def add(self, total_bin: int, entry: CoverageEntry):
        entries = self.bins.setdefault(total_bin, [])
        if entry not in entries:
            entries.append(entry)

    def entries(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CoverageEntry]:
        return list(self.bins.get(total_bin, []))


def _footprint_bins(binning: GscBinning, exp: Exposure, n: int = 16) -> List[int]:
    bb = exp.bbox
    bins = set()

    for i in range(n + 1):
        for j in range(n + 1):
            pix = PixelCoord(
                bb.x0 + (bb.x1 - bb.x0) * i / n,
                bb.y0 + (bb.y1 - bb.y0) * j / n,
            )

            try:
                bins.add(binning.bin_of(exp.mapping.to_sky(pix)))
            except OutOfDomain:
                pass

    return sorted(bins)


def parse_coverage_lines(lines: Iterable[str]) -> List[CoverageEntry]:
    """
    Parse the lines of a coverage bin file. Each line has the form
    ``plateid,solnum,expnum``; lines that don't parse are skipped.
    """
    entries = []

    for line in lines:
        pieces = line.strip().split(",")
        if len(pieces) < 3 or not pieces[0]:
            continue

        try:
            entries.append(CoverageEntry(pieces[0], int(pieces[1]), int(pieces[2])))
        except ValueError:
            continue

    return entries


class CsvCoverageIndex(CoverageIndex):
    """
    A coverage index stored as one CSV file per bin, named ``{bin}.csv``.
    """

    def __init__(self, location: str, fetcher: Optional[Fetcher] = None):
        self.binning = GscBinning.new1()
        self.location = location
        self.fetcher = fetcher or Fetcher()

    def entries(
        self, total_bin: int, deadline: Optional[Deadline] = None
    ) -> List[CoverageEntry]:
        deadline = Deadline.coerce(deadline)
        loc = join_location(self.location, f"{total_bin}.csv")
        text = run_bounded(
            deadline,
            f"read coverage bin {total_bin}",
            self.fetcher.fetch_text,
            loc,
            deadline.remaining(),
        )

        if text is None:
            return []

        return parse_coverage_lines(text.splitlines())


def _candidate_exposures(plate: Plate, wanted: List[CoverageEntry]) -> List[Exposure]:
    found = OrderedDict()

    for entry in wanted:
        exp = None

        if entry.sol_num >= 0:
            exp = plate.exposure_for_solution(entry.sol_num)

        if exp is None and entry.exp_num >= 0:
            for e in plate.exposures:
                if e.exp_num == entry.exp_num:
                    exp = e
                    break

        if exp is None:
            logger.debug(
                "no usable mapping for %s sol=%d exp=%d",
                plate.plate_id,
                entry.sol_num,
                entry.exp_num,
            )
            continue

        found[id(exp)] = exp

    return list(found.values())


def query_exposures_near(
    point: SkyPoint,
    coverage: CoverageIndex,
    plates: PlateStore,
    deadline: Optional[Deadline] = None,
    max_workers: int = 1,
) -> Tuple[List[ExposureMatch], Dict[str, Plate]]:
    """
    Find every archived exposure that covers a sky position.

    Returns
    =======
    The matches, ordered by plate ID and exposure sequence number, and a
    dictionary of the plates that they are on.
    """

    deadline = Deadline.coerce(deadline)
    total_bin = coverage.binning.bin_of(point)
    candidates: Dict[str, List[CoverageEntry]] = OrderedDict()

    for entry in coverage.entries(total_bin, deadline):
        candidates.setdefault(entry.plate_id, []).append(entry)

    logger.info("coverage bin %d: %d candidate plates", total_bin, len(candidates))

    def load(plate_id: str) -> Optional[Plate]:
        try:
            return load_plate(plates, plate_id, deadline, strict=False)
        except NoSuchPlate:
            logger.warning("coverage index lists unknown plate `%s`", plate_id)
            return None

    loaded = map_bounded(
        deadline, "load candidate plates", load, candidates.keys(), max_workers
    )

    exposures = []
    by_id = {}

    for plate in loaded:
        if plate is None:
            continue

        by_id[plate.plate_id] = plate
        exposures += _candidate_exposures(plate, candidates[plate.plate_id])

    matches = resolve_exposures(exposures, point, deadline, max_workers)
    return matches, {m.exposure.plate_id: by_id[m.exposure.plate_id] for m in matches}


# Tabular output

EXPOSURE_COLUMNS = [
    "series",
    "platenum",
    "scannum",
    "mosnum",
    "expnum",
    "solnum",
    "class",
    "ra",
    "dec",
    "exptime",
    "expdate",
    "epoch",
    "wcssource",
    "scandate",
    "mosdate",
    "centerdist",
    "edgedist",
    "limMagApass",
    "limMagAtlas",
    "medianColortermApass",
    "medianColortermAtlas",
    "nSolutionsApass",
    "nSolutionsAtlas",
    "nMagdepApass",
    "nMagdepAtlas",
    "resultIdApass",
    "resultIdAtlas",
]


def _fmt(value, spec: str = "") -> str:
    if value is None:
        return ""
    if isinstance(value, float) and not math.isfinite(value):
        return ""
    return format(value, spec)


def _exposure_row(m: ExposureMatch, plate: Plate) -> List[str]:
    exp = m.exposure
    rec = plate.record
    mos = rec.mosaic if rec is not None else None
    phot = rec.photometry if rec is not None else None
    er = exp.record

    bb = exp.bbox
    try:
        center = exp.mapping.to_sky(
            PixelCoord(0.5 * (bb.x0 + bb.x1), 0.5 * (bb.y0 + bb.y1))
        )
        ra_text, dec_text = f"{center.ra_deg:.6f}", f"{center.dec_deg:.6f}"
    except OutOfDomain:
        ra_text = dec_text = ""

    if exp.has_imaging:
        wcssource = "imwcs"
    elif er is not None and er.centerSource:
        wcssource = er.centerSource.lower()
    else:
        wcssource = ""

    p = lambda attr: getattr(phot, attr) if phot is not None else None

    return [
        plate.series,
        str(plate.plate_number),
        str(mos.scanNum if mos is not None else -1),
        str(mos.mosNum if mos is not None else -1),
        str(exp.exp_num),
        str(exp.sol_num),
        (rec.plateClass or "") if rec is not None else "",
        ra_text,
        dec_text,
        _fmt(er.durMin if er is not None else None, ".2f"),
        (er.midpointDate or "") if er is not None else "",
        "2000.0",
        wcssource,
        "",
        (mos.creationDate or "") if mos is not None else "",
        f"{m.center_dist_cm:.1f}",
        f"{m.edge_dist_cm:.1f}",
        _fmt(p("limMagApass")),
        _fmt(p("limMagAtlas")),
        _fmt(p("medianColortermApass")),
        _fmt(p("medianColortermAtlas")),
        _fmt(p("nSolutionsApass")),
        _fmt(p("nSolutionsAtlas")),
        _fmt(p("nMagdepApass")),
        _fmt(p("nMagdepAtlas")),
        _fmt(p("resultIdApass")),
        _fmt(p("resultIdAtlas")),
    ]


def format_exposure_lines(
    matches: Sequence[ExposureMatch], plates: Dict[str, Plate]
) -> List[str]:
    """
    Render exposure matches as CSV lines, header first, in the layout that
    DASCH API clients expect from the ``queryexps`` service.
    """
    lines = [",".join(EXPOSURE_COLUMNS)]

    for m in matches:
        row = _exposure_row(m, plates[m.exposure.plate_id])
        lines.append(",".join(cell.replace(",", " ") for cell in row))

    return lines
