# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Plates, their exposures, and the stores that hold plate metadata.

Plate metadata are archived as JSON records following the layout of the DASCH
DR7 plates table: camelCase field names, an optional ``mosaic`` sub-record
describing the scanned image, and an optional ``astrometry`` sub-record
holding the astrometric solutions and the logbook exposure list.

The ``astrometry.exposures`` list is ordered to match the astrometric
solutions: entry *i* (for *i* less than the number of solutions) is the
logbook record matched to solution *i*, or null if no match was found.
Entries past the number of solutions are logbook exposures that the pipeline
did not solve. We turn each of these into an `Exposure`, giving solved
exposures their fitted WCS and unsolved ones a crude approximate WCS if the
logbook provides a usable center. If a plate's astrometry is missing or can't
be decoded, every logbook entry is treated as unsolved.
"""

from dataclasses import dataclass, field
import json
import logging
import re
from typing import Dict, List, Optional, Tuple

from dataclasses_json import dataclass_json

from .basics import CorruptSource, NoSuchPlate, PixelRegion, SkyPoint
from .fetch import Fetcher, join_location
from .series import nominal_plate_size, pixel_scale_deg
from .timeouts import Deadline, run_bounded
from .wcs import CoordinateMapping, approximate_mapping, load_solution_mappings

__all__ = [
    "AstrometryRecord",
    "Exposure",
    "ExposureRecord",
    "JsonPlateStore",
    "MemoryPlateStore",
    "MosaicRecord",
    "PhotometryRecord",
    "Plate",
    "PlateImage",
    "PlateRecord",
    "PlateStore",
    "load_plate",
    "plate_from_record",
]

logger = logging.getLogger(__name__)

PLATE_ID_RE = re.compile(r"^[a-z]+[0-9]+$")


# Archived records. These are all camelCase to match the plates table.


@dataclass_json
@dataclass
class MosaicRecord:
    b01Height: int
    b01Width: int
    s3KeyTemplate: Optional[str] = None
    creationDate: Optional[str] = None
    mosNum: int = -1
    scanNum: int = -1


@dataclass_json
@dataclass
class ExposureRecord:
    number: int
    centerSource: Optional[str] = None
    dateAccDays: Optional[float] = None
    dateSource: Optional[str] = None
    decDeg: Optional[float] = None
    durMin: Optional[float] = None
    midpointDate: Optional[str] = None
    raDeg: Optional[float] = None

    def center(self) -> Optional[SkyPoint]:
        """
        Get the logbook center of this exposure, or None if it is missing or
        one of the placeholder values found in the legacy data.
        """
        ra, dec = self.raDeg, self.decDeg

        if ra is None or dec is None:
            return None

        if ra in (999.0, -99.0) or dec in (99.0, -99.0):
            return None

        try:
            return SkyPoint.new(ra, dec)
        except ValueError:
            return None


@dataclass_json
@dataclass
class AstrometryRecord:
    b01HeaderGz: Optional[str] = None
    nSolutions: Optional[int] = None
    rotationDelta: Optional[int] = None
    exposures: List[Optional[ExposureRecord]] = field(default_factory=list)


@dataclass_json
@dataclass
class PhotometryRecord:
    limMagApass: Optional[float] = None
    limMagAtlas: Optional[float] = None
    medianColortermApass: Optional[float] = None
    medianColortermAtlas: Optional[float] = None
    nSolutionsApass: Optional[int] = None
    nSolutionsAtlas: Optional[int] = None
    nMagdepApass: Optional[int] = None
    nMagdepAtlas: Optional[int] = None
    resultIdApass: Optional[str] = None
    resultIdAtlas: Optional[str] = None


@dataclass_json
@dataclass
class PlateRecord:
    plateId: str
    series: str
    plateNumber: int
    plateClass: Optional[str] = None
    mosaic: Optional[MosaicRecord] = None
    astrometry: Optional[AstrometryRecord] = None
    photometry: Optional[PhotometryRecord] = None

    @classmethod
    def from_json_data(cls, data: dict) -> "PlateRecord":
        try:
            rec = cls.from_dict(data, infer_missing=True)
        except Exception as e:
            raise CorruptSource(f"malformed plate record: {e}") from e

        if rec.plateId is None or rec.series is None or rec.plateNumber is None:
            raise CorruptSource("plate record lacks its plateId, series, or plateNumber")

        return rec


# The in-memory model


@dataclass(frozen=True)
class PlateImage:
    """
    The full-resolution scanned mosaic of a plate.

    The astrometric solutions may describe an image that is rotated with
    respect to the mosaic as stored. The `width` and `height` here are in the
    astrometric frame; `rot_k` is the number of counterclockwise quarter-turns
    (as in `numpy.rot90`) that take the stored array to the astrometric one.
    """

    location: str
    width: int
    height: int
    rot_k: int = 0

    @property
    def stored_shape(self) -> Tuple[int, int]:
        if self.rot_k % 2:
            return (self.width, self.height)
        return (self.height, self.width)


@dataclass(frozen=True, eq=False)
class Exposure:
    """
    One exposure on a plate, with the mapping that locates it on the image.
    """

    plate_id: str
    "The ID of the plate holding this exposure."

    seq: int
    "The position of this exposure in the plate's exposure sequence."

    sol_num: int
    "The astrometric solution number, or -1 if this exposure has none."

    exp_num: int
    "The logbook exposure number, or -1 if this exposure has no logbook match."

    mapping: CoordinateMapping
    "The sky/pixel mapping for this exposure."

    bbox: PixelRegion
    "The pixel footprint of this exposure."

    approximate: bool = False
    "Whether the mapping was synthesized from a logbook center and nominal scale."

    record: Optional[ExposureRecord] = None
    "The logbook record, if any."

    @property
    def has_imaging(self) -> bool:
        return not self.approximate

    def __repr__(self) -> str:
        return (
            f"<Exposure {self.plate_id} seq={self.seq} sol={self.sol_num} "
            f"exp={self.exp_num}{' approx' if self.approximate else ''}>"
        )


@dataclass(frozen=True, eq=False)
class Plate:
    plate_id: str
    series: str
    plate_number: int
    image: Optional[PlateImage]
    exposures: Tuple[Exposure, ...]
    record: Optional[PlateRecord] = None

    @property
    def n_solutions(self) -> int:
        return sum(1 for e in self.exposures if e.has_imaging)

    def solved_exposures(self) -> List[Exposure]:
        return [e for e in self.exposures if e.has_imaging]

    def exposure_for_solution(self, sol_num: int) -> Optional[Exposure]:
        for e in self.exposures:
            if e.has_imaging and e.sol_num == sol_num:
                return e
        return None


def _rotation_k(rotation_delta: Optional[int]) -> int:
    if rotation_delta in (90, -270):
        # Sample plate: a01267, overlaps star: Polaris
        return -1
    elif rotation_delta in (180, -180):
        # Sample plates: ac12037 (+180), ac01895 (-180)
        return 2
    elif rotation_delta in (-90, 270):
        # Sample plate: ac01018, overlaps star: Polaris
        return 1
    return 0


def _mosaic_location(mosaic: MosaicRecord, plate_id: str) -> str:
    if mosaic.s3KeyTemplate:
        return mosaic.s3KeyTemplate.replace("{binning}", "01")
    return f"{plate_id}_01.fits.fz"


def _exposure_number(er: Optional[ExposureRecord]) -> int:
    if er is None or er.number is None:
        return -1
    return er.number


def plate_from_record(rec: PlateRecord, strict: bool = True) -> Plate:
    """
    Build the in-memory model of a plate from its archived record.

    Parameters
    ==========
    rec : `PlateRecord`
        The archived record.
    strict : optional bool
        If true (the default), undecodable astrometry raises
        `~daschscience.basics.CorruptSource`. Otherwise the problem is logged
        and the plate is treated as having no fitted solutions.
    """

    astrom = rec.astrometry
    rot_k = _rotation_k(astrom.rotationDelta if astrom is not None else None)

    if rec.mosaic is not None:
        w, h = rec.mosaic.b01Width, rec.mosaic.b01Height

        if rot_k % 2:
            w, h = h, w

        image = PlateImage(_mosaic_location(rec.mosaic, rec.plateId), w, h, rot_k)
    else:
        w = h = nominal_plate_size(rec.series)
        image = None

    mappings = []

    if astrom is not None and astrom.b01HeaderGz:
        try:
            mappings = load_solution_mappings(astrom.b01HeaderGz, astrom.nSolutions)
        except CorruptSource as e:
            if strict:
                raise CorruptSource(f"plate `{rec.plateId}`: {e}") from e
            logger.warning("ignoring astrometry of plate `%s`: %s", rec.plateId, e)

    logbook = astrom.exposures if astrom is not None else []
    exposures = []
    full = PixelRegion(0, w, 0, h)

    for sol_num, mapping in enumerate(mappings):
        er = logbook[sol_num] if sol_num < len(logbook) else None
        exposures.append(
            Exposure(
                rec.plateId,
                sol_num,
                sol_num,
                _exposure_number(er),
                mapping,
                full,
                False,
                er,
            )
        )

    # Logbook entries without a decoded solution get approximate mappings. If
    # the astrometry is missing or undecodable, that includes the entries in
    # the solved slots.
    n_sol_slots = len(mappings)
    ps = pixel_scale_deg(rec.series)
    naxis = max(w, h)

    for seq in range(n_sol_slots, len(logbook)):
        er = logbook[seq]
        if er is None or ps is None:
            continue

        center = er.center()
        if center is None:
            continue

        exposures.append(
            Exposure(
                rec.plateId,
                seq,
                -1,
                _exposure_number(er),
                approximate_mapping(center, ps, naxis),
                PixelRegion(0, naxis, 0, naxis),
                True,
                er,
            )
        )

    return Plate(
        rec.plateId,
        rec.series,
        rec.plateNumber,
        image,
        tuple(exposures),
        rec,
    )


# Stores


def check_plate_id(plate_id: str):
    if not isinstance(plate_id, str) or not PLATE_ID_RE.match(plate_id):
        raise ValueError(f"illegal plate ID {plate_id!r}")


class PlateStore:
    """
    A source of archived plate records.
    """

    def get_record(
        self, plate_id: str, deadline: Optional[Deadline] = None
    ) -> Optional[PlateRecord]:
        """
        Get the record for a plate, or None if there is no such plate.
        """
        raise NotImplementedError()


class MemoryPlateStore(PlateStore):
    records: Dict[str, PlateRecord]

    def __init__(self, records: Optional[List[PlateRecord]] = None):
        self.records = {}

        for rec in records or []:
            self.add(rec)

    def add(self, rec: PlateRecord):
        self.records[rec.plateId] = rec

    def get_record(
        self, plate_id: str, deadline: Optional[Deadline] = None
    ) -> Optional[PlateRecord]:
        return self.records.get(plate_id)


class JsonPlateStore(PlateStore):
    """
    Plate records stored as one JSON document per plate, named
    ``{plate_id}.json``, in a local directory or under an HTTP(S) base URL.
    """

    def __init__(self, location: str, fetcher: Optional[Fetcher] = None):
        self.location = location
        self.fetcher = fetcher or Fetcher()

    def get_record(
        self, plate_id: str, deadline: Optional[Deadline] = None
    ) -> Optional[PlateRecord]:
        check_plate_id(plate_id)
        deadline = Deadline.coerce(deadline)
        loc = join_location(self.location, f"{plate_id}.json")
        text = run_bounded(
            deadline,
            f"read plate record {plate_id}",
            self.fetcher.fetch_text,
            loc,
            deadline.remaining(),
        )

        if text is None:
            return None

        try:
            data = json.loads(text)
        except ValueError as e:
            raise CorruptSource(f"plate record `{loc}` is not valid JSON: {e}") from e

        return PlateRecord.from_json_data(data)


def load_plate(
    store: PlateStore,
    plate_id: str,
    deadline: Optional[Deadline] = None,
    strict: bool = True,
) -> Plate:
    """
    Load a plate from a store, raising `~daschscience.basics.NoSuchPlate` if
    it does not exist.
    """
    check_plate_id(plate_id)
    rec = store.get_record(plate_id, deadline)

    if rec is None:
        raise NoSuchPlate(f"no such plate_id `{plate_id}`")

    return plate_from_record(rec, strict=strict)
