# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
The toplevel Python module of the ``daschscience`` package.

daschscience implements the science data services of DASCH_, the effort to
scan Harvard College Observatory’s collection of `astronomical glass plates`_.
It answers three kinds of questions about the archive:

- ``cutout``: give me a small FITS image of a plate, centered on a sky position;
- ``querycat``: which reference-catalog sources lie near a sky position;
- ``queryexps``: which plate exposures actually cover a sky position.

.. _DASCH: https://dasch.cfa.harvard.edu/
.. _astronomical glass plates: https://platestacks.cfa.harvard.edu/

The entry point is the `Services` class, which binds the services to a set of
archive stores. For deployments configured through the environment::

   from daschscience import Services

   svc = Services.from_environ()
   lines = svc.dispatch("querycat", {"ra_deg": 10.68, "dec_deg": 41.27, "radius_arcsec": 60})

Request transport (HTTP, serverless invocation envelopes, and so on) is left
to the caller: `Services.dispatch` takes and returns JSON-compatible values.
"""

from dataclasses import dataclass
import logging
from typing import Dict, List, Optional, Union

from astropy.coordinates import Angle
from astropy import units as u
from marshmallow import ValidationError

from .basics import (
    AmbiguousExposure,
    CorruptSource,
    DaschError,
    NoImaging,
    NoSuchPlate,
    OutOfDomain,
    PixelCoord,
    PixelRegion,
    PointNotOnExposure,
    RegionEmpty,
    SkyPoint,
    StorageUnavailable,
    Timeout,
)
from .config import ServiceConfig
from .cutouts import CutoutResult, assemble_cutout
from .exposures import (
    CoverageIndex,
    CsvCoverageIndex,
    ExposureMatch,
    format_exposure_lines,
    pick_exposure,
    query_exposures_near,
    resolve_exposures,
)
from .fetch import Fetcher
from .mosaics import FitsImageStore, ImageStore
from .plates import JsonPlateStore, Plate, PlateStore, load_plate
from .query import CutoutRequest, QueryCatRequest, QueryExpsRequest
from .refcat import (
    SUPPORTED_REFCATS,
    CatalogMatch,
    CatalogStore,
    CsvCatalogStore,
    format_catalog_lines,
    query_catalog,
)
from .region import CutoutSize, plan_region
from .timeouts import Deadline

__all__ = [
    "__version__",
    "AmbiguousExposure",
    "CorruptSource",
    "CutoutSize",
    "DaschError",
    "ExposureQueryResult",
    "NoImaging",
    "NoSuchPlate",
    "OutOfDomain",
    "PixelCoord",
    "PixelRegion",
    "PointNotOnExposure",
    "RegionEmpty",
    "SUPPORTED_REFCATS",
    "Services",
    "SkyPoint",
    "StorageUnavailable",
    "Timeout",
    "configure_logging",
]

__version__ = "0.1.0"  # cranko project-version

logger = logging.getLogger(__name__)


def configure_logging(level: Union[int, str] = "INFO"):
    """
    Send this package's log messages to standard error.

    Messages are not timestamped, since the hosting environment generally adds
    its own timestamps. Calling this more than once only updates the level.
    """
    pkg_logger = logging.getLogger(__name__)

    if not pkg_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        pkg_logger.addHandler(handler)

    if isinstance(level, str):
        level = level.upper()

    pkg_logger.setLevel(level)


@dataclass
class ExposureQueryResult:
    matches: List[ExposureMatch]
    "The covering exposures, ordered by plate ID and exposure sequence number."

    plates: Dict[str, Plate]
    "The plates holding the matched exposures, keyed by plate ID."

    def to_lines(self) -> List[str]:
        return format_exposure_lines(self.matches, self.plates)


class Services:
    """
    The DASCH science services, bound to a set of archive stores.

    Parameters
    ==========
    config : optional `~daschscience.config.ServiceConfig`
        Default timeouts, concurrency, and cutout size. If unspecified, the
        defaults of `~daschscience.config.ServiceConfig` are used.
    plates : optional `~daschscience.plates.PlateStore`
        The plate metadata. Required for cutouts and exposure queries.
    images : optional `~daschscience.mosaics.ImageStore`
        The plate mosaics. Required for cutouts.
    refcats : optional dict of `~daschscience.refcat.CatalogStore`
        The reference catalogs, keyed by name (``"apass"``, ``"atlas"``).
    coverage : optional `~daschscience.exposures.CoverageIndex`
        The exposure coverage index. Required for archive-wide exposure
        queries.
    """

    config: ServiceConfig
    plates: Optional[PlateStore]
    images: Optional[ImageStore]
    refcats: Dict[str, CatalogStore]
    coverage: Optional[CoverageIndex]

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        plates: Optional[PlateStore] = None,
        images: Optional[ImageStore] = None,
        refcats: Optional[Dict[str, CatalogStore]] = None,
        coverage: Optional[CoverageIndex] = None,
    ):
        self.config = config or ServiceConfig()
        self.plates = plates
        self.images = images
        self.refcats = dict(refcats or {})
        self.coverage = coverage

    @classmethod
    def from_environ(cls, environ=None) -> "Services":
        """
        Set up the services from the environment, as described in
        `daschscience.config`. This also configures logging.
        """
        config = ServiceConfig.from_environ(environ)
        configure_logging(config.log_level)

        fetcher = Fetcher(config.api_key)
        plates = JsonPlateStore(config.plates, fetcher) if config.plates else None
        images = FitsImageStore(config.mosaics) if config.mosaics else None
        coverage = CsvCoverageIndex(config.coverage, fetcher) if config.coverage else None
        refcats = {}

        for name in SUPPORTED_REFCATS:
            loc = config.refcat_location(name)
            if loc:
                refcats[name] = CsvCatalogStore(loc, fetcher)

        return cls(config, plates, images, refcats, coverage)

    def _deadline(self, timeout: Optional[float]) -> Deadline:
        return Deadline(timeout if timeout is not None else self.config.timeout)

    def _require(self, value, what: str):
        if value is None:
            raise RuntimeError(f"the DASCH services were set up without {what}")
        return value

    def cutout(
        self,
        plate_id: str,
        center: SkyPoint,
        size: Optional[CutoutSize] = None,
        solution_number: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> CutoutResult:
        """
        Make a cutout of a plate centered on a sky position.

        Parameters
        ==========
        plate_id : str
            The plate ID, e.g. ``"a01234"``.
        center : `~daschscience.basics.SkyPoint`
            The center of the cutout.
        size : optional `~daschscience.region.CutoutSize`
            The half-size of the cutout. Defaults to the configured angular
            half-size (600 arcsec unless overridden).
        solution_number : optional int
            The astrometric solution (0-based) to use. If unspecified, the
            first solved exposure covering *center* is used, and the result
            is flagged as ambiguous if there is more than one.
        timeout : optional float
            The time limit in seconds. Defaults to the configured timeout.

        Returns
        =======
        A `~daschscience.cutouts.CutoutResult`.

        Raises
        ======
        NoSuchPlate, NoImaging, PointNotOnExposure, RegionEmpty,
        StorageUnavailable, Timeout, CorruptSource
            As described in `daschscience.basics`.
        ValueError
            If *solution_number* is out of range.
        """

        plates = self._require(self.plates, "a plate store")
        images = self._require(self.images, "an image store")
        deadline = self._deadline(timeout)

        if size is None:
            size = CutoutSize.angular(self.config.cutout_halfsize_arcsec * u.arcsec)

        plate = load_plate(plates, plate_id, deadline)

        if plate.image is None:
            raise NoImaging(
                f"plate `{plate_id}` has no registered FITS mosaic information (never scanned?)"
            )

        n_sol = plate.n_solutions
        if n_sol == 0:
            raise NoImaging(f"plate `{plate_id}` has no registered astrometric solutions")

        ambiguous = False

        if solution_number is not None:
            if solution_number < 0 or solution_number >= n_sol:
                raise ValueError(
                    f"requested astrometric solution #{solution_number} (0-based) for plate "
                    f"`{plate_id}` but it only has {n_sol} solution(s)"
                )

            exposure = plate.exposure_for_solution(solution_number)
        else:
            matches = resolve_exposures(
                plate.solved_exposures(), center, deadline, self.config.max_workers
            )
            match, ambiguous = pick_exposure(matches)
            exposure = match.exposure

        plan = plan_region(
            exposure.mapping,
            center,
            size,
            plate.image.width,
            plate.image.height,
            deadline=deadline,
            max_workers=self.config.max_workers,
        )

        return assemble_cutout(images, plate, exposure, plan, deadline, ambiguous)

    def querycat(
        self,
        center: SkyPoint,
        radius: u.Quantity,
        refcat: str = "apass",
        timeout: Optional[float] = None,
    ) -> List[CatalogMatch]:
        """
        Find the reference-catalog sources within a radius of a position,
        nearest first.
        """

        if refcat not in SUPPORTED_REFCATS:
            raise ValueError(
                f"unsupported refcat {refcat!r}; expect one of {sorted(SUPPORTED_REFCATS)}"
            )

        store = self._require(self.refcats.get(refcat), f"the `{refcat}` catalog")
        radius_deg = Angle(radius).deg
        return query_catalog(
            store,
            center,
            radius_deg,
            self._deadline(timeout),
            self.config.max_workers,
        )

    def queryexps(
        self,
        center: SkyPoint,
        plate_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ExposureQueryResult:
        """
        Find the exposures covering a position.

        If *plate_id* is given, only that plate's exposures are considered;
        otherwise the whole archive is searched through the coverage index.
        An empty result is not an error.
        """

        plates = self._require(self.plates, "a plate store")
        deadline = self._deadline(timeout)

        if plate_id is not None:
            plate = load_plate(plates, plate_id, deadline)
            matches = resolve_exposures(
                plate.exposures, center, deadline, self.config.max_workers
            )
            return ExposureQueryResult(matches, {plate.plate_id: plate})

        coverage = self._require(self.coverage, "an exposure coverage index")
        matches, by_id = query_exposures_near(
            center, coverage, plates, deadline, self.config.max_workers
        )
        return ExposureQueryResult(matches, by_id)

    def dispatch(self, endpoint: str, payload: Optional[dict]) -> Union[str, List[str]]:
        """
        Handle one service request given as JSON data.

        Parameters
        ==========
        endpoint : str
            The service name: ``"cutout"``, ``"querycat"``, or
            ``"queryexps"``. Any path prefix, as in ``"/dasch/dr7/cutout"``, is
            ignored.
        payload : dict
            The request parameters.

        Returns
        =======
        For ``cutout``, the Base64 text of the gzipped FITS file. For the
        others, a list of CSV lines, header first.

        Raises
        ======
        ValueError
            If the endpoint is unknown or the payload is invalid.
        DaschError
            If the request could not be served.
        """

        name = endpoint.rsplit("/", 1)[-1]
        logger.info("*** request: %s", name)

        if name == "cutout":
            req = _load(CutoutRequest, payload)

            if req.halfsize_pixels is not None:
                size = CutoutSize.pixels(req.halfsize_pixels)
            elif req.halfsize_arcsec is not None:
                size = CutoutSize.angular(req.halfsize_arcsec * u.arcsec)
            else:
                size = None

            result = self.cutout(
                req.plate_id, req.center(), size, req.solution_number
            )
            return result.to_payload()
        elif name == "querycat":
            req = _load(QueryCatRequest, payload)
            matches = self.querycat(req.center(), req.radius_arcsec * u.arcsec, req.refcat)
            return format_catalog_lines(matches)
        elif name == "queryexps":
            req = _load(QueryExpsRequest, payload)
            return self.queryexps(req.center(), req.plate_id).to_lines()

        raise ValueError(f"unhandled function: {endpoint}")


def _load(cls, payload: Optional[dict]):
    if payload is None:
        raise ValueError(f"{cls.__name__} requires a payload")

    try:
        req = cls.schema().load(payload)
    except ValidationError as e:
        raise ValueError(f"invalid {cls.__name__}: {e.messages}") from e

    req.validate()
    return req
