# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Configuration of the DASCH science services.

Settings can come from a JSON file named by the ``DASCHSCI_CONFIG`` environment
variable, and then be overridden by individual environment variables:

=========================  ==========================================
Variable                   Setting
=========================  ==========================================
``DASCHSCI_PLATES``        Location of the plate records
``DASCHSCI_MOSAICS``       Root directory of the plate mosaics
``DASCHSCI_REFCAT_APASS``  Location of the APASS catalog bins
``DASCHSCI_REFCAT_ATLAS``  Location of the ATLAS catalog bins
``DASCHSCI_COVERAGE``      Location of the exposure coverage bins
``DASCHSCI_API_KEY``       Key sent with HTTP requests to archive storage
``DASCHSCI_TIMEOUT``       Default per-request timeout, in seconds
``DASCHSCI_MAX_WORKERS``   Concurrency of scans and transforms
``DASCHSCI_LOG_LEVEL``     Logging level name
=========================  ==========================================
"""

from dataclasses import dataclass
import json
import os
from typing import Mapping, Optional

from dataclasses_json import dataclass_json
from marshmallow import ValidationError

__all__ = ["ServiceConfig"]

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 4

CUTOUT_HALFSIZE = 600
"The default cutout half-size, in arcseconds."

_ENV_PREFIX = "DASCHSCI_"


@dataclass_json
@dataclass
class ServiceConfig:
    plates: Optional[str] = None
    mosaics: Optional[str] = None
    refcat_apass: Optional[str] = None
    refcat_atlas: Optional[str] = None
    coverage: Optional[str] = None
    api_key: Optional[str] = None
    timeout: Optional[float] = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    cutout_halfsize_arcsec: float = CUTOUT_HALFSIZE
    log_level: str = "INFO"

    def validate(self):
        if self.timeout is not None and not self.timeout > 0:
            raise ValueError(f"illegal timeout {self.timeout!r}")

        if self.max_workers < 1:
            raise ValueError(f"illegal max_workers {self.max_workers!r}")

        if not self.cutout_halfsize_arcsec > 0:
            raise ValueError(f"illegal cutout_halfsize_arcsec {self.cutout_halfsize_arcsec!r}")

    def refcat_location(self, refcat: str) -> Optional[str]:
        return getattr(self, f"refcat_{refcat}", None)

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        if environ is None:
            environ = os.environ

        data = {}
        path = environ.get(_ENV_PREFIX + "CONFIG")

        if path:
            with open(path, "rt", encoding="utf8") as f:
                data = json.load(f)

        for name in (
            "plates",
            "mosaics",
            "refcat_apass",
            "refcat_atlas",
            "coverage",
            "api_key",
            "timeout",
            "max_workers",
            "cutout_halfsize_arcsec",
            "log_level",
        ):
            value = environ.get(_ENV_PREFIX + name.upper())
            if value:
                data[name] = value

        # Environment values are all text; the schema coerces them.
        try:
            cfg = cls.schema().load(data)
        except ValidationError as e:
            raise ValueError(f"invalid service configuration: {e.messages}") from e

        cfg.validate()
        return cfg

