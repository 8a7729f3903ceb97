# Copyright the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Utilities for dealing with DASCH dates and times.
"""

from datetime import datetime
import re
import sys
from typing import Optional, Tuple

from astropy.time import Time
from pytz import timezone


__all__ = [
    "dasch_time_as_isot",
    "dasch_isot_as_datetime",
    "dasch_isot_as_astropy",
    "exposure_midpoint",
]


FRACTIONAL_SECOND_RE = re.compile(r"(.*)T(\d+:\d+:\d+)\.(\d+)(Z?)")


def dasch_time_as_isot(t: str) -> str:
    """
    Convert a "DASCH time", which uses hyphens everywhere, to a proper
    ISO-8601-"T" form.
    """
    bits = t.split("T", 1)
    bits[-1] = bits[-1].replace("-", ":")
    return "T".join(bits)


def dasch_isot_as_datetime(date: str) -> Optional[datetime]:
    """
    Convert a DASCH ISO-8601-"T" datetime to a Python datetime object. DASCH
    ISO-T times may incorrectly end with a seconds field of ":60.0" due to a bug
    in the creation of some database.
    """

    if not date:
        return None

    # Work around timestamp formatting bug in the legacy exposure data table

    if date.endswith(":60.0"):
        date = date[:-4] + "59.9"

    if date.endswith(":60.0Z"):
        date = date[:-5] + "59.9Z"

    # Before Python 3.11, datetime.fromisoformat() can't handle fractional
    # seconds. Our timestamps aren't trustworthy to sub-second precision
    # anyway, so just truncate.
    if (sys.version_info.major * 100 + sys.version_info.minor) < 311:
        m = FRACTIONAL_SECOND_RE.match(date)

        if m is not None:
            date = f"{m[1]}T{m[2]}{m[4]}"

    if date.endswith("Z"):
        date = date[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(date)
    except ValueError as e:
        raise ValueError(f"failed to parse ISO8601 'T' format {date!r}") from e

    if dt.tzinfo is None:
        # Untagged DASCH timestamps are all in this timezone:
        tz = timezone("US/Eastern")
        dt = tz.localize(dt)

    return dt


def dasch_isot_as_astropy(date: str) -> Time:
    """
    Convert a single DASCH ISO-8601-"T" date string to an Astropy Time instance.
    Unlike `dasch_isot_as_datetime`, empty inputs are not allowed.
    """

    dt = dasch_isot_as_datetime(date)
    if dt is None:
        raise ValueError(f"illegal DASCH ISO8601T datetime input: {date!r}")

    return Time(dt, format="datetime")


def exposure_midpoint(date: Optional[str]) -> Optional[Tuple[str, float]]:
    """
    Get the FITS ``DATE-OBS`` text and the MJD of an exposure midpoint, or None
    if the date is missing or unparseable.
    """
    if not date:
        return None

    try:
        t = dasch_isot_as_astropy(dasch_time_as_isot(date))
    except ValueError:
        return None

    t = t.utc
    return t.isot, float(t.mjd)
