# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

import pytest

from daschscience.timeutil import (
    dasch_isot_as_datetime,
    dasch_time_as_isot,
    exposure_midpoint,
)


def test_dasch_time_as_isot():
    assert dasch_time_as_isot("1905-03-04T05-06-07") == "1905-03-04T05:06:07"
    assert dasch_time_as_isot("1905-03-04T05:06:07Z") == "1905-03-04T05:06:07Z"


def test_naive_is_eastern():
    dt = dasch_isot_as_datetime("1905-03-04T05:06:07")
    assert dt.utcoffset().total_seconds() == -5 * 3600


@pytest.mark.parametrize(
    "text,expected,mjd",
    [
        ("1905-03-04T05:06:60.0", "1905-03-04T10:06:59", 16908.42153),
        ("1905-03-04T05:06:60.0Z", "1905-03-04T05:06:59", 16908.21319),
        ("1905-03-04T05-06-60.0", "1905-03-04T10:06:59", 16908.42153),
    ],
)
def test_sixty_seconds(text, expected, mjd):
    isot, mjd_obs = exposure_midpoint(text)
    assert isot.startswith(expected)
    assert mjd_obs == pytest.approx(mjd, abs=1e-4)


def test_midpoint_missing():
    assert exposure_midpoint(None) is None
    assert exposure_midpoint("") is None
    assert exposure_midpoint("not a date") is None
