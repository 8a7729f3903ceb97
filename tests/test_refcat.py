# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

import pytest

from daschscience.basics import CorruptSource, SkyPoint, StorageUnavailable
from daschscience.gscbin import GscBinning
from daschscience.refcat import (
    CATALOG_COLUMNS,
    MAX_SEARCH_RADIUS_DEG,
    CatalogSource,
    CatalogStore,
    CsvCatalogStore,
    MemoryCatalogStore,
    format_catalog_lines,
    parse_catalog_lines,
    query_catalog,
)
from daschscience.timeouts import Deadline

R = 10 / 3600.0


def test_center_and_far():
    center = SkyPoint(10.5, 20.5)
    far = SkyPoint(10.5, 20.5 + 2 * R)
    store = MemoryCatalogStore.from_points([center, far])

    matches = query_catalog(store, center, R)
    assert [m.source.ref_number for m in matches] == [1]
    assert matches[0].separation_deg == pytest.approx(0.0, abs=1e-12)


def test_sorted_by_separation():
    center = SkyPoint(150.0, -30.0)
    points = [
        SkyPoint(150.0, -30.0 + 0.8 * R),
        SkyPoint(150.0, -30.0 + 0.2 * R),
        SkyPoint(150.0, -30.0 - 0.5 * R),
        SkyPoint(150.0, -30.0 + 1.5 * R),
    ]
    store = MemoryCatalogStore.from_points(points)

    matches = query_catalog(store, center, R)
    assert [m.source.ref_number for m in matches] == [2, 3, 1]

    seps = [m.separation_deg for m in matches]
    assert seps == sorted(seps)
    assert all(s <= R for s in seps)


def test_ties_by_refnum():
    center = SkyPoint(40.0, 10.0)
    p = SkyPoint(40.0, 10.0 + 0.5 * R)
    sources = [
        CatalogSource(30, p, 0),
        CatalogSource(10, p, 0),
        CatalogSource(20, p, 0),
    ]
    store = MemoryCatalogStore.from_sources(sources)
    assert [m.source.ref_number for m in query_catalog(store, center, R)] == [10, 20, 30]


def test_across_ra_zero():
    center = SkyPoint(0.0005, 0.0)
    west = SkyPoint(359.9995, 0.0)
    store = MemoryCatalogStore.from_points([west])

    (m,) = query_catalog(store, center, R)
    assert m.separation_deg == pytest.approx(0.001, rel=1e-6)
    assert m.dra_asec == pytest.approx(3.6, rel=1e-4)
    assert m.ddec_asec == pytest.approx(0.0, abs=1e-9)


def test_near_pole():
    center = SkyPoint(0.0, 89.999)
    other = SkyPoint(180.0, 89.999)
    store = MemoryCatalogStore.from_points([other])

    (m,) = query_catalog(store, center, 8 / 3600)
    assert m.separation_deg == pytest.approx(0.002, rel=1e-4)


def test_zero_radius():
    p = SkyPoint(1.0, 1.0)
    store = MemoryCatalogStore.from_points([p])
    assert len(query_catalog(store, p, 0.0)) == 1


def test_bad_radius():
    store = MemoryCatalogStore()

    with pytest.raises(ValueError):
        query_catalog(store, SkyPoint(0, 0), -1.0)


def test_radius_limit():
    store = MemoryCatalogStore.from_points([SkyPoint(0, 0)])
    assert len(query_catalog(store, SkyPoint(0, 0.5), MAX_SEARCH_RADIUS_DEG)) == 1

    with pytest.raises(ValueError):
        query_catalog(store, SkyPoint(0, 0), 180.0)


def test_empty():
    assert query_catalog(MemoryCatalogStore(), SkyPoint(0, 0), R) == []


def test_concurrent_scans_agree():
    center = SkyPoint(300.0, 45.0)
    points = [SkyPoint(300.0 + 0.0003 * i, 45.0 + 0.0002 * (i % 7)) for i in range(40)]
    store = MemoryCatalogStore.from_points(points)

    a = query_catalog(store, center, 0.01)
    b = query_catalog(store, center, 0.01, Deadline(30.0), max_workers=8)
    assert [m.source.ref_number for m in a] == [m.source.ref_number for m in b]
    assert len(a) > 10


class _BrokenStore(CatalogStore):
    binning = GscBinning.new64()

    def scan_bin(self, total_bin, deadline=None):
        raise StorageUnavailable("bucket offline")


def test_storage_failure_propagates():
    with pytest.raises(StorageUnavailable):
        query_catalog(_BrokenStore(), SkyPoint(10, 10), R)


# Stored bins


CSV_HEADER = "refNumber,ra,dec,raPM,decPM,stdmag,color,class,vFlag,numMatches"


def test_parse_lines():
    lines = [
        CSV_HEADER,
        "412345671000000,10.5,20.5,1.5,-2.0,12.3,0.6,3,0,5",
        "2,junk,20.5,,,,,,,",
        "3,10.6,20.6,,,,,,,",
        "",
    ]
    sources = parse_catalog_lines(lines, 77)
    assert [s.ref_number for s in sources] == [412345671000000, 3]
    assert sources[0].gsc_bin_index == 77
    assert sources[0].ref_text == "APASS_J123456.7+000000"
    assert sources[0].fields["stdmag"] == "12.3"


def test_parse_missing_column():
    with pytest.raises(CorruptSource):
        parse_catalog_lines(["refNumber,ra", "1,2"], 0)


def test_csv_store(tmp_path):
    center = SkyPoint(10.5, 20.5)
    binning = GscBinning.new64()
    b = binning.bin_of(center)
    (tmp_path / f"{b}.csv").write_text(
        CSV_HEADER
        + "\n"
        + "2757614,10.5,20.5,,,11.0,,,,\n"
        + f"2757615,10.5,{20.5 + 2 * R},,,11.0,,,,\n"
    )

    store = CsvCatalogStore(str(tmp_path))
    matches = query_catalog(store, center, R)
    assert [m.source.ref_text for m in matches] == ["K757614"]


def test_format_lines():
    center = SkyPoint(10.5, 20.5)
    lines = [CSV_HEADER, "412345671000000,10.5,20.5,1.5,,12.3,bad,3,,5"]
    sources = parse_catalog_lines(lines, 123)
    store = MemoryCatalogStore.from_sources(sources)
    out = format_catalog_lines(query_catalog(store, center, R))

    assert out[0].split(",") == CATALOG_COLUMNS
    assert len(out) == 2

    row = dict(zip(CATALOG_COLUMNS, out[1].split(",")))
    assert len(row) == len(CATALOG_COLUMNS)
    assert row["ref_text"] == "APASS_J123456.7+000000"
    assert row["ref_number"] == "412345671000000"
    assert row["gsc_bin_index"] == "123"
    assert float(row["ra_deg"]) == 10.5
    assert row["pm_ra_masyr"] == "1.5"
    assert row["pm_dec_masyr"] == "nan"
    assert row["stdmag"] == "12.3"
    assert row["color"] == "nan"
    assert row["class"] == "3"
    assert row["v_flag"] == "0"
    assert row["num_matches"] == "5"


def test_format_empty():
    assert format_catalog_lines([]) == [",".join(CATALOG_COLUMNS)]
