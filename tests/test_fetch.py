# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

import pytest

from daschscience.basics import StorageUnavailable
from daschscience.fetch import Fetcher, is_url, join_location


def test_join_location():
    assert join_location("https://example.com/cat/", "12.csv") == "https://example.com/cat/12.csv"
    assert join_location("http://example.com/cat", "12.csv") == "http://example.com/cat/12.csv"
    assert join_location("/data/cat", "12.csv") == "/data/cat/12.csv"
    assert is_url("https://x")
    assert not is_url("/https/x")


def test_headers():
    f = Fetcher("sekrit")
    assert f._session.headers["x-api-key"] == "sekrit"
    assert f._session.headers["User-Agent"] == "daschscience"
    assert "x-api-key" not in Fetcher()._session.headers


def test_local(tmp_path):
    (tmp_path / "a.txt").write_text("hello\n")
    f = Fetcher()
    assert f.fetch_text(str(tmp_path / "a.txt")) == "hello\n"
    assert f.fetch_text(str(tmp_path / "missing.txt")) is None


def test_local_unreadable(tmp_path):
    # A directory exists but cannot be read as text
    with pytest.raises(StorageUnavailable):
        Fetcher().fetch_text(str(tmp_path))
