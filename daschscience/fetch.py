# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Centralized code for reading archive data from local files or over HTTP.

The plate, catalog, and coverage stores all keep their data as small text
documents addressed by a location that is either a filesystem path or an
``http(s)://`` URL. This module gives them one place to turn a location into
text, with consistent error semantics:

- a document that does not exist yields None;
- a request that runs past its timeout raises `~daschscience.basics.Timeout`;
- any other failure raises `~daschscience.basics.StorageUnavailable`.
"""

import logging
import os
from typing import Optional

import requests

from .basics import StorageUnavailable, Timeout

__all__ = ["Fetcher", "join_location"]

logger = logging.getLogger(__name__)


def is_url(location: str) -> bool:
    return location.startswith("http://") or location.startswith("https://")


def join_location(base: str, name: str) -> str:
    if is_url(base):
        return base.rstrip("/") + "/" + name
    return os.path.join(base, name)


class Fetcher:
    api_key: Optional[str] = None
    debug: bool = False

    def __init__(self, api_key: Optional[str] = None):
        if api_key:
            self.api_key = api_key

        self._session = requests.Session()
        self._session.headers["User-Agent"] = "daschscience"

        if self.api_key:
            self._session.headers["x-api-key"] = self.api_key

    def fetch_text(
        self, location: str, timeout: Optional[float] = None
    ) -> Optional[str]:
        """
        Get the contents of a text document, or None if it does not exist.

        The *timeout* applies to HTTP requests only.
        """

        if self.debug:
            logger.debug("fetch %s (timeout %s)", location, timeout)

        if is_url(location):
            return self._fetch_web(location, timeout)
        else:
            return self._fetch_local(location)

    def _fetch_local(self, path: str) -> Optional[str]:
        try:
            with open(path, "rt", encoding="utf8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"error reading `{path}`: {e}") from e

    def _fetch_web(self, url: str, timeout: Optional[float]) -> Optional[str]:
        try:
            with self._session.get(url, timeout=timeout, allow_redirects=True) as resp:
                if resp.status_code == 404:
                    return None

                resp.raise_for_status()
                return resp.text
        except requests.Timeout as e:
            raise Timeout(f"GET {url}", timeout or 0.0) from e
        except requests.RequestException as e:
            raise StorageUnavailable(f"error fetching `{url}`: {e}") from e
