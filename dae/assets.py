"""Locating data files such as geo databases on disk."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .consts import APP_NAME

logger = logging.getLogger(__name__)

CACHE_TIMEOUT = 5.0  # seconds


@dataclass
class _CacheItem:
    path: str
    deadline: float


def _join(directory: str, filename: str) -> str:
    if not directory:
        return os.path.normpath(filename)
    return os.path.normpath(os.path.join(directory, filename.lstrip(os.sep)))


def _xdg_data_dirs() -> List[str]:
    home = os.environ.get("XDG_DATA_HOME") or os.path.join(
        os.path.expanduser("~"), ".local", "share"
    )
    dirs_env = os.environ.get("XDG_DATA_DIRS", "")
    dirs = [d for d in dirs_env.split(os.pathsep) if d] or ["/usr/local/share", "/usr/share"]
    return [home, *dirs]


class LocationFinder:
    """Finds asset files in a list of directories, caching hits briefly."""

    def __init__(self, extern_dirs: Optional[Iterable[str]] = None):
        self.extern_dirs = list(extern_dirs or [])
        self._lock = threading.Lock()
        self._cache: Dict[str, _CacheItem] = {}

    def search_dirs(self) -> List[str]:
        """Return the directories searched, in order."""
        location = os.environ.get("DAE_LOCATION_ASSET", "")
        if location:
            dirs = [location, *self.extern_dirs]
            if os.name != "nt":
                dirs += [
                    os.path.join("/usr/local/share", APP_NAME),
                    os.path.join("/usr/share", APP_NAME),
                ]
            dirs += self.extern_dirs
            return dirs
        dirs = list(self.extern_dirs)
        if os.name != "nt":
            dirs += [os.path.join(d, APP_NAME) for d in _xdg_data_dirs()]
        else:
            dirs.append(os.path.abspath("./"))
        return dirs

    def get_location_asset(self, filename: str) -> str:
        """Return the path of the first existing ``filename`` in the search dirs.

        Raises FileNotFoundError when it is in none of them.
        """
        with self._lock:
            now = time.monotonic()
            item = self._cache.get(filename)
            if item is not None and now < item.deadline:
                return item.path
            self._cache = {k: v for k, v in self._cache.items() if now < v.deadline}
            path = self._search(filename)
            self._cache[filename] = _CacheItem(path, time.monotonic() + CACHE_TIMEOUT)
            return path

    def _search(self, filename: str) -> str:
        dirs = self.search_dirs()
        logger.debug('Search "%s" in [%s]', filename, ", ".join(dirs))
        for directory in dirs:
            candidate = _join(directory, filename)
            try:
                os.stat(candidate)
            except FileNotFoundError:
                continue
            logger.debug('Found "%s" at %s', filename, candidate)
            return candidate
        raise FileNotFoundError(
            f"{filename}: file does not exist in [{', '.join(dirs)}]"
        )