"""Per-user directory session: holds the current load, replaced only whole."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from roster.config import DirectorySettings
from roster.ingestion.loader import DirectoryLoad, LoadError, load_directory

logger = logging.getLogger(__name__)

Loader = Callable[[str, DirectorySettings], DirectoryLoad]


class DirectorySession:
    """
    One user's view of the directory.

    `current` is only ever swapped for a fully built DirectoryLoad. A failed
    load records `last_error` and leaves `current` as it was.
    """

    def __init__(self, settings: DirectorySettings, loader: Loader = load_directory):
        self.settings = settings
        self._loader = loader
        self.current: Optional[DirectoryLoad] = None
        self.last_error: Optional[LoadError] = None
        self.pending: bool = False

    @property
    def admin(self) -> bool:
        return self.current is not None and self.current.admin

    def submit(self, access_code: str) -> bool:
        """
        Run one load attempt. Returns True when `current` was replaced.

        A submission while another is pending is refused.
        """
        if self.pending:
            logger.info("[session] load already pending; submission ignored")
            return False

        self.pending = True
        try:
            loaded = self._loader(access_code, self.settings)
        except LoadError as e:
            logger.warning("[session] load failed: %s", e.reason)
            self.last_error = e
            return False
        finally:
            self.pending = False

        self.current = loaded
        self.last_error = None
        return True

    def replace(self, loaded: DirectoryLoad) -> None:
        """Adopt a directory built outside submit(), e.g. from an uploaded export."""
        self.current = loaded
        self.last_error = None
