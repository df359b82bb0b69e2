"""
Persistence Module
JSON document store for the fleet registry

Every operation runs inside one exclusive critical section:
load -> mutate in memory -> atomic save. A transaction that raises is
discarded, so callers never observe a partially applied mutation.
"""

import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from models import FleetDocument
from registry import FleetRegistry

logger = logging.getLogger(__name__)


class FleetStore:
    """
    Owns the persisted FleetDocument and serializes access to it

    With a path the document lives in a JSON file; without one it is kept in
    memory (used by tests and ephemeral runs).
    """

    def __init__(self, path: Optional[Union[str, Path]] = None,
                 document: Optional[FleetDocument] = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._document = document if document is not None else FleetDocument()

    def load(self) -> FleetDocument:
        """
        Read the current document

        Returns:
            A private copy; changes to it are not visible until saved
        """
        if self.path is None:
            return self._document.model_copy(deep=True)

        if not self.path.exists():
            return FleetDocument()

        return FleetDocument.model_validate_json(self.path.read_text(encoding="utf-8"))

    def save(self, document: FleetDocument) -> None:
        """Persist a document, replacing the file atomically"""
        if self.path is None:
            self._document = document.model_copy(deep=True)
            return

        payload = document.model_dump_json(by_alias=True, indent=2)
        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    @contextmanager
    def transaction(self) -> Iterator[FleetRegistry]:
        """
        Exclusive read-modify-write over the registry

        The document is saved only if the block exits normally.
        """
        with self._lock:
            registry = FleetRegistry(self.load())
            yield registry
            self.save(registry.document)

    @contextmanager
    def snapshot(self) -> Iterator[FleetRegistry]:
        """Exclusive read-only view; nothing is saved"""
        with self._lock:
            yield FleetRegistry(self.load())

    def migrate(self) -> int:
        """Run the startup migration and persist its result"""
        with self.transaction() as registry:
            migrated = registry.migrate()
            next_order = registry.document.next_order_number

        logger.info("Migration: ensured nextOrderNumber=%d, numbered %d flights",
                    next_order, migrated)
        return migrated
