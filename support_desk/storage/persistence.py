"""Crash-safe JSON snapshot files."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import PersistenceError
from ..models import VectorRecord

logger = logging.getLogger(__name__)


class JsonSnapshot:
    """A single JSON array rewritten in full on every save.

    Saves go to a temporary file in the same directory which is then renamed
    over the snapshot, so a crash mid-write leaves the previous snapshot
    intact.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def save(self, items: List[Dict[str, Any]]) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise PersistenceError(f"Could not write snapshot {self.path}: {exc}") from exc
        logger.debug("Saved %d items to %s", len(items), self.path)

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            logger.info("No snapshot found at %s", self.path)
            return []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", self.path, exc)
            return []
        if not isinstance(payload, list):
            logger.warning("Ignoring snapshot %s: expected a JSON array", self.path)
            return []
        return [item for item in payload if isinstance(item, dict)]

    def exists(self) -> bool:
        return self.path.exists()

    def last_modified(self) -> Optional[datetime]:
        if not self.path.exists():
            return None
        return datetime.fromtimestamp(self.path.stat().st_mtime, tz=timezone.utc)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Removed snapshot %s", self.path)


class VectorPersistence:
    """Stores the full set of :class:`VectorRecord` objects as one snapshot."""

    def __init__(self, path: str | Path) -> None:
        self.snapshot = JsonSnapshot(path)

    @property
    def path(self) -> Path:
        return self.snapshot.path

    def save(self, records: List[VectorRecord]) -> None:
        self.snapshot.save([record.to_dict() for record in records])
        logger.info("Saved %d vectors to %s", len(records), self.path)

    def load(self) -> List[VectorRecord]:
        records: List[VectorRecord] = []
        for item in self.snapshot.load():
            try:
                records.append(VectorRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed vector record in %s: %s", self.path, exc)
        logger.info("Loaded %d vectors from %s", len(records), self.path)
        return records
