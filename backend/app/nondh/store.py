"""Record Store: one JSON file per parcel, replaced atomically.

The engine never talks to storage.  Callers load a snapshot with
``get()``, hand it to the engine, and persist the returned snapshot with
``replace_all()``.  There is no partial-update contract.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path

from app.config import RECORDS_DIR
from app.nondh.models import ParcelSnapshot

logger = logging.getLogger(__name__)

# Parcel ids become file names: nothing that could escape the directory
_PARCEL_ID = re.compile(r'^[A-Za-z0-9_-]+$')


def validate_parcel_id(parcel_id: str) -> str:
    if not isinstance(parcel_id, str) or not _PARCEL_ID.match(parcel_id):
        raise ValueError(f"Invalid parcel id {parcel_id!r}")
    return parcel_id


class RecordStore:
    """Durable storage of parcel snapshots under a single directory."""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory) if directory else RECORDS_DIR
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, parcel_id: str) -> Path:
        return self.directory / f"{validate_parcel_id(parcel_id)}.json"

    def exists(self, parcel_id: str) -> bool:
        try:
            return self._path(parcel_id).exists()
        except ValueError:
            return False

    def list_parcels(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json") if _PARCEL_ID.match(p.stem))

    def get(self, parcel_id: str) -> ParcelSnapshot:
        """Load a parcel's snapshot; raises FileNotFoundError for unknown parcels."""
        path = self._path(parcel_id)
        if not path.exists():
            raise FileNotFoundError(f"Parcel {parcel_id} not found")
        data = json.loads(path.read_text(encoding="utf-8"))
        data["parcel_id"] = parcel_id
        return ParcelSnapshot.from_dict(data)

    def replace_all(self, parcel_id: str, snapshot: ParcelSnapshot) -> None:
        """Persist ``snapshot`` as the parcel's complete state (atomic write).

        Writes to a temporary file in the same directory, then replaces the
        target with os.replace() so a crash never leaves half-written JSON.
        """
        path = self._path(parcel_id)
        data = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), suffix=".tmp", prefix="parcel_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(data)
            os.replace(tmp_path, str(path))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.info(f"Saved parcel {parcel_id}: {len(snapshot.amendments)} amendment(s)")
