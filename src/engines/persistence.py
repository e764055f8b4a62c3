"""
Persistence & Cache Manager.

Each strategy persists two JSON artifacts in ``model_dir``:

    <name>_model.json     small metadata record (trained flag, timestamps,
                          dimension, counts, run id)
    <name>_features.json  node-id -> vector / document map

Both are written to a temp file in the same directory, fsynced and then
renamed over the target, so a reader never sees a half-written file. The
features file is written first; the metadata record names the run id of
the features it belongs to, and a load with mismatching run ids is
treated as missing.

A load is rejected as stale when ``now - last_trained_at`` exceeds the
timeout. Individual entries that cannot be decoded are logged and skipped
without failing the whole load.
"""

import asyncio
import json
import os
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from core.errors import CorruptPersistedEntryError
from core.logging import get_logger
from core.utils import convert_numpy


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PersistedState:
    """A loaded metadata record together with its entry map."""
    metadata: Dict[str, Any]
    entries: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def last_trained_at(self) -> float:
        return float(self.metadata.get("last_trained_at", 0.0))


def decode_entries(
    entries: Dict[str, Any],
    decode: Callable[[str, Any], T],
    strategy: str = "",
) -> Dict[str, T]:
    """
    Apply ``decode(entry_id, raw)`` to every entry.

    Entries raising CorruptPersistedEntryError (or a TypeError/ValueError
    from malformed data) are logged and dropped.
    """
    decoded: Dict[str, T] = {}
    skipped = 0
    for entry_id, raw in entries.items():
        try:
            decoded[entry_id] = decode(entry_id, raw)
        except CorruptPersistedEntryError as e:
            skipped += 1
            logger.warning("Skipping corrupt persisted entry", strategy=strategy, entry=entry_id, reason=e.reason)
        except (TypeError, ValueError, KeyError) as e:
            skipped += 1
            logger.warning("Skipping corrupt persisted entry", strategy=strategy, entry=entry_id, reason=str(e))
    if skipped:
        logger.info("Loaded persisted entries with skips", strategy=strategy, loaded=len(decoded), skipped=skipped)
    return decoded


class ModelStore:
    """
    File-backed model state with a staleness timeout.

    Args:
        model_dir: Directory holding the JSON artifacts
        timeout_seconds: Maximum age of a usable state
        clock: Returns the current epoch time (injectable for tests)
    """

    def __init__(
        self,
        model_dir: Path,
        timeout_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.model_dir = Path(model_dir)
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def metadata_path(self, name: str) -> Path:
        return self.model_dir / f"{name}_model.json"

    def features_path(self, name: str) -> Path:
        return self.model_dir / f"{name}_features.json"

    # =========================================================================
    # Low-level file access
    # =========================================================================

    def _write_atomic(self, path: Path, payload: Dict[str, Any]) -> None:
        self.model_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=self.model_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(convert_numpy(payload), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable persisted file", path=str(path), error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("Persisted file is not an object", path=str(path))
            return None
        return data

    def save_sync(
        self,
        name: str,
        metadata: Dict[str, Any],
        entries: Dict[str, Any],
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        run_id = uuid.uuid4().hex
        now = self.clock()

        self._write_atomic(self.features_path(name), {
            "run_id": run_id,
            "entries": entries,
            "extra": extra or {},
        })

        record = dict(metadata)
        record.update(
            trained=True,
            run_id=run_id,
            last_trained_at=now,
            last_trained_at_iso=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            entry_count=len(entries),
        )
        self._write_atomic(self.metadata_path(name), record)
        logger.info("Persisted model state", strategy=name, entries=len(entries), run_id=run_id)
        return record

    def read_metadata(self, name: str) -> Optional[Dict[str, Any]]:
        return self._read_json(self.metadata_path(name))

    def is_fresh_metadata(self, metadata: Optional[Dict[str, Any]]) -> bool:
        if not metadata or not metadata.get("trained"):
            return False
        try:
            age = self.clock() - float(metadata.get("last_trained_at", 0.0))
        except (TypeError, ValueError):
            return False
        return age <= self.timeout_seconds

    def load_sync(self, name: str, allow_stale: bool = False) -> Optional[PersistedState]:
        metadata = self.read_metadata(name)
        if metadata is None:
            logger.info("No persisted state", strategy=name)
            return None
        if not allow_stale and not self.is_fresh_metadata(metadata):
            logger.info("Persisted state is stale", strategy=name, last_trained_at=metadata.get("last_trained_at_iso"))
            return None

        features = self._read_json(self.features_path(name))
        if features is None:
            logger.warning("Persisted features missing or corrupt", strategy=name)
            return None
        if features.get("run_id") != metadata.get("run_id"):
            logger.warning(
                "Persisted metadata and features belong to different runs",
                strategy=name,
                metadata_run=metadata.get("run_id"),
                features_run=features.get("run_id"),
            )
            return None

        entries = features.get("entries")
        if not isinstance(entries, dict):
            logger.warning("Persisted entries are not a map", strategy=name)
            return None
        extra = features.get("extra") if isinstance(features.get("extra"), dict) else {}
        return PersistedState(metadata=metadata, entries=entries, extra=extra)

    def delete(self, name: str) -> None:
        for path in (self.metadata_path(name), self.features_path(name)):
            if path.exists():
                path.unlink()

    # =========================================================================
    # Async API (file I/O runs in the default executor)
    # =========================================================================

    async def save(
        self,
        name: str,
        metadata: Dict[str, Any],
        entries: Dict[str, Any],
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.save_sync, name, metadata, entries, extra)

    async def load(self, name: str, allow_stale: bool = False) -> Optional[PersistedState]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load_sync, name, allow_stale)

    async def metadata(self, name: str) -> Optional[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.read_metadata, name)

    async def is_fresh(self, name: str) -> bool:
        return self.is_fresh_metadata(await self.metadata(name))
