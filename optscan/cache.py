"""
Scan cache module.

Persists complete scan snapshots as JSON files, bounded by count and total
size (oldest evicted first), and classifies them by age. A settings file
holds small key-value preferences.

Storage problems never raise to callers: methods log and report failure
through their return value so scanning keeps working without a cache.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from . import config
from .models import (
    NormalizedContract,
    ScanParameters,
    ScanResult,
    ScanSnapshot,
    SnapshotInfo,
    SummaryStats,
)
from .utils import format_bytes, isoformat_utc, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

SCANS_DIRNAME = "scans"
SETTINGS_FILENAME = "settings.json"


class ScanCache:
    """
    Bounded on-disk store of ScanSnapshots.

    Layout::

        <base_dir>/scans/<id>.json   one file per snapshot
        <base_dir>/settings.json     key-value settings

    Writes are serialized with a re-entrant lock and land atomically via a
    temporary file and rename. The lock belongs to the instance: two
    ScanCache objects (or two processes) on the same directory do not
    serialize against each other, so eviction run by one can race a save
    by the other. Use one instance per directory.
    """

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = config.CACHE_DIR,
        max_scans: int = config.CACHE_MAX_SCANS,
        soft_expiry_hours: float = config.CACHE_SOFT_EXPIRY_HOURS,
        hard_expiry_days: float = config.CACHE_HARD_EXPIRY_DAYS,
        max_size_bytes: int = config.CACHE_MAX_SIZE_BYTES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the cache (call ``initialize()`` before use).

        Args:
            base_dir: Storage directory; None means no persistent storage
            max_scans: Maximum snapshots kept
            soft_expiry_hours: Age after which a snapshot is stale
            hard_expiry_days: Age after which a snapshot is pruned
            max_size_bytes: Maximum total size of all snapshots
            clock: Returns the current aware datetime (for tests)
        """
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self.max_scans = max_scans
        self.soft_expiry = timedelta(hours=soft_expiry_hours)
        self.hard_expiry = timedelta(days=hard_expiry_days)
        self.max_size_bytes = max_size_bytes
        self.is_available = False
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._last_id = 0

    @property
    def scans_dir(self) -> Optional[Path]:
        return self.base_dir / SCANS_DIRNAME if self.base_dir else None

    @property
    def settings_path(self) -> Optional[Path]:
        return self.base_dir / SETTINGS_FILENAME if self.base_dir else None

    def initialize(self) -> bool:
        """
        Open or create the storage directory and prune expired snapshots.

        Returns:
            True if the cache is usable
        """
        if self.base_dir is None:
            logger.warning("No cache directory configured - caching disabled")
            self.is_available = False
            return False

        try:
            self.scans_dir.mkdir(parents=True, exist_ok=True)
            if not self.settings_path.exists():
                self._write_json(self.settings_path, {})
            if not os.access(self.scans_dir, os.W_OK):
                raise PermissionError(f"Cache directory not writable: {self.scans_dir}")
        except OSError as e:
            logger.error(f"Failed to initialize cache: {e}")
            self.is_available = False
            return False

        self.is_available = True
        self.prune_expired()
        logger.info(f"Cache initialized at {self.base_dir}")
        return True

    def save_scan(
        self,
        contracts: Sequence[NormalizedContract],
        stats: SummaryStats,
        params: ScanParameters,
        universe_tickers: Optional[Sequence[str]] = None,
    ) -> Optional[int]:
        """
        Save a scan, evicting old snapshots to stay within limits.

        Args:
            contracts: Filtered, sorted contracts
            stats: Scan summary
            params: Merged scan parameters
            universe_tickers: Tickers that were scanned

        Returns:
            Snapshot id, or None if the cache is unavailable or the write failed
        """
        if not self.is_available:
            logger.warning("Cache not available - scan not saved")
            return None

        with self._lock:
            try:
                now = self._clock()
                snapshot = ScanSnapshot(
                    id=self._next_id(now),
                    created_at=isoformat_utc(now),
                    label=self._generate_label(len(contracts), params, now),
                    scan_parameters=params,
                    universe_tickers=list(universe_tickers or []),
                    contracts=list(contracts),
                    summary_stats=stats,
                )
                record = snapshot.to_dict()
                record["size_bytes"] = len(json.dumps(record).encode("utf-8"))

                self._enforce_storage_limits(record["size_bytes"])
                self._write_json(self._scan_path(snapshot.id), record)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to save scan to cache: {e}")
                return None

            logger.info(
                f"Scan saved to cache: {record['label']} ({format_bytes(record['size_bytes'])})"
            )
            return snapshot.id

    def save_result(
        self,
        result: ScanResult,
        universe_tickers: Optional[Sequence[str]] = None,
    ) -> Optional[int]:
        """Save a ScanResult; see ``save_scan``."""
        return self.save_scan(result.contracts, result.stats, result.params, universe_tickers)

    def get_latest_scan(self) -> Optional[ScanSnapshot]:
        """Return the snapshot with the newest creation time, or None."""
        if not self.is_available:
            return None

        try:
            records = self._read_all()
            if not records:
                return None
            latest = max(records, key=lambda r: (self._created(r), r["id"]))
            return ScanSnapshot.from_dict(latest)
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to get latest scan: {e}")
            return None

    def list_scans(self) -> List[SnapshotInfo]:
        """
        List snapshot metadata, newest first.

        Expired snapshots are flagged, not hidden; pruning is separate.
        """
        if not self.is_available:
            return []

        try:
            records = sorted(
                self._read_all(),
                key=lambda r: (self._created(r), r["id"]),
                reverse=True,
            )
            return [
                SnapshotInfo(
                    id=r["id"],
                    created_at=r["created_at"],
                    label=r.get("label", ""),
                    contract_count=len(r.get("contracts") or []),
                    size_bytes=int(r.get("size_bytes") or 0),
                    is_stale=self.is_stale(r["created_at"]),
                    is_expired=self.is_expired(r["created_at"]),
                    params=ScanParameters.from_dict(r.get("scan_parameters") or {}),
                )
                for r in records
            ]
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to list scans: {e}")
            return []

    def load_scan(self, scan_id: int) -> Optional[ScanSnapshot]:
        """Load a snapshot by id, or None if absent."""
        if not self.is_available:
            return None

        path = self._scan_path(scan_id)
        try:
            if not path.exists():
                return None
            with open(path, "r") as f:
                return ScanSnapshot.from_dict(json.load(f))
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load scan {scan_id}: {e}")
            return None

    def delete_scan(self, scan_id: int) -> bool:
        """Delete a snapshot. Deleting a missing snapshot succeeds."""
        if not self.is_available:
            return False

        with self._lock:
            try:
                self._scan_path(scan_id).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to delete scan {scan_id}: {e}")
                return False

        logger.info(f"Scan {scan_id} deleted from cache")
        return True

    def clear_all(self) -> bool:
        """Delete every snapshot. Settings are kept."""
        if not self.is_available:
            return False

        with self._lock:
            try:
                for path in self.scans_dir.glob("*.json"):
                    path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to clear cache: {e}")
                return False

        logger.info("All scans cleared from cache")
        return True

    def prune_expired(self) -> int:
        """
        Delete snapshots older than the hard expiry.

        Returns:
            Number of snapshots removed
        """
        if not self.is_available:
            return 0

        removed = 0
        with self._lock:
            try:
                for record in self._read_all():
                    if self.is_expired(record["created_at"]):
                        self._scan_path(record["id"]).unlink(missing_ok=True)
                        removed += 1
            except (OSError, KeyError, ValueError) as e:
                logger.error(f"Failed to prune expired scans: {e}")
                return removed

        if removed:
            logger.info(f"Pruned {removed} expired scans from cache")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Availability, snapshot count and total size."""
        if not self.is_available:
            return {"available": False, "scan_count": 0, "total_size_bytes": 0}

        try:
            records = self._read_all()
        except OSError as e:
            logger.error(f"Failed to get cache stats: {e}")
            return {"available": False, "scan_count": 0, "total_size_bytes": 0}

        total_size = sum(int(r.get("size_bytes") or 0) for r in records)
        return {
            "available": True,
            "scan_count": len(records),
            "total_size_bytes": total_size,
            "total_size": format_bytes(total_size),
            "max_scans": self.max_scans,
            "max_size_bytes": self.max_size_bytes,
        }

    def save_setting(self, key: str, value: Any) -> bool:
        """Store a JSON-serializable setting."""
        if not self.is_available:
            return False

        with self._lock:
            try:
                settings = self._read_settings()
                settings[key] = value
                self._write_json(self.settings_path, settings)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to save setting {key}: {e}")
                return False
        return True

    def get_setting(self, key: str, default: Any = None) -> Any:
        if not self.is_available:
            return default

        try:
            return self._read_settings().get(key, default)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to get setting {key}: {e}")
            return default

    def age(self, created_at: str) -> timedelta:
        return self._clock() - parse_timestamp(created_at)

    def is_stale(self, created_at: str) -> bool:
        return self.age(created_at) > self.soft_expiry

    def is_expired(self, created_at: str) -> bool:
        return self.age(created_at) > self.hard_expiry

    def _scan_path(self, scan_id: int) -> Path:
        return self.scans_dir / f"{int(scan_id)}.json"

    def _next_id(self, now: datetime) -> int:
        """Millisecond timestamp, bumped to stay strictly increasing."""
        stored = [int(p.stem) for p in self.scans_dir.glob("*.json") if p.stem.isdigit()]
        last = max([self._last_id] + stored)
        self._last_id = max(int(now.timestamp() * 1000), last + 1)
        return self._last_id

    def _created(self, record: Dict[str, Any]) -> datetime:
        return parse_timestamp(record["created_at"])

    def _read_all(self) -> List[Dict[str, Any]]:
        """Read every snapshot record; unreadable files are skipped."""
        records = []
        for path in sorted(self.scans_dir.glob("*.json")):
            try:
                with open(path, "r") as f:
                    record = json.load(f)
            except FileNotFoundError:
                continue
            except ValueError as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")
                continue
            if not isinstance(record, dict) or "id" not in record or "created_at" not in record:
                logger.warning(f"Skipping cache file without id or created_at: {path.name}")
                continue
            try:
                record["id"] = int(record["id"])
                parse_timestamp(record["created_at"])
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping cache file with invalid id or timestamp {path.name}: {e}")
                continue
            records.append(record)
        return records

    def _read_settings(self) -> Dict[str, Any]:
        if not self.settings_path.exists():
            return {}
        with open(self.settings_path, "r") as f:
            settings = json.load(f)
        return settings if isinstance(settings, dict) else {}

    def _write_json(self, path: Path, data: Any) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _enforce_storage_limits(self, new_size: int) -> None:
        """Evict oldest snapshots until the new one fits both limits."""
        records = sorted(self._read_all(), key=lambda r: (self._created(r), r["id"]))

        while records and len(records) >= self.max_scans:
            oldest = records.pop(0)
            self._scan_path(oldest["id"]).unlink(missing_ok=True)
            logger.info(f"Removed oldest scan to make room: {oldest.get('label', oldest['id'])}")

        total_size = sum(int(r.get("size_bytes") or 0) for r in records)
        while records and total_size + new_size > self.max_size_bytes:
            oldest = records.pop(0)
            self._scan_path(oldest["id"]).unlink(missing_ok=True)
            total_size -= int(oldest.get("size_bytes") or 0)
            logger.info(f"Removed scan to free space: {oldest.get('label', oldest['id'])}")

    def _generate_label(self, count: int, params: ScanParameters, now: datetime) -> str:
        kind = "Puts" if params.contract_kind == "put" else "Calls"
        time_str = now.strftime("%I:%M %p").lstrip("0")
        return f"{kind} · {count} contracts · {time_str}"
