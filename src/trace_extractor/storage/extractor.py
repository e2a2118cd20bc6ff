"""
Snapshot extraction from the editor's global state database.

The editor keeps composer conversations in the `cursorDiskKV` table of its
`state.vscdb` SQLite database, one JSON value per key:

- `bubbleId:<composerId>:<bubbleId>` - message fragments
- `checkpointId:<composerId>:<checkpointId>` - file checkpoints
- `codeBlockDiff:<composerId>:<diffId>` - code block diffs
- `composerData:<composerId>` - conversation metadata

The database is usually open (and locked) by the running editor, so it is
copied together with its `-wal`/`-shm` siblings into a temporary directory
and the copy is opened read-only.
"""

import json
import logging
import os
import shutil
import sqlite3
import sys
import tempfile
import urllib.parse
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from trace_extractor.exceptions import UnsupportedPlatformError

logger = logging.getLogger(__name__)

KV_TABLE = "cursorDiskKV"
BUBBLE_PREFIX = "bubbleId:"
CHECKPOINT_PREFIX = "checkpointId:"
CODE_DIFF_PREFIX = "codeBlockDiff:"
COMPOSER_PREFIX = "composerData:"

SNAPSHOT_QUERY = f"""
    SELECT key, value FROM {KV_TABLE}
    WHERE key LIKE '{BUBBLE_PREFIX}%'
       OR key LIKE '{CHECKPOINT_PREFIX}%'
       OR key LIKE '{CODE_DIFF_PREFIX}%'
       OR key LIKE '{COMPOSER_PREFIX}%'
    ORDER BY key
"""

DB_SIDECAR_SUFFIXES = ("-wal", "-shm")


@dataclass
class SnapshotStats:
    """Row counters for one extraction."""

    total_bubbles: int = 0
    total_checkpoints: int = 0
    total_code_diffs: int = 0
    total_composers: int = 0
    skipped_rows: int = 0


@dataclass
class Snapshot:
    """
    Everything read from the key-value table, split by conversation.

    Attributes:
        bubbles: Composer id -> bubble id -> raw bubble record
        checkpoints: Composer id -> checkpoint id -> raw checkpoint
        code_diffs: Composer id -> diff id -> raw code diff
        composers: Composer id -> raw composer metadata
        stats: Row counters
    """

    bubbles: dict[str, dict[str, Any]] = field(default_factory=dict)
    checkpoints: dict[str, dict[str, Any]] = field(default_factory=dict)
    code_diffs: dict[str, dict[str, Any]] = field(default_factory=dict)
    composers: dict[str, Any] = field(default_factory=dict)
    stats: SnapshotStats = field(default_factory=SnapshotStats)

    @property
    def is_empty(self) -> bool:
        return not self.composers and not self.bubbles


def default_db_path(platform: Optional[str] = None) -> Path:
    """
    Default location of the editor's global state database.

    Args:
        platform: Platform name as in sys.platform (defaults to the current one)

    Raises:
        UnsupportedPlatformError: If no location is known for the platform
    """
    platform = platform or sys.platform

    if platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / "Cursor" / "User"
    elif platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        roaming = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        base = roaming / "Cursor" / "User"
    elif platform.startswith("linux"):
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        config_home = Path(xdg_config) if xdg_config else Path.home() / ".config"
        base = config_home / "Cursor" / "User"
    else:
        raise UnsupportedPlatformError(platform)

    return base / "globalStorage" / "state.vscdb"


def _connect_readonly(db_path: Path) -> sqlite3.Connection:
    uri = f"file:{urllib.parse.quote(str(db_path))}?mode=ro"
    return sqlite3.connect(uri, uri=True)


def _copy_database(source: Path, target_dir: Path) -> Path:
    """Copy the database and any sidecar files; returns the copied database path."""
    target = target_dir / source.name
    shutil.copy2(source, target)

    for suffix in DB_SIDECAR_SUFFIXES:
        sidecar = source.with_name(source.name + suffix)
        if sidecar.exists():
            shutil.copy2(sidecar, target_dir / sidecar.name)

    return target


def _add_row(snapshot: Snapshot, key: str, value: Any) -> bool:
    """File one decoded row under its conversation; False for malformed keys."""
    if key.startswith(COMPOSER_PREFIX):
        composer_id = key[len(COMPOSER_PREFIX):]
        if not composer_id:
            return False
        snapshot.composers[composer_id] = value
        snapshot.stats.total_composers += 1
        return True

    for prefix, table, counter in (
        (BUBBLE_PREFIX, snapshot.bubbles, "total_bubbles"),
        (CHECKPOINT_PREFIX, snapshot.checkpoints, "total_checkpoints"),
        (CODE_DIFF_PREFIX, snapshot.code_diffs, "total_code_diffs"),
    ):
        if key.startswith(prefix):
            parts = key[len(prefix):].split(":", 1)
            if len(parts) != 2 or not parts[0] or not parts[1]:
                return False
            composer_id, item_id = parts
            table.setdefault(composer_id, {})[item_id] = value
            setattr(snapshot.stats, counter, getattr(snapshot.stats, counter) + 1)
            return True

    return False


def read_snapshot(conn: sqlite3.Connection) -> Snapshot:
    """Read and split all conversation rows from an open connection."""
    snapshot = Snapshot()

    for key, value in conn.execute(SNAPSHOT_QUERY):
        if not value:
            continue
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")

        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            logger.debug("Skipping row %s: invalid JSON (%s)", key, e)
            snapshot.stats.skipped_rows += 1
            continue

        if not _add_row(snapshot, key, parsed):
            logger.debug("Skipping row with malformed key: %s", key)
            snapshot.stats.skipped_rows += 1

    return snapshot


def extract_snapshot(db_path: Path) -> Snapshot:
    """
    Extract a snapshot of all conversations from a state database.

    A missing or unreadable database yields an empty snapshot.

    Args:
        db_path: Path to state.vscdb

    Returns:
        Snapshot of bubbles, checkpoints, code diffs and composers
    """
    db_path = Path(db_path)
    if not db_path.is_file():
        logger.warning("Database not found: %s", db_path)
        return Snapshot()

    with tempfile.TemporaryDirectory(prefix="trace-extractor-") as temp_dir:
        try:
            copied = _copy_database(db_path, Path(temp_dir))
        except OSError as e:
            logger.warning("Could not copy database %s: %s", db_path, e)
            return Snapshot()

        try:
            with closing(_connect_readonly(copied)) as conn:
                snapshot = read_snapshot(conn)
        except sqlite3.Error as e:
            logger.warning("Could not read database %s: %s", db_path, e)
            return Snapshot()

    logger.info(
        "Extracted %d composer(s), %d bubble(s) from %s",
        snapshot.stats.total_composers,
        snapshot.stats.total_bubbles,
        db_path,
    )
    return snapshot
