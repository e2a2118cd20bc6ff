"""
Reader for Cline task directories.

Cline keeps one directory per task under `<extension storage>/tasks/`:

- `ui_messages.json` - chat panel event stream
- `api_conversation_history.json` - messages exchanged with the model
- `task_metadata.json` - model usage and files in context

Only task directories holding all three files are read. The location is
always given explicitly; nothing is searched for.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

TASKS_SUBDIR = "tasks"
UI_MESSAGES_FILE = "ui_messages.json"
API_HISTORY_FILE = "api_conversation_history.json"
TASK_METADATA_FILE = "task_metadata.json"
TASK_FILES = (UI_MESSAGES_FILE, API_HISTORY_FILE, TASK_METADATA_FILE)


@dataclass
class ClineTask:
    """Decoded files of one task directory."""

    task_id: str
    path: Path
    ui_messages: list = field(default_factory=list)
    api_conversation: list = field(default_factory=list)
    task_metadata: dict = field(default_factory=dict)
    last_modified: float = 0.0  # Directory mtime, epoch seconds


def resolve_tasks_dir(path: Path) -> Path:
    """Accept either the extension storage directory or its tasks directory."""
    path = Path(path).expanduser()
    nested = path / TASKS_SUBDIR
    return nested if nested.is_dir() else path


def _is_task_dir(path: Path) -> bool:
    return path.is_dir() and all((path / name).is_file() for name in TASK_FILES)


def list_task_dirs(tasks_dir: Path) -> list[Path]:
    """
    Task directories under tasks_dir, most recently modified first.

    A missing or unreadable directory yields an empty list.
    """
    tasks_dir = resolve_tasks_dir(tasks_dir)
    if not tasks_dir.is_dir():
        logger.warning("Cline tasks directory not found: %s", tasks_dir)
        return []

    try:
        candidates = [entry for entry in tasks_dir.iterdir() if _is_task_dir(entry)]
    except OSError as e:
        logger.warning("Could not read Cline tasks from %s: %s", tasks_dir, e)
        return []

    return sorted(candidates, key=lambda entry: (-entry.stat().st_mtime, entry.name))


def _read_json(path: Path, default: Any) -> Any:
    if not path.is_file():
        return default
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def read_cline_task(task_dir: Path) -> Optional[ClineTask]:
    """
    Read one task directory.

    Missing files decode to empty values; a file that cannot be read or
    decoded makes the whole task unreadable.

    Returns:
        ClineTask, or None if the task could not be read
    """
    task_dir = Path(task_dir)
    try:
        ui_messages = _read_json(task_dir / UI_MESSAGES_FILE, [])
        api_conversation = _read_json(task_dir / API_HISTORY_FILE, [])
        task_metadata = _read_json(task_dir / TASK_METADATA_FILE, {})
        last_modified = task_dir.stat().st_mtime
    except (OSError, ValueError) as e:
        logger.warning("Could not read Cline task %s: %s", task_dir.name, e)
        return None

    return ClineTask(
        task_id=task_dir.name,
        path=task_dir,
        ui_messages=ui_messages if isinstance(ui_messages, list) else [],
        api_conversation=api_conversation if isinstance(api_conversation, list) else [],
        task_metadata=task_metadata if isinstance(task_metadata, dict) else {},
        last_modified=last_modified,
    )


def read_cline_tasks(tasks_dir: Path) -> list[ClineTask]:
    """Read every task under tasks_dir, most recently modified first."""
    tasks = []
    for task_dir in list_task_dirs(tasks_dir):
        task = read_cline_task(task_dir)
        if task is not None:
            tasks.append(task)

    logger.info("Read %d Cline task(s) from %s", len(tasks), tasks_dir)
    return tasks
