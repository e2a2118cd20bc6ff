"""
Pytest configuration and fixtures for Trace Extractor tests.

Provides raw bubble and composer records shaped like the editor's stored
JSON, and a builder for throwaway state databases.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable

import pytest

BASE_TS = 1_700_000_000_000  # 2023-11-14T22:13:20Z


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by setup_logging so tests don't leak them."""
    yield
    logger = logging.getLogger("trace_extractor")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_bubble() -> Callable[..., dict[str, Any]]:
    """Factory for raw bubble records (type 1 = user, 2 = assistant)."""

    def _make(bubble_type: int, text: str | None = None, **fields: Any) -> dict:
        record: dict[str, Any] = {"type": bubble_type}
        if text is not None:
            record["text"] = text
        record.update(fields)
        return record

    return _make


@pytest.fixture
def sample_store(make_bubble) -> dict[str, Any]:
    """
    Two conversations in snapshot shape.

    comp-1 "Fix login bug": user question, a three-bubble assistant turn
    (thinking, tool call, answer) under g1, a follow-up question and a
    single-bubble answer under g2.
    comp-2 "Add dark mode": one exchange, one hour older.
    """
    bubbles = {
        "comp-1": {
            "b1": make_bubble(1, "Why does login fail?", timestamp=BASE_TS),
            "b2": make_bubble(
                2,
                thinking={"text": "Check the auth handler"},
                generationId="g1",
                timestamp=BASE_TS + 1_000,
                thinkingDurationMs=1200,
            ),
            "b3": make_bubble(
                2,
                toolFormerData={
                    "name": "read_file",
                    "rawArgs": json.dumps({"target_file": "src/auth.py"}),
                    "status": "completed",
                    "result": json.dumps({"contents": "def login(): ..."}),
                },
                generationId="g1",
                timestamp=BASE_TS + 2_000,
            ),
            "b4": make_bubble(
                2, "The token check is inverted.", generationId="g1", timestamp=BASE_TS + 3_000
            ),
            "b5": make_bubble(1, "Can you fix it?", timestamp=BASE_TS + 60_000),
            "b6": make_bubble(2, "Done.", generationId="g2", timestamp=BASE_TS + 61_000),
        },
        "comp-2": {
            "c1": make_bubble(1, "Add a dark mode toggle", timestamp=BASE_TS - 3_600_000),
            "c2": make_bubble(
                2, "Added the toggle.", generationId="g9", timestamp=BASE_TS - 3_500_000
            ),
        },
    }
    composers = {
        "comp-1": {
            "name": "Fix login bug",
            "fullConversationHeadersOnly": [
                {"bubbleId": bubble_id} for bubble_id in ("b1", "b2", "b3", "b4", "b5", "b6")
            ],
        },
        "comp-2": {"name": "Add dark mode"},
    }
    return {
        "bubbles": bubbles,
        "checkpoints": {"comp-1": {"cp1": {"files": ["src/auth.py"]}}},
        "code_diffs": {"comp-1": {"d1": {"diff": "+fix"}}},
        "composers": composers,
    }


def _store_rows(store: dict[str, Any]) -> dict[str, Any]:
    rows: dict[str, Any] = {}
    for composer_id, bubbles in store.get("bubbles", {}).items():
        for bubble_id, record in bubbles.items():
            rows[f"bubbleId:{composer_id}:{bubble_id}"] = record
    for composer_id, checkpoints in store.get("checkpoints", {}).items():
        for checkpoint_id, record in checkpoints.items():
            rows[f"checkpointId:{composer_id}:{checkpoint_id}"] = record
    for composer_id, diffs in store.get("code_diffs", {}).items():
        for diff_id, record in diffs.items():
            rows[f"codeBlockDiff:{composer_id}:{diff_id}"] = record
    for composer_id, record in store.get("composers", {}).items():
        rows[f"composerData:{composer_id}"] = record
    return rows


@pytest.fixture
def write_state_db(tmp_path: Path) -> Callable[..., Path]:
    """
    Factory writing a state database with a cursorDiskKV table.

    Accepts either a snapshot-shaped store dict or raw key -> value rows;
    non-string values are JSON-encoded.
    """

    def _write(
        store: dict[str, Any] | None = None,
        rows: dict[str, Any] | None = None,
        name: str = "state.vscdb",
    ) -> Path:
        db_path = tmp_path / name
        all_rows = _store_rows(store or {})
        all_rows.update(rows or {})

        conn = sqlite3.connect(db_path)
        try:
            conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
            conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
            conn.executemany(
                "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)",
                [
                    (key, value if isinstance(value, str) else json.dumps(value))
                    for key, value in all_rows.items()
                ],
            )
            conn.commit()
        finally:
            conn.close()
        return db_path

    return _write


@pytest.fixture
def sample_db(write_state_db, sample_store) -> Path:
    return write_state_db(sample_store)


CLINE_TASK_ID = str(BASE_TS + 120_000)


@pytest.fixture
def cline_task_data() -> dict[str, Any]:
    """
    One Cline task: a user request with an attached file, then an assistant
    turn with reasoning, a file read, a checkpoint and a completion, plus an
    API history entry adding text and a file write to that turn.
    """
    ui_messages = [
        {
            "ts": BASE_TS + 100_000,
            "type": "say",
            "say": "text",
            "text": "Add a README section",
            "files": ["docs/usage.md"],
        },
        {
            "ts": BASE_TS + 101_000,
            "type": "say",
            "say": "api_req_started",
            "text": json.dumps({"cost": 0.0123, "tokensIn": 1200, "tokensOut": 85}),
        },
        {
            "ts": BASE_TS + 102_000,
            "type": "say",
            "say": "reasoning",
            "text": "Need to look at ",
            "partial": True,
        },
        {"ts": BASE_TS + 102_500, "type": "say", "say": "reasoning", "text": "the README first."},
        {
            "ts": BASE_TS + 103_000,
            "type": "say",
            "say": "tool",
            "text": json.dumps(
                {"tool": "readFile", "path": "README.md", "content": "# Project\n\nUsage goes here."}
            ),
        },
        {
            "ts": BASE_TS + 104_000,
            "type": "say",
            "say": "checkpoint_created",
            "lastCheckpointHash": "abcdef1234567890",
            "isCheckpointCheckedOut": False,
        },
        {
            "ts": BASE_TS + 105_000,
            "type": "say",
            "say": "completion_result",
            "text": "Added the usage section.",
        },
    ]
    api_conversation = [
        {"role": "user", "content": [{"type": "text", "text": "<task>Add a README section</task>"}]},
        {
            "role": "assistant",
            "timestamp": BASE_TS + 101_500,
            "content": [
                {"type": "text", "text": " See README.md."},
                {
                    "type": "tool_use",
                    "id": "toolu_1",
                    "name": "write_to_file",
                    "input": {"path": "README.md", "content": "# Project\n\n## Usage"},
                },
            ],
        },
    ]
    task_metadata = {
        "model_usage": [{"model_id": "claude-sonnet-4", "cost": 0.0123}],
        "files_in_context": [{"path": "README.md"}],
    }
    return {
        "ui_messages": ui_messages,
        "api_conversation": api_conversation,
        "task_metadata": task_metadata,
    }


@pytest.fixture
def write_cline_task(tmp_path: Path) -> Callable[..., Path]:
    """
    Factory writing a Cline task directory under <tmp>/cline/tasks/.

    Strings are written verbatim, other values JSON-encoded; file names in
    `skip` are not written.
    """

    def _write(
        task_id: str,
        ui_messages: Any = None,
        api_conversation: Any = None,
        task_metadata: Any = None,
        skip: tuple[str, ...] = (),
    ) -> Path:
        task_dir = tmp_path / "cline" / "tasks" / task_id
        task_dir.mkdir(parents=True, exist_ok=True)
        files = {
            "ui_messages.json": [] if ui_messages is None else ui_messages,
            "api_conversation_history.json": [] if api_conversation is None else api_conversation,
            "task_metadata.json": {} if task_metadata is None else task_metadata,
        }
        for name, content in files.items():
            if name in skip:
                continue
            text = content if isinstance(content, str) else json.dumps(content)
            (task_dir / name).write_text(text, encoding="utf-8")
        return task_dir

    return _write


@pytest.fixture
def sample_cline_dir(write_cline_task, cline_task_data, tmp_path: Path) -> Path:
    """Cline extension storage directory holding the sample task."""
    write_cline_task(CLINE_TASK_ID, **cline_task_data)
    return tmp_path / "cline"
