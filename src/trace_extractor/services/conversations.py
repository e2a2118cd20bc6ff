"""
Conversation service: batch reconstruction, recency listing, selection and
export.

Conversations come from the editor snapshot and, when a Cline tasks
directory is given, from Cline task files as well.

This is the layer between the snapshot reader and the CLI. Reconstruction
itself never raises; only the export step touches the filesystem and can
fail with ExportError.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from trace_extractor.exceptions import ExportError
from trace_extractor.models.parsed import Conversation, ConversationSummary
from trace_extractor.parsers.cline import ClineTaskParser
from trace_extractor.parsers.cursor import ConversationReconstructor
from trace_extractor.renderers.json_export import export_json
from trace_extractor.renderers.markdown import conversation_filename, generate_markdown
from trace_extractor.storage.cline import read_cline_tasks
from trace_extractor.storage.extractor import Snapshot
from trace_extractor.summary import build_conversation_summary

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "markdown": "md",
    "json": "json",
}


def load_conversations(snapshot: Snapshot) -> list[Conversation]:
    """
    Reconstruct every composer in a snapshot.

    Composers are processed in id order; conversations without any logical
    message are skipped.
    """
    reconstructor = ConversationReconstructor()
    conversations = []

    for composer_id in sorted(snapshot.composers):
        conversation = reconstructor.reconstruct(
            composer_id,
            snapshot.bubbles,
            snapshot.checkpoints,
            snapshot.code_diffs,
            snapshot.composers[composer_id],
        )
        if conversation.messages:
            conversations.append(conversation)
        else:
            logger.debug("Skipping empty conversation %s", composer_id)

    logger.info(
        "Reconstructed %d of %d conversation(s)",
        len(conversations),
        len(snapshot.composers),
    )
    return conversations


def load_cline_conversations(tasks_dir: Path) -> list[Conversation]:
    """
    Parse every Cline task under tasks_dir.

    Tasks are processed most recently modified first; tasks without any
    logical message are skipped.
    """
    parser = ClineTaskParser()
    conversations = []

    for task in read_cline_tasks(tasks_dir):
        conversation = parser.parse(
            task.task_id, task.ui_messages, task.api_conversation, task.task_metadata
        )
        if conversation.messages:
            conversations.append(conversation)
        else:
            logger.debug("Skipping empty Cline task %s", task.task_id)

    return conversations


def get_recent_conversations(
    snapshot: Snapshot,
    limit: int = 10,
    now: Optional[datetime] = None,
    cline_tasks_dir: Optional[Path] = None,
) -> list[ConversationSummary]:
    """
    Summaries of the most recently active conversations, newest first.

    Args:
        snapshot: Editor snapshot
        limit: Maximum number of summaries
        now: Reference time for recency estimates
        cline_tasks_dir: Optional Cline tasks directory to include
    """
    conversations = load_conversations(snapshot)
    if cline_tasks_dir is not None:
        conversations.extend(load_cline_conversations(cline_tasks_dir))

    summaries = [
        build_conversation_summary(conversation, now=now)
        for conversation in conversations
    ]
    summaries.sort(key=lambda summary: summary.last_message_time, reverse=True)
    return summaries[:limit]


def select_conversation(
    summaries: list[ConversationSummary], selector: str
) -> Optional[ConversationSummary]:
    """
    Resolve a selector against a summary list.

    Args:
        summaries: Listed summaries, in display order
        selector: 1-based list index, full conversation id or unique id prefix

    Returns:
        The matching summary, or None if the selector matches nothing or is
        ambiguous

    Numeric selectors outside the list range are tried as ids, since Cline
    task ids are all digits.
    """
    selector = selector.strip()
    if not selector:
        return None

    if selector.isdigit():
        index = int(selector)
        if 1 <= index <= len(summaries):
            return summaries[index - 1]

    for summary in summaries:
        if summary.id == selector:
            return summary

    matches = [summary for summary in summaries if summary.id.startswith(selector)]
    return matches[0] if len(matches) == 1 else None


def render_conversation(conversation: Conversation, fmt: str) -> str:
    if fmt == "markdown":
        return generate_markdown(conversation)
    if fmt == "json":
        return export_json(conversation)
    raise ValueError(f"Unsupported export format: {fmt}")


def export_conversation(
    conversation: Conversation, output_dir: Path, fmt: str = "markdown"
) -> Path:
    """
    Render a conversation and write it into output_dir.

    Args:
        conversation: Conversation to export
        output_dir: Target directory (created if missing)
        fmt: 'markdown' or 'json'

    Returns:
        Path of the written file

    Raises:
        ValueError: If fmt is not a supported format
        ExportError: If the file cannot be written
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")

    output_dir = Path(output_dir)
    path = output_dir / conversation_filename(conversation, EXPORT_FORMATS[fmt])
    content = render_conversation(conversation, fmt)

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ExportError(str(path), str(e)) from e

    logger.info("Exported %s to %s", conversation.id, path)
    return path
