"""
Message content parser.

Extracts structured sub-content embedded in a raw message string: tool
invocation markup, thinking segments, fenced code blocks, and the file
operations implied by Read/Edit/Write tool calls.
"""

import re
from typing import Any

from trace_extractor.models.parsed import (
    CodeBlock,
    FileOperation,
    ParsedContent,
    ToolCall,
)

# Tag names may carry a namespace prefix on either side of the pair
_NS = r"(?:[a-z]+:)?"

FUNCTION_CALLS_PATTERN = re.compile(
    rf"<{_NS}function_calls>(.*?)</{_NS}function_calls>", re.DOTALL
)
INVOKE_PATTERN = re.compile(
    rf'<{_NS}invoke name="([^"]+)">(.*?)</{_NS}invoke>', re.DOTALL
)
PARAMETER_PATTERN = re.compile(
    rf'<{_NS}parameter name="([^"]+)">(.*?)</{_NS}parameter>', re.DOTALL
)
FUNCTION_RESULTS_PATTERN = re.compile(
    rf"<{_NS}function_results>(.*?)</{_NS}function_results>", re.DOTALL
)
THINKING_PATTERN = re.compile(rf"<{_NS}thinking>(.*?)</{_NS}thinking>", re.DOTALL)
CODE_BLOCK_PATTERN = re.compile(r"```(\w+)?([^\n]*)\n?(.*?)```", re.DOTALL)

FILE_OPERATION_TOOLS = {
    "Read": "read",
    "Edit": "edit",
    "Write": "write",
}


def _extract_tool_calls(content: str) -> list[ToolCall]:
    tool_calls = []
    for block in FUNCTION_CALLS_PATTERN.finditer(content):
        for invoke in INVOKE_PATTERN.finditer(block.group(1)):
            parameters = {
                param.group(1): param.group(2)
                for param in PARAMETER_PATTERN.finditer(invoke.group(2))
            }
            tool_calls.append(
                ToolCall(
                    tool_name=invoke.group(1),
                    parameters=parameters,
                    raw_content=invoke.group(0),
                )
            )
    return tool_calls


def _extract_code_blocks(content: str) -> list[CodeBlock]:
    code_blocks = []
    for match in CODE_BLOCK_PATTERN.finditer(content):
        language, header, body = match.group(1), match.group(2), match.group(3)

        # Single-line fences (```some code```) have everything on the header line
        code = body if body.strip() else header

        code_blocks.append(CodeBlock(language=language or "text", code=code.strip()))
    return code_blocks


def _derive_file_operations(tool_calls: list[ToolCall]) -> list[FileOperation]:
    operations = []
    for tool_call in tool_calls:
        operation = FILE_OPERATION_TOOLS.get(tool_call.tool_name)
        file_path = tool_call.parameters.get("file_path")
        if operation and file_path:
            operations.append(FileOperation(operation=operation, path=file_path))
    return operations


def parse_message_content(content: Any) -> ParsedContent:
    """
    Parse a raw message string into its structured parts.

    The returned `text` is the input unchanged; renderers are responsible
    for stripping markup. Unmatched or malformed tags are simply not
    matched.

    Args:
        content: Raw message text (anything else yields empty defaults)

    Returns:
        ParsedContent with tool calls, thinking blocks, code blocks and
        derived file operations

    Example:
        >>> parsed = parse_message_content("```py\\nprint(1)\\n```")
        >>> parsed.code_blocks[0].language, parsed.code_blocks[0].code
        ('py', 'print(1)')
    """
    if not content or not isinstance(content, str):
        return ParsedContent()

    tool_calls = _extract_tool_calls(content)

    return ParsedContent(
        text=content,
        tool_calls=tool_calls,
        thinking_blocks=[m.group(1).strip() for m in THINKING_PATTERN.finditer(content)],
        code_blocks=_extract_code_blocks(content),
        file_operations=_derive_file_operations(tool_calls),
    )
