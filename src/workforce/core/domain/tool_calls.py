"""
Tool Call Interpreter

Parses the tag-delimited tool-call syntax models use in free-form text:

    <tool_call>
    <name>read_file</name>
    <arguments>
    <path>notes.md</path>
    <limit>20</limit>
    </arguments>
    </tool_call>

The grammar has a single level: a block holds one ``<name>`` and an optional
``<arguments>`` section of flat ``<param>value</param>`` pairs (or a JSON
object). Numeric-looking and boolean-looking values are coerced.

Malformed blocks never raise. ``parse()`` skips them; ``parse_with_issues()``
also reports them as ParseIssue values so callers can show the model what
went wrong.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from workforce.core.domain.models import ToolCall

OPEN_TAG = "<tool_call>"
CLOSE_TAG = "</tool_call>"

_BLOCK_RE = re.compile(r"<tool_call>.*?</tool_call>", re.DOTALL)
_NAME_RE = re.compile(r"<name>(.*?)</name>", re.DOTALL)
_ARGS_RE = re.compile(r"<arguments>(.*?)</arguments>", re.DOTALL)
_PARAM_RE = re.compile(r"<(\w+)>(.*?)</\1>", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?")
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

SNIPPET_LENGTH = 80


class ParseIssueKind(str, Enum):
    UNCLOSED_BLOCK = "unclosed_block"
    NESTED_BLOCK = "nested_block"
    MISSING_NAME = "missing_name"
    INVALID_ARGUMENTS = "invalid_arguments"


@dataclass
class ParseIssue:
    """A skipped tool-call block and the reason it was skipped."""

    kind: ParseIssueKind
    snippet: str

    def describe(self) -> str:
        messages = {
            ParseIssueKind.UNCLOSED_BLOCK: "tool call block is missing </tool_call>",
            ParseIssueKind.NESTED_BLOCK: "tool call block opened inside another block",
            ParseIssueKind.MISSING_NAME: "tool call block has no <name>",
            ParseIssueKind.INVALID_ARGUMENTS: "tool call arguments could not be parsed",
        }
        return f"{messages[self.kind]}: {self.snippet}"


@dataclass
class ParseResult:
    calls: list[ToolCall] = field(default_factory=list)
    issues: list[ParseIssue] = field(default_factory=list)


def coerce_value(raw: str) -> Any:
    """Coerce ``"3"`` to 3, ``"2.5"`` to 2.5 and ``"true"``/``"false"`` to bools."""
    value = raw.strip()
    if _NUMBER_RE.fullmatch(value):
        return float(value) if "." in value else int(value)
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def has_tool_calls(text: str) -> bool:
    return bool(text) and OPEN_TAG in text


def _snippet(text: str) -> str:
    flat = " ".join(text.split())
    return flat[:SNIPPET_LENGTH] + ("..." if len(flat) > SNIPPET_LENGTH else "")


def _parse_arguments(raw: str) -> dict[str, Any] | None:
    content = raw.strip()
    if not content:
        return {}

    args = {m.group(1): coerce_value(m.group(2)) for m in _PARAM_RE.finditer(content)}
    if args:
        return args

    # JSON object, possibly wrapped in explanatory text
    candidates = [content]
    embedded = _JSON_OBJECT_RE.search(content)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _parse_block(body: str) -> tuple[ToolCall | None, ParseIssue | None]:
    name_match = _NAME_RE.search(body)
    if not name_match or not name_match.group(1).strip():
        return None, ParseIssue(ParseIssueKind.MISSING_NAME, _snippet(body))
    name = name_match.group(1).strip()

    if "<arguments>" not in body:
        return ToolCall(name=name), None

    args_match = _ARGS_RE.search(body)
    if not args_match:
        return None, ParseIssue(ParseIssueKind.INVALID_ARGUMENTS, _snippet(body))

    arguments = _parse_arguments(args_match.group(1))
    if arguments is None:
        return None, ParseIssue(ParseIssueKind.INVALID_ARGUMENTS, _snippet(body))
    return ToolCall(name=name, arguments=arguments), None


def parse_with_issues(text: str) -> ParseResult:
    """
    Extract tool calls and report every block that had to be skipped.

    Args:
        text: Model output

    Returns:
        ParseResult with calls in order of appearance and the skipped blocks
    """
    result = ParseResult()
    if not has_tool_calls(text):
        return result

    pos = 0
    while True:
        start = text.find(OPEN_TAG, pos)
        if start == -1:
            break
        body_start = start + len(OPEN_TAG)
        end = text.find(CLOSE_TAG, body_start)
        if end == -1:
            result.issues.append(
                ParseIssue(ParseIssueKind.UNCLOSED_BLOCK, _snippet(text[start:]))
            )
            break

        nested = text.find(OPEN_TAG, body_start)
        if nested != -1 and nested < end:
            result.issues.append(
                ParseIssue(ParseIssueKind.NESTED_BLOCK, _snippet(text[start:nested]))
            )
            pos = nested
            continue

        call, issue = _parse_block(text[body_start:end])
        if call is not None:
            result.calls.append(call)
        if issue is not None:
            result.issues.append(issue)
        pos = end + len(CLOSE_TAG)

    return result


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract tool calls, silently skipping malformed blocks."""
    return parse_with_issues(text).calls


def strip_tool_calls(text: str) -> str:
    """Remove all tool-call blocks (and a dangling unclosed one) and trim."""
    if not text:
        return ""
    cleaned = _BLOCK_RE.sub("", text)
    dangling = cleaned.find(OPEN_TAG)
    if dangling != -1:
        cleaned = cleaned[:dangling]
    return cleaned.strip()


def render_tool_call(name: str, arguments: dict[str, Any] | None = None) -> str:
    """Render a call in the syntax ``parse_tool_calls`` accepts."""
    lines = [OPEN_TAG, f"<name>{name}</name>"]
    if arguments:
        lines.append("<arguments>")
        for key, value in arguments.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            lines.append(f"<{key}>{value}</{key}>")
        lines.append("</arguments>")
    lines.append(CLOSE_TAG)
    return "\n".join(lines)
