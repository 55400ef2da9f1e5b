"""
Best-effort location of JSON inside free-form model output.

This is a boundary finder, not a tokenizer: it never validates what it returns.
Callers try ``json.loads`` on the raw text first and only then fall back here.
"""

import json
import re
from typing import Any

from core.errors import ExtractionError

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_ARTIFACT_PATTERN = re.compile(r"</?s>|\[/?OUT\]|\[/?B_INST\]", re.IGNORECASE)


def sanitize_content(text: str) -> str:
    """Strip tokenizer artifacts some models leak into their output (<s>, [OUT], [B_INST])."""
    return _ARTIFACT_PATTERN.sub("", text).strip()


def _find_start(text: str, open_char: str) -> int:
    """First ``open_char`` that plausibly begins JSON.

    ``[`` must be followed by ``{`` or ``[``; ``{`` must be followed by a quoted key.
    """
    index = text.find(open_char)
    while index != -1:
        nxt = index + 1
        while nxt < len(text) and text[nxt].isspace():
            nxt += 1
        next_char = text[nxt] if nxt < len(text) else ""
        if open_char == "[" and next_char in ("{", "["):
            return index
        if open_char == "{" and next_char == '"':
            return index
        index = text.find(open_char, index + 1)
    return -1


def _find_match(text: str, start: int, open_char: str, close_char: str) -> int:
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return i
    return -1


def extract_json_block(text: str) -> str | None:
    fenced = _FENCE_PATTERN.search(text)
    if fenced and fenced.group(1).strip():
        return fenced.group(1).strip()

    for open_char, close_char in (("[", "]"), ("{", "}")):
        start = _find_start(text, open_char)
        if start == -1:
            continue
        end = _find_match(text, start, open_char, close_char)
        if end != -1:
            return text[start : end + 1]
    return None


def parse_json_from_text(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    extracted = extract_json_block(text)
    if extracted is None:
        raise ExtractionError("No JSON block found in LLM response.")
    try:
        return json.loads(extracted)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Extracted block is not valid JSON: {e}", {"block": extracted[:200]}) from e
