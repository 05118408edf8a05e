"""
Recovery of JSON payloads from LLM responses that may be truncated.

Extraction responses are expected to be a JSON object holding one
top-level array (``{"characters": [...]}``).  When the completion hits its
token limit mid-stream the document is cut inside an array element; rather
than losing the whole batch, the decoder keeps every element that was fully
closed before the cut.

Strategy (in order):
    1. Direct parse (after stripping a ``\\`\\`\\`json`` fence).
    2. Locate the array key and its opening ``[``.
    3. String/escape-aware depth scan, remembering the end of the last
       fully closed top-level element.
    4. Slice there, append the missing closers, parse just the array.
    5. Per-element salvage: parse each balanced top-level ``{...}`` on its
       own and keep those carrying the required field.

None of the public functions raise.
"""
from __future__ import annotations

import dataclasses
import json
import re
from typing import Any, Optional

from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.json_recovery")

_CLOSERS = {"[": "]", "{": "}"}


@dataclasses.dataclass(frozen=True)
class TruncationReport:
    truncated: bool
    reason: str = ""
    open_brackets: int = 0
    open_braces: int = 0
    in_string: bool = False


def recover_json_array(text: str | None, key: str, *, required_field: str = "name") -> dict:
    """Decode *text* into a dict whose *key* holds a list, salvaging what it can.

    Worst case returns ``{key: []}``.
    """
    if not text or not text.strip():
        logger.warning("json_recover_empty | key=%s", key)
        return {key: []}

    content = _extract_from_code_block(text) or text.strip()

    # --- 1. Direct parse ---
    parsed = _try_loads(content)
    if isinstance(parsed, dict):
        if not isinstance(parsed.get(key), list):
            parsed[key] = []
        return parsed
    if isinstance(parsed, list):
        return {key: parsed}

    # --- 2. Locate the array ---
    key_idx = content.find(f'"{key}"')
    if key_idx == -1:
        logger.warning("json_recover_failed | key=%s | reason=key_not_found | text_len=%d",
                       key, len(content))
        return {key: []}

    array_start = content.find("[", key_idx)
    if array_start == -1:
        logger.warning("json_recover_failed | key=%s | reason=no_array", key)
        return {key: []}

    # --- 3. Depth scan ---
    close_idx, last_element_end = _scan_array(content, array_start)

    if close_idx is not None:
        whole = _try_loads(content[array_start:close_idx + 1])
        if isinstance(whole, list):
            logger.info("json_recover_ok | key=%s | strategy=closed_array | count=%d",
                        key, len(whole))
            return {key: whole}

    # --- 4. Truncation repair ---
    if last_element_end is not None:
        fragment = content[array_start:last_element_end + 1]
        repaired = _try_loads(fragment + _closing_suffix(fragment))
        if isinstance(repaired, list):
            logger.info("json_recover_ok | key=%s | strategy=truncation_repair | count=%d",
                        key, len(repaired))
            return {key: repaired}

    # --- 5. Per-element salvage ---
    salvaged = _salvage_elements(content, array_start, required_field)
    if salvaged:
        logger.info("json_recover_ok | key=%s | strategy=element_salvage | count=%d",
                    key, len(salvaged))
        return {key: salvaged}

    logger.warning("json_recover_failed | key=%s | reason=nothing_salvageable | tail=%.200s",
                   key, content[-200:])
    return {key: []}


def parse_json_object(text: str | None) -> Optional[dict]:
    """Parse a single JSON object out of *text*, or return ``None``."""
    if not text:
        return None
    content = _extract_from_code_block(text) or text.strip()
    parsed = _try_loads(content)
    if isinstance(parsed, dict):
        return parsed

    start = content.find("{")
    while start != -1:
        end = _find_matching_brace(content, start)
        if end is not None:
            candidate = _try_loads(content[start:end + 1])
            if isinstance(candidate, dict):
                return candidate
        start = content.find("{", start + 1)

    logger.warning("json_object_parse_failed | text_len=%d | head=%.200s",
                   len(content), content[:200])
    return None


def detect_truncation(text: str | None) -> TruncationReport:
    """Report whether *text* ends with unbalanced brackets or an open string."""
    if not text:
        return TruncationReport(False)

    stack, in_string = _bracket_stack(text)
    open_brackets = stack.count("[")
    open_braces = stack.count("{")

    if in_string:
        return TruncationReport(True, "unterminated string", open_brackets, open_braces, True)
    if stack:
        return TruncationReport(True, "unbalanced brackets", open_brackets, open_braces)
    return TruncationReport(False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _try_loads(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None


def _extract_from_code_block(text: str) -> Optional[str]:
    """Return the body of the first ``\\`\\`\\`json`` fence, if any."""
    marker = "```json"
    idx = text.find(marker)
    if idx == -1:
        return None

    start = idx + len(marker)
    end = text.find("```", start)
    if end == -1:
        # Unclosed code block: take everything after the marker.
        candidate = text[start:].strip()
    else:
        candidate = text[start:end].strip()

    return candidate or None


def _scan_array(text: str, start: int) -> tuple[Optional[int], Optional[int]]:
    """Walk the array opening at *start*.

    Returns ``(close_idx, last_element_end)``: the index of the ``]`` that
    closes the array (``None`` if truncated) and the index of the ``}`` that
    closed the last complete top-level element.
    """
    depth = 0
    in_string = False
    escape = False
    last_element_end = None

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i, last_element_end
            if ch == "}" and depth == 1:
                last_element_end = i

    return None, last_element_end


def _bracket_stack(text: str) -> tuple[list[str], bool]:
    stack: list[str] = []
    in_string = False
    escape = False

    for ch in text:
        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "[{":
            stack.append(ch)
        elif ch in "]}" and stack:
            stack.pop()

    return stack, in_string


def _closing_suffix(fragment: str) -> str:
    """Closers for every bracket still open at the end of *fragment*."""
    stack, _ = _bracket_stack(fragment)
    return "".join(_CLOSERS[ch] for ch in reversed(stack))


def _salvage_elements(text: str, array_start: int, required_field: str) -> list[dict]:
    field_pattern = re.compile(rf'"{re.escape(required_field)}"\s*:\s*"[^"]+"')
    salvaged: list[dict] = []

    i = array_start + 1
    length = len(text)
    while i < length:
        open_idx = text.find("{", i)
        if open_idx == -1:
            break

        close_idx = _find_matching_brace(text, open_idx)
        if close_idx is None:
            break

        chunk = text[open_idx:close_idx + 1]
        if field_pattern.search(chunk):
            element = _try_loads(chunk)
            if isinstance(element, dict) and element.get(required_field):
                salvaged.append(element)

        # Skip past the whole element so nested objects are not salvaged.
        i = close_idx + 1

    return salvaged


def _find_matching_brace(text: str, start: int) -> Optional[int]:
    """
    Return the index of the ``}`` that balances the ``{`` at *start*,
    respecting JSON string literals so embedded braces don't confuse the count.
    """
    depth = 0
    in_string = False
    escape = False
    length = len(text)

    for i in range(start, length):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i

    return None
