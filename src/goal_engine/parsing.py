# parsing.py
# Everything that reads the oracle's free text.
#
# The oracle drifts: stray prose around JSON, camelCase where snake_case was
# asked for, a capability name buried in a sentence. These helpers recover
# what they can and never accept a value outside the set they were given.

import json
import re
from collections import Counter
from typing import Any, Iterable

TRUNCATION_MARKER = "... (truncated)"

_CAPABILITY_LINE = re.compile(r"^\W*capability\W*?:[\s*`'\"]*([\w.\-]+)", re.IGNORECASE | re.MULTILINE)
_RATIONALE_LINE = re.compile(r"^\W*rationale\W*?:[\s*]*(.+)$", re.IGNORECASE | re.MULTILINE)
_WORDS = re.compile(r"[A-Z]+(?=[A-Z][a-z]|[^A-Za-z]|$)|[A-Z]?[a-z]+|[0-9]+")
_FENCE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def truncate_for_prompt(text: str, limit: int) -> str:
    """Cut `text` to `limit` characters and say so."""
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def strip_code_fence(text: str) -> str:
    """Remove one markdown code fence wrapping the whole text, if present."""
    stripped = text.strip()
    match = _FENCE.match(stripped)
    return match.group(1) if match else text


# ---------------------------------------------------------------------------
# JSON recovery
# ---------------------------------------------------------------------------


def repair_and_parse_json(raw: str) -> tuple[Any, str | None]:
    """
    Recover a JSON value from noisy model output.

    Tries the whole text first, then the span between the first '{' and the
    last '}'. Returns (value, None) on success and (None, reason) otherwise.
    """
    try:
        return json.loads(raw, strict=False), None
    except (ValueError, RecursionError):
        pass

    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None, "No JSON object found in response"

    candidate = raw[start : end + 1]
    try:
        return json.loads(candidate, strict=False), None
    except (ValueError, RecursionError):
        # JSONDecodeError, oversized integer literals, pathological nesting
        return None, f"Invalid JSON structure: {truncate_for_prompt(candidate, 500)}"


# ---------------------------------------------------------------------------
# Argument key normalization
# ---------------------------------------------------------------------------


def _squash(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def _words(key: str) -> Counter:
    return Counter(word.lower() for word in _WORDS.findall(key))


def normalize_keys(args: dict[str, Any], schema_keys: Iterable[str]) -> dict[str, Any]:
    """
    Map the oracle's argument names onto the exact schema keys.

    Comparison order: exact, case/punctuation-insensitive, same multiset of
    words (file_path == filePath == pathFile). Keys that match nothing are
    dropped; a schema key is never filled twice.
    """
    keys = list(schema_keys)
    result: dict[str, Any] = {}

    for key, value in args.items():
        if key in keys:
            result[key] = value

    for key, value in args.items():
        if key in keys:
            continue
        target = _match_key(key, [k for k in keys if k not in result])
        if target is not None:
            result[target] = value

    return result


def _match_key(key: str, candidates: list[str]) -> str | None:
    squashed = _squash(key)
    for candidate in candidates:
        if _squash(candidate) == squashed:
            return candidate

    words = _words(key)
    if not words:
        return None
    for candidate in candidates:
        if _words(candidate) == words:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Selection reply
# ---------------------------------------------------------------------------


def parse_selection(text: str, names: Iterable[str]) -> tuple[str | None, str]:
    """
    Extract (capability name, rationale) from a two-line selection reply.

    The explicit "Capability: <name>" line wins when it names a member of
    `names`; otherwise the earliest whole-word mention of any member is
    taken. Returns (None, rationale) when nothing in `names` is mentioned.
    """
    allowed = list(names)
    rationale_match = _RATIONALE_LINE.search(text)
    rationale = rationale_match.group(1).strip() if rationale_match else ""

    line_match = _CAPABILITY_LINE.search(text)
    if line_match:
        candidate = line_match.group(1).strip().rstrip(".")
        if candidate in allowed:
            return candidate, rationale

    best: tuple[int, int, str] | None = None
    for name in allowed:
        found = re.search(rf"(?<![\w.\-]){re.escape(name)}(?![\w\-]|\.\w)", text)
        if found is None:
            continue
        rank = (found.start(), -len(name), name)
        if best is None or rank < best:
            best = rank

    return (best[2] if best else None), rationale
