"""Recover a validated PriceList from free-form model output.

Replies are untrusted: models wrap JSON in prose or markdown fences despite
instructions, and sometimes stop mid-object. Candidates are produced by an
ordered chain of strategies and the first one that parses *and* validates
wins:

1. ``fenced``   - contents of ```json ... ``` blocks
2. ``balanced`` - top-level ``{...}`` spans found by a string-aware brace scan
3. ``slice``    - first ``{`` through last ``}`` (mis-extracts when prose
                  around the object contains braces)
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Callable, FrozenSet, Iterator, List, Optional, Tuple

from ..domain.errors import MalformedJson, NoJsonFound, SchemaViolation
from ..domain.models import PriceList, Recovery
from ..domain.parser import parse_price_list
from ..logging import get_logger, preview

LOG = get_logger("pipeline-recover")

STRATEGY_FENCED = "fenced"
STRATEGY_BALANCED = "balanced"
STRATEGY_SLICE = "slice"

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)


def fenced_candidates(text: str) -> List[str]:
    return [m.group(1).strip() for m in _FENCE_RE.finditer(text) if m.group(1).strip()]


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _balanced_spans(text: str) -> List[Tuple[str, bool]]:
    """Top-level balanced objects as (candidate, after_unclosed) pairs.

    A ``{`` that never closes (stray prose brace or truncated reply) is
    skipped and scanning resumes right after it; objects found past such a
    brace are flagged.
    """
    out: List[Tuple[str, bool]] = []
    pos = 0
    after_unclosed = False
    while True:
        start = text.find("{", pos)
        if start == -1:
            break
        end = _matching_brace(text, start)
        if end is None:
            after_unclosed = True
            pos = start + 1
            continue
        out.append((text[start : end + 1], after_unclosed))
        pos = end + 1
    return out


def balanced_candidates(text: str) -> List[str]:
    """Top-level balanced objects, left to right."""
    return [candidate for candidate, _ in _balanced_spans(text)]


def slice_candidates(text: str) -> List[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return []
    return [text[start : end + 1]]


STRATEGIES: Tuple[Tuple[str, Callable[[str], List[str]]], ...] = (
    (STRATEGY_FENCED, fenced_candidates),
    (STRATEGY_BALANCED, balanced_candidates),
    (STRATEGY_SLICE, slice_candidates),
)


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
    seen = set()
    for name, strategy in STRATEGIES:
        for candidate in strategy(text):
            if candidate in seen:
                continue
            seen.add(candidate)
            yield name, candidate


def _fragments(text: str) -> FrozenSet[str]:
    """Objects that sit past an unclosed ``{``, possibly inside a cut-off reply."""
    return frozenset(candidate for candidate, after_unclosed in _balanced_spans(text) if after_unclosed)


def recover_detailed(reply: Optional[str], *, now: Optional[datetime] = None) -> Recovery:
    """Return the first schema-valid price list found in ``reply``.

    Raises NoJsonFound when the reply has no ``{ ... }`` delimiters at all,
    SchemaViolation when some candidate parsed but none validated, and
    MalformedJson when no candidate parsed.
    """
    text = reply or ""
    if not slice_candidates(text):
        LOG.error("No JSON object delimiters in model reply: %r", preview(text))
        raise NoJsonFound("Could not find a JSON object in the model response")

    fragments = _fragments(text)
    first_violation: Optional[SchemaViolation] = None
    first_parse_error: Optional[json.JSONDecodeError] = None
    for name, candidate in _candidates(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            LOG.debug("Strategy %s: candidate is not valid JSON (%s)", name, exc)
            first_parse_error = first_parse_error or exc
            continue
        try:
            price_list, defaulted = parse_price_list(data, now=now)
        except SchemaViolation as exc:
            LOG.debug("Strategy %s: candidate violates schema (%s)", name, exc.detail)
            if candidate not in fragments:
                first_violation = first_violation or exc
            continue
        LOG.info("Recovered price list via %s strategy (%d items)", name, len(price_list.service))
        return Recovery(price_list=price_list, strategy=name, analyzed_at_defaulted=defaulted)

    if first_violation is not None:
        LOG.error("Model reply JSON does not match the price-list schema: %s", first_violation.detail)
        raise SchemaViolation(first_violation.detail) from first_violation
    LOG.error("Model reply JSON could not be parsed; first 500 chars: %r", preview(text))
    raise MalformedJson(f"Invalid JSON in model response: {first_parse_error}") from first_parse_error


def recover(reply: Optional[str], *, now: Optional[datetime] = None) -> PriceList:
    return recover_detailed(reply, now=now).price_list
