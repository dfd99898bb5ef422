"""LLM response parsing — pull structured review data out of free-form replies.

All pattern matching against oracle output lives here. Every function in this
module tolerates arbitrary input: missing fields fall back to documented
defaults and nothing raises.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from pr_analyst.config import DEFAULT_COMPLEXITY
from pr_analyst.models import Action, NextAction, Strategy

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.MULTILINE | re.DOTALL

_SECTION_NAMES = r"(?:Summary|Potential[ \t]+Risks|Risks|Complexity|Recommendations)"

# Where a section body ends, per dialect
_MD_END = r"(?=^#{1,6}[ \t]|\Z)"
_PLAIN_END = rf"(?=^{_SECTION_NAMES}[ \t]*:|^#{{1,6}}[ \t]|\Z)"
_ANY_END = (
    rf"(?=^[ \t]*(?:#{{1,6}}[ \t]*)?\*{{0,2}}{_SECTION_NAMES}\*{{0,2}}[ \t]*(?::|$)|\Z)"
)


def _section_patterns(name: str) -> list[re.Pattern]:
    """Markdown header, plain label, then bold/lenient label, in that order."""
    return [
        re.compile(rf"^#{{1,6}}[ \t]*{name}[ \t]*:?[ \t]*\n(.*?){_MD_END}", _FLAGS),
        re.compile(rf"^{name}[ \t]*:[ \t]*(.*?){_PLAIN_END}", _FLAGS),
        re.compile(
            rf"^[ \t]*\*\*{name}\*\*[ \t]*:?[ \t]*(.*?){_ANY_END}", _FLAGS
        ),
    ]


_SUMMARY_PATTERNS = _section_patterns("Summary")
_RISKS_PATTERNS = _section_patterns(r"(?:Potential[ \t]+)?Risks")
_RECOMMENDATIONS_PATTERNS = _section_patterns("Recommendations")

_COMPLEXITY_PATTERNS = [
    # ### Complexity\n4
    re.compile(r"^#{1,6}[ \t]*Complexity[ \t]*:?[ \t]*\n\s*\**[ \t]*(\d+)", _FLAGS),
    # Complexity: 4  /  Complexity:\n4
    re.compile(r"^Complexity[ \t]*:[ \t]*\n?\s*\**[ \t]*(\d+)", _FLAGS),
    # ### Complexity: 4/5  /  **Complexity**: 2  /  Overall complexity is 4/5
    re.compile(r"Complexity[^\n\d]{0,40}?(\d+)", re.IGNORECASE),
]

# "(1-5)" rating scales would otherwise be read as a complexity of 1
_SCALE_RE = re.compile(r"\(\s*1\s*(?:-|–|to)\s*5\s*\)", re.IGNORECASE)

_NO_RISKS_RE = re.compile(r"\bnone\b|\bno (?:critical |major )?risks\b", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*)$")
_SECTION_START_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?\*{0,2}(?:Potential[ \t]+Risks|Risks|Complexity|Recommendations)\b",
    re.IGNORECASE | re.MULTILINE,
)
_HEADER_LINE_RE = re.compile(
    r"^\s*(?:#{1,6}\s.*|\*{0,2}Summary\*{0,2}\s*:?\s*)$", re.IGNORECASE
)


@dataclass(frozen=True)
class ParsedResponse:
    """Structured view of one oracle reply."""

    summary: str = ""
    risks: list[str] = field(default_factory=list)
    complexity: int = DEFAULT_COMPLEXITY
    recommendations: list[str] = field(default_factory=list)
    has_complexity: bool = False  # False when the default was used


def _strip_code_fence(text: str) -> str:
    """Strip markdown code fences (```...```) from LLM response text.

    Only strips the closing fence if an opening fence was also found.
    """
    cleaned = text.strip()

    had_opening = False
    if cleaned.startswith("```"):
        had_opening = True
        newline_pos = cleaned.find("\n")
        if newline_pos == -1:
            return ""
        cleaned = cleaned[newline_pos + 1 :]

    if had_opening and cleaned.endswith("```"):
        cleaned = cleaned[:-3].rstrip()

    return cleaned


def _first_section(text: str, patterns: list[re.Pattern]) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def _fallback_summary(text: str) -> str:
    """First paragraph before any risks/complexity section, headers removed."""
    cut = _SECTION_START_RE.search(text)
    head = text[: cut.start()] if cut else text
    for paragraph in re.split(r"\n\s*\n", head):
        lines = [l for l in paragraph.strip().splitlines() if not _HEADER_LINE_RE.match(l)]
        body = "\n".join(lines).strip()
        if body:
            return body
    return ""


def _bullets(body: str) -> list[str]:
    """One item per bullet or numbered line.

    Plain lines only count as items when the section has no bullets at all.
    """
    bulleted: list[str] = []
    plain: list[str] = []
    for line in body.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = _BULLET_RE.match(line)
        if match:
            item = match.group(1).strip()
            if item:
                bulleted.append(item)
        else:
            plain.append(stripped)
    return bulleted or plain


def _parse_summary(text: str) -> str:
    summary = _first_section(text, _SUMMARY_PATTERNS)
    if summary is None:
        summary = _fallback_summary(text)
    return summary


def _parse_risks(text: str) -> list[str]:
    body = _first_section(text, _RISKS_PATTERNS)
    if body is None or _NO_RISKS_RE.search(body):
        return []
    return _bullets(body)


def _parse_recommendations(text: str) -> list[str]:
    body = _first_section(text, _RECOMMENDATIONS_PATTERNS)
    if body is None:
        return []
    return _bullets(body)


def _parse_complexity(text: str) -> tuple[int, bool]:
    scrubbed = _SCALE_RE.sub("", text)
    for pattern in _COMPLEXITY_PATTERNS:
        for match in pattern.finditer(scrubbed):
            value = int(match.group(1))
            if 1 <= value <= 5:
                return value, True
    return DEFAULT_COMPLEXITY, False


def parse_response(response_text: str | None) -> ParsedResponse:
    """Extract summary, risks, complexity and recommendations from a reply.

    Understands both the plain-label dialect ("Summary:", "Potential Risks:",
    "Complexity:") and the markdown dialect ("### Summary", ...). Defaults:
    summary falls back to the first non-header paragraph (or ""), risks to [],
    complexity to 3, recommendations to [].
    """
    text = _strip_code_fence(response_text or "")
    if not text:
        return ParsedResponse()

    complexity, has_complexity = _parse_complexity(text)
    return ParsedResponse(
        summary=_parse_summary(text),
        risks=_parse_risks(text),
        complexity=complexity,
        recommendations=_parse_recommendations(text),
        has_complexity=has_complexity,
    )


# ── JSON decisions ───────────────────────────────────────────────────────────

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def _balanced_objects(text: str):
    """Yield every balanced {...} substring, outermost first, left to right."""
    i = 0
    while i < len(text):
        if text[i] == "{":
            depth = 0
            for j in range(i, len(text)):
                if text[j] == "{":
                    depth += 1
                elif text[j] == "}":
                    depth -= 1
                    if depth == 0:
                        yield text[i : j + 1]
                        break
        i += 1


def extract_json(text: str | None) -> Optional[dict]:
    """Return the first JSON object in ``text`` (fenced or bare), or None."""
    if not text:
        return None

    candidates = [m.group(1) for m in _FENCED_JSON_RE.finditer(text)]
    candidates.extend(_balanced_objects(text))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _normalize_token(value: str) -> str:
    # analyzeFile / analyze-file / "deep dive" -> analyze_file / deep_dive
    value = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", value.strip())
    return re.sub(r"[\s\-]+", "_", value).lower()


_ACTION_ALIASES = {
    "analyze_file": Action.ANALYZE_FILE,
    "analyze_group": Action.ANALYZE_GROUP,
    "analyze_file_group": Action.ANALYZE_GROUP,
    "synthesize": Action.SYNTHESIZE,
    "synthesize_findings": Action.SYNTHESIZE,
}


def parse_strategy(text: str | None) -> Optional[tuple[Strategy, str]]:
    """Parse a planning reply into (strategy, reasoning), or None."""
    data = extract_json(text)
    if data is None or not isinstance(data.get("strategy"), str):
        logger.warning("Failed to parse strategy decision")
        return None
    key = _normalize_token(data["strategy"]).replace("_", "-")
    try:
        strategy = Strategy(key)
    except ValueError:
        logger.warning("Unknown strategy in decision: %r", data["strategy"])
        return None
    reasoning = data.get("reasoning")
    return strategy, reasoning if isinstance(reasoning, str) else ""


def parse_next_action(text: str | None) -> Optional[NextAction]:
    """Parse a next-action reply, or None if it is not a usable decision."""
    data = extract_json(text)
    if data is None or not isinstance(data.get("action"), str):
        logger.warning("Failed to parse agent decision")
        return None

    action = _ACTION_ALIASES.get(_normalize_token(data["action"]))
    if action is None:
        logger.warning("Unrecognized action in decision: %r", data["action"])
        return None

    raw_targets = data.get("targets", data.get("target", []))
    if isinstance(raw_targets, str):
        raw_targets = [raw_targets]
    if not isinstance(raw_targets, list):
        raw_targets = []
    targets = [t.strip() for t in raw_targets if isinstance(t, str) and t.strip()]

    reasoning = data.get("reasoning")
    return NextAction(
        action=action,
        targets=targets,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )
