"""
Output Parser
Turns raw model output into a structured metric result
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional
import json
import logging
import math
import re

from utils.exceptions import ProviderError, ProviderErrorCode


logger = logging.getLogger(__name__)

SCORE_MIN = -2
SCORE_MAX = 2
MAX_EXAMPLES = 2
MAX_SUGGESTIONS = 3
MAX_ITEM_CHARS = 200
NO_COMMENT = "Score without comment"

CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)(?:```|$)")
JSON_START = re.compile(r"\{[\s\S]*")
PLUS_SCORE = re.compile(r'"score"\s*:\s*\+(\d)')

SCORE_PATTERNS = (
    re.compile(r'"score"\s*:\s*"?(\+?-?[0-2])'),
    re.compile(r"score\s*:\s*(\+?-?[0-2])", re.IGNORECASE),
    re.compile(r"оценка\s*:\s*(\+?-?[0-2])", re.IGNORECASE),
    re.compile(r"(?:^|\s)(-2|-1|0|\+?1|\+?2)(?=\s|:|,|$)", re.MULTILINE),
)
COMMENT_FIELD = re.compile(r'"comment"\s*:\s*"([^"]+)"')
QUOTED = re.compile(r'"([^"]+)"')
FIELD_NAMES = re.compile(r"^(score|comment|examples|detailed_analysis|suggestions)$", re.IGNORECASE)
SENTENCE = re.compile(r"[^.!?]+[.!?]")
BULLET = re.compile(r"(?:^|\n)\s*[-*•]\s*(.+)")
NUMBERED = re.compile(r"(?:^|\n)\s*\d+[.)]\s*(.+)")
GUILLEMETS = re.compile(r"[\"«]([^\"»]+)[\"»]")


@dataclass
class ParsedOutput:
    score: int
    comment: str
    examples: List[str] = field(default_factory=list)
    detailed_analysis: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


def _clip_items(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item)[:MAX_ITEM_CHARS] for item in value[:limit]]


def _coerce_score(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().replace("+", ""))
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if value < SCORE_MIN or value > SCORE_MAX:
        return None
    return int(round(value))


def _repair_truncated(candidate: str) -> str:
    stripped = candidate.rstrip()
    if "{" not in stripped or stripped.endswith("}"):
        return candidate
    if stripped.count('"') % 2 == 1:
        stripped += '"'
    if stripped.count("[") > stripped.count("]"):
        stripped += "]" * (stripped.count("[") - stripped.count("]"))
    return stripped + "}" * max(stripped.count("{") - stripped.count("}"), 0)


def try_parse_json(text: str) -> Optional[ParsedOutput]:
    """JSON path: fenced block or first object, truncated output repaired. None when unusable."""
    candidate = text
    block = CODE_BLOCK.search(text)
    if block:
        candidate = block.group(1)
    start = JSON_START.search(candidate)
    if start:
        candidate = start.group(0)
    candidate = _repair_truncated(candidate)
    candidate = PLUS_SCORE.sub(r'"score": \1', candidate)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        # Trailing prose after the object.
        try:
            data, _ = json.JSONDecoder().raw_decode(candidate)
        except json.JSONDecodeError:
            return None
    if not isinstance(data, dict):
        return None

    score = _coerce_score(data.get("score"))
    if score is None:
        return None

    detailed = data.get("detailed_analysis")
    return ParsedOutput(
        score=score,
        comment=str(data.get("comment") or ""),
        examples=_clip_items(data.get("examples"), MAX_EXAMPLES),
        detailed_analysis=str(detailed) if detailed else None,
        suggestions=_clip_items(data.get("suggestions"), MAX_SUGGESTIONS),
    )


def parse_with_regex(text: str) -> ParsedOutput:
    """Loose fallback for prose answers. Raises BAD_OUTPUT when no score is present."""
    match = None
    for pattern in SCORE_PATTERNS:
        match = pattern.search(text)
        if match:
            break
    if match is None:
        raise ProviderError("Could not find score in output", code=ProviderErrorCode.BAD_OUTPUT)

    score = int(match.group(1).replace("+", ""))

    comment = ""
    field_match = COMMENT_FIELD.search(text)
    if field_match:
        comment = field_match.group(1)
    else:
        for quoted in QUOTED.findall(text):
            if not FIELD_NAMES.match(quoted) and len(quoted) > 10:
                comment = quoted
                break
        if not comment:
            sentence = SENTENCE.search(text[match.end():])
            if sentence:
                comment = sentence.group(0).strip()

    examples = [item.strip() for item in BULLET.findall(text)][:MAX_EXAMPLES]
    if not examples:
        examples = [item.strip() for item in NUMBERED.findall(text)][:MAX_EXAMPLES]
    if not examples:
        examples = [item.strip() for item in GUILLEMETS.findall(text) if item != comment][:MAX_EXAMPLES]

    return ParsedOutput(
        score=score,
        comment=comment or NO_COMMENT,
        examples=[item[:MAX_ITEM_CHARS] for item in examples],
    )


def parse_llm_output(text: str) -> ParsedOutput:
    """Parse a metric answer, JSON first, regex second."""
    parsed = try_parse_json(text or "")
    if parsed is not None:
        return parsed
    logger.debug("JSON parsing failed, falling back to regex")
    return parse_with_regex(text or "")
