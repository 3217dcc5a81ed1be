# location_parser.py
# Turns the vision model's free-form answer into ordered candidate location strings

import json
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# --- Constants ---
EXCLUDED_TERMS = ("unknown", "insufficient")
LINE_EXCLUDED_TERMS = ("analysis", "cannot", "unknown", "insufficient")
LOCATION_KEYWORDS = (
    "street", "avenue", "road", "boulevard", "plaza", "square",
    "tower", "building", "mall", "center", "park", "bridge",
)
MAX_LINE_CANDIDATES = 3

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_BRACKETED = re.compile(r"\[(.*?)\]", re.DOTALL)
_DOUBLE_QUOTED = re.compile(r'"([^"]+)"')
_SINGLE_QUOTED = re.compile(r"'([^']+)'")
_EDGE_QUOTE = re.compile(r"^[\"']|[\"']$")
_PROPER_NAME_PAIR = re.compile(r"[A-Z][a-z]+ [A-Z][a-z]+")
_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class LocationCandidate:
    """A place name pulled from the answer; rank 0 is the first extracted."""
    text: str
    rank: int


def _is_excluded(text):
    lowered = text.lower()
    return any(term in lowered for term in EXCLUDED_TERMS)


def _keep(entries, min_length):
    return [entry for entry in entries if len(entry) >= min_length and not _is_excluded(entry)]


# --- Parsing strategies ---
# Each takes the raw answer and returns a list of candidates, or None when it
# found nothing and the next strategy should be tried.

def parse_json_array(text):
    """The whole answer is a JSON array. A valid array ends the cascade even if every entry is filtered out."""
    try:
        parsed = json.loads(_CODE_FENCE.sub("", text.strip()))
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, list):
        return None
    return _keep([str(entry).strip() for entry in parsed], min_length=2)


def parse_bracketed_list(text):
    match = _BRACKETED.search(text)
    if not match:
        return None
    entries = [_EDGE_QUOTE.sub("", part.strip()) for part in match.group(1).split(",")]
    return _keep(entries, min_length=2) or None


def parse_quoted_strings(text):
    for pattern in (_DOUBLE_QUOTED, _SINGLE_QUOTED):
        entries = [re.sub(r"[\"']", "", found).strip() for found in pattern.findall(text)]
        kept = _keep(entries, min_length=3)
        if kept:
            return kept
    return None


def _looks_like_location(line):
    lowered = line.lower()
    if len(line) <= 5:
        return False
    if any(term in lowered for term in LINE_EXCLUDED_TERMS):
        return False
    return (
        any(keyword in lowered for keyword in LOCATION_KEYWORDS)
        or bool(_DIGIT.search(line))
        or bool(_PROPER_NAME_PAIR.search(line))
    )


def parse_location_lines(text):
    """Heuristic last resort: address-like lines. May over- or under-match."""
    lines = [line.strip() for line in re.split(r"\r?\n", text)]
    kept = [line for line in lines if _looks_like_location(line)][:MAX_LINE_CANDIDATES]
    return kept or None


PARSING_STRATEGIES = (
    parse_json_array,
    parse_bracketed_list,
    parse_quoted_strings,
    parse_location_lines,
)


def extract_locations(raw_text, strategies=PARSING_STRATEGIES):
    """Runs the strategies in order; the first one that yields a result wins."""
    if not raw_text:
        return []
    for strategy in strategies:
        result = strategy(raw_text)
        if result is not None:
            logger.info(f"Location parsing: {strategy.__name__} -> {result}")
            return result
        logger.debug(f"Location parsing: {strategy.__name__} found nothing.")
    logger.warning("No valid locations found in AI response.")
    return []


def parse_location_candidates(raw_text):
    return [LocationCandidate(text=text, rank=rank) for rank, text in enumerate(extract_locations(raw_text))]
