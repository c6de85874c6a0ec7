"""
Best-effort extraction of structured fields from free-form model output.

Model output format is not guaranteed, so nothing here raises: every rule
falls back to a documented default when its pattern is missing.
"""
import logging
import re
from typing import List, Optional

from core.state import DebugPayload, SolutionPayload

logger = logging.getLogger(__name__)

DEFAULT_THOUGHT = "Solution approach based on efficiency and readability"
DEFAULT_DEBUG_THOUGHT = "Debug analysis based on your screenshots"
DEFAULT_DEBUG_CODE = "// Debug mode - see analysis below"
DEBUG_COMPLEXITY = "N/A"
MAX_DEBUG_THOUGHTS = 5

DEFAULT_TIME_COMPLEXITY = (
    "O(n) - Linear time complexity because we only iterate through the array once. "
    "Each element is processed exactly one time, and the hashmap lookups are O(1) operations."
)
DEFAULT_SPACE_COMPLEXITY = (
    "O(n) - Linear space complexity because we store elements in the hashmap. "
    "In the worst case, we might need to store all elements before finding the solution pair."
)
DEFAULT_NOTATION_PREFIX = "O(n) - "

FENCED_BLOCK = re.compile(r"```[ \t]*(?:[\w+#.-]+)?[ \t]*\r?\n?([\s\S]*?)```")
THOUGHTS_SECTION = re.compile(
    r"(?:Thoughts:|Key Insights:|Reasoning:|Approach:)([\s\S]*?)(?:Time complexity:|\Z)",
    re.IGNORECASE,
)
LIST_ITEM = re.compile(r"^[ \t]*(?:[-*•][ \t]+|\d+\.[ \t]*)(.*)$", re.MULTILINE)
# Bold markers left over from "**Thoughts:**" style headings
BOLD_MARKER_LINE = re.compile(r"^[ \t]*\*+[ \t]*$", re.MULTILINE)
DEBUG_LIST_ITEM = re.compile(r"^[ ]*(?:[-*•]|\d+\.)[ ]+([^\n]+)", re.MULTILINE)
BIG_O = re.compile(r"O\([^)]+\)", re.IGNORECASE)
# A "Label:" occurrence wins over a bare label at the start of a line
COMPLEXITY_LABELS = (
    r"\**[ \t]*{label}[ \t]*\**[ \t]*:[ \t]*\**[ \t]*",
    r"^[ \t]*[#*\d.\-]*[ \t]*{label}\b[ \t]*\**[ \t]*",
)
NEXT_COMPLEXITY_LABEL = re.compile(
    r"\n[ \t]*[#*\d.\- \t]*(?:time|space) complexity|(?:time|space) complexity[ \t]*\**[ \t]*:",
    re.IGNORECASE,
)
BLANK_LINE = re.compile(r"\n[ \t]*\n")

# Applied in order, first occurrence only, when the analysis has no headings
DEBUG_SECTION_HEADINGS = [
    (re.compile(r"issues identified|problems found|bugs found", re.IGNORECASE), "## Issues Identified"),
    (re.compile(r"code improvements|improvements|suggested changes", re.IGNORECASE), "## Code Improvements"),
    (re.compile(r"optimizations|performance improvements", re.IGNORECASE), "## Optimizations"),
    (re.compile(r"explanation|detailed analysis", re.IGNORECASE), "## Explanation"),
]


def extract_code(text: str, default: Optional[str] = None) -> str:
    """
    Returns the trimmed content of the first fenced code block.

    Without a fence, returns `default` if given, else the whole trimmed text.
    """
    match = FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    if default is not None:
        return default
    return text.strip()


def extract_thoughts(text: str) -> List[str]:
    """Pulls the rationale list that follows a Thoughts/Reasoning style heading."""
    thoughts: List[str] = []
    match = THOUGHTS_SECTION.search(text)
    if match and match.group(1):
        section = BOLD_MARKER_LINE.sub("", match.group(1).lstrip("*"))
        items = [item.strip() for item in LIST_ITEM.findall(section)]
        thoughts = [item for item in items if item]
        if not thoughts:
            thoughts = [line.strip() for line in section.split("\n") if line.strip()]

    if not thoughts:
        logger.debug("No rationale found in response, using default thought.")
        return [DEFAULT_THOUGHT]
    return thoughts


def _complexity_span(text: str, label: str) -> Optional[str]:
    start = None
    for pattern in COMPLEXITY_LABELS:
        start = re.search(pattern.format(label=label), text, re.IGNORECASE | re.MULTILINE)
        if start:
            break
    if not start:
        return None
    rest = text[start.end():]
    end = NEXT_COMPLEXITY_LABEL.search(rest)
    span = rest[:end.start()] if end else rest
    blank = BLANK_LINE.search(span)
    if blank:
        span = span[:blank.start()]
    return span.strip(" \t\r\n*-") or None


def format_complexity(raw: str) -> str:
    """
    Normalizes a complexity explanation to "<notation> - <explanation>".

    Missing notation gets the "O(n) - " prefix; notation without an
    explanatory clause is moved to the front.
    """
    notation = BIG_O.search(raw)
    if not notation:
        return f"{DEFAULT_NOTATION_PREFIX}{raw}"
    if "-" in raw or "because" in raw:
        return raw
    remainder = " ".join((raw[:notation.start()] + raw[notation.end():]).split())
    if not remainder:
        return notation.group(0)
    return f"{notation.group(0)} - {remainder}"


def extract_complexity(text: str, label: str, default: str) -> str:
    span = _complexity_span(text, label)
    if span is None:
        logger.debug(f"No '{label}' section found, using canned explanation.")
        return default
    return format_complexity(span)


def extract_time_complexity(text: str) -> str:
    return extract_complexity(text, "Time complexity", DEFAULT_TIME_COMPLEXITY)


def extract_space_complexity(text: str) -> str:
    return extract_complexity(text, "Space complexity", DEFAULT_SPACE_COMPLEXITY)


def parse_solution_response(text: str) -> SolutionPayload:
    return SolutionPayload(
        code=extract_code(text),
        thoughts=extract_thoughts(text),
        time_complexity=extract_time_complexity(text),
        space_complexity=extract_space_complexity(text),
    )


def format_debug_analysis(text: str) -> str:
    """
    Inserts canonical section headings into an analysis that has none.

    Each synonym group replaces only its first case-insensitive occurrence.
    """
    if "# " in text or "## " in text:
        return text
    formatted = text
    for pattern, heading in DEBUG_SECTION_HEADINGS:
        formatted = pattern.sub(heading, formatted, count=1)
    return formatted


def extract_debug_thoughts(text: str) -> List[str]:
    items = [item.strip() for item in DEBUG_LIST_ITEM.findall(text)]
    items = [item for item in items if item]
    if not items:
        return [DEFAULT_DEBUG_THOUGHT]
    return items[:MAX_DEBUG_THOUGHTS]


def parse_debug_response(text: str) -> DebugPayload:
    analysis = format_debug_analysis(text)
    return DebugPayload(
        code=extract_code(text, default=DEFAULT_DEBUG_CODE),
        debug_analysis=analysis,
        thoughts=extract_debug_thoughts(analysis),
        time_complexity=DEBUG_COMPLEXITY,
        space_complexity=DEBUG_COMPLEXITY,
    )
