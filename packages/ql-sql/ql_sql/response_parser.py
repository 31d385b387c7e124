"""Parsing reasoning-model replies into optimization fragments.

The model is asked for four headed sections (see ``prompts.OUTPUT_FORMAT``)
but replies drift: headings come as Markdown (``### Rationale``), bold
(``**Rationale:**``) or numbered (``2. Rationale:``) titles, in any case, and
sometimes with slightly different wording. Each section is recognized by a
named marker pattern; anything missing becomes NO_DATA.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .schemas import NO_DATA, OptimizationFragment

logger = logging.getLogger(__name__)

OPTIMIZED_QUERY = "optimized_query"
RATIONALE = "rationale"
PERFORMANCE_IMPACT = "performance_impact"
POTENTIAL_RISKS = "potential_risks"


@dataclass(frozen=True)
class SectionMarker:
    """Recognizes one reply section by its (normalized) heading title."""
    name: str
    pattern: str

    def matches(self, title: str) -> bool:
        return re.fullmatch(self.pattern, title, flags=re.IGNORECASE) is not None


DEFAULT_MARKERS: Tuple[SectionMarker, ...] = (
    SectionMarker(OPTIMIZED_QUERY, r"(?:the\s+)?optimi[sz]ed\s+(?:sql\s+)?(?:query|statement|sql)"),
    SectionMarker(RATIONALE, r"rationale|explanation|reasoning"),
    SectionMarker(PERFORMANCE_IMPACT, r"(?:expected\s+)?(?:performance\s+)?impact"),
    SectionMarker(POTENTIAL_RISKS, r"(?:potential\s+)?risks?"),
)

_FENCE_RE = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)
_MARKDOWN_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(?P<title>.*?)\s*#*\s*$")
_BOLD_HEADING_RE = re.compile(r"^\s*(?:\d+[.)]\s*)?\*\*(?P<title>[^*]+?)\*\*\s*:?\s*(?P<rest>.*)$")
_NUMBERED_HEADING_RE = re.compile(r"^\s*\d+[.)]\s+(?P<title>[^:]+?)\s*(?::\s*(?P<rest>.*))?$")


def _normalize_title(title: str) -> str:
    title = re.sub(r"^\d+[.)]\s*", "", title.strip())
    return title.strip("*_: \t").strip()


def first_fenced_block(text: str) -> Optional[str]:
    """Content of the first fenced code block, trimmed; None if there is none."""
    match = _FENCE_RE.search(text)
    if match is None:
        return None
    return match.group(1).strip()


class ResponseSectionParser:
    """Splits a reply into named sections and builds an OptimizationFragment.

    Optimized SQL is taken from the fenced block inside its own section,
    then from the first fenced block anywhere in the reply; a reply with no
    fenced block at all yields NO_DATA for the query.
    """

    def __init__(self, markers: Sequence[SectionMarker] = DEFAULT_MARKERS):
        self.markers = tuple(markers)

    def _match_heading(self, line: str) -> Tuple[Optional[str], bool, str]:
        """Return (section name, is_heading, inline rest) for one line.

        Markdown headings always end the current section, even unknown ones;
        bold and numbered lines only count when they name a known section.
        """
        match = _MARKDOWN_HEADING_RE.match(line)
        if match:
            return self._section_for(match.group("title")), True, ""

        for regex in (_BOLD_HEADING_RE, _NUMBERED_HEADING_RE):
            match = regex.match(line)
            if match:
                name = self._section_for(match.group("title"))
                if name is not None:
                    return name, True, match.group("rest") or ""
        return None, False, ""

    def _section_for(self, title: str) -> Optional[str]:
        normalized = _normalize_title(title)
        for marker in self.markers:
            if marker.matches(normalized):
                return marker.name
        return None

    def split_sections(self, text: str) -> Dict[str, str]:
        """Map section name -> body text (trimmed). First occurrence wins."""
        bodies: Dict[str, List[str]] = {}
        current: Optional[str] = None
        in_fence = False

        for line in text.splitlines():
            if line.lstrip().startswith("```"):
                in_fence = not in_fence
            elif not in_fence:
                name, is_heading, rest = self._match_heading(line)
                if is_heading and (name is None or name not in bodies):
                    current = name
                    if name is not None:
                        bodies[name] = [rest] if rest else []
                    continue
            if current is not None:
                bodies[current].append(line)

        return {name: "\n".join(lines).strip() for name, lines in bodies.items()}

    def parse(self, text: str) -> OptimizationFragment:
        sections = self.split_sections(text or "")

        optimized_sql = None
        if OPTIMIZED_QUERY in sections:
            optimized_sql = first_fenced_block(sections[OPTIMIZED_QUERY])
        if optimized_sql is None:
            optimized_sql = first_fenced_block(text or "")
            if optimized_sql is not None:
                logger.info("Optimized query taken from first code block in reply")

        missing = [m.name for m in self.markers if not sections.get(m.name)]
        if missing:
            logger.warning("Reply is missing section(s): %s", ", ".join(missing))

        return OptimizationFragment(
            optimized_sql=optimized_sql or NO_DATA,
            rationale=sections.get(RATIONALE) or NO_DATA,
            performance_impact=sections.get(PERFORMANCE_IMPACT) or NO_DATA,
            potential_risks=sections.get(POTENTIAL_RISKS) or NO_DATA,
        )
