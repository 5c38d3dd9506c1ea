"""
Statutory citation parsing and structural comparison.

Understands U.S. Code citations ("7 U.S.C. 2014(e)(6)", "7 USC § 2017",
"Title 7, Section 2014") and CFR citations ("7 CFR 273.9(d)").
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

USC_PATTERNS = [
    re.compile(r"(\d+)\s*U\.?\s*S\.?\s*C\.?\s*(?:§+\s*)?(\d+[a-z]?)((?:\([A-Za-z0-9]+\))*)", re.IGNORECASE),
    re.compile(r"Title\s*(\d+)\D*?Section\s*(\d+[a-z]?)((?:\([A-Za-z0-9]+\))*)", re.IGNORECASE),
]
CFR_PATTERN = re.compile(
    r"(\d+)\s*C\.?\s*F\.?\s*R\.?\s*(?:§+\s*|Part\s*)?(\d+)(?:\.(\d+))?((?:\([A-Za-z0-9]+\))*)",
    re.IGNORECASE,
)
_SUBSECTION = re.compile(r"\(([A-Za-z0-9]+)\)")


@dataclass(frozen=True)
class Citation:
    """A normalized citation: code, title, section and subsection path."""

    code: str                      # "USC" or "CFR"
    title: str
    section: str                   # USC section, or CFR part
    subsections: Tuple[str, ...] = ()

    def __str__(self) -> str:
        subs = "".join(f"({s})" for s in self.subsections)
        if self.code == "CFR":
            return f"{self.title} CFR {self.section}{subs}"
        return f"{self.title} U.S.C. {self.section}{subs}"


def _subsections(text: str) -> Tuple[str, ...]:
    return tuple(s.lower() for s in _SUBSECTION.findall(text or ""))


def parse_citations(text: Optional[str]) -> List[Citation]:
    """Every citation found in the text, in order of appearance."""
    if not text:
        return []

    found: List[Tuple[int, Citation]] = []
    for pattern in USC_PATTERNS:
        for m in pattern.finditer(text):
            found.append((m.start(), Citation("USC", m.group(1), m.group(2).lower(), _subsections(m.group(3)))))
    for m in CFR_PATTERN.finditer(text):
        subs = ((m.group(3),) if m.group(3) else ()) + _subsections(m.group(4))
        found.append((m.start(), Citation("CFR", m.group(1), m.group(2), subs)))

    citations: List[Citation] = []
    for _, citation in sorted(found, key=lambda item: item[0]):
        if citation not in citations:
            citations.append(citation)
    return citations


def normalize_citation(text: Optional[str]) -> Optional[str]:
    """Canonical form of the first citation in the text, or None."""
    citations = parse_citations(text)
    return str(citations[0]) if citations else None


def _pair_score(a: Citation, b: Citation) -> float:
    if a.code != b.code or a.title != b.title:
        return 0.0
    if a.section != b.section:
        return 0.3
    if a.subsections == b.subsections:
        return 1.0

    shorter, longer = sorted((a.subsections, b.subsections), key=len)
    if longer[:len(shorter)] == shorter:
        # one citation is a parent of the other
        return 0.9
    return 0.7


def citation_score(provision_citation: Optional[str], term_citation: Optional[str]) -> float:
    """
    Structural similarity of two citation strings in [0, 1].

    1.0 exact, 0.9 parent/child subsection, 0.7 same section with
    different subsections, 0.3 same title only, 0.0 otherwise or when
    either side has no recognizable citation.
    """
    left = parse_citations(provision_citation)
    right = parse_citations(term_citation)
    if not left or not right:
        return 0.0
    return max(_pair_score(a, b) for a in left for b in right)
