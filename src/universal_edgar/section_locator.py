"""
Section Locator: Deterministic extraction of 10-K sections.

Converts a filing document to line-oriented text, then locates section
boundaries by scanning for a fixed set of normalized item-header labels.
No LLM. No network calls.

Extraction Strategy (in priority order):
A) Header scan - tokenizer producing a {label -> text} map (HIGH)
B) Labelled regex - "item 1 business ... item 1a" style bounds (MED)
C) Sentence patterns - business section only, "we are/operate ..." (LOW)

Key Design Decisions:
- Always return explicit method + confidence + reason
- Table-of-contents entries are skipped by keeping, per label, the
  occurrence with the longest body
- If all tiers fail, return None (caller substitutes a placeholder)
- Deterministic: same input -> same output
"""
from __future__ import annotations

import html as html_lib
import logging
import re
import unicodedata
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString

from universal_edgar.models import SectionExtract

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

# Body shorter than this after a header is not a real section (TOC line etc.)
MIN_SECTION_CHARS = 200

# Header lines are short; longer lines are prose that mentions an item
MAX_HEADER_LINE_CHARS = 120

BUSINESS_MAX_CHARS = 2000
BUSINESS_HEAD_CHARS = 1500
BUSINESS_SENTENCE_MAX_CHARS = 1000
MIN_PARAGRAPH_CHARS = 100
MAX_PARAGRAPHS = 3

ITEM_LABELS = {
    "item 1", "item 1a", "item 1b", "item 1c", "item 2", "item 3", "item 4",
    "item 5", "item 6", "item 7", "item 7a", "item 8", "item 9", "item 9a",
    "item 9b", "item 9c", "item 10", "item 11", "item 12", "item 13",
    "item 14", "item 15", "item 16",
}

SECTION_LABELS = {
    "business": "item 1",
    "risk_factors": "item 1a",
    "unresolved_staff_comments": "item 1b",
    "cybersecurity": "item 1c",
    "properties": "item 2",
    "legal_proceedings": "item 3",
    "mda": "item 7",
    "market_risk": "item 7a",
    "financial_statements": "item 8",
}

HEADER_PATTERN = re.compile(
    r"^item\s*(\d{1,2})\s*([a-c](?![a-z]))?\s*[.:\-–—]?\s*(.*)$",
    re.IGNORECASE,
)

CONTINUATION_PATTERN = re.compile(r"continued|cont['’]?d", re.IGNORECASE)

# Fallback tier B: labelled sections bounded by the next item header
SECTION_REGEXES = {
    "business": re.compile(
        r"(?:item\s*1\s*[.\-\s]*business|business\s*overview|our\s*business)"
        r"(.*?)(?:item\s*1a|item\s*2|risk\s*factors)",
        re.IGNORECASE | re.DOTALL,
    ),
    "risk_factors": re.compile(
        r"(?:item\s*1a\s*[.\-\s]*risk\s*factors|risk\s*factors)"
        r"(.*?)(?:item\s*1b|item\s*2|unresolved\s*staff\s*comments)",
        re.IGNORECASE | re.DOTALL,
    ),
}

# Fallback tier C: business-description sentences
BUSINESS_SENTENCE_PATTERNS = [
    re.compile(r"we\s+(?:are|operate|provide|manufacture|develop)(.*?)(?:\.|we\s+also)", re.IGNORECASE | re.DOTALL),
    re.compile(r"the\s+company\s+(?:is|operates|provides)(.*?)(?:\.|the\s+company)", re.IGNORECASE | re.DOTALL),
    re.compile(r"[^.]*\b(?:operates|provides|manufactures|develops|offers)\b[^.]*\.", re.IGNORECASE),
]


# =============================================================================
# Text Normalization
# =============================================================================


def _normalize_line(text: str) -> str:
    """NFKC-normalize and collapse whitespace (handles &nbsp; and smart quotes)."""
    text = unicodedata.normalize("NFKC", text)
    return " ".join(text.split()).strip()


def clean_text(text: str) -> str:
    """Strip tags and entities, collapse all whitespace to single spaces."""
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_lib.unescape(text)
    return _normalize_line(text)


def html_to_text(raw: str) -> str:
    """Convert a filing document to block-separated plain text.

    HTML is flattened with BeautifulSoup so block elements become lines.
    Plain-text documents pass through with whitespace normalized per line.
    """
    if not raw:
        return ""
    if re.search(r"<\s*(html|body|div|p|table|span|font)\b", raw[:5000], re.IGNORECASE):
        soup = BeautifulSoup(raw, "lxml")
        for tag in soup(["script", "style", "head"]):
            tag.decompose()
        # Source line wraps inside a text node are not paragraph breaks
        for node in soup.find_all(string=True):
            if type(node) is NavigableString and "\n" in node:
                node.replace_with(" ".join(node.split()))
        text = soup.get_text("\n")
    else:
        text = html_lib.unescape(raw)

    lines = [_normalize_line(line) for line in text.splitlines()]
    out: List[str] = []
    for line in lines:
        if line:
            out.append(line)
        elif out and out[-1] != "":
            out.append("")
    return "\n".join(out).strip()


# =============================================================================
# Tier A: Header Tokenizer
# =============================================================================


def _match_header(line: str) -> Optional[str]:
    """Return the normalized item label if the line is an item header."""
    if not line or len(line) > MAX_HEADER_LINE_CHARS:
        return None
    match = HEADER_PATTERN.match(line)
    if not match:
        return None
    number, letter, title = match.group(1), match.group(2), match.group(3)
    # "Item 1A (Continued)" does not start a new section
    if CONTINUATION_PATTERN.search(title or ""):
        return None
    # Prose such as "Item 7 of this report discusses..." ends in a period
    if title and title.endswith(".") and len(title.split()) > 6:
        return None
    label = f"item {int(number)}{(letter or '').lower()}"
    return label if label in ITEM_LABELS else None


def tokenize_headers(text: str) -> List[Tuple[int, str]]:
    """Return (line index, label) for every item header line."""
    headers: List[Tuple[int, str]] = []
    for i, line in enumerate(text.split("\n")):
        label = _match_header(line)
        if label:
            headers.append((i, label))
    return headers


def locate_sections(text: str) -> Dict[str, str]:
    """Map each item label to its body text.

    A body runs from the line after its header to the line before the next
    header. When a label occurs more than once (table of contents, cross
    references), the occurrence with the longest body wins.
    """
    lines = text.split("\n")
    headers = tokenize_headers(text)
    sections: Dict[str, str] = {}

    for n, (line_index, label) in enumerate(headers):
        end = headers[n + 1][0] if n + 1 < len(headers) else len(lines)
        body_lines = lines[line_index + 1:end]
        # Title may sit on the header line itself or on the next line
        body = "\n".join(body_lines).strip()
        if len(body) > len(sections.get(label, "")):
            sections[label] = body

    return sections


# =============================================================================
# Tiers B and C
# =============================================================================


def _extract_via_regex(text: str, section: str) -> Optional[str]:
    pattern = SECTION_REGEXES.get(section)
    if pattern is None:
        return None
    best = ""
    for match in pattern.finditer(text):
        body = match.group(1).strip()
        if len(body) > len(best):
            best = body
    return best if len(best) >= MIN_PARAGRAPH_CHARS else None


def _extract_via_sentences(text: str) -> Optional[str]:
    flat = clean_text(text)
    for pattern in BUSINESS_SENTENCE_PATTERNS:
        match = pattern.search(flat)
        if match:
            sentence = match.group(0).strip()
            if len(sentence) > 20:
                return sentence[:BUSINESS_SENTENCE_MAX_CHARS]
    return None


# =============================================================================
# Main Entry Point
# =============================================================================


def extract_section(raw: str, section: str) -> Optional[SectionExtract]:
    """
    Extract one named section ("business", "risk_factors", ...) from a filing.

    Args:
        raw: Raw HTML or text of the filing's primary document
        section: Key of SECTION_LABELS

    Returns:
        SectionExtract with text + method + confidence, or None if all tiers fail
    """
    if section not in SECTION_LABELS:
        raise ValueError(f"Unknown section: {section}")
    text = html_to_text(raw)
    if not text:
        return None

    label = SECTION_LABELS[section]
    body = locate_sections(text).get(label, "")
    if len(body) >= MIN_SECTION_CHARS:
        logger.debug(f"{section}: header scan found {len(body)} chars")
        return SectionExtract(
            section=section,
            text=body,
            method="header_scan",
            confidence="HIGH",
            reason=f"Found '{label}' header with {len(body)} chars of body",
            char_count=len(body),
        )

    body = _extract_via_regex(text, section)
    if body:
        logger.debug(f"{section}: regex fallback found {len(body)} chars")
        return SectionExtract(
            section=section,
            text=body,
            method="regex",
            confidence="MED",
            reason="Labelled-section regex bounded by next item header",
            char_count=len(body),
        )

    if section == "business":
        sentence = _extract_via_sentences(text)
        if sentence:
            return SectionExtract(
                section=section,
                text=sentence,
                method="sentence_pattern",
                confidence="LOW",
                reason="No section header; matched business-description sentence",
                char_count=len(sentence),
            )

    logger.info(f"All extraction tiers failed for section {section}")
    return None


def summarize_business(text: str) -> str:
    """Cap a business section to its first three substantial paragraphs.

    Paragraphs longer than 100 characters are kept (at most three), joined,
    and truncated to 2000 characters. If none qualify, the first 1500
    characters of the cleaned text are returned.
    """
    paragraphs = [clean_text(p) for p in re.split(r"\n\s*\n|\n", text)]
    substantial = [p for p in paragraphs if len(p) > MIN_PARAGRAPH_CHARS][:MAX_PARAGRAPHS]
    if substantial:
        return " ".join(substantial)[:BUSINESS_MAX_CHARS]
    return clean_text(text)[:BUSINESS_HEAD_CHARS]
