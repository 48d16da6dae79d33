"""Section extraction, anchors and citations for rendered blog markup.

Sections are derived from heading tags on demand and never persisted:
a document with no headings has no sections.
"""
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from app import config
from app.rag.cleaner import strip_html

HEADING_PATTERN = re.compile(r"<(h[1-6])\b[^>]*>(.*?)</\1\s*>", re.IGNORECASE | re.DOTALL)

ANCHOR_MAX_LENGTH = 50
EXCERPT_LENGTH = 200
WORDS_PER_MINUTE = 200


@dataclass
class Section:
    """A heading-delimited region of a document's markup."""

    id: str
    title: str
    level: int
    content: str
    excerpt: str
    start_position: int
    end_position: int


@dataclass
class ProcessedBlogContent:
    sections: List[Section] = field(default_factory=list)
    content_with_anchors: str = ""
    word_count: int = 0
    reading_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sections": [asdict(s) for s in self.sections],
            "content_with_anchors": self.content_with_anchors,
            "word_count": self.word_count,
            "reading_time": self.reading_time,
        }


@dataclass
class Citation:
    """A source reference attached to an answer."""

    title: str
    url: str
    excerpt: str
    confidence: float
    document_id: str
    section: Optional[str] = None
    section_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "title": self.title,
            "url": self.url,
            "excerpt": self.excerpt,
            "confidence": self.confidence,
            "document_id": self.document_id,
        }
        if self.section_id:
            data["section"] = self.section
            data["section_id"] = self.section_id
        return data


def create_anchor_id(text: str) -> str:
    """Derive a URL-safe anchor from heading text.

    >>> create_anchor_id("Hello, World!")
    'hello-world'
    """
    anchor = (text or "").lower()
    anchor = re.sub(r"[^a-z0-9\s-]", "", anchor)
    anchor = re.sub(r"\s+", "-", anchor)
    anchor = re.sub(r"-+", "-", anchor)
    anchor = anchor.strip("-")
    return anchor[:ANCHOR_MAX_LENGTH]


def _unique_anchor(anchor: str, seen: Dict[str, int]) -> str:
    """Suffix repeated anchors with -2, -3, ... keeping within the length cap."""
    anchor = anchor or "section"
    count = seen.get(anchor, 0) + 1
    seen[anchor] = count

    if count == 1:
        return anchor

    while True:
        suffix = f"-{count}"
        candidate = anchor[: ANCHOR_MAX_LENGTH - len(suffix)].rstrip("-") + suffix
        if candidate not in seen:
            seen[candidate] = 1
            return candidate
        count += 1


def make_excerpt(text: str, length: int = EXCERPT_LENGTH) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


def extract_sections(markup: str) -> List[Section]:
    """Split rendered markup into sections at each h1-h6 heading.

    Args:
        markup: Rendered HTML

    Returns:
        Sections in document order; a section's body runs from the end of
        its heading to the start of the next heading (or end of markup)
    """
    if not markup:
        return []

    headings = list(HEADING_PATTERN.finditer(markup))
    seen: Dict[str, int] = {}
    sections = []

    for i, match in enumerate(headings):
        title = strip_html(match.group(2))
        end_position = headings[i + 1].start() if i + 1 < len(headings) else len(markup)
        body = strip_html(markup[match.end() : end_position])

        sections.append(
            Section(
                id=_unique_anchor(create_anchor_id(title), seen),
                title=title,
                level=int(match.group(1)[1]),
                content=body,
                excerpt=make_excerpt(body),
                start_position=match.start(),
                end_position=end_position,
            )
        )

    return sections


def calculate_reading_time(word_count: int) -> int:
    return math.ceil(word_count / WORDS_PER_MINUTE)


def process_blog_content(markup: str) -> ProcessedBlogContent:
    """Extract sections and rewrite headings with id attributes for deep links."""
    if not markup:
        return ProcessedBlogContent()

    sections = extract_sections(markup)
    anchors = iter([s.id for s in sections])

    def add_anchor(match: re.Match) -> str:
        tag = match.group(1)
        return f'<{tag} id="{next(anchors)}">{match.group(2)}</{tag}>'

    content_with_anchors = HEADING_PATTERN.sub(add_anchor, markup)
    word_count = len(strip_html(markup).split())

    return ProcessedBlogContent(
        sections=sections,
        content_with_anchors=content_with_anchors,
        word_count=word_count,
        reading_time=calculate_reading_time(word_count),
    )


def find_relevant_section(
    sections: List[Section],
    query_text: str,
    min_confidence: float = None,
) -> Optional[Section]:
    """Pick the section that best matches a query.

    Scoring per section: +0.8 if the title contains the whole query,
    +0.6 times the fraction of query words found in title or body, and
    +0.4 if the whole query appears in title or body. The first section
    with the highest score wins, provided it reaches min_confidence.
    """
    min_confidence = (
        min_confidence if min_confidence is not None else config.SECTION_MIN_CONFIDENCE
    )

    query = (query_text or "").strip().lower()
    if not sections or not query:
        return None

    words = query.split()
    best_match = None
    best_score = 0.0

    for section in sections:
        title = section.title.lower()
        content = section.content.lower()

        score = 0.0
        if query in title:
            score += 0.8

        matching = [w for w in words if w in content or w in title]
        score += (len(matching) / len(words)) * 0.6

        if query in content or query in title:
            score += 0.4

        if score >= min_confidence and (best_match is None or score > best_score):
            best_score = score
            best_match = section

    return best_match


def canonical_url(collection: str, document_id: str) -> str:
    """Public URL of a document: /blog/<slug> or /portfolio/<path>."""
    prefix = "blog" if collection == "blog" else "portfolio"
    return f"{config.SITE_URL}/{prefix}/{document_id}"


def generate_section_url(url: str, section_id: str) -> str:
    return f"{url}#{section_id}"


def create_citation(
    document_id: str,
    title: str,
    section: Optional[Section],
    confidence: float,
    fallback_excerpt: str = "",
    collection: str = "blog",
) -> Citation:
    """Build a citation, deep-linking to the section when one is given."""
    url = canonical_url(collection, document_id)

    if section:
        return Citation(
            title=title,
            url=generate_section_url(url, section.id),
            section=section.title,
            section_id=section.id,
            excerpt=section.excerpt,
            confidence=confidence,
            document_id=document_id,
        )

    return Citation(
        title=title,
        url=url,
        excerpt=fallback_excerpt,
        confidence=confidence,
        document_id=document_id,
    )
