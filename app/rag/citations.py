"""Citation building for answered questions."""
from typing import Callable, Dict, List, Optional
import structlog

from app import db
from app.rag.sections import (
    Citation,
    Section,
    create_citation,
    extract_sections,
    find_relevant_section,
    make_excerpt,
)
from app.rag.store_faiss import SimilarityMatch

logger = structlog.get_logger()


class CitationBuilder:
    """Turns similarity matches into citations with section deep links."""

    def __init__(self, load_markup: Optional[Callable[[str], Optional[str]]] = None):
        """Initialize the builder.

        Args:
            load_markup: Returns a document's stored markup by id (reads SQLite by default)
        """
        self.load_markup = load_markup or self._load_markup_from_db

    @staticmethod
    def _load_markup_from_db(document_id: str) -> Optional[str]:
        document = db.get_document(document_id)
        return document["markup"] if document else None

    def build(self, matches: List[SimilarityMatch], question: str = "") -> List[Citation]:
        """Create one citation per match, in match order.

        The section is chosen by the question first, then by the chunk text.
        """
        sections_cache: Dict[str, List[Section]] = {}
        citations = []

        for match in matches:
            if match.document_id not in sections_cache:
                markup = self.load_markup(match.document_id) or ""
                sections_cache[match.document_id] = extract_sections(markup)

            sections = sections_cache[match.document_id]
            section = find_relevant_section(sections, question) if question else None
            if section is None:
                section = find_relevant_section(sections, match.content)

            if match.collection == "blog":
                title = match.title
            else:
                title = match.heading or match.title

            citations.append(
                create_citation(
                    document_id=match.document_id,
                    title=title,
                    section=section,
                    confidence=round(match.similarity, 2),
                    fallback_excerpt=make_excerpt(match.content),
                    collection=match.collection,
                )
            )

        logger.debug("citations_built", count=len(citations))
        return citations
