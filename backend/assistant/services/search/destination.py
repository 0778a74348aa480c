"""
Destination resolver: free-text query -> one navigation action.

Searches the "pages" and "sections" collections (top 3 each, similarity
floor 0.4) and disambiguates in this order, first match wins:

1. Query says "page" and a page matched -> page
2. Query says "section" and a section matched -> that section
   (scroll if it lives on the current page, otherwise navigate + scroll)
3. Best section is on the current page -> scroll to it
4. Both matched -> page only if it beats the section by more than 0.1,
   otherwise navigate + scroll to the section
5. Whichever single candidate exists
6. Nothing above the floor -> None

Tier gating is left to the caller: the match carries ``required_tier`` so
the client can show a login prompt instead of silently failing.
"""
import asyncio
import os
from typing import List, Optional

from assistant.core.exceptions import RetrievalError
from assistant.core.logging import get_logger
from assistant.core.metrics import record_destination_resolution
from assistant.core.tracing import start_span
from assistant.models.access import Tier
from assistant.models.destinations import (
    DestinationMatch,
    DestinationType,
    PageDestination,
    SectionDestination,
)
from assistant.services.search.embeddings import EmbeddingGateway, get_embedding_gateway
from assistant.services.search.similarity import (
    PAGES,
    SECTIONS,
    InMemorySimilarityIndex,
    SimilarityHit,
    SimilarityIndex,
    get_similarity_index,
)

logger = get_logger(__name__)

CANDIDATES_PER_COLLECTION = 3
DESTINATION_MIN_SIMILARITY = 0.4
DISAMBIGUATION_MARGIN = 0.1
# Float tolerance: a gap of exactly 0.1 is not more than the margin.
MARGIN_TOLERANCE = 1e-9

PAGE_KEYWORD = "page"
SECTION_KEYWORD = "section"


def _page_match(page: SimilarityHit, alternative_exists: Optional[bool] = None) -> DestinationMatch:
    return DestinationMatch(
        type=DestinationType.PAGE,
        page_url=page.payload["url"],
        page_title=page.payload.get("title", ""),
        required_tier=Tier(page.payload.get("required_tier", Tier.GUEST)),
        similarity=page.similarity,
        alternative_exists=alternative_exists,
    )


def _section_match(
    section: SimilarityHit,
    current_path: str,
    alternative_exists: Optional[bool] = None,
) -> DestinationMatch:
    on_current_page = section.payload["page_url"] == current_path
    return DestinationMatch(
        type=DestinationType.SECTION if on_current_page else DestinationType.PAGE_AND_SECTION,
        page_url=section.payload["page_url"],
        page_title=section.payload.get("page_title", ""),
        required_tier=Tier(section.payload.get("required_tier", Tier.GUEST)),
        section_id=section.payload.get("element_id"),
        section_title=section.payload.get("title"),
        similarity=section.similarity,
        is_on_current_page=on_current_page,
        alternative_exists=alternative_exists,
    )


def choose_destination(
    query: str,
    current_path: str,
    pages: List[SimilarityHit],
    sections: List[SimilarityHit],
) -> Optional[DestinationMatch]:
    """
    Pick exactly one destination from ranked page and section candidates.

    ``pages`` and ``sections`` must already be floor-filtered and ordered by
    descending similarity.
    """
    best_page = pages[0] if pages else None
    best_section = sections[0] if sections else None

    if best_page is None and best_section is None:
        return None

    normalized = query.lower()
    wants_page = PAGE_KEYWORD in normalized
    wants_section = SECTION_KEYWORD in normalized

    if wants_page and best_page is not None:
        return _page_match(best_page, alternative_exists=best_section is not None)

    if wants_section and best_section is not None:
        return _section_match(best_section, current_path)

    if best_section is not None and best_section.payload["page_url"] == current_path:
        # Scrolling beats navigating when the answer is already on screen.
        return _section_match(
            best_section,
            current_path,
            alternative_exists=best_page is not None and best_page.payload["url"] != current_path,
        )

    if best_page is not None and best_section is not None:
        if best_page.similarity - best_section.similarity > DISAMBIGUATION_MARGIN + MARGIN_TOLERANCE:
            return _page_match(best_page, alternative_exists=True)
        return _section_match(best_section, current_path)

    if best_page is not None:
        return _page_match(best_page)

    return _section_match(best_section, current_path)


class DestinationResolver:
    """Semantic navigation over pages and in-page sections."""

    def __init__(
        self,
        embeddings: Optional[EmbeddingGateway] = None,
        index: Optional[SimilarityIndex] = None,
        timeout_seconds: float = 5.0,
    ):
        self._embeddings = embeddings
        self._index = index
        self.timeout_seconds = timeout_seconds

    @property
    def embeddings(self) -> EmbeddingGateway:
        return self._embeddings if self._embeddings is not None else get_embedding_gateway()

    @property
    def index(self) -> SimilarityIndex:
        return self._index if self._index is not None else get_similarity_index()

    async def _candidates(self, query: str):
        vector = await self.embeddings.embed(query)
        return await asyncio.gather(
            self.index.query(
                PAGES,
                vector,
                top_n=CANDIDATES_PER_COLLECTION,
                min_similarity=DESTINATION_MIN_SIMILARITY,
            ),
            self.index.query(
                SECTIONS,
                vector,
                top_n=CANDIDATES_PER_COLLECTION,
                min_similarity=DESTINATION_MIN_SIMILARITY,
            ),
        )

    async def resolve(
        self,
        query: str,
        current_path: str = "/",
        user_tier: Tier = Tier.GUEST,
    ) -> Optional[DestinationMatch]:
        """
        Resolve a natural-language destination ("show me pricing").

        Returns:
            The single best DestinationMatch, or None when nothing matched
            or retrieval failed.
        """
        if not query or not query.strip():
            return None

        with start_span("destination.resolve", current_path=current_path, user_tier=user_tier.value):
            try:
                pages, sections = await asyncio.wait_for(
                    self._candidates(query),
                    timeout=self.timeout_seconds,
                )
            except (RetrievalError, asyncio.TimeoutError) as exc:
                record_destination_resolution("error")
                logger.warning(
                    "destination_resolve_failed",
                    query=query,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None

            # Floor is re-applied so every index implementation behaves alike.
            pages = [h for h in pages if h.similarity >= DESTINATION_MIN_SIMILARITY]
            sections = [h for h in sections if h.similarity >= DESTINATION_MIN_SIMILARITY]
            match = choose_destination(query, current_path, pages, sections)

        if match is None:
            record_destination_resolution("none")
            logger.info(
                "destination_not_found",
                query=query,
                current_path=current_path,
            )
            return None

        record_destination_resolution(match.type.value, match.similarity)
        logger.info(
            "destination_resolved",
            query=query,
            current_path=current_path,
            match_type=match.type.value,
            page_url=match.page_url,
            section_id=match.section_id,
            similarity=round(match.similarity, 4),
            required_tier=match.required_tier.value,
            user_tier=user_tier.value,
            page_candidates=len(pages),
            section_candidates=len(sections),
        )
        return match


def index_destinations(
    index: InMemorySimilarityIndex,
    pages: List[PageDestination],
    sections: List[SectionDestination],
) -> None:
    """
    Load catalog destinations into an in-memory index.

    A section is only active while its page is, inherits the page title when
    none is denormalized, and requires the stricter of the two tiers.
    """
    by_url = {page.url: page for page in pages}

    for page in pages:
        index.add(
            PAGES,
            page.url,
            page.embedding,
            {
                "url": page.url,
                "title": page.title,
                "required_tier": page.required_tier.value,
                "priority": page.priority,
                "is_active": page.is_active,
            },
        )

    for section in sections:
        page = by_url.get(section.page_url)
        required = section.required_tier
        if page is not None and page.required_tier.level > required.level:
            required = page.required_tier
        index.add(
            SECTIONS,
            f"{section.page_url}#{section.element_id}",
            section.embedding,
            {
                "element_id": section.element_id,
                "title": section.title,
                "page_url": section.page_url,
                "page_title": section.page_title or (page.title if page else ""),
                "required_tier": required.value,
                "is_active": section.is_active and (page is None or page.is_active),
            },
        )


def can_access_destination(user_tier: Tier, match: DestinationMatch) -> bool:
    return user_tier.allows(match.required_tier)


_destination_resolver: Optional[DestinationResolver] = None


def get_destination_resolver() -> DestinationResolver:
    global _destination_resolver
    if _destination_resolver is None:
        _destination_resolver = DestinationResolver(
            timeout_seconds=float(os.getenv("RETRIEVAL_TIMEOUT_SECONDS", "5.0") or "5.0"),
        )
    return _destination_resolver
