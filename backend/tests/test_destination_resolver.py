"""
Tests for the destination resolver: disambiguation rules, floor, and
failure handling. Uses the in-memory similarity index and a static
embedding gateway, no database or provider calls.
"""
import pytest

from assistant.core.exceptions import RetrievalError
from assistant.models.access import Tier
from assistant.models.destinations import DestinationType, PageDestination, SectionDestination
from assistant.services.search.destination import (
    DESTINATION_MIN_SIMILARITY,
    DestinationResolver,
    can_access_destination,
    choose_destination,
    index_destinations,
)
from assistant.services.search.similarity import PAGES, SECTIONS, SimilarityHit


def page_hit(url, similarity, title="Page", tier=Tier.GUEST):
    return SimilarityHit(
        id=url,
        similarity=similarity,
        payload={"url": url, "title": title, "required_tier": tier.value, "priority": 0},
    )


def section_hit(page_url, element_id, similarity, title="Section", tier=Tier.GUEST):
    return SimilarityHit(
        id=f"{page_url}#{element_id}",
        similarity=similarity,
        payload={
            "element_id": element_id,
            "title": title,
            "page_url": page_url,
            "page_title": page_url.strip("/").title(),
            "required_tier": tier.value,
        },
    )


@pytest.fixture
def pricing_site(index, similarity_vector):
    """A /pricing page at 0.71 and a Pricing section on /services at 0.78."""
    pages = [
        PageDestination(url="/pricing", title="Pricing", embedding=similarity_vector(0.71)),
        PageDestination(url="/services", title="Services", embedding=similarity_vector(0.2)),
    ]
    sections = [
        SectionDestination(
            element_id="pricing",
            title="Pricing",
            page_url="/services",
            embedding=similarity_vector(0.78),
        ),
    ]
    index_destinations(index, pages, sections)
    return index


@pytest.mark.asyncio
async def test_same_page_section_preferred(embeddings, pricing_site):
    """A section on the current page wins even though a page also matched."""
    resolver = DestinationResolver(embeddings=embeddings, index=pricing_site)

    match = await resolver.resolve("show me pricing", current_path="/services")

    assert match is not None
    assert match.type == DestinationType.SECTION
    assert match.is_on_current_page is True
    assert match.section_id == "pricing"
    assert match.page_url == "/services"
    assert match.similarity == pytest.approx(0.78, abs=1e-4)
    assert match.alternative_exists is True


@pytest.mark.asyncio
async def test_explicit_page_keyword(embeddings, pricing_site):
    resolver = DestinationResolver(embeddings=embeddings, index=pricing_site)

    match = await resolver.resolve("go to the pricing page", current_path="/services")

    assert match is not None
    assert match.type == DestinationType.PAGE
    assert match.page_url == "/pricing"
    assert match.alternative_exists is True
    assert match.section_id is None


@pytest.mark.asyncio
async def test_explicit_section_keyword_on_other_page(embeddings, pricing_site):
    resolver = DestinationResolver(embeddings=embeddings, index=pricing_site)

    match = await resolver.resolve("pricing section", current_path="/")

    assert match.type == DestinationType.PAGE_AND_SECTION
    assert match.is_on_current_page is False
    assert match.page_url == "/services"
    assert match.section_title == "Pricing"


@pytest.mark.asyncio
async def test_nothing_above_floor_returns_none(embeddings, index, similarity_vector):
    index_destinations(
        index,
        [PageDestination(url="/about", title="About", embedding=similarity_vector(0.39))],
        [
            SectionDestination(
                element_id="team",
                title="Team",
                page_url="/about",
                embedding=similarity_vector(0.2),
            )
        ],
    )
    resolver = DestinationResolver(embeddings=embeddings, index=index)

    assert await resolver.resolve("something unrelated", current_path="/") is None


@pytest.mark.asyncio
async def test_candidate_just_above_floor_is_kept(embeddings, index, similarity_vector):
    index_destinations(
        index,
        [PageDestination(url="/about", title="About", embedding=similarity_vector(0.41))],
        [],
    )
    resolver = DestinationResolver(embeddings=embeddings, index=index)

    match = await resolver.resolve("about", current_path="/")

    assert match is not None
    assert match.type == DestinationType.PAGE
    assert match.similarity >= DESTINATION_MIN_SIMILARITY


@pytest.mark.asyncio
async def test_embedding_failure_returns_none(failing_embeddings, pricing_site):
    resolver = DestinationResolver(embeddings=failing_embeddings, index=pricing_site)

    assert await resolver.resolve("pricing", current_path="/") is None


@pytest.mark.asyncio
async def test_index_failure_returns_none(embeddings):
    class BrokenIndex:
        async def query(self, collection, vector, top_n, min_similarity=0.0):
            raise RetrievalError("pgvector unavailable")

    resolver = DestinationResolver(embeddings=embeddings, index=BrokenIndex())

    assert await resolver.resolve("pricing", current_path="/") is None


@pytest.mark.asyncio
async def test_empty_query_skips_embedding(embeddings, pricing_site):
    resolver = DestinationResolver(embeddings=embeddings, index=pricing_site)

    assert await resolver.resolve("   ", current_path="/") is None
    assert embeddings.calls == []


def test_page_wins_only_beyond_margin():
    pages = [page_hit("/pricing", 0.85)]
    sections = [section_hit("/services", "pricing", 0.70)]

    match = choose_destination("pricing", "/", pages, sections)

    assert match.type == DestinationType.PAGE
    assert match.alternative_exists is True


def test_section_wins_within_margin():
    pages = [page_hit("/pricing", 0.75)]
    sections = [section_hit("/services", "pricing", 0.70)]

    match = choose_destination("pricing", "/", pages, sections)

    assert match.type == DestinationType.PAGE_AND_SECTION
    assert match.is_on_current_page is False
    assert match.section_id == "pricing"


def test_exact_margin_is_not_more_than_margin():
    pages = [page_hit("/pricing", 0.8)]
    sections = [section_hit("/services", "pricing", 0.7)]

    match = choose_destination("pricing", "/", pages, sections)

    assert match.type == DestinationType.PAGE_AND_SECTION


def test_single_section_on_current_page():
    match = choose_destination("team", "/about", [], [section_hit("/about", "team", 0.6)])

    assert match.type == DestinationType.SECTION
    assert match.is_on_current_page is True
    assert match.alternative_exists is False


def test_single_page_candidate():
    match = choose_destination("blog", "/", [page_hit("/blog", 0.6)], [])

    assert match.type == DestinationType.PAGE
    assert match.page_url == "/blog"


def test_no_candidates():
    assert choose_destination("anything", "/", [], []) is None


def test_page_margin_property():
    """Best page beating best section by more than 0.1 always yields a page."""
    grid = [0.41, 0.45, 0.5, 0.55, 0.6, 0.7, 0.8, 0.9, 0.99]
    for page_sim in grid:
        for section_sim in grid:
            if page_sim - section_sim <= 0.1 + 1e-6:
                continue
            match = choose_destination(
                "where is it",
                "/",
                [page_hit("/target", page_sim)],
                [section_hit("/elsewhere", "anchor", section_sim)],
            )
            assert match.type == DestinationType.PAGE, (page_sim, section_sim)


def test_current_page_section_property():
    """A section on the current page wins regardless of the page score."""
    grid = [0.41, 0.5, 0.6, 0.7, 0.8, 0.9, 0.99]
    for page_sim in grid:
        for section_sim in grid:
            match = choose_destination(
                "where is it",
                "/services",
                [page_hit("/pricing", page_sim)],
                [section_hit("/services", "pricing", section_sim)],
            )
            assert match.type == DestinationType.SECTION
            assert match.is_on_current_page is True


def test_keyword_detection_is_case_insensitive():
    pages = [page_hit("/pricing", 0.5)]
    sections = [section_hit("/services", "pricing", 0.9)]

    match = choose_destination("Open the Pricing PAGE", "/services", pages, sections)

    assert match.type == DestinationType.PAGE


def test_index_destinations_inherits_page_state(index, similarity_vector):
    pages = [
        PageDestination(url="/members", title="Members", required_tier=Tier.TIER2, embedding=similarity_vector(0.9)),
        PageDestination(url="/old", title="Old", is_active=False, embedding=similarity_vector(0.9)),
    ]
    sections = [
        SectionDestination(element_id="perks", title="Perks", page_url="/members", embedding=similarity_vector(0.9)),
        SectionDestination(element_id="legacy", title="Legacy", page_url="/old", embedding=similarity_vector(0.9)),
    ]

    index_destinations(index, pages, sections)

    assert index.size(PAGES) == 2
    assert index.size(SECTIONS) == 2


@pytest.mark.asyncio
async def test_inactive_page_hides_its_sections(embeddings, index, similarity_vector):
    index_destinations(
        index,
        [PageDestination(url="/old", title="Old", is_active=False, embedding=similarity_vector(0.9))],
        [SectionDestination(element_id="legacy", title="Legacy", page_url="/old", embedding=similarity_vector(0.9))],
    )
    resolver = DestinationResolver(embeddings=embeddings, index=index)

    assert await resolver.resolve("legacy", current_path="/") is None


@pytest.mark.asyncio
async def test_section_requires_stricter_tier(embeddings, index, similarity_vector):
    index_destinations(
        index,
        [PageDestination(url="/members", title="Members", required_tier=Tier.TIER2, embedding=similarity_vector(0.1))],
        [SectionDestination(element_id="perks", title="Perks", page_url="/members", embedding=similarity_vector(0.9))],
    )
    resolver = DestinationResolver(embeddings=embeddings, index=index)

    match = await resolver.resolve("member perks", current_path="/", user_tier=Tier.TIER1)

    assert match.required_tier == Tier.TIER2
    assert match.page_title == "Members"
    assert can_access_destination(Tier.TIER1, match) is False
    assert can_access_destination(Tier.TIER2, match) is True
