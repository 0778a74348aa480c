"""
Navigation destinations (catalog rows) and the resolver's match type.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .access import Tier


class PageDestination(BaseModel):
    url: str
    title: str
    required_tier: Tier = Tier.GUEST
    priority: int = Field(0, description="Tie-break weight between equally similar pages")
    embedding: List[float] = Field(default_factory=list)
    is_active: bool = True


class SectionDestination(BaseModel):
    element_id: str
    title: str
    page_url: str
    page_title: str = ""
    required_tier: Tier = Tier.GUEST
    embedding: List[float] = Field(default_factory=list)
    is_active: bool = True


class DestinationType(str, Enum):
    PAGE = "page"
    SECTION = "section"
    PAGE_AND_SECTION = "page_and_section"


class DestinationMatch(BaseModel):
    """
    The single navigation action chosen for a query.

    ``type`` tells the client what to do: navigate (page), scroll
    (section on the current page) or navigate then scroll
    (page_and_section). ``is_on_current_page`` and ``alternative_exists``
    let the assistant explain the choice.
    """

    type: DestinationType
    page_url: str
    page_title: str
    required_tier: Tier
    section_id: Optional[str] = None
    section_title: Optional[str] = None
    similarity: float
    is_on_current_page: Optional[bool] = None
    alternative_exists: Optional[bool] = None
