"""Knowledge base passage returned by the retriever."""
from pydantic import BaseModel, Field


class KnowledgePassage(BaseModel):
    source_url: str
    source_title: str
    content: str
    similarity: float = Field(..., ge=0.0, le=1.0)
