"""
Knowledge feature: Schemas for chunks, search results and API payloads.
"""

from pydantic import Field

from study_assistant.core.schemas import CamelModel


class KnowledgeChunk(CamelModel):
    """A slice of course text with its embedding (row of `knowledge_chunks`)."""
    id: str | None = None
    course_id: str
    content: str
    embedding: list[float]
    source_file: str
    chunk_index: int
    metadata: dict = {}


class SearchResult(CamelModel):
    content: str
    course_id: str
    score: float
    metadata: dict | None = None


class KnowledgeStats(CamelModel):
    total_chunks: int
    courses_covered: int


# ── API payloads ─────────────────────────────────────────

class IndexContentRequest(CamelModel):
    course_id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    source_file: str = "unknown"


class IndexContentResponse(CamelModel):
    chunks_created: int


class DeleteCourseResponse(CamelModel):
    deleted_count: int
