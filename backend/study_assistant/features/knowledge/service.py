"""
Knowledge feature: Chunking, embedding and similarity search over course material.

Ingestion for a course is replace-all: existing chunks are deleted, the text
is split on sentence boundaries, and chunks are embedded in small concurrent
batches. Search embeds the query and scans the candidate chunks linearly.
"""

import asyncio
import logging
import math
import re
from typing import Sequence

from langchain_core.embeddings import Embeddings

from study_assistant.config import Settings, get_settings
from study_assistant.core.exceptions import DimensionMismatchError, ProviderError
from study_assistant.core.llm_provider import create_embeddings
from study_assistant.features.knowledge.embedding import EmbeddingResult, embed_text
from study_assistant.features.knowledge.repository import ChunkRepository
from study_assistant.features.knowledge.schemas import KnowledgeChunk, KnowledgeStats, SearchResult

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_into_chunks(text: str, max_chunk_size: int = 1000) -> list[str]:
    """Greedily pack sentences into chunks of at most max_chunk_size characters.

    A single sentence longer than max_chunk_size becomes its own chunk.
    """
    chunks: list[str] = []
    current = ""

    for sentence in SENTENCE_BOUNDARY.split(text.strip()):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_chunk_size:
            chunks.append(current)
            current = sentence
        else:
            current = candidate

    if current:
        chunks.append(current)

    return chunks


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), or 0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(vec_a) != len(vec_b):
        raise DimensionMismatchError(len(vec_a), len(vec_b))

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    magnitude = norm_a * norm_b
    return 0.0 if magnitude == 0 else dot_product / magnitude


class KnowledgeService:
    """Course knowledge index: ingest, search, stats."""

    def __init__(
        self,
        repository: ChunkRepository,
        embeddings: Embeddings | None = None,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self._embeddings = embeddings
        if not self.is_configured():
            logger.warning("Embedding provider not configured. Knowledge search will return no results.")

    def is_configured(self) -> bool:
        return self._embeddings is not None or bool(self.settings.LLM_API_KEY)

    @property
    def embeddings(self) -> Embeddings:
        if self._embeddings is None:
            try:
                self._embeddings = create_embeddings(self.settings)
            except ValueError as e:
                raise ProviderError("Embedding provider misconfigured", str(e)) from e
        return self._embeddings

    async def create_embedding(self, text: str) -> EmbeddingResult:
        """Embed one text.

        Raises:
            ProviderError: If the embedding capability is unconfigured or fails.
        """
        if not self.is_configured():
            raise ProviderError("Embedding provider not configured", "Set LLM_API_KEY.")
        try:
            return await embed_text(self.embeddings, text, self.settings.EMBEDDING_DIMENSIONS)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise ProviderError("Error generating embedding", str(e)) from e

    # ── Ingestion ────────────────────────────────────────

    async def index_course_content(self, course_id: str, content: str, source_file: str) -> int:
        """Replace all chunks of a course with freshly embedded ones.

        Returns:
            Number of chunks successfully created. Chunks whose embedding
            fails are logged and skipped.
        """
        if not self.is_configured():
            raise ProviderError("Embedding provider not configured", "Set LLM_API_KEY.")

        await self.delete_course_chunks(course_id)

        chunks = split_into_chunks(content, self.settings.KNOWLEDGE_CHUNK_SIZE)
        logger.info(f"Indexing course {course_id}: {len(chunks)} chunks generated")

        created = 0
        batch_size = self.settings.KNOWLEDGE_EMBED_BATCH_SIZE
        for start in range(0, len(chunks), batch_size):
            batch = chunks[start:start + batch_size]
            embedded = await asyncio.gather(
                *(
                    self._embed_chunk(course_id, text, source_file, start + offset)
                    for offset, text in enumerate(batch)
                )
            )
            created += await self.repository.insert_many([c for c in embedded if c is not None])

        logger.info(f"Indexed course {course_id}: {created}/{len(chunks)} chunks stored")
        return created

    async def _embed_chunk(
        self, course_id: str, text: str, source_file: str, chunk_index: int
    ) -> KnowledgeChunk | None:
        try:
            result = await self.create_embedding(text)
        except ProviderError as e:
            logger.error(f"Error indexing chunk {chunk_index} of course {course_id}: {e.detail or e}")
            return None

        return KnowledgeChunk(
            course_id=course_id,
            content=text,
            embedding=result.embedding,
            source_file=source_file,
            chunk_index=chunk_index,
            metadata={"tokenCount": result.token_count},
        )

    # ── Search ───────────────────────────────────────────

    async def search_similar(
        self,
        query: str,
        course_id: str | None = None,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Rank chunks by cosine similarity to the query.

        Returns at most `limit` results with score >= min_score, best first
        (ties by chunk_index). An embedding failure yields [] instead of raising.
        """
        limit = self.settings.RAG_SEARCH_LIMIT if limit is None else limit
        min_score = self.settings.RAG_MIN_SCORE if min_score is None else min_score

        try:
            query_vector = (await self.create_embedding(query)).embedding
        except ProviderError as e:
            logger.warning(f"Search skipped, query embedding failed: {e.message}")
            return []

        scored: list[tuple[float, KnowledgeChunk]] = []
        for chunk in await self.repository.find(course_id):
            try:
                score = cosine_similarity(query_vector, chunk.embedding)
            except DimensionMismatchError:
                logger.warning(
                    f"Skipping chunk {chunk.id} of course {chunk.course_id}: "
                    f"{len(chunk.embedding)} dims, query has {len(query_vector)}"
                )
                continue
            if score >= min_score:
                scored.append((score, chunk))

        scored.sort(key=lambda item: (-item[0], item[1].chunk_index))

        return [
            SearchResult(
                content=chunk.content,
                course_id=chunk.course_id,
                score=score,
                metadata=chunk.metadata or None,
            )
            for score, chunk in scored[:limit]
        ]

    # ── Maintenance ──────────────────────────────────────

    async def get_stats(self) -> KnowledgeStats:
        total = await self.repository.count()
        courses = await self.repository.distinct_course_ids()
        return KnowledgeStats(total_chunks=total, courses_covered=len(courses))

    async def delete_course_chunks(self, course_id: str) -> int:
        deleted = await self.repository.delete_by_course(course_id)
        if deleted:
            logger.info(f"Deleted {deleted} chunks of course {course_id}")
        return deleted
