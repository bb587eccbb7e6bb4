"""
Knowledge feature: Storage for embedded chunks (`knowledge_chunks` table).

Search is a linear scan done in Python, so this only needs plain
filtered reads, bulk insert and bulk delete.
"""

import json

from supabase import AsyncClient

from study_assistant.core.database import PAGE_SIZE, storage_errors
from study_assistant.features.knowledge.schemas import KnowledgeChunk

TABLE = "knowledge_chunks"


def _row_to_chunk(row: dict) -> KnowledgeChunk:
    embedding = row.get("embedding")
    # pgvector columns come back from PostgREST as "[0.1,0.2,...]" strings
    if isinstance(embedding, str):
        row = {**row, "embedding": json.loads(embedding)}
    return KnowledgeChunk.model_validate(row)


class ChunkRepository:
    """CRUD over knowledge chunks."""

    def __init__(self, db: AsyncClient):
        self.db = db

    async def insert_many(self, chunks: list[KnowledgeChunk]) -> int:
        if not chunks:
            return 0
        rows = [chunk.model_dump(exclude={"id"}) for chunk in chunks]
        async with storage_errors("insert chunks"):
            result = await self.db.table(TABLE).insert(rows).execute()
        return len(result.data or [])

    async def find(self, course_id: str | None = None) -> list[KnowledgeChunk]:
        """All chunks, optionally restricted to one course."""
        rows = await self._fetch_all("*", course_id)
        return [_row_to_chunk(row) for row in rows]

    async def delete_by_course(self, course_id: str) -> int:
        async with storage_errors("delete chunks"):
            result = await self.db.table(TABLE).delete().eq("course_id", course_id).execute()
        return len(result.data or [])

    async def count(self) -> int:
        async with storage_errors("count chunks"):
            result = await self.db.table(TABLE).select("id", count="exact").limit(1).execute()
        return result.count or 0

    async def distinct_course_ids(self) -> set[str]:
        rows = await self._fetch_all("course_id")
        return {row["course_id"] for row in rows}

    async def _fetch_all(self, columns: str, course_id: str | None = None) -> list[dict]:
        rows: list[dict] = []
        offset = 0
        async with storage_errors("read chunks"):
            while True:
                query = self.db.table(TABLE).select(columns)
                if course_id:
                    query = query.eq("course_id", course_id)
                result = await query.order("id").range(offset, offset + PAGE_SIZE - 1).execute()
                page = result.data or []
                rows.extend(page)
                if len(page) < PAGE_SIZE:
                    return rows
                offset += PAGE_SIZE
