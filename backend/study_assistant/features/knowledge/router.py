"""
Knowledge feature: API routes for indexing and searching course material.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from study_assistant.config import get_settings
from study_assistant.core.dependencies import get_knowledge_service
from study_assistant.features.knowledge.extraction import ALLOWED_EXTENSIONS, extract_text_from_bytes, file_extension
from study_assistant.features.knowledge.schemas import (
    DeleteCourseResponse,
    IndexContentRequest,
    IndexContentResponse,
    KnowledgeStats,
    SearchResult,
)
from study_assistant.features.knowledge.service import KnowledgeService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/index", response_model=IndexContentResponse, status_code=status.HTTP_201_CREATED)
async def index_content(
    data: IndexContentRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Replace a course's knowledge with the given text."""
    created = await service.index_course_content(data.course_id, data.content, data.source_file)
    return IndexContentResponse(chunks_created=created)


@router.post("/upload", response_model=IndexContentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    course_id: str = Form(..., alias="courseId", min_length=1),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Extract text from a PDF / TXT / MD file and index it for a course."""
    filename = file.filename or ""
    if file_extension(filename) not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only {', '.join(sorted(ALLOWED_EXTENSIONS))} files are allowed.",
        )

    file_bytes = await file.read()
    max_size = get_settings().MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(file_bytes) > max_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large (max {get_settings().MAX_UPLOAD_SIZE_MB}MB).",
        )

    text = await asyncio.to_thread(extract_text_from_bytes, file_bytes, filename)
    if not text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No text could be extracted from the document.",
        )

    created = await service.index_course_content(course_id, text, filename)
    return IndexContentResponse(chunks_created=created)


@router.get("/search", response_model=list[SearchResult])
async def search(
    q: str = "",
    course_id: str | None = Query(None, alias="courseId"),
    limit: int | None = Query(None, ge=1, le=50),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Semantic search over indexed course material."""
    if not q.strip():
        return []
    return await service.search_similar(q, course_id=course_id, limit=limit)


@router.get("/stats", response_model=KnowledgeStats)
async def get_stats(service: KnowledgeService = Depends(get_knowledge_service)):
    return await service.get_stats()


@router.delete("/course/{course_id}", response_model=DeleteCourseResponse)
async def delete_course_knowledge(
    course_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Delete every chunk of a course (idempotent)."""
    deleted = await service.delete_course_chunks(course_id)
    return DeleteCourseResponse(deleted_count=deleted)
