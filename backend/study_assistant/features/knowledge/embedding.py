"""
Knowledge feature: Embedding utility functions.
Wraps the LLM provider's embedding model for use across the app.
"""

import logging
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingResult:
    embedding: list[float]
    token_count: int


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 chars/token); LangChain embedders don't report usage."""
    return max(1, len(text) // 4) if text else 0


async def embed_text(model: Embeddings, text: str, dimensions: int) -> EmbeddingResult:
    """Generate embedding vector for a single text string.

    Args:
        model: LangChain embeddings model.
        text: The text to embed.
        dimensions: Target dimensionality; longer vectors are truncated.

    Returns:
        EmbeddingResult with the vector and a token-count figure.
    """
    vector = await model.aembed_query(text)
    return EmbeddingResult(embedding=list(vector[:dimensions]), token_count=estimate_tokens(text))
