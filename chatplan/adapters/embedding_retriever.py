"""Embedding retriever — RetrievalPort on OpenAI embeddings and SQLite.

Conversation messages are embedded once when indexed. A search embeds the
query and ranks the scope's stored passages by cosine similarity.
"""

from __future__ import annotations

import logging
import math

from chatplan.core.errors import ExternalServiceError
from chatplan.data.db import PassageDB
from chatplan.data.models import Passage

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"vector sizes differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class EmbeddingRetriever:
    """Semantic search over indexed conversation messages."""

    def __init__(
        self,
        db: PassageDB | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from chatplan.config import settings

        self._db = db or PassageDB()
        self._api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self._model = model or settings.EMBEDDING_MODEL
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def _embed(self, text: str) -> list[float]:
        try:
            response = await self._get_client().embeddings.create(model=self._model, input=text)
        except Exception as exc:
            logger.error("Embedding request failed: %s", exc)
            raise ExternalServiceError("embeddings", exc) from exc
        return list(response.data[0].embedding)

    async def index_message(self, scope_id: str, text: str) -> int:
        """Embed and store one message; returns the passage id."""
        text = text.strip()
        if not text:
            raise ValueError("cannot index an empty message")
        vector = await self._embed(text)
        return self._db.add_passage(scope_id, text, vector)

    async def search(self, query: str, scope_id: str, top_k: int = 8) -> list[Passage]:
        stored = self._db.list_passages(scope_id)
        if not stored:
            logger.info("No indexed passages in %s", scope_id)
            return []

        query_vector = await self._embed(query)
        ranked = sorted(
            (
                Passage(
                    text=row["text"],
                    score=cosine_similarity(query_vector, row["embedding"]),
                    id=row["id"],
                    created_at=row["created_at"],
                )
                for row in stored
            ),
            key=lambda p: p.score,
            reverse=True,
        )
        logger.debug("Ranked %d passages in %s for '%s'", len(ranked), scope_id, query[:60])
        return ranked[:top_k]
