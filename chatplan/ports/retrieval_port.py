"""Semantic-retrieval port — ranked passages for a query within one scope."""

from __future__ import annotations

from typing import Protocol

from chatplan.data.models import Passage


class RetrievalPort(Protocol):
    async def search(self, query: str, scope_id: str, top_k: int = 8) -> list[Passage]:
        """Passages ordered by descending score."""
        ...
