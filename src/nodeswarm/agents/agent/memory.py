"""In-memory hybrid search engine for agent memory."""

import math
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from loguru import logger

from .base import MemoryEngine, MemoryHit
from .tool_base import StructuredTool

_WORD = re.compile(r"\w+")


def _tokens(text: str) -> List[str]:
    return [t.lower() for t in _WORD.findall(text)]


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


@dataclass
class MemoryEntry:
    """A single memory entry."""
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata
        }


class InMemoryMemoryEngine(MemoryEngine):
    """Keyword overlap plus optional embedding cosine, weighted.

    ``embed`` maps text to a vector; without it the semantic component
    scores zero and ranking is keyword-only.
    """

    def __init__(
        self,
        embed: Optional[Callable[[str], List[float]]] = None,
        max_size: Optional[int] = None
    ):
        """Initialize the engine.

        Args:
            embed: Optional text -> vector function
            max_size: Maximum number of entries to keep (None for unlimited)
        """
        self.embed = embed
        self.entries: deque = deque(maxlen=max_size)

    def add(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryEntry:
        entry = MemoryEntry(
            content=content,
            metadata=metadata or {},
            embedding=self.embed(content) if self.embed else None
        )
        self.entries.append(entry)
        logger.debug(f"[MEMORY] Added entry: {content[:50]}...")
        return entry

    def clear(self) -> None:
        self.entries.clear()
        logger.info("[MEMORY] Cleared all memories")

    def __len__(self) -> int:
        return len(self.entries)

    def search(
        self,
        query: str,
        semantic_weight: float = 0.5,
        keyword_weight: float = 0.5,
        limit: int = 5
    ) -> List[MemoryHit]:
        query_terms = set(_tokens(query))
        query_vector = self.embed(query) if self.embed and semantic_weight > 0 else None

        hits = []
        for position, entry in enumerate(self.entries):
            keyword = 0.0
            if query_terms:
                keyword = len(query_terms & set(_tokens(entry.content))) / len(query_terms)
            semantic = 0.0
            if query_vector is not None and entry.embedding is not None:
                semantic = max(0.0, _cosine(query_vector, entry.embedding))

            score = keyword_weight * keyword + semantic_weight * semantic
            if score > 0:
                hits.append((score, entry.timestamp, position, entry))

        # Ties go to the most recent entry
        hits.sort(key=lambda h: h[:3], reverse=True)
        logger.debug(f"[MEMORY] Search '{query[:50]}' matched {len(hits)} entries")
        return [
            MemoryHit(content=entry.content, score=round(score, 6), metadata=dict(entry.metadata))
            for score, _, _, entry in hits[:limit]
        ]


def create_memory_search_tool(engine: MemoryEngine, name: str = "memory_search") -> StructuredTool:
    """Expose a memory engine to agents as a tool."""

    def memory_search(query: str, limit: int = 5, semantic_weight: float = 0.5, keyword_weight: float = 0.5) -> str:
        hits = engine.search(query, semantic_weight=semantic_weight, keyword_weight=keyword_weight, limit=limit)
        if not hits:
            return "No relevant memories found."
        return "\n".join(f"[{hit.score:.2f}] {hit.content}" for hit in hits)

    return StructuredTool.from_function(
        memory_search,
        name=name,
        description="Search stored memories by keywords and meaning. Returns the best matches with scores."
    )
