"""
Similarity Search for the chat memory subsystem.

Linear-scan cosine ranking over stored message embeddings. There is no index
structure: every query costs O(N·D) for N embedded messages of dimension D,
which is fine for the few thousand short messages this store holds.
"""

import logging
from typing import List, Optional, Union

import numpy as np

from .embeddings import HashingEmbedder
from .models import SearchResult
from .store import SessionStore

logger = logging.getLogger("memory.search")

Query = Union[str, np.ndarray]


def search_similar(
    store: SessionStore,
    embedder: HashingEmbedder,
    query: Query,
    session_id: Optional[str] = None,
    limit: int = 5,
    threshold: float = 0.3,
) -> List[SearchResult]:
    """
    Rank stored messages by cosine similarity to a query.

    Args:
        store: The store to scan
        embedder: Generator used at insertion time; embeds text queries
        query: Query text or a precomputed vector
        session_id: Optional session to restrict the scan to
        limit: Maximum number of results
        threshold: Minimum similarity for a message to be returned

    Returns:
        Results sorted by similarity, highest first; ties keep insertion order
    """
    query_vector = embedder.embed(query) if isinstance(query, str) else np.asarray(query, dtype=np.float32)

    candidates = [
        message for message in store.iter_messages(session_id)
        if store.embeddings.get(message.id) is not None
    ]
    if not candidates or limit <= 0:
        return []

    # Vectors of another dimensionality, or a zero query, score 0
    scores = np.zeros(len(candidates), dtype=np.float64)
    query_norm = float(np.linalg.norm(query_vector))
    comparable = [i for i, m in enumerate(candidates) if len(store.embeddings[m.id]) == len(query_vector)]
    if comparable and query_norm > 0:
        matrix = np.stack([store.embeddings[candidates[i].id] for i in comparable]).astype(np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query_vector.astype(np.float64)
        safe_norms = np.where(norms > 0, norms, 1.0)
        scores[comparable] = np.where(norms > 0, dots / (safe_norms * query_norm), 0.0)

    results = [
        SearchResult(message=message, similarity=float(score))
        for message, score in zip(candidates, scores)
        if score >= threshold
    ]
    results.sort(key=lambda r: r.similarity, reverse=True)
    limited = results[:limit]

    logger.debug(
        f"Similarity search scanned {len(candidates)} messages, "
        f"{len(results)} above threshold {threshold}, returning {len(limited)}"
    )
    return limited


def search_substring(
    store: SessionStore,
    query: Query,
    session_id: Optional[str] = None,
    limit: int = 5,
    similarity: float = 0.8,
) -> List[SearchResult]:
    """
    Case-insensitive substring search with a fixed similarity score.

    Vector queries have no text to match and return no results.
    """
    if not isinstance(query, str):
        return []

    term = query.lower()
    results = []
    for message in store.iter_messages(session_id):
        if term in message.content.lower():
            results.append(SearchResult(message=message, similarity=similarity))
            if len(results) >= limit:
                break
    return results
