"""
Embedding Generator for the chat memory subsystem.

Converts text into fixed-length, L2-normalized vectors using deterministic
feature hashing, so that messages can be compared by meaning without a model
runtime or network access. Identical text always yields a bit-identical vector.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from .exceptions import EmbeddingError

logger = logging.getLogger("memory.embeddings")

DEFAULT_DIMENSIONS = 128
DEFAULT_MODEL_ID = "simple-builtin"


@dataclass(frozen=True)
class EmbeddingModel:
    """Descriptor of an embedding profile."""
    id: str
    display_name: str
    dimensions: int
    max_tokens: int
    description: str = ""


# Named profiles are all served by the hashing embedder at the profile's
# dimensionality; model files are never downloaded here.
AVAILABLE_MODELS: Dict[str, EmbeddingModel] = {
    model.id: model
    for model in (
        EmbeddingModel(
            id="simple-builtin",
            display_name="Built-in Simple",
            dimensions=128,
            max_tokens=512,
            description="Lightweight built-in embedder, always available",
        ),
        EmbeddingModel(
            id="bge-small-en-v1.5",
            display_name="BGE Small English",
            dimensions=384,
            max_tokens=512,
            description="High-quality English embeddings, balanced performance",
        ),
        EmbeddingModel(
            id="all-minilm-l6-v2",
            display_name="MiniLM L6 v2",
            dimensions=384,
            max_tokens=256,
            description="Fast and efficient, good for general tasks",
        ),
        EmbeddingModel(
            id="all-mpnet-base-v2",
            display_name="MPNet Base v2",
            dimensions=768,
            max_tokens=384,
            description="High accuracy embeddings for demanding tasks",
        ),
    )
}


def rolling_hash(feature: str) -> int:
    """
    Hash a feature string with a 31-multiplier rolling hash.

    The accumulator wraps to a signed 32-bit integer after every character and
    the absolute value is returned.
    """
    value = 0
    for char in feature:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 if the vectors differ in length or either has zero magnitude;
    a similarity is a bounded score, never an exceptional condition.
    """
    if len(a) != len(b):
        return 0.0

    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class HashingEmbedder:
    """
    Feature-hashing text embedder.

    The first half of the vector counts character bigrams of the text with
    whitespace removed; the second half counts whole words. Each stream
    contributes at most ``dimensions // 2`` features.
    """

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS, model: EmbeddingModel = None):
        """
        Initialize the embedder.

        Args:
            dimensions: Length of the produced vectors (at least 2)
            model: Optional profile descriptor; its dimensionality wins when given
        """
        if model is not None:
            dimensions = model.dimensions
        if dimensions < 2:
            raise ValueError(f"Embedding dimensions must be at least 2, got {dimensions}")

        self.dimensions = dimensions
        self.model = model or EmbeddingModel(
            id=DEFAULT_MODEL_ID,
            display_name="Built-in Simple",
            dimensions=dimensions,
            max_tokens=512,
        )

    def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Args:
            text: Text to embed

        Returns:
            float32 vector of length ``dimensions``, unit norm unless the text is empty

        Raises:
            EmbeddingError: If text is not a string
        """
        if not isinstance(text, str):
            raise EmbeddingError(f"Cannot embed {type(text).__name__}, expected str")

        half = self.dimensions // 2
        vector = np.zeros(self.dimensions, dtype=np.float32)

        normalized = text.lower().strip()
        words = normalized.split()
        chars = "".join(words)

        for i in range(min(len(chars) - 1, half)):
            vector[rolling_hash(chars[i:i + 2]) % half] += 1

        for word in words[:half]:
            vector[half + rolling_hash(word) % half] += 1

        magnitude = np.sqrt(np.sum(vector * vector))
        if magnitude > 0:
            vector /= magnitude

        return vector

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts."""
        return [self.embed(text) for text in texts]

    def cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_similarity(a, b)

    def __repr__(self) -> str:
        return f"HashingEmbedder(model={self.model.id}, dimensions={self.dimensions})"


def get_embedder(model_id: str = DEFAULT_MODEL_ID, dimensions: int = None) -> HashingEmbedder:
    """
    Create an embedder for a named profile.

    Args:
        model_id: One of AVAILABLE_MODELS
        dimensions: Overrides the built-in profile's dimensionality

    Returns:
        A HashingEmbedder
    """
    model = AVAILABLE_MODELS.get(model_id)
    if model is None:
        raise ValueError(f"Unknown embedding model: {model_id}. Available: {', '.join(AVAILABLE_MODELS)}")

    if model_id == DEFAULT_MODEL_ID and dimensions:
        embedder = HashingEmbedder(dimensions=dimensions)
    else:
        if dimensions and dimensions != model.dimensions:
            logger.warning(f"Ignoring dimensions={dimensions} for {model_id}, which uses {model.dimensions}")
        embedder = HashingEmbedder(model=model)

    logger.info(f"Using embedder {embedder}")
    return embedder
