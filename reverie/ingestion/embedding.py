"""
Text embedding service for boilerplate detection and episode matching.

Handles:
- Text embeddings via sentence-transformers (bge-large by default)
- Lazy model loading with dimension validation
- Optional per-text vector cache (bounded LRU)

Vectors are positionally aligned with the inputs.
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

import torch
from cachetools import LRUCache
from sentence_transformers import SentenceTransformer

from reverie.config import EmbeddingConfig
from reverie.resilience.retry import ExternalServiceError

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    """Anything that can embed a batch of texts."""

    async def embed(
        self,
        inputs: Sequence[str],
        project_root: Optional[str] = None,
        normalize: bool = True,
        cache: bool = False,
    ) -> list[list[float]]:
        ...


class EmbeddingService:
    """
    sentence-transformers backed embedding service.

    Encoding runs in a worker thread so the event loop stays responsive.
    Any model failure is raised as ExternalServiceError.
    """

    def __init__(self, config: EmbeddingConfig):
        """
        Initialize embedding service (model is loaded on first use).

        Args:
            config: Embedding configuration
        """
        self.config = config
        self._model: Optional[SentenceTransformer] = None
        self._device = self._get_device()
        # cache_size 0 disables vector caching
        self._cache: Optional[LRUCache] = (
            LRUCache(maxsize=config.cache_size) if config.cache_size > 0 else None
        )

        logger.info(f"EmbeddingService initialized (device: {self._device})")

    def _get_device(self) -> str:
        """
        Determine optimal device for inference.

        Returns:
            str: "cuda", "mps", or "cpu"
        """
        if not self.config.enable_gpu:
            return "cpu"

        if self.config.device == "cuda" and torch.cuda.is_available():
            return "cuda"
        elif self.config.device == "mps" and torch.backends.mps.is_available():
            return "mps"
        else:
            logger.warning(f"Requested device '{self.config.device}' unavailable, using CPU")
            return "cpu"

    def _load_model(self) -> SentenceTransformer:
        """
        Lazy-load the embedding model.

        Returns:
            SentenceTransformer: Cached model instance
        """
        if self._model is None:
            logger.info(f"Loading embedding model: {self.config.model_name}")
            model = SentenceTransformer(self.config.model_name, device=self._device)
            actual_dim = model.get_sentence_embedding_dimension()

            if actual_dim != self.config.dimension:
                raise ValueError(
                    f"Embedding dimension mismatch: "
                    f"expected {self.config.dimension}, got {actual_dim}"
                )

            self._model = model
            logger.info(f"Embedding model loaded ({actual_dim}-dim)")

        return self._model

    def _encode(self, texts: list[str], normalize: bool) -> list[list[float]]:
        model = self._load_model()
        with torch.no_grad():
            embeddings = model.encode(
                texts,
                batch_size=self.config.batch_size,
                convert_to_tensor=True,
                show_progress_bar=False,
                normalize_embeddings=normalize,
            )
        return embeddings.cpu().tolist()

    async def embed(
        self,
        inputs: Sequence[str],
        project_root: Optional[str] = None,
        normalize: bool = True,
        cache: bool = False,
    ) -> list[list[float]]:
        """
        Embed a batch of texts.

        Args:
            inputs: Texts to embed
            project_root: Repository the texts belong to (kept for backend parity)
            normalize: L2-normalize vectors so dot product equals cosine similarity
            cache: Reuse and store vectors in the in-process cache

        Returns:
            list[list[float]]: One vector per input, in input order

        Raises:
            ExternalServiceError: If the model cannot be loaded or encoding fails
        """
        texts = list(inputs)
        if not texts:
            return []

        use_cache = cache and self._cache is not None
        results: list[Optional[list[float]]] = [None] * len(texts)
        pending: list[int] = []

        for idx, text in enumerate(texts):
            key = (text, normalize)
            if use_cache and key in self._cache:
                results[idx] = self._cache[key]
            else:
                pending.append(idx)

        if pending:
            try:
                vectors = await asyncio.to_thread(
                    self._encode, [texts[i] for i in pending], normalize
                )
            except Exception as e:
                raise ExternalServiceError("embedding", str(e)) from e

            for idx, vector in zip(pending, vectors):
                results[idx] = vector
                if use_cache:
                    self._cache[(texts[idx], normalize)] = vector

        logger.debug(
            f"Embedded {len(texts)} texts ({len(texts) - len(pending)} cached, "
            f"project_root={project_root})"
        )
        return [vector or [] for vector in results]


# Global embedding service (lazy-loaded)
_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """
    Get global embedding service instance (singleton pattern).

    Returns:
        EmbeddingService: Service built from EMBEDDING_* settings
    """
    global _embedding_service
    if _embedding_service is None:
        from reverie.config import get_settings

        _embedding_service = EmbeddingService(get_settings().embedding)
    return _embedding_service
