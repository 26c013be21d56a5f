"""
Embedding Service
Fixed-dimension embeddings for chunks and queries, with batching, bounded
exponential-backoff retries and strict dimension checks.
"""

import asyncio
import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import EmbeddingUnavailable, SchemaError
from ..models.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding backends."""

    name: str = "abstract"
    dimension: int

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[np.ndarray]:
        """
        Embed a batch of texts.

        Raises:
            EmbeddingUnavailable: transient backend failure, safe to retry.
        """
        pass


STOPWORDS = frozenset("""
a about above after again against all also am an and any are as at be because been before being below
between both but by can could did do does doing down during each either few for from further had has
have having he her here hers herself him himself his how i if in into is it its itself just last long
me more most my myself no nor not now of off on once only or other our ours ourselves out over own
same she should so some such than that the their theirs them themselves then there these they this
those through to too under until up upon very was we were what when where which while who whom why
will with would you your yours yourself yourselves shall may must hereby herein hereof thereof
hereunder such whether within without tell show give find my
""".split())

# (name, weight, token prefixes)
CONCEPTS: Tuple[Tuple[str, float, Tuple[str, ...]], ...] = (
    ("termination", 1.0, ("terminat", "cancel", "rescind", "rescission")),
    ("notice", 1.0, ("notice", "notif")),
    ("liability", 1.0, ("liabil", "liable", "indemn", "damages", "harmless")),
    ("confidentiality", 1.0, ("confidential", "disclos", "proprietary", "secret", "nda")),
    ("payment", 1.0, ("pay", "paid", "invoice", "fee", "billing", "remit", "compensat", "price")),
    ("force_majeure", 1.0, ("majeure", "unforeseeab", "catastroph", "pandemic", "epidemic")),
    ("renewal", 1.0, ("renew", "extension")),
    ("governing_law", 1.0, ("govern", "jurisdict", "venue", "court")),
    ("dispute", 1.0, ("disput", "arbitra", "mediat", "litigat")),
    ("intellectual_property", 1.0, ("intellectual", "copyright", "patent", "trademark", "licens")),
    ("warranty", 1.0, ("warrant", "guarant")),
    ("assignment", 1.0, ("assign", "subcontract")),
    ("breach", 1.0, ("breach", "default", "violat")),
    ("insurance", 1.0, ("insur",)),
    ("duration", 0.35, ("day", "month", "year", "week", "period", "durat")),
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> List[str]:
    """Lowercased alphanumeric tokens with stopwords and single characters removed."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 1 and t not in STOPWORDS]


def concept_of(token: str) -> Optional[int]:
    """Index of the legal concept a token belongs to, if any."""
    for index, (_, _, prefixes) in enumerate(CONCEPTS):
        if token.startswith(prefixes):
            return index
    return None


class LexicalEmbeddingModel(EmbeddingProvider):
    """
    Deterministic local embedding model.

    The vector has one axis per legal concept (sublinear frequency of all the
    concept's terms, times the concept weight) followed by a signed feature-hashed block for all other
    terms. The hashed block is scaled to ``residual_weight`` times the concept
    block norm (at least ``residual_weight``) so that incidental wording cannot
    drown out the legal subject of a passage. The result is L2-normalised.
    """

    name = "lexical"

    def __init__(self, dimension: int = 256, residual_weight: float = 0.5):
        if dimension <= len(CONCEPTS):
            raise ValueError(f"Embedding dimension must exceed {len(CONCEPTS)}")
        self.dimension = dimension
        self.residual_weight = residual_weight
        self._residual_dims = dimension - len(CONCEPTS)

    def _hash(self, token: str) -> Tuple[int, float]:
        digest = int.from_bytes(hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest(), "big")
        sign = 1.0 if digest & 1 else -1.0
        return (digest >> 1) % self._residual_dims, sign

    def embed_text(self, text: str) -> np.ndarray:
        concepts = np.zeros(len(CONCEPTS))
        residual = np.zeros(self._residual_dims)

        concept_counts: Counter = Counter()
        for token, count in Counter(tokenize(text)).items():
            concept = concept_of(token)
            if concept is not None:
                concept_counts[concept] += count
            else:
                index, sign = self._hash(token)
                residual[index] += sign * (1.0 + math.log(count))

        for concept, count in concept_counts.items():
            concepts[concept] = CONCEPTS[concept][1] * (1.0 + math.log(count))

        residual_norm = np.linalg.norm(residual)
        if residual_norm > 0:
            scale = self.residual_weight * max(1.0, float(np.linalg.norm(concepts)))
            residual = residual / residual_norm * scale

        vector = np.concatenate([concepts, residual])
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    async def embed(self, texts: List[str]) -> List[np.ndarray]:
        return [self.embed_text(text) for text in texts]


class VertexEmbeddingProvider(EmbeddingProvider):
    """Vertex AI text embedding model."""

    name = "vertex"

    def __init__(self, config: Settings):
        vertex = config.vertex_ai_config
        self.model_name = vertex["embedding_model"]
        self.project = vertex["project"]
        self.location = vertex["location"]
        self.dimension = config.EMBEDDING_DIMENSIONS
        self._client = None

    @property
    def client(self):
        """Lazy initialization of Vertex AI client."""
        if self._client is None:
            import vertexai
            from vertexai.language_models import TextEmbeddingModel

            vertexai.init(project=self.project, location=self.location)
            self._client = TextEmbeddingModel.from_pretrained(self.model_name)
        return self._client

    async def embed(self, texts: List[str]) -> List[np.ndarray]:
        from google.api_core import exceptions as gcp_exceptions

        try:
            embeddings = await asyncio.to_thread(self.client.get_embeddings, texts)
        except gcp_exceptions.GoogleAPIError as e:
            raise EmbeddingUnavailable(f"Vertex AI embedding call failed: {e}", stage="embedding") from e
        return [np.asarray(embedding.values, dtype=float) for embedding in embeddings]


def create_embedding_provider(config: Optional[Settings] = None) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    config = config or default_settings
    provider = config.EMBEDDING_PROVIDER.lower()
    if provider == "lexical":
        return LexicalEmbeddingModel(dimension=config.EMBEDDING_DIMENSIONS)
    if provider == "vertex":
        return VertexEmbeddingProvider(config)
    raise ValueError(f"Unknown embedding provider: {config.EMBEDDING_PROVIDER}")


class EmbeddingService:
    """Batching, retrying front end over an embedding provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = 16,
        max_retries: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.max_retries = max(1, max_retries)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, provider: Optional[EmbeddingProvider] = None) -> "EmbeddingService":
        config = config or default_settings
        return cls(
            provider=provider or create_embedding_provider(config),
            batch_size=config.EMBEDDING_BATCH_SIZE,
            max_retries=config.EMBEDDING_MAX_RETRIES,
            backoff_base_seconds=config.EMBEDDING_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=config.EMBEDDING_BACKOFF_MAX_SECONDS,
        )

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** (attempt - 1)))

    def batches(self, texts: Sequence[str]) -> Iterator[List[str]]:
        for start in range(0, len(texts), self.batch_size):
            yield list(texts[start:start + self.batch_size])

    async def embed_texts(self, texts: List[str]) -> List[np.ndarray]:
        """
        Embed one batch with bounded retries.

        Raises:
            EmbeddingUnavailable: the provider still failed after ``max_retries`` attempts.
            SchemaError: the provider returned vectors of the wrong shape or count.
        """
        if not texts:
            return []

        for attempt in range(1, self.max_retries + 1):
            try:
                vectors = await self.provider.embed(texts)
                break
            except EmbeddingUnavailable as e:
                if attempt == self.max_retries:
                    logger.error(f"Embedding failed after {attempt} attempts: {e}")
                    raise EmbeddingUnavailable(
                        f"Embedding provider '{self.provider.name}' unavailable after {attempt} attempts: {e.message}",
                        stage="embedding",
                    ) from e
                delay = self.backoff_delay(attempt)
                logger.warning(f"Embedding attempt {attempt} failed: {e}. Retrying in {delay:.2f}s")
                await self._sleep(delay)

        return self._validate(texts, vectors)

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed any number of texts in provider-sized batches."""
        vectors: List[np.ndarray] = []
        for batch in self.batches(texts):
            vectors.extend(await self.embed_texts(batch))
        logger.debug(f"Generated {len(vectors)} embeddings")
        return vectors

    async def embed_query(self, text: str) -> np.ndarray:
        return (await self.embed_texts([text]))[0]

    def _validate(self, texts: List[str], vectors: List[np.ndarray]) -> List[np.ndarray]:
        if len(vectors) != len(texts):
            raise SchemaError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                stage="embedding",
            )
        validated = []
        for vector in vectors:
            array = np.asarray(vector, dtype=float)
            if array.ndim != 1 or array.shape[0] != self.dimension:
                raise SchemaError(
                    f"Embedding dimension {array.shape} does not match configured dimension {self.dimension}",
                    stage="embedding",
                )
            validated.append(array)
        return validated
