"""
Query Embedding Service
Generates query embeddings using OpenAI text-embedding-3-small
"""

import os

from openai import OpenAI

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.utils.retry import with_retry

logger = setup_logger(__name__)


class OpenAIQueryEmbedder:
    """
    Embed search queries with OpenAI.

    Blocking client: the pipeline calls :meth:`embed_query` from a worker
    thread. Transient API errors are retried with backoff.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None, dimensions: int | None = None):
        """
        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            model: Embedding model to use
            dimensions: Output dimensionality; must match the indexed chunks
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key required. Set OPENAI_API_KEY env var or pass api_key parameter.")

        self.client = OpenAI(api_key=self.api_key)
        self.model = model or config.EMBEDDING_MODEL
        self.dimensions = dimensions or config.EMBEDDING_DIMENSIONS

    @with_retry(retries=2, initial_delay=0.5)
    def embed_query(self, query_text: str) -> list[float]:
        """Generate the embedding vector for a single query string."""
        response = self.client.embeddings.create(
            model=self.model,
            input=[query_text],
            dimensions=self.dimensions,
        )
        embedding = response.data[0].embedding
        logger.debug("Embedded query (%s dims) with %s", len(embedding), self.model)
        return embedding
