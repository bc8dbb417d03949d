"""
Supabase (Postgres + pgvector) search backend.

Binds the collaborator protocols to three RPCs on the chunk table:

- ``match_document_chunks(query_embedding, match_count, table_name)`` ->
  rows with chunk columns and ``distance`` (pgvector ``<->``, L2)
- ``keyword_search_chunks(search_terms, match_count, table_name)`` ->
  rows with chunk columns and ``rank`` (ts_rank_cd over an OR tsquery)
- ``title_search_chunks(search_terms, match_count, table_name)`` ->
  first chunk of each page whose title contains any term (ILIKE)

Rows returned by any RPC are kept in a bounded local map so that
``get_chunk`` resolves hits without another round trip.
"""

import asyncio
import os
from collections import OrderedDict

from supabase import AsyncClient, create_async_client

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.models import DocumentChunk
from hybrid_search.services.protocols import LexicalHit, TitleHit, VectorHit

logger = setup_logger(__name__)

VECTOR_RPC = "match_document_chunks"
KEYWORD_RPC = "keyword_search_chunks"
TITLE_RPC = "title_search_chunks"
CHUNK_COLUMNS = "chunk_id, page_id, title, content, labels, url, chunk_index, space_key"
ROW_CACHE_SIZE = 5000


def row_to_chunk(row: dict) -> DocumentChunk:
    """Map an RPC/table row to a chunk. The embedding column is never selected."""
    return DocumentChunk.from_dict({k: v for k, v in row.items() if k not in ("embedding", "vector")})


def _is_stale_connection(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "closed" in msg or "transport" in msg


class SupabaseSearchBackend:
    """
    Vector index, lexical index, title index and chunk store over one
    Supabase table.

    Methods:
    - search: pgvector nearest neighbours (VectorIndex)
    - query: full-text OR query (LexicalIndex)
    - find_titles: page-title lookup (TitleIndex)
    - get_chunk: chunk lookup (ChunkStore)
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        table_name: str | None = None,
        dimensions: int | None = None,
    ):
        self.url = url or os.getenv("SUPABASE_URL")
        self.key = key or os.getenv("SUPABASE_KEY")

        if not self.url or not self.key:
            raise ValueError("Supabase URL and KEY required")

        self.table_name = table_name or config.DEFAULT_TABLE_NAME
        self._dimensions = dimensions or config.EMBEDDING_DIMENSIONS
        self.client: AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._rows: OrderedDict[str, DocumentChunk] = OrderedDict()

    async def _get_client(self) -> AsyncClient:
        """Lazy load async client."""
        async with self._client_lock:
            if self.client is None:
                self.client = await create_async_client(self.url, self.key)
        return self.client

    async def _reset_client(self) -> AsyncClient:
        """Force-recreate the Supabase client after a connection failure."""
        async with self._client_lock:
            logger.warning("Resetting Supabase client (stale connection)")
            self.client = await create_async_client(self.url, self.key)
        return self.client

    async def _rpc(self, name: str, params: dict) -> list[dict]:
        client = await self._get_client()
        try:
            response = await client.rpc(name, params).execute()
        except OSError as exc:
            if _is_stale_connection(exc):
                await self._reset_client()
                # surfaced as a connection error so the adapter retries it
                raise ConnectionError(f"stale Supabase connection: {exc}") from exc
            raise
        return response.data or []

    def _remember(self, rows: list[dict]) -> list[str]:
        refs: list[str] = []
        for row in rows:
            chunk = row_to_chunk(row)
            self._rows[chunk.chunk_id] = chunk
            self._rows.move_to_end(chunk.chunk_id)
            refs.append(chunk.chunk_id)
        while len(self._rows) > ROW_CACHE_SIZE:
            self._rows.popitem(last=False)
        return refs

    # ------------------------------------------------------------------
    # VectorIndex
    # ------------------------------------------------------------------
    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    async def search(self, vector: list[float], k: int) -> list[VectorHit]:
        rows = await self._rpc(
            VECTOR_RPC,
            {"query_embedding": vector, "match_count": k, "table_name": self.table_name},
        )
        refs = self._remember(rows)
        return [VectorHit(chunk_ref=ref, distance=float(row.get("distance", 0.0))) for ref, row in zip(refs, rows)]

    # ------------------------------------------------------------------
    # LexicalIndex
    # ------------------------------------------------------------------
    async def query(self, terms: list[str], limit: int) -> list[LexicalHit]:
        rows = await self._rpc(
            KEYWORD_RPC,
            {"search_terms": terms, "match_count": limit, "table_name": self.table_name},
        )
        refs = self._remember(rows)
        return [LexicalHit(chunk_ref=ref, relevance=float(row.get("rank", 0.0))) for ref, row in zip(refs, rows)]

    # ------------------------------------------------------------------
    # TitleIndex
    # ------------------------------------------------------------------
    async def find_titles(self, terms: list[str], limit: int) -> list[TitleHit]:
        rows = await self._rpc(
            TITLE_RPC,
            {"search_terms": terms, "match_count": limit, "table_name": self.table_name},
        )
        refs = self._remember(rows)
        return [TitleHit(chunk_ref=ref, title=row.get("title") or "") for ref, row in zip(refs, rows)]

    # ------------------------------------------------------------------
    # ChunkStore
    # ------------------------------------------------------------------
    async def get_chunk(self, chunk_ref: str) -> DocumentChunk | None:
        chunk = self._rows.get(chunk_ref)
        if chunk is not None:
            return chunk
        client = await self._get_client()
        response = (
            await client.table(self.table_name).select(CHUNK_COLUMNS).eq("chunk_id", chunk_ref).limit(1).execute()
        )
        if not response.data:
            return None
        self._remember(response.data)
        return self._rows.get(chunk_ref)
