"""Read-only Neo4j chunk store supplying candidates to the retriever."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from core.config import settings
from core.models import Chunk

if TYPE_CHECKING:
    from neo4j import Driver

logger = logging.getLogger(__name__)

NODE_LABEL = "RagChunk"
EMBEDDING_PROPERTY = "embedding"

_RETURN_CHUNK = f"""
    RETURN c.chunk_id AS chunk_id,
           c.document_id AS document_id,
           c.document_path AS document_path,
           c.document_title AS document_title,
           c.chunk_index AS chunk_index,
           c.content AS content,
           c.{EMBEDDING_PROPERTY} AS embedding
    ORDER BY c.document_id, c.chunk_index
"""


class ChunkStore:
    """Neo4j-backed source of indexed chunks and their embeddings."""

    def __init__(self, driver: Driver | None = None):
        if driver is None:
            from neo4j import GraphDatabase

            self._driver = GraphDatabase.driver(
                settings.neo4j_uri,
                auth=(settings.neo4j_user, settings.neo4j_password),
            )
        else:
            self._driver = driver

    def close(self) -> None:
        self._driver.close()

    @staticmethod
    def _to_chunk(record) -> Chunk:
        return Chunk(
            chunk_id=record["chunk_id"],
            document_id=record["document_id"] or "",
            document_path=record["document_path"],
            document_title=record["document_title"],
            chunk_index=record["chunk_index"] or 0,
            content=record["content"] or "",
            embedding=list(record["embedding"] or []),
        )

    def _fetch(self, where: str = "", **params) -> list[Chunk]:
        with self._driver.session() as session:
            result = session.run(f"MATCH (c:{NODE_LABEL}) {where} {_RETURN_CHUNK}", **params)
            return [self._to_chunk(record) for record in result]

    def get_chunks(self, chunk_ids: Sequence[str]) -> list[Chunk]:
        """Return the chunks with the given ids (missing ids are skipped)."""
        if not chunk_ids:
            return []
        chunks = self._fetch("WHERE c.chunk_id IN $ids", ids=list(chunk_ids))
        logger.debug("Fetched %d/%d chunks by id", len(chunks), len(chunk_ids))
        return chunks

    def get_document_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks in chunk_index order."""
        return self._fetch("WHERE c.document_id = $document_id", document_id=document_id)

    def all_chunks(self, document_ids: Sequence[str] | None = None) -> list[Chunk]:
        """Return every chunk, optionally restricted to some documents."""
        if document_ids:
            chunks = self._fetch("WHERE c.document_id IN $document_ids", document_ids=list(document_ids))
        else:
            chunks = self._fetch()
        logger.info("Loaded %d chunks from store", len(chunks))
        return chunks

    def count(self) -> int:
        """Return total number of chunks."""
        with self._driver.session() as session:
            result = session.run(f"MATCH (c:{NODE_LABEL}) RETURN count(c) AS total")
            record = result.single()
            return record["total"] if record else 0
