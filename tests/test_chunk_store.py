"""Unit tests for ChunkStore (mock Neo4j driver)."""

from unittest.mock import MagicMock, patch

import pytest

from storage.chunk_store import NODE_LABEL, ChunkStore


def record(chunk_id, document_id="doc1", embedding=None, **extra):
    return {
        "chunk_id": chunk_id,
        "document_id": document_id,
        "document_path": extra.get("document_path"),
        "document_title": extra.get("document_title"),
        "chunk_index": extra.get("chunk_index"),
        "content": extra.get("content", f"content {chunk_id}"),
        "embedding": embedding,
    }


@pytest.fixture
def mock_driver():
    driver = MagicMock()
    session = MagicMock()
    driver.session.return_value.__enter__ = MagicMock(return_value=session)
    driver.session.return_value.__exit__ = MagicMock(return_value=False)
    return driver, session


@pytest.fixture
def store(mock_driver):
    driver, _ = mock_driver
    return ChunkStore(driver=driver)


class TestChunkStoreInit:
    def test_custom_driver(self):
        """Test an injected driver is used as is."""
        driver = MagicMock()
        cs = ChunkStore(driver=driver)
        assert cs._driver is driver

    def test_default_driver(self):
        """Test a driver is created from settings when none is given."""
        fake_neo4j = MagicMock()
        with patch.dict("sys.modules", {"neo4j": fake_neo4j}):
            cs = ChunkStore()
        fake_neo4j.GraphDatabase.driver.assert_called_once()
        assert cs._driver is fake_neo4j.GraphDatabase.driver.return_value

    def test_close(self, store, mock_driver):
        driver, _ = mock_driver
        store.close()
        driver.close.assert_called_once()


class TestGetChunks:
    def test_empty_ids_skip_query(self, store, mock_driver):
        """Test no query runs for an empty id list."""
        _, session = mock_driver
        assert store.get_chunks([]) == []
        session.run.assert_not_called()

    def test_get_chunks_by_id(self, store, mock_driver):
        """Test chunks are fetched by id with their embeddings."""
        _, session = mock_driver
        session.run.return_value = [
            record("c1", embedding=[0.1, 0.2], document_path="docs/a.md", chunk_index=2)
        ]

        chunks = store.get_chunks(["c1", "missing"])

        assert len(chunks) == 1
        assert chunks[0].chunk_id == "c1"
        assert chunks[0].embedding == [0.1, 0.2]
        assert chunks[0].chunk_index == 2
        query = session.run.call_args[0][0]
        assert NODE_LABEL in query
        assert "c.chunk_id IN $ids" in query
        assert session.run.call_args.kwargs["ids"] == ["c1", "missing"]

    def test_missing_fields_get_defaults(self, store, mock_driver):
        """Test null record fields fall back to defaults."""
        _, session = mock_driver
        session.run.return_value = [record("c1", document_id=None, content=None)]

        chunk = store.get_chunks(["c1"])[0]

        assert chunk.document_id == ""
        assert chunk.content == ""
        assert chunk.embedding == []
        assert chunk.chunk_index == 0

    def test_get_document_chunks(self, store, mock_driver):
        """Test a document's chunks are fetched."""
        _, session = mock_driver
        session.run.return_value = [record("c1"), record("c2")]

        chunks = store.get_document_chunks("doc1")

        assert [c.chunk_id for c in chunks] == ["c1", "c2"]
        assert session.run.call_args.kwargs["document_id"] == "doc1"


class TestAllChunks:
    def test_all_chunks(self, store, mock_driver):
        """Test all chunks are loaded without a filter."""
        _, session = mock_driver
        session.run.return_value = [record("c1"), record("c2", document_id="doc2")]

        chunks = store.all_chunks()

        assert len(chunks) == 2
        assert "WHERE" not in session.run.call_args[0][0]

    def test_all_chunks_for_documents(self, store, mock_driver):
        """Test loading can be restricted to documents."""
        _, session = mock_driver
        session.run.return_value = []

        assert store.all_chunks(document_ids=("doc2",)) == []
        assert session.run.call_args.kwargs["document_ids"] == ["doc2"]

    def test_count(self, store, mock_driver):
        """Test count reads the total from the record."""
        _, session = mock_driver
        session.run.return_value.single.return_value = {"total": 7}
        assert store.count() == 7

    def test_count_without_record(self, store, mock_driver):
        _, session = mock_driver
        session.run.return_value.single.return_value = None
        assert store.count() == 0
