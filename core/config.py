"""RAG evidence pipeline configuration via Pydantic settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenAI
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    llm_model: str = "gpt-4o-mini"
    embedding_dimensions: int = 768

    # Neo4j chunk store
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "rag_evidence"

    # Filtering
    top_k: int = 5
    min_similarity: float = 0.4
    filter_strategy: str = "hybrid"  # "none", "threshold", "reranker" or "hybrid"

    # Reranking
    rerank_min_score: float = 0.5
    rerank_max_chunks: int = 6
    rerank_max_content_chars: int = 500

    # Citations (regex strings with a named "ref" group; empty = built-in patterns)
    citation_patterns: list[str] = []

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
