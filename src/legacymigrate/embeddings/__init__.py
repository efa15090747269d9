"""
Optional post-migration embedding of migrated content.
"""

from legacymigrate.embeddings.pipeline import (
    AI_EMBEDDINGS_TABLE,
    DEFAULT_TEXT_BUILDERS,
    EmbeddingPipeline,
    EmbeddingRunStats,
    content_hash,
)
from legacymigrate.embeddings.providers import (
    DEFAULT_BEDROCK_MODEL_ID,
    BedrockEmbeddingProvider,
    DifyKnowledgeBaseProvider,
    EmbeddingOutcome,
    EmbeddingProvider,
)
from legacymigrate.embeddings.queue import (
    EmbeddingQueue,
    EmbeddingQueueItem,
    EmbeddingQueueStatus,
    InMemoryEmbeddingQueue,
    PostgreSQLEmbeddingQueue,
)

__all__ = [
    # Queue
    "EmbeddingQueue",
    "EmbeddingQueueItem",
    "EmbeddingQueueStatus",
    "PostgreSQLEmbeddingQueue",
    "InMemoryEmbeddingQueue",
    # Providers
    "EmbeddingProvider",
    "EmbeddingOutcome",
    "BedrockEmbeddingProvider",
    "DifyKnowledgeBaseProvider",
    "DEFAULT_BEDROCK_MODEL_ID",
    # Pipeline
    "EmbeddingPipeline",
    "EmbeddingRunStats",
    "DEFAULT_TEXT_BUILDERS",
    "AI_EMBEDDINGS_TABLE",
    "content_hash",
]
