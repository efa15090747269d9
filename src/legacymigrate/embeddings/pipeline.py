"""
EmbeddingPipeline - drains the embedding queue after a migration.

For each pending queue item the pipeline loads the migrated row, builds
the text to embed, and hands it to the provider. Vectors returned by
the provider are stored in ``ai_embeddings``; document ids returned by
a knowledge base are recorded on the queue item as they are.

Text that is empty is skipped. Text whose SHA-256 hash was already
embedded in the same run reuses the earlier document id instead of
calling the provider again.

Usage:
    >>> pipeline = EmbeddingPipeline(queue, target_store, BedrockEmbeddingProvider())
    >>> stats = await pipeline.run(limit=500)
    >>> stats.completed, stats.failed
    (498, 2)
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from legacymigrate.embeddings.providers import EmbeddingOutcome, EmbeddingProvider
from legacymigrate.embeddings.queue import EmbeddingQueue, EmbeddingQueueItem
from legacymigrate.observability import (
    ATTR_EMBEDDING_PROVIDER,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.targets.store import TargetStore

logger = logging.getLogger(__name__)

AI_EMBEDDINGS_TABLE = "ai_embeddings"

TextBuilder = Callable[[Mapping[str, Any]], str]


def message_text(row: Mapping[str, Any]) -> str:
    parts = [row.get("subject") or "", row.get("body") or ""]
    return "\n\n".join(p.strip() for p in parts if p and p.strip())


def project_text(row: Mapping[str, Any]) -> str:
    return (row.get("name") or "").strip()


DEFAULT_TEXT_BUILDERS: dict[str, TextBuilder] = {
    "messages": message_text,
    "projects": project_text,
}


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class EmbeddingRunStats:
    """Counters for one pipeline run."""

    processed: int = 0
    completed: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }


class EmbeddingPipeline:
    """
    Consumes pending embedding queue items.

    Per-item failures (missing row, provider error, target store error)
    mark that item failed; they never stop the run. Queue errors do.
    """

    def __init__(
        self,
        queue: EmbeddingQueue,
        store: TargetStore,
        provider: EmbeddingProvider,
        *,
        text_builders: Mapping[str, TextBuilder] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._queue = queue
        self._store = store
        self._provider = provider
        self._text_builders = dict(text_builders or DEFAULT_TEXT_BUILDERS)
        self._seen: dict[str, str | None] = {}

    async def run(self, limit: int = 100, batch_size: int = 25) -> EmbeddingRunStats:
        """
        Process up to ``limit`` pending items.

        Args:
            limit: Maximum items to process in this run.
            batch_size: Items fetched from the queue at a time.

        Returns:
            EmbeddingRunStats for the run.
        """
        stats = EmbeddingRunStats()
        self._seen.clear()

        with self._tracer.span(
            "legacymigrate.embedding_pipeline.run",
            {ATTR_EMBEDDING_PROVIDER: self._provider.name},
        ) as span:
            while stats.processed < limit:
                items = await self._queue.fetch_pending(min(batch_size, limit - stats.processed))
                if not items:
                    break
                for item in items:
                    try:
                        await self._process(item, stats)
                    except Exception as e:
                        logger.error(
                            "Embedding item %s (%s %s) failed: %s",
                            item.id,
                            item.source_table,
                            item.source_id,
                            e,
                            exc_info=True,
                        )
                        await self._queue.mark_failed(item.id, str(e))
                        stats.failed += 1
                    stats.processed += 1

            if span is not None:
                span.set_attribute(ATTR_RECORD_COUNT, stats.processed)

        logger.info(
            "Embedding run complete (%s): %d processed, %d completed, %d skipped, "
            "%d duplicates, %d failed",
            self._provider.name,
            stats.processed,
            stats.completed,
            stats.skipped,
            stats.duplicates,
            stats.failed,
        )
        return stats

    async def _process(self, item: EmbeddingQueueItem, stats: EmbeddingRunStats) -> None:
        builder = self._text_builders.get(item.source_table)
        if builder is None:
            await self._queue.mark_skipped(item.id, f"No text builder for {item.source_table}")
            stats.skipped += 1
            return

        rows = await self._store.fetch_rows(item.source_table, [item.source_id])
        if not rows:
            await self._queue.mark_failed(
                item.id, f"{item.source_table} row {item.source_id} not found"
            )
            stats.failed += 1
            return

        text = builder(rows[0])
        if not text:
            await self._queue.mark_skipped(item.id, "No text content")
            stats.skipped += 1
            return

        digest = content_hash(text)
        if digest in self._seen:
            await self._queue.mark_completed(item.id, self._seen[digest])
            stats.duplicates += 1
            return

        outcome = await self._provider.embed(text, item.source_table, item.source_id)
        if not outcome.success:
            logger.warning(
                "Embedding failed for %s %s: %s", item.source_table, item.source_id, outcome.error
            )
            await self._queue.mark_failed(item.id, outcome.error or "unknown error")
            stats.failed += 1
            return

        document_id = await self._store_outcome(item, digest, outcome)
        self._seen[digest] = document_id
        await self._queue.mark_completed(item.id, document_id)
        stats.completed += 1

    async def _store_outcome(
        self,
        item: EmbeddingQueueItem,
        digest: str,
        outcome: EmbeddingOutcome,
    ) -> str | None:
        if outcome.vector is None:
            return outcome.document_id
        return await self._store.insert_row(
            AI_EMBEDDINGS_TABLE,
            {
                "source_table": item.source_table,
                "source_id": item.source_id,
                "content_hash": digest,
                "embedding": outcome.vector,
                "provider": self._provider.name,
            },
        )


__all__ = [
    "EmbeddingPipeline",
    "EmbeddingRunStats",
    "DEFAULT_TEXT_BUILDERS",
    "AI_EMBEDDINGS_TABLE",
    "content_hash",
    "message_text",
    "project_text",
]
