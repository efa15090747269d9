"""
Embedding providers.

Two ways to make migrated content searchable:

- BedrockEmbeddingProvider: computes a vector with an Amazon Titan
  embedding model through the ``bedrock-runtime`` API (boto3). boto3 is
  synchronous, so each call runs in a worker thread.
- DifyKnowledgeBaseProvider: adds the text as a document to a Dify
  knowledge base (dataset) over its HTTP API (httpx); Dify embeds and
  indexes it and returns a document id.

Both expose ``embed(text, source_table, source_id)`` and never raise for
a provider failure: transient errors are retried, and the final outcome
is returned as an EmbeddingOutcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import boto3
import httpx

from legacymigrate.exceptions import (
    EMBEDDING_RETRY_CONFIG,
    EmbeddingError,
    ErrorHandler,
    MigrationError,
    RetryConfig,
)
from legacymigrate.observability import (
    ATTR_EMBEDDING_PROVIDER,
    ATTR_SOURCE_TABLE,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

DEFAULT_BEDROCK_MODEL_ID = "amazon.titan-embed-text-v2:0"


@dataclass(frozen=True)
class EmbeddingOutcome:
    """
    Result of one embed call.

    Attributes:
        success: Whether the provider accepted the text.
        document_id: Knowledge-base document id (Dify).
        vector: Embedding vector (Bedrock).
        error: Error message when unsuccessful.
    """

    success: bool
    document_id: str | None = None
    vector: list[float] | None = None
    error: str | None = None


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding / knowledge-base services."""

    name: str

    async def embed(self, text: str, source_table: str, source_id: str) -> EmbeddingOutcome:
        """Embed one piece of text taken from ``source_table`` row ``source_id``."""
        ...


class _RetryingProvider:
    """Shared retry and tracing wrapper around a provider's raw call."""

    name = "provider"

    def __init__(
        self,
        *,
        retry_config: RetryConfig | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._retry_config = retry_config or EMBEDDING_RETRY_CONFIG
        self._error_handler = error_handler or ErrorHandler()

    async def _call(self, text: str, source_table: str, source_id: str) -> EmbeddingOutcome:
        raise NotImplementedError

    async def embed(self, text: str, source_table: str, source_id: str) -> EmbeddingOutcome:
        with self._tracer.span(
            "legacymigrate.embedding_provider.embed",
            {ATTR_EMBEDDING_PROVIDER: self.name, ATTR_SOURCE_TABLE: source_table},
        ):
            try:
                return await self._error_handler.execute_with_retry(
                    lambda: self._call(text, source_table, source_id),
                    operation_name=f"{self.name}.embed",
                    retry_config=self._retry_config,
                )
            except MigrationError as e:
                return EmbeddingOutcome(success=False, error=e.message)


class BedrockEmbeddingProvider(_RetryingProvider):
    """
    Computes embeddings with Amazon Bedrock.

    Example:
        >>> provider = BedrockEmbeddingProvider(region="us-east-1")
        >>> outcome = await provider.embed("Crown prep notes", "messages", message_id)
        >>> len(outcome.vector)
        1024
    """

    name = "bedrock"

    def __init__(
        self,
        *,
        region: str = "us-east-1",
        model_id: str = DEFAULT_BEDROCK_MODEL_ID,
        client: Any | None = None,
        retry_config: RetryConfig | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the provider.

        Args:
            region: AWS region of the Bedrock endpoint.
            model_id: Embedding model identifier.
            client: Pre-built ``bedrock-runtime`` client (one is created if not given).
            retry_config: Retry policy for throttling and transient failures.
            error_handler: Retry executor.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        super().__init__(
            retry_config=retry_config,
            error_handler=error_handler,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self.model_id = model_id
        self._client = client or boto3.client("bedrock-runtime", region_name=region)
        logger.info("Bedrock embedding provider initialized: model=%s, region=%s", model_id, region)

    def _invoke(self, text: str) -> list[float]:
        response = self._client.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps({"inputText": text}),
        )
        payload = json.loads(response["body"].read())
        return list(payload["embedding"])

    async def _call(self, text: str, source_table: str, source_id: str) -> EmbeddingOutcome:
        try:
            vector = await asyncio.to_thread(self._invoke, text)
        except Exception as e:
            raise EmbeddingError(
                self.name, str(e), source_table=source_table, source_id=source_id
            ) from e
        logger.debug("Embedded %s %s (%d dimensions)", source_table, source_id, len(vector))
        return EmbeddingOutcome(success=True, vector=vector)


class DifyKnowledgeBaseProvider(_RetryingProvider):
    """
    Adds text to a Dify knowledge base.

    Example:
        >>> async with DifyKnowledgeBaseProvider(
        ...     api_url="https://api.dify.ai/v1", api_key=key, dataset_id=dataset,
        ... ) as provider:
        ...     outcome = await provider.embed("Crown prep notes", "messages", message_id)
        >>> outcome.document_id
        'a1b2...'
    """

    name = "dify"

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        dataset_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        super().__init__(
            retry_config=retry_config,
            error_handler=error_handler,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self.dataset_id = dataset_id
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    async def _call(self, text: str, source_table: str, source_id: str) -> EmbeddingOutcome:
        try:
            response = await self._client.post(
                f"/datasets/{self.dataset_id}/document/create_by_text",
                json={
                    "name": f"{source_table}-{source_id}",
                    "text": text,
                    "indexing_technique": "high_quality",
                    "process_rule": {"mode": "automatic"},
                },
            )
            response.raise_for_status()
            document_id = str(response.json()["document"]["id"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise EmbeddingError(
                self.name, str(e), source_table=source_table, source_id=source_id
            ) from e
        logger.debug("Added %s %s to Dify as document %s", source_table, source_id, document_id)
        return EmbeddingOutcome(success=True, document_id=document_id)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> DifyKnowledgeBaseProvider:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = [
    "EmbeddingOutcome",
    "EmbeddingProvider",
    "BedrockEmbeddingProvider",
    "DifyKnowledgeBaseProvider",
    "DEFAULT_BEDROCK_MODEL_ID",
]
