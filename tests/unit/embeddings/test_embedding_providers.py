"""
Unit tests for the embedding providers.

Tests cover:
- BedrockEmbeddingProvider request body and vector parsing
- DifyKnowledgeBaseProvider request and document id parsing
- Retries and failure outcomes
"""

import io
import json
from unittest.mock import MagicMock

import httpx
import pytest

from legacymigrate.embeddings import (
    BedrockEmbeddingProvider,
    DifyKnowledgeBaseProvider,
    EmbeddingProvider,
)
from legacymigrate.exceptions import RetryConfig

NO_DELAY = RetryConfig(max_attempts=2, base_delay_ms=0, jitter_factor=0)


def bedrock_client(*vectors):
    client = MagicMock()
    client.invoke_model.side_effect = [
        v if isinstance(v, Exception) else {"body": io.BytesIO(json.dumps({"embedding": v}).encode())}
        for v in vectors
    ]
    return client


class TestBedrockEmbeddingProvider:
    """Tests for BedrockEmbeddingProvider."""

    def test_satisfies_protocol(self):
        provider = BedrockEmbeddingProvider(client=MagicMock(), enable_tracing=False)
        assert isinstance(provider, EmbeddingProvider)

    @pytest.mark.asyncio
    async def test_returns_vector(self):
        client = bedrock_client([0.1, 0.2, 0.3])
        provider = BedrockEmbeddingProvider(
            client=client, model_id="titan-test", retry_config=NO_DELAY, enable_tracing=False
        )

        outcome = await provider.embed("Crown prep notes", "messages", "m1")

        assert outcome.success
        assert outcome.vector == [0.1, 0.2, 0.3]
        kwargs = client.invoke_model.call_args.kwargs
        assert kwargs["modelId"] == "titan-test"
        assert json.loads(kwargs["body"]) == {"inputText": "Crown prep notes"}

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self):
        client = bedrock_client(RuntimeError("ThrottlingException"), [1.0])
        provider = BedrockEmbeddingProvider(client=client, retry_config=NO_DELAY, enable_tracing=False)

        outcome = await provider.embed("text", "messages", "m1")

        assert outcome.success
        assert client.invoke_model.call_count == 2

    @pytest.mark.asyncio
    async def test_failure_outcome_after_retries(self):
        client = bedrock_client(RuntimeError("ThrottlingException"), RuntimeError("ThrottlingException"))
        provider = BedrockEmbeddingProvider(client=client, retry_config=NO_DELAY, enable_tracing=False)

        outcome = await provider.embed("text", "messages", "m1")

        assert not outcome.success
        assert outcome.vector is None
        assert "ThrottlingException" in outcome.error


def dify_client(handler):
    return httpx.AsyncClient(
        base_url="https://dify.example/v1", transport=httpx.MockTransport(handler)
    )


class TestDifyKnowledgeBaseProvider:
    """Tests for DifyKnowledgeBaseProvider."""

    @pytest.mark.asyncio
    async def test_creates_document(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"document": {"id": "doc-1"}, "batch": "b"})

        async with DifyKnowledgeBaseProvider(
            api_url="https://dify.example/v1",
            api_key="key",
            dataset_id="ds-1",
            client=dify_client(handler),
            retry_config=NO_DELAY,
            enable_tracing=False,
        ) as provider:
            outcome = await provider.embed("Case ready", "messages", "m1")

        assert outcome.success
        assert outcome.document_id == "doc-1"
        [request] = requests
        assert request.url.path == "/v1/datasets/ds-1/document/create_by_text"
        body = json.loads(request.content)
        assert body["name"] == "messages-m1"
        assert body["text"] == "Case ready"
        assert body["indexing_technique"] == "high_quality"

    @pytest.mark.asyncio
    async def test_http_error_is_failure_outcome(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"message": "unavailable"})

        provider = DifyKnowledgeBaseProvider(
            api_url="https://dify.example/v1",
            api_key="key",
            dataset_id="ds-1",
            client=dify_client(handler),
            retry_config=NO_DELAY,
            enable_tracing=False,
        )

        outcome = await provider.embed("Case ready", "messages", "m1")
        await provider.aclose()

        assert not outcome.success
        assert "503" in outcome.error
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unexpected_payload_is_failure_outcome(self):
        provider = DifyKnowledgeBaseProvider(
            api_url="https://dify.example/v1",
            api_key="key",
            dataset_id="ds-1",
            client=dify_client(lambda request: httpx.Response(200, json={"result": "ok"})),
            retry_config=NO_DELAY,
            enable_tracing=False,
        )

        outcome = await provider.embed("Case ready", "messages", "m1")
        await provider.aclose()

        assert not outcome.success
