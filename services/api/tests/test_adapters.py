from types import SimpleNamespace

import pytest
from openai import OpenAIError

from docqa_shared import Settings

from app.errors import EmbeddingError, RetrievalStoreError
from app.services.embeddings import OpenAIEmbeddingProvider, create_embedding_provider
from app.services.search_store import WeaviateSearchStore, build_where_filter


class FakeEmbeddings:
    def __init__(self, fail=False):
        self.fail = fail
        self.inputs = []

    async def create(self, *, model, input, dimensions):
        self.inputs.append(input)
        if self.fail:
            raise OpenAIError("quota exceeded")
        texts = input if isinstance(input, list) else [input]
        data = [SimpleNamespace(index=index, embedding=[float(len(text))]) for index, text in enumerate(texts)]
        return SimpleNamespace(data=list(reversed(data)), usage=SimpleNamespace(total_tokens=len(texts) * 2))


def _provider(fail=False, batch_size=2):
    embeddings = FakeEmbeddings(fail)
    settings = Settings(embedding_batch_size=batch_size)
    return OpenAIEmbeddingProvider(settings, SimpleNamespace(embeddings=embeddings)), embeddings


@pytest.mark.asyncio
async def test_embed_returns_vector_and_tokens():
    provider, _ = _provider()
    assert await provider.embed("abc") == ([3.0], 2)


@pytest.mark.asyncio
async def test_batches_are_split_and_kept_in_input_order():
    provider, embeddings = _provider(batch_size=2)
    vectors, tokens = await provider.embed_batch(["a", "bb", "", "ccc"])
    assert vectors == [[1.0], [2.0], [3.0]]
    assert tokens == 6
    assert embeddings.inputs == [["a", "bb"], ["ccc"]]


@pytest.mark.asyncio
async def test_empty_text_and_provider_errors_raise_embedding_error():
    provider, _ = _provider()
    with pytest.raises(EmbeddingError):
        await provider.embed("  ")
    failing, _ = _provider(fail=True)
    with pytest.raises(EmbeddingError):
        await failing.embed("abc")


def test_unknown_backend_is_a_configuration_error():
    with pytest.raises(ValueError):
        create_embedding_provider(Settings(embedding_backend="nope"))


class FakeQuery:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, index_name, properties):
        self.calls.append(("get", index_name))
        return self

    def __getattr__(self, name):
        def _chain(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return _chain

    def do(self):
        return self.response


def _store(response):
    query = FakeQuery(response)
    return WeaviateSearchStore(SimpleNamespace(query=query), "DocumentChunk"), query


ROW = {
    "chunk_id": "c1",
    "content": "Revenue rose.",
    "position_index": 3,
    "document_id": "report",
    "document_title": "Report",
    "_additional": {"distance": 0.2, "score": "4.5"},
}


@pytest.mark.asyncio
async def test_rows_become_ranked_hits():
    store, query = _store({"data": {"Get": {"DocumentChunk": [ROW, {**ROW, "chunk_id": "c2"}]}}})

    hits = await store.vector_search(tenant_id="acme", vector=[0.1], limit=5)

    assert [(hit.chunk_id, hit.rank) for hit in hits] == [("c1", 1), ("c2", 2)]
    assert hits[0].score == pytest.approx(0.8)
    assert hits[0].position_index == 3
    assert ("with_limit", (5,), {}) in query.calls


@pytest.mark.asyncio
async def test_keyword_hits_carry_bm25_score():
    store, _ = _store({"data": {"Get": {"DocumentChunk": [ROW]}}})
    [hit] = await store.keyword_search(tenant_id="acme", query="revenue", limit=5)
    assert hit.score == 4.5


@pytest.mark.asyncio
async def test_store_errors_and_malformed_rows_raise():
    store, _ = _store({"errors": [{"message": "class not found"}]})
    with pytest.raises(RetrievalStoreError):
        await store.vector_search(tenant_id="acme", vector=[0.1], limit=5)

    store, _ = _store({"data": {"Get": {"DocumentChunk": [{"content": "no ids"}]}}})
    with pytest.raises(RetrievalStoreError):
        await store.keyword_search(tenant_id="acme", query="revenue", limit=5)


def test_where_filter_scopes_tenant_status_and_documents():
    where = build_where_filter("acme", ["d1", "d2"])
    assert where["operator"] == "And"
    tenant, status, documents = where["operands"]
    assert tenant["valueText"] == "acme"
    assert status["valueText"] == "ready"
    assert [operand["valueText"] for operand in documents["operands"]] == ["d1", "d2"]
