import pytest

from buildmaster.src.core.exceptions import ValidationError, VectorStoreError
from buildmaster.src.core.retrieval import RetrievalEngine, relevance_from_distance
from buildmaster.src.database.vector_store import KnowledgeVectorStore

from conftest import DIM


async def test_search_empty_index(retrieval):
    assert await retrieval.search("anything", 5) == []


async def test_search_ranks_exact_match_first(retrieval):
    for text in ["Noctua NH-D15 air cooler", "Samsung 990 Pro NVMe SSD", "Corsair 4000D case"]:
        await retrieval.index(text)

    results = await retrieval.search("Samsung 990 Pro NVMe SSD", 3)

    assert [r.content for r in results][0] == "Samsung 990 Pro NVMe SSD"
    assert results[0].relevance_score == pytest.approx(1.0, abs=1e-4)
    distances = [r.distance for r in results]
    assert distances == sorted(distances)
    scores = [r.relevance_score for r in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.parametrize("query, top_k", [("", 3), ("   ", 3), ("cpu", 0), ("cpu", -1), ("cpu", 101), ("cpu", "5")])
async def test_invalid_input(retrieval, query, top_k):
    with pytest.raises(ValidationError):
        await retrieval.search(query, top_k)


async def test_lazy_ensure_collection(tmp_path, generator):
    store = KnowledgeVectorStore(dimension=DIM, db_path=str(tmp_path / "lazy"), table_name="kb", index_min_rows=0)
    engine = RetrievalEngine(generator, store, base_delay_ms=0)

    vector_id = await engine.index("lazy table")

    assert store.is_ready
    assert vector_id == "1"


async def test_unreachable_index_is_retried_then_raised(tmp_path, generator):
    class FlakyStore(KnowledgeVectorStore):
        __slots__ = ("attempts",)

        def search(self, query_embedding, top_k):
            self.attempts += 1
            raise VectorStoreError("connection refused")

    store = FlakyStore(dimension=DIM, db_path=str(tmp_path / "flaky"), table_name="kb")
    store.attempts = 0
    store.ensure_collection()
    engine = RetrievalEngine(generator, store, max_attempts=3, base_delay_ms=0)

    with pytest.raises(VectorStoreError):
        await engine.search("cpu", 3)
    assert store.attempts == 3


def test_relevance_from_distance():
    assert relevance_from_distance(0.0) == 1.0
    assert relevance_from_distance(1.0) == 0.5
    assert relevance_from_distance(-0.0001) == 1.0


async def test_max_top_k_zero_is_not_replaced_by_default(generator, vector_store):
    with pytest.raises(ValidationError):
        RetrievalEngine(generator, vector_store, max_top_k=0)

    engine = RetrievalEngine(generator, vector_store, max_top_k=2, base_delay_ms=0)
    with pytest.raises(ValidationError):
        await engine.search("cpu", 3)


async def test_remove_and_purge(retrieval, vector_store):
    first = await retrieval.index("Old text about GPUs", dedup_key="knowledge:abc:1")
    await retrieval.index("New text about GPUs", dedup_key="knowledge:abc:2")

    assert await retrieval.purge("knowledge:abc:", keep="knowledge:abc:2") == 1
    assert await retrieval.remove(first) is False
    assert [r.content for r in await retrieval.search("GPUs", 5)] == ["New text about GPUs"]
