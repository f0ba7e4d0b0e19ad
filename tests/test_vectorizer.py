import pytest

from buildmaster.src.core.exceptions import ValidationError
from buildmaster.src.core.models import KnowledgeItem
from buildmaster.src.core.vectorizer import knowledge_dedup_key


def _item(content, **extra):
    return KnowledgeItem(component_type="Motherboard", content=content, **extra)


async def test_vectorize_unprocessed_marks_everything(vectorizer, knowledge_store, vector_store):
    for text in ["B650 supports PCIe 5.0 NVMe.", "X670E has more USB4 ports.", "A620 lacks CPU overclocking."]:
        await knowledge_store.create(_item(text))

    report = await vectorizer.vectorize_unprocessed()

    assert (report.scanned, report.vectorized, report.failed) == (3, 3, 0)
    assert await knowledge_store.find_unvectorized() == []
    assert vector_store.count() == 3


async def test_second_run_inserts_nothing(vectorizer, knowledge_store, vector_store):
    await knowledge_store.create(_item("Z790 is an Intel chipset."))
    await vectorizer.vectorize_unprocessed()

    report = await vectorizer.vectorize_unprocessed()

    assert report.scanned == 0
    assert report.vectorized == 0
    assert vector_store.count() == 1


async def test_rerun_after_lost_update_reuses_vector(vectorizer, knowledge_store, vector_store, retrieval):
    created = await knowledge_store.create(_item("H610 boards are budget-oriented."))
    # Vector written, but the store update never happened
    orphan_id = await retrieval.index(created.content, dedup_key=knowledge_dedup_key(created.id, created.content))

    await vectorizer.vectorize_unprocessed()

    assert vector_store.count() == 1
    assert (await knowledge_store.get(created.id)).vector_id == orphan_id


async def test_failures_are_isolated(vectorizer, knowledge_store, vector_store):
    good = await knowledge_store.create(_item("B760 supports DDR5."))
    # Whitespace-only content cannot be embedded
    bad = await knowledge_store.create(_item("   "))

    report = await vectorizer.vectorize_unprocessed()

    assert report.vectorized == 1
    assert report.failed == 1
    assert report.failed_ids == [bad.id]
    assert (await knowledge_store.get(good.id)).vectorized is True
    assert [i.id for i in await knowledge_store.find_unvectorized()] == [bad.id]


async def test_vectorize_item_requires_stored_item(vectorizer):
    with pytest.raises(ValidationError):
        await vectorizer.vectorize_item(_item("never stored"))


async def test_vectorize_item_skips_vectorized(vectorizer):
    item = _item("already done", id="65f000000000000000000001", vectorized=True, vector_id="9")
    assert await vectorizer.vectorize_item(item) is item


def test_dedup_key_follows_content():
    assert knowledge_dedup_key("abc", "one").startswith("knowledge:abc:")
    assert knowledge_dedup_key("abc", "one") != knowledge_dedup_key("abc", "two")
    assert knowledge_dedup_key("abc", "one") == knowledge_dedup_key("abc", "one")


async def test_edited_item_replaces_its_old_vector(vectorizer, knowledge_store, vector_store, retrieval):
    created = await knowledge_store.create(_item("Old text about GPUs"))
    first = await vectorizer.vectorize_item(created)

    edited = await knowledge_store.update(first.model_copy(update={"content": "New text about GPUs"}))
    assert (edited.vectorized, edited.vector_id) == (False, None)

    report = await vectorizer.vectorize_unprocessed()

    assert report.vectorized == 1
    assert vector_store.count() == 1
    results = await retrieval.search("Old text about GPUs", 5)
    assert [r.content for r in results] == ["New text about GPUs"]
    stored = await knowledge_store.get(created.id)
    assert stored.vectorized is True
    assert stored.vector_id == results[0].vector_id != first.vector_id


async def test_forget_item_clears_vectors_and_flag(vectorizer, knowledge_store, vector_store):
    created = await knowledge_store.create(_item("Obsolete PSU advice"))
    done = await vectorizer.vectorize_item(created)

    removed = await vectorizer.forget_item(done)

    assert removed == 1
    assert vector_store.count() == 0
    stored = await knowledge_store.get(created.id)
    assert (stored.vectorized, stored.vector_id) == (False, None)


async def test_forget_item_requires_stored_item(vectorizer):
    with pytest.raises(ValidationError):
        await vectorizer.forget_item(_item("never stored"))
