# tests/test_store.py
import threading

import numpy as np
import pytest

from conftest import DIMENSION, make_record

from docvector.errors import InvalidArgument
from docvector.memory.store import (
    InMemoryVectorStore,
    ReadWriteLock,
    cosine_similarity,
    rank_results,
)
from docvector.memory.types import RECORD_TYPE_CHAT, MetadataFilter


def unit(index, dimension=DIMENSION):
    vector = np.zeros(dimension)
    vector[index] = 1.0
    return vector


class TestCosineSimilarity:

    def test_self_similarity_is_one(self):
        rng = np.random.default_rng(7)

        for _ in range(20):
            v = rng.normal(size=DIMENSION)
            assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_bounds(self):
        rng = np.random.default_rng(11)

        for _ in range(50):
            a = rng.normal(size=DIMENSION)
            b = rng.normal(size=DIMENSION)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_opposite_and_orthogonal(self):
        assert cosine_similarity(unit(0), -unit(0)) == pytest.approx(-1.0)
        assert cosine_similarity(unit(0), unit(1)) == pytest.approx(0.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity(np.zeros(DIMENSION), unit(3)) == 0.0
        assert cosine_similarity(np.zeros(DIMENSION), np.zeros(DIMENSION)) == 0.0

    def test_length_mismatch(self):
        with pytest.raises(InvalidArgument):
            cosine_similarity(np.ones(3), np.ones(4))


class TestRanking:

    def test_ties_break_by_ascending_id(self):
        ranked = rank_results([("b", 0.5, None), ("a", 0.5, None), ("c", 0.9, None)], top_k=3)
        assert [item[0] for item in ranked] == ["c", "a", "b"]

    def test_truncates(self):
        ranked = rank_results([(str(i), i / 10, None) for i in range(10)], top_k=3)
        assert [item[0] for item in ranked] == ["9", "8", "7"]


class TestUpsert:

    def test_upsert_same_id_keeps_latest(self, store):
        store.upsert([make_record("r1", unit(0))])
        store.upsert([make_record("r1", unit(1))])

        assert store.stats().total_vectors == 1
        assert np.array_equal(store.get("r1").embedding, unit(1))

    def test_duplicate_ids_in_one_batch_count_once(self, store):
        written = store.upsert([make_record("r1", unit(0)), make_record("r1", unit(2))])

        assert written == 1
        assert np.array_equal(store.get("r1").embedding, unit(2))

    def test_stored_embedding_is_a_frozen_copy(self, store):
        vector = unit(0)
        store.upsert([make_record("r1", vector)])

        vector[0] = 5.0

        stored = store.get("r1").embedding
        assert stored[0] == 1.0
        with pytest.raises(ValueError):
            stored[0] = 2.0

    def test_caller_changes_after_upsert_do_not_reach_the_store(self, store):
        record = make_record("r1", unit(0))
        store.upsert([record])

        record.metadata.extra["text"] = "changed"

        assert store.get("r1").metadata.text == "text of r1"

    def test_zero_embedding_is_accepted(self, store):
        store.upsert([make_record("zero", np.zeros(DIMENSION))])
        results = store.query(unit(0), top_k=1)

        assert results[0].record_id == "zero"
        assert results[0].score == 0.0

    def test_wrong_dimension_is_rejected(self, store):
        with pytest.raises(InvalidArgument):
            store.upsert([make_record("bad", np.ones(DIMENSION + 1))])

        assert store.stats().total_vectors == 0

    def test_upsert_moves_record_between_sources(self, store):
        store.upsert([make_record("r1", unit(0), source_name="old")])
        store.upsert([make_record("r1", unit(0), source_name="new")])

        assert store.delete_where(MetadataFilter(owner_id="u1", source_name="old")) == 0
        assert store.delete_where(MetadataFilter(owner_id="u1", source_name="new")) == 1


class TestQuery:

    def test_results_sorted_and_truncated(self, store):
        query = unit(0)
        records = []

        for i in range(6):
            v = unit(0) + unit(1) * i
            records.append(make_record(f"r{i}", v))

        store.upsert(records)

        results = store.query(query, top_k=4)
        scores = [r.score for r in results]

        assert len(results) == 4
        assert scores == sorted(scores, reverse=True)
        assert results[0].record_id == "r0"
        assert results[0].score == pytest.approx(1.0)

    def test_equal_scores_order_by_id(self, store):
        store.upsert([make_record(rid, unit(0)) for rid in ["c", "a", "b"]])

        results = store.query(unit(0), top_k=3)

        assert [r.record_id for r in results] == ["a", "b", "c"]

    def test_zero_query_vector_is_safe(self, store):
        store.upsert([make_record("b", unit(0)), make_record("a", unit(1))])

        results = store.query(np.zeros(DIMENSION), top_k=5)

        assert [r.record_id for r in results] == ["a", "b"]
        assert all(r.score == 0.0 for r in results)

    def test_result_metadata_is_a_copy(self, store):
        store.upsert([make_record("r1", unit(0))])

        store.query(unit(0), top_k=1)[0].metadata.extra["text"] = "changed"
        store.get("r1").metadata.extra["text"] = "changed too"

        assert store.query(unit(0), top_k=1)[0].metadata.text == "text of r1"

    def test_empty_store_returns_empty(self, store):
        assert store.query(unit(0), top_k=5) == []

    def test_accepts_row_vector(self, store):
        store.upsert([make_record("r1", unit(0))])
        assert store.query(unit(0).reshape(1, -1), top_k=1)[0].record_id == "r1"

    def test_filter_by_owner(self, store):
        store.upsert([
            make_record("mine", unit(0), owner_id="u1"),
            make_record("theirs", unit(0), owner_id="u2"),
        ])

        results = store.query(unit(0), top_k=10, filter=MetadataFilter(owner_id="u1"))

        assert [r.record_id for r in results] == ["mine"]

    def test_filter_is_a_conjunction(self, store):
        store.upsert([
            make_record("doc", unit(0), source_name="s1"),
            make_record("chat", unit(0), source_name="s1", record_type=RECORD_TYPE_CHAT),
            make_record("other", unit(0), source_name="s2", record_type=RECORD_TYPE_CHAT),
        ])

        results = store.query(
            unit(0),
            top_k=10,
            filter=MetadataFilter(owner_id="u1", source_name="s1", record_type=RECORD_TYPE_CHAT),
        )

        assert [r.record_id for r in results] == ["chat"]

    @pytest.mark.parametrize("top_k", [0, -1])
    def test_invalid_top_k(self, store, top_k):
        with pytest.raises(InvalidArgument):
            store.query(unit(0), top_k=top_k)

    def test_wrong_query_dimension(self, store):
        with pytest.raises(InvalidArgument):
            store.query(np.ones(3), top_k=1)


class TestDelete:

    def test_delete_unknown_ids_is_a_no_op(self, store):
        store.upsert([make_record("r1", unit(0))])

        assert store.delete(["missing", "also-missing"]) == 0
        assert store.stats().total_vectors == 1

    def test_delete_by_id(self, store):
        store.upsert([make_record("r1", unit(0)), make_record("r2", unit(1))])

        assert store.delete(["r1", "r1"]) == 1
        assert store.get("r1") is None
        assert store.get("r2") is not None

    def test_delete_where_document_uses_owner_and_source(self, store):
        store.upsert([
            make_record("a", unit(0), owner_id="u1", source_name="manual"),
            make_record("b", unit(1), owner_id="u1", source_name="manual"),
            make_record("c", unit(2), owner_id="u2", source_name="manual"),
        ])

        assert store.delete_where(MetadataFilter(owner_id="u1", source_name="manual")) == 2
        assert store.stats().total_vectors == 1
        assert store.get("c") is not None

    def test_delete_where_without_source_scans(self, store):
        store.upsert([
            make_record("a", unit(0), owner_id="u1", source_name="x"),
            make_record("b", unit(1), owner_id="u1", source_name="y"),
            make_record("c", unit(2), owner_id="u2", source_name="x"),
        ])

        assert store.delete_where(MetadataFilter(owner_id="u1")) == 2
        assert [r.record_id for r in store.query(unit(2), top_k=5)] == ["c"]

    def test_delete_where_on_empty_store(self, store):
        assert store.delete_where(MetadataFilter(owner_id="u1")) == 0

    def test_delete_where_scans_and_deletes_under_one_write_lock(self, store):
        class RecordingLock(ReadWriteLock):
            def __init__(self):
                super().__init__()
                self.entered = []

            def read_locked(self):
                self.entered.append("read")
                return super().read_locked()

            def write_locked(self):
                self.entered.append("write")
                return super().write_locked()

        store.upsert([
            make_record("a", unit(0), owner_id="u1", source_name="x"),
            make_record("b", unit(1), owner_id="u1", source_name="y"),
        ])

        lock = RecordingLock()
        store._lock = lock

        assert store.delete_where(MetadataFilter(owner_id="u1")) == 2
        assert lock.entered == ["write"]


class TestStats:

    def test_counts_by_record_type(self, store):
        store.upsert([
            make_record("a", unit(0)),
            make_record("b", unit(1)),
            make_record("c", unit(2), record_type=RECORD_TYPE_CHAT),
        ])

        stats = store.stats()

        assert stats.total_vectors == 3
        assert stats.dimension == DIMENSION
        assert stats.by_record_type == {"document_chunk": 2, "chat_message": 1}


class TestConcurrency:
    """Readers and writers interleave without losing records or seeing torn state."""

    def test_parallel_upserts_and_queries(self):
        store = InMemoryVectorStore(DIMENSION)
        errors = []

        def writer(worker):
            try:
                for i in range(25):
                    store.upsert([make_record(f"w{worker}-{i}", unit(i % DIMENSION) + 0.5)])
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(25):
                    for result in store.query(unit(0), top_k=5):
                        assert -1.0 <= result.score <= 1.0
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]

        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert store.stats().total_vectors == 100

    def test_writer_waits_for_reader(self):
        lock = ReadWriteLock()
        events = []
        reader_in = threading.Event()
        release_reader = threading.Event()

        def reader():
            with lock.read_locked():
                reader_in.set()
                release_reader.wait(timeout=5)
                events.append("read-done")

        def writer():
            reader_in.wait(timeout=5)
            with lock.write_locked():
                events.append("write")

        threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
        for thread in threads:
            thread.start()

        reader_in.wait(timeout=5)
        release_reader.set()

        for thread in threads:
            thread.join(timeout=5)

        assert events == ["read-done", "write"]
