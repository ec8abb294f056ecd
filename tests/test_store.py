"""Tests for store.py — snapshots, in-memory and JSON-file chunk stores."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from conftest import make_chunk, make_metadata
from doc_qa.store import CorpusSnapshot, InMemoryChunkStore, JsonChunkStore


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryChunkStore()
    return JsonChunkStore(tmp_path / "corpus.json")


# ---------------------------------------------------------------------------
# ChunkStore interface (both implementations)
# ---------------------------------------------------------------------------


class TestChunkStoreInterface:
    def test_starts_empty(self, any_store):
        assert any_store.count() == 0
        assert any_store.scan() == ()
        assert any_store.get_metadata() is None
        assert any_store.get("missing") is None

    def test_replace_then_read(self, any_store, sample_chunks):
        any_store.replace(sample_chunks, make_metadata(len(sample_chunks)))
        assert any_store.count() == 3
        assert any_store.get("scheduling-1-abc").heading == "Scheduling"
        assert [c.id for c in any_store.scan()] == [c.id for c in sample_chunks]
        assert any_store.get_metadata().chunk_count == 3

    def test_get_many_keeps_request_order_and_skips_unknown(self, any_store, sample_chunks):
        any_store.replace(sample_chunks, make_metadata(3))
        found = any_store.get_many(["escalation-2-abc", "nope", "intake-0-abc"])
        assert [c.id for c in found] == ["escalation-2-abc", "intake-0-abc"]

    def test_replace_swaps_whole_collection(self, any_store, sample_chunks):
        any_store.replace(sample_chunks, make_metadata(3))
        replacement = [make_chunk("billing-0-xyz", "Billing", "Collect the copay.", [1.0, 1.0, 0.0])]
        any_store.replace(replacement, make_metadata(1))
        assert [c.id for c in any_store.scan()] == ["billing-0-xyz"]
        assert any_store.get("intake-0-abc") is None

    def test_clear(self, any_store, sample_chunks):
        any_store.replace(sample_chunks, make_metadata(3))
        any_store.clear()
        assert any_store.count() == 0
        assert any_store.get_metadata() is None

    def test_unique_headings_in_document_order(self, any_store, sample_chunks):
        extra = make_chunk("intake-3-abc", "Intake", "More intake.", [1.0, 0.0, 0.0])
        any_store.replace([*sample_chunks, extra], make_metadata(4))
        assert any_store.unique_headings() == ["Intake", "Scheduling", "Escalation"]

    def test_snapshot_is_unaffected_by_later_replace(self, any_store, sample_chunks):
        any_store.replace(sample_chunks, make_metadata(3))
        before = any_store.snapshot()
        any_store.replace(sample_chunks[:1], make_metadata(1))
        assert len(before) == 3
        assert len(any_store.snapshot()) == 1


class TestCorpusSnapshot:
    def test_matrix_stacks_embeddings_read_only(self, sample_chunks):
        snapshot = CorpusSnapshot.build(sample_chunks, make_metadata(3))
        assert snapshot.matrix.shape == (3, 3)
        assert not snapshot.matrix.flags.writeable
        assert snapshot.index["escalation-2-abc"] == 2

    def test_index_is_read_only(self, sample_chunks):
        snapshot = CorpusSnapshot.build(sample_chunks, None)
        with pytest.raises(TypeError):
            snapshot.index["new"] = 0


# ---------------------------------------------------------------------------
# JsonChunkStore persistence
# ---------------------------------------------------------------------------


class TestJsonChunkStore:
    def test_persists_and_reloads(self, tmp_path, sample_chunks):
        path = tmp_path / "data" / "corpus.json"
        JsonChunkStore(path).replace(sample_chunks, make_metadata(3, total_tokens=12))
        reopened = JsonChunkStore(path)
        assert reopened.count() == 3
        assert reopened.get("intake-0-abc") == sample_chunks[0]
        assert reopened.get_metadata().total_tokens == 12

    def test_file_layout_uses_snake_case_keys(self, tmp_path, sample_chunks):
        path = tmp_path / "corpus.json"
        JsonChunkStore(path).replace(sample_chunks, make_metadata(3))
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert set(payload) == {"chunks", "metadata"}
        assert {"source_path", "offset_start", "offset_end", "token_count", "embedding"} <= set(payload["chunks"][0])
        assert payload["metadata"]["document_name"] == "handbook.md"

    def test_failed_write_keeps_previous_file(self, tmp_path, sample_chunks):
        path = tmp_path / "corpus.json"
        store = JsonChunkStore(path)
        store.replace(sample_chunks, make_metadata(3))
        original = path.read_text(encoding="utf-8")

        with patch("doc_qa.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.replace(sample_chunks[:1], make_metadata(1))

        assert path.read_text(encoding="utf-8") == original
        assert store.count() == 3
        assert [p.name for p in tmp_path.iterdir()] == ["corpus.json"]

    def test_reload_picks_up_external_write(self, tmp_path, sample_chunks):
        path = tmp_path / "corpus.json"
        reader = JsonChunkStore(path)
        JsonChunkStore(path).replace(sample_chunks, make_metadata(3))
        assert reader.count() == 0
        reader.reload()
        assert reader.count() == 3
