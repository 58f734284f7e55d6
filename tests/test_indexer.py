"""Tests for SearchIndexService."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from notefinder.index.hasher import ContentHasher
from notefinder.index.indexer import IndexingStatus, SyncStats
from notefinder.models import Recording

from conftest import FakeStorage, ServiceHarness, make_recording


class GatedStorage(FakeStorage):
    """First fetch blocks until released and then fails; later fetches succeed."""

    def __init__(self, recordings) -> None:
        super().__init__(recordings)
        self.release = asyncio.Event()

    async def get_recordings(self):
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
            raise OSError("captures folder unreadable")
        return list(self.recordings)


class TestSyncStats:
    """Test SyncStats tracking."""

    def test_init_defaults(self):
        """Test default initialization."""
        stats = SyncStats()
        assert (stats.indexed, stats.unchanged, stats.removed, stats.failed) == (0, 0, 0, 0)
        assert stats.failed_ids == []

    def test_increment(self):
        """Each status bumps its own counter; failures remember the id."""
        stats = SyncStats()
        stats.increment("indexed", "a")
        stats.increment("unchanged", "b")
        stats.increment("removed", "c")
        stats.increment("failed", "d")

        assert (stats.indexed, stats.unchanged, stats.removed, stats.failed) == (1, 1, 1, 1)
        assert stats.failed_ids == ["d"]


class TestSyncIndexes:
    """Test incremental synchronization."""

    @pytest.mark.asyncio
    async def test_first_sync_indexes_everything(self, harness: ServiceHarness) -> None:
        """A fresh index embeds every recording and records its hash."""
        recordings = [make_recording("a"), make_recording("b")]
        harness.set_recordings(recordings)

        stats = await harness.service.sync_indexes()

        assert stats.indexed == 2
        assert harness.store.get_indexed_recording_ids() == ["a", "b"]
        hasher = ContentHasher()
        for recording in recordings:
            assert harness.store.get_content_hash(recording.id) == hasher.compute_hash(recording)
        assert not harness.manager.needs_rebuild
        assert harness.manager.search_service.index_size == 2
        assert harness.service.status is IndexingStatus.IDLE
        assert harness.service.progress == 1.0

    @pytest.mark.asyncio
    async def test_second_sync_is_noop(self, harness: ServiceHarness) -> None:
        """Nothing changed, nothing is re-embedded."""
        harness.set_recordings([make_recording("a"), make_recording("b")])
        await harness.service.sync_indexes()
        harness.chunker.chunked.clear()
        embed_calls = len(harness.embedder.calls)

        stats = await harness.service.sync_indexes()

        assert harness.chunker.chunked == []
        assert len(harness.embedder.calls) == embed_calls
        assert stats.unchanged == 2
        assert stats.indexed == 0
        assert harness.service.total_to_index == 0
        assert harness.service.progress == 0.0

    @pytest.mark.asyncio
    async def test_mixed_changes(self, harness: ServiceHarness) -> None:
        """Unchanged, modified, new and deleted recordings are each handled once."""
        harness.set_recordings([make_recording("a"), make_recording("b"), make_recording("d")])
        await harness.service.sync_indexes()
        harness.chunker.chunked.clear()

        modified_b = make_recording("b", transcript="A completely different transcript. Yes.")
        harness.set_recordings([make_recording("a"), modified_b, make_recording("c")])

        stats = await harness.service.sync_indexes()

        assert sorted(harness.chunker.chunked) == ["b", "c"]
        assert (stats.unchanged, stats.indexed, stats.removed, stats.failed) == (1, 2, 1, 0)
        assert harness.store.get_indexed_recording_ids() == ["a", "b", "c"]
        assert harness.store.get_content_hash("d") is None
        assert harness.store.get_content_hash("b") == ContentHasher().compute_hash(modified_b)
        assert harness.service.total_to_index == 3
        assert harness.service.indexed_count == 3

    @pytest.mark.asyncio
    async def test_modified_recording_replaces_chunks(self, harness: ServiceHarness) -> None:
        """A re-indexed recording keeps only its new chunk set."""
        harness.set_recordings([make_recording("a", transcript="One. Two. Three.")])
        await harness.service.sync_indexes()

        harness.set_recordings([make_recording("a", title="", transcript="Short.")])
        await harness.service.sync_indexes()

        entry = harness.store.get_manifest_entry("a")
        assert entry.chunk_count == 1
        assert harness.store.get_stats()["total_chunks"] == 1

    @pytest.mark.asyncio
    async def test_metadata_change_is_not_reindexed(self, harness: ServiceHarness) -> None:
        """Changing only metadata leaves the recording untouched."""
        harness.set_recordings([make_recording("a")])
        await harness.service.sync_indexes()
        harness.chunker.chunked.clear()

        harness.set_recordings([make_recording("a", duration=99.0, file_size_kb=3.0)])
        stats = await harness.service.sync_indexes()

        assert harness.chunker.chunked == []
        assert stats.unchanged == 1

    @pytest.mark.asyncio
    async def test_empty_recording_gets_no_manifest(self, harness: ServiceHarness) -> None:
        """A recording without searchable text is never marked as indexed."""
        harness.set_recordings([Recording(id="blank")])

        await harness.service.sync_indexes()
        await harness.service.sync_indexes()

        assert harness.store.get_indexed_recording_ids() == []
        assert harness.store.get_content_hash("blank") is None
        assert harness.chunker.chunked == ["blank", "blank"]

    @pytest.mark.asyncio
    async def test_concurrent_syncs_run_once(self, harness: ServiceHarness) -> None:
        """Overlapping sync requests share one execution and one corpus fetch."""
        harness.set_recordings([make_recording("a"), make_recording("b")])

        first = asyncio.create_task(harness.service.sync_indexes())
        await asyncio.sleep(0)
        assert harness.service.is_syncing
        second = asyncio.create_task(harness.service.sync_indexes())
        stats_first, stats_second = await asyncio.gather(first, second)

        assert stats_first is stats_second
        assert harness.storage.calls == 1
        assert harness.lexical_storage.calls == 1
        assert sorted(harness.chunker.chunked) == ["a", "b"]
        assert not harness.service.is_syncing

    @pytest.mark.asyncio
    async def test_failed_recording_is_isolated(self, harness: ServiceHarness) -> None:
        """One failing recording does not stop the others."""
        harness.set_recordings([make_recording("a"), make_recording("b"), make_recording("c")])
        harness.chunker.fail_ids = {"b"}

        stats = await harness.service.sync_indexes()

        assert stats.indexed == 2
        assert stats.failed == 1
        assert stats.failed_ids == ["b"]
        assert harness.store.get_indexed_recording_ids() == ["a", "c"]
        assert harness.service.status is IndexingStatus.IDLE
        assert harness.service.error_message is None

    @pytest.mark.asyncio
    async def test_progress_completes_with_failures(self, harness: ServiceHarness) -> None:
        """Failed recordings still count as processed."""
        harness.set_recordings([make_recording("a"), make_recording("b")])
        harness.chunker.fail_ids = {"b"}

        await harness.service.sync_indexes()

        assert harness.service.indexed_count == 2
        assert harness.service.total_to_index == 2
        assert harness.service.progress == 1.0

    @pytest.mark.asyncio
    async def test_failed_recording_is_retried(self, harness: ServiceHarness) -> None:
        """A recording that failed is picked up again by the next sync."""
        harness.set_recordings([make_recording("a")])
        harness.chunker.fail_ids = {"a"}
        await harness.service.sync_indexes()

        harness.chunker.fail_ids = set()
        stats = await harness.service.sync_indexes()

        assert stats.indexed == 1
        assert harness.store.is_indexed("a")

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_version(self, harness: ServiceHarness) -> None:
        """A write that fails midway leaves the old chunks and hash in place."""
        original = make_recording("a")
        harness.set_recordings([original])
        await harness.service.sync_indexes()
        old_hash = harness.store.get_content_hash("a")
        old_count = harness.store.get_stats()["total_chunks"]

        harness.set_recordings([make_recording("a", transcript="New words. Entirely.")])
        with patch.object(
            harness.store, "update_manifest", side_effect=RuntimeError("disk full")
        ):
            stats = await harness.service.sync_indexes()

        assert stats.failed_ids == ["a"]
        assert harness.store.get_content_hash("a") == old_hash
        assert harness.store.get_stats()["total_chunks"] == old_count

    @pytest.mark.asyncio
    async def test_fetch_failure_sets_error(self, harness: ServiceHarness) -> None:
        """A failing corpus fetch aborts the sync and reports ERROR."""
        harness.storage.error = OSError("captures folder unreadable")

        with pytest.raises(OSError):
            await harness.service.sync_indexes()

        assert harness.service.status is IndexingStatus.ERROR
        assert harness.service.error_message == "captures folder unreadable"
        assert not harness.service.is_syncing

    @pytest.mark.asyncio
    async def test_recovers_after_error(self, harness: ServiceHarness) -> None:
        """A later successful sync clears the error."""
        harness.set_recordings([make_recording("a")])
        harness.storage.error = OSError("flaky")
        with pytest.raises(OSError):
            await harness.service.sync_indexes()

        harness.storage.error = None
        await harness.service.sync_indexes()

        assert harness.service.status is IndexingStatus.IDLE
        assert harness.service.error_message is None

    @pytest.mark.asyncio
    async def test_lexical_rebuild_failure_is_fatal(self, harness: ServiceHarness) -> None:
        """The sync fails when the keyword index cannot be rebuilt."""
        harness.set_recordings([make_recording("a")])
        harness.lexical_storage.error = RuntimeError("lexical fetch failed")

        with pytest.raises(RuntimeError):
            await harness.service.sync_indexes()

        assert harness.service.status is IndexingStatus.ERROR
        assert harness.store.is_indexed("a")


class TestListeners:
    """Test status change notifications."""

    @pytest.mark.asyncio
    async def test_listener_sees_phases(self, harness: ServiceHarness) -> None:
        """Listeners observe syncing, indexing and idle in order."""
        harness.set_recordings([make_recording("a")])
        seen: list[IndexingStatus] = []
        harness.service.add_listener(lambda: seen.append(harness.service.status))

        await harness.service.sync_indexes()

        assert seen[0] is IndexingStatus.SYNCING
        assert IndexingStatus.INDEXING in seen
        assert seen[-1] is IndexingStatus.IDLE

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, harness: ServiceHarness) -> None:
        """A raising listener neither breaks the sync nor starves other listeners."""
        harness.set_recordings([make_recording("a")])
        calls = []

        def broken() -> None:
            raise ValueError("listener bug")

        harness.service.add_listener(broken)
        harness.service.add_listener(lambda: calls.append(1))

        stats = await harness.service.sync_indexes()

        assert stats.indexed == 1
        assert calls
        assert harness.service.status is IndexingStatus.IDLE

    @pytest.mark.asyncio
    async def test_remove_listener(self, harness: ServiceHarness) -> None:
        """Removed listeners are not called."""
        calls = []
        listener = lambda: calls.append(1)  # noqa: E731
        harness.service.add_listener(listener)
        harness.service.remove_listener(listener)
        harness.service.remove_listener(listener)

        await harness.service.sync_indexes()

        assert calls == []


class TestSingleRecordOperations:
    """Test index_recording, remove_recording and force_full_reindex."""

    @pytest.mark.asyncio
    async def test_index_recording(self, harness: ServiceHarness) -> None:
        """Indexing one recording writes its chunks and invalidates BM25."""
        harness.set_recordings([make_recording("a")])
        await harness.service.sync_indexes()
        recording = make_recording("b")

        await harness.service.index_recording(recording)

        assert harness.store.is_indexed("b")
        assert harness.store.get_content_hash("b") == ContentHasher().compute_hash(recording)
        assert harness.manager.needs_rebuild

    @pytest.mark.asyncio
    async def test_index_recording_then_sync_is_noop(self, harness: ServiceHarness) -> None:
        """A recording indexed directly is seen as unchanged by the next sync."""
        recording = make_recording("a")
        harness.set_recordings([recording])
        await harness.service.index_recording(recording)
        harness.chunker.chunked.clear()

        stats = await harness.service.sync_indexes()

        assert harness.chunker.chunked == []
        assert stats.unchanged == 1

    @pytest.mark.asyncio
    async def test_remove_recording(self, harness: ServiceHarness) -> None:
        """Removal reports whether anything was indexed and invalidates BM25."""
        harness.set_recordings([make_recording("a")])
        await harness.service.sync_indexes()

        assert harness.service.remove_recording("a") is True
        assert harness.manager.needs_rebuild
        assert harness.service.remove_recording("a") is False
        assert harness.store.get_content_hash("a") is None

    @pytest.mark.asyncio
    async def test_force_full_reindex(self, harness: ServiceHarness) -> None:
        """A full reindex re-embeds every recording."""
        harness.set_recordings([make_recording("a"), make_recording("b")])
        await harness.service.sync_indexes()
        harness.chunker.chunked.clear()

        stats = await harness.service.force_full_reindex()

        assert sorted(harness.chunker.chunked) == ["a", "b"]
        assert stats.indexed == 2
        assert stats.unchanged == 0
        assert harness.store.get_indexed_recording_ids() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_force_full_reindex_during_sync(self, harness: ServiceHarness) -> None:
        """A reindex requested mid-sync waits for it, then re-embeds everything."""
        harness.set_recordings([make_recording("a"), make_recording("b")])
        await harness.service.sync_indexes()
        harness.set_recordings([make_recording("a"), make_recording("b"), make_recording("c")])

        running = asyncio.create_task(harness.service.sync_indexes())
        for _ in range(3):
            await asyncio.sleep(0)
        reindex = asyncio.create_task(harness.service.force_full_reindex())
        sync_stats, reindex_stats = await asyncio.gather(running, reindex)

        assert sync_stats is not reindex_stats
        assert reindex_stats.indexed == 3
        assert reindex_stats.unchanged == 0
        assert harness.store.get_indexed_recording_ids() == ["a", "b", "c"]
        assert harness.storage.calls == 3

    @pytest.mark.asyncio
    async def test_force_full_reindex_after_failed_sync(self, harness: ServiceHarness) -> None:
        """A running sync that fails does not stop the reindex."""
        harness.set_recordings([make_recording("a")])
        storage = GatedStorage([make_recording("a")])
        harness.service.storage = storage

        running = asyncio.create_task(harness.service.sync_indexes())
        await asyncio.sleep(0)
        reindex = asyncio.create_task(harness.service.force_full_reindex())
        await asyncio.sleep(0)
        assert harness.service.is_syncing
        storage.release.set()
        results = await asyncio.gather(running, reindex, return_exceptions=True)

        assert isinstance(results[0], OSError)
        assert results[1].indexed == 1
        assert storage.calls == 2
        assert harness.service.status is IndexingStatus.IDLE


class TestStatsAndDispose:
    """Test reporting and shutdown."""

    @pytest.mark.asyncio
    async def test_get_stats(self, harness: ServiceHarness) -> None:
        """Stats combine both indexes and the sync state."""
        harness.set_recordings([make_recording("a")])
        await harness.service.sync_indexes()

        stats = harness.service.get_stats()

        assert stats["vector_store"]["total_recordings"] == 1
        assert stats["lexical"]["is_built"] is True
        assert stats["status"] == "idle"
        assert stats["error"] is None
        assert stats["progress"] == 1.0

    def test_dispose(self, harness: ServiceHarness) -> None:
        """Dispose drops listeners and closes the vector store."""
        harness.service.add_listener(lambda: None)

        harness.service.dispose()

        assert harness.service._listeners == []
        assert harness.store._conn is None
