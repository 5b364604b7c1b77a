"""
Tests for chatglue/services/upload_service.py
Chunked upload sessions: ordering, reassembly and cleanup.
"""
import asyncio
import json
import os
import time

import pytest

from chatglue.errors import SequenceError, ValidationFailed
from chatglue.services import upload_service
from chatglue.services.upload_service import ChunkedUploadStore, UploadState
from chatglue.utils.content_range import ContentRange


def chunks_of(data: bytes, size: int):
    for start in range(0, len(data), size):
        chunk = data[start:start + size]
        yield ContentRange(start, start + len(chunk) - 1, len(data)), chunk


@pytest.fixture
def store(tmp_path):
    return ChunkedUploadStore(str(tmp_path / "uploads"), session_ttl_seconds=3600)


async def send(store, owner, upload_id, content_range, chunk, content_type="video/mp4"):
    return await store.receive_chunk(owner, upload_id, "clip.mp4", content_type, content_range, chunk)


class TestReassembly:
    @pytest.mark.parametrize("chunk_size", [1, 7, 64, 1000])
    async def test_contiguous_chunks_reassemble_exactly(self, store, chunk_size):
        data = bytes(range(256)) * 4
        upload_id = None
        receipt = None
        for content_range, chunk in chunks_of(data, chunk_size):
            receipt = await send(store, "alice", upload_id, content_range, chunk)
            upload_id = receipt.upload_id

        assert receipt.complete
        with open(store.part_path("alice", upload_id), "rb") as f:
            assert f.read() == data

    async def test_first_chunk_mints_upload_id(self, store):
        receipt = await send(store, "alice", None, ContentRange(0, 9, 20), b"x" * 10)
        assert len(receipt.upload_id) >= 8
        assert receipt.progress == 50
        assert not receipt.complete

    async def test_progress_reflects_committed_bytes(self, store):
        total = 10_000_000
        sizes = [4_000_000, 4_000_000, 2_000_000]
        upload_id, start, progress = None, 0, []
        for size in sizes:
            receipt = await send(store, "alice", upload_id, ContentRange(start, start + size - 1, total), b"\0" * size)
            upload_id = receipt.upload_id
            start += size
            progress.append(receipt.progress)
        assert progress == [40, 80, 100]

    async def test_final_chunk_marks_reassembling_once(self, store):
        receipt = await send(store, "alice", None, ContentRange(0, 3, 4), b"abcd")
        assert receipt.complete
        assert receipt.session.state == UploadState.REASSEMBLING

        with pytest.raises(SequenceError):
            await send(store, "alice", receipt.upload_id, ContentRange(0, 3, 4), b"abcd")


class TestSequencing:
    async def test_gap_is_rejected(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 12), b"abcd")
        with pytest.raises(SequenceError) as exc_info:
            await send(store, "alice", first.upload_id, ContentRange(8, 11, 12), b"ijkl")
        assert exc_info.value.expected_offset == 4

    async def test_overlap_is_rejected(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 12), b"abcd")
        with pytest.raises(SequenceError):
            await send(store, "alice", first.upload_id, ContentRange(2, 5, 12), b"cdef")

    async def test_session_survives_rejected_chunk(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        with pytest.raises(SequenceError):
            await send(store, "alice", first.upload_id, ContentRange(6, 7, 8), b"gh")
        receipt = await send(store, "alice", first.upload_id, ContentRange(4, 7, 8), b"efgh")
        assert receipt.complete
        with open(store.part_path("alice", first.upload_id), "rb") as f:
            assert f.read() == b"abcdefgh"

    async def test_body_length_must_match_range(self, store):
        with pytest.raises(SequenceError):
            await send(store, "alice", None, ContentRange(0, 9, 20), b"short")

    async def test_later_chunk_requires_upload_id(self, store):
        with pytest.raises(SequenceError):
            await send(store, "alice", None, ContentRange(4, 7, 8), b"efgh")

    async def test_unknown_session_must_start_at_zero(self, store):
        with pytest.raises(SequenceError):
            await send(store, "alice", "unknown-session-id", ContentRange(4, 7, 8), b"efgh")

    async def test_declared_total_must_not_change(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        with pytest.raises(SequenceError):
            await send(store, "alice", first.upload_id, ContentRange(4, 7, 9), b"efgh")

    async def test_content_type_must_not_change(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        with pytest.raises(SequenceError):
            await send(store, "alice", first.upload_id, ContentRange(4, 7, 8), b"efgh", content_type="image/png")

    async def test_rejects_unsafe_upload_id(self, store):
        with pytest.raises(ValidationFailed):
            await send(store, "alice", "../../etc/passwd", ContentRange(0, 3, 8), b"abcd")


class TestIsolation:
    async def test_same_file_name_different_sessions(self, store):
        a = await send(store, "alice", None, ContentRange(0, 3, 8), b"AAAA")
        b = await send(store, "alice", None, ContentRange(0, 3, 8), b"BBBB")
        assert a.upload_id != b.upload_id

        await send(store, "alice", a.upload_id, ContentRange(4, 7, 8), b"aaaa")
        await send(store, "alice", b.upload_id, ContentRange(4, 7, 8), b"bbbb")
        with open(store.part_path("alice", a.upload_id), "rb") as f:
            assert f.read() == b"AAAAaaaa"
        with open(store.part_path("alice", b.upload_id), "rb") as f:
            assert f.read() == b"BBBBbbbb"

    async def test_sessions_are_scoped_by_owner(self, store):
        a = await send(store, "alice", "shared-upload-id", ContentRange(0, 3, 8), b"AAAA")
        with pytest.raises(SequenceError):
            await send(store, "mallory", a.upload_id, ContentRange(4, 7, 8), b"xxxx")


class TestCleanup:
    async def test_discard_removes_backing_files(self, store):
        receipt = await send(store, "alice", None, ContentRange(0, 3, 4), b"abcd")
        part_path = store.part_path("alice", receipt.upload_id)
        assert part_path.exists()

        await store.discard(receipt.session)
        assert not part_path.exists()
        assert not any(part_path.parent.iterdir())

    async def test_idle_sessions_are_swept(self, store):
        old = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        part_path = store.part_path("alice", old.upload_id)
        meta_path = part_path.with_suffix(".json")
        idle_since = time.time() - 7200
        for path in (part_path, meta_path):
            os.utime(path, (idle_since, idle_since))

        await send(store, "bob", None, ContentRange(0, 3, 8), b"efgh")
        assert not part_path.exists()
        assert not meta_path.exists()

    async def test_old_session_with_recent_chunks_survives_sweep(self, store):
        old = await send(store, "alice", None, ContentRange(0, 3, 12), b"abcd")
        meta_path = store.part_path("alice", old.upload_id).with_suffix(".json")
        record = json.loads(meta_path.read_text())
        record["created_at"] = time.time() - 7200
        meta_path.write_text(json.dumps(record))
        await send(store, "alice", old.upload_id, ContentRange(4, 7, 12), b"efgh")
        idle_since = time.time() - 7200
        os.utime(meta_path, (idle_since, idle_since))

        await send(store, "bob", None, ContentRange(0, 3, 8), b"ijkl")

        receipt = await send(store, "alice", old.upload_id, ContentRange(8, 11, 12), b"mnop")
        assert receipt.complete
        with open(store.part_path("alice", old.upload_id), "rb") as f:
            assert f.read() == b"abcdefghmnop"

    async def test_sweep_skips_sessions_in_use(self, store):
        busy = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        part_path = store.part_path("alice", busy.upload_id)
        idle_since = time.time() - 7200
        for path in (part_path, part_path.with_suffix(".json")):
            os.utime(path, (idle_since, idle_since))

        store._sweep_stale(in_use={("alice", busy.upload_id)})
        assert part_path.exists()

    async def test_unknown_ids_leave_no_locks_behind(self, store):
        before = len(upload_service._session_locks)
        for n in range(200):
            with pytest.raises(SequenceError):
                await send(store, "alice", f"made-up-id-{n:04d}", ContentRange(4, 7, 8), b"efgh")
        assert len(upload_service._session_locks) == before

    async def test_lock_released_after_each_chunk(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 8), b"abcd")
        assert ("alice", first.upload_id) not in upload_service._session_locks


class TestFinishedSessions:
    async def test_resend_after_discard_is_rejected(self, store):
        receipt = await send(store, "alice", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        await store.discard(receipt.session)

        with pytest.raises(SequenceError) as exc_info:
            await send(store, "alice", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        assert "no longer accepting chunks" in exc_info.value.detail
        assert not store.part_path("alice", "finished-upload").exists()

    async def test_finished_ids_expire_with_the_session_ttl(self, store):
        receipt = await send(store, "alice", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        await store.discard(receipt.session)
        upload_service._finished_sessions[("alice", "finished-upload")] = time.time() - 7200

        again = await send(store, "alice", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        assert again.complete
        assert ("alice", "finished-upload") not in upload_service._finished_sessions

    async def test_finished_id_is_scoped_by_owner(self, store):
        receipt = await send(store, "alice", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        await store.discard(receipt.session)
        other = await send(store, "bob", "finished-upload", ContentRange(0, 3, 4), b"abcd")
        assert other.complete


class TestConcurrency:
    async def test_concurrent_chunks_at_same_offset(self, store):
        first = await send(store, "alice", None, ContentRange(0, 3, 12), b"abcd")

        results = await asyncio.gather(
            send(store, "alice", first.upload_id, ContentRange(4, 7, 12), b"efgh"),
            send(store, "alice", first.upload_id, ContentRange(4, 7, 12), b"EFGH"),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, SequenceError)]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert rejected[0].expected_offset == 8
        assert store.part_path("alice", first.upload_id).stat().st_size == 8
