import asyncio
import hashlib
import json
import logging
import re
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import AbstractSet, Dict, Optional, Tuple

from fastapi import Depends

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import SequenceError, ValidationFailed
from chatglue.utils.content_range import ContentRange

logger = logging.getLogger(__name__)

UPLOAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")

SessionKey = Tuple[str, str]


class _SessionLock:
    """A lock plus the number of requests currently holding or awaiting it."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


# Chunks of the same (owner, upload id) are applied one at a time. An entry
# only lives while some request is using it.
_session_locks: Dict[SessionKey, _SessionLock] = {}

# (owner, upload id) -> time the session was discarded
_finished_sessions: Dict[SessionKey, float] = {}


@asynccontextmanager
async def _locked(key: SessionKey):
    entry = _session_locks.setdefault(key, _SessionLock())
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and _session_locks.get(key) is entry:
            del _session_locks[key]


def _forget_finished(ttl_seconds: int) -> None:
    cutoff = time.time() - ttl_seconds
    for key, finished_at in list(_finished_sessions.items()):
        if finished_at < cutoff:
            del _finished_sessions[key]


class UploadState(str, Enum):
    RECEIVING = "receiving"
    REASSEMBLING = "reassembling"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadSession:
    upload_id: str
    owner: str
    file_name: str
    content_type: str
    total_size: int
    state: UploadState = UploadState.RECEIVING
    created_at: float = field(default_factory=time.time)
    committed: int = 0

    def to_json(self) -> str:
        record = asdict(self)
        record["state"] = self.state.value
        record.pop("committed")
        return json.dumps(record)

    @classmethod
    def from_json(cls, raw: str, committed: int) -> "UploadSession":
        record = json.loads(raw)
        record["state"] = UploadState(record["state"])
        return cls(committed=committed, **record)


@dataclass
class ChunkReceipt:
    session: UploadSession

    @property
    def upload_id(self) -> str:
        return self.session.upload_id

    @property
    def committed(self) -> int:
        return self.session.committed

    @property
    def complete(self) -> bool:
        return self.session.committed == self.session.total_size

    @property
    def progress(self) -> int:
        return self.session.committed * 100 // self.session.total_size


class ChunkedUploadStore:
    """
    Filesystem-backed store for partially received uploads.

    Each session owns two files under `<root>/<owner digest>/`: an
    append-only `<upload id>.part` holding the bytes committed so far and a
    `<upload id>.json` sidecar with the declared metadata and state. A
    chunk is accepted only when it starts exactly at the committed offset,
    so the part file is always a contiguous prefix of the object.
    """

    def __init__(self, root: str, session_ttl_seconds: int = 3600):
        self.root = Path(root)
        self.session_ttl_seconds = session_ttl_seconds

    @staticmethod
    def new_upload_id() -> str:
        return secrets.token_urlsafe(16)

    def _owner_dir(self, owner: str) -> Path:
        return self.root / hashlib.sha256(owner.encode("utf-8")).hexdigest()[:16]

    def part_path(self, owner: str, upload_id: str) -> Path:
        return self._owner_dir(owner) / f"{upload_id}.part"

    def _meta_path(self, owner: str, upload_id: str) -> Path:
        return self._owner_dir(owner) / f"{upload_id}.json"

    def _load(self, owner: str, upload_id: str) -> Optional[UploadSession]:
        meta_path = self._meta_path(owner, upload_id)
        part_path = self.part_path(owner, upload_id)
        if not meta_path.exists() or not part_path.exists():
            return None
        return UploadSession.from_json(meta_path.read_text(), committed=part_path.stat().st_size)

    def _save(self, session: UploadSession) -> None:
        self._meta_path(session.owner, session.upload_id).write_text(session.to_json())

    def _create(self, session: UploadSession, in_use: AbstractSet[SessionKey]) -> None:
        self._sweep_stale(in_use)
        self._owner_dir(session.owner).mkdir(parents=True, exist_ok=True)
        # "wb" so a leftover part file without a sidecar is reset
        with open(self.part_path(session.owner, session.upload_id), "wb"):
            pass
        self._save(session)

    def _append(self, session: UploadSession, data: bytes) -> int:
        with open(self.part_path(session.owner, session.upload_id), "ab") as f:
            f.write(data)
            return f.tell()

    def _remove(self, owner: str, upload_id: str) -> None:
        for path in (self.part_path(owner, upload_id), self._meta_path(owner, upload_id)):
            path.unlink(missing_ok=True)

    @staticmethod
    def _last_activity(meta_path: Path, part_path: Path) -> float:
        """Latest mtime of the sidecar (state changes) and the part file (appends)."""
        try:
            last = meta_path.stat().st_mtime
        except OSError:
            return 0
        try:
            return max(last, part_path.stat().st_mtime)
        except OSError:
            return last

    def _sweep_stale(self, in_use: AbstractSet[SessionKey] = frozenset()) -> None:
        """Remove sessions idle for longer than the TTL, skipping any a request holds."""
        if not self.root.exists():
            return
        cutoff = time.time() - self.session_ttl_seconds
        for meta_path in self.root.glob("*/*.json"):
            part_path = meta_path.with_suffix(".part")
            if self._last_activity(meta_path, part_path) >= cutoff:
                continue
            try:
                record = json.loads(meta_path.read_text())
                key = (record.get("owner"), record.get("upload_id"))
            except (OSError, ValueError):
                key = None
            if key in in_use:
                continue
            logger.info(f"removing stale upload session {meta_path.stem}")
            part_path.unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)

    async def receive_chunk(
        self,
        owner: str,
        upload_id: Optional[str],
        file_name: str,
        content_type: str,
        content_range: ContentRange,
        data: bytes,
    ) -> ChunkReceipt:
        """
        Append one chunk to its session, creating the session on offset 0.

        Raises SequenceError when the chunk does not continue the session at
        its committed offset, disagrees with the session's declared metadata,
        or arrives after the session stopped receiving.
        """
        if len(data) != content_range.length:
            raise SequenceError(
                f"Chunk body has {len(data)} bytes but Content-Range declares {content_range.length}"
            )

        if upload_id is None:
            if content_range.start != 0:
                raise SequenceError("x-upload-id is required for chunks after the first", expected_offset=0)
            upload_id = self.new_upload_id()
        elif not UPLOAD_ID_PATTERN.match(upload_id):
            raise ValidationFailed(["Upload id must be 8-64 URL-safe characters"])

        key = (owner, upload_id)
        _forget_finished(self.session_ttl_seconds)
        if key in _finished_sessions:
            raise SequenceError(f"Upload session {upload_id} is no longer accepting chunks")

        async with _locked(key):
            session = await asyncio.to_thread(self._load, owner, upload_id)
            if session is None:
                if content_range.start != 0:
                    raise SequenceError(
                        f"Unknown upload session {upload_id}; uploads must start at byte 0",
                        expected_offset=0,
                    )
                session = UploadSession(
                    upload_id=upload_id,
                    owner=owner,
                    file_name=file_name,
                    content_type=content_type,
                    total_size=content_range.total,
                )
                await asyncio.to_thread(self._create, session, frozenset(_session_locks))
                logger.info(f"created upload session {upload_id} for {file_name} ({content_range.total} bytes)")
            else:
                self._check_consistent(session, content_type, content_range)

            if session.state != UploadState.RECEIVING:
                raise SequenceError(f"Upload session {upload_id} is no longer accepting chunks")
            if content_range.start != session.committed:
                raise SequenceError(
                    f"Expected chunk starting at byte {session.committed}, got {content_range.start}",
                    expected_offset=session.committed,
                )

            session.committed = await asyncio.to_thread(self._append, session, data)
            logger.debug(f"upload {upload_id}: {session.committed}/{session.total_size} bytes committed")

            if session.committed == session.total_size:
                session.state = UploadState.REASSEMBLING
                await asyncio.to_thread(self._save, session)
                logger.info(f"upload {upload_id} complete, reassembling")
            return ChunkReceipt(session)

    @staticmethod
    def _check_consistent(session: UploadSession, content_type: str, content_range: ContentRange) -> None:
        reasons = []
        if content_range.total != session.total_size:
            reasons.append(
                f"Declared total {content_range.total} differs from session total {session.total_size}"
            )
        if content_type != session.content_type:
            reasons.append(f"Content type {content_type} differs from session type {session.content_type}")
        if reasons:
            raise SequenceError(", ".join(reasons), expected_offset=session.committed)

    async def mark(self, session: UploadSession, state: UploadState) -> None:
        session.state = state
        await asyncio.to_thread(self._save, session)
        logger.debug(f"upload {session.upload_id} -> {state.value}")

    async def discard(self, session: UploadSession) -> None:
        """
        Delete the session's files. Its id stays refused for the session TTL
        so a late resend cannot open a second session under the same id.
        """
        _finished_sessions[(session.owner, session.upload_id)] = time.time()
        await asyncio.to_thread(self._remove, session.owner, session.upload_id)
        logger.debug(f"removed temporary files for upload {session.upload_id}")


def get_upload_store(settings: Settings = Depends(get_settings)) -> ChunkedUploadStore:
    return ChunkedUploadStore(settings.UPLOAD_TMP_DIR, session_ttl_seconds=settings.UPLOAD_SESSION_TTL_SECONDS)
