"""
Pytest configuration for the chatglue test suite.

Provides in-memory stand-ins for the bucket, the Gemini Files API and
session resolution, wired into the app through dependency overrides.
"""
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from chatglue.configs.config import Settings, get_settings
from chatglue.main import app
from chatglue.services.gemini_service import JobState, RemoteJob
from chatglue.services.media_service import MediaPipeline, get_media_pipeline
from chatglue.services import upload_service
from chatglue.services.session_service import UserSession, require_session
from chatglue.utils.polling import PollPolicy


class FakeBlobStore:
    def __init__(self, fail: bool = False):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail = fail

    def object_key(self, upload_id: str, filename: str) -> str:
        return f"uploads/{upload_id}/{filename}"

    async def put(self, gcs_key, content_type, data=None, source_path=None):
        if self.fail:
            from chatglue.errors import UpstreamBlobFailure
            raise UpstreamBlobFailure()
        if source_path is not None:
            with open(source_path, "rb") as f:
                data = f.read()
        self.objects[gcs_key] = data
        url = f"https://storage.googleapis.com/test-bucket/{gcs_key}"
        return {
            "url": url,
            "downloadUrl": f"{url}?download=1",
            "pathname": gcs_key,
            "contentType": content_type,
            "contentDisposition": f'attachment; filename="{gcs_key.rsplit("/", 1)[-1]}"',
        }

    async def delete(self, gcs_key):
        self.deleted.append(gcs_key)
        self.objects.pop(gcs_key, None)


class FakeVideoJobs:
    """Reports the queued states one poll at a time, repeating the last."""

    def __init__(self, states: Optional[List[JobState]] = None):
        self.states = list(states or [JobState.ACTIVE])
        self.submitted: List[dict] = []
        self.polls = 0
        self.deleted: List[str] = []

    async def submit(self, source, mime_type, display_name):
        size = len(source) if isinstance(source, bytes) else None
        if isinstance(source, str):
            with open(source, "rb") as f:
                size = len(f.read())
        self.submitted.append({"mime_type": mime_type, "display_name": display_name, "size": size})
        return RemoteJob(name="files/abc123", state=JobState.PROCESSING)

    async def get(self, name):
        state = self.states[min(self.polls, len(self.states) - 1)]
        self.polls += 1
        uri = "https://generativelanguage.googleapis.com/v1beta/files/abc123"
        return RemoteJob(name=name, state=state, uri=uri, error="boom" if state == JobState.FAILED else None)

    async def delete(self, name):
        self.deleted.append(name)


@pytest.fixture(autouse=True)
def forget_finished_uploads():
    yield
    upload_service._finished_sessions.clear()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        UPLOAD_TMP_DIR=str(tmp_path / "uploads"),
        JOB_POLL_INTERVAL_SECONDS=0,
        JOB_POLL_MAX_ATTEMPTS=3,
    )


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def video_jobs():
    return FakeVideoJobs()


@pytest.fixture
def pipeline(blob_store, video_jobs, settings):
    policy = PollPolicy(interval_seconds=0, max_attempts=settings.job_poll_attempts)
    return MediaPipeline(blob_store, video_jobs, policy)


@pytest.fixture
def client(settings, pipeline):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_media_pipeline] = lambda: pipeline
    app.dependency_overrides[require_session] = lambda: UserSession(user_id="user-1", data={})
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


