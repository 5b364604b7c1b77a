import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from google import genai
from google.genai import types

from chatglue.configs.config import get_settings
from chatglue.errors import UpstreamBlobFailure
from chatglue.utils.polling import PollResult

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"

    @classmethod
    def from_remote(cls, state) -> "JobState":
        raw = getattr(state, "value", state)
        try:
            return cls(str(raw).upper())
        except ValueError:
            return cls.STATE_UNSPECIFIED


@dataclass
class RemoteJob:
    name: str
    state: JobState
    uri: Optional[str] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_file(cls, file: types.File) -> "RemoteJob":
        error = getattr(file, "error", None)
        return cls(
            name=file.name,
            state=JobState.from_remote(file.state),
            uri=file.uri,
            mime_type=file.mime_type,
            error=getattr(error, "message", None) if error else None,
        )

    def as_poll_result(self) -> PollResult["RemoteJob"]:
        if self.state == JobState.ACTIVE:
            return PollResult.ready(self)
        if self.state == JobState.FAILED:
            return PollResult.failed(self.error or "Remote processing failed", value=self)
        return PollResult.pending(self)


class GeminiFileJobs:
    """
    Submits media to the Gemini Files API and reads back processing state.
    Uploaded files are processed asynchronously; a file can only be used
    for generation once it reaches ACTIVE.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(GeminiFileJobs, cls).__new__(cls)
            cls._instance.initialize_client()
        return cls._instance

    def initialize_client(self, client: Optional[genai.Client] = None):
        self.client = client or genai.Client(api_key=get_settings().GEMINI_API_KEY)

    async def submit(
        self, source: Union[str, bytes], mime_type: str, display_name: str
    ) -> RemoteJob:
        """Upload a file path or raw bytes and return the created job."""
        file = source if isinstance(source, str) else io.BytesIO(source)
        try:
            logger.info(f"uploading to gemini: {display_name}")
            uploaded = await self.client.aio.files.upload(
                file=file,
                config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name),
            )
        except Exception as e:
            logger.error(f"Gemini upload failed for {display_name}: {e}", exc_info=True)
            raise UpstreamBlobFailure("Video upload to processing service failed") from e
        logger.info(f"gemini upload complete: {uploaded.name}")
        return RemoteJob.from_file(uploaded)

    async def get(self, name: str) -> RemoteJob:
        try:
            return RemoteJob.from_file(await self.client.aio.files.get(name=name))
        except Exception as e:
            logger.error(f"Gemini status check failed for {name}: {e}")
            raise UpstreamBlobFailure("Video status check failed") from e

    async def delete(self, name: str) -> None:
        logger.info(f"deleting gemini file {name}")
        await self.client.aio.files.delete(name=name)


def get_video_jobs() -> GeminiFileJobs:
    return GeminiFileJobs()
