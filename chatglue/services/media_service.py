import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import ClientDisconnected, RemoteJobFailed, RemoteJobTimedOut
from chatglue.schemas.upload import StoredObjectResponse
from chatglue.services.bucket_service import GCS, get_blob_store
from chatglue.services.gemini_service import GeminiFileJobs, RemoteJob, get_video_jobs
from chatglue.utils.polling import PollCancelled, PollPolicy, PollResult, PollStatus, poll_until_terminal

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPES = {"video/mp4"}


class MediaPipeline:
    """
    Finalises a completed upload: stores it in the bucket and, for video,
    submits it to Gemini and waits for processing to finish.
    """

    def __init__(
        self,
        blob_store: GCS,
        video_jobs: GeminiFileJobs,
        policy: PollPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.blob_store = blob_store
        self.video_jobs = video_jobs
        self.policy = policy
        self.sleep = sleep

    async def store(
        self,
        upload_id: str,
        file_name: str,
        content_type: str,
        data: Optional[bytes] = None,
        source_path: Optional[str] = None,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
        on_submitting: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> StoredObjectResponse:
        gcs_key = self.blob_store.object_key(upload_id, file_name)
        blob_data = await self.blob_store.put(gcs_key, content_type, data=data, source_path=source_path)
        logger.info(f"blob upload successful: {blob_data['url']}")

        if content_type not in VIDEO_CONTENT_TYPES:
            return StoredObjectResponse(**blob_data)

        if on_submitting is not None:
            await on_submitting()
        try:
            if is_cancelled is not None and await is_cancelled():
                raise ClientDisconnected()
            source = source_path if source_path is not None else data
            job = await self.process_video(source, content_type, file_name, is_cancelled)
        except (ClientDisconnected, RemoteJobFailed, RemoteJobTimedOut):
            await self._discard_blob(gcs_key)
            raise
        return StoredObjectResponse(**blob_data, geminiUri=job.uri)

    async def process_video(
        self,
        source,
        content_type: str,
        display_name: str,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> RemoteJob:
        job = await self.video_jobs.submit(source, content_type, display_name)

        async def check() -> PollResult[RemoteJob]:
            return (await self.video_jobs.get(job.name)).as_poll_result()

        try:
            result = await poll_until_terminal(check, self.policy, is_cancelled=is_cancelled, sleep=self.sleep)
        except PollCancelled:
            logger.warning(f"client disconnected while {job.name} was processing, abandoning it")
            await self._discard_job(job.name)
            raise ClientDisconnected()

        if result.status == PollStatus.READY:
            logger.info(f"gemini processing complete: {result.value.uri}")
            return result.value
        if result.status == PollStatus.FAILED:
            logger.error(f"gemini processing failed for {job.name}: {result.reason}")
            raise RemoteJobFailed()
        logger.error(f"gemini processing of {job.name} timed out after {result.attempts} attempts")
        await self._discard_job(job.name)
        raise RemoteJobTimedOut()

    async def _discard_job(self, name: str) -> None:
        try:
            await self.video_jobs.delete(name)
        except Exception as e:
            logger.error(f"Failed to delete abandoned gemini file {name}: {e}")

    async def _discard_blob(self, gcs_key: str) -> None:
        try:
            await self.blob_store.delete(gcs_key)
        except Exception as e:
            logger.error(f"Failed to delete abandoned blob {gcs_key}: {e}")


def get_media_pipeline(
    settings: Settings = Depends(get_settings),
    blob_store: GCS = Depends(get_blob_store),
    video_jobs: GeminiFileJobs = Depends(get_video_jobs),
) -> MediaPipeline:
    policy = PollPolicy(
        interval_seconds=settings.JOB_POLL_INTERVAL_SECONDS,
        max_attempts=settings.job_poll_attempts,
    )
    return MediaPipeline(blob_store, video_jobs, policy)
