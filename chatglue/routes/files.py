import logging
import os
import re
from typing import Union
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.datastructures import UploadFile

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import EmptyBody, MissingFile, UpstreamBlobFailure
from chatglue.schemas.upload import (
    ChunkProgressResponse,
    ErrorResponse,
    StoredObjectResponse,
    validate_upload,
)
from chatglue.services.media_service import MediaPipeline, get_media_pipeline
from chatglue.services.session_service import UserSession, require_session
from chatglue.services.upload_service import (
    ChunkedUploadStore,
    UploadState,
    get_upload_store,
)
from chatglue.utils.content_range import parse_content_range

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

CHUNKED_CONTENT_TYPE = "video/mp4"


def safe_file_name(name: str) -> str:
    name = os.path.basename(unquote(name or "").replace("\\", "/")).strip()
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).lstrip(".")
    return name or "upload"


def is_chunked_request(request: Request) -> bool:
    headers = request.headers
    content_type = headers.get("content-type", "").split(";")[0].strip().lower()
    return (
        content_type == CHUNKED_CONTENT_TYPE
        and "content-range" in headers
        and "x-file-name" in headers
    )


@router.post(
    "/upload",
    response_model=Union[ChunkProgressResponse, StoredObjectResponse],
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def upload_file(
    request: Request,
    session: UserSession = Depends(require_session),
    settings: Settings = Depends(get_settings),
    uploads: ChunkedUploadStore = Depends(get_upload_store),
    pipeline: MediaPipeline = Depends(get_media_pipeline),
):
    """
    Accept an image or video upload.

    A multipart body with a `file` field is stored in one step. A raw
    `video/mp4` body with `Content-Range` and `X-File-Name` headers is
    one chunk of a larger upload; the chunk that completes the object
    triggers storage and video processing.
    """
    logger.info("starting file upload request")
    if is_chunked_request(request):
        return await receive_chunk(request, session, settings, uploads, pipeline)
    return await receive_file(request, settings, uploads, pipeline)


async def receive_file(
    request: Request,
    settings: Settings,
    uploads: ChunkedUploadStore,
    pipeline: MediaPipeline,
) -> StoredObjectResponse:
    if request.headers.get("content-length", "0") == "0" and "transfer-encoding" not in request.headers:
        logger.info("empty request body detected")
        raise EmptyBody()

    try:
        logger.info("parsing form data")
        form = await request.form()
    except Exception as e:
        logger.error(f"request processing error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process request")

    file = form.get("file")
    if not isinstance(file, UploadFile):
        logger.info("no file found in form data")
        raise MissingFile()

    filename = safe_file_name(file.filename)
    content_type = file.content_type or ""
    logger.info(f"validating file: {filename}")
    data = None
    size = file.size
    if size is None:
        data = await file.read()
        size = len(data)
    validate_upload(size, content_type, settings.MAX_UPLOAD_BYTES, settings.ALLOWED_CONTENT_TYPES)

    logger.info(f"processing file: {filename}, type: {content_type}")
    if data is None:
        data = await file.read()

    try:
        stored = await pipeline.store(
            upload_id=uploads.new_upload_id(),
            file_name=filename,
            content_type=content_type,
            data=data,
            is_cancelled=request.is_disconnected,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"upload error: {e}", exc_info=True)
        raise UpstreamBlobFailure()

    logger.info(f"upload complete: {stored.url}")
    return stored


async def receive_chunk(
    request: Request,
    session: UserSession,
    settings: Settings,
    uploads: ChunkedUploadStore,
    pipeline: MediaPipeline,
) -> Union[ChunkProgressResponse, StoredObjectResponse]:
    headers = request.headers
    filename = safe_file_name(headers["x-file-name"])
    content_range = parse_content_range(headers["content-range"])
    # Declared total is checked before any byte is written
    validate_upload(
        content_range.total,
        CHUNKED_CONTENT_TYPE,
        settings.MAX_UPLOAD_BYTES,
        settings.ALLOWED_CONTENT_TYPES,
    )

    data = await request.body()
    receipt = await uploads.receive_chunk(
        owner=session.user_id,
        upload_id=headers.get("x-upload-id"),
        file_name=filename,
        content_type=CHUNKED_CONTENT_TYPE,
        content_range=content_range,
        data=data,
    )
    if not receipt.complete:
        logger.info(f"chunk received for {receipt.upload_id}: {receipt.progress}%")
        return ChunkProgressResponse(progress=receipt.progress, uploadId=receipt.upload_id)

    upload_session = receipt.session
    try:
        stored = await pipeline.store(
            upload_id=upload_session.upload_id,
            file_name=upload_session.file_name,
            content_type=upload_session.content_type,
            source_path=str(uploads.part_path(upload_session.owner, upload_session.upload_id)),
            is_cancelled=request.is_disconnected,
            on_submitting=lambda: uploads.mark(upload_session, UploadState.SUBMITTING),
        )
        await uploads.mark(upload_session, UploadState.DONE)
    except HTTPException:
        await uploads.mark(upload_session, UploadState.FAILED)
        raise
    except Exception as e:
        logger.error(f"chunked upload finalisation error: {e}", exc_info=True)
        await uploads.mark(upload_session, UploadState.FAILED)
        raise UpstreamBlobFailure()
    finally:
        await uploads.discard(upload_session)

    logger.info(f"chunked upload complete: {stored.url}")
    return stored
