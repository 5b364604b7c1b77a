import asyncio
import logging
import os
from typing import Any, Dict, Optional

from google.auth import default
from google.auth.credentials import Credentials
from google.cloud import storage
from google.oauth2 import service_account

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import UpstreamBlobFailure

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def load_credentials(settings: Settings) -> Credentials:
    """Service-account file when running locally, application default credentials elsewhere."""
    if settings.ENV != "local":
        logger.info("Using application default credentials for GCS")
        credentials, _ = default(scopes=[CLOUD_PLATFORM_SCOPE])
        return credentials

    path = settings.GCS_CREDENTIALS_JSON_PATH
    if not path or not os.path.exists(path):
        raise ValueError(f"GCS_CREDENTIALS_JSON_PATH does not point to a file: {path}")
    logger.info(f"Using service account credentials from {path}")
    return service_account.Credentials.from_service_account_file(path, scopes=[CLOUD_PLATFORM_SCOPE])


class GCS:
    """
    The Google Cloud Storage bucket holding completed uploads. Objects are
    written once under `<prefix>/<upload id>/<file name>` and served publicly.
    """

    def __init__(self, bucket: storage.Bucket, path_prefix: str = "uploads"):
        self.bucket = bucket
        self.bucket_name = bucket.name
        self.path_prefix = path_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "GCS":
        if not settings.GCS_BUCKET_NAME:
            raise ValueError("GCS_BUCKET_NAME is missing.")
        client = storage.Client(credentials=load_credentials(settings), project=settings.GC_PROJECT_ID)
        logger.info(f"GCS client initialized for bucket: {settings.GCS_BUCKET_NAME}")
        return cls(client.bucket(settings.GCS_BUCKET_NAME), path_prefix=settings.GCS_PATH_PREFIX)

    def object_key(self, upload_id: str, filename: str) -> str:
        return f"{self.path_prefix}/{upload_id}/{filename}"

    def public_url(self, gcs_key: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{gcs_key}"

    async def put(
        self,
        gcs_key: str,
        content_type: str,
        data: Optional[bytes] = None,
        source_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Store one object, either from memory or from a file on disk, and
        return its public description.
        """
        if (data is None) == (source_path is None):
            raise ValueError("Exactly one of data or source_path is required")

        blob = self.bucket.blob(gcs_key)
        try:
            logger.info(f"Uploading file to GCS: {gcs_key}")
            if source_path is not None:
                await asyncio.to_thread(blob.upload_from_filename, source_path, content_type=content_type)
            else:
                await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except Exception as e:
            logger.error(f"Error uploading file to GCS: {gcs_key}, Error: {e}")
            raise UpstreamBlobFailure() from e

        url = self.public_url(gcs_key)
        filename = gcs_key.rsplit("/", 1)[-1]
        return {
            "url": url,
            "downloadUrl": f"{url}?download=1",
            "pathname": gcs_key,
            "contentType": content_type,
            "contentDisposition": f'attachment; filename="{filename}"',
        }

    async def delete(self, gcs_key: str):
        try:
            logger.info(f"Deleting file: {gcs_key}")
            await asyncio.to_thread(self.bucket.blob(gcs_key).delete)
        except Exception as e:
            logger.error(f"Error deleting file: {gcs_key}, Error: {e}")
            raise UpstreamBlobFailure("Failed to delete file from GCS.") from e


_blob_store: Optional[GCS] = None


def get_blob_store() -> GCS:
    global _blob_store
    if _blob_store is None:
        _blob_store = GCS.from_settings(get_settings())
    return _blob_store
