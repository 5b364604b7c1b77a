from typing import List, Literal, Optional
from pydantic import BaseModel, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from chatglue.errors import ValidationFailed

CONTENT_TYPE_LABELS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "video/mp4": "MP4",
}


def _describe_types(content_types: List[str]) -> str:
    labels = [
        CONTENT_TYPE_LABELS.get(ct, ct.split("/")[-1].upper()) for ct in content_types
    ]
    if len(labels) <= 2:
        return " or ".join(labels)
    return ", ".join(labels[:-1]) + ", or " + labels[-1]


class FileUploadSchema(BaseModel):
    """
    Declarative constraints for an incoming file. Limits come from the
    validation context so they follow the configured settings:
    `{"max_bytes": int, "allowed_types": [str]}`.
    """

    size: int
    content_type: str

    @field_validator("size")
    @classmethod
    def check_size(cls, value: int, info: ValidationInfo) -> int:
        max_bytes = (info.context or {}).get("max_bytes")
        if value < 0:
            raise PydanticCustomError("file_size", "File size must not be negative")
        if max_bytes is not None and value > max_bytes:
            raise PydanticCustomError(
                "file_size",
                "File size should be less than {limit}MB",
                {"limit": max_bytes // (1024 * 1024)},
            )
        return value

    @field_validator("content_type")
    @classmethod
    def check_content_type(cls, value: str, info: ValidationInfo) -> str:
        allowed = (info.context or {}).get("allowed_types")
        if allowed is not None and value not in allowed:
            raise PydanticCustomError(
                "file_type",
                "File type should be {types}",
                {"types": _describe_types(list(allowed))},
            )
        return value


def validate_upload(
    size: int, content_type: str, max_bytes: int, allowed_types: List[str]
) -> FileUploadSchema:
    """Validate size and type, reporting every violated constraint at once."""
    try:
        return FileUploadSchema.model_validate(
            {"size": size, "content_type": content_type or ""},
            context={"max_bytes": max_bytes, "allowed_types": allowed_types},
        )
    except ValidationError as e:
        raise ValidationFailed([error["msg"] for error in e.errors()]) from e


class StoredObjectResponse(BaseModel):
    url: str
    downloadUrl: str
    pathname: str
    contentType: str
    contentDisposition: str
    geminiUri: Optional[str] = None


class ChunkProgressResponse(BaseModel):
    status: Literal["chunk-received"] = "chunk-received"
    progress: int
    uploadId: str


class ErrorResponse(BaseModel):
    error: str
