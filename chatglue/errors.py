from typing import List, Optional
from fastapi import HTTPException


class Unauthenticated(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=401, detail=detail)


class ValidationFailed(HTTPException):
    """
    Raised when an upload violates one or more schema constraints.
    All violated constraints are kept in `reasons`; the detail joins them.
    """

    def __init__(self, reasons: List[str]):
        self.reasons = list(reasons)
        super().__init__(status_code=400, detail=", ".join(self.reasons))


class MissingFile(HTTPException):
    def __init__(self, detail: str = "No file uploaded"):
        super().__init__(status_code=400, detail=detail)


class EmptyBody(HTTPException):
    def __init__(self, detail: str = "Request body is empty"):
        super().__init__(status_code=400, detail=detail)


class SequenceError(HTTPException):
    """A chunk does not continue the session at its committed offset."""

    def __init__(self, detail: str, expected_offset: Optional[int] = None):
        self.expected_offset = expected_offset
        super().__init__(status_code=400, detail=detail)


class UpstreamBlobFailure(HTTPException):
    def __init__(self, detail: str = "Upload failed"):
        super().__init__(status_code=500, detail=detail)


class RemoteJobFailed(HTTPException):
    def __init__(self, detail: str = "Video processing failed"):
        super().__init__(status_code=500, detail=detail)


class RemoteJobTimedOut(HTTPException):
    def __init__(self, detail: str = "Video processing timed out"):
        super().__init__(status_code=500, detail=detail)


class ClientDisconnected(HTTPException):
    def __init__(self, detail: str = "Client disconnected"):
        super().__init__(status_code=499, detail=detail)


class NotSupported(Exception):
    """The requested generation mode is not available for this model."""


class UnknownModel(KeyError):
    pass
