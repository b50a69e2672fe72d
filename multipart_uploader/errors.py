# errors.py
from typing import Iterable, Optional


class UploadError(Exception):
    """Base class for failures that terminate an upload session"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StartError(UploadError):
    """The control plane did not hand out an upload id"""


class PresignError(UploadError):
    def __init__(self, message: str, part_number: int):
        super().__init__(message)
        self.part_number = part_number


class PartUploadError(UploadError):
    """A part transfer failed: bad status, transport error or missing ETag"""

    def __init__(
        self,
        message: str,
        part_number: int,
        status: Optional[int] = None,
        missing_token: Optional[int] = None,
    ):
        super().__init__(message)
        self.part_number = part_number
        self.status = status
        self.missing_token = missing_token


class CompleteError(UploadError):
    def __init__(self, message: str, missing_parts: Iterable[int] = ()):
        super().__init__(message)
        self.missing_parts = list(missing_parts)


class AbortError(UploadError):
    """Only ever logged, never raised to callers of the orchestrator"""


class UploadValidationError(UploadError):
    """The selected file cannot be uploaded (missing, empty or too large)"""


class SessionInProgressError(Exception):
    """An upload was requested while another session is still active"""


class UploadCancelledError(Exception):
    """User-initiated cancellation; an outcome, not a failure"""

    def __init__(self, message: str = "Upload cancelled", part_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.part_number = part_number
