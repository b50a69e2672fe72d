# models/upload_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from enum import Enum


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    UPLOADING_PART = "uploading_part"
    COMPLETING = "completing"
    CANCELLING = "cancelling"
    ABORTING = "aborting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


ACTIVE_STATES = frozenset({
    SessionState.STARTING,
    SessionState.UPLOADING_PART,
    SessionState.COMPLETING,
    SessionState.CANCELLING,
    SessionState.ABORTING,
})
TERMINAL_STATES = frozenset({SessionState.DONE, SessionState.FAILED, SessionState.CANCELLED})
CANCELLABLE_STATES = frozenset({SessionState.STARTING, SessionState.UPLOADING_PART})


class FileSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    size: int = Field(ge=0)
    content_type: str = "application/octet-stream"
    path: str


class PartDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    part_number: int = Field(ge=1)
    byte_offset: int = Field(ge=0)
    byte_length: int = Field(gt=0)

    @property
    def end(self) -> int:
        return self.byte_offset + self.byte_length


class PartResult(BaseModel):
    part_number: int = Field(ge=1)
    etag: str


class ProgressState(BaseModel):
    current_part_number: int = 0
    current_part_fraction: float = Field(default=0.0, ge=0.0, le=1.0)
    total_parts: int = 0
    overall_percent: int = Field(default=0, ge=0, le=100)


class UploadSession(BaseModel):
    """Mutable record of one upload attempt, owned by the orchestrator"""
    key: str
    upload_id: Optional[str] = None
    total_parts: int = 0
    completed_parts: List[PartResult] = Field(default_factory=list)
    state: SessionState = SessionState.IDLE
    progress: ProgressState = Field(default_factory=ProgressState)
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class UploadSnapshot(BaseModel):
    """Read-only view published to subscribers"""
    model_config = ConfigDict(frozen=True)

    state: SessionState = SessionState.IDLE
    file: Optional[FileSelection] = None
    key: Optional[str] = None
    upload_id: Optional[str] = None
    total_parts: int = 0
    completed_parts: int = 0
    progress: ProgressState = Field(default_factory=ProgressState)
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


# Control-plane wire models

class StartUploadResponse(BaseModel):
    uploadId: str
    key: str


class PresignResponse(BaseModel):
    presignUrl: str


class CompletedPart(BaseModel):
    ETag: str
    PartNumber: int = Field(ge=1)


class CompleteUploadRequest(BaseModel):
    key: str
    uploadId: str
    completedParts: List[CompletedPart]


class AbortUploadRequest(BaseModel):
    key: str
    uploadId: str
