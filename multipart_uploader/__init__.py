"""
Multipart upload client.

Splits a file into fixed-size parts, uploads each part to its own pre-signed
URL one at a time and asks the control plane to assemble them. The
``UploadOrchestrator`` drives a session; ``main`` holds the control-plane
service that fronts S3.
"""

from .config import UploaderConfig, ServiceSettings
from .errors import (
    AbortError,
    CompleteError,
    PartUploadError,
    PresignError,
    SessionInProgressError,
    StartError,
    UploadCancelledError,
    UploadError,
    UploadValidationError,
)
from .models.upload_models import (
    FileSelection,
    PartDescriptor,
    PartResult,
    ProgressState,
    SessionState,
    UploadSession,
    UploadSnapshot,
)
from .services.chunk_planner import plan
from .services.control_plane_client import ControlPlaneClient
from .services.part_uploader import PartUploader, TransferHandle
from .services.progress import ProgressTracker, aggregate
from .services.upload_orchestrator import UploadOrchestrator

__all__ = [
    # Configuration
    'UploaderConfig',
    'ServiceSettings',

    # Errors
    'UploadError',
    'StartError',
    'PresignError',
    'PartUploadError',
    'CompleteError',
    'AbortError',
    'UploadValidationError',
    'SessionInProgressError',
    'UploadCancelledError',

    # Models
    'FileSelection',
    'PartDescriptor',
    'PartResult',
    'ProgressState',
    'SessionState',
    'UploadSession',
    'UploadSnapshot',

    # Services
    'plan',
    'aggregate',
    'ProgressTracker',
    'ControlPlaneClient',
    'PartUploader',
    'TransferHandle',
    'UploadOrchestrator',
]

__version__ = "1.0.0"
