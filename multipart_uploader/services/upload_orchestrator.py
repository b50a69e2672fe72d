# services/upload_orchestrator.py
import asyncio
import logging
import mimetypes
import os
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import UploaderConfig
from ..errors import (
    CompleteError,
    SessionInProgressError,
    UploadCancelledError,
    UploadError,
    UploadValidationError,
)
from ..models.upload_models import (
    CANCELLABLE_STATES,
    CompletedPart,
    FileSelection,
    PartResult,
    ProgressState,
    SessionState,
    UploadSession,
    UploadSnapshot,
)
from .chunk_planner import plan, read_part
from .control_plane_client import ControlPlaneClient
from .part_uploader import PartUploader, TransferHandle
from .progress import ProgressTracker

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[UploadSnapshot], None]


def normalize_etag(etag: str) -> str:
    """Quote an ETag the way S3 reports it: ``abc`` -> ``"abc"``"""
    if etag.startswith('"'):
        return etag
    return f'"{etag}"'


def build_completed_parts(results: Iterable[PartResult], total_parts: int) -> List[Dict[str, Any]]:
    """Completion payload: one quoted ETag per planned part, ascending.

    Raises ``CompleteError`` naming every planned part without an ETag.
    """
    by_number = {result.part_number: result for result in results}
    missing = [
        number for number in range(1, total_parts + 1)
        if number not in by_number or not by_number[number].etag
    ]
    if missing:
        raise CompleteError(f"Missing ETag for parts: {', '.join(map(str, missing))}", missing)

    return [
        CompletedPart(ETag=normalize_etag(by_number[number].etag), PartNumber=number).model_dump()
        for number in range(1, total_parts + 1)
    ]


class UploadOrchestrator:
    """Runs one multipart upload session at a time.

    The orchestrator is the only writer of the session record. Presentation
    code selects a file, calls ``upload``/``cancel``/``reset`` and listens
    for ``UploadSnapshot`` objects through ``subscribe``.
    """

    def __init__(
        self,
        config: UploaderConfig,
        control_plane: Optional[ControlPlaneClient] = None,
        part_uploader: Optional[PartUploader] = None,
    ):
        self.config = config
        self.control_plane = control_plane or ControlPlaneClient(config)
        self.part_uploader = part_uploader or PartUploader(config)
        self.file: Optional[FileSelection] = None
        self.session: Optional[UploadSession] = None
        self._listeners: List[SnapshotListener] = []
        self._publishing = False
        self._republish = False
        self._cancel_requested = False
        self._transfer: Optional[TransferHandle] = None
        self._tracker: Optional[ProgressTracker] = None

    async def __aenter__(self) -> "UploadOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.control_plane.aclose()
        await self.part_uploader.aclose()

    # Read side

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session else SessionState.IDLE

    def snapshot(self) -> UploadSnapshot:
        session = self.session
        if session is None:
            return UploadSnapshot(file=self.file)
        return UploadSnapshot(
            state=session.state,
            file=self.file,
            key=session.key,
            upload_id=session.upload_id,
            total_parts=session.total_parts,
            completed_parts=len(session.completed_parts),
            progress=session.progress.model_copy(),
            error_message=session.error_message,
            result=dict(session.result) if session.result is not None else None,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for snapshots; returns an unsubscribe callable"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        # A listener may change state (e.g. call cancel); the newer snapshot
        # goes out in a second round so every listener sees them in order.
        if self._publishing:
            self._republish = True
            return

        self._publishing = True
        try:
            while True:
                self._republish = False
                snapshot = self.snapshot()
                for listener in list(self._listeners):
                    try:
                        listener(snapshot)
                    except Exception:
                        logger.exception("Snapshot listener failed")
                if not self._republish:
                    break
        finally:
            self._publishing = False

    def _set_state(self, state: SessionState) -> None:
        self.session.state = state
        self._publish()

    # Intents

    def select_file(self, path: str, content_type: Optional[str] = None) -> FileSelection:
        if self.state.is_active:
            raise SessionInProgressError("Cannot change the file while an upload is in progress")
        try:
            size = os.path.getsize(path)
        except OSError as e:
            raise UploadValidationError(f"Cannot read file {path}: {e}") from e

        self.file = FileSelection(
            name=os.path.basename(path),
            size=size,
            content_type=content_type or mimetypes.guess_type(path)[0] or "application/octet-stream",
            path=path,
        )
        self._publish()
        return self.file

    def reset(self) -> None:
        """Back to idle, keeping the selected file"""
        if self.state.is_active:
            raise SessionInProgressError("Cannot reset while an upload is in progress")
        self.session = None
        self._cancel_requested = False
        self._transfer = None
        self._tracker = None
        self._publish()

    def cancel(self) -> bool:
        """Request cancellation of the running session.

        Returns False when there is nothing cancellable, e.g. when idle or
        once completion has been requested.
        """
        if self.session is None or self.session.state not in CANCELLABLE_STATES:
            logger.info(f"Ignoring cancel request in state {self.state.value}")
            return False

        logger.warning(f"Cancelling upload of {self.session.key} (upload id {self.session.upload_id})")
        self._cancel_requested = True
        self._set_state(SessionState.CANCELLING)
        if self._transfer is not None:
            self._transfer.cancel()
        return True

    async def upload(self) -> UploadSnapshot:
        """Upload the selected file and return the terminal snapshot.

        Returns for done and cancelled sessions. A failed session is aborted
        on the control plane and the original error is re-raised.
        """
        if self.state.is_active:
            raise SessionInProgressError("An upload is already in progress")
        file = self._validate_selection()

        self.session = UploadSession(key=file.name, state=SessionState.STARTING)
        self._cancel_requested = False
        self._transfer = None
        self._tracker = None
        self._publish()

        try:
            await self._run(file)
        except UploadCancelledError:
            await self._finish_cancelled()
        except asyncio.CancelledError:
            await self._finish_cancelled()
            raise
        except Exception as e:
            if self._cancel_requested:
                logger.info(f"Error after cancellation of {file.name} ignored: {e}")
                await self._finish_cancelled()
            else:
                await self._finish_failed(e)
                raise
        return self.snapshot()

    # Session flow

    def _validate_selection(self) -> FileSelection:
        file = self.file
        if file is None:
            raise UploadValidationError("No file selected")
        if file.size == 0:
            raise UploadValidationError(f"File {file.name} is empty")
        if file.size > self.config.max_file_size:
            raise UploadValidationError(
                f"File {file.name} is {file.size} bytes, above the limit of {self.config.max_file_size}"
            )
        return file

    def _raise_if_cancelled(self) -> None:
        if self._cancel_requested:
            raise UploadCancelledError()

    def _on_progress(self, progress: ProgressState) -> None:
        self.session.progress = progress
        self._publish()

    async def _run(self, file: FileSelection) -> None:
        session = self.session
        logger.info(f"Starting upload of {file.name} ({file.size} bytes)")

        upload_id = await self.control_plane.start_upload(session.key)
        session.upload_id = upload_id
        self._raise_if_cancelled()

        parts = plan(file.size, self.config.part_size)
        session.total_parts = len(parts)
        self._tracker = ProgressTracker(len(parts), on_update=self._on_progress)
        session.progress = self._tracker.state

        for part in parts:
            self._raise_if_cancelled()
            self._set_state(SessionState.UPLOADING_PART)
            self._raise_if_cancelled()

            url = await self.control_plane.presign_part(upload_id, part.part_number, session.key)
            self._raise_if_cancelled()

            data = read_part(file.path, part)
            handle = TransferHandle()
            self._transfer = handle
            result = await self.part_uploader.upload_part(
                url,
                part.part_number,
                data,
                on_progress=partial(self._tracker.feed, part.part_number),
                handle=handle,
            )
            self._transfer = None

            session.completed_parts.append(result)
            self._tracker.feed(part.part_number, 1.0)
            logger.info(f"Part {part.part_number}/{len(parts)} of {file.name} uploaded")

        self._raise_if_cancelled()
        self._set_state(SessionState.COMPLETING)
        completed_parts = build_completed_parts(session.completed_parts, session.total_parts)
        session.result = await self.control_plane.complete_upload(upload_id, session.key, completed_parts)

        self._tracker.finish()
        self._set_state(SessionState.DONE)
        logger.info(f"Upload of {file.name} completed")

    def _close_progress(self) -> None:
        self._transfer = None
        if self._tracker is not None:
            self._tracker.close()

    async def _abort(self) -> None:
        session = self.session
        if session.upload_id:
            await self.control_plane.abort_upload(session.upload_id, session.key)

    async def _finish_cancelled(self) -> None:
        session = self.session
        self._close_progress()
        if session.state != SessionState.CANCELLING:
            self._set_state(SessionState.CANCELLING)
        await self._abort()

        session.completed_parts = []
        session.progress = ProgressState(total_parts=session.total_parts)
        session.error_message = None
        self._set_state(SessionState.CANCELLED)
        logger.warning(f"Upload of {session.key} cancelled")

    async def _finish_failed(self, error: Exception) -> None:
        session = self.session
        if isinstance(error, UploadError):
            message = error.message
        else:
            message = str(error) or "Upload failed"
        logger.error(f"Upload of {session.key} failed: {message}")

        self._close_progress()
        self._set_state(SessionState.ABORTING)
        await self._abort()

        session.error_message = message
        self._set_state(SessionState.FAILED)
