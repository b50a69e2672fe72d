# services/part_uploader.py
import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from ..config import UploaderConfig
from ..errors import PartUploadError, UploadCancelledError
from ..models.upload_models import PartResult

logger = logging.getLogger(__name__)

ETAG_HEADERS = ("etag", "x-amz-etag")
STREAM_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[float], None]


def extract_etag(headers: httpx.Headers) -> Optional[str]:
    """ETag from the canonical header or the vendor alias, any casing"""
    for name in ETAG_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


class TransferHandle:
    """Cancellation handle for one part transfer.

    ``cancel`` may be called before the transfer task exists; the request is
    held and applied the moment ``bind`` attaches the task.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def bound(self) -> bool:
        return self._task is not None

    def bind(self, task: asyncio.Task) -> None:
        if self._task is not None:
            raise RuntimeError("transfer handle is already bound")
        self._task = task
        if self._cancel_requested:
            task.cancel()

    def cancel(self) -> bool:
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            return self._task.cancel()
        return False


class PartUploader:
    """PUTs single parts to their pre-signed URLs"""

    def __init__(
        self,
        config: UploaderConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        chunk_size: int = STREAM_CHUNK_SIZE,
    ):
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self.chunk_size = chunk_size

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def upload_part(
        self,
        url: str,
        part_number: int,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        handle: Optional[TransferHandle] = None,
    ) -> PartResult:
        """Upload one part and return its ETag.

        The transfer runs in its own task, bound to ``handle`` before the
        task gets a chance to start any I/O. Cancelling through the handle
        raises ``UploadCancelledError``; every other failure is a
        ``PartUploadError``.
        """
        handle = handle or TransferHandle()
        task = asyncio.create_task(self._transfer(url, part_number, data, on_progress))
        handle.bind(task)

        try:
            return await task
        except asyncio.CancelledError:
            if not handle.cancel_requested:
                raise
            logger.warning(f"Upload of part {part_number} cancelled")
            raise UploadCancelledError(f"Upload of part {part_number} cancelled", part_number) from None

    def _body(self, data: bytes, on_progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
        total = len(data)
        chunk_size = self.chunk_size

        async def stream():
            sent = 0
            for start in range(0, total, chunk_size):
                piece = data[start:start + chunk_size]
                yield piece
                sent += len(piece)
                if on_progress is not None:
                    on_progress(sent / total)

        return stream()

    async def _transfer(
        self,
        url: str,
        part_number: int,
        data: bytes,
        on_progress: Optional[ProgressCallback],
    ) -> PartResult:
        logger.info(f"Uploading part {part_number} ({len(data)} bytes)")
        try:
            response = await self.http_client.put(
                url,
                content=self._body(data, on_progress),
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(len(data)),
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Error uploading part {part_number}: {e}")
            raise PartUploadError(f"Upload failed for part {part_number}: {e}", part_number) from e

        if response.status_code != 200:
            logger.error(f"Part {part_number} upload returned status {response.status_code}")
            raise PartUploadError(
                f"Upload failed with status {response.status_code}",
                part_number,
                status=response.status_code,
            )

        etag = extract_etag(response.headers)
        if not etag:
            logger.error(f"No ETag in response for part {part_number}: {dict(response.headers)}")
            raise PartUploadError(
                f"No ETag in response for part {part_number}",
                part_number,
                status=response.status_code,
                missing_token=part_number,
            )

        logger.info(f"Successfully uploaded part {part_number}, ETag: {etag}")
        return PartResult(part_number=part_number, etag=etag)
