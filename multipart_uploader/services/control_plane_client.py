# services/control_plane_client.py
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import UploaderConfig
from ..errors import AbortError, CompleteError, PresignError, StartError

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> Optional[str]:
    """Pull a server-reported message out of an error response, if any"""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for field in ("message", "error", "detail"):
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None


class ControlPlaneClient:
    """Talks to the upload coordination service (start/presign/complete/abort)"""

    def __init__(self, config: UploaderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.request_timeout,
        )

    async def __aenter__(self) -> "ControlPlaneClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def start_upload(self, key: str) -> str:
        """Open a multipart upload for ``key`` and return its upload id"""
        try:
            response = await self.http_client.post("/upload/start", params={"key": key})
            response.raise_for_status()
            upload_id = response.json().get("uploadId")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Start upload error for {key}: {e}")
            raise StartError("Failed to start multipart upload") from e

        if not upload_id:
            logger.error(f"Start upload for {key} returned no upload id")
            raise StartError("Failed to start multipart upload: no upload ID received")
        logger.info(f"Started multipart upload {upload_id} for {key}")
        return upload_id

    async def presign_part(self, upload_id: str, part_number: int, key: str) -> str:
        try:
            response = await self.http_client.post(
                "/upload/presign",
                params={"key": key, "uploadId": upload_id, "partNumber": part_number},
            )
            response.raise_for_status()
            url = response.json().get("presignUrl")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Presign error for part {part_number} of {upload_id}: {e}")
            raise PresignError(f"Failed to get presigned URL for part {part_number}", part_number) from e

        if not url:
            logger.error(f"Presign for part {part_number} of {upload_id} returned no URL")
            raise PresignError(f"Failed to get presigned URL for part {part_number}", part_number)
        return url

    async def complete_upload(self, upload_id: str, key: str, parts: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Ask the service to assemble ``parts``, which are sent exactly as given"""
        payload = {"key": key, "uploadId": upload_id, "completedParts": parts}
        logger.debug(f"Complete upload payload: {payload}")

        try:
            response = await self.http_client.post("/upload/complete", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Complete upload error for {upload_id}: {e}")
            raise CompleteError(f"Failed to complete multipart upload: {str(e) or type(e).__name__}") from e

        if response.is_error:
            message = _error_message(response) or f"service returned status {response.status_code}"
            logger.error(f"Complete upload for {upload_id} rejected: {message}")
            raise CompleteError(f"Failed to complete multipart upload: {message}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        logger.info(f"Completed multipart upload {upload_id} for {key}")
        return body if isinstance(body, dict) else {"response": body}

    async def abort_upload(self, upload_id: str, key: str) -> None:
        """Best-effort abort: failures are logged and swallowed"""
        try:
            response = await self.http_client.post(
                "/upload/abort", json={"key": key, "uploadId": upload_id}
            )
            response.raise_for_status()
            logger.info(f"Aborted multipart upload {upload_id} for {key}")
        except Exception as e:
            error = AbortError(f"Failed to abort multipart upload {upload_id}: {e}")
            logger.warning(error.message)
