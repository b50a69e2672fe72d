# services/upload_service.py
import boto3
import logging
from botocore.config import Config
from typing import Any, Dict, List

from ..config import ServiceSettings

logger = logging.getLogger(__name__)


class UploadService:
    """S3 side of the control plane: start, presign, complete and abort"""

    def __init__(self, settings: ServiceSettings, s3_client=None):
        self.settings = settings
        self.bucket_name = settings.bucket_name
        self.key_prefix = settings.key_prefix
        self.presign_expires = settings.presign_expires

        self.s3_client = s3_client or boto3.client(
            "s3",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key,
            aws_secret_access_key=settings.aws_secret_key,
            config=Config(signature_version="s3v4"),
        )

    def object_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def start_multipart(self, key: str) -> str:
        """Create a multipart upload on S3 and return its UploadId"""
        object_key = self.object_key(key)
        response = self.s3_client.create_multipart_upload(Bucket=self.bucket_name, Key=object_key)
        logger.info(f"Created multipart upload {response['UploadId']} for {object_key}")
        return response["UploadId"]

    def presign_part(self, key: str, upload_id: str, part_number: int) -> str:
        url = self.s3_client.generate_presigned_url(
            "upload_part",
            Params={
                "Bucket": self.bucket_name,
                "Key": self.object_key(key),
                "UploadId": upload_id,
                "PartNumber": part_number,
            },
            ExpiresIn=self.presign_expires,
            HttpMethod="PUT",
        )
        logger.debug(f"Presigned part {part_number} of {upload_id}")
        return url

    def complete_upload(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Complete the multipart upload"""
        # Sort parts by part number
        sorted_parts = sorted(parts, key=lambda x: x["PartNumber"])

        response = self.s3_client.complete_multipart_upload(
            Bucket=self.bucket_name,
            Key=self.object_key(key),
            UploadId=upload_id,
            MultipartUpload={"Parts": sorted_parts},
        )
        logger.info(f"Completed multipart upload {upload_id} ({len(sorted_parts)} parts)")

        return {
            "location": response.get("Location"),
            "etag": response.get("ETag"),
        }

    def abort_upload(self, key: str, upload_id: str) -> None:
        self.s3_client.abort_multipart_upload(
            Bucket=self.bucket_name,
            Key=self.object_key(key),
            UploadId=upload_id,
        )
        logger.info(f"Aborted multipart upload {upload_id}")
