# config.py
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()

MIB = 1024 * 1024


class UploaderConfig(BaseModel):
    """Client-side settings handed to the orchestrator at construction"""

    api_base_url: str = "http://localhost:8080"
    part_size: int = Field(default=5 * MIB, gt=0)
    max_file_size: int = Field(default=5 * 1024 * MIB, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def check_sizes(self):
        if self.part_size > self.max_file_size:
            raise ValueError("part_size cannot exceed max_file_size")
        return self

    @classmethod
    def from_env(cls) -> "UploaderConfig":
        values = {
            "api_base_url": os.getenv("UPLOAD_API_BASE_URL"),
            "part_size": os.getenv("UPLOAD_PART_SIZE"),
            "max_file_size": os.getenv("UPLOAD_MAX_FILE_SIZE"),
            "request_timeout": os.getenv("UPLOAD_REQUEST_TIMEOUT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


class ServiceSettings(BaseModel):
    """Settings for the control-plane service in front of S3"""

    aws_access_key: Optional[str] = None
    aws_secret_key: Optional[str] = None
    aws_region: str = "us-east-1"
    bucket_name: Optional[str] = None
    key_prefix: str = ""
    presign_expires: int = Field(default=3600, gt=0)
    cors_origins: List[str] = ["*"]

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        origins = os.getenv("CORS_ORIGINS")
        values = {
            "aws_access_key": os.getenv("AWS_ACCESS_KEY"),
            "aws_secret_key": os.getenv("AWS_SECRET_KEY"),
            "aws_region": os.getenv("AWS_REGION"),
            "bucket_name": os.getenv("BUCKET_NAME"),
            "key_prefix": os.getenv("UPLOAD_KEY_PREFIX"),
            "presign_expires": os.getenv("PRESIGN_EXPIRES"),
            "cors_origins": [o.strip() for o in origins.split(",") if o.strip()] if origins else None,
        }
        return cls(**{k: v for k, v in values.items() if v is not None})
