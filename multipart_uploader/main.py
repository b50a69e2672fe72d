import logging
from contextlib import asynccontextmanager
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ServiceSettings
from .models.upload_models import (
    AbortUploadRequest,
    CompleteUploadRequest,
    PresignResponse,
    StartUploadResponse,
)
from .services.upload_service import UploadService

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

S3_ERRORS = (BotoCoreError, ClientError)


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def create_app(
    settings: Optional[ServiceSettings] = None,
    upload_service: Optional[UploadService] = None,
) -> FastAPI:
    settings = settings or ServiceSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if app.state.upload_service is None:
            app.state.upload_service = UploadService(settings)
        logger.info(f"Control plane ready for bucket {app.state.upload_service.bucket_name}")

        yield

    app = FastAPI(title="Multipart Upload Control Plane", lifespan=lifespan)
    app.state.upload_service = upload_service

    # CORS Configuration; browsers need ETag exposed to read part results
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "x-amz-etag", "x-amz-request-id", "x-amz-id-2"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "invalid request body"})

    @app.post("/upload/start", response_model=StartUploadResponse)
    async def start_upload(
        key: str = Query(""),
        upload_service: UploadService = Depends(get_upload_service),
    ):
        """Start a multipart upload for ``key``"""
        if not key:
            raise HTTPException(status_code=400, detail="missing key")
        try:
            upload_id = upload_service.start_multipart(key)
        except S3_ERRORS as e:
            logger.error(f"Start upload error for {key}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return StartUploadResponse(uploadId=upload_id, key=key)

    @app.post("/upload/presign", response_model=PresignResponse)
    async def presign_part(
        key: str = Query(""),
        uploadId: str = Query(""),
        partNumber: str = Query(""),
        upload_service: UploadService = Depends(get_upload_service),
    ):
        """Generate presigned URL for uploading a specific part"""
        if not key or not uploadId or not partNumber:
            raise HTTPException(status_code=400, detail="missing params")
        try:
            part_number = int(partNumber)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid partNumber")
        if not 1 <= part_number <= 10000:
            raise HTTPException(status_code=400, detail="invalid partNumber")

        try:
            url = upload_service.presign_part(key, uploadId, part_number)
        except S3_ERRORS as e:
            logger.error(f"Presigned URL error for part {part_number}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return PresignResponse(presignUrl=url)

    @app.post("/upload/complete")
    async def complete_upload(
        body: CompleteUploadRequest,
        upload_service: UploadService = Depends(get_upload_service),
    ):
        """Complete the multipart upload"""
        if not body.key or not body.uploadId:
            raise HTTPException(status_code=400, detail="key or uploadId missing")
        try:
            result = upload_service.complete_upload(
                body.key,
                body.uploadId,
                [part.model_dump() for part in body.completedParts],
            )
        except S3_ERRORS as e:
            logger.error(f"Complete upload error for {body.uploadId}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "message": "upload completed",
            "location": result.get("location"),
            "etag": result.get("etag"),
        }

    @app.post("/upload/abort")
    async def abort_upload(
        body: AbortUploadRequest,
        upload_service: UploadService = Depends(get_upload_service),
    ):
        """Abort an ongoing upload"""
        if not body.key or not body.uploadId:
            raise HTTPException(status_code=400, detail="key or uploadId missing")
        try:
            upload_service.abort_upload(body.key, body.uploadId)
        except S3_ERRORS as e:
            logger.error(f"Abort upload error for {body.uploadId}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {"message": "upload aborted"}

    return app


app = create_app()
