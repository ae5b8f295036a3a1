"""Image upload routes."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.schemas.upload import UploadErrorResponse, UploadResponse
from app.services.upload_errors import UploadErrorKind
from app.services.upload_pipeline import IncomingRequest, UploadPipeline, upload_pipeline
from app.services.upload_policy import ValidationPolicy

router = APIRouter(tags=["uploads"])

STATUS_BY_KIND = {
    UploadErrorKind.NO_FILE_PROVIDED: 400,
    UploadErrorKind.TOO_MANY_FILES: 400,
    UploadErrorKind.MALFORMED_REQUEST: 400,
    UploadErrorKind.UPLOAD_ABORTED: 400,
    UploadErrorKind.FILE_TOO_LARGE: 413,
    UploadErrorKind.UNSUPPORTED_FILE_TYPE: 415,
    UploadErrorKind.STORAGE_UNAVAILABLE: 503,
    UploadErrorKind.PATH_REJECTED: 500,
    UploadErrorKind.INTERNAL_ERROR: 500,
}

MESSAGE_BY_KIND = {
    UploadErrorKind.NO_FILE_PROVIDED: "No file uploaded",
    UploadErrorKind.TOO_MANY_FILES: "Only one image can be uploaded at a time",
    UploadErrorKind.MALFORMED_REQUEST: "The upload request could not be read",
    UploadErrorKind.UPLOAD_ABORTED: "The upload was interrupted",
    UploadErrorKind.UNSUPPORTED_FILE_TYPE: "Only image files are allowed",
    UploadErrorKind.STORAGE_UNAVAILABLE: "The image could not be saved, please try again later",
    UploadErrorKind.PATH_REJECTED: "The image could not be saved",
    UploadErrorKind.INTERNAL_ERROR: "Unexpected error while uploading",
}

_policy = ValidationPolicy.from_settings(settings)


def get_upload_policy() -> ValidationPolicy:
    """FastAPI dependency returning the process-wide policy."""
    return _policy


def get_upload_pipeline() -> UploadPipeline:
    return upload_pipeline


def _format_limit(limit_bytes: int) -> str:
    if limit_bytes % (1024 * 1024) == 0:
        return f"{limit_bytes // (1024 * 1024)} MB"
    return f"{limit_bytes} bytes"


def build_public_url(request: Request, filename: str) -> str:
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}/uploads/{filename}"


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        400: {"model": UploadErrorResponse},
        413: {"model": UploadErrorResponse},
        415: {"model": UploadErrorResponse},
        500: {"model": UploadErrorResponse},
        503: {"model": UploadErrorResponse},
    },
)
async def upload_image(
    request: Request,
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    policy: ValidationPolicy = Depends(get_upload_policy),
):
    """Store a single image sent as multipart field `image`."""
    incoming = IncomingRequest(headers=request.headers, stream=request.stream())
    outcome = await pipeline.ingest(incoming, policy)

    if not outcome.ok:
        error = outcome.error
        if error.kind is UploadErrorKind.FILE_TOO_LARGE:
            # Include the configured limit for the client.
            message = f"File too large (max {_format_limit(policy.max_size_bytes)})"
        else:
            message = MESSAGE_BY_KIND.get(error.kind, error.detail)
        body = UploadErrorResponse(error=message, kind=error.kind.value)
        return JSONResponse(status_code=STATUS_BY_KIND[error.kind], content=body.model_dump())

    stored = outcome.stored
    return UploadResponse(
        url=build_public_url(request, stored.generated_name),
        filename=stored.generated_name,
        size=stored.size_bytes,
    )
