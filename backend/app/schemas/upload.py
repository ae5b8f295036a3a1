"""Upload request/response schemas."""
from typing import Optional

from pydantic import BaseModel


class UploadResponse(BaseModel):
    success: bool = True
    url: str
    filename: str
    size: int
    message: str = "Image uploaded successfully"


class UploadErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: Optional[str] = None


class UploadTargetStatus(BaseModel):
    path: str
    exists: bool
    writable: bool


class HealthResponse(BaseModel):
    status: str
    upload: UploadTargetStatus
