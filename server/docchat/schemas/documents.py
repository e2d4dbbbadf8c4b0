from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DocumentUploadRequest(BaseModel):
    workspace_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    content: str = ""
    file_data: str | None = Field(default=None, description="Base64 encoded file bytes")
    mime_type: str | None = Field(default=None, max_length=100)


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    owner_id: str
    name: str
    content: str
    file_url: str | None = None
    mime_type: str | None = None
    file_size: int | None = None
    created_at: datetime


class DocumentListResponse(BaseModel):
    items: list[DocumentResponse]
    total: int
