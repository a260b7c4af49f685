"""
Pydantic models for the FalSprite API
"""

from pydantic import BaseModel, Field
from typing import Optional


class GenerateRequest(BaseModel):
    prompt: Optional[str] = Field(default=None, max_length=4000)
    gridSize: Optional[int] = None
    imageUrl: Optional[str] = None
    apiKey: Optional[str] = None


class GenerateMetadata(BaseModel):
    grid: str
    gridSize: int
    resolution: str = "2K"


class GenerateResponse(BaseModel):
    promptOriginal: str
    promptRewritten: str
    spriteUrl: str
    transparentSpriteUrl: str = ""
    warnings: list[str] = Field(default_factory=list)
    metadata: GenerateMetadata


class UploadRequest(BaseModel):
    data: str = Field(..., min_length=1, description="Base64-encoded file contents")
    contentType: str = Field(..., min_length=1)
    filename: str = "upload.png"
    apiKey: Optional[str] = None


class UploadResponse(BaseModel):
    url: str


class ErrorResponse(BaseModel):
    error: str
    warnings: list[str] = Field(default_factory=list)
