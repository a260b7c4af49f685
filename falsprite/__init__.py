"""
FalSprite: animated sprite loops from generative image models

Submits sprite sheet prompts to fal.ai queue endpoints, extracts the result
image from the response payload, and transcodes background-removed sheets
into looping GIFs.
"""

from .errors import (
    FalspriteError,
    ValidationError,
    RemoteError,
    StorageError,
    GenerationError,
    TranscodingError,
)
from .fal_client import (
    FalClient,
    JobRequest,
    JobOutcome,
    JobSuccess,
    JobFailure,
    JobStage,
    validate_https_url,
    validate_endpoint_id,
    validate_request_id,
)
from .extract import (
    extract_text,
    extract_image_url,
    pick_error_message,
)
from .transcode import (
    Frame,
    decompose_grid,
    clean_frame_alpha,
    composite_with_sentinel,
    encode_loop,
    transcode_sprite_sheet,
    SENTINEL_COLOR,
)
from .generate import generate_sprite, GenerationResult

__all__ = [
    "FalspriteError",
    "ValidationError",
    "RemoteError",
    "StorageError",
    "GenerationError",
    "TranscodingError",
    "FalClient",
    "JobRequest",
    "JobOutcome",
    "JobSuccess",
    "JobFailure",
    "JobStage",
    "validate_https_url",
    "validate_endpoint_id",
    "validate_request_id",
    "extract_text",
    "extract_image_url",
    "pick_error_message",
    "Frame",
    "decompose_grid",
    "clean_frame_alpha",
    "composite_with_sentinel",
    "encode_loop",
    "transcode_sprite_sheet",
    "SENTINEL_COLOR",
    "generate_sprite",
    "GenerationResult",
]
