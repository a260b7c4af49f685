"""
Exception types raised by the FalSprite core.

Remote failures inside the job orchestrator are returned as JobFailure
values, not raised. These exceptions cover local validation, hard pipeline
failures and transcoding.
"""

from typing import Any, Optional


class FalspriteError(Exception):
    """Base class for all pipeline errors"""


class ValidationError(FalspriteError, ValueError):
    """Malformed endpoint id, request id or URL; never sent over the network"""


class RemoteError(FalspriteError, RuntimeError):
    """The remote service rejected a call or could not be reached"""

    def __init__(self, message: str, status: int = 502, stage: Optional[str] = None,
                 data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.stage = stage
        self.data = data or {}


class StorageError(RemoteError):
    """Upload or download against remote storage failed"""


class GenerationError(RemoteError):
    """A generation request produced no usable output"""

    def __init__(self, message: str, status: int = 502, warnings: Optional[list[str]] = None,
                 stage: Optional[str] = None, data: Optional[dict[str, Any]] = None):
        super().__init__(message, status=status, stage=stage, data=data)
        self.warnings = list(warnings or [])


class TranscodingError(FalspriteError, RuntimeError):
    """The sprite sheet could not be turned into an animation"""
