"""Error taxonomy for the video ingest path.

Every error raised by the upload pipeline belongs to one ErrorKind so the API
layer can map it to a response without inspecting concrete classes. The
underlying exception, when there is one, is kept on ``cause`` and also chained
with ``raise ... from``.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Coarse classification of ingest failures."""

    PRECONDITION = "precondition"
    RESOURCE = "resource"
    EXTERNAL_TOOL = "external_tool"
    TRANSFER = "transfer"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    METADATA = "metadata"
    TIMEOUT = "timeout"


class TubelyError(Exception):
    """Base exception for ingest errors."""

    kind: ErrorKind = ErrorKind.RESOURCE

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


# Preconditions

class UnsupportedMediaTypeError(TubelyError):
    """Raised when the declared media type is missing or not allowed."""

    kind = ErrorKind.PRECONDITION


# Resources

class SpoolError(TubelyError):
    """Raised when the upload cannot be staged on local disk."""

    kind = ErrorKind.RESOURCE


class KeyGenerationError(TubelyError):
    """Raised when the random source fails while deriving a storage key."""

    kind = ErrorKind.RESOURCE


# External tools

class ExternalToolError(TubelyError):
    """Base class for ffprobe/ffmpeg failures.

    The tool's stderr tail names server paths, so it is kept on ``stderr``
    and only appears in ``str()``, never in ``message``.
    """

    kind = ErrorKind.EXTERNAL_TOOL

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message, cause)
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()
        if self.stderr:
            return f"{text}: {self.stderr}"
        return text


class ProbeFailedError(ExternalToolError):
    """Raised when the stream probe could not be run or exited nonzero."""


class ProbeOutputInvalidError(ExternalToolError):
    """Raised when probe output does not match the expected schema."""


class NoStreamFoundError(ExternalToolError):
    """Raised when the probed file has no streams."""


class TranscodeFailedError(ExternalToolError):
    """Raised when the remux could not be run or exited nonzero."""


class TranscodeProducedEmptyOutputError(ExternalToolError):
    """Raised when the remux reported success but left no usable output."""


# Transfer

class ObjectStoreError(TubelyError):
    """Raised when writing to the object store fails."""

    kind = ErrorKind.TRANSFER


# Records

class VideoNotFoundError(TubelyError):
    """Raised when the target video record does not exist."""

    kind = ErrorKind.NOT_FOUND


class VideoOwnershipError(TubelyError):
    """Raised when the requesting user does not own the video record."""

    kind = ErrorKind.AUTHORIZATION


class MetadataCommitError(TubelyError):
    """Raised when the video record cannot be read or persisted."""

    kind = ErrorKind.METADATA


class PipelineTimeoutError(TubelyError):
    """Raised when the upload exceeds its deadline."""

    kind = ErrorKind.TIMEOUT
