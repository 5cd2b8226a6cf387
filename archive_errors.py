"""
Archive Pipeline Errors
=======================

Error taxonomy for the archive pipeline. Every error is local to the job
that raised it and is captured into that job's result; none of them is
retried.
"""

import time
import traceback
from pathlib import Path
from typing import Any, Dict, Optional, Union


class ArchiveError(Exception):
    """Base class for all pipeline errors"""

    error_code = "ARCHIVE_ERROR"

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None,
                 cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None):
        """
        Initialize a pipeline error.

        Args:
            message: Error description
            path: The offending path, if any
            cause: Original exception that caused this error
            details: Additional error context
        """
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        self.cause = cause
        self.details = details or {}
        self.timestamp = time.time()
        self.traceback = traceback.format_exc() if cause else None

    def __str__(self) -> str:
        base_msg = f"[{self.error_code}] {self.message}"
        if self.path is not None:
            base_msg = f"{base_msg}: {self.path}"
        if self.cause:
            return f"{base_msg} (caused by {type(self.cause).__name__}: {self.cause})"
        return base_msg

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(message={self.message!r}, "
                f"path={self.path!r}, cause={self.cause!r})")

    def log_context(self) -> Dict[str, Any]:
        """Get error context for structured logging"""
        return {
            'error_type': type(self).__name__,
            'error_code': self.error_code,
            'message': self.message,
            'path': str(self.path) if self.path is not None else None,
            'timestamp': self.timestamp,
            'details': self.details,
            'cause': str(self.cause) if self.cause else None,
        }


class UnrecognizedFormat(ArchiveError):
    """The suffix chain of a filename cannot be resolved"""
    error_code = "UNRECOGNIZED_FORMAT"


class AmbiguousOutput(ArchiveError):
    """The destination intent cannot be inferred from inputs and output"""
    error_code = "AMBIGUOUS_OUTPUT"


class ConflictAborted(ArchiveError):
    """Abort was chosen for an existing destination"""
    error_code = "CONFLICT_ABORTED"


class ArchiveIOError(ArchiveError):
    """A filesystem read or write failed"""
    error_code = "IO_ERROR"


class CodecError(ArchiveError):
    """A pipeline stage rejected malformed or truncated data"""
    error_code = "CODEC_ERROR"

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None,
                 cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None,
                 stage: Optional[str] = None):
        super().__init__(message, path=path, cause=cause, details=details)
        self.stage = stage
        if stage:
            self.details.setdefault('stage', stage)


class OperationCancelled(ArchiveError):
    """The operation was interrupted before the job could finish"""
    error_code = "CANCELLED"
