"""Error types raised by the spec index.

Only I/O failures are fatal. Malformed document content never raises; it is
logged and the affected element is skipped.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union


class SpecKitErrorCode(str, Enum):
    PARSE_ERROR = "PARSE_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_FORMAT = "INVALID_FORMAT"
    TEST_LINK_FAILED = "TEST_LINK_FAILED"
    IO_FAILURE = "IO_FAILURE"


class SpecKitError(Exception):
    """Base error carrying a code and the file (and line) it concerns."""

    def __init__(
        self,
        code: SpecKitErrorCode,
        message: str,
        file_path: Optional[Union[str, Path]] = None,
        line: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.file_path = Path(file_path) if file_path is not None else None
        self.line = line

    def __str__(self) -> str:
        location = ""
        if self.file_path is not None:
            location = f" ({self.file_path}"
            if self.line is not None:
                location += f":{self.line}"
            location += ")"
        return f"[{self.code.value}] {self.message}{location}"

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "file_path": str(self.file_path) if self.file_path else None,
            "line": self.line,
        }


class IoFailure(SpecKitError, OSError):
    """A document or record could not be read or written."""

    def __init__(
        self,
        message: str,
        file_path: Optional[Union[str, Path]] = None,
        line: Optional[int] = None,
        code: SpecKitErrorCode = SpecKitErrorCode.IO_FAILURE,
    ):
        SpecKitError.__init__(self, code, message, file_path, line)


class ParseError(IoFailure):
    """A specification document could not be read for parsing."""

    def __init__(self, message: str, file_path: Optional[Union[str, Path]] = None, line: Optional[int] = None):
        super().__init__(message, file_path, line, code=SpecKitErrorCode.PARSE_ERROR)


class SpecFileNotFoundError(IoFailure, FileNotFoundError):
    """A document that must already exist is missing."""

    def __init__(self, message: str, file_path: Optional[Union[str, Path]] = None):
        super().__init__(message, file_path, code=SpecKitErrorCode.FILE_NOT_FOUND)
