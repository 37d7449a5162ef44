"""Unit tests for the error taxonomy."""

from pathlib import Path

from speckit_index.errors import (
    IoFailure,
    ParseError,
    SpecFileNotFoundError,
    SpecKitError,
    SpecKitErrorCode,
)


class TestSpecKitErrors:
    """Test cases for error codes, messages and class relations."""

    def test_str_includes_location(self):
        """Test the rendered message with and without a location."""
        assert str(SpecKitError(SpecKitErrorCode.INVALID_FORMAT, "bad")) == "[INVALID_FORMAT] bad"
        assert str(ParseError("unreadable", "specs/001/spec.md", 4)) == "[PARSE_ERROR] unreadable (specs/001/spec.md:4)"

    def test_io_errors_are_os_errors(self):
        """Test that I/O failures can be caught as OSError."""
        assert isinstance(IoFailure("x"), OSError)
        assert isinstance(ParseError("x"), IoFailure)
        assert isinstance(SpecFileNotFoundError("x"), FileNotFoundError)

    def test_codes(self):
        """Test the code carried by each error type."""
        assert IoFailure("x").code is SpecKitErrorCode.IO_FAILURE
        assert ParseError("x").code is SpecKitErrorCode.PARSE_ERROR
        assert SpecFileNotFoundError("x").code is SpecKitErrorCode.FILE_NOT_FOUND
        assert IoFailure("x", code=SpecKitErrorCode.TEST_LINK_FAILED).code is SpecKitErrorCode.TEST_LINK_FAILED

    def test_to_dict(self):
        """Test the dictionary form."""
        error = IoFailure("write failed", Path("specs/001/maturity.json"))

        assert error.to_dict() == {
            "code": "IO_FAILURE",
            "message": "write failed",
            "file_path": "specs/001/maturity.json",
            "line": None,
        }
