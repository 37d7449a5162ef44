"""Key-value header block stored at the top of a spec.md.

The block is delimited by ``---`` lines and holds ``key: value`` pairs::

    ---
    testDirectory: tests/e2e
    ---

Only ``testDirectory`` is interpreted; other keys are carried through
rewrites unchanged. Everything after the block is never touched. A leading
``---`` span holding anything other than ``key: value`` lines is document
text, and a new block is put in front of it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import IoFailure, SpecFileNotFoundError
from .speckit_logging import get_logger

TEST_DIRECTORY_KEY = "testDirectory"

HEADER_BLOCK = re.compile(r"\A---(\r?\n)(.*?)\r?\n---(?:\r?\n|\Z)", re.DOTALL)
HEADER_ENTRY = re.compile(r"^(\w+):\s*(.+)$")

logger = get_logger("metadata")


def match_header(content: str) -> Optional[re.Match]:
    """Leading header block, only when every non-blank line in it is a key: value entry."""
    match = HEADER_BLOCK.match(content)
    if not match:
        return None
    lines = [line.strip() for line in match.group(2).splitlines() if line.strip()]
    if not all(HEADER_ENTRY.match(line) for line in lines):
        return None
    return match


@dataclass(slots=True)
class SpecMetadata:
    test_directory: Optional[str] = None
    # Unrecognised header keys, in file order.
    extra: Dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.test_directory and not self.extra

    def to_dict(self) -> Dict[str, str]:
        data: Dict[str, str] = {}
        if self.test_directory:
            data[TEST_DIRECTORY_KEY] = self.test_directory
        data.update(self.extra)
        return data


def parse_header(content: str) -> SpecMetadata:
    """Parse the header block of document text; no block means empty metadata."""
    match = match_header(content)
    if not match:
        return SpecMetadata()

    metadata = SpecMetadata()
    for line in match.group(2).splitlines():
        entry = HEADER_ENTRY.match(line.strip())
        if not entry:
            continue
        key, value = entry.group(1), entry.group(2).strip()
        if key == TEST_DIRECTORY_KEY:
            metadata.test_directory = value
        else:
            metadata.extra[key] = value
    return metadata


def render_header(content: str, metadata: SpecMetadata) -> str:
    """Return content with its header block replaced, created or removed."""
    match = match_header(content)
    newline = match.group(1) if match else ("\r\n" if "\r\n" in content else "\n")
    entries = metadata.to_dict()

    if not entries:
        return content[match.end():] if match else content

    block = newline.join(["---", *(f"{key}: {value}" for key, value in entries.items()), "---"]) + newline
    if match:
        return block + content[match.end():]
    return block + content


class SpecMetadataStore:
    """Read and write the header block of spec documents."""

    def read_metadata(self, spec_file_path: Union[str, Path]) -> SpecMetadata:
        """Read the header block; a missing file or block gives empty metadata."""
        path = Path(spec_file_path)
        if not path.is_file():
            return SpecMetadata()
        try:
            content = self._read(path)
        except OSError as e:
            raise IoFailure(f"Failed to read spec metadata: {e.strerror or e}", path) from e
        return parse_header(content)

    def write_metadata(self, spec_file_path: Union[str, Path], metadata: SpecMetadata) -> None:
        """Rewrite the header block of an existing spec file.

        Raises:
            SpecFileNotFoundError: If the spec file does not exist.
            IoFailure: If the file cannot be read or written.
        """
        path = Path(spec_file_path)
        if not path.is_file():
            raise SpecFileNotFoundError(f"Spec file not found: {path}", path)

        try:
            content = self._read(path)
            updated = render_header(content, metadata)
            if updated != content:
                with open(path, "w", encoding="utf-8", newline="") as handle:
                    handle.write(updated)
        except OSError as e:
            raise IoFailure(f"Failed to write spec metadata: {e.strerror or e}", path) from e
        logger.debug(f"Updated metadata of {path}: {metadata.to_dict()}")

    def get_test_directory(self, spec_file_path: Union[str, Path]) -> Optional[str]:
        """Configured test directory of a spec, if any."""
        return self.read_metadata(spec_file_path).test_directory

    def set_test_directory(self, spec_file_path: Union[str, Path], test_directory: Optional[str]) -> None:
        """Set the test directory; None or an empty string removes the key."""
        metadata = self.read_metadata(spec_file_path)
        metadata.test_directory = test_directory or None
        self.write_metadata(spec_file_path, metadata)

    @staticmethod
    def _read(path: Path) -> str:
        # newline="" keeps line endings intact for the byte-for-byte rewrite
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()
