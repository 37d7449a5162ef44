"""Discover a feature's test directories from its plan.md.

Plans usually carry a project-structure tree in a fenced code block. Lines of
that tree naming a test directory become candidates, and test file names in
it reveal the project type. Without a usable plan the workspace itself is
probed for common test directories.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import IoFailure
from .speckit_logging import get_logger

TEST_DIRECTORY_NAMES = ("test", "tests", "__tests__", "spec", "specs", "e2e", "integration", "unit")
COMMON_TEST_DIRECTORIES = ("tests/e2e", "tests", "test", "__tests__", "spec", "specs")
DEFAULT_TEST_DIRECTORY = "tests/e2e"
DEFAULT_FILE_PATTERNS = ["*.spec.ts", "*.test.ts"]

# (suffix check, project type, file patterns), first hit wins
PROJECT_TYPES = (
    (re.compile(r"\.(?:spec|test)\.ts$"), "typescript", ["*.spec.ts", "*.test.ts"]),
    (re.compile(r"\.(?:spec|test)\.js$"), "javascript", ["*.spec.js", "*.test.js"]),
    (re.compile(r"_test\.go$"), "go", ["*_test.go"]),
    (re.compile(r"(?:^|/)test_[^/]*\.py$|_test\.py$"), "python", ["test_*.py", "*_test.py"]),
    (re.compile(r"_spec\.rb$"), "ruby", ["*_spec.rb"]),
)

CODE_BLOCK = re.compile(r"```(?:text)?\r?\n(.*?)```", re.DOTALL)
TREE_ONLY = re.compile(r"^[├└│─\s]+$")
TREE_PATH = re.compile(r"^[├└│─\s]*([A-Za-z0-9_\-./]+)")
ROOT_DIRECTORY = re.compile(r"^([A-Za-z0-9_\-]+)/")
TEST_DIRECTORY_HINT = re.compile(r"(?:^|/)(?:" + "|".join(TEST_DIRECTORY_NAMES) + r")/", re.IGNORECASE)
TESTING_LINE = re.compile(r"\*\*Testing\*\*:\s*([^\n]+)", re.IGNORECASE)
TESTING_DIRECTORY = re.compile(r"`([^`]*(?:test|tests|spec|specs)[^`]*)`", re.IGNORECASE)

logger = get_logger("plan")


@dataclass(slots=True)
class TestDirectoryConfig:
    __test__ = False

    directories: List[str] = field(default_factory=list)
    file_patterns: List[str] = field(default_factory=list)
    project_type: str = "unknown"
    # 'plan' or 'workspace'
    source: str = "workspace"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directories": list(self.directories),
            "file_patterns": list(self.file_patterns),
            "project_type": self.project_type,
            "source": self.source,
        }


def _is_test_directory_name(name: str) -> bool:
    return name.lower() in TEST_DIRECTORY_NAMES


def _detect_project_type(name: str) -> Optional[tuple]:
    for pattern, project_type, file_patterns in PROJECT_TYPES:
        if pattern.search(name):
            return project_type, file_patterns
    return None


class PlanParser:
    """Suggest test directories for a feature."""

    def discover_test_directories(
        self,
        workspace_root: Union[str, Path],
        spec_file_path: Union[str, Path],
    ) -> TestDirectoryConfig:
        """Test directories named by the sibling plan.md, else found in the workspace."""
        plan_path = Path(spec_file_path).parent / "plan.md"
        if plan_path.is_file():
            try:
                content = plan_path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                raise IoFailure(f"Failed to read plan: {e.strerror or e}", plan_path) from e
            config = self.parse_plan(content)
            if config.directories:
                logger.debug(f"Test directories from {plan_path}: {config.directories}")
                return config

        return self.discover_from_workspace(workspace_root)

    def parse_plan(self, content: str) -> TestDirectoryConfig:
        """Collect test directories and file patterns from plan text."""
        config = TestDirectoryConfig(source="plan")

        for block_match in CODE_BLOCK.finditer(content):
            block = block_match.group(1)
            root_dir = self._block_root(block)
            for line in block.splitlines():
                stripped = line.strip()
                if not stripped or TREE_ONLY.match(stripped):
                    continue
                path_match = TREE_PATH.match(stripped)
                if not path_match:
                    continue
                path_part = path_match.group(1)

                test_dir = self._test_directory(path_part, root_dir)
                if test_dir and test_dir not in config.directories:
                    config.directories.append(test_dir)

                detected = _detect_project_type(path_part)
                if detected:
                    project_type, patterns = detected
                    config.project_type = project_type
                    for pattern in patterns:
                        if pattern not in config.file_patterns:
                            config.file_patterns.append(pattern)

        testing = TESTING_LINE.search(content)
        if testing:
            dir_match = TESTING_DIRECTORY.search(testing.group(1))
            if dir_match:
                directory = dir_match.group(1).rstrip("/")
                if directory not in config.directories:
                    config.directories.append(directory)

        if not config.file_patterns:
            config.file_patterns = list(DEFAULT_FILE_PATTERNS)
        return config

    def discover_from_workspace(self, workspace_root: Union[str, Path]) -> TestDirectoryConfig:
        """Probe common test directory locations; the first existing one wins."""
        root = Path(workspace_root)
        config = TestDirectoryConfig(file_patterns=list(DEFAULT_FILE_PATTERNS), source="workspace")

        for directory in COMMON_TEST_DIRECTORIES:
            candidate = root / directory
            if not candidate.is_dir():
                continue
            config.directories.append(directory)
            for file_name in self._list_files(candidate, max_depth=2):
                detected = _detect_project_type(file_name)
                if detected:
                    config.project_type, patterns = detected
                    config.file_patterns = list(patterns)
                    break
            break

        if not config.directories:
            config.directories.append(DEFAULT_TEST_DIRECTORY)
        return config

    @staticmethod
    def _block_root(block: str) -> str:
        for line in block.splitlines():
            match = ROOT_DIRECTORY.match(line)
            if match:
                return match.group(1)
        return ""

    @staticmethod
    def _test_directory(path_part: str, root_dir: str) -> Optional[str]:
        parts = [part for part in path_part.split("/") if part]
        if not parts:
            return None

        if len(parts) > 1 or path_part.endswith("/"):
            if not TEST_DIRECTORY_HINT.search(path_part if path_part.endswith("/") else path_part + "/"):
                return None
            for index, part in enumerate(parts):
                if _is_test_directory_name(part):
                    test_path = "/".join(parts[: index + 1])
                    if root_dir and not path_part.startswith(root_dir):
                        return f"{root_dir}/{test_path}"
                    return test_path
            return None

        if _is_test_directory_name(path_part):
            return f"{root_dir}/{path_part}" if root_dir else path_part
        return None

    @staticmethod
    def _list_files(directory: Path, max_depth: int) -> List[str]:
        files: List[str] = []
        pending = [(directory, 0)]
        while pending:
            current, depth = pending.pop(0)
            if depth >= max_depth:
                continue
            try:
                entries = sorted(current.iterdir())
            except OSError:
                continue
            for entry in entries:
                if entry.is_dir():
                    pending.append((entry, depth + 1))
                else:
                    files.append(entry.name)
        return files
