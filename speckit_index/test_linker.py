"""Link test source files to user stories and acceptance scenarios.

Test files are associated with a user story by file name (``us3-...``,
``user-story-3...``, ``story3...``). Within a file every top-level test
declaration is extracted together with an optional ``@spec:`` annotation
from the comment lines directly above it::

    // @spec: 001-user-auth/US1-AS2
    test('US1-AS2: rejects a wrong password', async () => {

Annotations are authoritative for scenario matching; the test name is only
consulted for tests without one.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .errors import IoFailure, SpecKitErrorCode
from .models import AcceptanceScenario, IntegrationTest, scenario_identifier
from .speckit_logging import get_logger

SCRIPT_TEST_SUFFIXES = (".spec.ts", ".test.ts", ".spec.js", ".test.js")
SKIPPED_DIRECTORIES = frozenset({"node_modules", ".git", "__pycache__", ".venv"})
ANNOTATION_LOOKBACK = 3

SCRIPT_DECLARATION = re.compile(r"""^\s*test\(['"`]([^'"`]+)['"`]""")
PYTHON_DECLARATION = re.compile(r"^\s*(?:async\s+)?def\s+(test_\w+)\s*\(")
UNESCAPED_BACKTICK = re.compile(r"(?<!\\)`")
ANNOTATION = re.compile(r"@spec:\s*([\w-]+)/(US\d+-AS\d+[a-z]?)")
ANNOTATION_ID = re.compile(r"^([\w-]+)/(US\d+-AS\d+[a-z]?)$")

logger = get_logger("linker")


def is_test_file(file_name: str) -> bool:
    """Whether a file name follows a recognised test file convention."""
    if file_name.endswith(SCRIPT_TEST_SUFFIXES):
        return True
    return file_name.endswith(".py") and (file_name.startswith("test_") or file_name.endswith("_test.py"))


def matches_user_story(file_name: str, story_number: int) -> bool:
    """Case-insensitive story naming check: us{N}, user-story-{N} or story{N}."""
    return any(pattern.search(file_name) for pattern in _story_patterns(story_number))


def _story_patterns(story_number: int) -> List[re.Pattern]:
    return [
        re.compile(rf"us{story_number}(?!\d)", re.IGNORECASE),
        re.compile(rf"user-story-{story_number}(?!\d)", re.IGNORECASE),
        re.compile(rf"story{story_number}(?!\d)", re.IGNORECASE),
    ]


def split_annotation(annotation: str) -> Optional[tuple]:
    """'001-x/US1-AS2' -> ('001-x', 'US1-AS2'); None when malformed."""
    match = ANNOTATION_ID.match(annotation)
    if not match:
        return None
    return match.group(1), match.group(2)


def suggest_test_file_name(story_number: int, feature_name: str, extension: str = ".spec.ts") -> str:
    """File name for a new story test file, following the linker's naming convention."""
    slug = re.sub(r"[^a-z0-9]+", "-", feature_name.lower()).strip("-")[:30].rstrip("-")
    if extension == ".py":
        return f"test_us{story_number}_{slug.replace('-', '_')}.py"
    return f"us{story_number}-{slug}{extension}"


def filter_tests_for_scenario(
    tests: List[IntegrationTest],
    story_number: int,
    scenario: Union[AcceptanceScenario, str, int],
    feature_name: Optional[str] = None,
) -> List[IntegrationTest]:
    """Narrow a story's tests to one scenario.

    A test carrying an annotation matches only when the annotation names
    exactly this scenario (and, when given, this feature). Tests without an
    annotation fall back to the scenario id, or its bare ``AS<N>`` part,
    appearing in the test name.
    Annotated matches come first, each group in input order.
    """
    if isinstance(scenario, AcceptanceScenario):
        scenario_id = scenario.id
    elif isinstance(scenario, int):
        scenario_id = scenario_identifier(story_number, scenario)
    else:
        scenario_id = scenario

    # The full id, or the bare "AS<N>" part when not prefixed by another story
    short_id = scenario_id.split("-", 1)[1] if "-" in scenario_id else scenario_id
    name_pattern = re.compile(
        rf"(?:(?<![0-9A-Za-z]){re.escape(scenario_id)}|(?<![0-9A-Za-z-]){re.escape(short_id)})(?![0-9a-z])",
        re.IGNORECASE,
    )

    annotated: List[IntegrationTest] = []
    by_name: List[IntegrationTest] = []
    for test in tests:
        if test.spec_annotation:
            parts = split_annotation(test.spec_annotation)
            if parts is None:
                continue
            annotated_feature, annotated_id = parts
            if annotated_id != scenario_id:
                continue
            if feature_name and annotated_feature != feature_name:
                continue
            annotated.append(test)
        elif test.test_name and name_pattern.search(test.test_name):
            by_name.append(test)
    return annotated + by_name


class TestLinker:
    """Find test files and test declarations under a workspace test directory."""

    __test__ = False

    def find_test_files(self, tests_path: Union[str, Path]) -> List[Path]:
        """Recognised test files below a directory, sorted by relative path."""
        base = Path(tests_path)
        if not base.is_dir():
            return []
        found = [path for path in self._walk(base) if is_test_file(path.name)]
        found.sort(key=lambda path: path.relative_to(base).as_posix())
        return found

    def find_tests_for_story(
        self,
        workspace_root: Union[str, Path],
        tests_dir: str,
        feature_name: str,
        story_number: int,
    ) -> List[IntegrationTest]:
        """Tests in every file whose name matches the story number."""
        tests: List[IntegrationTest] = []
        for test_file in self.find_test_files(Path(workspace_root) / tests_dir):
            if matches_user_story(test_file.name, story_number):
                tests.extend(self.parse_test_file(test_file, self._read(test_file)))
        logger.debug(f"{feature_name} US{story_number}: {len(tests)} tests under {tests_dir}")
        return tests

    def find_tests_for_scenario(
        self,
        workspace_root: Union[str, Path],
        tests_dir: str,
        feature_name: str,
        story_number: int,
        scenario: Union[AcceptanceScenario, str, int],
    ) -> List[IntegrationTest]:
        """Tests of the story that belong to one scenario."""
        story_tests = self.find_tests_for_story(workspace_root, tests_dir, feature_name, story_number)
        return filter_tests_for_scenario(story_tests, story_number, scenario, feature_name)

    def find_best_test_file(
        self,
        workspace_root: Union[str, Path],
        tests_dir: str,
        story_number: int,
    ) -> Optional[Path]:
        """Single representative test file of a story, or None."""
        strict = re.compile(rf"^us{story_number}(-|$)", re.IGNORECASE)

        def sort_key(path: Path) -> tuple:
            stem = path.name.split(".", 1)[0]
            return (0 if strict.match(stem) else 1, path.name)

        candidates = [
            path
            for path in self.find_test_files(Path(workspace_root) / tests_dir)
            if matches_user_story(path.name, story_number)
        ]
        if not candidates:
            return None
        return sorted(candidates, key=sort_key)[0]

    def scan_test_annotations(
        self,
        workspace_root: Union[str, Path],
        tests_dir: str,
    ) -> Dict[str, List[IntegrationTest]]:
        """Every @spec annotation under the test directory, keyed by 'feature/USx-ASy'."""
        annotations: Dict[str, List[IntegrationTest]] = {}
        for test_file in self.find_test_files(Path(workspace_root) / tests_dir):
            content = self._read(test_file)
            declared = [t for t in self.parse_test_file(test_file, content) if t.spec_annotation]
            for index, line in enumerate(content.splitlines()):
                line_no = index + 1
                for match in ANNOTATION.finditer(line):
                    key = f"{match.group(1)}/{match.group(2)}"
                    test_name = next(
                        (
                            t.test_name
                            for t in declared
                            if t.spec_annotation == key and 0 < (t.line or 0) - line_no <= ANNOTATION_LOOKBACK
                        ),
                        None,
                    )
                    annotations.setdefault(key, []).append(
                        IntegrationTest(
                            file_path=test_file,
                            file_name=test_file.name,
                            test_name=test_name,
                            line=line_no,
                            spec_annotation=key,
                        )
                    )
        return annotations

    def parse_test_file(self, file_path: Union[str, Path], content: str) -> List[IntegrationTest]:
        """Extract the test declarations of one file.

        A file without any declaration yields a single record carrying
        only the file path.
        """
        path = Path(file_path)
        lines = content.splitlines()
        if path.suffix == ".py":
            declarations = self._python_declarations(lines)
        else:
            declarations = self._script_declarations(lines)

        tests = [
            IntegrationTest(
                file_path=path,
                file_name=path.name,
                test_name=name,
                line=index + 1,
                spec_annotation=self._annotation_before(lines, index),
            )
            for index, name in declarations
        ]
        if not tests:
            tests.append(IntegrationTest(file_path=path, file_name=path.name))
        return tests

    @staticmethod
    def _script_declarations(lines: List[str]) -> List[tuple]:
        declarations = []
        inside_template = False
        for index, line in enumerate(lines):
            # An odd number of backticks opens or closes a template literal
            if len(UNESCAPED_BACKTICK.findall(line)) % 2 == 1:
                inside_template = not inside_template
            if inside_template:
                continue
            match = SCRIPT_DECLARATION.match(line)
            if match:
                declarations.append((index, match.group(1)))
        return declarations

    @staticmethod
    def _python_declarations(lines: List[str]) -> List[tuple]:
        declarations = []
        for index, line in enumerate(lines):
            match = PYTHON_DECLARATION.match(line)
            if match:
                declarations.append((index, match.group(1)))
        return declarations

    @staticmethod
    def _annotation_before(lines: List[str], index: int) -> Optional[str]:
        """Nearest annotation within the comment lines directly above a declaration."""
        for previous in range(index - 1, max(-1, index - 1 - ANNOTATION_LOOKBACK), -1):
            text = lines[previous].strip()
            if not text or "test(" in text or "});" in text or PYTHON_DECLARATION.match(text):
                return None
            match = ANNOTATION.search(text)
            if match:
                return f"{match.group(1)}/{match.group(2)}"
        return None

    @staticmethod
    def _walk(base: Path) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
            for name in sorted(filenames):
                yield Path(dirpath) / name

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise IoFailure(
                f"Failed to read test file: {e.strerror or e}", path, code=SpecKitErrorCode.TEST_LINK_FAILED
            ) from e
