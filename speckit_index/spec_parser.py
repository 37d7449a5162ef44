"""Parser turning spec.md documents into FeatureSpec trees.

The scan is a single forward pass driven by :class:`StoryScanner`, a small
state machine with one transition method per :class:`ParserState`. Content
that does not match the grammar is skipped; only an unreadable file raises.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Union

from .errors import ParseError
from .models import AcceptanceScenario, FeatureSpec, UserStory, scenario_identifier
from .speckit_logging import get_logger, log_performance

SPEC_FILE_NAME = "spec.md"
PLAN_FILE_NAME = "plan.md"

STORY_HEADING = re.compile(r"^### User Story (\d+) - (.+?) \(Priority: (P[1-3])\)")
EXPLICIT_SCENARIO = re.compile(
    r"^(\d+)([a-z]?)\. \*\*(US\d+-AS\d+([a-z]?))\*\*: \*\*Given\*\* (.+?), \*\*When\*\* (.+?), \*\*Then\*\* (.+)"
)
IMPLICIT_SCENARIO = re.compile(r"^(\d+)\. \*\*Given\*\* (.+?), \*\*When\*\* (.+?), \*\*Then\*\* (.+)")
SUFFIXED_IMPLICIT_SCENARIO = re.compile(r"^\d+[a-z]\. \*\*Given\*\*")
WHY_PRIORITY = re.compile(r"^\*\*Why this priority\*\*: (.+)")
INDEPENDENT_TEST = re.compile(r"^\*\*Independent Test\*\*: (.+)")
SCENARIOS_MARKER = re.compile(r"\*\*Acceptance Scenarios|^\s*#{2,6}\s+Acceptance Scenarios")
HORIZONTAL_RULE = re.compile(r"^-{3,}\s*$")
FEATURE_NUMBER = re.compile(r"^(\d+)-")

logger = get_logger("parser")


class ParserState(Enum):
    OUTSIDE_STORY = "outside_story"
    STORY_PREAMBLE = "story_preamble"
    ACCEPTANCE_SCENARIOS = "acceptance_scenarios"


def format_display_name(dir_name: str) -> str:
    """'001-user-auth' -> 'User Auth'."""
    stripped = FEATURE_NUMBER.sub("", dir_name, count=1)
    return " ".join(word[:1].upper() + word[1:] for word in stripped.split("-"))


def extract_feature_number(dir_name: str) -> int:
    """Leading numeric prefix of a feature directory, 0 when absent."""
    match = FEATURE_NUMBER.match(dir_name)
    return int(match.group(1)) if match else 0


class StoryScanner:
    """Line-fed state machine collecting the user stories of one document.

    Feed every line with :meth:`feed`, then call :meth:`finish` to close the
    open story and get the stories in document order.
    """

    def __init__(self, feature_name: str = "", source: Optional[Path] = None):
        self.feature_name = feature_name
        self.source = source
        self.state = ParserState.OUTSIDE_STORY
        self.stories: List[UserStory] = []
        self._current: Optional[UserStory] = None
        self._last_line = 0
        self._seen_ids: Set[str] = set()
        self._transitions: Dict[ParserState, Callable[[str, int], ParserState]] = {
            ParserState.OUTSIDE_STORY: self._in_outside,
            ParserState.STORY_PREAMBLE: self._in_preamble,
            ParserState.ACCEPTANCE_SCENARIOS: self._in_scenarios,
        }

    @property
    def current_story(self) -> Optional[UserStory]:
        return self._current

    def feed(self, line: str, line_no: int) -> ParserState:
        """Consume one 1-indexed line and return the resulting state."""
        heading = STORY_HEADING.match(line)
        if heading:
            self._close(line_no - 1)
            self._current = UserStory(
                number=int(heading.group(1)),
                title=heading.group(2).strip(),
                priority=heading.group(3),
                start_line=line_no,
                end_line=line_no,
                feature_name=self.feature_name,
            )
            self.state = ParserState.STORY_PREAMBLE
        elif self._current is not None:
            self.state = self._transitions[self.state](line, line_no)
        self._last_line = line_no
        return self.state

    def finish(self) -> List[UserStory]:
        """Close the open story at the last scanned line."""
        self._close(self._last_line)
        self.state = ParserState.OUTSIDE_STORY
        return self.stories

    # Transition functions, one per state

    def _in_outside(self, line: str, line_no: int) -> ParserState:
        if SCENARIOS_MARKER.search(line):
            return ParserState.ACCEPTANCE_SCENARIOS
        if not HORIZONTAL_RULE.match(line):
            self._capture_preamble(line)
        return ParserState.OUTSIDE_STORY

    def _in_preamble(self, line: str, line_no: int) -> ParserState:
        if SCENARIOS_MARKER.search(line):
            return ParserState.ACCEPTANCE_SCENARIOS
        if HORIZONTAL_RULE.match(line):
            return ParserState.OUTSIDE_STORY
        self._capture_preamble(line)
        return ParserState.STORY_PREAMBLE

    def _in_scenarios(self, line: str, line_no: int) -> ParserState:
        if HORIZONTAL_RULE.match(line):
            return ParserState.OUTSIDE_STORY
        stripped = line.strip()
        if not stripped or SCENARIOS_MARKER.search(line):
            return ParserState.ACCEPTANCE_SCENARIOS
        if self._capture_label(stripped):
            return ParserState.ACCEPTANCE_SCENARIOS

        scenario = self._match_scenario(stripped, line_no)
        if scenario is not None:
            if scenario.id in self._seen_ids:
                logger.warning(
                    f"Skipping duplicate scenario id {scenario.id} at {self.source or '<text>'}:{line_no}"
                )
            else:
                self._seen_ids.add(scenario.id)
                self._current.acceptance_scenarios.append(scenario)
        return ParserState.ACCEPTANCE_SCENARIOS

    # Helpers

    def _close(self, end_line: int) -> None:
        if self._current is None:
            return
        self._current.end_line = max(end_line, self._current.start_line)
        self.stories.append(self._current)
        self._current = None

    def _capture_label(self, stripped: str) -> bool:
        why = WHY_PRIORITY.match(stripped)
        if why:
            self._current.why_priority = why.group(1).strip()
            return True
        independent = INDEPENDENT_TEST.match(stripped)
        if independent:
            self._current.independent_test = independent.group(1).strip()
            return True
        return False

    def _capture_preamble(self, line: str) -> None:
        stripped = line.strip()
        if not stripped or self._capture_label(stripped):
            return
        if self._current.description or stripped.startswith(("**", "#")):
            return
        self._current.description = stripped

    def _match_scenario(self, stripped: str, line_no: int) -> Optional[AcceptanceScenario]:
        story = self._current
        explicit = EXPLICIT_SCENARIO.match(stripped)
        if explicit:
            scenario_id = explicit.group(3)
            if not scenario_id.startswith(f"US{story.number}-"):
                logger.debug(f"Scenario {scenario_id} declared under User Story {story.number} (line {line_no})")
            return AcceptanceScenario(
                number=int(explicit.group(1)),
                id=scenario_id,
                given=explicit.group(5),
                when=explicit.group(6),
                then=explicit.group(7).strip(),
                line=line_no,
                story_number=story.number,
                suffix=explicit.group(4),
            )

        implicit = IMPLICIT_SCENARIO.match(stripped)
        if implicit:
            number = int(implicit.group(1))
            return AcceptanceScenario(
                number=number,
                id=scenario_identifier(story.number, number),
                given=implicit.group(2),
                when=implicit.group(3),
                then=implicit.group(4).strip(),
                line=line_no,
                story_number=story.number,
            )

        if SUFFIXED_IMPLICIT_SCENARIO.match(stripped):
            logger.debug(f"Skipping lettered scenario without explicit id at line {line_no}")
        return None


class SpecParser:
    """Parse specification documents into FeatureSpec entities."""

    def parse_text(
        self,
        text: str,
        spec_file_path: Union[str, Path],
        last_modified: float = 0.0,
    ) -> FeatureSpec:
        """Parse already-read document text. Never raises on content."""
        spec_path = Path(spec_file_path)
        feature_dir = spec_path.parent
        plan_path = feature_dir / PLAN_FILE_NAME

        scanner = StoryScanner(feature_dir.name, spec_path)
        for line_no, line in enumerate(text.splitlines(), start=1):
            scanner.feed(line, line_no)

        return FeatureSpec(
            path=feature_dir,
            name=feature_dir.name,
            display_name=format_display_name(feature_dir.name),
            number=extract_feature_number(feature_dir.name),
            spec_file_path=spec_path,
            plan_file_path=plan_path if plan_path.is_file() else None,
            user_stories=scanner.finish(),
            last_modified=last_modified,
        )

    def parse_spec_file(self, spec_file_path: Union[str, Path]) -> FeatureSpec:
        """Read and parse one spec.md.

        Raises:
            ParseError: If the file is missing or cannot be read.
        """
        path = Path(spec_file_path).resolve()
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
            last_modified = path.stat().st_mtime
        except OSError as e:
            raise ParseError(f"Failed to read spec file: {e.strerror or e}", path) from e

        spec = self.parse_text(text, path, last_modified)
        logger.debug(f"Parsed {path}: {len(spec.user_stories)} user stories")
        return spec

    @log_performance("parse_all_specs")
    def parse_all_specs(self, workspace_root: Union[str, Path], specs_dir: str = "specs") -> List[FeatureSpec]:
        """Parse every feature directory under root/specs_dir, ordered by number."""
        specs_path = Path(workspace_root) / specs_dir
        if not specs_path.is_dir():
            logger.debug(f"No specs directory at {specs_path}")
            return []

        specs: List[FeatureSpec] = []
        for entry in sorted(specs_path.iterdir()):
            spec_file = entry / SPEC_FILE_NAME
            if entry.is_dir() and spec_file.is_file():
                specs.append(self.parse_spec_file(spec_file))

        specs.sort(key=lambda spec: (spec.number, spec.name))
        return specs

    def find_user_story_line(self, spec_file_path: Union[str, Path], story_number: int) -> Optional[int]:
        """Line of a story heading, or None when absent or unreadable."""
        try:
            spec = self.parse_spec_file(spec_file_path)
        except ParseError:
            return None
        story = spec.find_story(story_number)
        return story.start_line if story else None

    def find_scenario_line(self, spec_file_path: Union[str, Path], scenario_id: str) -> Optional[int]:
        """Line of a scenario, or None when absent or unreadable."""
        try:
            spec = self.parse_spec_file(spec_file_path)
        except ParseError:
            return None
        scenario = spec.find_scenario(scenario_id)
        return scenario.line if scenario else None
