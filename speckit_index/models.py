"""Data models for the Speck-It spec index.

This module contains the core data structures used throughout the index:
the parsed specification tree (features, user stories, acceptance
scenarios), the tests linked to it, and the persisted maturity record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


# Maturity levels, lowest first. The order is the aggregation order.
MATURITY_LEVELS = ("none", "partial", "complete")
TEST_STATUSES = ("pass", "fail", "unknown")
PRIORITIES = ("P1", "P2", "P3")

_STORY_KEY_PATTERN = re.compile(r"^US(\d+)$")
_SCENARIO_KEY_PATTERN = re.compile(r"^US(\d+)-AS(\d+)([a-z]?)$")


def normalize_level(value: Any) -> str:
    """Return a valid maturity level, defaulting to 'none'."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in MATURITY_LEVELS:
            return normalized
    return "none"


def normalize_status(value: Any) -> str:
    """Return a valid test status, defaulting to 'unknown'."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TEST_STATUSES:
            return normalized
    return "unknown"


def level_rank(level: str) -> int:
    """Position of a level in the none < partial < complete order."""
    return MATURITY_LEVELS.index(normalize_level(level))


def lowest_level(levels: Iterable[str], default: str = "none") -> str:
    """Return the lowest maturity level, or default when there is none."""
    ranked = [normalize_level(level) for level in levels]
    if not ranked:
        return default
    return min(ranked, key=MATURITY_LEVELS.index)


def story_key(story_number: int) -> str:
    """Key used for a user story in the maturity record."""
    return f"US{story_number}"


def scenario_identifier(story_number: int, scenario_number: int, suffix: str = "") -> str:
    """Build the stable identifier of an acceptance scenario."""
    return f"US{story_number}-AS{scenario_number}{suffix}"


def story_sort_key(key: str) -> tuple:
    """Sort key placing US2 before US10."""
    match = _STORY_KEY_PATTERN.match(key)
    if match:
        return (0, int(match.group(1)), key)
    return (1, 0, key)


def scenario_sort_key(key: str) -> tuple:
    """Sort key placing US1-AS2 before US1-AS10 and US1-AS1 before US1-AS1a."""
    match = _SCENARIO_KEY_PATTERN.match(key)
    if match:
        return (0, int(match.group(1)), int(match.group(2)), match.group(3), key)
    return (1, 0, 0, "", key)


# ---------------------------------------------------------------------------
# Specification tree
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class IntegrationTest:
    """A test declaration located in a test source file."""

    file_path: Path
    file_name: str
    test_name: Optional[str] = None
    line: Optional[int] = None
    spec_annotation: Optional[str] = None
    # Set by the caller once the test is matched against a scenario.
    scenario_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "file_path": str(self.file_path),
            "file_name": self.file_name,
            "test_name": self.test_name,
            "line": self.line,
            "spec_annotation": self.spec_annotation,
            "scenario_id": self.scenario_id,
        }

    @property
    def test_id(self) -> str:
        """Minimal identifier: 'file#name', or the file name alone."""
        if self.test_name:
            return f"{self.file_name}#{self.test_name}"
        return self.file_name


@dataclass(slots=True)
class AcceptanceScenario:
    """A single Given/When/Then verification case."""

    number: int
    id: str
    given: str
    when: str
    then: str
    line: int
    story_number: int
    suffix: str = ""
    linked_tests: List[IntegrationTest] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "number": self.number,
            "id": self.id,
            "suffix": self.suffix,
            "given": self.given,
            "when": self.when,
            "then": self.then,
            "line": self.line,
            "story_number": self.story_number,
            "linked_tests": [test.to_dict() for test in self.linked_tests],
        }


@dataclass(slots=True)
class UserStory:
    """A prioritized user story and its acceptance scenarios."""

    number: int
    title: str
    priority: str
    start_line: int
    end_line: int
    feature_name: str = ""
    description: str = ""
    why_priority: Optional[str] = None
    independent_test: Optional[str] = None
    acceptance_scenarios: List[AcceptanceScenario] = field(default_factory=list)

    @property
    def key(self) -> str:
        return story_key(self.number)

    def find_scenario(self, scenario_id: str) -> Optional[AcceptanceScenario]:
        """Find a scenario of this story by identifier."""
        for scenario in self.acceptance_scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "number": self.number,
            "title": self.title,
            "priority": self.priority,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "feature_name": self.feature_name,
            "description": self.description,
            "why_priority": self.why_priority,
            "independent_test": self.independent_test,
            "acceptance_scenarios": [s.to_dict() for s in self.acceptance_scenarios],
        }


@dataclass(slots=True)
class FeatureSpec:
    """One specification directory and its parsed primary document."""

    path: Path
    name: str
    display_name: str
    number: int
    spec_file_path: Path
    plan_file_path: Optional[Path] = None
    user_stories: List[UserStory] = field(default_factory=list)
    last_modified: float = 0.0

    def find_story(self, story_number: int) -> Optional[UserStory]:
        """Find a user story by number."""
        for story in self.user_stories:
            if story.number == story_number:
                return story
        return None

    def find_scenario(self, scenario_id: str) -> Optional[AcceptanceScenario]:
        """Find a scenario anywhere in the feature by identifier."""
        for story in self.user_stories:
            scenario = story.find_scenario(scenario_id)
            if scenario:
                return scenario
        return None

    def scenario_ids(self) -> List[str]:
        """All scenario identifiers, in document order."""
        return [s.id for story in self.user_stories for s in story.acceptance_scenarios]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "path": str(self.path),
            "name": self.name,
            "display_name": self.display_name,
            "number": self.number,
            "spec_file_path": str(self.spec_file_path),
            "plan_file_path": str(self.plan_file_path) if self.plan_file_path else None,
            "last_modified": self.last_modified,
            "user_stories": [story.to_dict() for story in self.user_stories],
        }


# ---------------------------------------------------------------------------
# Maturity record
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TestConfig:
    """Commands used to run tests for a feature, as stored in maturity.json."""

    __test__ = False

    framework: str = ""
    run_command: str = ""
    run_single_test_command: Optional[str] = None
    run_scenario_command: Optional[str] = None
    run_user_story_command: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase JSON representation."""
        data: Dict[str, Any] = {
            "framework": self.framework,
            "runCommand": self.run_command,
        }
        if self.run_single_test_command is not None:
            data["runSingleTestCommand"] = self.run_single_test_command
        if self.run_scenario_command is not None:
            data["runScenarioCommand"] = self.run_scenario_command
        if self.run_user_story_command is not None:
            data["runUserStoryCommand"] = self.run_user_story_command
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestConfig":
        """Create from the JSON representation."""
        return cls(
            framework=str(data.get("framework", "")),
            run_command=str(data.get("runCommand", "")),
            run_single_test_command=data.get("runSingleTestCommand"),
            run_scenario_command=data.get("runScenarioCommand"),
            run_user_story_command=data.get("runUserStoryCommand"),
        )

    def single_test_command(self, test_name: str, file_path: str, test_dir: str) -> str:
        """Render the command running one test; falls back to run_command."""
        if not self.run_single_test_command:
            return self.run_command
        escaped_name = re.sub(r"([.*+?^${}()|\[\]\\])", r"\\\1", test_name)
        return (
            self.run_single_test_command
            .replace("{testName}", escaped_name)
            .replace("{filePath}", file_path)
            .replace("{testDir}", test_dir)
        )

    def scenario_command(self, scenario_id: str) -> str:
        """Render the command running the tests of one scenario."""
        if not self.run_scenario_command:
            return self.run_command
        return self.run_scenario_command.replace("{scenarioId}", scenario_id)

    def user_story_command(self, story_number: int) -> str:
        """Render the command running the tests of one user story."""
        if not self.run_user_story_command:
            return self.run_command
        return self.run_user_story_command.replace("{userStoryPattern}", f"US{story_number}-")


@dataclass(slots=True)
class TestEntry:
    """A test recorded against a scenario in the maturity record."""

    __test__ = False

    file_path: str
    test_name: str
    status: str = "unknown"
    last_run: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON representation."""
        data: Dict[str, Any] = {
            "filePath": self.file_path,
            "testName": self.test_name,
            "status": self.status,
        }
        if self.last_run is not None:
            data["lastRun"] = self.last_run
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestEntry":
        """Create from the JSON representation."""
        last_run = data.get("lastRun")
        return cls(
            file_path=str(data.get("filePath", "")),
            test_name=str(data["testName"]),
            status=normalize_status(data.get("status")),
            last_run=str(last_run) if last_run is not None else None,
        )


@dataclass(slots=True)
class ScenarioMaturity:
    """Maturity level and recorded tests of one scenario."""

    level: str = "none"
    tests: List[TestEntry] = field(default_factory=list)

    def find_test(self, test_name: str) -> Optional[TestEntry]:
        """Find a recorded test by name."""
        for entry in self.tests:
            if entry.test_name == test_name:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON representation."""
        return {
            "level": self.level,
            "tests": [entry.to_dict() for entry in self.tests],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioMaturity":
        """Create from the JSON representation."""
        tests = [
            TestEntry.from_dict(item)
            for item in data.get("tests") or []
            if isinstance(item, dict) and "testName" in item
        ]
        return cls(level=normalize_level(data.get("level")), tests=tests)


@dataclass(slots=True)
class StoryMaturity:
    """Stored overall level and scenario entries of one user story."""

    overall: str = "none"
    scenarios: Dict[str, ScenarioMaturity] = field(default_factory=dict)

    def lowest_scenario_level(self) -> Optional[str]:
        """Lowest level among scenarios, or None without scenarios."""
        if not self.scenarios:
            return None
        return lowest_level(s.level for s in self.scenarios.values())

    def recalculate_overall(self) -> str:
        """Set overall to the lowest scenario level and return it."""
        self.overall = self.lowest_scenario_level() or "none"
        return self.overall

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON representation."""
        return {
            "overall": self.overall,
            "scenarios": {
                key: self.scenarios[key].to_dict()
                for key in sorted(self.scenarios, key=scenario_sort_key)
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryMaturity":
        """Create from the JSON representation."""
        scenarios_data = data.get("scenarios", {})
        if not isinstance(scenarios_data, dict):
            raise ValueError("'scenarios' must be an object")
        return cls(
            overall=normalize_level(data.get("overall")),
            scenarios={
                str(key): ScenarioMaturity.from_dict(value)
                for key, value in scenarios_data.items()
                if isinstance(value, dict)
            },
        )


@dataclass(slots=True)
class MaturityRecord:
    """Parsed content of a feature's maturity file."""

    last_updated: Optional[str] = None
    test_config: Optional[TestConfig] = None
    user_stories: Dict[str, StoryMaturity] = field(default_factory=dict)
    # 'json', 'legacy' or 'empty'; never written to disk.
    source_format: str = "empty"

    def story(self, story_number: int) -> Optional[StoryMaturity]:
        """Get the entry of a user story, if recorded."""
        return self.user_stories.get(story_key(story_number))

    def ensure_story(self, story_number: int) -> StoryMaturity:
        """Get or create the entry of a user story."""
        key = story_key(story_number)
        if key not in self.user_stories:
            self.user_stories[key] = StoryMaturity()
        return self.user_stories[key]

    def ensure_scenario(self, story_number: int, scenario_id: str) -> ScenarioMaturity:
        """Get or create the entry of a scenario."""
        story = self.ensure_story(story_number)
        if scenario_id not in story.scenarios:
            story.scenarios[scenario_id] = ScenarioMaturity()
        return story.scenarios[scenario_id]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the maturity.json representation."""
        data: Dict[str, Any] = {"lastUpdated": self.last_updated}
        if self.test_config is not None:
            data["testConfig"] = self.test_config.to_dict()
        data["userStories"] = {
            key: self.user_stories[key].to_dict()
            for key in sorted(self.user_stories, key=story_sort_key)
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaturityRecord":
        """Create from maturity.json content; raises ValueError on a bad shape."""
        if not isinstance(data, dict):
            raise ValueError("maturity data must be an object")
        stories_data = data.get("userStories", {})
        if not isinstance(stories_data, dict):
            raise ValueError("'userStories' must be an object")
        config_data = data.get("testConfig")
        last_updated = data.get("lastUpdated")
        return cls(
            last_updated=str(last_updated) if last_updated is not None else None,
            test_config=TestConfig.from_dict(config_data) if isinstance(config_data, dict) else None,
            user_stories={
                str(key): StoryMaturity.from_dict(value)
                for key, value in stories_data.items()
                if isinstance(value, dict)
            },
            source_format="json",
        )
