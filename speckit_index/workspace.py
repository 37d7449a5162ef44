"""Spec index of one workspace.

:class:`SpecWorkspace` ties the parser, metadata store, test linker and
maturity store together: it builds the feature list with linked tests,
computes displayed maturity, and applies the two inputs coming back from
a UI, a chosen test directory and a finished test run.
"""

from __future__ import annotations

import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DEFAULT_SPECS_DIR
from .maturity import MaturityStore
from .metadata import SpecMetadataStore
from .models import (
    AcceptanceScenario,
    FeatureSpec,
    IntegrationTest,
    UserStory,
    story_key,
)
from .plan_parser import PlanParser, TestDirectoryConfig
from .spec_parser import SpecParser
from .speckit_logging import (
    get_logger,
    log_error_with_context,
    log_index_refreshed,
    log_operation,
    log_performance,
    log_test_directory_set,
    log_test_outcome,
)
from .test_linker import TestLinker, filter_tests_for_scenario, suggest_test_file_name

STORY_IDENTIFIER = re.compile(r"^US(\d+)$")
SCENARIO_IDENTIFIER = re.compile(r"^US(\d+)-AS(\d+)([a-z]?)$")

logger = get_logger("workspace")


def classify_identifier(identifier: str) -> tuple:
    """('story', N), ('scenario', 'USn-ASm') or ('test', name) for a run identifier."""
    story = STORY_IDENTIFIER.match(identifier)
    if story:
        return "story", int(story.group(1))
    if SCENARIO_IDENTIFIER.match(identifier):
        return "scenario", identifier
    return "test", identifier


class SpecWorkspace:
    """Index of the specs of one workspace root."""

    def __init__(
        self,
        root: Union[Path, str],
        specs_dir: str = DEFAULT_SPECS_DIR,
        *,
        maturity_store: Optional[MaturityStore] = None,
    ):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise ValueError(f"Workspace root '{root}' is not a directory.")
        self.specs_dir = specs_dir
        self.parser = SpecParser()
        self.metadata = SpecMetadataStore()
        self.linker = TestLinker()
        self.maturity = maturity_store or MaturityStore()
        self.plan_parser = PlanParser()
        self._specs: List[FeatureSpec] = []
        self._test_directories: Dict[str, Optional[str]] = {}
        self._refreshed = False

    @property
    def specs_path(self) -> Path:
        return self.root / self.specs_dir

    @property
    def specs(self) -> List[FeatureSpec]:
        """Parsed features, refreshing on first access."""
        if not self._refreshed:
            self.refresh()
        return self._specs

    # ------------------------------------------------------------------
    # Index building
    # ------------------------------------------------------------------

    @log_performance("refresh_index")
    def refresh(self) -> List[FeatureSpec]:
        """Re-parse every spec and re-link tests of specs with a test directory."""
        try:
            with log_operation("refresh_index", root=str(self.root)):
                specs = self.parser.parse_all_specs(self.root, self.specs_dir)
                test_directories: Dict[str, Optional[str]] = {}
                for spec in specs:
                    test_dir = self.metadata.get_test_directory(spec.spec_file_path)
                    test_directories[spec.name] = test_dir
                    if test_dir:
                        self._link_tests(spec, test_dir)
        except Exception as e:
            log_error_with_context(e, {"operation": "refresh_index", "root": str(self.root)})
            raise

        self._specs = specs
        self._test_directories = test_directories
        self._refreshed = True
        log_index_refreshed(len(specs), root=str(self.root))
        return specs

    def _link_tests(self, spec: FeatureSpec, test_dir: str) -> None:
        for story in spec.user_stories:
            story_tests = self.linker.find_tests_for_story(self.root, test_dir, spec.name, story.number)
            for scenario in story.acceptance_scenarios:
                matched = filter_tests_for_scenario(story_tests, story.number, scenario, spec.name)
                scenario.linked_tests = [replace(test, scenario_id=scenario.id) for test in matched]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_feature(self, name: str) -> Optional[FeatureSpec]:
        """Feature by directory name, or by number when given digits only."""
        for spec in self.specs:
            if spec.name == name:
                return spec
        if name.isdigit():
            for spec in self.specs:
                if spec.number == int(name):
                    return spec
        return None

    def find_spec_by_path(self, path: Union[Path, str]) -> Optional[FeatureSpec]:
        """Feature owning a path: its spec.md, its directory, or any file inside it."""
        target = Path(path)
        if not target.is_absolute():
            target = self.root / target
        target = target.resolve()
        for spec in self.specs:
            feature_dir = spec.path.resolve()
            if target == feature_dir or feature_dir in target.parents:
                return spec
        return None

    def require_feature(self, feature: Union[FeatureSpec, Path, str]) -> FeatureSpec:
        """Resolve a feature by name or path.

        Raises:
            ValueError: If no feature matches.
        """
        if isinstance(feature, FeatureSpec):
            return feature
        spec = None
        if isinstance(feature, str) and "/" not in feature and os.sep not in feature:
            spec = self.get_feature(feature)
        if spec is None:
            spec = self.find_spec_by_path(feature)
        if spec is None:
            raise ValueError(f"Feature '{feature}' not found under {self.specs_path}.")
        return spec

    def test_directory(self, feature: Union[FeatureSpec, Path, str]) -> Optional[str]:
        spec = self.require_feature(feature)
        if spec.name not in self._test_directories:
            self._test_directories[spec.name] = self.metadata.get_test_directory(spec.spec_file_path)
        return self._test_directories[spec.name]

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    def find_tests(
        self,
        feature: Union[FeatureSpec, Path, str],
        story_number: int,
        scenario_id: Optional[str] = None,
    ) -> List[IntegrationTest]:
        """Tests of a story, or of one of its scenarios, in the configured directory."""
        spec = self.require_feature(feature)
        test_dir = self.test_directory(spec)
        if not test_dir:
            return []
        if scenario_id:
            matched = self.linker.find_tests_for_scenario(self.root, test_dir, spec.name, story_number, scenario_id)
            return [replace(test, scenario_id=scenario_id) for test in matched]
        return self.linker.find_tests_for_story(self.root, test_dir, spec.name, story_number)

    def suggest_test_file(self, feature: Union[FeatureSpec, Path, str], story_number: int) -> Optional[Path]:
        """Existing best test file of a story, else where a new one should go."""
        spec = self.require_feature(feature)
        test_dir = self.test_directory(spec)
        if not test_dir:
            return None
        best = self.linker.find_best_test_file(self.root, test_dir, story_number)
        if best is not None:
            return best
        return self.root / test_dir / suggest_test_file_name(story_number, spec.name)

    def discover_test_directories(self, feature: Union[FeatureSpec, Path, str]) -> TestDirectoryConfig:
        spec = self.require_feature(feature)
        return self.plan_parser.discover_test_directories(self.root, spec.spec_file_path)

    def set_test_directory(self, feature: Union[FeatureSpec, Path, str], directory: Optional[str]) -> Optional[str]:
        """Store the test directory of a feature and re-link its tests.

        Absolute directories inside the workspace are stored relative to it.
        """
        spec = self.require_feature(feature)
        value = directory.strip() if directory else None
        if value:
            candidate = Path(value)
            if candidate.is_absolute():
                try:
                    value = candidate.resolve().relative_to(self.root).as_posix()
                except ValueError:
                    raise ValueError(f"Test directory '{directory}' is outside the workspace {self.root}.") from None
            if not (self.root / value).is_dir():
                logger.warning(f"Test directory {value} of {spec.name} does not exist yet")

        self.metadata.set_test_directory(spec.spec_file_path, value)
        self._test_directories[spec.name] = value
        log_test_directory_set(spec.name, value)
        self.refresh()
        return value

    # ------------------------------------------------------------------
    # Maturity
    # ------------------------------------------------------------------

    def record_test_outcome(self, feature: Union[FeatureSpec, Path, str], identifier: str, exit_code: int) -> Dict[str, Any]:
        """Apply a finished run: exit code 0 passes, anything else fails."""
        spec = self.require_feature(feature)
        passed = exit_code == 0
        kind, target = classify_identifier(identifier.strip())

        if kind == "story":
            updated = self.maturity.update_user_story_result(spec, target, passed)
        elif kind == "scenario":
            updated = self.maturity.update_scenario_result(spec, target, passed)
        else:
            updated = self.maturity.update_test_result(spec, target, passed)

        if not updated:
            logger.info(f"No recorded tests matched {identifier} in {spec.name}")
        log_test_outcome(spec.name, identifier, passed, exit_code=exit_code, updated_entries=updated)
        return {"identifier": identifier, "kind": kind, "passed": passed, "updated_entries": updated}

    def set_scenario_maturity(
        self, feature: Union[FeatureSpec, Path, str], scenario_id: str, level: str
    ) -> Dict[str, Any]:
        spec = self.require_feature(feature)
        match = SCENARIO_IDENTIFIER.match(scenario_id)
        if not match:
            raise ValueError(f"'{scenario_id}' is not a scenario identifier like US1-AS2.")
        story_number = int(match.group(1))
        self.maturity.set_scenario_maturity(spec, story_number, scenario_id, level)
        return {
            "scenario_id": scenario_id,
            "level": self.maturity.get_scenario_maturity(spec, story_number, scenario_id),
            "story_level": self.maturity.get_user_story_maturity(spec, story_number),
            "maturity_file": str(self.maturity.maturity_file_path(spec)),
        }

    def build_run_command(
        self,
        feature: Union[FeatureSpec, Path, str],
        identifier: str,
        test_file: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Command line running a test, scenario or story, from the feature's testConfig.

        Returns None when the feature has no testConfig or no command applies.
        """
        spec = self.require_feature(feature)
        config = self.maturity.get_test_config(spec)
        if config is None:
            return None

        kind, target = classify_identifier(identifier.strip())
        if kind == "story":
            command = config.user_story_command(target)
        elif kind == "scenario":
            command = config.scenario_command(target)
        else:
            file_path = test_file or self._locate_test_file(spec, target)
            relative = self._relative_path(file_path) if file_path else ""
            test_dir = Path(relative).parent.as_posix() if relative else ""
            command = config.single_test_command(target, relative, test_dir)

        if not command:
            return None
        return {"command": command, "kind": kind, "cwd": str(self.root), "framework": config.framework}

    def _locate_test_file(self, spec: FeatureSpec, test_name: str) -> Optional[str]:
        for story in spec.user_stories:
            for scenario in story.acceptance_scenarios:
                for test in scenario.linked_tests:
                    if test.test_name == test_name:
                        return str(test.file_path)
        for _, entry in self.maturity.find_test_entries(spec, test_name):
            if entry.file_path:
                return entry.file_path
        return None

    def _relative_path(self, file_path: str) -> str:
        path = Path(file_path)
        if not path.is_absolute():
            return path.as_posix()
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def clear_maturity_cache(self, feature: Optional[Union[FeatureSpec, Path, str]] = None) -> int:
        """Invalidate cached maturity records; returns the cache modification count."""
        if feature is None:
            self.maturity.clear_cache()
        else:
            self.maturity.clear_cache(self.require_feature(feature))
        return self.maturity.cache.modification_count

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def story_summary(self, spec: FeatureSpec, story: UserStory) -> Dict[str, Any]:
        """Displayed level and pass counts of a story."""
        record = self.maturity.load(spec).story(story.number)
        entries = [entry for s in record.scenarios.values() for entry in s.tests] if record else []
        passed = sum(1 for entry in entries if entry.status == "pass")
        return {
            "key": story_key(story.number),
            "number": story.number,
            "title": story.title,
            "priority": story.priority,
            "start_line": story.start_line,
            "end_line": story.end_line,
            "level": self.maturity.get_user_story_maturity(spec, story.number),
            "tests_total": len(entries),
            "tests_passed": passed,
            "all_passed": bool(entries) and passed == len(entries),
        }

    def scenario_summary(self, spec: FeatureSpec, story: UserStory, scenario: AcceptanceScenario) -> Dict[str, Any]:
        """Displayed level, linked tests and their recorded statuses."""
        record = self.maturity.load(spec).story(story.number)
        scenario_record = record.scenarios.get(scenario.id) if record else None
        entries = scenario_record.tests if scenario_record else []
        passed = sum(1 for entry in entries if entry.status == "pass")

        linked = []
        for test in scenario.linked_tests:
            data = test.to_dict()
            data["status"] = (
                self.maturity.get_test_status(spec, story.number, scenario.id, test.test_name)
                if test.test_name
                else "unknown"
            )
            linked.append(data)

        return {
            "id": scenario.id,
            "number": scenario.number,
            "line": scenario.line,
            "given": scenario.given,
            "when": scenario.when,
            "then": scenario.then,
            "level": self.maturity.get_scenario_maturity(spec, story.number, scenario.id),
            "linked_tests": linked,
            "tests_total": len(entries),
            "tests_passed": passed,
        }

    def feature_tree(self, feature: Union[FeatureSpec, Path, str]) -> Dict[str, Any]:
        """Nested view of a feature for a tree UI."""
        spec = self.require_feature(feature)
        stories = []
        for story in spec.user_stories:
            summary = self.story_summary(spec, story)
            summary["description"] = story.description
            summary["scenarios"] = [
                self.scenario_summary(spec, story, scenario) for scenario in story.acceptance_scenarios
            ]
            stories.append(summary)

        record = self.maturity.load(spec)
        return {
            "name": spec.name,
            "display_name": spec.display_name,
            "number": spec.number,
            "spec_file_path": str(spec.spec_file_path),
            "plan_file_path": str(spec.plan_file_path) if spec.plan_file_path else None,
            "test_directory": self.test_directory(spec),
            "has_maturity_file": self.maturity.has_maturity_file(spec),
            "maturity_source": record.source_format,
            "user_stories": stories,
        }

    def list_features(self) -> List[Dict[str, Any]]:
        """Short listing of every feature with its displayed story levels."""
        features = []
        for spec in self.specs:
            features.append({
                "name": spec.name,
                "display_name": spec.display_name,
                "number": spec.number,
                "spec_file_path": str(spec.spec_file_path),
                "plan_file_path": str(spec.plan_file_path) if spec.plan_file_path else None,
                "test_directory": self._test_directories.get(spec.name),
                "user_stories": [
                    {
                        "key": story.key,
                        "title": story.title,
                        "priority": story.priority,
                        "level": self.maturity.get_user_story_maturity(spec, story.number),
                        "scenario_count": len(story.acceptance_scenarios),
                    }
                    for story in spec.user_stories
                ],
            })
        return features
