"""Tool-facing operations of the spec index.

:class:`SpecIndexManager` wraps a :class:`SpecWorkspace` and returns plain
dictionaries. Failures are logged with context and reported as
``{"error": ..., "suggestion": ...}`` payloads instead of raising.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .errors import SpecKitError
from .models import story_key
from .speckit_logging import get_logger, log_error_with_context, log_operation
from .workspace import SpecWorkspace

logger = get_logger("workflow")


def _error_payload(operation: str, error: Exception, suggestion: str, **context: Any) -> Dict[str, Any]:
    log_error_with_context(error, {"operation": operation, **context})
    payload: Dict[str, Any] = {
        "error": str(error),
        "error_type": type(error).__name__,
        "suggestion": suggestion,
    }
    if isinstance(error, SpecKitError):
        payload["error_code"] = error.code.value
        payload["file_path"] = str(error.file_path) if error.file_path else None
    return payload


def fresh_index(method: Callable[..., Dict[str, Any]]) -> Callable[..., Dict[str, Any]]:
    """Re-parse specs before the call so edits on disk are never served stale."""

    @functools.wraps(method)
    def wrapper(self: "SpecIndexManager", *args, **kwargs) -> Dict[str, Any]:
        refreshed = self.refresh()
        if "error" in refreshed:
            return refreshed
        logger.debug(f"Index of {self.root} refreshed for {method.__name__}")
        return method(self, *args, **kwargs)

    return wrapper


class SpecIndexManager:
    """Dictionary-returning facade over the spec index of one workspace."""

    def __init__(self, root: Path | str, specs_dir: str = "specs"):
        self.workspace = SpecWorkspace(root, specs_dir)

    @property
    def root(self) -> Path:
        return self.workspace.root

    def refresh(self) -> Dict[str, Any]:
        """Re-parse specs and re-link tests."""
        try:
            specs = self.workspace.refresh()
        except (SpecKitError, OSError) as e:
            return _error_payload("refresh", e, "Check that every spec.md under the specs directory is readable")
        return {"root": str(self.root), "feature_count": len(specs)}

    @fresh_index
    def list_features(self) -> Dict[str, Any]:
        """All features with their displayed story levels."""
        try:
            features = self.workspace.list_features()
        except (SpecKitError, OSError) as e:
            return _error_payload(
                "list_features", e, "Check that every spec.md under the specs directory is readable"
            )
        message = f"Found {len(features)} features" if features else (
            f"No features found under {self.workspace.specs_path}"
        )
        return {"root": str(self.root), "features": features, "count": len(features), "message": message}

    @fresh_index
    def get_feature_tree(self, feature: str) -> Dict[str, Any]:
        """Feature, stories, scenarios and linked tests with their levels."""
        try:
            tree = self.workspace.feature_tree(feature)
        except ValueError as e:
            return _error_payload("get_feature_tree", e, "Use list_features to see the available feature names",
                                  feature=feature)
        except (SpecKitError, OSError) as e:
            return _error_payload("get_feature_tree", e, "Check that the feature's files are readable",
                                  feature=feature)
        return {"feature": tree}

    @fresh_index
    def find_tests(self, feature: str, story_number: int, scenario_id: Optional[str] = None) -> Dict[str, Any]:
        """Tests linked to a user story or to one of its scenarios."""
        try:
            spec = self.workspace.require_feature(feature)
            test_dir = self.workspace.test_directory(spec)
            tests = self.workspace.find_tests(spec, story_number, scenario_id)
            suggested = self.workspace.suggest_test_file(spec, story_number)
        except ValueError as e:
            return _error_payload("find_tests", e, "Use list_features to see the available feature names",
                                  feature=feature)
        except (SpecKitError, OSError) as e:
            return _error_payload("find_tests", e, "Check that the test directory is readable", feature=feature)

        result: Dict[str, Any] = {
            "feature": spec.name,
            "story": story_key(story_number),
            "scenario_id": scenario_id,
            "test_directory": test_dir,
            "tests": [test.to_dict() for test in tests],
            "suggested_test_file": str(suggested) if suggested else None,
        }
        if not test_dir:
            result["suggestion"] = "Set a test directory with set_test_directory or discover_test_directories"
        return result

    @fresh_index
    def get_maturity(self, feature: str) -> Dict[str, Any]:
        """Stored maturity record and displayed story levels of a feature."""
        try:
            spec = self.workspace.require_feature(feature)
            store = self.workspace.maturity
            record = store.load(spec)
        except ValueError as e:
            return _error_payload("get_maturity", e, "Use list_features to see the available feature names",
                                  feature=feature)
        except (SpecKitError, OSError) as e:
            return _error_payload("get_maturity", e, "Check that maturity.json is readable", feature=feature)

        return {
            "feature": spec.name,
            "maturity_file": str(store.maturity_file_path(spec)),
            "has_maturity_file": store.has_maturity_file(spec),
            "source_format": record.source_format,
            "maturity": record.to_dict(),
            "story_levels": {
                story.key: store.get_user_story_maturity(spec, story.number) for story in spec.user_stories
            },
        }

    @fresh_index
    def set_scenario_maturity(self, feature: str, scenario_id: str, level: str) -> Dict[str, Any]:
        """Set the maturity level of a scenario."""
        try:
            with log_operation("set_scenario_maturity", feature=feature, scenario_id=scenario_id, level=level):
                result = self.workspace.set_scenario_maturity(feature, scenario_id, level)
        except ValueError as e:
            return _error_payload(
                "set_scenario_maturity", e,
                "Use a scenario id like US1-AS2 and one of the levels none, partial, complete",
                feature=feature, scenario_id=scenario_id,
            )
        except (SpecKitError, OSError) as e:
            return _error_payload("set_scenario_maturity", e, "Check that the feature directory is writable",
                                  feature=feature, scenario_id=scenario_id)
        result["message"] = f"{scenario_id} set to {result['level']}"
        return result

    @fresh_index
    def record_test_outcome(self, feature: str, identifier: str, exit_code: int) -> Dict[str, Any]:
        """Record the exit code of a finished test, scenario or story run."""
        try:
            with log_operation("record_test_outcome", feature=feature, identifier=identifier, exit_code=exit_code):
                result = self.workspace.record_test_outcome(feature, identifier, exit_code)
        except ValueError as e:
            return _error_payload("record_test_outcome", e, "Use list_features to see the available feature names",
                                  feature=feature, identifier=identifier)
        except (SpecKitError, OSError) as e:
            return _error_payload("record_test_outcome", e, "Check that the feature directory is writable",
                                  feature=feature, identifier=identifier)
        if not result["updated_entries"]:
            result["suggestion"] = "Add the test to maturity.json so its outcome can be recorded"
        return result

    @fresh_index
    def set_test_directory(self, feature: str, directory: Optional[str]) -> Dict[str, Any]:
        """Store (or clear, with None) the test directory of a feature."""
        try:
            value = self.workspace.set_test_directory(feature, directory)
            spec = self.workspace.require_feature(feature)
        except ValueError as e:
            return _error_payload("set_test_directory", e,
                                  "Pass a directory relative to the workspace root, e.g. tests/e2e",
                                  feature=feature, directory=directory)
        except (SpecKitError, OSError) as e:
            return _error_payload("set_test_directory", e, "Check that spec.md exists and is writable",
                                  feature=feature, directory=directory)
        linked = sum(len(s.linked_tests) for story in spec.user_stories for s in story.acceptance_scenarios)
        return {"feature": spec.name, "test_directory": value, "linked_tests": linked}

    @fresh_index
    def discover_test_directories(self, feature: str) -> Dict[str, Any]:
        """Candidate test directories from plan.md or the workspace layout."""
        try:
            config = self.workspace.discover_test_directories(feature)
        except ValueError as e:
            return _error_payload("discover_test_directories", e,
                                  "Use list_features to see the available feature names", feature=feature)
        except (SpecKitError, OSError) as e:
            return _error_payload("discover_test_directories", e, "Check that plan.md is readable", feature=feature)
        return config.to_dict()

    @fresh_index
    def build_run_command(self, feature: str, identifier: str, test_file: Optional[str] = None) -> Dict[str, Any]:
        """Command line for running a test, scenario or story."""
        try:
            command = self.workspace.build_run_command(feature, identifier, test_file)
        except ValueError as e:
            return _error_payload("build_run_command", e, "Use list_features to see the available feature names",
                                  feature=feature, identifier=identifier)
        except (SpecKitError, OSError) as e:
            return _error_payload("build_run_command", e, "Check that maturity.json is readable",
                                  feature=feature, identifier=identifier)
        if command is None:
            return {
                "command": None,
                "identifier": identifier,
                "suggestion": "Add a testConfig with a runCommand to the feature's maturity.json",
            }
        return {"identifier": identifier, **command}

    @fresh_index
    def clear_maturity_cache(self, feature: Optional[str] = None) -> Dict[str, Any]:
        """Drop cached maturity records after maturity.json was edited externally."""
        try:
            modification_count = self.workspace.clear_maturity_cache(feature)
        except ValueError as e:
            return _error_payload("clear_maturity_cache", e,
                                  "Use list_features to see the available feature names", feature=feature)
        return {"cleared": feature or "all", "modification_count": modification_count}
