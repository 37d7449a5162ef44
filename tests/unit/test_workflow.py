"""Unit tests for the spec index manager.

This module tests the dictionary payloads returned to tools and the
conversion of failures into error payloads.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from speckit_index.errors import IoFailure
from speckit_index.workflow import SpecIndexManager


class TestManagerInitialization:
    """Test cases for SpecIndexManager initialization."""

    def test_manager_creation(self, workspace_root):
        """Test creating a manager with a string root."""
        manager = SpecIndexManager(str(workspace_root))

        assert manager.root == Path(workspace_root).resolve()
        assert manager.workspace.specs_dir == "specs"

    def test_refresh(self, workspace_root):
        """Test the refresh summary."""
        assert SpecIndexManager(workspace_root).refresh() == {
            "root": str(workspace_root.resolve()),
            "feature_count": 1,
        }

    def test_refresh_reports_unreadable_spec(self, workspace_root):
        """Test that a read failure during refresh becomes an error payload."""
        manager = SpecIndexManager(workspace_root)
        with patch.object(
            manager.workspace.parser, "parse_all_specs", side_effect=IoFailure("Permission denied", "spec.md")
        ):
            result = manager.refresh()

        assert result["error_code"] == "IO_FAILURE"
        assert result["file_path"] == "spec.md"
        assert "suggestion" in result

    def test_operations_see_specs_added_later(self, workspace_root, sample_spec_text):
        """Test that a feature created after the first call is found by later operations."""
        manager = SpecIndexManager(workspace_root)
        assert manager.list_features()["count"] == 1

        new_dir = workspace_root / "specs" / "002-new"
        new_dir.mkdir()
        (new_dir / "spec.md").write_text(sample_spec_text, encoding="utf-8")

        assert manager.get_feature_tree("002-new")["feature"]["name"] == "002-new"
        assert manager.set_scenario_maturity("002-new", "US1-AS1", "partial")["level"] == "partial"

    def test_operation_reports_refresh_failure(self, workspace_root):
        """Test that an operation returns the refresh error instead of stale data."""
        manager = SpecIndexManager(workspace_root)
        manager.list_features()
        with patch.object(
            manager.workspace.parser, "parse_all_specs", side_effect=IoFailure("Permission denied", "spec.md")
        ):
            result = manager.get_feature_tree("001-user-auth")

        assert result["error_code"] == "IO_FAILURE"
        assert "feature" not in result


class TestFeatureQueries:
    """Test cases for read-only manager operations."""

    def test_list_features(self, workspace_root):
        """Test the feature listing."""
        result = SpecIndexManager(workspace_root).list_features()

        assert result["count"] == 1
        assert result["message"] == "Found 1 features"
        assert result["features"][0]["name"] == "001-user-auth"

    def test_list_features_empty(self, tmp_path):
        """Test the message for a workspace without specs."""
        result = SpecIndexManager(tmp_path).list_features()

        assert result["count"] == 0
        assert result["message"].startswith("No features found under")

    def test_unknown_feature(self, workspace_root):
        """Test the error payload for an unknown feature."""
        with patch("speckit_index.workflow.log_error_with_context") as mock_log:
            result = SpecIndexManager(workspace_root).get_feature_tree("999-missing")

        assert result["error_type"] == "ValueError"
        assert "999-missing" in result["error"]
        assert result["suggestion"] == "Use list_features to see the available feature names"
        assert mock_log.call_args.args[1] == {"operation": "get_feature_tree", "feature": "999-missing"}

    def test_get_feature_tree(self, linked_workspace_root):
        """Test the nested feature view."""
        tree = SpecIndexManager(linked_workspace_root).get_feature_tree("001-user-auth")["feature"]

        assert tree["name"] == "001-user-auth"
        assert [s["key"] for s in tree["user_stories"]] == ["US1", "US2"]
        assert tree["user_stories"][0]["scenarios"][0]["linked_tests"][0]["spec_annotation"] == "001-user-auth/US1-AS1"

    def test_find_tests_without_directory(self, workspace_root):
        """Test the suggestion when no test directory is set."""
        result = SpecIndexManager(workspace_root).find_tests("001-user-auth", 1)

        assert result["tests"] == []
        assert result["test_directory"] is None
        assert result["suggested_test_file"] is None
        assert "set_test_directory" in result["suggestion"]

    def test_find_tests(self, linked_workspace_root):
        """Test scenario tests and the suggested file."""
        result = SpecIndexManager(linked_workspace_root).find_tests("001-user-auth", 1, "US1-AS2")

        assert result["story"] == "US1"
        assert [t["test_name"] for t in result["tests"]] == ["US1-AS2: rejects a wrong password"]
        assert result["suggested_test_file"].endswith("us1-sign-in.spec.ts")
        assert "suggestion" not in result

    def test_get_maturity_without_file(self, workspace_root):
        """Test the maturity view before anything was recorded."""
        result = SpecIndexManager(workspace_root).get_maturity("001-user-auth")

        assert result["has_maturity_file"] is False
        assert result["source_format"] == "empty"
        assert result["maturity"] == {"lastUpdated": None, "userStories": {}}
        assert result["story_levels"] == {"US1": "none", "US2": "none"}


class TestManagerUpdates:
    """Test cases for manager operations that write."""

    def test_set_scenario_maturity(self, workspace_root):
        """Test the update payload and the maturity view afterwards."""
        manager = SpecIndexManager(workspace_root)

        result = manager.set_scenario_maturity("001-user-auth", "US2-AS1", "complete")

        assert result["message"] == "US2-AS1 set to complete"
        assert result["story_level"] == "complete"
        maturity = manager.get_maturity("001-user-auth")
        assert maturity["source_format"] == "json"
        assert maturity["story_levels"] == {"US1": "none", "US2": "complete"}

    def test_set_scenario_maturity_invalid_level(self, workspace_root):
        """Test that an invalid level becomes an error payload."""
        result = SpecIndexManager(workspace_root).set_scenario_maturity("001-user-auth", "US1-AS1", "done")

        assert result["error_type"] == "ValueError"
        assert "none, partial, complete" in result["suggestion"]

    def test_write_failure_payload(self, workspace_root):
        """Test that a failed write is reported with its code and path."""
        manager = SpecIndexManager(workspace_root)
        failure = IoFailure("No space left on device", workspace_root / "maturity.json")

        with patch.object(manager.workspace.maturity, "_write", side_effect=failure):
            result = manager.set_scenario_maturity("001-user-auth", "US1-AS1", "partial")

        assert result["error_code"] == "IO_FAILURE"
        assert result["suggestion"] == "Check that the feature directory is writable"
        assert manager.get_maturity("001-user-auth")["source_format"] == "empty"

    def test_record_test_outcome_without_entries(self, workspace_root):
        """Test the suggestion when no recorded test matches."""
        result = SpecIndexManager(workspace_root).record_test_outcome("001-user-auth", "US1", 0)

        assert result["updated_entries"] == 0
        assert "maturity.json" in result["suggestion"]

    def test_set_test_directory(self, workspace_root, sample_test_source):
        """Test setting a directory and counting linked tests."""
        (workspace_root / "tests" / "e2e" / "us1-sign-in.spec.ts").write_text(sample_test_source, encoding="utf-8")

        result = SpecIndexManager(workspace_root).set_test_directory("001-user-auth", "tests/e2e")

        assert result == {"feature": "001-user-auth", "test_directory": "tests/e2e", "linked_tests": 2}

    def test_set_test_directory_outside_workspace(self, workspace_root, tmp_path_factory):
        """Test the payload for a directory outside the workspace."""
        outside = tmp_path_factory.mktemp("outside")
        result = SpecIndexManager(workspace_root).set_test_directory("001-user-auth", str(outside))

        assert "outside the workspace" in result["error"]
        assert "relative to the workspace root" in result["suggestion"]

    def test_discover_test_directories(self, workspace_root):
        """Test the discovery payload."""
        result = SpecIndexManager(workspace_root).discover_test_directories("001-user-auth")

        assert result["directories"] == ["tests/e2e"]
        assert result["source"] == "workspace"

    def test_build_run_command_without_config(self, workspace_root):
        """Test the payload when no testConfig exists."""
        result = SpecIndexManager(workspace_root).build_run_command("001-user-auth", "US1")

        assert result["command"] is None
        assert "testConfig" in result["suggestion"]

    @pytest.mark.parametrize("feature", [None, "001-user-auth"])
    def test_clear_maturity_cache(self, workspace_root, feature):
        """Test clearing all or one cached record."""
        result = SpecIndexManager(workspace_root).clear_maturity_cache(feature)

        assert result["cleared"] == (feature or "all")
        assert result["modification_count"] >= 1
