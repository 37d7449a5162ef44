"""MCP server exposing the spec index: features, linked tests and maturity."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.resources import TextResource

from speckit_index.config import IndexSettings, resolve_root
from speckit_index.speckit_logging import setup_logging
from speckit_index.workflow import SpecIndexManager

mcp = FastMCP("speckit-index")

FEATURES_RESOURCE_URI = "speckit-index://features"

# One manager per resolved root so maturity caches survive between tool calls
_MANAGERS: Dict[Path, SpecIndexManager] = {}


def _manager(root: Optional[str]) -> SpecIndexManager:
    settings = IndexSettings.from_env()
    resolved = resolve_root(root, settings)
    manager = _MANAGERS.get(resolved)
    if manager is None or manager.workspace.specs_dir != settings.specs_dir:
        manager = SpecIndexManager(resolved, settings.specs_dir)
        _MANAGERS[resolved] = manager
    return manager


def _manager_optional(root: Optional[str]) -> Optional[SpecIndexManager]:
    try:
        return _manager(root)
    except ValueError:
        return None


def _root_error(error: ValueError) -> Dict[str, Any]:
    return {
        "error": str(error),
        "suggestion": "Provide the 'root' argument or set SPECKIT_PROJECT_ROOT.",
    }


@mcp.tool()
def list_features(root: Optional[str] = None) -> Dict[str, Any]:
    """List the features under specs/ with the displayed maturity of each user story.
    Every tool re-parses spec.md files, so edits made since the last call are picked up."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.list_features()


@mcp.tool()
def get_feature_tree(feature: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a feature's user stories, acceptance scenarios and linked tests,
    each with its maturity level and recorded pass counts."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.get_feature_tree(feature)


@mcp.tool()
def find_tests(
    feature: str,
    story_number: int,
    scenario_id: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Find the tests of a user story, or of one scenario (e.g. 'US1-AS2'),
    in the feature's configured test directory. @spec annotations take
    precedence over scenario ids in test names."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.find_tests(feature, story_number, scenario_id)


@mcp.tool()
def get_maturity(feature: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the maturity record of a feature (maturity.json, or the legacy
    maturity.md when no JSON record exists) and the displayed story levels."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.get_maturity(feature)


@mcp.tool()
def set_scenario_maturity(feature: str, scenario_id: str, level: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Set a scenario's maturity level: 'none', 'partial' or 'complete'.
    The story's overall level is recomputed and maturity.json rewritten."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.set_scenario_maturity(feature, scenario_id, level)


@mcp.tool()
def record_test_outcome(feature: str, identifier: str, exit_code: int, root: Optional[str] = None) -> Dict[str, Any]:
    """Record the exit code of a finished run. The identifier is a story ('US1'),
    a scenario ('US1-AS2') or a test name. Exit code 0 counts as passed."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.record_test_outcome(feature, identifier, exit_code)


@mcp.tool()
def set_test_directory(feature: str, directory: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Store the directory holding a feature's tests in the spec.md header.
    Omit the directory to remove the setting."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.set_test_directory(feature, directory)


@mcp.tool()
def discover_test_directories(feature: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Suggest test directories for a feature from its plan.md, falling back to
    common directories found in the workspace."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.discover_test_directories(feature)


@mcp.tool()
def build_run_command(
    feature: str,
    identifier: str,
    test_file: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Render the command running a test, scenario or story from the testConfig
    in maturity.json. The command is returned, not executed."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.build_run_command(feature, identifier, test_file)


@mcp.tool()
def clear_maturity_cache(feature: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Forget cached maturity records of one feature, or of all features, after
    maturity.json was edited outside this server."""

    try:
        manager = _manager(root)
    except ValueError as e:
        return _root_error(e)
    return manager.clear_maturity_cache(feature)


def _text_resource(text: str) -> TextResource:
    return TextResource(uri=FEATURES_RESOURCE_URI, name="features", text=text, mime_type="text/plain")


@mcp.resource(FEATURES_RESOURCE_URI)
def resource_features():
    """Resource view listing the indexed features and their story levels."""

    manager = _manager_optional(None)
    if not manager:
        return _text_resource(
            "No project root detected. Launch tools with a 'root' argument or set SPECKIT_PROJECT_ROOT."
        )

    listing = manager.list_features()
    if "error" in listing:
        return _text_resource(f"Failed to read specs: {listing['error']}")
    features = listing["features"]
    if not features:
        return _text_resource("No features found.")

    lines = ["Spec Index Features"]
    for feature in features:
        lines.append("")
        lines.append(f"- {feature['name']}: {feature['display_name']}")
        if feature.get("test_directory"):
            lines.append(f"  Tests: {feature['test_directory']}")
        for story in feature["user_stories"]:
            lines.append(f"  {story['key']} [{story['priority']}] {story['title']} - {story['level']}")

    return _text_resource("\n".join(lines))


if __name__ == "__main__":
    settings = IndexSettings.from_env()
    setup_logging(settings.log_level, settings.log_file)
    mcp.run(transport="stdio")
