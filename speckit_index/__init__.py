"""Spec index: parse spec.md trees, link tests and track scenario maturity.

Main components:
- models: Data structures for features, stories, scenarios and maturity
- spec_parser: spec.md parser
- test_linker: Test file discovery and scenario matching
- maturity: maturity.json store with legacy maturity.md fallback
- workspace: Index of one workspace root
- workflow: Dictionary-returning operations for the MCP tools
"""

from .config import IndexSettings, resolve_root
from .errors import (
    IoFailure,
    ParseError,
    SpecFileNotFoundError,
    SpecKitError,
    SpecKitErrorCode,
)
from .maturity import MaturityCache, MaturityStore
from .metadata import SpecMetadata, SpecMetadataStore
from .models import (
    MATURITY_LEVELS,
    TEST_STATUSES,
    AcceptanceScenario,
    FeatureSpec,
    IntegrationTest,
    MaturityRecord,
    ScenarioMaturity,
    StoryMaturity,
    TestConfig,
    TestEntry,
    UserStory,
)
from .plan_parser import PlanParser, TestDirectoryConfig
from .spec_parser import ParserState, SpecParser, StoryScanner
from .test_linker import TestLinker, filter_tests_for_scenario
from .workflow import SpecIndexManager
from .workspace import SpecWorkspace

__all__ = [
    "AcceptanceScenario",
    "FeatureSpec",
    "IndexSettings",
    "IntegrationTest",
    "IoFailure",
    "MATURITY_LEVELS",
    "MaturityCache",
    "MaturityRecord",
    "MaturityStore",
    "ParseError",
    "ParserState",
    "PlanParser",
    "ScenarioMaturity",
    "SpecFileNotFoundError",
    "SpecIndexManager",
    "SpecKitError",
    "SpecKitErrorCode",
    "SpecMetadata",
    "SpecMetadataStore",
    "SpecParser",
    "SpecWorkspace",
    "StoryMaturity",
    "StoryScanner",
    "TEST_STATUSES",
    "TestConfig",
    "TestDirectoryConfig",
    "TestEntry",
    "TestLinker",
    "UserStory",
    "filter_tests_for_scenario",
    "resolve_root",
]
