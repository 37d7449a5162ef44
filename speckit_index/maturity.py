"""Per-feature maturity records stored next to spec.md.

The current format is ``maturity.json``. A legacy ``maturity.md`` is still
read when no valid JSON record exists, but it is never rewritten: the first
mutation produces a ``maturity.json`` instead. Parsed records are held in a
:class:`MaturityCache` keyed by the resolved record path.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, TypeVar, Union

from .errors import IoFailure
from .models import (
    MATURITY_LEVELS,
    TEST_STATUSES,
    FeatureSpec,
    MaturityRecord,
    ScenarioMaturity,
    StoryMaturity,
    TestConfig,
    TestEntry,
    lowest_level,
    normalize_level,
    story_key,
)
from .speckit_logging import get_logger, log_cache_cleared, log_maturity_updated

MATURITY_FILE_NAME = "maturity.json"
LEGACY_MATURITY_FILE_NAME = "maturity.md"

LEGACY_LAST_UPDATED = re.compile(r"^lastUpdated:\s*(.*)$")
LEGACY_STORY_HEADER = re.compile(r"^##\s+(US\d+)")
LEGACY_ENTRY = re.compile(r"^-\s+\*\*([^*]+)\*\*:\s*(\w+)(?:\s*\|\s*tests:\s*\[([^\]]*)\])?")
LEGACY_NAMED_TEST = re.compile(r"^(.+)#(.+):\s*([✓✗?]|pass|fail|unknown)$")
LEGACY_LINE_TEST = re.compile(r"^([^:]+):(\d+):\s*([✓✗?]|pass|fail|unknown)$")

SpecRef = Union[str, Path, FeatureSpec]
T = TypeVar("T")

logger = get_logger("maturity")


def _spec_file(spec: SpecRef) -> Path:
    if isinstance(spec, FeatureSpec):
        return Path(spec.spec_file_path)
    return Path(spec)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _legacy_status(value: str) -> str:
    if value in ("✓", "pass"):
        return "pass"
    if value in ("✗", "fail"):
        return "fail"
    return "unknown"


def parse_legacy_maturity(content: str) -> MaturityRecord:
    """Parse a legacy maturity.md; lines outside the grammar are skipped."""
    record = MaturityRecord(source_format="legacy")
    current: Optional[StoryMaturity] = None

    for line in content.splitlines():
        last_updated = LEGACY_LAST_UPDATED.match(line)
        if last_updated:
            record.last_updated = last_updated.group(1).strip() or None
            continue

        header = LEGACY_STORY_HEADER.match(line)
        if header:
            current = record.user_stories.setdefault(header.group(1), StoryMaturity())
            continue

        entry = LEGACY_ENTRY.match(line)
        if not entry or current is None:
            continue

        key, level, tests_text = entry.group(1).strip(), normalize_level(entry.group(2)), entry.group(3)
        if key.lower() == "overall":
            current.overall = level
            continue

        tests: List[TestEntry] = []
        for part in (tests_text or "").split(","):
            part = part.strip()
            named = LEGACY_NAMED_TEST.match(part)
            if named:
                tests.append(TestEntry(named.group(1), named.group(2), _legacy_status(named.group(3))))
                continue
            by_line = LEGACY_LINE_TEST.match(part)
            if by_line:
                tests.append(
                    TestEntry(by_line.group(1), f"{by_line.group(1)}:{by_line.group(2)}", _legacy_status(by_line.group(3)))
                )
        current.scenarios[key] = ScenarioMaturity(level=level, tests=tests)

    return record


class MaturityCache:
    """Parsed maturity records keyed by resolved record path.

    ``modification_count`` increases on every store and invalidation, so a
    caller can tell whether anything changed since it last looked.
    """

    def __init__(self):
        self._records: Dict[Path, MaturityRecord] = {}
        self.modification_count = 0

    def __contains__(self, path: Path) -> bool:
        return path in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, path: Path) -> Optional[MaturityRecord]:
        return self._records.get(path)

    def store(self, path: Path, record: MaturityRecord) -> None:
        self._records[path] = record
        self.modification_count += 1

    def invalidate(self, path: Path) -> bool:
        """Drop one record; returns whether it was cached."""
        self.modification_count += 1
        return self._records.pop(path, None) is not None

    def invalidate_all(self) -> int:
        """Drop every record; returns how many were cached."""
        count = len(self._records)
        self._records.clear()
        self.modification_count += 1
        return count


class MaturityStore:
    """Read and update the maturity record of each feature."""

    def __init__(self, cache: Optional[MaturityCache] = None):
        self.cache = cache if cache is not None else MaturityCache()

    # Paths

    def maturity_file_path(self, spec: SpecRef) -> Path:
        return _spec_file(spec).parent / MATURITY_FILE_NAME

    def legacy_file_path(self, spec: SpecRef) -> Path:
        return _spec_file(spec).parent / LEGACY_MATURITY_FILE_NAME

    def has_maturity_file(self, spec: SpecRef) -> bool:
        return self.maturity_file_path(spec).is_file()

    def _cache_key(self, spec: SpecRef) -> Path:
        return self.maturity_file_path(spec).resolve()

    # Reads

    def load(self, spec: SpecRef) -> MaturityRecord:
        """Cached record of a feature.

        The returned record is shared with the cache and must not be
        modified; use the mutation methods instead.
        """
        key = self._cache_key(spec)
        record = self.cache.get(key)
        if record is None:
            record = self._read_record(spec)
            self.cache.store(key, record)
        return record

    def get_scenario_maturity(self, spec: SpecRef, story_number: int, scenario_id: str) -> str:
        story = self.load(spec).story(story_number)
        if story is None or scenario_id not in story.scenarios:
            return "none"
        return story.scenarios[scenario_id].level

    def get_user_story_maturity(self, spec: SpecRef, story_number: int) -> str:
        """Lowest of the stored overall and every scenario level."""
        story = self.load(spec).story(story_number)
        if story is None:
            return "none"
        return lowest_level([story.overall, *(s.level for s in story.scenarios.values())])

    def get_test_status(self, spec: SpecRef, story_number: int, scenario_id: str, test_name: str) -> str:
        """Status of a test by name or 'file#name' id; 'unknown' when not recorded."""
        story = self.load(spec).story(story_number)
        if story is None or scenario_id not in story.scenarios:
            return "unknown"
        for entry in story.scenarios[scenario_id].tests:
            if test_name in (entry.test_name, f"{Path(entry.file_path).name}#{entry.test_name}"):
                return entry.status
        return "unknown"

    def find_test_entries(self, spec: SpecRef, test_name: str) -> List[Tuple[str, TestEntry]]:
        """Every (scenario id, entry) pair recording a test of that name."""
        matches = []
        for story in self.load(spec).user_stories.values():
            for scenario_id, scenario in story.scenarios.items():
                for entry in scenario.tests:
                    if entry.test_name == test_name:
                        matches.append((scenario_id, entry))
        return matches

    def get_test_config(self, spec: SpecRef) -> Optional[TestConfig]:
        return self.load(spec).test_config

    # Mutations

    def set_scenario_maturity(self, spec: SpecRef, story_number: int, scenario_id: str, level: str) -> None:
        """Set a scenario's level and recompute its story's overall."""
        if level not in MATURITY_LEVELS:
            raise ValueError(f"Invalid maturity level '{level}'. Expected one of: {', '.join(MATURITY_LEVELS)}")

        def change(record: MaturityRecord) -> None:
            record.ensure_scenario(story_number, scenario_id).level = level
            record.ensure_story(story_number).recalculate_overall()

        self._mutate(spec, change)
        log_maturity_updated(_spec_file(spec).parent.name, scenario_id, level)

    def set_test_config(self, spec: SpecRef, test_config: Optional[TestConfig]) -> None:
        def change(record: MaturityRecord) -> None:
            record.test_config = test_config

        self._mutate(spec, change)

    def upsert_test_entry(
        self,
        spec: SpecRef,
        story_number: int,
        scenario_id: str,
        file_path: str,
        test_name: str,
        status: str = "unknown",
        last_run: Optional[str] = None,
    ) -> None:
        """Add a test to a scenario or update the entry with the same test name."""
        self._check_status(status)

        def change(record: MaturityRecord) -> None:
            scenario = record.ensure_scenario(story_number, scenario_id)
            entry = scenario.find_test(test_name)
            if entry is None:
                scenario.tests.append(TestEntry(file_path, test_name, status, last_run))
            else:
                entry.file_path = file_path
                entry.status = status
                if last_run is not None:
                    entry.last_run = last_run

        self._mutate(spec, change)

    def set_test_status(
        self,
        spec: SpecRef,
        story_number: int,
        scenario_id: str,
        test_name: str,
        status: str,
        file_path: str = "",
    ) -> None:
        """Record a run status for one test, dated today."""
        self._check_status(status)
        today = date.today().isoformat()

        def change(record: MaturityRecord) -> None:
            scenario = record.ensure_scenario(story_number, scenario_id)
            entry = scenario.find_test(test_name)
            if entry is None:
                scenario.tests.append(TestEntry(file_path, test_name, status, today))
            else:
                entry.status = status
                entry.last_run = today

        self._mutate(spec, change)

    def update_test_result(self, spec: SpecRef, test_name: str, passed: bool) -> int:
        """Stamp the outcome of a single test run on every entry of that test."""
        return self._stamp_results(spec, lambda story_id, scenario_id, entry: entry.test_name == test_name, passed)

    def update_scenario_result(self, spec: SpecRef, scenario_id: str, passed: bool) -> int:
        """Stamp the outcome of a scenario run on every test of the scenario."""
        return self._stamp_results(spec, lambda story_id, sid, entry: sid == scenario_id, passed)

    def update_user_story_result(self, spec: SpecRef, story_number: int, passed: bool) -> int:
        """Stamp the outcome of a story run on every test of the story."""
        key = story_key(story_number)
        return self._stamp_results(spec, lambda story_id, sid, entry: story_id == key, passed)

    def clear_cache(self, spec: Optional[SpecRef] = None) -> None:
        """Forget cached records so the next read goes to disk."""
        if spec is None:
            count = self.cache.invalidate_all()
            logger.debug(f"Cleared {count} cached maturity records")
            log_cache_cleared()
            return
        self.cache.invalidate(self._cache_key(spec))
        log_cache_cleared(_spec_file(spec).parent.name)

    # Internals

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in TEST_STATUSES:
            raise ValueError(f"Invalid test status '{status}'. Expected one of: {', '.join(TEST_STATUSES)}")

    def _stamp_results(
        self,
        spec: SpecRef,
        selects: Callable[[str, str, TestEntry], bool],
        passed: bool,
    ) -> int:
        status = "pass" if passed else "fail"
        today = date.today().isoformat()
        current = self.load(spec)
        if not any(
            selects(key, scenario_id, entry)
            for key, story in current.user_stories.items()
            for scenario_id, scenario in story.scenarios.items()
            for entry in scenario.tests
        ):
            return 0

        def change(record: MaturityRecord) -> int:
            updated = 0
            for key, story in record.user_stories.items():
                for scenario_id, scenario in story.scenarios.items():
                    for entry in scenario.tests:
                        if selects(key, scenario_id, entry):
                            entry.status = status
                            entry.last_run = today
                            updated += 1
            return updated

        updated = self._mutate(spec, change)
        logger.info(f"Recorded {status} for {updated} test entries of {_spec_file(spec).parent.name}")
        return updated

    def _mutate(self, spec: SpecRef, change: Callable[[MaturityRecord], T]) -> T:
        # Work on a copy so the cached record stays intact if the write fails
        record = copy.deepcopy(self.load(spec))
        result = change(record)
        record.last_updated = _utc_timestamp()
        self._write(spec, record)
        record.source_format = "json"
        self.cache.store(self._cache_key(spec), record)
        return result

    def _write(self, spec: SpecRef, record: MaturityRecord) -> None:
        path = self.maturity_file_path(spec)
        payload = json.dumps(record.to_dict(), indent=2, ensure_ascii=False) + "\n"
        temp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent, prefix=".maturity-", suffix=".tmp", delete=False
            ) as handle:
                temp_name = handle.name
                handle.write(payload)
            os.replace(temp_name, path)
        except OSError as e:
            if temp_name and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise IoFailure(f"Failed to write maturity record: {e.strerror or e}", path) from e
        logger.debug(f"Wrote {path}")

    def _read_record(self, spec: SpecRef) -> MaturityRecord:
        json_path = self.maturity_file_path(spec)
        if json_path.is_file():
            text = self._read_text(json_path)
            try:
                record = MaturityRecord.from_dict(json.loads(text))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(f"Ignoring invalid maturity record {json_path}: {e}")
            else:
                logger.debug(f"Loaded {json_path} (json)")
                return record

        legacy_path = self.legacy_file_path(spec)
        if legacy_path.is_file():
            record = parse_legacy_maturity(self._read_text(legacy_path))
            logger.info(f"Loaded legacy maturity record {legacy_path}")
            return record

        return MaturityRecord(source_format="empty")

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"Maturity record {path} is not valid UTF-8: {e}")
            return ""
        except OSError as e:
            raise IoFailure(f"Failed to read maturity record: {e.strerror or e}", path) from e
