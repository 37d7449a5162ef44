"""Shared fixtures: a small workspace with one feature and one test file."""

import pytest

SAMPLE_SPEC = """# Feature Specification: User Auth

## User Scenarios & Testing

### User Story 1 - Sign in (Priority: P1)

A user signs in with email and password.

**Why this priority**: Nothing else works without an account.

**Independent Test**: Sign in with a seeded account.

**Acceptance Scenarios**:

1. **Given** a registered user, **When** they submit valid credentials, **Then** they see the dashboard
2. **Given** a registered user, **When** they submit a wrong password, **Then** an error is shown

---

### User Story 2 - Reset password (Priority: P2)

A user resets a forgotten password.

**Acceptance Scenarios**:

1. **Given** a registered user, **When** they request a reset, **Then** an email is sent

---

## Requirements
"""

SAMPLE_TEST_SOURCE = """import { test, expect } from '@playwright/test';

// @spec: 001-user-auth/US1-AS1
test('signs in with valid credentials', async ({ page }) => {
  await page.goto('/login');
});

test('US1-AS2: rejects a wrong password', async ({ page }) => {
  const body = `
test('not a real test', () => {})
`;
});
"""


@pytest.fixture
def sample_spec_text():
    """Spec with two stories: US1 (P1, two scenarios) and US2 (P2, one scenario)."""
    return SAMPLE_SPEC


@pytest.fixture
def sample_test_source():
    """Playwright file with one annotated test, one named test and a template literal."""
    return SAMPLE_TEST_SOURCE


@pytest.fixture
def workspace_root(tmp_path):
    """Workspace holding specs/001-user-auth/spec.md and an empty tests/e2e."""
    feature_dir = tmp_path / "specs" / "001-user-auth"
    feature_dir.mkdir(parents=True)
    (feature_dir / "spec.md").write_text(SAMPLE_SPEC, encoding="utf-8")
    (tmp_path / "tests" / "e2e").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def spec_file(workspace_root):
    """Path of the sample feature's spec.md."""
    return workspace_root / "specs" / "001-user-auth" / "spec.md"


@pytest.fixture
def linked_workspace_root(workspace_root):
    """Sample workspace with a us1 test file and testDirectory configured."""
    spec_path = workspace_root / "specs" / "001-user-auth" / "spec.md"
    spec_path.write_text("---\ntestDirectory: tests/e2e\n---\n" + SAMPLE_SPEC, encoding="utf-8")
    (workspace_root / "tests" / "e2e" / "us1-sign-in.spec.ts").write_text(SAMPLE_TEST_SOURCE, encoding="utf-8")
    return workspace_root
