"""Environment-driven settings of the spec index."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

DEFAULT_SPECS_DIR = "specs"
DEFAULT_LOG_LEVEL = "INFO"
# A directory containing one of these is taken as the workspace root.
PROJECT_MARKER_DIRECTORIES = ("specs", ".specify")

ENV_PROJECT_ROOT = "SPECKIT_PROJECT_ROOT"
ENV_SPECS_DIR = "SPECKIT_SPECS_DIR"
ENV_LOG_LEVEL = "SPECKIT_LOG_LEVEL"
ENV_LOG_FILE = "SPECKIT_LOG_FILE"


@dataclass(slots=True)
class IndexSettings:
    project_root: Optional[Path] = None
    specs_dir: str = DEFAULT_SPECS_DIR
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "IndexSettings":
        """Read settings from SPECKIT_* environment variables."""
        env_root = os.getenv(ENV_PROJECT_ROOT)
        log_file = os.getenv(ENV_LOG_FILE)
        return cls(
            project_root=Path(env_root).expanduser().resolve() if env_root else None,
            specs_dir=os.getenv(ENV_SPECS_DIR) or DEFAULT_SPECS_DIR,
            log_level=(os.getenv(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )


def candidate_bases(start: Optional[Path] = None) -> List[Path]:
    """The start directory (default cwd) followed by its parents."""
    base = (start or Path.cwd()).resolve()
    return [base, *base.parents]


def locate_workspace_root(start: Optional[Path] = None) -> Optional[Path]:
    """Walk up from start to the first directory holding a project marker."""
    for base in candidate_bases(start):
        for marker in PROJECT_MARKER_DIRECTORIES:
            if (base / marker).is_dir():
                return base
    return None


def resolve_root(root: Optional[str] = None, settings: Optional[IndexSettings] = None) -> Path:
    """Resolve the workspace root from an argument, the environment or a marker search.

    Raises:
        ValueError: If no usable root can be determined.
    """
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    settings = settings or IndexSettings.from_env()
    if settings.project_root is not None:
        if not settings.project_root.exists():
            raise ValueError(
                f"Environment variable {ENV_PROJECT_ROOT} points to '{settings.project_root}', which does not exist."
            )
        return settings.project_root

    detected_root = locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {ENV_PROJECT_ROOT} environment variable."
    )
