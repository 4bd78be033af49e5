"""XDG-compliant path resolution for mongrate.

Directory structure:
    ~/.local/share/mongrate/         # MONGRATE_DATA_DIR
    ├── jobs/                        # One JSON record per job
    │   └── {job_id}.json
    ├── workspaces/                  # Repository clones (one per job)
    │   └── {job_id}/
    └── config.json                  # Global settings
"""

import os
from pathlib import Path

import platformdirs


def get_data_dir() -> Path:
    """Get the mongrate data directory.

    Uses XDG standard paths via platformdirs:
    - Linux: ~/.local/share/mongrate
    - macOS: ~/Library/Application Support/mongrate
    - Windows: ~/AppData/Local/mongrate

    Can be overridden with MONGRATE_DATA_DIR environment variable.

    Returns:
        Path to the data directory.
    """
    env_dir = os.environ.get("MONGRATE_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return Path(platformdirs.user_data_dir("mongrate", appauthor=False))


def get_jobs_dir() -> Path:
    """Get the directory holding job records.

    Returns:
        Path to jobs directory (~/.local/share/mongrate/jobs).
    """
    return get_data_dir() / "jobs"


def get_workspaces_dir() -> Path:
    """Get the directory holding per-job repository clones.

    Returns:
        Path to workspaces directory (~/.local/share/mongrate/workspaces).
    """
    return get_data_dir() / "workspaces"


def get_config_file() -> Path:
    """Get the path to the global config file.

    Returns:
        Path to config.json in data directory.
    """
    return get_data_dir() / "config.json"


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        The same path, for chaining.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
