"""Global configuration for mongrate.

This module manages the global mongrate configuration stored in the data
directory. A few values can also come from the environment.
"""

import json
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .paths import get_config_file, ensure_directory


def default_allowed_tools() -> List[str]:
    return [
        "Read",
        "Write",
        "Edit",
        "Bash",
        "Glob",
        "Grep",
        "WebSearch",
        "WebFetch",
    ]


@dataclass
class GlobalConfig:
    """Global mongrate configuration.

    Stored in ~/.local/share/mongrate/config.json
    """

    # Repository cloning
    default_branch: str = "main"
    clone_depth: int = 100
    clone_timeout_sec: float = 300.0

    # Upper bound on the streaming part of one agent turn (None disables)
    turn_timeout_sec: Optional[float] = 3600.0

    # Streaming
    history_size: int = 100
    text_batch_interval_ms: int = 100
    log_preview_interval_sec: float = 2.0
    log_preview_chars: int = 200

    # Agent settings
    permission_mode: str = "bypassPermissions"
    allowed_tools: List[str] = field(default_factory=default_allowed_tools)
    model: Optional[str] = None
    max_buffer_size: Optional[int] = None

    # Defaults applied to new jobs
    default_mongo_url: Optional[str] = None
    default_github_token: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "GlobalConfig":
        """Load configuration from file, then apply environment overrides.

        Args:
            path: Path to config file. Defaults to standard location.

        Returns:
            GlobalConfig instance.
        """
        if path is None:
            path = get_config_file()

        config = cls()
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                config = cls.from_dict(data)
            except (json.JSONDecodeError, OSError):
                config = cls()

        return config.with_env_overrides()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalConfig":
        """Create config from dictionary.

        Unknown keys are ignored so older config files keep loading.

        Args:
            data: Dictionary with config values.

        Returns:
            GlobalConfig instance.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def with_env_overrides(self) -> "GlobalConfig":
        """Apply MONGODB_URI and GITHUB_TOKEN when the file leaves them unset."""
        if not self.default_mongo_url:
            self.default_mongo_url = os.environ.get("MONGODB_URI") or None
        if not self.default_github_token:
            self.default_github_token = os.environ.get("GITHUB_TOKEN") or None
        return self

    @property
    def text_batch_interval(self) -> float:
        """Text-delta batching window in seconds."""
        return self.text_batch_interval_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary representation.
        """
        return asdict(self)

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration to file.

        Args:
            path: Path to config file. Defaults to standard location.
        """
        if path is None:
            path = get_config_file()

        ensure_directory(path.parent)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")
