"""Core modules for mongrate.

This package contains the core functionality:
    - config: Global configuration management
    - paths: XDG-compliant path resolution
    - repo: Repository cloning
    - job: Job record and status types
    - store: Durable job storage
"""

from . import config
from . import job
from . import paths
from . import repo
from . import store

__all__ = [
    "config",
    "job",
    "paths",
    "repo",
    "store",
]
