"""Repository cloning for mongrate.

Each job gets a shallow, single-branch clone of its source repository in its
own workspace directory. Git runs as an asyncio subprocess so a slow clone
never blocks other jobs.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from .paths import ensure_directory

logger = logging.getLogger(__name__)

REDACTED = "***"


class RepoError(Exception):
    """Error during repository operations."""

    pass


def build_clone_url(repo_url: str, credential: Optional[str] = None) -> str:
    """Embed an access token into an HTTPS clone URL.

    Non-HTTPS URLs (ssh, local paths) are returned unchanged, as are URLs
    that already carry credentials.

    Args:
        repo_url: Repository URL as given by the user.
        credential: Optional access token.

    Returns:
        URL suitable for ``git clone``.
    """
    if not credential:
        return repo_url

    parts = urlsplit(repo_url)
    if parts.scheme != "https" or "@" in parts.netloc:
        return repo_url

    return urlunsplit(parts._replace(netloc=f"{credential}@{parts.netloc}"))


def redact(text: str, credential: Optional[str]) -> str:
    """Remove a credential from text destined for logs or errors."""
    if credential and text:
        return text.replace(credential, REDACTED)
    return text


async def run_git(
    args: List[str],
    cwd: Optional[Path] = None,
    timeout: float = 300.0,
    credential: Optional[str] = None,
) -> str:
    """Run a git command and return its stdout.

    Args:
        args: Git command arguments (without 'git' prefix).
        cwd: Working directory. Defaults to current directory.
        timeout: Seconds before the process is killed.
        credential: Secret to scrub from any error message.

    Returns:
        Decoded standard output.

    Raises:
        RepoError: If git is missing, times out, or exits non-zero.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise RepoError("git is not installed or not in PATH")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise RepoError(f"git {args[0]} timed out after {timeout:g} seconds") from e

    if process.returncode != 0:
        error_msg = stderr.decode(errors="replace").strip() or f"git {args[0]} failed"
        raise RepoError(redact(error_msg, credential))

    return stdout.decode(errors="replace")


async def clone_repository(
    repo_url: str,
    branch: Optional[str],
    dest: Path,
    credential: Optional[str] = None,
    depth: int = 100,
    timeout: float = 300.0,
) -> Path:
    """Shallow-clone a single branch of a repository into ``dest``.

    Args:
        repo_url: Repository URL.
        branch: Branch to check out. Defaults to main.
        dest: Target directory; must be empty or absent.
        credential: Optional token embedded into HTTPS URLs.
        depth: History depth to fetch.
        timeout: Seconds before the clone is abandoned.

    Returns:
        The destination path.

    Raises:
        RepoError: If the clone fails.
    """
    ensure_directory(dest.parent)
    logger.debug("Cloning %s (branch %s) into %s", redact(repo_url, credential), branch, dest)

    await run_git(
        [
            "clone",
            "--branch",
            branch or "main",
            "--single-branch",
            "--depth",
            str(depth),
            build_clone_url(repo_url, credential),
            str(dest),
        ],
        timeout=timeout,
        credential=credential,
    )
    return dest
