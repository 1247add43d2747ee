"""
Git automation for knowledge updates. Every function here is best-effort:
failures are logged and reported as False, never raised.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


def _git(args: List[str], cwd: Optional[Union[str, Path]] = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )


def has_changes(cwd: Optional[Union[str, Path]] = None) -> bool:
    result = _git(["status", "--porcelain"], cwd=cwd)
    return bool(result.stdout.strip())


def commit_paths(
    paths: Sequence[Union[str, Path]], message: str, cwd: Optional[Union[str, Path]] = None
) -> bool:
    """Stage the given files and commit them with ``message``."""
    try:
        base = Path(cwd) if cwd else Path.cwd()
        for path in paths:
            _git(["add", os.path.relpath(Path(path).resolve(), base.resolve())], cwd=cwd)
        _git(["commit", "-m", message], cwd=cwd)
    except (OSError, subprocess.CalledProcessError) as e:
        stderr = getattr(e, "stderr", "") or ""
        logger.warning(f"Git automation failed ({message}): {e} {stderr.strip()}")
        logger.warning("You can commit the changes manually if needed.")
        return False

    logger.info(f"Git commit successful: {message}")
    return True


def commit_all(message: str, cwd: Optional[Union[str, Path]] = None) -> bool:
    """Stage everything and commit, skipping the commit when the tree is clean."""
    try:
        if not has_changes(cwd):
            logger.info(f"No changes to commit ({message})")
            return False
        _git(["add", "."], cwd=cwd)
        _git(["commit", "-m", message], cwd=cwd)
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning(f"Git commit failed ({message}): {e}")
        return False

    logger.info(f"Committed: {message}")
    return True
