"""
Time-based retention for old report and log files.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger("m365_admin_reports.reporting.retention")


def prune_old_files(
    directory: Path,
    patterns: Iterable[str],
    max_age_days: int,
    now: Optional[float] = None,
) -> list[Path]:
    """
    Delete files in `directory` matching any glob pattern whose modification
    time is older than `max_age_days`. Missing directories are a no-op.

    Returns:
        The deleted paths.
    """
    if max_age_days <= 0 or not directory.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    deleted = []
    for pattern in patterns:
        for path in sorted(directory.glob(pattern)):
            if not path.is_file() or path.stat().st_mtime >= cutoff:
                continue
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not delete {path}: {e}")
                continue
            deleted.append(path)

    if deleted:
        logger.info(f"Pruned {len(deleted)} file(s) older than {max_age_days} days from {directory}")
    return deleted
