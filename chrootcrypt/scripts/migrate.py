#!/usr/bin/env python3
"""
chrootcrypt migration step

Moves the content of an unencrypted chroot into its freshly mounted
encrypted view, then removes the emptied source directory.

Rules:
- Every entry is moved, hidden ones included
- The first failed move stops the migration; a partial copy it left is removed
- The source directory is removed only after every entry was moved
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from chrootcrypt.core.errors import MigrationError

_migrate_logger = logging.getLogger("chrootcrypt.migrate")


@dataclass
class MigrationResult:
    """Outcome of one migration."""

    source: Path
    destination: Path
    moved: int = 0
    total: int = 0
    failed_entry: Optional[str] = None
    error: Optional[str] = None
    source_removed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.source_removed


def _remove_partial_copy(source_entry: Path, target: Path) -> Optional[OSError]:
    """
    Delete what a failed cross-filesystem move left at `target`.

    shutil.move falls back to copy + delete across filesystems, so a copy
    that fails midway leaves a partial entry in the destination while the
    source entry is intact. The destination entry did not exist before the
    move, so removing it loses nothing and lets a later run resume.

    Returns:
        The OSError that prevented cleanup, or None
    """
    if not os.path.lexists(target) or not os.path.lexists(source_entry):
        return None
    try:
        if os.path.isdir(target) and not os.path.islink(target):
            shutil.rmtree(target)
        else:
            os.unlink(target)
    except OSError as e:
        _migrate_logger.error(f"migrate.cleanup: target={target}, error={e}")
        return e
    _migrate_logger.info(f"migrate.cleanup: target={target}, removed=partial")
    return None


def migrate_contents(
    source: Path,
    destination: Path,
    on_progress: Optional[Callable[[str], None]] = None,
) -> MigrationResult:
    """
    Move every entry of `source` into `destination`, then rmdir `source`.

    Args:
        source: Unencrypted chroot directory
        destination: Mounted encrypted view
        on_progress: Called with the entry name after each successful move

    Returns:
        MigrationResult; check .ok. Never deletes a non-empty source.
    """
    source = Path(source)
    destination = Path(destination)
    result = MigrationResult(source=source, destination=destination)

    try:
        # os.listdir never yields "." or ".."
        entries = sorted(os.listdir(source))
    except OSError as e:
        result.error = f"Cannot list {source}: {e}"
        _migrate_logger.error(f"migrate.list: source={source}, error={e}")
        return result

    result.total = len(entries)
    _migrate_logger.info(f"migrate.start: source={source}, destination={destination}, entries={result.total}")

    for entry in entries:
        target = destination / entry
        try:
            # shutil.move would nest the entry inside an existing directory
            if os.path.lexists(target):
                raise FileExistsError(f"{target} already exists")
            shutil.move(str(source / entry), str(target))
        except (OSError, shutil.Error) as e:
            result.failed_entry = entry
            result.error = f"Failed to move {source / entry}: {e}"
            _migrate_logger.error(f"migrate.move: entry={entry}, moved={result.moved}/{result.total}, error={e}")
            if not isinstance(e, FileExistsError):
                cleanup_error = _remove_partial_copy(source / entry, target)
                if cleanup_error is not None:
                    result.error += f"; partial copy left at {target}: {cleanup_error}"
            return result
        result.moved += 1
        if on_progress is not None:
            on_progress(entry)

    try:
        os.rmdir(source)
    except OSError as e:
        result.error = f"Moved all entries but could not remove {source}: {e}"
        _migrate_logger.error(f"migrate.rmdir: source={source}, error={e}")
        return result

    result.source_removed = True
    _migrate_logger.info(f"migrate.done: source={source}, moved={result.moved}")
    return result


def migrate_or_raise(source: Path, destination: Path, on_progress=None) -> MigrationResult:
    """migrate_contents() that raises MigrationError on failure."""
    result = migrate_contents(source, destination, on_progress=on_progress)
    if not result.ok:
        raise MigrationError(result.error, entry=result.failed_entry)
    return result
