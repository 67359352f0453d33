# core/mounts.py - Live mount table queries
"""
The kernel mount table is the only authority on whether a storage path is
mounted. It is read fresh on every query and never cached, since another
process may mount or unmount at any time. The mount helper's exit status is
not trusted for this.
"""

import logging
import re
from pathlib import Path
from typing import Iterator, NamedTuple

from chrootcrypt.core.constants import Defaults

_mounts_logger = logging.getLogger("chrootcrypt.mounts")

# /proc/mounts escapes space, tab, newline and backslash as \ooo
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


class MountEntry(NamedTuple):
    source: str
    target: str
    fstype: str
    options: str


def unescape_mount_field(field: str) -> str:
    """Decode the octal escapes used by /proc/mounts."""
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


class MountTable:
    """
    Reader for a /proc/mounts-format file.

    Usage:
        table = MountTable()
        if table.is_mounted(storage_path):
            ...
    """

    def __init__(self, path=Defaults.MOUNT_TABLE):
        self.path = Path(path)

    def entries(self) -> Iterator[MountEntry]:
        """Yield every entry of the mount table, read now."""
        with open(self.path, "r", encoding="utf-8", errors="surrogateescape") as f:
            for line in f:
                fields = line.split()
                if len(fields) < 4:
                    continue
                yield MountEntry(
                    source=unescape_mount_field(fields[0]),
                    target=unescape_mount_field(fields[1]),
                    fstype=fields[2],
                    options=fields[3],
                )

    def is_mounted(self, source: Path) -> bool:
        """Whether an entry whose source is exactly this path exists."""
        wanted = str(source)
        mounted = any(entry.source == wanted for entry in self.entries())
        _mounts_logger.debug(f"mounts.query: source={wanted}, mounted={mounted}")
        return mounted

    def mount_point_of(self, source: Path):
        """Target of the most recent entry for this source, or None."""
        wanted = str(source)
        found = None
        for entry in self.entries():
            if entry.source == wanted:
                found = entry.target
        return Path(found) if found is not None else None
