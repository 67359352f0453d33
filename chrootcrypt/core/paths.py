# core/paths.py - SINGLE SOURCE OF TRUTH for all filesystem paths
"""
All chroot-related paths MUST be derived here as Path objects.
No other module may construct storage or mount point paths.

RULES:
- All paths are Path objects internally
- Convert to str() ONLY at I/O boundaries (subprocess, mount table, print)
- Use Path arithmetic (/) for joins, never string concatenation

Layout:
    <chroots>/<name>                      unencrypted chroot
    <chroots>/<name>.ecryptfs-            encrypted, no passphrase chosen yet
    <chroots>/<name>.ecryptfs-<SIG>       encrypted with signature SIG
    <secure_root>/<chroots>/<name>        decrypted view (mount point)
"""

import glob
from pathlib import Path
from typing import Optional

from chrootcrypt.core.constants import EcryptfsParams


class Paths:
    """
    Centralized path derivation. All paths are Path objects.

    Usage:
        from chrootcrypt.core.paths import Paths
        src = Paths.storage_path(chroots, "foo", "abc123")
    """

    STORAGE_MARKER = EcryptfsParams.STORAGE_MARKER

    @staticmethod
    def normalize_root(path) -> Path:
        """Absolute, symlink-resolved form of a root directory."""
        return Path(path).expanduser().resolve()

    @staticmethod
    def plain_path(chroots: Path, name: str) -> Path:
        """Unencrypted chroot directory."""
        return Path(chroots) / name

    @classmethod
    def storage_path(cls, chroots: Path, name: str, signature: str = "") -> Path:
        """Encrypted storage directory, optionally carrying a signature."""
        return Path(chroots) / f"{name}{cls.STORAGE_MARKER}{signature}"

    @classmethod
    def storage_glob(cls, name: str) -> str:
        """Glob pattern matching every storage directory of a target."""
        return f"{glob.escape(name)}{cls.STORAGE_MARKER}*"

    @classmethod
    def signature_of(cls, storage_path: Path) -> Optional[str]:
        """
        Extract the signature suffix from a storage path name.

        Returns:
            The signature ("" if none chosen yet), or None if the path
            carries no storage marker at all.
        """
        name = Path(storage_path).name
        marker_index = name.rfind(cls.STORAGE_MARKER)
        if marker_index <= 0:
            return None
        return name[marker_index + len(cls.STORAGE_MARKER):]

    @classmethod
    def target_of(cls, storage_path: Path) -> Optional[str]:
        """Target name a storage path belongs to, or None if unmarked."""
        name = Path(storage_path).name
        marker_index = name.rfind(cls.STORAGE_MARKER)
        if marker_index <= 0:
            return None
        return name[:marker_index]

    @staticmethod
    def mount_point(secure_root: Path, chroots: Path, name: str) -> Path:
        """
        Decrypted view of a target.

        The full chroots path is mirrored under the secure root so two
        chroot directories holding the same name never collide.
        """
        chroots = Path(chroots)
        relative = chroots.relative_to(chroots.anchor) if chroots.is_absolute() else chroots
        return Path(secure_root) / relative / name
