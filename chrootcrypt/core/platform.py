# core/platform.py - SINGLE SOURCE OF TRUTH for host capability checks
"""
Host checks used before any privileged work.

This module provides:
- is_admin(): effective user is root
- stdin_is_interactive(): passphrase prompts are possible
- has_system_password(): the account guarding the machine has a password

No heuristics. No "try and see" with privileged commands.
Direct OS checks only.
"""

import logging
import os
import sys
from pathlib import Path

from chrootcrypt.core.constants import Defaults

_platform_logger = logging.getLogger("chrootcrypt.platform")


def is_admin() -> bool:
    """
    Check if the current process has root privileges (euid == 0).

    Returns:
        True if running as root, False otherwise.
    """
    try:
        return os.geteuid() == 0
    except AttributeError:
        # geteuid is unavailable off Unix
        return False


def stdin_is_interactive(stream=None) -> bool:
    """Whether stdin is a terminal a passphrase can be typed into."""
    stream = stream if stream is not None else sys.stdin
    try:
        return stream is not None and stream.isatty()
    except ValueError:
        # Closed stream
        return False


def has_system_password(user: str = Defaults.PASSWORD_USER, shadow_file=Defaults.SHADOW_FILE) -> bool:
    """
    Check whether `user` has a usable password in the shadow file.

    A missing entry, an empty hash field, or a hash starting with '*' or
    '!' (locked/disabled) all count as "no password".

    A missing shadow file means the host does not use shadow passwords;
    that is treated as "password configured" since there is nothing this
    tool could set up.

    Raises:
        OSError: if the shadow file exists but cannot be read
    """
    shadow = Path(shadow_file)
    if not shadow.exists():
        _platform_logger.info(f"platform.password: shadow={shadow}, exists=False")
        return True

    with open(shadow, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            fields = line.rstrip("\n").split(":")
            if len(fields) < 2 or fields[0] != user:
                continue
            hashed = fields[1]
            configured = bool(hashed) and not hashed.startswith(("*", "!"))
            _platform_logger.info(f"platform.password: user={user}, configured={configured}")
            return configured

    _platform_logger.info(f"platform.password: user={user}, entry=missing")
    return False
