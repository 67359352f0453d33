#!/usr/bin/env python3
"""
Pytest configuration and shared fixtures for chrootcrypt tests.

Every fixture points chrootcrypt at throwaway directories under tmp_path:
chroots dir, secure root, a /proc/mounts-format file and a shadow file.
Nothing here touches the real mount table or needs root.
"""

import io
import sys
from pathlib import Path

# =============================================================================
# Path Setup - Execute BEFORE any test imports
# =============================================================================

# tests/conftest.py -> tests/ -> repository root (contains chrootcrypt/)
_tests_dir = Path(__file__).resolve().parent
_repo_root = _tests_dir.parent

if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

REPO_ROOT = _repo_root
TESTS_DIR = _tests_dir

import pytest
from rich.console import Console

from chrootcrypt.core.config import default_config, validate_config
from chrootcrypt.core.constants import ConfigKeys, ConsoleStyle
from chrootcrypt.core.mounts import MountTable
from chrootcrypt.scripts.cli_output import CLIOutput
from chrootcrypt.scripts.ecryptfs_cli import MountAttempt


# =============================================================================
# Helpers
# =============================================================================


class FakeTTY:
    """Stand-in for an interactive stdin."""

    def isatty(self):
        return True


class FakeDriver:
    """
    Replacement for mount_ecryptfs that records calls and, when
    `succeed` is True, appends the mount to the fake mount table.
    """

    def __init__(self, mount_file: Path, succeed: bool = True, output: str = "", returncode: int = 0):
        self.mount_file = Path(mount_file)
        self.succeed = succeed
        self.output = output
        self.returncode = returncode
        self.calls = []

    def __call__(self, source, target, options, passphrase=None):
        self.calls.append({"source": source, "target": target, "options": options, "passphrase": passphrase})
        if self.succeed:
            add_mount(self.mount_file, source, target)
        return MountAttempt(returncode=self.returncode, output=self.output)


def add_mount(mount_file: Path, source, target, fstype: str = "ecryptfs") -> None:
    """Append an entry to a /proc/mounts-format file, escaping spaces."""
    src = str(source).replace(" ", "\\040")
    dst = str(target).replace(" ", "\\040")
    with open(mount_file, "a", encoding="utf-8") as f:
        f.write(f"{src} {dst} {fstype} rw,relatime 0 0\n")


def make_output(quiet: bool = False):
    """CLIOutput writing into a StringIO. Returns (out, buffer)."""
    buffer = io.StringIO()
    console = Console(file=buffer, highlight=False, soft_wrap=True, width=200)
    return CLIOutput(style=ConsoleStyle(ConsoleStyle.ASCII), quiet=quiet, console=console), buffer


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def chroots(tmp_path):
    """Empty chroots directory."""
    path = tmp_path / "chroots"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def secure_root(tmp_path):
    """Secure root location (not created)."""
    return (tmp_path / "run" / "chrootcrypt").resolve()


@pytest.fixture
def mount_file(tmp_path):
    """Mount table with a couple of unrelated entries."""
    path = tmp_path / "mounts"
    path.write_text(
        "proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0\n"
        "/dev/sda1 / ext4 rw,relatime 0 0\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def shadow_file(tmp_path):
    """Shadow file where root has a password."""
    path = tmp_path / "shadow"
    path.write_text("root:$6$salt$hash:19000:0:99999:7:::\nnobody:*:19000:0:99999:7:::\n", encoding="utf-8")
    return path


@pytest.fixture
def config_dict(tmp_path, chroots, secure_root, mount_file, shadow_file):
    """Merged config pointing at the tmp fixtures."""
    config = default_config()
    config[ConfigKeys.CHROOTS_DIR] = str(chroots)
    config[ConfigKeys.SECURE_ROOT] = str(secure_root)
    config[ConfigKeys.MOUNT_TABLE] = str(mount_file)
    config[ConfigKeys.SHADOW_FILE] = str(shadow_file)
    config[ConfigKeys.LOG_FILE] = str(tmp_path / "log" / "chrootcrypt.log")
    return config


@pytest.fixture
def settings(config_dict):
    return validate_config(config_dict)


@pytest.fixture
def mount_table(mount_file):
    return MountTable(mount_file)


@pytest.fixture
def fake_tty():
    return FakeTTY()
