#!/usr/bin/env python3
"""
eCryptfs CLI Wrapper

Provides a thin wrapper around the eCryptfs userspace tools:
- Passphrase registration (ecryptfs-add-passphrase) and signature parsing
- Driver version detection for the passphrase-pipe workaround
- Mount option construction
- Mount invocation with output capture and cleanup

The mount helper's exit status is unreliable; callers MUST verify the
result against the mount table (see core/mounts.py).
"""

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, NamedTuple, Optional

from chrootcrypt.core.constants import Commands, EcryptfsParams
from chrootcrypt.core.errors import PassphraseRegistrationError
from chrootcrypt.core.limits import Limits

_ecryptfs_logger = logging.getLogger("chrootcrypt.ecryptfs")

# "Inserted auth tok with sig [d395309aaad4de06] into the user session keyring"
_SIGNATURE_PATTERN = re.compile(r"\[([^\[\]\s]+)\]")
_VERSION_PATTERN = re.compile(r"(\d+)")


class MountAttempt(NamedTuple):
    """Raw result of one mount invocation. returncode is advisory only."""

    returncode: int
    output: str


# ===========================================================================
# Capability detection
# ===========================================================================


def have_ecryptfs() -> bool:
    """Check if the eCryptfs userspace tools, mount helper included, are in PATH."""
    return all(shutil.which(tool) is not None for tool in (Commands.ADD_PASSPHRASE, Commands.MOUNT_HELPER))


def parse_driver_version(output: str) -> Optional[int]:
    """First integer in the version command's output, e.g. 'ecryptfsd 111' -> 111."""
    if not output:
        return None
    match = _VERSION_PATTERN.search(output)
    return int(match.group(1)) if match else None


def driver_version(version_command: List[str]) -> Optional[int]:
    """
    Query the installed eCryptfs version.

    Returns:
        Numeric version, or None if the command is missing, times out, or
        prints nothing recognizable.
    """
    try:
        result = subprocess.run(
            version_command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=Limits.VERSION_QUERY_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        _ecryptfs_logger.warning(f"ecryptfs.version: command={version_command}, error={e}")
        return None

    version = parse_driver_version(result.stdout)
    _ecryptfs_logger.info(f"ecryptfs.version: command={version_command}, version={version}")
    return version


def should_pipe_passphrase(version: Optional[int], min_version: int) -> bool:
    """
    Whether a just-registered passphrase may be piped into the mount helper.

    Older helpers mishandle passphrase_passwd_fd for a signature inserted
    in the same session, so below min_version (or with an unknown version)
    the helper prompts for the passphrase itself.
    """
    return version is not None and version >= min_version


# ===========================================================================
# Passphrase registration
# ===========================================================================


def parse_signature(output: str) -> str:
    """First bracketed token in ecryptfs-add-passphrase output, or ''."""
    if not output:
        return ""
    match = _SIGNATURE_PATTERN.search(output)
    return match.group(1) if match else ""


def add_passphrase(passphrase: str) -> str:
    """
    Insert a passphrase into the kernel keyring and return its signature.

    The passphrase is written to the tool's stdin, never placed on the
    command line.

    Raises:
        PassphraseRegistrationError: tool missing, timed out, or no signature
    """
    args = [Commands.ADD_PASSPHRASE, Commands.ADD_PASSPHRASE_STDIN_ARG]
    try:
        result = subprocess.run(
            args,
            input=passphrase,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=Limits.ADD_PASSPHRASE_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise PassphraseRegistrationError(f"Failed to run {Commands.ADD_PASSPHRASE}: {e}")

    signature = parse_signature(result.stdout)
    if not signature:
        _ecryptfs_logger.error(f"ecryptfs.add_passphrase: exit={result.returncode}, signature=missing")
        detail = result.stdout.strip()
        message = "Failed to register the passphrase with eCryptfs"
        raise PassphraseRegistrationError(f"{message}: {detail}" if detail else message)

    _ecryptfs_logger.info(f"ecryptfs.add_passphrase: exit={result.returncode}, signature={signature}")
    return signature


# ===========================================================================
# Mounting
# ===========================================================================


def build_mount_options(signature: str, cipher: str, key_bytes: int, pipe_passphrase: bool) -> str:
    """
    Option string for mount -t ecryptfs.

    The same signature encrypts both file contents and file names.
    """
    options = [
        f"{EcryptfsParams.OPT_CIPHER}={cipher}",
        f"{EcryptfsParams.OPT_KEY_BYTES}={key_bytes}",
        f"{EcryptfsParams.OPT_PASSTHROUGH}=n",
        f"{EcryptfsParams.OPT_FILENAME_CRYPTO}=y",
        f"{EcryptfsParams.OPT_SIG}={signature}",
        f"{EcryptfsParams.OPT_FNEK_SIG}={signature}",
        f"{EcryptfsParams.OPT_KEY}={EcryptfsParams.KEY_TYPE_PASSPHRASE}",
        EcryptfsParams.OPT_NO_SIG_CACHE,
    ]
    if pipe_passphrase:
        options.append(f"{EcryptfsParams.OPT_PASSWD_FD}=0")
    return ",".join(options)


def clean_mount_output(output: str) -> str:
    """
    Drop the helper's option echo from its output.

    The helper prints the noise prefix followed by one indented line per
    option before any real diagnostic.
    """
    if not output:
        return ""
    lines = output.splitlines()
    cleaned = []
    in_option_echo = False
    for line in lines:
        if line.strip().startswith(EcryptfsParams.MOUNT_OUTPUT_NOISE_PREFIX):
            in_option_echo = True
            rest = line.strip()[len(EcryptfsParams.MOUNT_OUTPUT_NOISE_PREFIX):].strip()
            if rest:
                cleaned.append(rest)
            continue
        if in_option_echo and line[:1].isspace():
            continue
        in_option_echo = False
        cleaned.append(line)
    return "\n".join(cleaned).strip()


def mount_ecryptfs(source: Path, target: Path, options: str, passphrase: Optional[str] = None) -> MountAttempt:
    """
    Invoke mount -t ecryptfs, which hands over to /sbin/mount.ecryptfs.

    The helper is what reads passphrase_passwd_fd and the key=passphrase
    option; without it the kernel sees neither.

    With a passphrase, it is written to the helper's stdin as
    passphrase_passwd=... and all output is captured. Without one, the
    helper prompts on the terminal: stdin and stdout stay attached to the
    terminal and only stderr is captured.
    """
    args = [
        Commands.MOUNT,
        "-t",
        EcryptfsParams.FILESYSTEM_TYPE,
        "-o",
        options,
        str(source),
        str(target),
    ]
    # Log the options, never the passphrase
    _ecryptfs_logger.info(f"ecryptfs.mount: source={source}, target={target}, piped={passphrase is not None}")

    try:
        if passphrase is not None:
            result = subprocess.run(
                args,
                input=f"{EcryptfsParams.PASSWD_STDIN_PREFIX}{passphrase}\n",
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=Limits.MOUNT_PIPED_TIMEOUT,
            )
            output = result.stdout or ""
        else:
            result = subprocess.run(args, stderr=subprocess.PIPE, text=True)
            output = result.stderr or ""
    except subprocess.TimeoutExpired as e:
        _ecryptfs_logger.error(f"ecryptfs.mount: source={source}, error=timeout")
        captured = e.output or ""
        if isinstance(captured, bytes):
            captured = captured.decode("utf-8", errors="replace")
        return MountAttempt(returncode=-1, output=f"{captured}\nmount timed out after {e.timeout}s".strip())
    except OSError as e:
        _ecryptfs_logger.error(f"ecryptfs.mount: source={source}, error={e}")
        return MountAttempt(returncode=-1, output=f"Failed to run {Commands.MOUNT}: {e}")

    _ecryptfs_logger.info(f"ecryptfs.mount: source={source}, exit={result.returncode}")
    return MountAttempt(returncode=result.returncode, output=output)
