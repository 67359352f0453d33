#!/usr/bin/env python3
"""
chrootcrypt mount script

Mounts one or more chroots, stored encrypted with eCryptfs, into a
root-only directory.

Per target:
- Classify its lifecycle state (core/state.py)
- Ensure the encrypted storage is mounted, creating the passphrase
  signature on first use
- Move an unencrypted chroot's content into the encrypted mount (-e)

A failed target never stops the batch; the exit code is 1 if any failed.

Usage:
    chrootcrypt-mount foo               # mount encrypted chroot foo
    chrootcrypt-mount -n foo            # create foo encrypted if missing
    chrootcrypt-mount -e bar            # encrypt existing chroot bar
    chrootcrypt-mount -p foo bar        # print mount points on stdout

Dependencies (runtime):
- Python 3
- ecryptfs-utils (mount.ecryptfs, ecryptfs-add-passphrase, ecryptfsd)
- root privileges
"""

import argparse
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, List, Optional

from chrootcrypt.core.config import Settings, default_config_path, load_config, validate_config, write_config_atomic
from chrootcrypt.core.constants import Prompts
from chrootcrypt.core.errors import (
    ChrootCryptError,
    ConfigError,
    EcryptfsError,
    InvalidTargetError,
    MountVerificationError,
    NotATerminalError,
    PasswordSetupError,
    SignatureCommitError,
    TargetNotFoundError,
)
from chrootcrypt.core.limits import Limits
from chrootcrypt.core.modes import BatchResult, LifecycleState, TargetOutcome, TargetPlan
from chrootcrypt.core.mounts import MountTable
from chrootcrypt.core.paths import Paths
from chrootcrypt.core.platform import has_system_password, is_admin, stdin_is_interactive
from chrootcrypt.core.state import resolve_target
from chrootcrypt.core.terminal import install_signal_handlers, prompt_new_passphrase
from chrootcrypt.core.version import VERSION
from chrootcrypt.scripts.cli_output import CLIOutput
from chrootcrypt.scripts.ecryptfs_cli import (
    add_passphrase,
    build_mount_options,
    clean_mount_output,
    driver_version,
    have_ecryptfs,
    mount_ecryptfs,
    should_pipe_passphrase,
)
from chrootcrypt.scripts.migrate import migrate_or_raise

# =============================================================================
# Module-level logger - MUST be initialized at import time
# =============================================================================
_mount_logger = logging.getLogger("chrootcrypt.mount")

PROG = "chrootcrypt-mount"


# =============================================================================
# Logging
# =============================================================================


def setup_logging(log_file: Optional[Path], verbose: bool = False) -> logging.Logger:
    """
    Configure the chrootcrypt logger.

    Args:
        log_file: Rotating log file (skipped if None or not creatable)
        verbose: Also log DEBUG and above to stderr

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("chrootcrypt")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                str(log_file),
                maxBytes=Limits.MAX_LOG_FILE_SIZE,
                backupCount=Limits.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as e:
            # Logging to a file is optional; the console output is not
            sys.stderr.write(f"{PROG}: not logging to {log_file}: {e}\n")
        else:
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(levelname)s - %(name)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
                )
            )
            logger.addHandler(handler)

    if verbose:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.DEBUG)
        stderr_handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
        logger.addHandler(stderr_handler)

    return logger


# =============================================================================
# Run context
# =============================================================================


@dataclass
class MountContext:
    """Everything the per-target steps need, built once per run."""

    settings: Settings
    chroots: Path
    mount_table: MountTable
    out: CLIOutput
    prompt: Callable[[str], str] = prompt_new_passphrase
    stdin: Any = None
    _driver_version: Optional[int] = field(default=None, init=False, repr=False)
    _driver_version_known: bool = field(default=False, init=False, repr=False)

    def driver_version(self) -> Optional[int]:
        """eCryptfs version, queried at most once per run."""
        if not self._driver_version_known:
            self._driver_version = driver_version(self.settings.version_command)
            self._driver_version_known = True
        return self._driver_version


# =============================================================================
# Mount orchestration steps
# =============================================================================


def ensure_system_password(ctx: MountContext) -> None:
    """
    Make sure the guarding account has a password before encrypting.

    Raises:
        PasswordSetupError: shadow file unreadable or setup command failed
    """
    settings = ctx.settings
    try:
        if has_system_password(settings.password_user, settings.shadow_file):
            return
    except OSError as e:
        raise PasswordSetupError(f"Cannot read {settings.shadow_file}: {e}")

    ctx.out.warn(Prompts.SETTING_PASSWORD.format(user=settings.password_user))
    _mount_logger.info(f"mount.password_setup: command={settings.password_setup_command}")
    try:
        result = subprocess.run(settings.password_setup_command)
    except OSError as e:
        raise PasswordSetupError(f"Failed to run {settings.password_setup_command[0]}: {e}")
    if result.returncode != 0:
        raise PasswordSetupError(
            f"Password setup for '{settings.password_user}' failed (exit {result.returncode})"
        )


def prepare_secure_dirs(secure_root: Path, mount_point: Path) -> None:
    """
    Create the secure root and mount point, root-owned and mode 0700.

    Every directory between the two is 0700 as well. Ownership and mode
    are re-applied every time, so a directory left behind with looser
    permissions is tightened.
    """
    secure_root = Path(secure_root)
    mount_point = Path(mount_point)

    secure_root.mkdir(parents=True, exist_ok=True, mode=Limits.SECURE_DIR_MODE)
    os.chown(secure_root, 0, 0)
    os.chmod(secure_root, Limits.SECURE_DIR_MODE)

    # mkdir(parents=True) would leave the intermediate levels at the umask default
    current = secure_root
    for part in mount_point.relative_to(secure_root).parts:
        current = current / part
        current.mkdir(exist_ok=True, mode=Limits.SECURE_DIR_MODE)
        os.chmod(current, Limits.SECURE_DIR_MODE)
    _mount_logger.debug(f"mount.secure_dirs: root={secure_root}, mount_point={mount_point}")


def commit_signature(storage_path: Path, signature: str) -> Path:
    """
    Atomically rename the storage path to embed the signature.

    Raises:
        SignatureCommitError: rename failed, destination exists, or the
            name would not change
    """
    storage_path = Path(storage_path)
    name = Paths.target_of(storage_path)
    if name is None:
        raise SignatureCommitError(f"{storage_path} is not an encrypted storage directory")

    committed = Paths.storage_path(storage_path.parent, name, signature)
    if committed == storage_path:
        raise SignatureCommitError(f"Signature already present in {storage_path}")
    if os.path.lexists(committed):
        raise SignatureCommitError(f"Cannot rename {storage_path}: {committed} already exists")

    try:
        os.rename(storage_path, committed)
    except OSError as e:
        raise SignatureCommitError(f"Failed to rename {storage_path} to {committed}: {e}")

    _mount_logger.info(f"mount.commit_signature: from={storage_path.name}, to={committed.name}")
    return committed


def ensure_mounted(plan: TargetPlan, ctx: MountContext) -> Path:
    """
    Make sure the plan's storage path is mounted at its mount point.

    Updates plan.storage_path when a new signature is committed.

    Returns:
        The mount point

    Raises:
        ChrootCryptError subclasses for every per-target failure
    """
    settings = ctx.settings

    # Idempotency: the mount table decides, fresh
    mounted_at = ctx.mount_table.mount_point_of(plan.storage_path)
    if mounted_at is not None:
        plan.mount_point = mounted_at
        ctx.out.log(Prompts.ALREADY_MOUNTED.format(name=plan.name, mount_point=mounted_at))
        return mounted_at

    if not stdin_is_interactive(ctx.stdin):
        raise NotATerminalError(Prompts.NOT_A_TERMINAL.format(name=plan.name))
    if not have_ecryptfs():
        raise EcryptfsError("eCryptfs tools not found in PATH; install ecryptfs-utils")

    ensure_system_password(ctx)
    prepare_secure_dirs(settings.secure_root, plan.mount_point)

    if plan.create_storage:
        plan.storage_path.mkdir(parents=True, exist_ok=True, mode=Limits.SECURE_DIR_MODE)
        _mount_logger.info(f"mount.create_storage: path={plan.storage_path}")

    signature = plan.signature
    passphrase = None
    if not signature:
        passphrase = ctx.prompt(plan.name)
        signature = add_passphrase(passphrase)
        plan.storage_path = commit_signature(plan.storage_path, signature)

        version = ctx.driver_version()
        if not should_pipe_passphrase(version, settings.pipe_passphrase_min_version):
            _mount_logger.info(
                f"mount.pipe_workaround: version={version}, "
                f"min_version={settings.pipe_passphrase_min_version}, action=driver_prompts"
            )
            ctx.out.log(f"Please enter the passphrase for {plan.name} again.")
            passphrase = None

    options = build_mount_options(
        signature,
        settings.cipher,
        settings.key_bytes,
        pipe_passphrase=passphrase is not None,
    )
    attempt = mount_ecryptfs(plan.storage_path, plan.mount_point, options, passphrase=passphrase)

    # The helper's exit status is unreliable; only the mount table counts
    if not ctx.mount_table.is_mounted(plan.storage_path):
        raise MountVerificationError(
            f"Failed to mount {plan.name} (mount exit {attempt.returncode})",
            driver_output=clean_mount_output(attempt.output),
        )

    ctx.out.info(Prompts.MOUNTED.format(name=plan.name, mount_point=plan.mount_point))
    return plan.mount_point


def migrate_target(plan: TargetPlan, ctx: MountContext) -> None:
    """Move the plain chroot into the mounted encrypted view."""
    ctx.out.begin_progress(Prompts.ENCRYPTING.format(name=plan.name))
    try:
        result = migrate_or_raise(plan.migrate_source, plan.mount_point, on_progress=lambda _entry: ctx.out.progress())
    finally:
        ctx.out.end_progress()
    ctx.out.info(f"{Prompts.ENCRYPTED.format(name=plan.name)} ({result.moved} entries moved)")


# =============================================================================
# Batch processing
# =============================================================================


def apply_plan(plan: TargetPlan, ctx: MountContext) -> TargetOutcome:
    """
    Carry out a classified plan.

    Raises:
        ChrootCryptError subclasses, or OSError from directory preparation
    """
    if plan.state.is_failure:
        if plan.state == LifecycleState.INVALID:
            raise InvalidTargetError(plan.message)
        raise TargetNotFoundError(plan.message)
    if not plan.state.needs_mount:
        # Unencrypted and not asked to encrypt: the plain path is the answer
        ctx.out.log(plan.message)
        return TargetOutcome(name=plan.name, ok=True, state=plan.state, mount_point=plan.storage_path)

    mount_point = ensure_mounted(plan, ctx)

    if plan.state == LifecycleState.MIGRATING:
        migrate_target(plan, ctx)

    return TargetOutcome(name=plan.name, ok=True, state=plan.state, mount_point=mount_point)


def report_failure(name: str, error: Exception, ctx: MountContext) -> None:
    """Log a per-target failure and show it, with driver output if any."""
    driver_output = getattr(error, "driver_output", "")
    _mount_logger.error(
        f"mount.target_failed: name={name}, type={type(error).__name__}, error={error}, output={driver_output!r}"
    )
    ctx.out.error(str(error) if isinstance(error, ChrootCryptError) else f"{name}: {error}")
    if driver_output:
        ctx.out.detail(driver_output)


def process_target(name: str, ctx: MountContext, *, encrypt: bool, create: bool) -> TargetOutcome:
    """
    Classify, mount and migrate one target. Never raises for a
    per-target failure; the returned outcome records it.
    """
    state = None
    try:
        plan = resolve_target(
            name,
            chroots=ctx.chroots,
            secure_root=ctx.settings.secure_root,
            mount_table=ctx.mount_table,
            encrypt=encrypt,
            create=create,
        )
        state = plan.state
        return apply_plan(plan, ctx)
    except (ChrootCryptError, OSError) as e:
        # OSError here is directory preparation or the mount table read
        report_failure(name, e, ctx)
        return TargetOutcome(name=name, ok=False, state=state, error=str(e))


def run_batch(
    names: List[str],
    ctx: MountContext,
    *,
    encrypt: bool = False,
    create: bool = False,
    print_paths: bool = False,
) -> BatchResult:
    """
    Process every target in order. Failures are recorded, never fatal.

    In print mode one line per target goes to stdout: the path to use, or
    an empty line for a failed target.
    """
    batch = BatchResult()
    for name in names:
        outcome = process_target(name, ctx, encrypt=encrypt, create=create)
        batch.add(outcome)
        if print_paths:
            print(outcome.mount_point if outcome.ok and outcome.mount_point else "", flush=True)

    _mount_logger.info(
        f"mount.batch_done: targets={len(batch.outcomes)}, failed={len(batch.failed)}, exit={batch.exit_code}"
    )
    return batch


# =============================================================================
# Command line
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Mounts one or more encrypted chroots into a root-only directory.",
    )
    parser.add_argument(
        "-c",
        "--chroots",
        type=Path,
        metavar="CHROOTS",
        help="Directory the chroots are in (default from config: /usr/local/chroots)",
    )
    parser.add_argument(
        "-e", "--encrypt", action="store_true", help="If a chroot is not encrypted, encrypt it"
    )
    parser.add_argument("-n", "--create", action="store_true", help="Create the chroot if it doesn't exist")
    parser.add_argument(
        "-p",
        "--print",
        dest="print_paths",
        action="store_true",
        help="Print the path to each mounted directory on stdout",
    )
    parser.add_argument(
        "--config", type=Path, metavar="PATH", help="Config file (default: /etc/chrootcrypt/config.json)"
    )
    parser.add_argument(
        "--write-config", action="store_true", help="Write the effective configuration to the config file and exit"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("names", nargs="*", metavar="name", help="Chroot name(s) to mount")
    return parser


def run(argv: Optional[List[str]] = None, stdin=None) -> int:
    """
    Entry point returning the exit code instead of exiting.

    Usage errors exit via argparse (status 2).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.names and not args.write_config:
        parser.error("at least one chroot name is required")

    out = CLIOutput.detect(quiet=args.print_paths)

    if not is_admin():
        out.error(Prompts.NEED_ROOT.format(prog=PROG))
        return Limits.EXIT_FAILURE

    if args.config is not None:
        config_path, explicit = args.config, True
    else:
        config_path, explicit = default_config_path()

    try:
        # --write-config may create the file it names
        config = load_config(config_path, explicit=explicit and not args.write_config)
        settings = validate_config(config)
    except ConfigError as e:
        out.error(str(e))
        return Limits.EXIT_FAILURE

    setup_logging(settings.log_file, verbose=args.verbose)
    install_signal_handlers(stdin)
    _mount_logger.info(f"mount.start: version={VERSION}, names={args.names}, encrypt={args.encrypt}, create={args.create}")

    if args.write_config:
        try:
            write_config_atomic(config_path, config)
        except OSError as e:
            out.error(f"Failed to write {config_path}: {e}")
            return Limits.EXIT_FAILURE
        out.info(f"Configuration written to {config_path}")
        return Limits.EXIT_OK

    ctx = MountContext(
        settings=settings,
        chroots=Paths.normalize_root(args.chroots or settings.chroots_dir),
        mount_table=MountTable(settings.mount_table),
        out=out,
        stdin=stdin,
    )
    batch = run_batch(
        args.names,
        ctx,
        encrypt=args.encrypt,
        create=args.create,
        print_paths=args.print_paths,
    )
    return batch.exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
