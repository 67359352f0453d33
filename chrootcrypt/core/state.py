# core/state.py - Target lifecycle classification
"""
Decides which LifecycleState a target is in.

classify() is pure: it maps observed facts and the command line flags to a
TargetPlan without touching the filesystem. inspect_target() gathers those
facts from the chroots directory and a fresh mount table read.

Decision table (plain = <name>, encrypted = <name>.ecryptfs-*):

    plain  encrypted  -e   -n   outcome
    yes    any        no   any  UNENCRYPTED (informational, not a failure)
    yes    no         yes  any  MIGRATING into a fresh <name>.ecryptfs-
    yes    yes        yes  any  MIGRATING into the existing encrypted path
    no     yes        any  any  ENCRYPTED_MOUNTED / ENCRYPTED_UNMOUNTED
    no     no         any  yes  ENCRYPTED_UNMOUNTED, fresh <name>.ecryptfs-
    no     no         any  no   NOT_FOUND (failure)
"""

import logging
from pathlib import Path

from chrootcrypt.core.constants import EcryptfsParams, Prompts
from chrootcrypt.core.errors import InvalidTargetError
from chrootcrypt.core.modes import LifecycleState, TargetFacts, TargetPlan
from chrootcrypt.core.mounts import MountTable
from chrootcrypt.core.paths import Paths

_state_logger = logging.getLogger("chrootcrypt.state")


def validate_name(name: str) -> None:
    """
    Reject names that cannot be a single directory inside the chroots dir.

    Raises:
        InvalidTargetError: with a user-facing reason
    """
    if not name or not name.strip():
        raise InvalidTargetError("Empty chroot name")
    if name in (".", ".."):
        raise InvalidTargetError(f"Invalid chroot name: {name}")
    if "/" in name or "\0" in name:
        raise InvalidTargetError(f"Chroot name must not contain '/': {name}")
    if EcryptfsParams.STORAGE_MARKER in name:
        raise InvalidTargetError(
            f"Chroot name must not contain '{EcryptfsParams.STORAGE_MARKER}': {name}"
        )


def classify(
    name: str,
    facts: TargetFacts,
    *,
    encrypt: bool,
    create: bool,
    chroots: Path,
    secure_root: Path,
) -> TargetPlan:
    """
    Map observed facts and flags to a TargetPlan. No side effects.

    Args:
        name: Target name (already validated)
        facts: Observations from inspect_target()
        encrypt: -e given; migrate unencrypted chroots
        create: -n given; create missing chroots
        chroots: Normalized chroots directory
        secure_root: Root of the mount point tree

    Returns:
        TargetPlan describing what the orchestrator must do
    """
    plain = Paths.plain_path(chroots, name)
    mount_point = Paths.mount_point(secure_root, chroots, name)

    if len(facts.encrypted_paths) > 1:
        found = ", ".join(sorted(str(p) for p in facts.encrypted_paths))
        return TargetPlan(
            name=name,
            state=LifecycleState.INVALID,
            message=f"Multiple encrypted storage directories for {name}: {found}",
        )

    existing = Path(facts.encrypted_paths[0]) if facts.encrypted_paths else None

    if facts.plain_exists:
        if not encrypt:
            return TargetPlan(
                name=name,
                state=LifecycleState.UNENCRYPTED,
                storage_path=plain,
                message=Prompts.NOT_ENCRYPTED.format(path=plain),
            )
        return TargetPlan(
            name=name,
            state=LifecycleState.MIGRATING,
            mount_point=mount_point,
            storage_path=existing or Paths.storage_path(chroots, name),
            migrate_source=plain,
            create_storage=existing is None,
        )

    if existing is not None:
        state = LifecycleState.ENCRYPTED_MOUNTED if facts.mounted else LifecycleState.ENCRYPTED_UNMOUNTED
        return TargetPlan(name=name, state=state, mount_point=mount_point, storage_path=existing)

    if create:
        return TargetPlan(
            name=name,
            state=LifecycleState.ENCRYPTED_UNMOUNTED,
            mount_point=mount_point,
            storage_path=Paths.storage_path(chroots, name),
            create_storage=True,
        )

    return TargetPlan(
        name=name,
        state=LifecycleState.NOT_FOUND,
        message=Prompts.NOT_FOUND.format(path=plain),
    )


def inspect_target(name: str, chroots: Path, mount_table: MountTable) -> TargetFacts:
    """
    Observe the filesystem and mount table for one target.

    Only directories count. The mount table is consulted only when exactly
    one encrypted storage directory exists.
    """
    chroots = Path(chroots)
    plain_exists = Paths.plain_path(chroots, name).is_dir()

    if chroots.is_dir():
        encrypted = tuple(
            sorted(
                p
                for p in chroots.glob(Paths.storage_glob(name))
                if p.is_dir() and Paths.target_of(p) == name
            )
        )
    else:
        encrypted = ()

    mounted = len(encrypted) == 1 and mount_table.is_mounted(encrypted[0])

    _state_logger.debug(
        f"state.inspect: name={name}, plain={plain_exists}, "
        f"encrypted={[str(p) for p in encrypted]}, mounted={mounted}"
    )
    return TargetFacts(plain_exists=plain_exists, encrypted_paths=encrypted, mounted=mounted)


def resolve_target(
    name: str,
    *,
    chroots: Path,
    secure_root: Path,
    mount_table: MountTable,
    encrypt: bool,
    create: bool,
) -> TargetPlan:
    """validate_name + inspect_target + classify for one target."""
    try:
        validate_name(name)
    except InvalidTargetError as e:
        return TargetPlan(name=name, state=LifecycleState.INVALID, message=str(e))

    facts = inspect_target(name, chroots, mount_table)
    plan = classify(
        name,
        facts,
        encrypt=encrypt,
        create=create,
        chroots=chroots,
        secure_root=secure_root,
    )
    _state_logger.info(f"state.classify: name={name}, state={plan.state.value}, storage={plan.storage_path}")
    return plan
