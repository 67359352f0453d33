# core/modes.py - SINGLE SOURCE OF TRUTH for enums and state definitions
"""
All lifecycle enums, state definitions, and outcome types MUST be defined here.
No other module may define these values.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from chrootcrypt.core.paths import Paths


# =============================================================================
# Lifecycle State
# =============================================================================


class LifecycleState(str, Enum):
    """
    Lifecycle of one target's storage.

    UNENCRYPTED -> MIGRATING -> ENCRYPTED_MOUNTED
    NOT_FOUND   -> ENCRYPTED_UNMOUNTED (with -n) -> ENCRYPTED_MOUNTED
    """

    UNENCRYPTED = "unencrypted"
    NOT_FOUND = "not_found"
    ENCRYPTED_UNMOUNTED = "encrypted_unmounted"
    ENCRYPTED_MOUNTED = "encrypted_mounted"
    MIGRATING = "migrating"
    INVALID = "invalid"  # Bad name or ambiguous storage

    @property
    def needs_mount(self) -> bool:
        """Whether the orchestrator has work to do for this state."""
        return self in (
            LifecycleState.ENCRYPTED_UNMOUNTED,
            LifecycleState.ENCRYPTED_MOUNTED,
            LifecycleState.MIGRATING,
        )

    @property
    def is_failure(self) -> bool:
        """Whether classification alone already fails the target."""
        return self in (LifecycleState.NOT_FOUND, LifecycleState.INVALID)


# =============================================================================
# Classification inputs and outputs
# =============================================================================


@dataclass(frozen=True)
class TargetFacts:
    """
    Raw observations about one target. Gathered fresh per target.

    encrypted_paths holds every <name>.ecryptfs-* directory found; more
    than one is ambiguous. mounted refers to the single encrypted path
    when exactly one exists.
    """

    plain_exists: bool
    encrypted_paths: tuple = ()
    mounted: bool = False


@dataclass
class TargetPlan:
    """
    Result of classifying one target.

    Usage:
        plan = classify("foo", facts, encrypt=True, create=False, ...)
        if plan.state.needs_mount:
            ensure_mounted(plan, ...)
    """

    name: str
    state: LifecycleState
    mount_point: Optional[Path] = None
    storage_path: Optional[Path] = None
    migrate_source: Optional[Path] = None
    create_storage: bool = False
    message: str = ""

    @property
    def signature(self) -> str:
        """Signature embedded in the storage path ("" if none yet)."""
        if self.storage_path is None:
            return ""
        return Paths.signature_of(self.storage_path) or ""


# =============================================================================
# Outcomes
# =============================================================================


@dataclass
class TargetOutcome:
    """What happened to one target. state is None if classification itself failed."""

    name: str
    ok: bool
    state: Optional[LifecycleState]
    mount_point: Optional[Path] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Outcomes of the whole batch. Exit code is binary."""

    outcomes: List[TargetOutcome] = field(default_factory=list)

    def add(self, outcome: TargetOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def failed(self) -> List[TargetOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
