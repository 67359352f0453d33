# chrootcrypt SSOT core modules
# This package contains all single-source-of-truth modules for chrootcrypt.
# =============================================================================
# Version
# =============================================================================
from .version import VERSION

# =============================================================================
# Lifecycle
# =============================================================================
from .modes import BatchResult, LifecycleState, TargetFacts, TargetOutcome, TargetPlan
from .state import classify, inspect_target, resolve_target, validate_name

# =============================================================================
# Public API
# =============================================================================
__all__ = [
    # Version
    "VERSION",
    # Lifecycle types
    "LifecycleState",
    "TargetFacts",
    "TargetPlan",
    "TargetOutcome",
    "BatchResult",
    # Classification
    "classify",
    "inspect_target",
    "resolve_target",
    "validate_name",
]
