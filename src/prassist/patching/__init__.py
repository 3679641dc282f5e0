from prassist.patching.cascade import (
    ApplyOutcome,
    OutcomeKind,
    PatchApplier,
    StrategyResult,
)
from prassist.patching.normalizer import NormalizedPatch, normalize_patch

__all__ = [
    "ApplyOutcome",
    "NormalizedPatch",
    "OutcomeKind",
    "PatchApplier",
    "StrategyResult",
    "normalize_patch",
]
