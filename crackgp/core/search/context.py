# crackgp/core/search/context.py
"""
Run context threaded into fitness function calls.

The context is the only mutable state a fitness function may touch. In the
sequential evaluation path it is passed from one individual to the next; in the
parallel path every task receives a copy of the generation-start context and
the returned copies are merged back in slot order.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

import numpy as np


@dataclass
class RunContext:
    """
    Mutable per-run context visible to the fitness function.

    Attributes:
        generation: Current generation index
        loss_threshold: Current primary loss threshold
        variance_threshold: Current variance-loss threshold
        evaluations: Number of fitness function calls made so far
        constant_values: Values for random-constant placeholders, by name
        userdata: Free-form data owned by the fitness function
    """

    generation: int = 0
    loss_threshold: float = 1.0
    variance_threshold: float = 1.0
    evaluations: int = 0
    constant_values: Dict[str, float] = field(default_factory=dict)
    userdata: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> 'RunContext':
        return copy.deepcopy(self)

    def merge(self, updates: Sequence['RunContext']) -> 'RunContext':
        """
        Fold contexts returned by independent tasks back into this one.

        ``updates`` must be ordered by population slot. Evaluation counts are
        added as deltas relative to this context. Constant values and userdata
        entries a task added, changed or removed are applied in slot order, so
        a later slot wins on conflicting keys and a key one task deleted stays
        deleted unless a later task sets it again.

        Returns:
            A new merged context; ``self`` is left unchanged.
        """
        merged = self.copy()
        for update in updates:
            merged.evaluations += update.evaluations - self.evaluations
            _apply_changes(self.constant_values, update.constant_values, merged.constant_values)
            _apply_changes(self.userdata, update.userdata, merged.userdata)
        return merged


_MISSING = object()


def _apply_changes(base: Dict[str, Any], update: Dict[str, Any], target: Dict[str, Any]):
    """Apply to ``target`` the entries ``update`` added, changed or removed relative to ``base``."""
    for key in base:
        if key not in update:
            target.pop(key, None)
    for key, value in update.items():
        if _changed(base.get(key, _MISSING), value):
            target[key] = copy.deepcopy(value)


def _changed(old: Any, new: Any) -> bool:
    if old is _MISSING:
        return True
    if isinstance(old, np.ndarray) or isinstance(new, np.ndarray):
        return not np.array_equal(old, new)
    try:
        return bool(old != new)
    except (TypeError, ValueError):
        return True
