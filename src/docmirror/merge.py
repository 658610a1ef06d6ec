"""Snapshot diffing — decide how an incoming document reaches the mirror.

Replacing the whole mirror notifies every reader; patching keys notifies only
readers of the keys that changed. ``plan_merge`` picks patches whenever they
are guaranteed to produce the incoming value, and falls back to a single
replacement otherwise:

* a replacement was requested (new address, missing document, new listener),
* the mirror is empty or not a mapping,
* the incoming value is not a mapping,
* the incoming value has fewer keys than the mirror; per-key patches cannot
  remove keys.

Keys present locally but absent from an incoming value with at least as many
keys are left alone.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import NamedTuple


class MergePlan(NamedTuple):
    replace: bool
    value: object
    patches: tuple[tuple[str, object], ...] = ()

    @property
    def mutation_count(self) -> int:
        return 1 if self.replace else len(self.patches)


def plan_merge(current: object, incoming: object, *, force_replace: bool = False) -> MergePlan:
    if (
        force_replace
        or not current
        or not isinstance(current, Mapping)
        or not isinstance(incoming, Mapping)
        or len(incoming) < len(current)
    ):
        return MergePlan(True, incoming)

    patches = tuple(
        (key, value)
        for key, value in incoming.items()
        if key not in current or current[key] != value
    )
    return MergePlan(False, incoming, patches)
