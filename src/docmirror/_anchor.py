"""Data anchor — plain structures holding all reactive state.

Observables, Computeds and Reactions are thin handles keyed by an integer id.
Their values, reader sets and dependency sets live here. A handle's entries
stay until it is disposed; ``forget`` then removes them all.
"""

import itertools

# Observable state
values: dict[int, object] = {}
observers: dict[int, set] = {}  # id -> readers to invalidate on change
listeners: dict[int, list] = {}  # id -> callbacks receiving (path, value)

# Computed state
dependencies: dict[int, set] = {}
stale: dict[int, bool] = {}
cached_values: dict[int, object] = {}
derivation_fns: dict[int, object] = {}

# Reaction state; a reaction is live while it has an entry
effects: dict[int, object] = {}

TABLES = (values, observers, listeners, dependencies, stale,
          cached_values, derivation_fns, effects)

_ids = itertools.count(1)


def new_id() -> int:
    return next(_ids)


def forget(ident: int) -> None:
    for table in TABLES:
        table.pop(ident, None)


def size() -> int:
    """Total number of entries across all tables."""
    return sum(len(table) for table in TABLES)
