"""Batched mutations.

While a ``transaction`` is open, writes still mark derived values stale but
the reactions they trigger wait in the queue; they run once, after the
outermost transaction closes, and see every write made inside it.
"""

from __future__ import annotations

from contextlib import ContextDecorator
from typing import Callable, TypeVar

from docmirror._tracking import begin_batch, end_batch

F = TypeVar("F", bound=Callable)


class transaction(ContextDecorator):
    """Open a batch for a block, or for every call when used as a decorator.

    Usage:
        with transaction():
            data.set({})
            address.set(None)
            # reactions run here, once
    """

    def __enter__(self) -> transaction:
        begin_batch()
        return self

    def __exit__(self, *exc_info) -> bool:
        end_batch()
        return False


def action(fn: F) -> F:
    """Decorator: run fn inside a transaction."""
    return transaction()(fn)
