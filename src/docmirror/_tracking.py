"""Dependency tracking, invalidation and deferral.

Reads inside a Computed register the reader through ``current_derivation``.
A write walks the reader graph at once: every Computed downstream of it is
marked stale before anything else happens, so a read never sees a value
older than the last write, even inside an open batch. Reactions are only
queued by that walk. The queue drains when no batch is open, and a reaction
that writes while the queue drains just adds to it.

``defer`` is the hook remote callbacks use to push a mirror mutation out of
the callback and onto the host event loop.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterable
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from docmirror.computed import Computed
    from docmirror.reaction import Reaction

current_derivation: contextvars.ContextVar[Computed | None] = contextvars.ContextVar(
    "current_derivation", default=None
)

_batch_depth = 0
_draining = False
_queued: dict[Reaction, None] = {}  # insertion-ordered set

Scheduler = Callable[[Callable[[], None]], object]
_scheduler: Scheduler | None = None


def begin_batch() -> None:
    global _batch_depth
    _batch_depth += 1


def end_batch() -> None:
    global _batch_depth
    _batch_depth -= 1
    _drain()


def propagate(readers: Iterable) -> None:
    """Pass an invalidation on to readers without running any reaction."""
    for reader in list(readers):
        reader._invalidate()


def invalidate(readers: Iterable) -> None:
    """Entry point for a write: propagate, then drain if nothing holds the queue."""
    propagate(readers)
    _drain()


def enqueue(reaction: Reaction) -> None:
    _queued[reaction] = None


def _drain() -> None:
    global _draining
    if _batch_depth or _draining:
        return
    _draining = True
    try:
        while _queued:
            reaction = next(iter(_queued))
            del _queued[reaction]
            reaction._run()
    except BaseException:
        _queued.clear()
        raise
    finally:
        _draining = False


def get_pending_count() -> int:
    """Reactions waiting for the current batch to close."""
    return len(_queued)


def set_scheduler(scheduler: Scheduler | None) -> None:
    """Install the process-wide deferral hook.

    Typically ``asyncio.get_running_loop().call_soon``. ``None`` restores the
    default, which runs deferred steps immediately.
    """
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> Scheduler | None:
    return _scheduler


def defer(fn: Callable[[], None], scheduler: Scheduler | None = None) -> None:
    """Run fn through scheduler, the global scheduler, or right away."""
    target = scheduler if scheduler is not None else _scheduler
    if target is None:
        fn()
    else:
        target(fn)
