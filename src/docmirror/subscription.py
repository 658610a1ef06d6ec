"""Ownership of the single snapshot listener a mirror may hold."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger("docmirror.subscription")


class Subscription:
    """Holds at most one unsubscribe capability.

    ``replace`` takes the previous capability out of the slot and invokes it
    before registering listeners on the new reference, so two listeners are
    never live at once. Errors raised while unsubscribing are logged and
    dropped.
    """

    __slots__ = ("_unsubscribe", "_reference")

    def __init__(self) -> None:
        self._unsubscribe: Callable[[], None] | None = None
        self._reference = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    @property
    def reference(self):
        return self._reference

    def replace(self, reference, on_value, on_error) -> None:
        self.close()
        if reference is None:
            return
        self._unsubscribe = reference.on_snapshot(on_value, on_error)
        self._reference = reference
        logger.info("Listening to %s", getattr(reference, "path", reference))

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        reference, self._reference = self._reference, None
        if unsubscribe is None:
            return
        try:
            unsubscribe()
        except Exception:
            logger.debug("Ignoring error while unsubscribing", exc_info=True)
        else:
            logger.info("Stopped listening to %s", getattr(reference, "path", reference))
