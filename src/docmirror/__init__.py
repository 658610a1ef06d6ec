"""docmirror: a reactive local mirror of a single remote document."""

from importlib.metadata import version as _version

__version__ = _version("docmirror")

from docmirror._tracking import get_pending_count, set_scheduler
from docmirror.observable import Observable
from docmirror.computed import Computed, computed
from docmirror.reaction import Reaction, reaction
from docmirror.action import action, transaction
from docmirror.stream import EventStream
from docmirror.path import ResolvedAddress, address_ready, resolve
from docmirror.merge import MergePlan, plan_merge
from docmirror.subscription import Subscription
from docmirror.document import DocumentMirror
from docmirror.errors import (
    DocMirrorError,
    InvalidAddress,
    NoActiveReference,
    NoSessionConfigured,
    RemoteReadFailure,
    RemoteWriteFailure,
    WriteSuperseded,
)
# memory and textual are opt-in; import them explicitly

__all__ = [
    "Observable",
    "Computed",
    "computed",
    "Reaction",
    "reaction",
    "action",
    "transaction",
    "get_pending_count",
    "set_scheduler",
    "EventStream",
    "ResolvedAddress",
    "address_ready",
    "resolve",
    "MergePlan",
    "plan_merge",
    "Subscription",
    "DocumentMirror",
    "DocMirrorError",
    "InvalidAddress",
    "NoActiveReference",
    "NoSessionConfigured",
    "RemoteReadFailure",
    "RemoteWriteFailure",
    "WriteSuperseded",
]
