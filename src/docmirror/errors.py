__all__ = [
    "DocMirrorError",
    "InvalidAddress",
    "NoSessionConfigured",
    "NoActiveReference",
    "RemoteReadFailure",
    "RemoteWriteFailure",
    "WriteSuperseded",
]


class DocMirrorError(Exception):
    """
    Base class for errors raised by docmirror.
    """


class InvalidAddress(DocMirrorError, ValueError):
    """
    Raised when an address cannot be resolved to a document, e.g. it is
    empty, contains an empty segment, or names a field with no document.
    """

    def __init__(self, address, reason: str = "malformed address"):
        self.address = address
        super().__init__(f"Invalid address {address!r}: {reason}")


class NoSessionConfigured(DocMirrorError):
    """
    Raised when a remote operation is attempted with no app configured.
    """

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"No app configured for {operation}")


class NoActiveReference(DocMirrorError):
    """
    Raised by pass-through writes when the mirror has no active reference
    (no ready address, no app, or disabled).
    """


class RemoteReadFailure(DocMirrorError):
    """
    Raised when the document store rejects a read. The store's exception is
    chained as ``__cause__``.
    """

    def __init__(self, address: str, message: str = "read failed"):
        self.address = address
        super().__init__(f"{message} at {address!r}")


class RemoteWriteFailure(DocMirrorError):
    """
    Raised when the document store rejects a set, update, add or delete.
    The store's exception is chained as ``__cause__``.
    """

    def __init__(self, address: str, operation: str):
        self.address = address
        self.operation = operation
        super().__init__(f"{operation} failed at {address!r}")


class WriteSuperseded(DocMirrorError):
    """
    Raised instead of writing when the mirror's address changed while the
    write's existence check was in flight and superseded writes are
    configured to be cancelled.
    """

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Write to {address!r} superseded by an address change")
