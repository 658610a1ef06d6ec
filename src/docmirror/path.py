"""Address parsing and translation.

An address is a slash-delimited location in the document store, with one
optional leading slash. An even number of segments names a document; an odd
number names a field inside the document formed by all but the last segment:

    resolve("/users/u1")      -> ResolvedAddress("users/u1", None)
    resolve("/users/u1/age")  -> ResolvedAddress("users/u1", "age")

Inside the process the mirrored document is addressed with dotted memory
paths rooted at ``data`` (``data.profile.name``); the translation helpers
convert between the two forms relative to a document address.
"""

from __future__ import annotations

from typing import NamedTuple

from docmirror.errors import InvalidAddress

SEPARATOR = "/"
MEMORY_ROOT = "data"


class ResolvedAddress(NamedTuple):
    document_address: str
    field: str | None = None


def _segments(address: str) -> list[str]:
    pieces = address.split(SEPARATOR)
    if not pieces[0]:
        pieces = pieces[1:]
    return pieces


def address_ready(address: str | None) -> bool:
    """True when address names a whole document and can back a reference."""
    if not address:
        return False
    pieces = _segments(address)
    return "" not in pieces and len(pieces) % 2 == 0


def resolve(address: str | None) -> ResolvedAddress:
    """Split address into the document address and, for odd counts, a field.

    Raises InvalidAddress for an empty address, an empty segment, or a lone
    field with no document in front of it.
    """
    if not address:
        raise InvalidAddress(address, "empty")
    pieces = _segments(address)
    if not pieces or "" in pieces:
        raise InvalidAddress(address, "empty segment")
    if len(pieces) % 2 == 0:
        return ResolvedAddress(SEPARATOR.join(pieces))
    if len(pieces) == 1:
        raise InvalidAddress(address, "field without a document")
    return ResolvedAddress(SEPARATOR.join(pieces[:-1]), pieces[-1])


def join(parent: str, key: str) -> str:
    return parent.rstrip(SEPARATOR) + SEPARATOR + key.strip(SEPARATOR)


def memory_path_segments(path: str) -> tuple[str, ...]:
    """``data.a.b`` -> ``("a", "b")``; ``data`` -> ``()``."""
    if path == MEMORY_ROOT:
        return ()
    if path.startswith(MEMORY_ROOT + "."):
        path = path[len(MEMORY_ROOT) + 1:]
    return tuple(part for part in path.split(".") if part)


def memory_path_to_storage_path(root: str, path: str) -> str:
    """Translate a dotted memory path into a storage address under root."""
    segments = memory_path_segments(path)
    if not segments:
        return root
    return root.rstrip(SEPARATOR) + SEPARATOR + SEPARATOR.join(segments)


def storage_path_to_memory_path(root: str, storage_path: str) -> str:
    """Translate a storage address under root into a dotted memory path.

    Root is matched whole segment by segment, so ``users/u1`` is not a prefix
    of ``users/u10``. A path outside root keeps all of its segments.
    """
    segments = [part for part in storage_path.split(SEPARATOR) if part]
    prefix = [part for part in root.split(SEPARATOR) if part]
    if prefix and segments[:len(prefix)] == prefix:
        segments = segments[len(prefix):]
    if not segments:
        return MEMORY_ROOT
    return MEMORY_ROOT + "." + ".".join(segments)


def same_document(a: str | None, b: str | None) -> bool:
    """True when both addresses are ready and name the same document."""
    if not (address_ready(a) and address_ready(b)):
        return False
    return resolve(a).document_address == resolve(b).document_address
