import pytest

from docmirror.memory import MemoryApp, MemoryDocumentStore


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return self._data


@pytest.fixture
def store():
    return MemoryDocumentStore(
        {
            "users/u1": {"x": 1, "y": 2},
            "users/u2": {"name": "Grace"},
        }
    )


@pytest.fixture
def app(store):
    return MemoryApp(store)


def record_changes(mirror):
    """Collect (path, value) change records made to mirror.data."""
    records = []
    mirror._data.subscribe(lambda path, value: records.append(path))
    return records
