import pytest

from lsgit import data
from lsgit.store import ObjectStore


class CountingStore(data.MemoryStore):
    def __init__(self):
        super().__init__()
        self.writes = []

    def set(self, key, value):
        self.writes.append(key)
        super().set(key, value)


@pytest.fixture
def backend():
    return CountingStore()


@pytest.fixture
def store(backend):
    return ObjectStore(backend)


@pytest.fixture
def git_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(data, 'GIT_DIR', str(tmp_path / '.lsgit'))
    return data.GIT_DIR
