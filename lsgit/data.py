import logging
import os
import tempfile
import threading
from contextlib import contextmanager, suppress
from typing import Protocol

from .errors import StoreIOError

logger = logging.getLogger(__name__)

GIT_DIR: str = '.lsgit'


@contextmanager
def change_git_dir(new_dir):
    global GIT_DIR
    old_dir = GIT_DIR
    GIT_DIR = f'{new_dir}/.lsgit'
    try:
        yield
    finally:
        GIT_DIR = old_dir


class KeyValueStore(Protocol):
    """What the object store needs from its storage: single-key get/set.

    Keys are object digests or ref names such as ``refs/heads/master``.
    `compare_and_set` is the only multi-step operation and must be atomic
    against every other writer of the same storage.
    """

    def has(self, key: str) -> bool: ...

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def compare_and_set(self, key: str, old: bytes | None, new: bytes) -> bool: ...


class MemoryStore:
    def __init__(self, data: dict[str, bytes] | None = None):
        self.data = data if data is not None else {}
        self._lock = threading.Lock()

    def has(self, key):
        return key in self.data

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = bytes(value)

    def compare_and_set(self, key, old, new):
        with self._lock:
            if self.get(key) != old:
                return False
            self.set(key, new)
            return True


class DirStore:
    """Objects in ``<git_dir>/objects/<oid>``, refs in ``<git_dir>/<ref>``.

    Every write goes to a fresh temporary file that is renamed into place.
    Ref swaps hold ``<ref>.lock``, created exclusively, as git does.
    """

    def __init__(self, git_dir: str | None = None):
        self.git_dir = git_dir if git_dir is not None else GIT_DIR

    def init(self):
        try:
            os.makedirs(f'{self.git_dir}/objects', exist_ok=True)
            os.makedirs(f'{self.git_dir}/refs/heads', exist_ok=True)
        except OSError as e:
            raise StoreIOError(f'Cannot create repository in {self.git_dir}: {e}') from e

    def is_initialized(self) -> bool:
        return os.path.isdir(f'{self.git_dir}/objects')

    def _path(self, key):
        if key.startswith('refs/'):
            return f'{self.git_dir}/{key}'
        return f'{self.git_dir}/objects/{key}'

    def has(self, key):
        return os.path.isfile(self._path(key))

    def get(self, key):
        path = self._path(key)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIOError(f'Cannot read {key}: {e}') from e

    def set(self, key, value):
        path = self._path(key)
        dirname = os.path.dirname(path)
        try:
            os.makedirs(dirname, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=dirname, prefix=f'.{os.path.basename(path)}.',
                                            suffix='.tmp')
        except OSError as e:
            raise StoreIOError(f'Cannot write {key}: {e}') from e

        try:
            with os.fdopen(fd, 'wb') as out:
                out.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            with suppress(FileNotFoundError):
                os.remove(tmp_path)
            raise StoreIOError(f'Cannot write {key}: {e}') from e
        logger.debug('Wrote %s (%d bytes)', path, len(value))

    def compare_and_set(self, key, old, new):
        path = self._path(key)
        lock_path = f'{path}.lock'
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.warning('%s is locked by another writer', lock_path)
            return False
        except OSError as e:
            raise StoreIOError(f'Cannot lock {key}: {e}') from e

        published = False
        try:
            with os.fdopen(fd, 'wb') as out:
                out.write(new)
            if self.get(key) != old:
                return False
            os.replace(lock_path, path)
            published = True
        except OSError as e:
            raise StoreIOError(f'Cannot write {key}: {e}') from e
        finally:
            if not published:
                with suppress(FileNotFoundError):
                    os.remove(lock_path)
        logger.debug('Swapped %s to %r', path, new)
        return True
