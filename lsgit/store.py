"""Content-addressable persistence of object graphs and the head ref."""
import logging
from typing import Iterator

from . import objects
from . import types
from .data import KeyValueStore
from .errors import ObjectNotFound, ParseError, HeadConflict

logger = logging.getLogger(__name__)

UNSET = object()


class ObjectStore:
    def __init__(self, backend: KeyValueStore, head_ref: str = types.HEAD_REF):
        self.backend = backend
        self.head_ref = head_ref

    def exists(self, oid: types.OID) -> bool:
        return self.backend.has(oid)

    def save(self, obj: objects.GitObject) -> types.OID:
        """Store `obj` and everything it reaches that is not stored yet.

        Children are written before their parent, so a stored object always
        has its whole subgraph stored and can be skipped on sight.
        """
        return self._save(obj.freeze())

    def _save(self, obj):
        oid = obj.digest()
        if self.backend.has(oid):
            return oid
        for child in obj.descendants():
            self._save(child)
        logger.debug('Saving %s %s', obj.type_, oid)
        self.backend.set(oid, obj.file_contents())
        return oid

    def read_object(self, oid: types.OID) -> tuple[types.ObjectType, bytes]:
        data = self.backend.get(oid)
        if data is None:
            raise ObjectNotFound(oid)
        if objects.hash_contents(data) != oid:
            raise ParseError(f'Object {oid} is corrupt, its contents hash differently')
        return objects.parse_file_contents(data)

    def load(self, name: str, oid: types.OID,
             resolver: dict[types.OID, objects.GitObject] | None = None) -> objects.GitObject:
        """Decode the object `oid` and everything under it.

        `resolver` maps digests already decoded during this load (or a
        series of loads) to their objects, so a digest is decoded once and
        repeated references share one frozen instance.
        """
        if resolver is None:
            resolver = {}
        if oid in resolver:
            obj = resolver[oid]
            return obj if obj.name == name else obj.with_name(name)

        type_, body = self.read_object(oid)
        obj = objects.decode(type_, name, body,
                             lambda child_name, child_oid: self.load(child_name, child_oid, resolver))
        resolver[oid] = obj
        return obj

    def get_head(self) -> types.OID | None:
        return self._read_head()[1]

    def _read_head(self):
        raw = self.backend.get(self.head_ref)
        if raw is None:
            return None, None
        try:
            return raw, raw.decode('ascii').strip() or None
        except UnicodeDecodeError as e:
            raise ParseError(f'{self.head_ref} does not hold a digest: {raw!r}') from e

    def commit(self, tree: objects.Tree, attributes: types.Attributes | None = None,
               message: str = '', expected_head=UNSET) -> objects.Commit:
        """Store `tree` under a new commit on top of head and advance head.

        With `expected_head`, the commit is refused with HeadConflict unless
        head still points there (None meaning no commit yet). Head is
        advanced with a compare-and-swap on the backend, so a commit racing
        another writer fails with HeadConflict instead of dropping a commit.
        """
        raw_head, head = self._read_head()
        if expected_head is not UNSET and expected_head != head:
            logger.warning('Refusing commit on %s: expected %s, found %s',
                           self.head_ref, expected_head, head)
            raise HeadConflict(expected_head, head)

        commit_ = objects.Commit(tree, parent=head, attributes=attributes,
                                 message=message).freeze()
        oid = self._save(commit_)
        if not self.backend.compare_and_set(self.head_ref, raw_head, oid.encode()):
            actual = self.get_head()
            logger.warning('%s moved to %s while committing %s', self.head_ref, actual, oid)
            raise HeadConflict(head, actual)
        logger.debug('Updated %s: %s -> %s', self.head_ref, head, oid)
        return commit_

    def get_head_commit(self) -> objects.Commit | None:
        oid = self.get_head()
        if oid is None:
            return None
        return self._load_commit(oid, {})

    def get_head_tree(self) -> objects.Tree | None:
        commit_ = self.get_head_commit()
        return commit_.tree if commit_ is not None else None

    def _load_commit(self, oid, resolver):
        commit_ = self.load('', oid, resolver)
        if not isinstance(commit_, objects.Commit):
            raise ParseError(f'Expected {oid} to be a commit, found a {commit_.type_}')
        return commit_

    def iter_commits(self, oid: types.OID | None = None) -> Iterator[tuple[types.OID, objects.Commit]]:
        """Walk the history from `oid` (default: head) back to the first commit."""
        if oid is None:
            oid = self.get_head()
        resolver = {}
        while oid:
            commit_ = self._load_commit(oid, resolver)
            yield oid, commit_
            oid = commit_.parent

    def iter_objects_in_commits(self, oid: types.OID | None = None) -> Iterator[types.OID]:
        """Every object digest reachable from `oid` (default: head), once each."""
        visited = set()

        def iter_objects(obj):
            obj_oid = obj.digest()
            if obj_oid in visited:
                return
            visited.add(obj_oid)
            yield obj_oid
            for child in obj.descendants():
                yield from iter_objects(child)

        for _, commit_ in self.iter_commits(oid):
            yield from iter_objects(commit_)
