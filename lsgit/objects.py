"""Blob, tree and commit objects and their canonical encoding.

Every object is stored as ``<type> <body length>\\0<body>`` under the SHA-1 of
those bytes. Objects are mutable builders until frozen; frozen objects are
the snapshots that get stored and loaded, and cache their digest.
"""
import copy
import hashlib
import json
from types import MappingProxyType
from typing import Callable, Iterable

from typing_extensions import Self

from . import types
from .errors import ParseError, UnknownKind, InvalidObject, FrozenObjectError, ObjectNotFound
from .registry import DEFAULT_KIND, register_kind, lookup_kind

# Called with (name, oid) for every child a tree or commit body refers to
Resolver = Callable[[str, types.OID], 'GitObject']

_MODES = {'blob': types.BLOB_MODE, 'tree': types.TREE_MODE}
_RESERVED_ATTRIBUTES = ('tree', 'parent')
ROOT_NAME = 'ROOT'

# JSON.stringify switches integral numbers to exponent notation from here on
_MAX_PLAIN_INTEGRAL = 1e21


def hash_contents(data: bytes) -> types.OID:
    return hashlib.sha1(data).hexdigest()


class GitObject:
    type_: types.ObjectType

    def __init__(self, name: str = ''):
        self._frozen = False
        self._digest = None
        self.name = name

    def __setattr__(self, key, value):
        if not key.startswith('_') and getattr(self, '_frozen', False):
            raise FrozenObjectError(f'Cannot set {key!r} on a frozen {self.type_}, thaw() it first')
        super().__setattr__(key, value)

    def __repr__(self):
        state = 'frozen' if self._frozen else 'mutable'
        return f'<{type(self).__name__} {self.name!r} {state}>'

    @property
    def frozen(self) -> bool:
        return self._frozen

    def encode(self) -> bytes:
        raise NotImplementedError

    def file_contents(self) -> bytes:
        body = self.encode()
        return self.type_.encode() + b' ' + str(len(body)).encode() + b'\x00' + body

    def digest(self) -> types.OID:
        if self._digest is not None:
            return self._digest
        oid = hash_contents(self.file_contents())
        if self._frozen:
            self._digest = oid
        return oid

    def descendants(self) -> list['GitObject']:
        return []

    def freeze(self) -> Self:
        """Return an immutable snapshot of this object (itself if already frozen)."""
        if self._frozen:
            return self
        snapshot = copy.copy(self)
        snapshot._seal()
        return snapshot

    def thaw(self) -> Self:
        """Return a mutable shallow copy; frozen children stay shared."""
        obj = copy.copy(self)
        obj._frozen = False
        obj._digest = None
        obj._unseal()
        return obj

    def with_name(self, name: str) -> Self:
        """Same content under another name, sharing everything else."""
        obj = copy.copy(self)
        object.__setattr__(obj, 'name', name)
        return obj

    def _seal(self):
        self._frozen = True

    def _unseal(self):
        pass

    def _check_mutable(self):
        if self._frozen:
            raise FrozenObjectError(f'{self.type_} {self.name!r} is frozen, thaw() it first')


class Blob(GitObject):
    """A named, typed payload. The name is not part of the stored body."""

    type_ = 'blob'
    kind_tag = DEFAULT_KIND

    def __init__(self, name: str = '', payload: types.Payload | None = None):
        super().__init__(name)
        self.payload = dict(payload or {})

    def __getitem__(self, key):
        return self.payload[key]

    def get(self, key, default=None):
        return self.payload.get(key, default)

    def encode(self) -> bytes:
        body = {key: _json_value(value) for key, value in self.payload.items()
                if key not in ('name', '__type__')}
        body['__type__'] = self.kind_tag
        try:
            return json.dumps(body, separators=(',', ':'), ensure_ascii=False,
                              allow_nan=False).encode()
        except (TypeError, ValueError) as e:
            raise InvalidObject(f'Payload of blob {self.name!r} is not serializable: {e}') from e

    def _seal(self):
        self.payload = _frozen_value(self.payload)
        super()._seal()

    def _unseal(self):
        self.payload = _thawed_value(self.payload)


register_kind(DEFAULT_KIND, Blob)


class Tree(GitObject):
    type_ = 'tree'

    def __init__(self, name: str = '', entries: Iterable[GitObject] | None = None):
        super().__init__(name)
        self._entries = list(entries or [])

    @property
    def entries(self) -> tuple[GitObject, ...]:
        return tuple(self._entries)

    def tree_entries(self) -> list[types.TreeEntry]:
        result = []
        for child in self._entries:
            if not isinstance(child, (Blob, Tree)):
                raise InvalidObject(f'A tree can only hold blobs and trees, got {child!r}')
            _check_entry_name(child.name)
            result.append(types.TreeEntry(mode=_MODES[child.type_], type_=child.type_,
                                          oid=child.digest(), name=child.name))
        return result

    def encode(self) -> bytes:
        return '\n'.join(f'{mode} {type_} {oid} {name}'
                         for mode, type_, oid, name
                         in self.tree_entries()).encode()

    def descendants(self) -> list[GitObject]:
        return list(self._entries)

    def add_child(self, child: GitObject) -> Self:
        self._check_mutable()
        self._entries.append(child)
        return self

    def create_blob(self, name: str, payload: types.Payload | None = None,
                    kind: str | None = None) -> Blob:
        constructor = lookup_kind(kind) if kind is not None else Blob
        blob = constructor(name=name, payload=payload)
        self.add_child(blob)
        return blob

    def create_tree(self, name: str) -> 'Tree':
        tree = Tree(name)
        self.add_child(tree)
        return tree

    def get_child(self, name: str) -> GitObject | None:
        index = self._index_of(name)
        return self._entries[index] if index is not None else None

    def replace_child(self, name: str, new: GitObject) -> GitObject | None:
        """Put `new` in the position of the entry called `name`.

        Returns the replaced child, or None when there is no such entry (the
        tree is left untouched).
        """
        self._check_mutable()
        index = self._index_of(name)
        if index is None:
            return None
        old = self._entries[index]
        self._entries[index] = new
        return old

    def replace_blob(self, name: str, payload: types.Payload | None = None,
                     kind: str | None = None) -> GitObject | None:
        constructor = lookup_kind(kind) if kind is not None else Blob
        return self.replace_child(name, constructor(name=name, payload=payload))

    def remove_child(self, name: str) -> GitObject | None:
        self._check_mutable()
        index = self._index_of(name)
        if index is None:
            return None
        return self._entries.pop(index)

    def create_path(self, path: types.Path | list[str]) -> 'Tree':
        """Walk `path`, creating missing trees, and return the leaf tree.

        Frozen trees along the way are swapped for thawed copies in their
        parent, so the edit never touches stored snapshots.
        """
        tree = self
        for segment in _split_path(path):
            tree._check_mutable()
            index = tree._index_of(segment)
            if index is None:
                tree = tree.create_tree(segment)
                continue
            child = tree._entries[index]
            if not isinstance(child, Tree):
                raise InvalidObject(f'{segment!r} is a {child.type_}, not a tree')
            if child.frozen:
                child = child.thaw()
                tree._entries[index] = child
            tree = child
        return tree

    def get_path(self, path: types.Path | list[str]) -> GitObject | None:
        node = self
        for segment in _split_path(path):
            if not isinstance(node, Tree):
                return None
            node = node.get_child(segment)
            if node is None:
                return None
        return node

    def _index_of(self, name):
        for index, child in enumerate(self._entries):
            if child.name == name:
                return index
        return None

    def _seal(self):
        self._entries = tuple(child.freeze() for child in self._entries)
        super()._seal()

    def _unseal(self):
        self._entries = list(self._entries)


class Commit(GitObject):
    type_ = 'commit'

    def __init__(self, tree: Tree, parent: types.OID | None = None,
                 attributes: types.Attributes | None = None, message: str = '',
                 name: str = ''):
        super().__init__(name)
        self.tree = tree
        self.parent = parent
        self.attributes = dict(attributes or {})
        self.message = message

    def encode(self) -> bytes:
        if not isinstance(self.tree, Tree):
            raise InvalidObject(f'A commit must point at a tree, got {self.tree!r}')
        lines = [f'tree {self.tree.digest()}']
        if self.parent:
            lines.append(f'parent {self.parent}')
        for key, value in self.attributes.items():
            _check_attribute(key, value)
            lines.append(f'{key} {value}')
        return ('\n'.join(lines) + '\n\n' + self.message).encode()

    def descendants(self) -> list[GitObject]:
        return [self.tree]

    def get_tree(self) -> Tree:
        """A mutable copy of this commit's tree, to edit for the next commit."""
        return self.tree.thaw()

    def _seal(self):
        self.tree = self.tree.freeze()
        self.attributes = MappingProxyType(dict(self.attributes))
        super()._seal()

    def _unseal(self):
        self.attributes = dict(self.attributes)


def _frozen_value(value):
    if isinstance(value, (dict, MappingProxyType)):
        return MappingProxyType({key: _frozen_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_frozen_value(item) for item in value)
    return value


def _thawed_value(value):
    if isinstance(value, (dict, MappingProxyType)):
        return {key: _thawed_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thawed_value(item) for item in value]
    return value


def _json_value(value):
    """Plain JSON types, with integral floats written the way JSON.stringify does."""
    if isinstance(value, (dict, MappingProxyType)):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    if isinstance(value, float) and value.is_integer() and abs(value) < _MAX_PLAIN_INTEGRAL:
        return int(value)
    return value


def _split_path(path):
    if isinstance(path, str):
        path = path.split('/')
    return [segment for segment in path if segment]


def _check_entry_name(name):
    if not name or '/' in name or '\n' in name:
        raise InvalidObject(f'Invalid tree entry name {name!r}')


def _check_attribute(key, value):
    if not key or key in _RESERVED_ATTRIBUTES or ' ' in key or '\n' in key:
        raise InvalidObject(f'Invalid commit attribute name {key!r}')
    if not isinstance(value, str) or '\n' in value:
        raise InvalidObject(f'Invalid value for commit attribute {key!r}: {value!r}')


def parse_file_contents(data: bytes) -> tuple[types.ObjectType, bytes]:
    header, sep, body = data.partition(b'\x00')
    if not sep:
        raise ParseError('Missing NUL after object header')
    type_, _, size = header.partition(b' ')
    if not size.isdigit():
        raise ParseError(f'Malformed object header {header!r}')
    if int(size) != len(body):
        raise ParseError(f'Object header says {int(size)} bytes, body has {len(body)}')
    try:
        return type_.decode('ascii'), body
    except UnicodeDecodeError as e:
        raise ParseError(f'Malformed object type {type_!r}') from e


def decode(type_: str, name: str, body: bytes, resolve: Resolver) -> GitObject:
    try:
        decoder = _DECODERS[type_]
    except KeyError:
        raise UnknownKind(f'Unknown object type {type_!r}') from None
    obj = decoder(name, body, resolve)
    obj._seal()
    return obj


def _decode_blob(name, body, resolve):
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ParseError(f'Blob body is not valid JSON: {e}') from e
    if not isinstance(payload, dict):
        raise ParseError('Blob body must be a JSON object')
    tag = payload.pop('__type__', None)
    if not isinstance(tag, str):
        raise ParseError(f'Blob body has no string __type__ tag: {tag!r}')
    blob = lookup_kind(tag)(name=name, payload=payload)
    if not isinstance(blob, Blob):
        raise ParseError(f'Kind {tag!r} did not build a blob')
    return blob


def _decode_tree(name, body, resolve):
    entries = []
    for line in _lines(body):
        parts = line.split(' ', 3)
        if len(parts) != 4:
            raise ParseError(f'Malformed tree entry {line!r}')
        mode, type_, oid, child_name = parts
        if _MODES.get(type_) != mode:
            raise ParseError(f'Malformed tree entry {line!r}')
        child = _resolve(resolve, child_name, oid)
        if child.type_ != type_:
            raise ParseError(f'Tree entry {child_name!r} is a {child.type_}, expected {type_}')
        entries.append(child)
    return Tree(name, entries)


def _decode_commit(name, body, resolve):
    header, sep, message = _text(body).partition('\n\n')
    if not sep:
        raise ParseError('Commit has no blank line before its message')

    tree_oid = None
    parent = None
    attributes = {}
    for line in header.split('\n'):
        key, space, value = line.partition(' ')
        if not space:
            raise ParseError(f'Malformed commit header line {line!r}')
        if key == 'tree' and tree_oid is None:
            tree_oid = value
        elif key == 'parent' and parent is None:
            parent = value
        elif key in _RESERVED_ATTRIBUTES:
            raise ParseError(f'Duplicate {key!r} line in commit')
        else:
            attributes[key] = value

    if tree_oid is None:
        raise ParseError('Commit has no tree')
    tree = _resolve(resolve, ROOT_NAME, tree_oid)
    if not isinstance(tree, Tree):
        raise ParseError(f'Commit tree {tree_oid} is a {tree.type_}')
    return Commit(tree, parent=parent, attributes=attributes, message=message, name=name)


def _resolve(resolve, name, oid):
    try:
        return resolve(name, oid)
    except ObjectNotFound as e:
        raise ParseError(f'Entry {name!r} refers to missing object {oid}') from e


def _text(body):
    try:
        return body.decode()
    except UnicodeDecodeError as e:
        raise ParseError(f'Object body is not UTF-8: {e}') from e


def _lines(body):
    text = _text(body)
    return text.split('\n') if text else []


_DECODERS = {
    'blob': _decode_blob,
    'tree': _decode_tree,
    'commit': _decode_commit,
}
