"""Blob kinds: a table from the `__type__` tag stored in a blob body to the
constructor that rebuilds the blob on load.

Application payload types subclass `objects.Blob` and register themselves::

    @register_kind('Note')
    class Note(Blob):
        ...

The constructor is called as ``constructor(name=..., payload=...)``.
"""
from typing import Callable

from .errors import UnknownKind

DEFAULT_KIND = 'GitBlob'


class KindRegistry:
    def __init__(self):
        self._kinds: dict[str, Callable] = {}

    def register(self, tag: str, constructor: Callable | None = None):
        if constructor is None:
            return lambda constructor_: self.register(tag, constructor_)

        if isinstance(constructor, type):
            constructor.kind_tag = tag
        self._kinds[tag] = constructor
        return constructor

    def lookup(self, tag: str) -> Callable:
        try:
            return self._kinds[tag]
        except KeyError:
            raise UnknownKind(f'Unknown blob kind {tag!r}') from None

    def __contains__(self, tag):
        return tag in self._kinds

    def __iter__(self):
        return iter(self._kinds)


default_registry = KindRegistry()


def register_kind(tag: str, constructor: Callable | None = None):
    return default_registry.register(tag, constructor)


def lookup_kind(tag: str) -> Callable:
    return default_registry.lookup(tag)
