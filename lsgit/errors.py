from . import types


class LsgitError(Exception):
    pass


class ObjectNotFound(LsgitError, KeyError):
    def __init__(self, oid: types.OID):
        super().__init__(oid)
        self.oid = oid

    def __str__(self):
        return f'Object {self.oid} not found'


class ParseError(LsgitError, ValueError):
    pass


class UnknownKind(LsgitError):
    pass


class InvalidObject(LsgitError, ValueError):
    pass


class FrozenObjectError(LsgitError, TypeError):
    pass


class StoreIOError(LsgitError):
    pass


class HeadConflict(LsgitError):
    def __init__(self, expected: types.OID | None, actual: types.OID | None):
        super().__init__(f'Expected head {expected}, found {actual}')
        self.expected = expected
        self.actual = actual
