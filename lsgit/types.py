from typing import TypeAlias, NamedTuple, Literal

Path: TypeAlias = str  # a '/'-delimited path inside a tree
OID: TypeAlias = str  # hash
ObjectType: TypeAlias = Literal['blob', 'tree', 'commit']
Payload: TypeAlias = dict[str, object]
Attributes: TypeAlias = dict[str, str]

HEAD_REF = 'refs/heads/master'

BLOB_MODE = '100644'
TREE_MODE = '040000'


class TreeEntry(NamedTuple):
    mode: str
    type_: ObjectType
    oid: OID
    name: str
