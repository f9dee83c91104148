import hashlib

import pytest

from lsgit import objects
from lsgit.errors import ParseError, UnknownKind, InvalidObject, FrozenObjectError, ObjectNotFound
from lsgit.objects import Blob, Tree, Commit


def resolver_for(*objs):
    table = {obj.digest(): obj for obj in objs}

    def resolve(name, oid):
        if oid not in table:
            raise ObjectNotFound(oid)
        return table[oid].freeze().with_name(name)

    return resolve


def test_blob_body_drops_name_and_tags_kind():
    blob = Blob('a.txt', {'text': 'hi'})
    assert blob.encode() == b'{"text":"hi","__type__":"GitBlob"}'


def test_file_contents_envelope():
    blob = Blob('a.txt', {'text': 'hi'})
    body = blob.encode()
    assert blob.file_contents() == b'blob ' + str(len(body)).encode() + b'\x00' + body
    assert blob.digest() == hashlib.sha1(blob.file_contents()).hexdigest()


def test_envelope_length_counts_utf8_bytes():
    blob = Blob('n', {'text': 'héllo'})
    type_, body = objects.parse_file_contents(blob.file_contents())
    assert type_ == 'blob'
    assert body == blob.encode()


def test_digest_ignores_name():
    assert Blob('a.txt', {'text': 'hi'}).digest() == Blob('b.txt', {'text': 'hi'}).digest()
    assert Tree('x').digest() == Tree('y').digest()


def test_digest_follows_content():
    assert Blob('a', {'text': 'hi'}).digest() != Blob('a', {'text': 'ho'}).digest()


def test_digest_is_stable():
    tree = Tree()
    tree.create_blob('a.txt', {'text': 'hi'})
    assert tree.digest() == tree.digest()


def test_tree_encoding():
    tree = Tree()
    blob = tree.create_blob('a.txt', {'text': 'hi'})
    sub = tree.create_tree('sub dir')
    assert tree.encode().decode() == (
        f'100644 blob {blob.digest()} a.txt\n'
        f'040000 tree {sub.digest()} sub dir'
    )
    assert Tree().encode() == b''


def test_tree_digest_changes_with_child_content():
    tree = Tree()
    sub = tree.create_path('a/b')
    before = tree.digest()
    sub.create_blob('c.txt', {'text': 'hi'})
    assert tree.digest() != before


def test_tree_keeps_insertion_order():
    first = Tree()
    first.create_blob('a', {'n': 1})
    first.create_blob('b', {'n': 2})
    second = Tree()
    second.create_blob('b', {'n': 2})
    second.create_blob('a', {'n': 1})
    assert first.digest() != second.digest()


def test_tree_rejects_bad_entry_names():
    tree = Tree()
    tree.create_blob('a/b', {})
    with pytest.raises(InvalidObject):
        tree.encode()


def test_commit_encoding():
    tree = Tree()
    commit_ = Commit(tree, parent='p' * 40, attributes={'author': 'ann lee', 'timestamp': '1'},
                     message='first line\n\nsecond paragraph')
    assert commit_.encode().decode() == (
        f'tree {tree.digest()}\n'
        f'parent {"p" * 40}\n'
        'author ann lee\n'
        'timestamp 1\n'
        '\n'
        'first line\n\nsecond paragraph'
    )
    assert commit_.descendants() == [tree]


def test_commit_without_parent():
    tree = Tree()
    assert Commit(tree, message='init').encode() == f'tree {tree.digest()}\n\ninit'.encode()


@pytest.mark.parametrize('attributes', [
    {'tree': 'x'},
    {'parent': 'x'},
    {'two words': 'x'},
    {'key': 'multi\nline'},
    {'key': 1},
])
def test_commit_rejects_unencodable_attributes(attributes):
    with pytest.raises(InvalidObject):
        Commit(Tree(), attributes=attributes).encode()


def test_blob_round_trip():
    blob = Blob('a.txt', {'text': 'hi', 'tags': ['x', 'y'], 'size': 2})
    decoded = objects.decode('blob', 'a.txt', blob.encode(), resolver_for())
    assert type(decoded) is Blob
    assert decoded.name == 'a.txt'
    assert decoded['tags'] == ('x', 'y')
    assert decoded.thaw().payload == {'text': 'hi', 'tags': ['x', 'y'], 'size': 2}
    assert decoded.digest() == blob.digest()


def test_tree_round_trip():
    tree = Tree('root')
    blob = tree.create_blob('a.txt', {'text': 'hi'})
    sub = tree.create_tree('sub')
    decoded = objects.decode('tree', 'root', tree.encode(), resolver_for(blob, sub))
    assert [child.name for child in decoded.entries] == ['a.txt', 'sub']
    assert [child.type_ for child in decoded.entries] == ['blob', 'tree']
    assert decoded.digest() == tree.digest()


def test_commit_round_trip():
    tree = Tree()
    tree.create_blob('a.txt', {'text': 'hi'})
    commit_ = Commit(tree, parent='a' * 40, attributes={'author': 'me'}, message='msg\n\nbody')
    decoded = objects.decode('commit', '', commit_.encode(), resolver_for(tree))
    assert decoded.parent == 'a' * 40
    assert dict(decoded.attributes) == {'author': 'me'}
    assert decoded.message == 'msg\n\nbody'
    assert decoded.tree.digest() == tree.digest()
    assert decoded.digest() == commit_.digest()
    assert decoded.tree.name == 'ROOT'


def test_decode_unknown_type():
    with pytest.raises(UnknownKind):
        objects.decode('tag', '', b'', resolver_for())


def test_decode_unknown_blob_kind():
    with pytest.raises(UnknownKind):
        objects.decode('blob', 'a', b'{"__type__":"NoSuchKind"}', resolver_for())


@pytest.mark.parametrize('body', [
    b'not json',
    b'[1, 2]',
    b'{"text":"no tag"}',
    b'{"__type__":[]}',
    b'{"__type__":1}',
])
def test_decode_malformed_blob(body):
    with pytest.raises(ParseError):
        objects.decode('blob', 'a', body, resolver_for())


@pytest.mark.parametrize('line', [
    '100644 blob abc',
    '040000 blob abc name',
    '100644 commit abc name',
])
def test_decode_malformed_tree_line(line):
    with pytest.raises(ParseError):
        objects.decode('tree', '', line.encode(), resolver_for())


def test_decode_tree_with_missing_child():
    line = f'100644 blob {"0" * 40} a.txt'
    with pytest.raises(ParseError) as excinfo:
        objects.decode('tree', '', line.encode(), resolver_for())
    assert isinstance(excinfo.value.__cause__, ObjectNotFound)


def test_decode_tree_entry_type_mismatch():
    blob = Blob('a', {'text': 'hi'})
    line = f'040000 tree {blob.digest()} a'
    with pytest.raises(ParseError):
        objects.decode('tree', '', line.encode(), resolver_for(blob))


@pytest.mark.parametrize('body', [
    b'tree abc',
    b'parent abc\n\nmsg',
    b'tree\n\nmsg',
])
def test_decode_malformed_commit(body):
    with pytest.raises(ParseError):
        objects.decode('commit', '', body, resolver_for())


@pytest.mark.parametrize('data', [
    b'blob 3abc',
    b'blob\x00abc',
    b'blob x\x00abc',
    b'blob 4\x00abc',
])
def test_parse_malformed_envelope(data):
    with pytest.raises(ParseError):
        objects.parse_file_contents(data)


def test_freeze_makes_a_snapshot():
    tree = Tree()
    blob = tree.create_blob('a.txt', {'text': 'hi'})
    snapshot = tree.freeze()
    digest = snapshot.digest()

    blob.payload['text'] = 'changed'
    tree.create_tree('sub')

    assert snapshot.digest() == digest
    assert len(snapshot.entries) == 1
    assert tree.digest() != digest


def test_frozen_objects_refuse_edits():
    tree = Tree()
    tree.create_blob('a.txt', {'text': 'hi'})
    snapshot = tree.freeze()
    with pytest.raises(FrozenObjectError):
        snapshot.create_blob('b.txt')
    with pytest.raises(FrozenObjectError):
        snapshot.name = 'other'
    with pytest.raises(TypeError):
        snapshot.get_child('a.txt').payload['text'] = 'changed'


def test_thaw_is_mutable_and_leaves_snapshot_alone():
    snapshot = Tree(entries=[Blob('a.txt', {'text': 'hi'})]).freeze()
    copy = snapshot.thaw()
    copy.create_blob('b.txt', {'text': 'ho'})
    assert len(snapshot.entries) == 1
    assert len(copy.entries) == 2
    assert copy.get_child('a.txt') is snapshot.get_child('a.txt')


def test_commit_get_tree_returns_editable_copy():
    commit_ = Commit(Tree(entries=[Blob('a.txt', {'text': 'hi'})]), message='m').freeze()
    tree = commit_.get_tree()
    tree.create_blob('b.txt')
    assert len(commit_.tree.entries) == 1


def test_frozen_blob_payload_is_immutable_all_the_way_down():
    blob = Blob('a', {'items': [1, {'deep': [2]}]}).freeze()
    digest = blob.digest()

    with pytest.raises(AttributeError):
        blob.payload['items'].append(2)
    with pytest.raises(TypeError):
        blob.payload['items'][1]['deep'] = []

    assert blob.digest() == digest
    assert Blob('a', {'items': [1, {'deep': [2]}]}).digest() == digest


def test_thawed_blob_payload_is_plain_again():
    blob = Blob('a', {'items': [1, {'deep': [2]}]}).freeze().thaw()
    blob.payload['items'].append(3)
    blob.payload['items'][1]['deep'].append(4)
    assert blob.payload == {'items': [1, {'deep': [2, 4]}, 3]}


def test_integral_floats_encode_like_integers():
    assert Blob('a', {'n': 1.0, 'xs': [2.0, 0.5]}).encode() == b'{"n":1,"xs":[2,0.5],"__type__":"GitBlob"}'
    assert Blob('a', {'n': 1.0}).digest() == Blob('a', {'n': 1}).digest()


@pytest.mark.parametrize('value', [float('nan'), float('inf')])
def test_non_finite_floats_are_rejected(value):
    with pytest.raises(InvalidObject):
        Blob('a', {'n': value}).encode()
