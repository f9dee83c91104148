import argparse
import logging
import os
import sys
import textwrap
import time

from . import data
from . import objects
from .errors import LsgitError
from .store import ObjectStore

logger = logging.getLogger(__name__)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    if args.git_dir is not None:
        data.GIT_DIR = args.git_dir

    try:
        args.func(args)
    except LsgitError as e:
        logger.debug('Command %s failed', args.command, exc_info=True)
        print(f'fatal: {e}', file=sys.stderr)
        return 1
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='lsgit')
    parser.add_argument('--git-dir', default=None)
    parser.add_argument('-v', '--verbose', action='store_true')
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    init_parser = commands.add_parser('init')
    init_parser.set_defaults(func=init)

    add_parser = commands.add_parser('add')
    add_parser.set_defaults(func=add)
    add_parser.add_argument('path')
    add_parser.add_argument('file')
    add_parser.add_argument('-m', '--message', required=True)
    add_parser.add_argument('--author', default=os.environ.get('USER', 'unknown'))

    cat_file_parser = commands.add_parser('cat-file')
    cat_file_parser.set_defaults(func=cat_file)
    cat_file_parser.add_argument('object')

    ls_tree_parser = commands.add_parser('ls-tree')
    ls_tree_parser.set_defaults(func=ls_tree)
    ls_tree_parser.add_argument('object', nargs='?')

    log_parser = commands.add_parser('log')
    log_parser.set_defaults(func=log)

    return parser.parse_args(argv)


def _open_store():
    backend = data.DirStore()
    if not backend.is_initialized():
        raise LsgitError(f'Not an lsgit repository: {backend.git_dir}')
    return ObjectStore(backend)


def init(args):
    backend = data.DirStore()
    backend.init()
    print(f'Initialized empty lsgit repository in {os.path.abspath(backend.git_dir)}')


def add(args):
    store = _open_store()
    with open(args.file, encoding='utf-8') as f:
        text = f.read()

    head = store.get_head()
    head_commit = store.get_head_commit()
    tree = head_commit.get_tree() if head_commit is not None else objects.Tree()

    dirname, _, filename = args.path.rstrip('/').rpartition('/')
    parent = tree.create_path(dirname)
    if parent.replace_blob(filename, {'text': text}) is None:
        parent.create_blob(filename, {'text': text})

    attributes = {'author': args.author, 'timestamp': str(int(time.time()))}
    commit_ = store.commit(tree, attributes, args.message, expected_head=head)
    print(commit_.digest())


def cat_file(args):
    store = _open_store()
    _, body = store.read_object(args.object)
    sys.stdout.flush()
    sys.stdout.buffer.write(body)
    sys.stdout.buffer.write(b'\n')


def ls_tree(args):
    store = _open_store()
    if args.object is None:
        tree = store.get_head_tree()
        if tree is None:
            return
    else:
        tree = store.load('', args.object)
        if isinstance(tree, objects.Commit):
            tree = tree.tree
        elif not isinstance(tree, objects.Tree):
            raise LsgitError(f'{args.object} is a {tree.type_}, not a tree')

    for mode, type_, oid, name in tree.tree_entries():
        print(f'{mode} {type_} {oid}\t{name}')


def log(args):
    store = _open_store()
    for oid, commit_ in store.iter_commits():
        print(f'commit {oid}')
        for key, value in commit_.attributes.items():
            print(f'{key.capitalize()}: {value}')
        print('')
        print(textwrap.indent(commit_.message, '    '))
        print('')
