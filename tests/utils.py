# utils.py -- Test utilities for gitsync
# Copyright (C) 2026 The gitsync developers
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitsync is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Utility functions common to gitsync tests."""

__all__ = [
    "PackRecord",
    "create_delta",
    "make_blob",
    "make_commit",
    "make_tag",
    "make_tree",
    "store_commit",
    "write_pack",
]

import os
import stat
import struct
import zlib
from collections.abc import Iterable, Mapping, Sequence
from typing import NamedTuple, Union

from gitsync.object_format import SHA1, ObjectFormat
from gitsync.object_store import BaseObjectStore
from gitsync.objects import (
    ObjectID,
    ObjectKind,
    StoredObject,
    TreeEntry,
    hex_to_sha,
    serialize_tree,
)
from gitsync.pack import OFS_DELTA, REF_DELTA

# Plain old file
F = 0o100644

# Directory
D = stat.S_IFDIR

_AUTHOR = b"Test Author <test@example.com> 1700000000 +0000"


def make_blob(data: bytes, object_format: ObjectFormat = SHA1) -> StoredObject:
    """Make a blob object."""
    return StoredObject.from_payload(ObjectKind.BLOB, data, object_format)


def _tree_sort_key(entry: TreeEntry) -> bytes:
    if stat.S_ISDIR(entry.mode):
        return entry.path + b"/"
    return entry.path


def make_tree(
    entries: Iterable[tuple[bytes, int, ObjectID]],
    object_format: ObjectFormat = SHA1,
) -> StoredObject:
    """Make a tree object from (name, mode, sha) entries, in any order."""
    sorted_entries = sorted((TreeEntry(*e) for e in entries), key=_tree_sort_key)
    return StoredObject.from_payload(
        ObjectKind.TREE, serialize_tree(sorted_entries), object_format
    )


def make_commit(
    tree: ObjectID,
    parents: Sequence[ObjectID] = (),
    message: bytes = b"Test commit",
    object_format: ObjectFormat = SHA1,
) -> StoredObject:
    """Make a commit object."""
    lines = [b"tree " + tree]
    lines.extend(b"parent " + p for p in parents)
    lines.append(b"author " + _AUTHOR)
    lines.append(b"committer " + _AUTHOR)
    payload = b"\n".join(lines) + b"\n\n" + message + b"\n"
    return StoredObject.from_payload(ObjectKind.COMMIT, payload, object_format)


def make_tag(
    target: StoredObject,
    name: bytes = b"v1.0",
    message: bytes = b"Test tag",
    object_format: ObjectFormat = SHA1,
) -> StoredObject:
    """Make an annotated tag object pointing at target."""
    payload = (
        b"object " + target.id + b"\n"
        b"type " + target.kind.type_name + b"\n"
        b"tag " + name + b"\n"
        b"tagger " + _AUTHOR + b"\n\n" + message + b"\n"
    )
    return StoredObject.from_payload(ObjectKind.TAG, payload, object_format)


TreeSpec = Mapping[bytes, Union[bytes, "TreeSpec"]]


def _store_tree(
    store: BaseObjectStore, layout: TreeSpec, objects: list[StoredObject]
) -> StoredObject:
    entries = []
    for name, value in layout.items():
        if isinstance(value, bytes):
            blob = make_blob(value, store.object_format)
            objects.append(blob)
            entries.append((name, F, blob.id))
        else:
            subtree = _store_tree(store, value, objects)
            entries.append((name, D, subtree.id))
    tree = make_tree(entries, store.object_format)
    objects.append(tree)
    return tree


def store_commit(
    store: BaseObjectStore,
    files: TreeSpec,
    parents: Sequence[ObjectID] = (),
    message: bytes = b"Test commit",
) -> tuple[StoredObject, list[StoredObject]]:
    """Build a commit for a file layout and add everything to a store.

    Args:
      store: Object store to add the objects to
      files: Mapping of names to blob contents, or to nested mappings for
        subdirectories
      parents: Parent commit ids
      message: Commit message
    Returns: Tuple of the commit and every object created for it
    """
    objects: list[StoredObject] = []
    tree = _store_tree(store, files, objects)
    commit = make_commit(tree.id, parents, message, store.object_format)
    objects.append(commit)
    for obj in objects:
        store.put(obj)
    return commit, objects


def _encode_size(size: int) -> bytes:
    ret = bytearray()
    c = size & 0x7F
    size >>= 7
    while size:
        ret.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    ret.append(c)
    return bytes(ret)


def create_delta(base: bytes, target: bytes) -> bytes:
    """Create a delta that rebuilds target from base.

    The delta copies the longest common prefix and inserts the rest.
    """
    out = bytearray(_encode_size(len(base)) + _encode_size(len(target)))
    prefix = 0
    limit = min(len(base), len(target), 0xFFFF)
    while prefix < limit and base[prefix] == target[prefix]:
        prefix += 1
    if prefix:
        cmd = 0x80
        size_bytes = bytearray()
        for i in range(3):
            byte = (prefix >> (i * 8)) & 0xFF
            if byte:
                cmd |= 1 << (4 + i)
                size_bytes.append(byte)
        out.append(cmd)
        out.extend(size_bytes)
    rest = target[prefix:]
    for i in range(0, len(rest), 0x7F):
        chunk = rest[i : i + 0x7F]
        out.append(len(chunk))
        out.extend(chunk)
    return bytes(out)


def _pack_object_header(type_num: int, size: int) -> bytes:
    ret = bytearray()
    c = (type_num << 4) | (size & 0x0F)
    size >>= 4
    while size:
        ret.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    ret.append(c)
    return bytes(ret)


def _encode_ofs_delta(distance: int) -> bytes:
    ret = bytearray([distance & 0x7F])
    distance >>= 7
    while distance:
        distance -= 1
        ret.insert(0, 0x80 | (distance & 0x7F))
        distance >>= 7
    return bytes(ret)


class PackRecord(NamedTuple):
    """An object to write to a test pack.

    If base is set, the object is stored as a delta against it: an offset
    delta when the base was written earlier in the same pack and ref_delta
    is not set, a reference delta otherwise.
    """

    obj: StoredObject
    base: StoredObject | None = None
    ref_delta: bool = False


def write_pack(
    basename: str,
    records: Iterable[PackRecord | StoredObject],
    object_format: ObjectFormat = SHA1,
    large_offsets: bool = False,
) -> list[StoredObject]:
    """Write a pack file and a v2 index for it.

    Args:
      basename: Path of the pack without the .pack/.idx extension
      records: Objects to store, in order
      object_format: Object format of the objects
      large_offsets: Store every offset in the 64-bit offset table
    Returns: The objects written
    """
    records = [r if isinstance(r, PackRecord) else PackRecord(r) for r in records]
    data = bytearray(b"PACK" + struct.pack(">LL", 2, len(records)))
    offsets: dict[ObjectID, int] = {}
    entries = []
    for obj, base, ref_delta in records:
        offset = len(data)
        if base is None:
            body = _pack_object_header(obj.kind, len(obj.payload))
            body += zlib.compress(obj.payload)
        else:
            delta = create_delta(base.payload, obj.payload)
            if base.id in offsets and not ref_delta:
                body = _pack_object_header(OFS_DELTA, len(delta))
                body += _encode_ofs_delta(offset - offsets[base.id])
            else:
                body = _pack_object_header(REF_DELTA, len(delta))
                body += hex_to_sha(base.id)
            body += zlib.compress(delta)
        data += body
        offsets[obj.id] = offset
        entries.append((hex_to_sha(obj.id), offset, zlib.crc32(body)))
    pack_checksum = object_format.new_hash()
    pack_checksum.update(data)
    data += pack_checksum.digest()
    with open(basename + ".pack", "wb") as f:
        f.write(data)

    entries.sort()
    idx = bytearray(b"\377tOc" + struct.pack(">L", 2))
    fan_out = [0] * 256
    for name, _offset, _crc in entries:
        fan_out[name[0]] += 1
    total = 0
    for count in fan_out:
        total += count
        idx += struct.pack(">L", total)
    for name, _offset, _crc in entries:
        idx += name
    for _name, _offset, crc in entries:
        idx += struct.pack(">L", crc & 0xFFFFFFFF)
    large = []
    for _name, offset, _crc in entries:
        if large_offsets:
            idx += struct.pack(">L", 0x80000000 | len(large))
            large.append(offset)
        else:
            idx += struct.pack(">L", offset)
    for offset in large:
        idx += struct.pack(">Q", offset)
    idx += pack_checksum.digest()
    idx_checksum = object_format.new_hash()
    idx_checksum.update(idx)
    idx += idx_checksum.digest()
    with open(basename + ".idx", "wb") as f:
        f.write(idx)
    return [r.obj for r in records]


def pack_basename(objects_dir: str, name: str = "test") -> str:
    """Return the basename for a pack in an object store directory."""
    return os.path.join(objects_dir, "pack", f"pack-{name}")
