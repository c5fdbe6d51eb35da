# objects.py -- Access to base git objects
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

"""Access to base git objects.

Objects are handled as opaque payloads plus a kind tag. The only parsing done
here is what is needed to follow the object graph: tree entries, the tree and
parent headers of a commit, and the object header of a tag.
"""

__all__ = [
    "S_IFGITLINK",
    "ZERO_SHA",
    "ObjectID",
    "ObjectKind",
    "RawObjectID",
    "StoredObject",
    "TreeEntry",
    "hash_object",
    "hex_to_filename",
    "hex_to_sha",
    "object_header",
    "outgoing_references",
    "parse_commit_references",
    "parse_loose_object",
    "parse_tag_target",
    "parse_tree",
    "serialize_tree",
    "sha_to_hex",
    "valid_hexsha",
    "verify_object",
]

import binascii
import os
import stat
import zlib
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple, NewType

from .errors import Corrupt, ObjectFormatException
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat

ObjectID = NewType("ObjectID", bytes)
RawObjectID = NewType("RawObjectID", bytes)

ZERO_SHA = ObjectID(b"0" * 40)

# Header fields for commits
_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"

# Header fields for tags
_OBJECT_HEADER = b"object"

S_IFGITLINK = 0o160000


def S_ISGITLINK(m: int) -> bool:
    """Check if a mode indicates a submodule.

    Args:
      m: Mode to check
    Returns: a ``boolean``
    """
    return stat.S_IFMT(m) == S_IFGITLINK


class ObjectKind(IntEnum):
    """Kind of a stored object; the value is the pack type number."""

    COMMIT = 1
    TREE = 2
    BLOB = 3
    TAG = 4

    @property
    def type_name(self) -> bytes:
        """Name used for this kind in object headers."""
        return self.name.lower().encode("ascii")

    @classmethod
    def from_type_name(cls, name: bytes) -> "ObjectKind":
        """Look up a kind by its header name.

        Raises:
          ObjectFormatException: if the name is not a known object type
        """
        try:
            return cls[name.decode("ascii").upper()]
        except (KeyError, UnicodeDecodeError):
            raise ObjectFormatException(f"Not a known type: {name!r}")

    @classmethod
    def from_type_num(cls, num: int) -> "ObjectKind":
        """Look up a kind by its pack type number.

        Raises:
          ObjectFormatException: if the number is not a base object type
        """
        try:
            return cls(num)
        except ValueError:
            raise ObjectFormatException(f"Not a known type: {num}")


def sha_to_hex(sha: RawObjectID) -> ObjectID:
    """Takes a binary digest and returns its hex representation."""
    return ObjectID(binascii.hexlify(sha))


def hex_to_sha(hex: ObjectID | str) -> RawObjectID:
    """Takes a hex sha and returns a binary sha."""
    try:
        return RawObjectID(binascii.unhexlify(hex))
    except TypeError as exc:
        if not isinstance(hex, bytes):
            raise
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: bytes | str) -> bool:
    """Check if a string is a valid hex object id (SHA-1 or SHA-256)."""
    if len(hex) not in (40, 64):
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True


def hex_to_filename(path: str, hex: ObjectID) -> str:
    """Takes a hex sha and returns its loose object filename relative to path."""
    hexstr = hex.decode("ascii")
    return os.path.join(path, hexstr[:2], hexstr[2:])


def object_header(kind: ObjectKind, length: int) -> bytes:
    """Return the header that is hashed in front of an object's payload."""
    return kind.type_name + b" " + str(length).encode("ascii") + b"\0"


def hash_object(
    kind: ObjectKind,
    payload: bytes,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
) -> ObjectID:
    """Compute the id of an object from its kind and payload."""
    return ObjectID(
        object_format.hash_chunks_hex((object_header(kind, len(payload)), payload))
    )


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: ObjectID


def parse_tree(
    text: bytes,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
    strict: bool = False,
) -> Iterator[TreeEntry]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
      object_format: Object format, which determines the binary id length
      strict: Reject zero-padded modes, which old versions of git wrote
    Returns: iterator of TreeEntry tuples

    Raises:
      ObjectFormatException: if the object was malformed in some way
    """
    count = 0
    length = len(text)
    oid_length = object_format.oid_length
    while count < length:
        mode_end = text.find(b" ", count)
        if mode_end == -1:
            raise ObjectFormatException("Tree entry has no mode")
        mode_text = text[count:mode_end]
        if strict and mode_text.startswith(b"0"):
            raise ObjectFormatException(f"Invalid mode {mode_text!r}")
        try:
            mode = int(mode_text, 8)
        except ValueError as exc:
            raise ObjectFormatException(f"Invalid mode {mode_text!r}") from exc
        name_end = text.find(b"\0", mode_end)
        if name_end == -1:
            raise ObjectFormatException("Tree entry name is not terminated")
        name = text[mode_end + 1 : name_end]
        count = name_end + 1 + oid_length
        if count > length:
            raise ObjectFormatException("Tree entry id is truncated")
        sha = text[name_end + 1 : count]
        yield TreeEntry(name, mode, sha_to_hex(RawObjectID(sha)))


def serialize_tree(entries: "list[TreeEntry] | tuple[TreeEntry, ...]") -> bytes:
    """Serialize tree entries, which must already be in git's sort order.

    Args:
      entries: Iterable of TreeEntry tuples
    Returns: Serialized tree payload
    """
    return b"".join(
        (f"{mode:04o}".encode("ascii") + b" " + name + b"\0" + hex_to_sha(sha))
        for name, mode, sha in entries
    )


def _iter_headers(payload: bytes) -> Iterator[tuple[bytes, bytes]]:
    """Iterate over the (field, value) header lines of a commit or tag.

    Continuation lines (those starting with a space, as used by signatures)
    are skipped; the headers end at the first empty line.
    """
    for line in payload.split(b"\n"):
        if line == b"":
            return
        if line.startswith(b" "):
            continue
        field, _, value = line.partition(b" ")
        yield field, value


def _check_header_sha(value: bytes, object_format: ObjectFormat) -> ObjectID:
    if len(value) != object_format.hex_length or not valid_hexsha(value):
        raise ObjectFormatException(f"Invalid object id {value!r}")
    return ObjectID(value.lower())


def parse_commit_references(
    payload: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> tuple[ObjectID, list[ObjectID]]:
    """Extract the tree and parent ids from a commit payload.

    Returns: Tuple of (tree, parents)

    Raises:
      ObjectFormatException: if the commit has no tree or more than one
    """
    tree = None
    parents = []
    for field, value in _iter_headers(payload):
        if field == _TREE_HEADER:
            if tree is not None:
                raise ObjectFormatException("Commit has more than one tree")
            tree = _check_header_sha(value, object_format)
        elif field == _PARENT_HEADER:
            parents.append(_check_header_sha(value, object_format))
    if tree is None:
        raise ObjectFormatException("Commit has no tree")
    return tree, parents


def parse_tag_target(
    payload: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> ObjectID:
    """Extract the id of the object a tag points at.

    Raises:
      ObjectFormatException: if the tag has no object header
    """
    for field, value in _iter_headers(payload):
        if field == _OBJECT_HEADER:
            return _check_header_sha(value, object_format)
    raise ObjectFormatException("Tag has no object")


def outgoing_references(
    kind: ObjectKind,
    payload: bytes,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
) -> set[ObjectID]:
    """Return the ids of the objects an object points at.

    Gitlink tree entries (submodule commits) are not included, since they
    name objects that live in another repository.
    """
    if kind == ObjectKind.BLOB:
        return set()
    if kind == ObjectKind.TREE:
        return {
            entry.sha
            for entry in parse_tree(payload, object_format)
            if not S_ISGITLINK(entry.mode)
        }
    if kind == ObjectKind.COMMIT:
        tree, parents = parse_commit_references(payload, object_format)
        return {tree, *parents}
    return {parse_tag_target(payload, object_format)}


@dataclass(frozen=True)
class StoredObject:
    """An immutable object: its id, its kind and its raw payload.

    The payload does not include the ``<type> <size>\\0`` header.
    """

    id: ObjectID
    kind: ObjectKind
    payload: bytes

    @classmethod
    def from_payload(
        cls,
        kind: ObjectKind,
        payload: bytes,
        object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
    ) -> "StoredObject":
        """Create an object, computing its id from its contents."""
        return cls(hash_object(kind, payload, object_format), kind, payload)

    def __repr__(self) -> str:
        """Return string representation of this object."""
        return f"<{self.kind.type_name.decode('ascii')} {self.id.decode('ascii')}>"

    def check(self, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT) -> None:
        """Check that the payload hashes to the object's id.

        Raises:
          Corrupt: if the recomputed id differs
        """
        verify_object(self, self.id, object_format)

    def as_loose_object(self, compression_level: int = -1) -> bytes:
        """Return the zlib-compressed loose representation of this object."""
        compobj = zlib.compressobj(compression_level)
        return (
            compobj.compress(object_header(self.kind, len(self.payload)))
            + compobj.compress(self.payload)
            + compobj.flush()
        )


def verify_object(
    obj: StoredObject,
    expected_id: ObjectID,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
) -> None:
    """Recompute an object's content hash and compare it to an expected id.

    Args:
      obj: Object to check
      expected_id: Id the object is supposed to have
      object_format: Hash algorithm to use

    Raises:
      Corrupt: if the hash of the object's contents is not expected_id
    """
    got = hash_object(obj.kind, obj.payload, object_format)
    if got != expected_id or obj.id != expected_id:
        raise Corrupt(expected_id, got)


def parse_loose_object(sha: ObjectID, data: bytes) -> StoredObject:
    """Decode the contents of a loose object file.

    The id is taken from the caller (it is derived from the file name); it
    is not checked against the contents here.

    Raises:
      ObjectFormatException: if the data is not a valid loose object
    """
    try:
        text = zlib.decompress(data)
    except zlib.error as exc:
        raise ObjectFormatException(f"Unable to decompress object {sha!r}") from exc
    header, sep, payload = text.partition(b"\0")
    if not sep:
        raise ObjectFormatException("Object header is not terminated")
    type_name, _, size_text = header.partition(b" ")
    kind = ObjectKind.from_type_name(type_name)
    if not size_text.isdigit() or (len(size_text) > 1 and size_text[:1] == b"0"):
        raise ObjectFormatException(f"Size is not in canonical format: {size_text!r}")
    if int(size_text) != len(payload):
        raise ObjectFormatException(
            f"Size mismatch: header says {int(size_text)}, got {len(payload)}"
        )
    return StoredObject(sha, kind, payload)
