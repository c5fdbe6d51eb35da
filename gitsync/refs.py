# refs.py -- For dealing with git refs
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

"""Ref handling.

References are the only mutable state in a repository. Every update goes
through :meth:`RefsContainer.compare_and_set`, which changes a reference
only if it still has the value the caller last saw.
"""

__all__ = [
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "LOCAL_TAG_PREFIX",
    "SYMREF",
    "DictRefsContainer",
    "DiskRefsContainer",
    "Ref",
    "Reference",
    "RefsContainer",
    "SymrefLoop",
    "check_ref_format",
    "filter_ref_prefix",
    "parse_symref_value",
    "read_packed_refs",
]

import logging
import os
import sys
import threading
from collections.abc import Iterable, Iterator
from typing import IO, NamedTuple

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override

from .errors import AdapterIOError, PackedRefsException, RefFormatError
from .file import FileLocked, GitFile, ensure_dir_exists
from .objects import ObjectID, valid_hexsha

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
BAD_REF_CHARS = set(b"\177 ~^:?*[")

# Maximum number of symbolic references followed before giving up.
_MAX_SYMREF_DEPTH = 5

logger = logging.getLogger(__name__)


class SymrefLoop(Exception):
    """There is a loop between one or more symrefs."""

    def __init__(self, ref: bytes, depth: int) -> None:
        """Initialize SymrefLoop exception."""
        self.ref = ref
        self.depth = depth
        super().__init__(ref, depth)


class Reference(NamedTuple):
    """A direct reference: a name and the object id it points at."""

    name: Ref
    target: ObjectID


def parse_symref_value(contents: bytes) -> bytes:
    """Parse a symref value.

    Args:
      contents: Contents to parse
    Returns: Destination
    """
    if contents.startswith(SYMREF):
        return contents[len(SYMREF) :].rstrip(b"\r\n")
    raise ValueError(contents)


def check_ref_format(refname: Ref) -> bool:
    """Check if a refname is correctly formatted.

    Implements the rules of git-check-ref-format, for names given without
    their leading ``refs/``.

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for c in refname:
        if c < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1] in b"/.":
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname:
        return False
    if b"\\" in refname:
        return False
    return True


def filter_ref_prefix(
    refs: Iterable[Reference], prefixes: Iterable[bytes] | None
) -> set[Reference]:
    """Filter refs to only include those with a given prefix.

    Args:
      refs: References to filter
      prefixes: The prefixes to filter by; None keeps every reference
    """
    if prefixes is None:
        return set(refs)
    prefixes = list(prefixes)
    return {ref for ref in refs if any(ref.name.startswith(p) for p in prefixes)}


def read_packed_refs(f: IO[bytes]) -> Iterator[tuple[bytes, bytes]]:
    """Read a packed refs file.

    Peeled entries (``^<sha>`` lines following an annotated tag) are skipped.

    Args:
      f: file-like object to read from
    Returns: Iterator over tuples with object ids and ref names.
    """
    for line in f:
        if line.startswith(b"#") or line.startswith(b"^"):
            continue
        fields = line.rstrip(b"\n\r").split(b" ")
        if len(fields) != 2:
            raise PackedRefsException(f"invalid ref line {line!r}")
        sha, name = fields
        if not valid_hexsha(sha):
            raise PackedRefsException(f"Invalid hex sha {sha!r}")
        if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
            raise PackedRefsException(f"invalid ref name {name!r}")
        yield sha, name


class RefsContainer:
    """A container for refs."""

    def allkeys(self) -> set[Ref]:
        """All refs present in this container."""
        raise NotImplementedError(self.allkeys)

    def read_loose_ref(self, name: Ref) -> bytes | None:
        """Read a loose reference and return its contents.

        Args:
          name: the refname to read
        Returns: The contents of the ref file, or None if it does
            not exist.
        """
        raise NotImplementedError(self.read_loose_ref)

    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        """Get contents of the packed-refs file.

        Returns: Dictionary mapping ref names to object ids
        """
        raise NotImplementedError(self.get_packed_refs)

    def _check_refname(self, name: Ref) -> None:
        """Ensure a refname is valid and lives in refs or is HEAD.

        Raises:
          RefFormatError: if a refname is not HEAD or is otherwise not valid.
        """
        if name == HEADREF:
            return
        if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
            raise RefFormatError(name)

    def read_ref(self, refname: Ref) -> bytes | None:
        """Read a reference without following any references.

        Args:
          refname: The name of the reference
        Returns: The contents of the ref file, or None if it does
            not exist.
        """
        contents = self.read_loose_ref(refname)
        if not contents:
            contents = self.get_packed_refs().get(refname, None)
        return contents

    def follow(self, name: Ref) -> tuple[list[Ref], bytes | None]:
        """Follow a reference name.

        Returns: a tuple of (refnames, contents), where refnames are the names
            of references in the chain
        Raises:
          SymrefLoop: if the chain is longer than allowed
        """
        contents: bytes | None = SYMREF + name
        depth = 0
        refnames = []
        while contents and contents.startswith(SYMREF):
            refname = parse_symref_value(contents)
            refnames.append(refname)
            contents = self.read_ref(refname)
            if not contents:
                break
            depth += 1
            if depth > _MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, depth)
        return refnames, contents

    def _follow_to_realname(self, name: Ref) -> Ref:
        return self.follow(name)[0][-1]

    def _name_clash(self, name: Ref, names: Iterable[Ref]) -> Ref | None:
        """Find an existing reference that name cannot coexist with.

        A reference name cannot also be the directory of other references,
        so ``refs/heads/a`` and ``refs/heads/a/b`` exclude each other.

        Returns: The clashing reference name, or None
        """
        for other in names:
            if other.startswith(name + b"/") or name.startswith(other + b"/"):
                return other
        return None

    def get(self, name: Ref) -> ObjectID | None:
        """Get the object id a reference points at, following symrefs.

        Returns: The object id, or None if the reference does not exist
        """
        _, contents = self.follow(name)
        if contents is None or contents.startswith(SYMREF):
            return None
        return ObjectID(contents)

    def __contains__(self, refname: Ref) -> bool:
        return self.get(refname) is not None

    def __getitem__(self, name: Ref) -> ObjectID:
        """Get the object id for a reference name.

        This method follows all symbolic references.
        """
        sha = self.get(name)
        if sha is None:
            raise KeyError(name)
        return sha

    def list(self) -> set[Reference]:
        """List the direct references under ``refs/``.

        Symbolic references are not included.
        """
        ret = set()
        for name in self.allkeys():
            if not name.startswith(b"refs/"):
                continue
            contents = self.read_ref(name)
            if contents is None or not valid_hexsha(contents):
                continue
            ret.add(Reference(name, ObjectID(contents)))
        return ret

    def as_dict(self) -> dict[Ref, ObjectID]:
        """Return the direct references as a dictionary."""
        return {ref.name: ref.target for ref in self.list()}

    def _check_new_value(self, new: bytes) -> None:
        if not valid_hexsha(new):
            raise ValueError(f"not an object id: {new!r}")

    def compare_and_set(
        self, name: Ref, expected_old: ObjectID | None, new: ObjectID
    ) -> bool:
        """Set a reference to new only if it currently equals expected_old.

        Symbolic references are followed, and the reference they point at is
        updated.

        Args:
          name: The refname to set.
          expected_old: The value the reference must currently have, or None
            if the reference must not exist.
          new: The new object id for the reference.
        Returns: True if the reference now points at new, False if its
          current value did not match, it is locked by another writer or
          its name clashes with an existing reference. Nothing is changed
          in the latter cases.
        Raises:
          RefFormatError: if name is not a valid reference name
          ValueError: if new is not an object id
        """
        raise NotImplementedError(self.compare_and_set)

    def set_symbolic_ref(self, name: Ref, other: Ref) -> None:
        """Make a ref point at another ref.

        Args:
          name: Name of the ref to set
          other: Name of the ref to point at
        """
        raise NotImplementedError(self.set_symbolic_ref)


class DictRefsContainer(RefsContainer):
    """RefsContainer backed by a simple dict.

    This container does not support packed references. Updates are
    serialized with a lock.
    """

    def __init__(self, refs: dict[Ref, bytes] | None = None) -> None:
        """Initialize DictRefsContainer with an optional refs dictionary."""
        self._refs = refs if refs is not None else {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._refs!r})"

    @override
    def allkeys(self) -> set[Ref]:
        return set(self._refs.keys())

    @override
    def read_loose_ref(self, name: Ref) -> bytes | None:
        return self._refs.get(name, None)

    @override
    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        return {}

    @override
    def set_symbolic_ref(self, name: Ref, other: Ref) -> None:
        self._check_refname(name)
        self._check_refname(other)
        with self._lock:
            self._refs[name] = SYMREF + other

    @override
    def compare_and_set(
        self, name: Ref, expected_old: ObjectID | None, new: ObjectID
    ) -> bool:
        self._check_refname(name)
        self._check_new_value(new)
        with self._lock:
            realname = self._follow_to_realname(name)
            self._check_refname(realname)
            if self._refs.get(realname) != expected_old:
                return False
            if realname not in self._refs and self._name_clash(
                realname, self._refs
            ):
                return False
            self._refs[realname] = new
        return True


class DiskRefsContainer(RefsContainer):
    """Refs container that reads refs from disk."""

    def __init__(self, path: str | bytes | os.PathLike[str]) -> None:
        """Initialize DiskRefsContainer.

        Args:
          path: Path of the git control directory
        """
        self.path = os.fsencode(os.fspath(path))
        self._packed_refs: dict[Ref, ObjectID] | None = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def _iter_loose_refs(self) -> Iterator[Ref]:
        refspath = os.path.join(self.path, b"refs")
        prefix_len = len(os.path.join(self.path, b""))
        for root, dirs, files in os.walk(refspath):
            directory = root[prefix_len:]
            if os.path.sep != "/":
                directory = directory.replace(os.fsencode(os.path.sep), b"/")
            for filename in files:
                refname = b"/".join([directory, filename])
                if check_ref_format(refname[5:]):
                    yield refname

    @override
    def allkeys(self) -> set[Ref]:
        allkeys = set()
        if os.path.exists(self.refpath(HEADREF)):
            allkeys.add(HEADREF)
        allkeys.update(self._iter_loose_refs())
        allkeys.update(self.get_packed_refs())
        return allkeys

    def refpath(self, name: Ref) -> bytes:
        """Return the disk path of a ref."""
        if os.path.sep != "/":
            name = name.replace(b"/", os.fsencode(os.path.sep))
        return os.path.join(self.path, name)

    def _read_packed_refs(self) -> dict[Ref, ObjectID]:
        path = os.path.join(self.path, b"packed-refs")
        try:
            with GitFile(path, "rb") as f:
                return {name: ObjectID(sha) for sha, name in read_packed_refs(f)}
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise AdapterIOError(f"Unable to read {path!r}: {exc}") from exc

    @override
    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        """Get contents of the packed-refs file.

        Returns: Dictionary mapping ref names to object ids

        Note: Will return an empty dictionary when no packed-refs file is
            present.
        """
        if self._packed_refs is None:
            self._packed_refs = self._read_packed_refs()
        return self._packed_refs

    @override
    def read_loose_ref(self, name: Ref) -> bytes | None:
        """Read a reference file and return its contents.

        If the reference file is a symbolic reference, only the first line of
        the file is read.

        Args:
          name: the refname to read, relative to refpath
        Returns: The contents of the ref file, or None if the file does not
            exist.
        Raises:
          AdapterIOError: if the file exists but can not be read
        """
        filename = self.refpath(name)
        try:
            with GitFile(filename, "rb") as f:
                first_line = f.readline()
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None
        except OSError as exc:
            raise AdapterIOError(f"Unable to read {filename!r}: {exc}") from exc
        return first_line.rstrip(b"\r\n")

    @override
    def set_symbolic_ref(self, name: Ref, other: Ref) -> None:
        self._check_refname(name)
        self._check_refname(other)
        filename = self.refpath(name)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            f.write(SYMREF + other + b"\n")

    @override
    def compare_and_set(
        self, name: Ref, expected_old: ObjectID | None, new: ObjectID
    ) -> bool:
        self._check_refname(name)
        self._check_new_value(new)
        realname = self._follow_to_realname(name)
        self._check_refname(realname)
        filename = self.refpath(realname)

        try:
            ensure_dir_exists(os.path.dirname(filename))
            f = GitFile(filename, "wb")
        except FileLocked:
            logger.debug("%s is locked by another writer", realname.decode())
            return False
        except (NotADirectoryError, IsADirectoryError):
            # A parent directory of the ref is itself a ref file.
            logger.debug("%s clashes with an existing ref", realname.decode())
            return False
        except OSError as exc:
            raise AdapterIOError(f"Unable to lock {filename!r}: {exc}") from exc

        try:
            with f:
                # read again while holding the lock to handle race conditions
                self._packed_refs = None
                current = self.read_loose_ref(realname)
                if current is None:
                    packed_refs = self.get_packed_refs()
                    current = packed_refs.get(realname, None)
                    if current is None and (
                        os.path.isdir(filename)
                        or self._name_clash(realname, packed_refs)
                    ):
                        logger.debug(
                            "%s clashes with an existing ref", realname.decode()
                        )
                        f.abort()
                        return False
                if current != expected_old:
                    f.abort()
                    return False
                if current == new:
                    # Unchanged; the lock is released without rewriting.
                    f.abort()
                    return True
                f.write(new + b"\n")
        except IsADirectoryError:
            logger.debug("%s clashes with an existing ref", realname.decode())
            return False
        except OSError as exc:
            raise AdapterIOError(f"Unable to write {filename!r}: {exc}") from exc
        return True
