# object_store.py -- Object store interfaces and implementation
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

"""Object store interfaces and implementation.

An object store maps object ids to immutable objects. Stores only ever grow:
``put`` never replaces an existing object, and every object handed out by
``get`` has been checked against its id.
"""

__all__ = [
    "INFODIR",
    "PACKDIR",
    "PACK_MODE",
    "BaseObjectStore",
    "DiskObjectStore",
    "MemoryObjectStore",
]

import logging
import os
import sys
import zlib
from collections.abc import Iterator
from typing import TYPE_CHECKING

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override

from .errors import (
    AdapterIOError,
    ApplyDeltaError,
    Corrupt,
    FileFormatException,
    NotFound,
)
from .file import FileLocked, GitFile
from .object_format import (
    DEFAULT_OBJECT_FORMAT,
    ObjectFormat,
    get_object_format,
)
from .objects import (
    ObjectID,
    ObjectKind,
    RawObjectID,
    StoredObject,
    hex_to_filename,
    hex_to_sha,
    outgoing_references,
    parse_loose_object,
    sha_to_hex,
    valid_hexsha,
    verify_object,
)
from .pack import Pack

if TYPE_CHECKING:
    from .config import Config

INFODIR = "info"
PACKDIR = "pack"

# Loose objects are read-only once written, as with git.
PACK_MODE = 0o444 if sys.platform != "win32" else 0o644

logger = logging.getLogger(__name__)


class BaseObjectStore:
    """Object store interface."""

    def __init__(self, *, object_format: ObjectFormat | None = None) -> None:
        """Initialize object store.

        Args:
          object_format: Object format to use (defaults to SHA1)
        """
        self.object_format = object_format if object_format else DEFAULT_OBJECT_FORMAT

    def _to_hexsha(self, sha: ObjectID | RawObjectID) -> ObjectID:
        if len(sha) == self.object_format.hex_length:
            return ObjectID(sha)
        elif len(sha) == self.object_format.oid_length:
            return sha_to_hex(RawObjectID(sha))
        else:
            raise ValueError(f"Invalid sha {sha!r}")

    def exists(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by id.

        The object's contents are not read.
        """
        raise NotImplementedError(self.exists)

    def __contains__(self, sha: ObjectID) -> bool:
        return self.exists(sha)

    def get_raw(self, sha: ObjectID) -> tuple[ObjectKind, bytes]:
        """Obtain the kind and payload of an object, unverified.

        Args:
          sha: Hex id of the object
        Returns: tuple with kind and payload
        Raises:
          NotFound: if the object is not present
          Corrupt: if the stored representation can not be decoded
        """
        raise NotImplementedError(self.get_raw)

    def get(self, sha: ObjectID) -> StoredObject:
        """Retrieve an object, checking it against its id.

        Raises:
          NotFound: if the object is not present
          Corrupt: if the object's contents do not hash to sha
        """
        sha = self._to_hexsha(sha)
        kind, payload = self.get_raw(sha)
        obj = StoredObject(sha, kind, payload)
        verify_object(obj, sha, self.object_format)
        return obj

    def __getitem__(self, sha: ObjectID) -> StoredObject:
        return self.get(sha)

    def _add_object(self, obj: StoredObject) -> bool:
        raise NotImplementedError(self._add_object)

    def put(self, obj: StoredObject) -> bool:
        """Add an object to this store.

        Adding an object that is already present is a no-op.

        Args:
          obj: Object to add
        Returns: True if the object was written, False if it was already present
        Raises:
          Corrupt: if the object's contents do not hash to its id
        """
        verify_object(obj, obj.id, self.object_format)
        if self.exists(obj.id):
            return False
        return self._add_object(obj)

    def outgoing_references(self, obj: StoredObject) -> set[ObjectID]:
        """Return the ids an object points at, in this store's object format."""
        return outgoing_references(obj.kind, obj.payload, self.object_format)

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over the ids of the objects present in this store."""
        raise NotImplementedError(self.__iter__)

    def close(self) -> None:
        """Close any files opened by this object store."""


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory."""

    def __init__(self, *, object_format: ObjectFormat | None = None) -> None:
        """Initialize a MemoryObjectStore.

        Args:
          object_format: Hash algorithm to use (defaults to SHA1)
        """
        super().__init__(object_format=object_format)
        self._data: dict[ObjectID, StoredObject] = {}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({len(self._data)} objects)>"

    @override
    def exists(self, sha: ObjectID) -> bool:
        return self._to_hexsha(sha) in self._data

    @override
    def get_raw(self, sha: ObjectID) -> tuple[ObjectKind, bytes]:
        sha = self._to_hexsha(sha)
        try:
            obj = self._data[sha]
        except KeyError:
            raise NotFound(sha)
        return obj.kind, obj.payload

    @override
    def _add_object(self, obj: StoredObject) -> bool:
        self._data[obj.id] = obj
        return True

    @override
    def __iter__(self) -> Iterator[ObjectID]:
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)


class DiskObjectStore(BaseObjectStore):
    """Git-style object store that exists on disk.

    Objects are written loose; packs are only read.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        object_format: ObjectFormat | None = None,
        loose_compression_level: int = -1,
        fsync_object_files: bool = False,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store.
          object_format: Hash algorithm to use (SHA1 or SHA256)
          loose_compression_level: zlib compression level for loose objects
          fsync_object_files: whether to fsync object files for durability
        """
        super().__init__(object_format=object_format)
        self.path = os.fspath(path)
        self.pack_dir = os.path.join(self.path, PACKDIR)
        self.loose_compression_level = loose_compression_level
        self.fsync_object_files = fsync_object_files
        self._pack_cache: dict[str, Pack] = {}
        # Modification time of the pack directory when it was last listed.
        self._pack_cache_time: int | None = -1

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    @classmethod
    def from_config(
        cls, path: str | os.PathLike[str], config: "Config"
    ) -> "DiskObjectStore":
        """Create a DiskObjectStore from a configuration object.

        Args:
          path: Path to the object store directory
          config: Configuration object to read settings from

        Returns:
          New DiskObjectStore instance configured according to config
        """
        try:
            default_compression_level = int(
                config.get((b"core",), b"compression").decode()
            )
        except KeyError:
            default_compression_level = -1
        try:
            loose_compression_level = int(
                config.get((b"core",), b"looseCompression").decode()
            )
        except KeyError:
            loose_compression_level = default_compression_level

        fsync_object_files = config.get_boolean((b"core",), b"fsyncObjectFiles", False)

        try:
            version = int(config.get((b"core",), b"repositoryformatversion"))
        except KeyError:
            version = 0
        object_format = None
        if version == 1:
            try:
                object_format_name = config.get((b"extensions",), b"objectformat")
            except KeyError:
                object_format_name = b"sha1"
            object_format = get_object_format(object_format_name.decode("ascii"))

        return cls(
            path,
            object_format=object_format,
            loose_compression_level=loose_compression_level,
            fsync_object_files=fsync_object_files,
        )

    @classmethod
    def init(
        cls,
        path: str | os.PathLike[str],
        *,
        object_format: ObjectFormat | None = None,
    ) -> "DiskObjectStore":
        """Initialize a new disk object store.

        Creates the necessary directory structure for a Git object store.

        Args:
          path: Path where the object store should be created
          object_format: Hash algorithm to use (SHA1 or SHA256)

        Returns:
          New DiskObjectStore instance
        """
        try:
            os.mkdir(path)
        except FileExistsError:
            pass
        os.mkdir(os.path.join(path, INFODIR))
        os.mkdir(os.path.join(path, PACKDIR))
        return cls(path, object_format=object_format)

    def _get_shafile_path(self, sha: ObjectID) -> str:
        return hex_to_filename(self.path, sha)

    def _pack_dir_mtime(self) -> int | None:
        try:
            return os.stat(self.pack_dir).st_mtime_ns
        except OSError:
            return None

    def _pack_cache_stale(self) -> bool:
        """Check whether packs were added or removed since the last listing."""
        mtime = self._pack_dir_mtime()
        return mtime != self._pack_cache_time

    def _update_pack_cache(self) -> list[Pack]:
        """Read and iterate over new pack files and cache them."""
        # Taken before listing, so a pack added meanwhile marks it stale.
        self._pack_cache_time = self._pack_dir_mtime()
        try:
            pack_dir_contents = os.listdir(self.pack_dir)
        except FileNotFoundError:
            self.close()
            self._pack_cache_time = None
            return []
        except OSError as exc:
            raise AdapterIOError(f"Unable to list {self.pack_dir}: {exc}") from exc
        pack_files = set()
        for name in pack_dir_contents:
            if name.startswith("pack-") and name.endswith(".pack"):
                # verify that idx exists first (otherwise the pack was not yet
                # fully written)
                idx_name = os.path.splitext(name)[0] + ".idx"
                if idx_name in pack_dir_contents:
                    pack_files.add(name[: -len(".pack")])

        new_packs = []
        for f in sorted(pack_files):
            if f not in self._pack_cache:
                try:
                    pack = Pack(
                        os.path.join(self.pack_dir, f),
                        object_format=self.object_format,
                        resolve_ext_ref=self._resolve_ext_ref,
                    )
                except OSError as exc:
                    raise AdapterIOError(f"Unable to open pack {f}: {exc}") from exc
                logger.debug("Opened pack %s (%d objects)", f, len(pack))
                new_packs.append(pack)
                self._pack_cache[f] = pack
        # Remove disappeared pack files
        for f in set(self._pack_cache) - pack_files:
            self._pack_cache.pop(f).close()
        return new_packs

    @property
    def packs(self) -> list[Pack]:
        """List with pack objects."""
        if self._pack_cache_stale():
            self._update_pack_cache()
        return list(self._pack_cache.values())

    def _resolve_ext_ref(self, sha: RawObjectID) -> tuple[int, bytes]:
        kind, payload = self.get_raw(sha_to_hex(sha))
        return int(kind), payload

    def _contains_loose(self, sha: ObjectID) -> bool:
        return os.path.exists(self._get_shafile_path(sha))

    def _contains_packed(self, packs: list[Pack], sha: ObjectID) -> bool:
        raw = hex_to_sha(sha)
        return any(raw in pack for pack in packs)

    @override
    def exists(self, sha: ObjectID) -> bool:
        sha = self._to_hexsha(sha)
        return self._contains_loose(sha) or self._contains_packed(self.packs, sha)

    def _get_loose(self, sha: ObjectID) -> tuple[ObjectKind, bytes] | None:
        path = self._get_shafile_path(sha)
        try:
            with GitFile(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise AdapterIOError(f"Unable to read {path}: {exc}") from exc
        try:
            obj = parse_loose_object(sha, data)
        except FileFormatException as exc:
            raise Corrupt(sha) from exc
        return obj.kind, obj.payload

    def _get_packed(
        self, packs: list[Pack], sha: ObjectID
    ) -> tuple[ObjectKind, bytes] | None:
        raw = hex_to_sha(sha)
        for pack in packs:
            if raw not in pack:
                continue
            try:
                type_num, payload = pack.get_raw(raw)
                return ObjectKind.from_type_num(type_num), payload
            except (ApplyDeltaError, FileFormatException, zlib.error) as exc:
                raise Corrupt(sha) from exc
        return None

    @override
    def get_raw(self, sha: ObjectID) -> tuple[ObjectKind, bytes]:
        sha = self._to_hexsha(sha)
        ret = self._get_loose(sha)
        if ret is None:
            ret = self._get_packed(self.packs, sha)
        if ret is None:
            ret = self._get_packed(self._update_pack_cache(), sha)
        if ret is None:
            raise NotFound(sha)
        return ret

    @override
    def _add_object(self, obj: StoredObject) -> bool:
        path = self._get_shafile_path(obj.id)
        try:
            os.mkdir(os.path.dirname(path))
        except FileExistsError:
            pass
        except OSError as exc:
            raise AdapterIOError(f"Unable to create {path}: {exc}") from exc
        try:
            with GitFile(
                path, "wb", mask=PACK_MODE, fsync=self.fsync_object_files
            ) as f:
                f.write(obj.as_loose_object(self.loose_compression_level))
        except FileLocked as exc:
            # Another writer is storing the same object.
            if self._contains_loose(obj.id):
                return False
            raise AdapterIOError(f"{path} is locked") from exc
        except OSError as exc:
            raise AdapterIOError(f"Unable to write {path}: {exc}") from exc
        return True

    def _iter_loose_objects(self) -> Iterator[ObjectID]:
        for base in os.listdir(self.path):
            if len(base) != 2:
                continue
            for rest in os.listdir(os.path.join(self.path, base)):
                sha = os.fsencode(base + rest)
                if not valid_hexsha(sha):
                    continue
                yield ObjectID(sha)

    @override
    def __iter__(self) -> Iterator[ObjectID]:
        seen = set()
        try:
            for sha in self._iter_loose_objects():
                seen.add(sha)
                yield sha
        except OSError as exc:
            raise AdapterIOError(f"Unable to list {self.path}: {exc}") from exc
        for pack in self.packs:
            for sha in pack:
                if sha not in seen:
                    seen.add(sha)
                    yield sha

    @override
    def close(self) -> None:
        """Close any files opened by this object store."""
        while self._pack_cache:
            (_name, pack) = self._pack_cache.popitem()
            pack.close()
        self._pack_cache_time = -1
