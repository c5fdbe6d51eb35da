# repo.py -- For dealing with git repositories.
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

"""Repository access.

A repository pairs an object store with a reference store. Both the source
and the target of a transfer are repositories.
"""

__all__ = [
    "BASE_DIRECTORIES",
    "CONTROLDIR",
    "DEFAULT_BRANCH",
    "OBJECTDIR",
    "REFSDIR",
    "BaseRepo",
    "MemoryRepo",
    "Repo",
    "UnsupportedExtension",
    "UnsupportedVersion",
    "read_gitfile",
]

import os
from collections.abc import Iterable, Mapping
from io import BytesIO
from types import TracebackType
from typing import BinaryIO

from .config import ConfigFile
from .errors import NotGitRepository
from .file import GitFile
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat, get_object_format
from .object_store import BaseObjectStore, DiskObjectStore, MemoryObjectStore
from .objects import ObjectID, StoredObject
from .refs import (
    HEADREF,
    LOCAL_BRANCH_PREFIX,
    DictRefsContainer,
    DiskRefsContainer,
    Ref,
    RefsContainer,
)

CONTROLDIR = ".git"
OBJECTDIR = "objects"
REFSDIR = "refs"
REFSDIR_TAGS = "tags"
REFSDIR_HEADS = "heads"

BASE_DIRECTORIES = [
    ["branches"],
    [REFSDIR],
    [REFSDIR, REFSDIR_TAGS],
    [REFSDIR, REFSDIR_HEADS],
    ["hooks"],
    ["info"],
]

DEFAULT_BRANCH = b"master"


def read_gitfile(f: BinaryIO) -> str:
    """Read a ``.git`` file.

    The first line of the file should start with "gitdir: "

    Args:
      f: File-like object to read from
    Returns: A path
    """
    cs = f.read()
    if not cs.startswith(b"gitdir: "):
        raise ValueError("Expected file to start with 'gitdir: '")
    return cs[len(b"gitdir: ") :].rstrip(b"\r\n").decode("utf-8")


class UnsupportedVersion(Exception):
    """Unsupported repository version."""

    def __init__(self, version: int) -> None:
        """Initialize UnsupportedVersion exception.

        Args:
            version: The unsupported repository version
        """
        self.version = version
        super().__init__(f"Unsupported repository format version {version}")


class UnsupportedExtension(Exception):
    """Unsupported repository extension."""

    def __init__(self, extension: str) -> None:
        """Initialize UnsupportedExtension exception.

        Args:
            extension: The unsupported repository extension
        """
        self.extension = extension
        super().__init__(f"Unsupported repository extension {extension}")


def _format_config(bare: bool, object_format: ObjectFormat) -> ConfigFile:
    cf = ConfigFile()
    if object_format is DEFAULT_OBJECT_FORMAT:
        cf.set("core", "repositoryformatversion", "0")
    else:
        # Other hash algorithms require format version 1
        cf.set("core", "repositoryformatversion", "1")
        cf.set("extensions", "objectformat", object_format.name)
    cf.set("core", "bare", "true" if bare else "false")
    return cf


class BaseRepo:
    """Base class for a git repository.

    Attributes:
      object_store: Dictionary-like object for accessing
        the objects
      refs: Dictionary-like object with the refs in this
        repository
      object_format: Hash algorithm used by this repository
    """

    bare: bool

    def __init__(
        self,
        object_store: BaseObjectStore,
        refs: RefsContainer,
        object_format: ObjectFormat | None = None,
    ) -> None:
        """Open a repository.

        Args:
          object_store: Object store to use
          refs: Refs container to use
          object_format: Hash algorithm; defaults to the object store's
        """
        self.object_store = object_store
        self.refs = refs
        self.object_format = (
            object_format if object_format is not None else object_store.object_format
        )

    def get_refs(self) -> dict[Ref, ObjectID]:
        """Get dictionary with all direct refs."""
        return self.refs.as_dict()

    def close(self) -> None:
        """Close any files opened by this repository."""
        self.object_store.close()

    def __enter__(self) -> "BaseRepo":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class Repo(BaseRepo):
    """A git repository backed by local disk.

    To open an existing repository, call the constructor with
    the path of the repository.

    To create a new repository, use the Repo.init class method.

    Attributes:
      path: Path to the working copy (if it exists) or repository control
        directory (if the repository is bare)
      bare: Whether this is a bare repository
    """

    path: str
    object_store: DiskObjectStore
    refs: DiskRefsContainer

    def __init__(
        self, root: str | bytes | os.PathLike[str], bare: bool | None = None
    ) -> None:
        """Open a repository on disk.

        Args:
          root: Path to the repository's root.
          bare: True if this is a bare repository; detected if omitted.
        Raises:
          NotGitRepository: if no repository was found at root
          UnsupportedVersion: if the repository format version is unknown
          UnsupportedExtension: if the repository requires an unknown extension
        """
        root = os.fspath(root)
        if isinstance(root, bytes):
            root = os.fsdecode(root)
        hidden_path = os.path.join(root, CONTROLDIR)
        if bare is None:
            if os.path.isfile(hidden_path) or os.path.isdir(
                os.path.join(hidden_path, OBJECTDIR)
            ):
                bare = False
            elif os.path.isdir(os.path.join(root, OBJECTDIR)) and os.path.isdir(
                os.path.join(root, REFSDIR)
            ):
                bare = True
            else:
                raise NotGitRepository(f"No git repository was found at {root}")

        self.bare = bare
        if bare is False:
            if os.path.isfile(hidden_path):
                with open(hidden_path, "rb") as f:
                    path = read_gitfile(f)
                self._controldir = os.path.join(root, path)
            else:
                self._controldir = hidden_path
        else:
            self._controldir = root
        self.path = root

        config = self.get_config()
        try:
            format_version = int(config.get("core", "repositoryformatversion"))
        except KeyError:
            format_version = 0

        if format_version not in (0, 1):
            raise UnsupportedVersion(format_version)

        for extension, _value in config.items((b"extensions",)):
            if extension.lower() not in (b"worktreeconfig", b"objectformat"):
                raise UnsupportedExtension(extension.decode("utf-8"))

        object_store = DiskObjectStore.from_config(
            os.path.join(self.controldir(), OBJECTDIR), config
        )
        super().__init__(object_store, DiskRefsContainer(self.controldir()))

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    def controldir(self) -> str:
        """Return the path of the control directory."""
        return self._controldir

    def get_named_file(self, path: str) -> BinaryIO | None:
        """Get a file from the control dir with a specific name.

        Args:
          path: The path to the file, relative to the control dir.
        Returns: An open file object, or None if the file does not exist.
        """
        path = path.lstrip(os.path.sep)
        try:
            return open(os.path.join(self.controldir(), path), "rb")
        except FileNotFoundError:
            return None

    def _put_named_file(self, path: str, contents: bytes) -> None:
        """Write a file to the control dir with the given name and contents.

        Args:
          path: The path to the file, relative to the control dir.
          contents: A string to write to the file.
        """
        path = path.lstrip(os.path.sep)
        with GitFile(os.path.join(self.controldir(), path), "wb") as f:
            f.write(contents)

    def get_config(self) -> ConfigFile:
        """Retrieve the config object.

        Returns: `ConfigFile` object for the ``.git/config`` file.
        """
        path = os.path.join(self.controldir(), "config")
        try:
            return ConfigFile.from_path(path)
        except FileNotFoundError:
            ret = ConfigFile()
            ret.path = path
            return ret

    @classmethod
    def _init_maybe_bare(
        cls,
        path: str,
        controldir: str,
        bare: bool,
        object_format: str | None = None,
    ) -> "Repo":
        for d in BASE_DIRECTORIES:
            os.mkdir(os.path.join(controldir, *d))
        hash_alg = get_object_format(object_format)
        DiskObjectStore.init(
            os.path.join(controldir, OBJECTDIR), object_format=hash_alg
        )
        f = BytesIO()
        _format_config(bare, hash_alg).write_to_file(f)
        with GitFile(os.path.join(controldir, "config"), "wb") as cf:
            cf.write(f.getvalue())
        ret = cls(path, bare=bare)
        ret.refs.set_symbolic_ref(HEADREF, LOCAL_BRANCH_PREFIX + DEFAULT_BRANCH)
        ret._put_named_file("description", b"Unnamed repository")
        return ret

    @classmethod
    def init(
        cls,
        path: str | os.PathLike[str],
        *,
        mkdir: bool = False,
        object_format: str | None = None,
    ) -> "Repo":
        """Create a new repository.

        Args:
          path: Path in which to create the repository
          mkdir: Whether to create the directory
          object_format: Object format to use ("sha1" or "sha256", defaults to "sha1")
        Returns: `Repo` instance
        """
        path = os.fspath(path)
        if mkdir:
            os.mkdir(path)
        controldir = os.path.join(path, CONTROLDIR)
        os.mkdir(controldir)
        return cls._init_maybe_bare(path, controldir, False, object_format)

    @classmethod
    def init_bare(
        cls,
        path: str | os.PathLike[str],
        *,
        mkdir: bool = False,
        object_format: str | None = None,
    ) -> "Repo":
        """Create a new bare repository.

        ``path`` should already exist and be an empty directory.

        Args:
          path: Path to create bare repository in
          mkdir: Whether to create the directory
          object_format: Object format to use ("sha1" or "sha256", defaults to "sha1")
        Returns: a `Repo` instance
        """
        path = os.fspath(path)
        if mkdir:
            os.mkdir(path)
        return cls._init_maybe_bare(path, path, True, object_format)

    def __enter__(self) -> "Repo":
        return self


class MemoryRepo(BaseRepo):
    """Repo that stores refs and objects in memory.

    MemoryRepos are always bare.
    """

    object_store: MemoryObjectStore
    refs: DictRefsContainer

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        """Create a new repository in memory."""
        super().__init__(
            MemoryObjectStore(object_format=object_format), DictRefsContainer({})
        )
        self.bare = True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({len(self.object_store)} objects)>"

    @classmethod
    def init_bare(
        cls,
        objects: Iterable[StoredObject],
        refs: Mapping[Ref, ObjectID],
        object_format: str | None = None,
    ) -> "MemoryRepo":
        """Create a new bare repository in memory.

        Args:
          objects: Objects for the new repository, as iterable
          refs: Refs as dictionary, mapping names to object ids
          object_format: Object format to use ("sha1" or "sha256", defaults to "sha1")
        """
        ret = cls(get_object_format(object_format))
        for obj in objects:
            ret.object_store.put(obj)
        for refname, sha in refs.items():
            ret.refs.compare_and_set(refname, None, sha)
        return ret
