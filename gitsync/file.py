# file.py -- Safe access to git files
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

"""Safe access to git files.

Writes follow git's lock file protocol: the new contents of ``foo`` are
written to ``foo.lock``, created exclusively, and renamed over ``foo`` on
close. A reader therefore sees either the old or the new file, never a
partial one, and two writers cannot update the same file at once.
"""

__all__ = [
    "FileLocked",
    "GitFile",
    "ensure_dir_exists",
]

import os
import warnings
from types import TracebackType
from typing import IO, Literal, overload


def ensure_dir_exists(dirname: str | bytes | os.PathLike[str]) -> None:
    """Ensure a directory exists, creating if necessary."""
    try:
        os.makedirs(dirname)
    except FileExistsError:
        pass


class FileLocked(Exception):
    """File is already locked."""

    def __init__(self, filename: str | bytes, lockfilename: str | bytes) -> None:
        """Initialize FileLocked.

        Args:
          filename: Name of the file that is locked
          lockfilename: Name of the lock file
        """
        self.filename = filename
        self.lockfilename = lockfilename
        super().__init__(filename, lockfilename)


@overload
def GitFile(
    filename: str | bytes | os.PathLike[str],
    mode: Literal["wb"],
    mask: int = 0o644,
    fsync: bool = True,
) -> "_GitFile": ...


@overload
def GitFile(
    filename: str | bytes | os.PathLike[str],
    mode: Literal["rb"] = "rb",
    mask: int = 0o644,
    fsync: bool = True,
) -> IO[bytes]: ...


def GitFile(
    filename: str | bytes | os.PathLike[str],
    mode: str = "rb",
    mask: int = 0o644,
    fsync: bool = True,
) -> "IO[bytes] | _GitFile":
    """Create a file object that obeys the git file locking protocol.

    Only read-only and write-only binary modes are supported.

    Args:
      filename: Path to the file
      mode: File mode ('rb' or 'wb')
      mask: File mask for created files
      fsync: Whether to call fsync() before renaming the lock file into place
    Returns: a builtin file object or a _GitFile object
    """
    if mode == "wb":
        return _GitFile(filename, mask, fsync)
    if mode == "rb":
        return open(filename, mode)
    raise OSError(f"mode {mode!r} not supported for Git files")


class _GitFile:
    """File that follows the git locking protocol for writes.

    Note: You *must* call close() or abort() on a _GitFile for the lock to be
        released. Typically this will happen through the context manager.
    """

    def __init__(
        self, filename: str | bytes | os.PathLike[str], mask: int, fsync: bool
    ) -> None:
        self._filename: str | bytes = os.fspath(filename)
        self._fsync = fsync
        if isinstance(self._filename, bytes):
            self._lockfilename: str | bytes = self._filename + b".lock"
        else:
            self._lockfilename = self._filename + ".lock"
        try:
            fd = os.open(
                self._lockfilename,
                os.O_RDWR | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0),
                mask,
            )
        except FileExistsError as exc:
            raise FileLocked(self._filename, self._lockfilename) from exc
        self._file = os.fdopen(fd, "wb")
        self._closed = False

    @property
    def closed(self) -> bool:
        """Return whether the lock has been released."""
        return self._closed

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def abort(self) -> None:
        """Close and discard the lockfile without overwriting the target.

        If the file is already closed, this is a no-op.
        """
        if self._closed:
            return
        self._file.close()
        try:
            os.remove(self._lockfilename)
        except FileNotFoundError:
            pass
        self._closed = True

    def close(self) -> None:
        """Close this file, saving the lockfile over the original.

        Raises:
          OSError: if the original file could not be overwritten. The lock
            file is removed in that case.
        """
        if self._closed:
            return
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())
        self._file.close()
        try:
            os.replace(self._lockfilename, self._filename)
        finally:
            self.abort()

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            warnings.warn(f"unclosed {self!r}", ResourceWarning, stacklevel=2)
            self.abort()

    def __enter__(self) -> "_GitFile":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()
