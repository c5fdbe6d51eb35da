# errors.py -- errors for gitsync
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

"""gitsync-related exception classes."""

__all__ = [
    "AdapterIOError",
    "ApplyDeltaError",
    "Corrupt",
    "FileFormatException",
    "GitSyncError",
    "NotFound",
    "NotGitRepository",
    "ObjectFormatException",
    "PackedRefsException",
    "RefFormatError",
    "ReferenceConflict",
    "SourceObjectMissing",
]


def _display_sha(sha: bytes | str) -> str:
    if isinstance(sha, bytes):
        return sha.decode("ascii", "replace")
    return sha


class GitSyncError(Exception):
    """Base class for errors raised while transferring history."""


class SourceObjectMissing(GitSyncError):
    """A reference or object points at content absent from the source store.

    This indicates an inconsistent source repository; the transfer is
    aborted rather than silently skipping the object.
    """

    def __init__(self, sha: bytes) -> None:
        """Initialize a SourceObjectMissing exception.

        Args:
          sha: Hex id of the missing object
        """
        self.sha = sha
        super().__init__(f"{_display_sha(sha)} is missing from the source repository")


class Corrupt(GitSyncError):
    """Recomputed content hash does not match the claimed object id."""

    def __init__(self, sha: bytes, got: bytes | None = None) -> None:
        """Initialize a Corrupt exception.

        Args:
          sha: The id the object claimed to have
          got: The id actually computed from its contents, if known
        """
        self.sha = sha
        self.got = got
        message = f"Object {_display_sha(sha)} is corrupt"
        if got is not None:
            message += f": contents hash to {_display_sha(got)}"
        super().__init__(message)


class ReferenceConflict(GitSyncError):
    """A target reference changed between reading it and updating it."""

    def __init__(self, name: bytes) -> None:
        """Initialize a ReferenceConflict.

        Args:
          name: Name of the conflicting reference
        """
        self.name = name
        super().__init__(
            f"{name.decode('utf-8', 'replace')} was modified concurrently"
        )

    def __eq__(self, other: object) -> bool:
        """Check equality with another ReferenceConflict."""
        if not isinstance(other, ReferenceConflict):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        """Return hash of the conflicting reference name."""
        return hash(self.name)


class AdapterIOError(GitSyncError):
    """The storage underneath an object or reference store failed."""


class NotFound(KeyError):
    """The requested object is not present in the object store."""

    def __init__(self, sha: bytes) -> None:
        """Initialize a NotFound exception.

        Args:
          sha: Hex id of the object that was looked up
        """
        self.sha = sha
        super().__init__(sha)


class NotGitRepository(Exception):
    """Indicates that no Git repository was found."""


class FileFormatException(Exception):
    """Base class for exceptions relating to reading git file formats."""


class ObjectFormatException(FileFormatException):
    """Indicates an error parsing an object."""


class ApplyDeltaError(Exception):
    """Indicates that applying a delta failed."""


class RefFormatError(Exception):
    """Indicates an invalid ref name."""


class PackedRefsException(FileFormatException):
    """Indicates an error parsing a packed-refs file."""
