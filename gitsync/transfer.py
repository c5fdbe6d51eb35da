# transfer.py -- Transferring history between repositories
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

"""Transferring history between repositories.

A transfer runs in three phases:

1. Find the objects reachable from the source references that the target
   is missing.
2. Copy those objects, checking each against its id. An object is only
   written once everything it references is in the target.
3. Point the target references at the source values, one compare-and-set
   per reference.

References are only touched once every object has been written, so a
target reference never points at an incomplete history. A failure in the
first two phases aborts the transfer with an exception and leaves the
target references alone; objects already copied stay, and a later run
picks up where this one stopped. A reference that changed under us, or that
could not be written, in the third phase is reported as a conflict and the
remaining references are still updated.
"""

__all__ = [
    "ObjectCopier",
    "SerialObjectCopier",
    "TransferResult",
    "TransferState",
    "TransferStatus",
    "transfer",
]

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from .errors import (
    AdapterIOError,
    NotFound,
    ReferenceConflict,
    SourceObjectMissing,
)
from .object_format import verify_same_object_format
from .object_store import BaseObjectStore
from .objects import ObjectID, verify_object
from .refs import Ref, filter_ref_prefix
from .repo import BaseRepo
from .walk import MissingObjectWalker

logger = logging.getLogger(__name__)


class TransferState(Enum):
    """States a transfer moves through."""

    START = "start"
    ENUMERATING_REFERENCES = "enumerating references"
    WALKING = "walking"
    TRANSFERRING_OBJECTS = "transferring objects"
    UPDATING_REFERENCES = "updating references"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial success"
    ABORTED = "aborted"


class TransferStatus(Enum):
    """Outcome of a transfer that did not abort."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial success"


@dataclass
class TransferResult:
    """Summary of a completed transfer.

    Attributes:
      objects_transferred: Number of objects written to the target
      references_updated: Names of the target references that now match
        the source
      conflicts: References that were modified concurrently, or could not be
        written, and were left alone
    """

    objects_transferred: int = 0
    references_updated: list[Ref] = field(default_factory=list)
    conflicts: list[ReferenceConflict] = field(default_factory=list)

    @property
    def status(self) -> TransferStatus:
        if self.conflicts:
            return TransferStatus.PARTIAL_SUCCESS
        return TransferStatus.SUCCESS


class ObjectCopier:
    """Copy a set of objects from one store to another.

    Args:
      source: Object store to read from
      target: Object store to write to
      progress: Optional function to report progress to.
    """

    def __init__(
        self,
        source: BaseObjectStore,
        target: BaseObjectStore,
        progress: Callable[[bytes], None] | None = None,
    ) -> None:
        self.source = source
        self.target = target
        if progress is None:
            self.progress: Callable[[bytes], None] = lambda x: None
        else:
            self.progress = progress

    def copy_object(self, sha: ObjectID) -> bool:
        """Copy a single object.

        Returns: True if the object was written, False if the target already
          had it
        Raises:
          SourceObjectMissing: if the source does not have the object
          Corrupt: if the object does not match its id
        """
        try:
            obj = self.source.get(sha)
        except NotFound:
            raise SourceObjectMissing(sha)
        verify_object(obj, sha, self.source.object_format)
        return self.target.put(obj)

    def copy_batch(self, shas: list[ObjectID]) -> int:
        """Copy objects that do not reference each other, in any order.

        Returns: Number of objects actually written
        """
        raise NotImplementedError(self.copy_batch)

    def copy(self, generations: Iterable[Iterable[ObjectID]]) -> int:
        """Copy objects one generation at a time.

        A generation is only started once the previous one has been written
        completely.

        Args:
          generations: Batches of ids, as returned by
            `MissingObjectWalker.generations`
        Returns: Number of objects actually written
        """
        batches = [list(generation) for generation in generations]
        total = sum(len(batch) for batch in batches)
        done = 0
        written = 0
        for batch in batches:
            written += self.copy_batch(batch)
            done += len(batch)
            self.progress(f"copying objects: {done}/{total}\r".encode("ascii"))
        self.progress(f"copying objects: {total}, done.\n".encode("ascii"))
        return written


class SerialObjectCopier(ObjectCopier):
    """Copy objects one at a time."""

    def copy_batch(self, shas: list[ObjectID]) -> int:
        return sum(1 for sha in shas if self.copy_object(sha))


def _make_copier(
    source: BaseObjectStore,
    target: BaseObjectStore,
    concurrency: int,
    progress: Callable[[bytes], None] | None,
) -> ObjectCopier:
    if concurrency > 1:
        from .greenthreads import GreenThreadsObjectCopier

        return GreenThreadsObjectCopier(
            source, target, progress=progress, concurrency=concurrency
        )
    return SerialObjectCopier(source, target, progress=progress)


def transfer(
    source: BaseRepo,
    target: BaseRepo,
    *,
    ref_prefixes: Iterable[bytes] | None = None,
    trust_target: bool = True,
    concurrency: int = 1,
    progress: Callable[[bytes], None] | None = None,
) -> TransferResult:
    """Make the target contain the history of every source reference.

    Args:
      source: Repository to read history from
      target: Repository to write history to
      ref_prefixes: Only transfer references whose names start with one of
        these prefixes; all references if None
      trust_target: Assume objects present in the target come with their
        whole subgraph
      concurrency: Number of objects to copy at once; values above 1 need
        gevent
      progress: Optional function to report progress to.
    Returns: A `TransferResult`
    Raises:
      ValueError: if the repositories use different object formats
      SourceObjectMissing: if the source history is incomplete
      Corrupt: if a source object does not match its id
      AdapterIOError: if reading the source references or an object store
        failed
    """
    verify_same_object_format(source.object_format, target.object_format)
    state = TransferState.START
    result = TransferResult()

    def enter(new_state: TransferState) -> None:
        nonlocal state
        logger.debug("transfer: %s -> %s", state.value, new_state.value)
        state = new_state

    try:
        enter(TransferState.ENUMERATING_REFERENCES)
        refs = sorted(filter_ref_prefix(source.refs.list(), ref_prefixes))
        if not refs:
            logger.debug("No references to transfer")
            enter(TransferState.SUCCESS)
            return result

        enter(TransferState.WALKING)
        walker = MissingObjectWalker(
            source.object_store,
            target.object_store,
            {ref.target for ref in refs},
            trust_target=trust_target,
            progress=progress,
        )
        missing = walker.find_missing_objects()

        enter(TransferState.TRANSFERRING_OBJECTS)
        copier = _make_copier(
            source.object_store, target.object_store, concurrency, progress
        )
        result.objects_transferred = copier.copy(walker.generations())
        logger.debug(
            "Copied %d of %d missing objects", result.objects_transferred, len(missing)
        )

        enter(TransferState.UPDATING_REFERENCES)
        for ref in refs:
            name = ref.name.decode("utf-8", "replace")
            try:
                expected_old = target.refs.get(ref.name)
                updated = target.refs.compare_and_set(
                    ref.name, expected_old, ref.target
                )
            except AdapterIOError as exc:
                logger.warning("Unable to update %s: %s", name, exc)
                updated = False
            else:
                if not updated:
                    logger.warning("%s was modified concurrently; not updated", name)
            if updated:
                result.references_updated.append(ref.name)
            else:
                result.conflicts.append(ReferenceConflict(ref.name))
    except Exception:
        enter(TransferState.ABORTED)
        raise

    if result.conflicts:
        enter(TransferState.PARTIAL_SUCCESS)
    else:
        enter(TransferState.SUCCESS)
    return result
