# walk.py -- Finding the objects a target repository is missing
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

"""Finding the objects a target repository is missing.

The walk starts at a set of heads and follows outgoing references through
the source object store. An object already present in the target is assumed
to come with everything it references, so the walk stops there, as long as
the objects it references directly are in the target too. The result
is the set of objects that have to be copied for the target to contain the
full history of every head.
"""

__all__ = [
    "MissingObjectWalker",
    "find_missing_objects",
]

import logging
import stat
from collections import deque
from collections.abc import Callable, Iterable

from .errors import NotFound, SourceObjectMissing
from .object_store import BaseObjectStore
from .objects import S_ISGITLINK, ObjectID, ObjectKind, StoredObject, parse_tree

logger = logging.getLogger(__name__)

# Report progress every this many visited objects.
_PROGRESS_INTERVAL = 1000


class MissingObjectWalker:
    """Find the objects reachable from some heads that a target lacks.

    Args:
      source: Object store containing at least every reachable object
      target: Object store the objects will be copied into
      heads: Ids to start the walk from
      trust_target: Whether an object present in the target may be assumed
        to come with its whole subgraph once the objects it references
        directly are present too. If False, such objects are always
        expanded (but never reported missing).
      progress: Optional function to report progress to.
    """

    def __init__(
        self,
        source: BaseObjectStore,
        target: BaseObjectStore,
        heads: Iterable[ObjectID],
        *,
        trust_target: bool = True,
        progress: Callable[[bytes], None] | None = None,
    ) -> None:
        self.source = source
        self.target = target
        self.trust_target = trust_target
        if progress is None:
            self.progress: Callable[[bytes], None] = lambda x: None
        else:
            self.progress = progress
        # Pairs of (id, leaf). Leaves are known not to reference anything.
        self._frontier: deque[tuple[ObjectID, bool]] = deque(
            (head, False) for head in heads
        )
        self.visited: set[ObjectID] = set()
        self.missing: set[ObjectID] = set()
        # Outgoing references of the missing objects that have any.
        self._references: dict[ObjectID, list[ObjectID]] = {}

    @property
    def visited_count(self) -> int:
        """Number of distinct objects examined so far."""
        return len(self.visited)

    def _fetch(self, sha: ObjectID) -> StoredObject:
        try:
            return self.source.get(sha)
        except NotFound:
            raise SourceObjectMissing(sha)

    def _children(self, obj: StoredObject) -> list[tuple[ObjectID, bool]]:
        if obj.kind == ObjectKind.TREE:
            return [
                (entry.sha, not stat.S_ISDIR(entry.mode))
                for entry in parse_tree(obj.payload, self.source.object_format)
                if not S_ISGITLINK(entry.mode)
            ]
        return [(sha, False) for sha in self.source.outgoing_references(obj)]

    def _visit(self, sha: ObjectID, leaf: bool) -> None:
        self.visited.add(sha)
        in_target = self.target.exists(sha)
        if leaf:
            if in_target and self.trust_target:
                return
            if not self.source.exists(sha):
                raise SourceObjectMissing(sha)
            if not in_target:
                self.missing.add(sha)
            return
        if in_target and self.trust_target:
            # Only stop here if the objects this one references made it
            # into the target as well; otherwise expand it as if untrusted.
            children = self._children(self.target.get(sha))
            if all(self.target.exists(child_sha) for child_sha, _ in children):
                return
            logger.debug(
                "%s is in the target without all its references",
                sha.decode("ascii"),
            )
        else:
            children = self._children(self._fetch(sha))
        if not in_target:
            self.missing.add(sha)
            self._references[sha] = [child_sha for child_sha, _ in children]
        for child in children:
            if child[0] not in self.visited:
                self._frontier.append(child)

    def find_missing_objects(self) -> set[ObjectID]:
        """Run the walk to completion.

        Returns: Set of ids present in the source but missing from the target
        Raises:
          SourceObjectMissing: if a reachable object is absent from the source
          Corrupt: if a source object does not match its id
        """
        while self._frontier:
            sha, leaf = self._frontier.popleft()
            if sha in self.visited:
                continue
            self._visit(sha, leaf)
            if len(self.visited) % _PROGRESS_INTERVAL == 0:
                self.progress(
                    f"counting objects: {len(self.visited)}\r".encode("ascii")
                )
        self.progress(f"counting objects: {len(self.visited)}, done.\n".encode("ascii"))
        logger.debug(
            "Visited %d objects, %d missing from target",
            len(self.visited),
            len(self.missing),
        )
        return self.missing

    def generations(self) -> list[list[ObjectID]]:
        """Group the missing objects into generations.

        Objects in a generation only reference objects from earlier
        generations or objects the target already has. Writing the
        generations in order means an interrupted copy never leaves an
        object in the target without the objects it references, so a later
        walk can still stop at the objects already present.

        Returns: List of generations, leaves first
        """
        height: dict[ObjectID, int] = {}
        for root in self.missing:
            stack = [(root, False)]
            while stack:
                sha, expanded = stack.pop()
                if sha in height:
                    continue
                children = [
                    child
                    for child in self._references.get(sha, ())
                    if child in self.missing
                ]
                if expanded:
                    height[sha] = 1 + max((height[c] for c in children), default=-1)
                    continue
                stack.append((sha, True))
                stack.extend((c, False) for c in children if c not in height)
        generations: list[list[ObjectID]] = [
            [] for _ in range(max(height.values(), default=-1) + 1)
        ]
        for sha, h in height.items():
            generations[h].append(sha)
        return generations


def find_missing_objects(
    source: BaseObjectStore,
    target: BaseObjectStore,
    heads: Iterable[ObjectID],
    *,
    trust_target: bool = True,
) -> set[ObjectID]:
    """Find the objects reachable from heads that are missing from target.

    Args:
      source: Object store containing the history
      target: Object store to compare against
      heads: Ids to start the walk from
      trust_target: See :class:`MissingObjectWalker`
    Returns: Set of missing object ids
    """
    return MissingObjectWalker(
        source, target, heads, trust_target=trust_target
    ).find_missing_objects()
