# greenthreads.py -- Copying objects with gevent
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

"""Utility module for copying objects between stores with gevent."""

__all__ = [
    "GreenThreadsObjectCopier",
]

from collections.abc import Callable

import gevent
from gevent import pool

from .object_store import BaseObjectStore
from .objects import ObjectID
from .transfer import ObjectCopier


class GreenThreadsObjectCopier(ObjectCopier):
    """Copy objects with a pool of green threads.

    Same behaviour as transfer.SerialObjectCopier except that up to
    ``concurrency`` objects of a generation are copied at once. After the
    first failure no further copies are started and the green threads still
    running are killed; the failure is then re-raised.
    """

    def __init__(
        self,
        source: BaseObjectStore,
        target: BaseObjectStore,
        progress: Callable[[bytes], None] | None = None,
        concurrency: int = 1,
    ) -> None:
        """Initialize GreenThreadsObjectCopier.

        Args:
          source: Object store to read from
          target: Object store to write to
          progress: Optional progress callback
          concurrency: Number of concurrent green threads
        """
        super().__init__(source, target, progress=progress)
        self.concurrency = concurrency

    def copy_batch(self, shas: list[ObjectID]) -> int:
        p = pool.Pool(size=self.concurrency)
        failed: list[gevent.Greenlet] = []
        jobs = []
        try:
            for sha in shas:
                # Spawning blocks while the pool is full, so a failure in
                # a running job shows up here before the next one starts.
                if failed:
                    break
                job = p.spawn(self.copy_object, sha)
                job.link_exception(failed.append)
                jobs.append(job)
            gevent.joinall(jobs, raise_error=True)
        finally:
            p.kill()
        return sum(1 for job in jobs if job.value)
