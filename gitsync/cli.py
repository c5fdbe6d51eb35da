# cli.py -- Command-line interface to gitsync
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

"""Command-line interface to gitsync.

Usage: gitsync [-q] [-v] [--prefix PREFIX]... [--jobs N] [--init]
               [--full-walk] SOURCE TARGET

Exit status is 0 on success, 1 when the transfer was aborted, 2 when some
references could not be updated and 128 when a path is not a repository.
"""

__all__ = [
    "EXIT_ABORTED",
    "EXIT_NOT_A_REPOSITORY",
    "EXIT_PARTIAL_SUCCESS",
    "EXIT_SUCCESS",
    "main",
]

import argparse
import logging
import os
import signal
import sys
import types
from collections.abc import Sequence

from .errors import FileFormatException, GitSyncError, NotGitRepository
from .log_utils import default_logging_config
from .refs import SymrefLoop
from .repo import Repo, UnsupportedExtension, UnsupportedVersion
from .transfer import TransferStatus, transfer

EXIT_SUCCESS = 0
EXIT_ABORTED = 1
EXIT_PARTIAL_SUCCESS = 2
EXIT_NOT_A_REPOSITORY = 128

logger = logging.getLogger(__name__)


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting.

    Args:
        signal: Signal number
        frame: Current stack frame
    """
    sys.exit(EXIT_ABORTED)


def _write_progress(msg: bytes) -> None:
    sys.stderr.write(msg.decode("ascii", "replace"))
    sys.stderr.flush()


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return n


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitsync",
        description="Copy the history of one git repository into another",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only report errors and conflicts"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output"
    )
    parser.add_argument(
        "--prefix",
        action="append",
        dest="prefixes",
        metavar="PREFIX",
        help="Only transfer references starting with PREFIX (repeatable)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=1,
        metavar="N",
        help="Copy up to N objects at once (requires gevent)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Create TARGET as a bare repository if it does not exist",
    )
    parser.add_argument(
        "--full-walk",
        action="store_true",
        help="Do not assume objects in TARGET come with their full history",
    )
    parser.add_argument("source", metavar="SOURCE", help="Repository to read from")
    parser.add_argument("target", metavar="TARGET", help="Repository to write to")
    return parser


def _open_target(path: str, source: Repo, init: bool) -> Repo:
    try:
        return Repo(path)
    except NotGitRepository:
        if not init:
            raise
    if not os.path.isdir(path):
        os.makedirs(path)
    logger.info("Initializing bare repository at %s", path)
    return Repo.init_bare(path, object_format=source.object_format.name)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the gitsync CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]
    parser = _make_parser()
    args = parser.parse_args(argv)
    if args.jobs > 1:
        try:
            import gevent  # noqa: F401
        except ImportError:
            parser.error("--jobs requires gevent to be installed")

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    default_logging_config(level)

    progress = None
    if not args.quiet and sys.stderr.isatty():
        progress = _write_progress

    prefixes = None
    if args.prefixes:
        prefixes = [os.fsencode(p) for p in args.prefixes]

    try:
        with Repo(args.source) as source:
            with _open_target(args.target, source, args.init) as target:
                result = transfer(
                    source,
                    target,
                    ref_prefixes=prefixes,
                    trust_target=not args.full_walk,
                    concurrency=args.jobs,
                    progress=progress,
                )
    except NotGitRepository as e:
        sys.stderr.write(f"fatal: {e}\n")
        return EXIT_NOT_A_REPOSITORY
    except (UnsupportedVersion, UnsupportedExtension) as e:
        sys.stderr.write(f"fatal: {e}\n")
        return EXIT_ABORTED
    except (GitSyncError, FileFormatException, SymrefLoop, ValueError, OSError) as e:
        sys.stderr.write(f"error: transfer aborted: {e}\n")
        return EXIT_ABORTED

    if not args.quiet:
        sys.stderr.write(
            f"{result.objects_transferred} objects transferred, "
            f"{len(result.references_updated)} references updated\n"
        )
    for conflict in result.conflicts:
        sys.stderr.write(
            f"conflict: {conflict.name.decode('utf-8', 'replace')} "
            "was modified concurrently\n"
        )
    if result.status == TransferStatus.PARTIAL_SUCCESS:
        return EXIT_PARTIAL_SUCCESS
    return EXIT_SUCCESS


def _main() -> None:
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()
