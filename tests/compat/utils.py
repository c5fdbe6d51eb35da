# utils.py -- Git compatibility utilities
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

"""Utilities for interacting with cgit."""

__all__ = [
    "CompatTestCase",
    "git_version",
    "require_git_version",
    "run_git",
    "run_git_or_fail",
]

import os
import subprocess
from typing import Any

from gitsync.repo import Repo

from .. import SkipTest, TestCase

_DEFAULT_GIT = "git"
_VERSION_LEN = 4


def git_version(git_path: str = _DEFAULT_GIT) -> tuple[int, ...] | None:
    """Attempt to determine the version of git currently installed.

    Args:
      git_path: Path to the git executable; defaults to the version in
        the system path.
    Returns: A tuple of ints of the form (major, minor, point, sub-point), or
        None if no git installation was found.
    """
    try:
        _, output, _ = run_git(["--version"], git_path=git_path, capture_stdout=True)
    except OSError:
        return None
    version_prefix = b"git version "
    if not output.startswith(version_prefix):
        return None

    parts = output[len(version_prefix) :].split()[0].split(b".")
    nums = []
    for part in parts[:_VERSION_LEN]:
        if not part.isdigit():
            break
        nums.append(int(part))
    if not nums:
        return None
    nums.extend([0] * (_VERSION_LEN - len(nums)))
    return tuple(nums)


def require_git_version(
    required_version: tuple[int, ...], git_path: str = _DEFAULT_GIT
) -> None:
    """Require git version >= version, or skip the calling test.

    Args:
      required_version: A tuple of ints of the form (major, minor, point,
        sub-point); omitted components default to 0.
      git_path: Path to the git executable; defaults to the version in
        the system path.

    Raises:
      ValueError: if the required version tuple has too many parts.
      SkipTest: if no suitable git version was found at the given path.
    """
    found_version = git_version(git_path=git_path)
    if found_version is None:
        raise SkipTest(
            f"Test requires git >= {required_version}, but git was not found"
        )

    if len(required_version) > _VERSION_LEN:
        raise ValueError(
            f"Invalid version tuple {required_version}, expected {_VERSION_LEN} parts"
        )

    required_version = tuple(required_version) + (0,) * (
        _VERSION_LEN - len(required_version)
    )
    if found_version < required_version:
        required = ".".join(map(str, required_version))
        found = ".".join(map(str, found_version))
        raise SkipTest(f"Test requires git >= {required}, found {found}")


def run_git(
    args: list[str],
    git_path: str = _DEFAULT_GIT,
    input: bytes | None = None,
    capture_stdout: bool = False,
    capture_stderr: bool = False,
    **popen_kwargs: Any,
) -> tuple[int, bytes | None, bytes | None]:
    """Run a git command.

    Input is piped from the input parameter and output is sent to the standard
    streams, unless capture_stdout is set.

    Args:
      args: A list of args to the git command.
      git_path: Path to the git executable.
      input: Input data to be sent to stdin.
      capture_stdout: Whether to capture and return stdout.
      capture_stderr: Whether to capture and return stderr.
      popen_kwargs: Additional kwargs for subprocess.Popen;
        stdin/stdout args are ignored.
    Returns: A tuple of (returncode, stdout contents, stderr contents).
        If capture_stdout is False, None will be returned as stdout contents.
        If capture_stderr is False, None will be returned as stderr contents.
    Raises:
      OSError: if the git executable was not found.
    """
    env = popen_kwargs.pop("env", {})
    env["LC_ALL"] = env["LANG"] = "C"
    env["PATH"] = os.getenv("PATH", "")
    env.setdefault("HOME", os.environ.get("HOME", "/nonexistent"))
    env["GIT_CONFIG_NOSYSTEM"] = "1"
    for name in ("NAME", "EMAIL", "DATE"):
        value = os.environ.get("GIT_AUTHOR_" + name)
        if value is not None:
            env.setdefault("GIT_AUTHOR_" + name, value)
            env.setdefault("GIT_COMMITTER_" + name, value)

    args = [git_path, *args]
    popen_kwargs["stdin"] = subprocess.PIPE
    if capture_stdout:
        popen_kwargs["stdout"] = subprocess.PIPE
    else:
        popen_kwargs.pop("stdout", None)
    if capture_stderr:
        popen_kwargs["stderr"] = subprocess.PIPE
    p = subprocess.Popen(args, env=env, **popen_kwargs)
    stdout, stderr = p.communicate(input=input)
    return (p.returncode, stdout, stderr)


def run_git_or_fail(
    args: list[str],
    git_path: str = _DEFAULT_GIT,
    input: bytes | None = None,
    **popen_kwargs: Any,
) -> bytes:
    """Run a git command, capture stdout/stderr, and fail if git fails."""
    returncode, stdout, stderr = run_git(
        args,
        git_path=git_path,
        input=input,
        capture_stdout=True,
        capture_stderr=True,
        **popen_kwargs,
    )
    assert stdout is not None
    if returncode != 0:
        raise AssertionError(
            f"git with args {args!r} failed with {returncode}: "
            f"stdout={stdout!r} stderr={stderr!r}"
        )
    return stdout


class CompatTestCase(TestCase):
    """Test case that requires git for compatibility checks.

    Subclasses can change the git version required by overriding
    min_git_version.
    """

    min_git_version: tuple[int, ...] = (1, 5, 0)

    def setUp(self) -> None:
        super().setUp()
        require_git_version(self.min_git_version)
        self.overrideEnv("GIT_AUTHOR_NAME", "Test Author")
        self.overrideEnv("GIT_AUTHOR_EMAIL", "test@example.com")
        self.overrideEnv("GIT_AUTHOR_DATE", "1700000000 +0000")

    def git_init(self, path: str, bare: bool = False, object_format: str = "sha1"):
        """Create a repository with git.

        Args:
          path: Directory to create the repository in
          bare: Whether to create a bare repository
          object_format: Hash algorithm for the repository
        """
        args = ["-c", "init.defaultBranch=master", "init", "-q"]
        if bare:
            args.append("--bare")
        if object_format != "sha1":
            args.append(f"--object-format={object_format}")
        run_git_or_fail([*args, path])

    def git_commit(self, path: str, files: dict[str, bytes], message: str) -> bytes:
        """Write files into a working tree and commit them with git.

        Returns: Id of the new commit
        """
        for name, contents in files.items():
            full_path = os.path.join(path, name)
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(contents)
        run_git_or_fail(["add", "-A"], cwd=path)
        run_git_or_fail(["commit", "-q", "-m", message], cwd=path)
        return run_git_or_fail(["rev-parse", "HEAD"], cwd=path).strip()

    def git_refs(self, path: str) -> dict[bytes, bytes]:
        """Return the references of a repository as seen by git."""
        output = run_git_or_fail(
            ["for-each-ref", "--format=%(refname) %(objectname)"], cwd=path
        )
        refs = {}
        for line in output.splitlines():
            name, sha = line.split(b" ")
            refs[name] = sha
        return refs

    def assertGitFsck(self, path: str) -> None:
        """Assert that git finds a repository complete and well formed."""
        run_git_or_fail(["fsck", "--full", "--no-dangling"], cwd=path)

    def open_repo(self, path: str) -> Repo:
        """Open a repository with gitsync, closing it after the test."""
        repo = Repo(path)
        self.addCleanup(repo.close)
        return repo
