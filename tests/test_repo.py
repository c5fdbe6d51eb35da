# test_repo.py -- Tests for repo.py
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

"""Tests for the repository."""

import os
from io import BytesIO

from gitsync.errors import NotGitRepository
from gitsync.object_format import SHA1, SHA256
from gitsync.refs import HEADREF
from gitsync.repo import (
    CONTROLDIR,
    OBJECTDIR,
    MemoryRepo,
    Repo,
    UnsupportedExtension,
    UnsupportedVersion,
    read_gitfile,
)

from . import TestCase
from .utils import make_blob, store_commit


class CreateRepositoryTests(TestCase):
    def assertFileContentsEqual(self, expected: bytes, repo: Repo, path: str):
        f = repo.get_named_file(path)
        if f is None:
            self.assertEqual(expected, None)
        else:
            with f:
                self.assertEqual(expected, f.read())

    def _check_repo_contents(self, repo: Repo, expect_bare: bool) -> None:
        self.assertEqual(expect_bare, repo.bare)
        self.assertFileContentsEqual(b"Unnamed repository", repo, "description")
        self.assertEqual(b"ref: refs/heads/master", repo.refs.read_ref(HEADREF))
        for d in ("branches", "hooks", "info", "refs/heads", "refs/tags"):
            self.assertTrue(os.path.isdir(os.path.join(repo.controldir(), d)), d)
        objects = os.path.join(repo.controldir(), OBJECTDIR)
        self.assertTrue(os.path.isdir(os.path.join(objects, "pack")))
        self.assertTrue(os.path.isdir(os.path.join(objects, "info")))
        config = repo.get_config()
        self.assertEqual(b"0", config.get("core", "repositoryformatversion"))
        self.assertEqual(expect_bare, config.get_boolean("core", "bare"))

    def test_create_disk_bare(self) -> None:
        tmp_dir = self.mkdtemp()
        repo = Repo.init_bare(tmp_dir)
        self.addCleanup(repo.close)
        self.assertEqual(tmp_dir, repo.controldir())
        self._check_repo_contents(repo, True)

    def test_create_disk_bare_mkdir(self) -> None:
        target_dir = os.path.join(self.mkdtemp(), "target.git")
        repo = Repo.init_bare(target_dir, mkdir=True)
        self.addCleanup(repo.close)
        self.assertEqual(target_dir, repo.controldir())
        self._check_repo_contents(repo, True)

    def test_create_disk_non_bare(self) -> None:
        tmp_dir = self.mkdtemp()
        repo = Repo.init(tmp_dir)
        self.addCleanup(repo.close)
        self.assertEqual(os.path.join(tmp_dir, CONTROLDIR), repo.controldir())
        self._check_repo_contents(repo, False)

    def test_create_disk_sha256(self) -> None:
        tmp_dir = self.mkdtemp()
        repo = Repo.init_bare(tmp_dir, object_format="sha256")
        self.addCleanup(repo.close)
        self.assertIs(SHA256, repo.object_format)
        self.assertIs(SHA256, repo.object_store.object_format)
        config = repo.get_config()
        self.assertEqual(b"1", config.get("core", "repositoryformatversion"))
        self.assertEqual(b"sha256", config.get("extensions", "objectformat"))

    def test_create_disk_unknown_format(self) -> None:
        self.assertRaises(
            ValueError, Repo.init_bare, self.mkdtemp(), object_format="md5"
        )

    def test_create_memory(self) -> None:
        repo = MemoryRepo()
        self.assertTrue(repo.bare)
        self.assertIs(SHA1, repo.object_format)
        self.assertEqual({}, repo.get_refs())


class RepositoryRootTests(TestCase):
    def _write_config(self, path: str, contents: bytes) -> None:
        with open(os.path.join(path, "config"), "wb") as f:
            f.write(contents)

    def test_reopen_bare(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir).close()
        with Repo(tmp_dir) as repo:
            self.assertTrue(repo.bare)
            self.assertEqual(tmp_dir, repo.path)
            self.assertIs(SHA1, repo.object_format)

    def test_reopen_non_bare(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init(tmp_dir).close()
        with Repo(tmp_dir) as repo:
            self.assertFalse(repo.bare)
            self.assertEqual(os.path.join(tmp_dir, CONTROLDIR), repo.controldir())

    def test_reopen_sha256(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir, object_format="sha256").close()
        with Repo(tmp_dir) as repo:
            self.assertIs(SHA256, repo.object_format)

    def test_repr(self) -> None:
        tmp_dir = self.mkdtemp()
        with Repo.init_bare(tmp_dir) as repo:
            self.assertEqual(f"<Repo at {tmp_dir!r}>", repr(repo))

    def test_not_a_repository(self) -> None:
        self.assertRaises(NotGitRepository, Repo, self.mkdtemp())

    def test_missing_directory(self) -> None:
        path = os.path.join(self.mkdtemp(), "nonexistent")
        self.assertRaises(NotGitRepository, Repo, path)

    def test_unsupported_version(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir).close()
        self._write_config(tmp_dir, b"[core]\n\trepositoryformatversion = 2\n")
        with self.assertRaises(UnsupportedVersion) as cm:
            Repo(tmp_dir)
        self.assertEqual(2, cm.exception.version)

    def test_unsupported_extension(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir).close()
        self._write_config(
            tmp_dir,
            b"[core]\n\trepositoryformatversion = 1\n"
            b"[extensions]\n\tpartialclone = origin\n",
        )
        with self.assertRaises(UnsupportedExtension) as cm:
            Repo(tmp_dir)
        self.assertEqual("partialclone", cm.exception.extension)

    def test_worktreeconfig_extension(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir).close()
        self._write_config(
            tmp_dir,
            b"[core]\n\trepositoryformatversion = 1\n"
            b"[extensions]\n\tworktreeConfig = true\n",
        )
        with Repo(tmp_dir) as repo:
            self.assertIs(SHA1, repo.object_format)

    def test_missing_config(self) -> None:
        tmp_dir = self.mkdtemp()
        Repo.init_bare(tmp_dir).close()
        os.unlink(os.path.join(tmp_dir, "config"))
        with Repo(tmp_dir) as repo:
            self.assertTrue(repo.bare)
            self.assertEqual(
                os.path.join(tmp_dir, "config"), repo.get_config().path
            )

    def test_gitfile(self) -> None:
        gitdir = os.path.join(self.mkdtemp(), "separate.git")
        Repo.init_bare(gitdir, mkdir=True).close()
        worktree = self.mkdtemp()
        with open(os.path.join(worktree, CONTROLDIR), "wb") as f:
            f.write(b"gitdir: " + os.fsencode(gitdir) + b"\n")
        with Repo(worktree) as repo:
            self.assertFalse(repo.bare)
            self.assertEqual(gitdir, repo.controldir())

    def test_get_named_file_missing(self) -> None:
        with Repo.init_bare(self.mkdtemp()) as repo:
            self.assertIsNone(repo.get_named_file("nonexistent"))

    def test_get_refs(self) -> None:
        with Repo.init_bare(self.mkdtemp()) as repo:
            commit, _ = store_commit(repo.object_store, {b"a": b"a\n"})
            self.assertTrue(
                repo.refs.compare_and_set(b"refs/heads/master", None, commit.id)
            )
            self.assertEqual({b"refs/heads/master": commit.id}, repo.get_refs())
            self.assertEqual(commit.id, repo.refs[HEADREF])


class ReadGitfileTests(TestCase):
    def test_read(self) -> None:
        self.assertEqual("../repo.git", read_gitfile(BytesIO(b"gitdir: ../repo.git\n")))

    def test_crlf(self) -> None:
        self.assertEqual("/srv/repo", read_gitfile(BytesIO(b"gitdir: /srv/repo\r\n")))

    def test_invalid(self) -> None:
        self.assertRaises(ValueError, read_gitfile, BytesIO(b"/srv/repo\n"))


class MemoryRepoTests(TestCase):
    def test_init_bare(self) -> None:
        blob = make_blob(b"contents")
        repo = MemoryRepo.init_bare([blob], {b"refs/tags/blob": blob.id})
        self.assertTrue(repo.object_store.exists(blob.id))
        self.assertEqual({b"refs/tags/blob": blob.id}, repo.get_refs())
        self.assertEqual("<MemoryRepo (1 objects)>", repr(repo))

    def test_init_bare_sha256(self) -> None:
        blob = make_blob(b"contents", SHA256)
        repo = MemoryRepo.init_bare([blob], {}, object_format="sha256")
        self.assertIs(SHA256, repo.object_format)
        self.assertEqual(64, len(blob.id))
        self.assertTrue(repo.object_store.exists(blob.id))

    def test_context_manager(self) -> None:
        with MemoryRepo() as repo:
            self.assertEqual({}, repo.get_refs())
