# config.py - Reading git config files
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

"""Reading git configuration files.

Only the parts of the format needed to read a repository's own config are
supported: sections, subsections, comments, quoting, escapes and line
continuations. Includes are ignored.

Section names and variable names are case-insensitive; subsection names
are case-sensitive.
"""

__all__ = [
    "Config",
    "ConfigDict",
    "ConfigFile",
]

import os
from collections.abc import Iterator
from typing import IO, overload

Section = tuple[bytes, ...]
SectionLike = bytes | str | tuple[bytes | str, ...]
NameLike = bytes | str


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def _section_key(section: SectionLike) -> Section:
    if not isinstance(section, tuple):
        section = (section,)
    parts = tuple(_to_bytes(p) for p in section)
    # Only the section name itself is case-insensitive.
    return (parts[0].lower(),) + parts[1:]


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> bytes:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    @overload
    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool
    ) -> bool: ...

    @overload
    def get_boolean(self, section: SectionLike, name: NameLike) -> bool | None: ...

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as boolean.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the setting
          default: Default value if setting is not found

        Returns:
          Contents of the setting
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        if value.lower() in (b"true", b"yes", b"on", b"1"):
            return True
        elif value.lower() in (b"false", b"no", b"off", b"0", b""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def get_int(
        self, section: SectionLike, name: NameLike, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as an integer.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the setting
          default: Default value if setting is not found
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"not a valid integer: {value!r}")

    def items(self, section: SectionLike) -> Iterator[tuple[bytes, bytes]]:
        """Iterate over the configuration pairs for a specific section.

        Args:
          section: Tuple with section name and optional subsection name
        Returns:
          Iterator over (name, value) pairs
        """
        raise NotImplementedError(self.items)


class ConfigDict(Config):
    """Git configuration stored in a dictionary."""

    def __init__(self) -> None:
        """Create a new, empty ConfigDict."""
        self._values: dict[Section, dict[bytes, bytes]] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def sections(self) -> Iterator[Section]:
        """Iterate over the section keys, with lowercased section names."""
        return iter(self._values)

    def get(self, section: SectionLike, name: NameLike) -> bytes:
        """Retrieve the last value set for a configuration setting."""
        return self._values[_section_key(section)][_to_bytes(name).lower()]

    def set(self, section: SectionLike, name: NameLike, value: bytes | str) -> None:
        """Set a configuration value."""
        self._values.setdefault(_section_key(section), {})[
            _to_bytes(name).lower()
        ] = _to_bytes(value)

    def items(self, section: SectionLike) -> Iterator[tuple[bytes, bytes]]:
        """Iterate over the (name, value) pairs of a section."""
        return iter(self._values.get(_section_key(section), {}).items())


_ESCAPE_TABLE = {
    ord(b"\\"): ord(b"\\"),
    ord(b'"'): ord(b'"'),
    ord(b"n"): ord(b"\n"),
    ord(b"t"): ord(b"\t"),
    ord(b"b"): ord(b"\b"),
}
_COMMENT_CHARS = [ord(b"#"), ord(b";")]
_WHITESPACE_CHARS = [ord(b"\t"), ord(b" ")]


def _parse_string(value: bytes) -> bytes:
    value_array = bytearray(value.strip())
    ret = bytearray()
    whitespace = bytearray()
    in_quotes = False
    i = 0
    while i < len(value_array):
        c = value_array[i]
        if c == ord(b"\\"):
            i += 1
            if i >= len(value_array):
                raise ValueError("escape character at end of value")
            try:
                v = _ESCAPE_TABLE[value_array[i]]
            except KeyError as exc:
                raise ValueError(
                    f"escape character followed by unknown character {value_array[i]!r}"
                ) from exc
            ret.extend(whitespace)
            whitespace = bytearray()
            ret.append(v)
        elif c == ord(b'"'):
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            # the rest of the line is a comment
            break
        elif c in _WHITESPACE_CHARS and not in_quotes:
            whitespace.append(c)
        else:
            ret.extend(whitespace)
            whitespace = bytearray()
            ret.append(c)
        i += 1

    if in_quotes:
        raise ValueError("missing end quote")

    return bytes(ret)


def _check_variable_name(name: bytes) -> bool:
    return all(
        c.isalnum() or c == b"-" for c in (name[i : i + 1] for i in range(len(name)))
    )


def _check_section_name(name: bytes) -> bool:
    return all(
        c.isalnum() or c in (b"-", b".")
        for c in (name[i : i + 1] for i in range(len(name)))
    )


def _strip_comments(line: bytes) -> bytes:
    string_open = False
    for i, character in enumerate(line):
        # Comment characters outside balanced quotes denote comment start
        if character == ord(b'"'):
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    line = _strip_comments(line).rstrip()
    last = None
    in_quotes = False
    for i, c in enumerate(line):
        if c == ord(b'"'):
            in_quotes = not in_quotes
        if c == ord(b"]") and not in_quotes:
            last = i
            break
    if last is None:
        raise ValueError("expected trailing ]")
    pts = line[1:last].split(b" ", 1)
    line = line[last + 1 :]
    section: Section
    if len(pts) == 2:
        if pts[1][:1] != b'"' or pts[1][-1:] != b'"':
            raise ValueError(f"Invalid subsection {pts[1]!r}")
        if not _check_section_name(pts[0]):
            raise ValueError(f"invalid section name {pts[0]!r}")
        section = (pts[0].lower(), pts[1][1:-1])
    else:
        if not _check_section_name(pts[0]):
            raise ValueError(f"invalid section name {pts[0]!r}")
        pts = pts[0].split(b".", 1)
        if len(pts) == 2:
            section = (pts[0].lower(), pts[1])
        else:
            section = (pts[0].lower(),)
    return section, line


class ConfigFile(ConfigDict):
    """A Git configuration file, like .git/config."""

    def __init__(self) -> None:
        """Create a new, empty ConfigFile."""
        super().__init__()
        self.path: str | None = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: if the file is not a valid config file
        """
        ret = cls()
        section: Section | None = None
        setting = None
        continuation = b""
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            if setting is None:
                line = line.lstrip()
                if line[:1] == b"[":
                    section, line = _parse_section_header_line(line)
                    ret._values.setdefault(section, {})
                if _strip_comments(line).strip() == b"":
                    continue
                if section is None:
                    raise ValueError(f"setting {line!r} without section")
                try:
                    setting, value = line.split(b"=", 1)
                except ValueError:
                    setting = line
                    value = b"true"
                setting = setting.strip()
                if not _check_variable_name(setting):
                    raise ValueError(f"invalid variable name {setting!r}")
                value = value.rstrip(b"\r\n")
            else:
                value = line.rstrip(b"\r\n")
            if value.endswith(b"\\") and not value.endswith(b"\\\\"):
                continuation += value[:-1]
                continue
            assert section is not None
            ret._values[section][setting.lower()] = _parse_string(
                continuation + value
            )
            continuation = b""
            setting = None
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with open(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret

    def write_to_file(self, f: IO[bytes]) -> None:
        """Write configuration to a file-like object."""
        for section, values in self._values.items():
            if len(section) == 1:
                f.write(b"[" + section[0] + b"]\n")
            else:
                f.write(b"[" + section[0] + b' "' + section[1] + b'"]\n')
            for key, value in values.items():
                f.write(b"\t" + key + b" = " + value + b"\n")
