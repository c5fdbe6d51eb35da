# pack.py -- For reading git pack files
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

"""Classes for reading packed objects.

A pack consists of a .pack file holding zlib-compressed objects, some of
which are stored as deltas against other objects, and a .idx file mapping
object ids to offsets in the pack. Only reading is supported; objects are
always written loose.

The index is a v2 index: a 4-byte magic, a 4-byte version, a 256-entry
fan-out table, the sorted binary ids, a CRC32 table, a table of 31-bit
offsets and a table of 64-bit offsets for the entries whose 31-bit offset
has the high bit set.
"""

__all__ = [
    "DELTA_TYPES",
    "OFS_DELTA",
    "REF_DELTA",
    "Pack",
    "PackData",
    "PackIndex2",
    "apply_delta",
    "read_pack_header",
    "take_msb_bytes",
]

import mmap
import os
import zlib
from collections import OrderedDict
from collections.abc import Callable, Iterator
from struct import unpack_from

from .errors import ApplyDeltaError, FileFormatException
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .objects import ObjectID, RawObjectID, hex_to_sha, sha_to_hex

OFS_DELTA = 6
REF_DELTA = 7

DELTA_TYPES = (OFS_DELTA, REF_DELTA)

_ZLIB_BUFSIZE = 65536

# Number of resolved delta bases kept around per pack.
_BASE_CACHE_SIZE = 64

ResolveExtRef = Callable[[RawObjectID], tuple[int, bytes]]


def take_msb_bytes(read: Callable[[int], bytes]) -> list[int]:
    """Read bytes marked with most significant bit.

    Args:
      read: Read function
    Returns: list of the bytes read, the last one without the MSB set
    """
    ret: list[int] = []
    while len(ret) == 0 or ret[-1] & 0x80:
        b = read(1)
        if not b:
            raise FileFormatException("unexpected end of pack data")
        ret.append(b[0])
    return ret


def read_pack_header(read: Callable[[int], bytes]) -> tuple[int, int]:
    """Read the header of a pack file.

    Args:
      read: Read function
    Returns: Tuple of (pack version, number of objects)
    """
    header = read(12)
    if len(header) < 12:
        raise FileFormatException("file too short to contain pack")
    if header[:4] != b"PACK":
        raise FileFormatException(f"Invalid pack header {header!r}")
    (version,) = unpack_from(">L", header, 4)
    if version not in (2, 3):
        raise FileFormatException(f"Version was {version}")
    (num_objects,) = unpack_from(">L", header, 8)
    return (version, num_objects)


def _load_file_contents(f: "os.PathLike[str] | str") -> "mmap.mmap | bytes":
    with open(f, "rb") as fd:
        size = os.fstat(fd.fileno()).st_size
        if size == 0:
            return b""
        return mmap.mmap(fd.fileno(), size, access=mmap.ACCESS_READ)


def apply_delta(src_buf: bytes, delta: bytes) -> bytes:
    """Based on the similar function in git's patch-delta.c.

    Args:
      src_buf: Source buffer
      delta: Delta instructions
    Returns: The reconstructed target buffer
    """
    out = []
    index = 0
    delta_length = len(delta)

    def get_delta_header_size(index: int) -> tuple[int, int]:
        size = 0
        i = 0
        while index < delta_length:
            cmd = delta[index]
            index += 1
            size |= (cmd & ~0x80) << i
            i += 7
            if not cmd & 0x80:
                break
        return size, index

    src_size, index = get_delta_header_size(index)
    dest_size, index = get_delta_header_size(index)
    if src_size != len(src_buf):
        raise ApplyDeltaError(
            f"Unexpected source buffer size: {src_size} vs {len(src_buf)}"
        )
    while index < delta_length:
        cmd = delta[index]
        index += 1
        if cmd & 0x80:
            cp_off = 0
            for i in range(4):
                if cmd & (1 << i):
                    cp_off |= delta[index] << (i * 8)
                    index += 1
            cp_size = 0
            for i in range(3):
                if cmd & (1 << (4 + i)):
                    cp_size |= delta[index] << (i * 8)
                    index += 1
            if cp_size == 0:
                cp_size = 0x10000
            if cp_off + cp_size > src_size or cp_size > dest_size:
                raise ApplyDeltaError("copy instruction out of bounds")
            out.append(src_buf[cp_off : cp_off + cp_size])
        elif cmd != 0:
            out.append(delta[index : index + cmd])
            index += cmd
        else:
            raise ApplyDeltaError("Invalid opcode 0")

    result = b"".join(out)
    if dest_size != len(result):
        raise ApplyDeltaError("dest size incorrect")
    return result


class PackIndex2:
    """Version 2 Pack Index file."""

    def __init__(
        self,
        filename: "str | os.PathLike[str]",
        object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
    ) -> None:
        """Open a version 2 pack index.

        Args:
            filename: Path to the index file
            object_format: Object format used by the repository
        """
        self._filename = filename
        self.object_format = object_format
        self._contents = _load_file_contents(filename)
        if self._contents[:4] != b"\377tOc":
            raise FileFormatException(
                f"{filename}: not a v2 pack index file (v1 indexes are not supported)"
            )
        (self.version,) = unpack_from(">L", self._contents, 4)
        if self.version != 2:
            raise FileFormatException(f"{filename}: version was {self.version}")
        self._fan_out_table = [
            unpack_from(">L", self._contents, 8 + i * 4)[0] for i in range(0x100)
        ]
        self.hash_size = object_format.oid_length
        count = len(self)
        self._name_table_offset = 8 + 0x100 * 4
        self._crc32_table_offset = self._name_table_offset + self.hash_size * count
        self._pack_offset_table_offset = self._crc32_table_offset + 4 * count
        self._pack_offset_largetable_offset = self._pack_offset_table_offset + 4 * count

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._filename!r})"

    def __len__(self) -> int:
        """Return the number of entries in this pack index."""
        return self._fan_out_table[-1]

    def _unpack_name(self, i: int) -> bytes:
        offset = self._name_table_offset + i * self.hash_size
        return bytes(self._contents[offset : offset + self.hash_size])

    def _unpack_offset(self, i: int) -> int:
        offset = self._pack_offset_table_offset + i * 4
        offset_val = unpack_from(">L", self._contents, offset)[0]
        if offset_val & (2**31):
            offset = (
                self._pack_offset_largetable_offset + (offset_val & (2**31 - 1)) * 8
            )
            offset_val = unpack_from(">Q", self._contents, offset)[0]
        return offset_val

    def __iter__(self) -> Iterator[RawObjectID]:
        """Iterate over the binary ids in this index."""
        for i in range(len(self)):
            yield RawObjectID(self._unpack_name(i))

    def object_offset(self, sha: RawObjectID) -> int | None:
        """Return the offset in to the corresponding packfile for the object.

        Returns: offset of the object, or None if it is not in the index
        """
        idx = sha[0]
        start = self._fan_out_table[idx - 1] if idx > 0 else 0
        end = self._fan_out_table[idx] - 1
        while start <= end:
            i = (start + end) // 2
            file_sha = self._unpack_name(i)
            if file_sha < sha:
                start = i + 1
            elif file_sha > sha:
                end = i - 1
            else:
                return self._unpack_offset(i)
        return None

    def __contains__(self, sha: RawObjectID) -> bool:
        return self.object_offset(sha) is not None

    def close(self) -> None:
        if isinstance(self._contents, mmap.mmap):
            self._contents.close()


class PackData:
    """The data contained in a packfile."""

    def __init__(
        self,
        filename: "str | os.PathLike[str]",
        object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
    ) -> None:
        """Open a pack data file.

        Args:
          filename: Path to the .pack file
          object_format: Object format used by the repository
        """
        self._filename = filename
        self.object_format = object_format
        self._contents = _load_file_contents(filename)
        pos = 0

        def read(n: int) -> bytes:
            nonlocal pos
            ret = bytes(self._contents[pos : pos + n])
            pos += len(ret)
            return ret

        self.version, self.num_objects = read_pack_header(read)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._filename!r})"

    def __len__(self) -> int:
        """Returns the number of objects in this pack."""
        return self.num_objects

    def get_object_at(self, offset: int) -> tuple[int, int | RawObjectID | None, bytes]:
        """Read the object stored at an offset, without resolving deltas.

        Returns: Tuple of (type_num, delta_base, data). delta_base is the
            absolute offset of the base for OFS_DELTA, its binary id for
            REF_DELTA and None otherwise. For deltas data holds the
            delta instructions.
        """
        pos = offset

        def read(n: int) -> bytes:
            nonlocal pos
            ret = bytes(self._contents[pos : pos + n])
            pos += len(ret)
            return ret

        raw = take_msb_bytes(read)
        type_num = (raw[0] >> 4) & 0x07
        size = raw[0] & 0x0F
        for i, byte in enumerate(raw[1:]):
            size += (byte & 0x7F) << ((i * 7) + 4)

        delta_base: int | RawObjectID | None
        if type_num == OFS_DELTA:
            raw = take_msb_bytes(read)
            delta_base_offset = raw[0] & 0x7F
            for byte in raw[1:]:
                delta_base_offset += 1
                delta_base_offset <<= 7
                delta_base_offset += byte & 0x7F
            delta_base = offset - delta_base_offset
        elif type_num == REF_DELTA:
            delta_base = RawObjectID(read(self.object_format.oid_length))
        else:
            delta_base = None
        return type_num, delta_base, self._decompress(pos, size)

    def _decompress(self, pos: int, size: int) -> bytes:
        decomp_obj = zlib.decompressobj()
        chunks = []
        while not decomp_obj.eof:
            add = self._contents[pos : pos + _ZLIB_BUFSIZE]
            if not add:
                raise zlib.error("EOF before end of zlib stream")
            pos += len(add)
            chunks.append(decomp_obj.decompress(add))
        data = b"".join(chunks)
        if len(data) != size:
            raise zlib.error("decompressed data does not match expected size")
        return data

    def close(self) -> None:
        if isinstance(self._contents, mmap.mmap):
            self._contents.close()


class Pack:
    """A pack file and its index, with delta resolution."""

    def __init__(
        self,
        basename: str,
        object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
        resolve_ext_ref: ResolveExtRef | None = None,
    ) -> None:
        """Open a pack.

        Args:
          basename: Path of the pack without the .pack/.idx extension
          object_format: Object format used by the repository
          resolve_ext_ref: Optional function to look up REF_DELTA bases
            that are not in this pack
        """
        self._basename = basename
        self.object_format = object_format
        self.resolve_ext_ref = resolve_ext_ref
        self.index = PackIndex2(basename + ".idx", object_format)
        self.data = PackData(basename + ".pack", object_format)
        if len(self.data) != len(self.index):
            raise FileFormatException(
                f"{basename}: index has {len(self.index)} entries, "
                f"pack has {len(self.data)} objects"
            )
        self._base_cache: OrderedDict[int, tuple[int, bytes]] = OrderedDict()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._basename!r})"

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, sha: RawObjectID) -> bool:
        return sha in self.index

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over the hex ids of the objects in this pack."""
        for sha in self.index:
            yield sha_to_hex(sha)

    def _cache_base(self, offset: int, value: tuple[int, bytes]) -> None:
        self._base_cache[offset] = value
        if len(self._base_cache) > _BASE_CACHE_SIZE:
            self._base_cache.popitem(last=False)

    def _resolve_at(self, offset: int) -> tuple[int, bytes]:
        chain = []
        base_offset: int | None = offset
        while True:
            cached = self._base_cache.get(offset)
            if cached is not None:
                type_num, data = cached
                break
            type_num, delta_base, data = self.data.get_object_at(offset)
            if type_num == OFS_DELTA:
                assert isinstance(delta_base, int)
                chain.append((offset, data))
                offset = base_offset = delta_base
            elif type_num == REF_DELTA:
                assert isinstance(delta_base, bytes)
                chain.append((offset, data))
                base_offset = self.index.object_offset(RawObjectID(delta_base))
                if base_offset is not None:
                    offset = base_offset
                    continue
                if self.resolve_ext_ref is None:
                    raise KeyError(sha_to_hex(RawObjectID(delta_base)))
                # External bases are not cached; they live in another store.
                type_num, data = self.resolve_ext_ref(RawObjectID(delta_base))
                break
            else:
                break
        for delta_offset, delta in reversed(chain):
            if base_offset is not None:
                self._cache_base(base_offset, (type_num, data))
            data = apply_delta(data, delta)
            base_offset = delta_offset
        return type_num, data

    def get_raw(self, sha: RawObjectID | ObjectID) -> tuple[int, bytes]:
        """Obtain the kind and payload of an object in this pack.

        Args:
          sha: Binary or hex id of the object
        Returns: Tuple of (type_num, payload)
        Raises:
          KeyError: if the object is not in this pack
        """
        if len(sha) == self.object_format.hex_length:
            sha = hex_to_sha(ObjectID(sha))
        offset = self.index.object_offset(RawObjectID(sha))
        if offset is None:
            raise KeyError(sha)
        return self._resolve_at(offset)

    def close(self) -> None:
        self._base_cache.clear()
        self.data.close()
        self.index.close()
