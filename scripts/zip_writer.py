"""Minimal store-only ZIP writer for bundling plain-text transcripts.

The archive is built in two passes: ``add_file`` appends each local file
record to a byte arena and remembers where it started, then ``to_bytes``
checks that every remembered offset still lands on its local header and
appends the central directory and the end-of-central-directory record
using those offsets. Non-ASCII names set general purpose bit 11 (UTF-8).

Example:
  writer = StoreZipWriter()
  writer.add_file("YTP26-001_Descriptive_Transcript.txt", b"Speaker: Hi")
  data = writer.to_bytes()
"""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_HEADER_SIGNATURE = 0x02014B50
END_RECORD_SIGNATURE = 0x06054B50

# 2.0: plain stored entries, no ZIP64.
ZIP_VERSION = 20
METHOD_STORE = 0

LOCAL_HEADER = struct.Struct("<IHHHHHIIIHH")
CENTRAL_HEADER = struct.Struct("<IHHHHHHIIIHHHHHII")
END_RECORD = struct.Struct("<IHHHHIIH")

# General purpose bit 11: file name is UTF-8.
FLAG_UTF8_NAME = 0x800

MAX_ENTRIES = 0xFFFF
MAX_SIZE = 0xFFFFFFFF


def crc32(data: bytes) -> int:
    """CRC-32 with the reflected 0xEDB88320 polynomial, as unsigned int."""
    return zlib.crc32(data) & 0xFFFFFFFF


def dos_time(moment: datetime) -> int:
    """Pack hour/minute/second into the 16-bit DOS time field."""
    return (moment.hour << 11) | (moment.minute << 5) | (moment.second // 2)


def dos_date(moment: datetime) -> int:
    """Pack year/month/day into the 16-bit DOS date field (years from 1980)."""
    year = min(max(moment.year, 1980), 1980 + 0x7F)
    return ((year - 1980) << 9) | (moment.month << 5) | moment.day


@dataclass
class _ArchiveEntry:
    name: bytes
    flags: int
    crc: int
    size: int
    offset: int


class StoreZipWriter:
    """Accumulates stored (uncompressed) files and serializes a ZIP archive."""

    def __init__(self, timestamp: datetime | None = None) -> None:
        moment = timestamp or datetime.now()
        self._time = dos_time(moment)
        self._date = dos_date(moment)
        self._arena = bytearray()
        self._entries: list[_ArchiveEntry] = []
        self._finished = False

    def __len__(self) -> int:
        return len(self._entries)

    def add_file(self, name: str, data: bytes) -> None:
        if self._finished:
            raise ValueError("archive already finalized")
        if len(self._entries) >= MAX_ENTRIES:
            raise ValueError(f"too many entries for a non-ZIP64 archive (max {MAX_ENTRIES})")

        name_bytes = name.encode("utf-8")
        if len(name_bytes) > 0xFFFF:
            raise ValueError(f"file name too long: {name[:40]}...")
        if len(data) > MAX_SIZE:
            raise ValueError(f"{name} is too large for a non-ZIP64 archive")

        entry = _ArchiveEntry(
            name=name_bytes,
            flags=0 if name.isascii() else FLAG_UTF8_NAME,
            crc=crc32(data),
            size=len(data),
            offset=len(self._arena),
        )
        if entry.offset > MAX_SIZE:
            raise ValueError("archive is too large for a non-ZIP64 archive")

        header = LOCAL_HEADER.pack(
            LOCAL_HEADER_SIGNATURE,
            ZIP_VERSION,
            entry.flags,
            METHOD_STORE,
            self._time,
            self._date,
            entry.crc,
            entry.size,     # compressed size
            entry.size,     # uncompressed size
            len(name_bytes),
            0,              # extra field length
        )
        self._arena += header + name_bytes + data
        self._entries.append(entry)

    def to_bytes(self) -> bytes:
        """Append the central directory and end record; return the archive.

        Calling this more than once returns the same bytes.
        """
        if not self._finished:
            self._check_local_offsets()
            central_start = len(self._arena)
            if central_start > MAX_SIZE:
                raise ValueError("archive is too large for a non-ZIP64 archive")
            for entry in self._entries:
                record = CENTRAL_HEADER.pack(
                    CENTRAL_HEADER_SIGNATURE,
                    ZIP_VERSION,    # version made by
                    ZIP_VERSION,    # version needed
                    entry.flags,
                    METHOD_STORE,
                    self._time,
                    self._date,
                    entry.crc,
                    entry.size,
                    entry.size,
                    len(entry.name),
                    0,              # extra field length
                    0,              # comment length
                    0,              # disk number start
                    0,              # internal attributes
                    0,              # external attributes
                    entry.offset,
                )
                self._arena += record + entry.name
            central_size = len(self._arena) - central_start

            end = END_RECORD.pack(
                END_RECORD_SIGNATURE,
                0,                  # this disk
                0,                  # disk holding the central directory
                len(self._entries),
                len(self._entries),
                central_size,
                central_start,
                0,                  # comment length
            )
            self._arena += end
            self._finished = True
        return bytes(self._arena)

    def _check_local_offsets(self) -> None:
        """Raise RuntimeError unless every recorded offset starts its local record."""
        for entry in self._entries:
            end = entry.offset + LOCAL_HEADER.size + len(entry.name)
            if end > len(self._arena):
                raise RuntimeError(f"offset {entry.offset} of {entry.name!r} is past the local records")
            header = LOCAL_HEADER.unpack_from(self._arena, entry.offset)
            stored_name = bytes(self._arena[entry.offset + LOCAL_HEADER.size:end])
            if header[0] != LOCAL_HEADER_SIGNATURE or stored_name != entry.name:
                raise RuntimeError(f"offset {entry.offset} does not point at the local header of {entry.name!r}")


class _NamedContent(Protocol):
    name: str
    content: str | bytes


def build_zip(
    files: Iterable[_NamedContent | tuple[str, str | bytes]],
    timestamp: datetime | None = None,
) -> bytes:
    """Package ``(name, content)`` pairs or objects with ``name``/``content``.

    Text content is encoded as UTF-8; bytes are stored as given.
    """
    writer = StoreZipWriter(timestamp=timestamp)
    for f in files:
        if isinstance(f, tuple):
            name, content = f
        else:
            name, content = f.name, f.content
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        writer.add_file(name, data)
    return writer.to_bytes()
