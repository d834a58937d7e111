"""Tests for the store-only ZIP writer, checked against the stdlib reader."""

from __future__ import annotations

import io
import struct
import sys
import zipfile
import zlib
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "scripts"))

import zip_writer
from zip_writer import StoreZipWriter, build_zip, crc32, dos_date, dos_time


FIXED_TIME = datetime(2026, 3, 14, 15, 9, 26)

FILES = [
    ("YTP26-001_Descriptive_Transcript.txt", "Speaker: Hi there\n\nOn-screen text: WELCOME"),
    ("YTP26-002a_Descriptive_Transcript.txt", "Description: Snow falls. ❄ Café"),
    ("YTP26-003_Descriptive_Transcript.txt", ""),
]


def _end_record(data: bytes) -> tuple:
    return zip_writer.END_RECORD.unpack(data[-zip_writer.END_RECORD.size:])


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

class TestFieldEncoding:
    def test_crc32_known_value(self):
        assert crc32(b"123456789") == 0xCBF43926

    def test_crc32_empty(self):
        assert crc32(b"") == 0

    def test_dos_time(self):
        # 15:09:26 -> 15 << 11 | 9 << 5 | 13
        assert dos_time(FIXED_TIME) == (15 << 11) | (9 << 5) | 13

    def test_dos_date(self):
        assert dos_date(FIXED_TIME) == ((2026 - 1980) << 9) | (3 << 5) | 14

    def test_dos_date_before_epoch_clamps(self):
        assert dos_date(datetime(1975, 6, 1)) >> 9 == 0


# ---------------------------------------------------------------------------
# Round trip through zipfile
# ---------------------------------------------------------------------------

class TestRoundTrip:
    def test_names_and_contents(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.testzip() is None
            assert zf.namelist() == [name for name, _ in FILES]
            for name, content in FILES:
                assert zf.read(name) == content.encode("utf-8")

    def test_stored_crc_matches_content(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for info in zf.infolist():
                assert info.compress_type == zipfile.ZIP_STORED
                assert info.CRC == zlib.crc32(zf.read(info.filename))
                assert info.file_size == info.compress_size

    def test_timestamp_recorded(self):
        data = build_zip(FILES[:1], timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            # DOS time has two-second resolution.
            assert zf.infolist()[0].date_time == (2026, 3, 14, 15, 9, 26)

    def test_accepts_objects_with_name_and_content(self):
        class Item:
            def __init__(self, name, content):
                self.name = name
                self.content = content

        data = build_zip([Item("a.txt", "alpha"), Item("b.bin", b"\x00\x01")], timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.read("a.txt") == b"alpha"
            assert zf.read("b.bin") == b"\x00\x01"

    def test_non_ascii_names(self):
        files = [("Épisode-001.txt", "x"), ("ÉPI-002_Descriptive_Transcript.txt", "y")]
        data = build_zip(files, timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == [name for name, _ in files]
            assert zf.read("Épisode-001.txt") == b"x"
            assert all(info.flag_bits & zip_writer.FLAG_UTF8_NAME for info in zf.infolist())
        # local header carries the same flag as the central record
        assert struct.unpack_from("<H", data, 6)[0] == zip_writer.FLAG_UTF8_NAME

    def test_ascii_names_leave_flags_clear(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert [info.flag_bits for info in zf.infolist()] == [0] * len(FILES)
        assert struct.unpack_from("<H", data, 6)[0] == 0

    def test_empty_archive(self):
        data = build_zip([], timestamp=FIXED_TIME)
        assert len(data) == zip_writer.END_RECORD.size
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == []


# ---------------------------------------------------------------------------
# Layout and offsets
# ---------------------------------------------------------------------------

class TestLayout:
    def test_local_header_offsets(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for info in zf.infolist():
                offset = info.header_offset
                signature = struct.unpack_from("<I", data, offset)[0]
                assert signature == zip_writer.LOCAL_HEADER_SIGNATURE
                name_len = struct.unpack_from("<H", data, offset + 26)[0]
                name = data[offset + 30:offset + 30 + name_len].decode("utf-8")
                assert name == info.filename

    def test_offsets_are_cumulative(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        expected = 0
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for (name, content), info in zip(FILES, zf.infolist()):
                assert info.header_offset == expected
                expected += 30 + len(name.encode("utf-8")) + len(content.encode("utf-8"))

    def test_end_record(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        sig, disk, cd_disk, count_disk, count, cd_size, cd_start, comment_len = _end_record(data)
        assert sig == zip_writer.END_RECORD_SIGNATURE
        assert (disk, cd_disk, comment_len) == (0, 0, 0)
        assert count_disk == count == len(FILES)
        assert cd_start + cd_size + zip_writer.END_RECORD.size == len(data)
        assert struct.unpack_from("<I", data, cd_start)[0] == zip_writer.CENTRAL_HEADER_SIGNATURE

    def test_central_records_point_at_local_headers(self):
        data = build_zip(FILES, timestamp=FIXED_TIME)
        _, _, _, _, count, cd_size, cd_start, _ = _end_record(data)
        pos = cd_start
        for _ in range(count):
            record = zip_writer.CENTRAL_HEADER.unpack_from(data, pos)
            name_len, local_offset = record[10], record[16]
            local = zip_writer.LOCAL_HEADER.unpack_from(data, local_offset)
            assert local[0] == zip_writer.LOCAL_HEADER_SIGNATURE
            # crc and sizes agree between the two records
            assert local[6:9] == record[7:10]
            pos += zip_writer.CENTRAL_HEADER.size + name_len
        assert pos == cd_start + cd_size

    def test_header_sizes(self):
        assert zip_writer.LOCAL_HEADER.size == 30
        assert zip_writer.CENTRAL_HEADER.size == 46
        assert zip_writer.END_RECORD.size == 22


# ---------------------------------------------------------------------------
# StoreZipWriter behaviour
# ---------------------------------------------------------------------------

class TestStoreZipWriter:
    def test_to_bytes_is_repeatable(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"alpha")
        assert writer.to_bytes() == writer.to_bytes()

    def test_add_after_finish_rejected(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"alpha")
        writer.to_bytes()
        with pytest.raises(ValueError, match="finalized"):
            writer.add_file("b.txt", b"beta")

    def test_bad_recorded_offset_rejected(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"alpha")
        writer.add_file("b.txt", b"beta")
        writer._entries[1].offset -= 1
        with pytest.raises(RuntimeError, match="b.txt"):
            writer.to_bytes()

    def test_offset_past_arena_rejected(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"alpha")
        writer._entries[0].offset = 1000
        with pytest.raises(RuntimeError, match="past the local records"):
            writer.to_bytes()

    def test_len_counts_entries(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"")
        writer.add_file("b.txt", b"")
        assert len(writer) == 2

    def test_too_many_entries(self, monkeypatch):
        monkeypatch.setattr(zip_writer, "MAX_ENTRIES", 2)
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        writer.add_file("a.txt", b"")
        writer.add_file("b.txt", b"")
        with pytest.raises(ValueError, match="too many entries"):
            writer.add_file("c.txt", b"")

    def test_name_too_long(self):
        writer = StoreZipWriter(timestamp=FIXED_TIME)
        with pytest.raises(ValueError, match="too long"):
            writer.add_file("x" * 0x10000, b"")

    def test_default_timestamp_is_now(self):
        data = build_zip([("a.txt", "alpha")])
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            year = zf.infolist()[0].date_time[0]
        assert year == datetime.now().year
