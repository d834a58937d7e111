#!/usr/bin/env python3
"""Combine spoken and descriptive subtitle tracks into one plain-text transcript.

Examples:
  python scripts/transcript_combiner.py combine YTP26-001.en.srt YTP26-001.ad.srt
  python scripts/transcript_combiner.py combine spoken.srt described.srt --output -
  python scripts/transcript_combiner.py batch --spoken *.cc.srt --descriptive *.ad.srt --output-dir out
  python scripts/transcript_combiner.py id YTP26-014a.srt notes.srt
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from zip_writer import build_zip


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Two entries whose comparison keys match are duplicates when their start
# times are at most this far apart (inclusive).
DEDUP_WINDOW_MS = 750

DEFAULT_ID_PREFIX = "YTP26"
DEFAULT_OUTPUT_NAME = "combined_transcript.txt"
TRANSCRIPT_SUFFIX = "_Descriptive_Transcript.txt"

STATUS_READY = "ready"
STATUS_NO_PAIRS = "no_pairs"
STATUS_FAILED = "failed"

FAILURE_MESSAGE = "Failed to combine."

TIMECODE_RE = re.compile(
    r"(\d{2}):(\d{2}):(\d{2}),(\d{3})\s*-->\s*(\d{2}):(\d{2}):(\d{2}),(\d{3})"
)
INDEX_LINE_RE = re.compile(r"[0-9]+")

# "On-screen text:", "on screen text:", "ON-SCREEN-TEXT :", "On screen-text -:"
ON_SCREEN_MARKER = r"on[-\s]?screen[-\s]*text\s*-?\s*:\s*"
ON_SCREEN_PREFIX_RE = re.compile(r"^\s*" + ON_SCREEN_MARKER, re.IGNORECASE)
ON_SCREEN_ANYWHERE_RE = re.compile(ON_SCREEN_MARKER, re.IGNORECASE)

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_DIRECTIVE_RE = re.compile(r"\{[^}]*\}")
_TRAILING_SPACE_RE = re.compile(r"\s+$", re.MULTILINE)
_HORIZONTAL_SPACE_RE = re.compile(r"[\t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{2,}")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Module-level verbosity flags, set by CLI --verbose / --quiet.
_verbose = False
_quiet = False


def _log(message: str) -> None:
    """Print a diagnostic line to stderr when --verbose is set."""
    if _verbose:
        print(message, file=sys.stderr)


def _info(message: str) -> None:
    """Print a status line to stdout unless --quiet is set."""
    if not _quiet:
        print(message)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class Role(Enum):
    """Semantic role of a transcript entry; the value is its output label."""

    DESCRIPTION = "Description"
    ON_SCREEN_TEXT = "On-screen text"
    SPEAKER = "Speaker"

    @property
    def label(self) -> str:
        return self.value

    @property
    def priority(self) -> int:
        """Order within the same moment: Description, On-screen text, Speaker."""
        return _ROLE_PRIORITY[self]


_ROLE_PRIORITY = {
    Role.DESCRIPTION: 0,
    Role.ON_SCREEN_TEXT: 1,
    Role.SPEAKER: 2,
}


@dataclass
class TimedBlock:
    start_ms: int
    text: str


@dataclass
class Entry:
    start_ms: int
    role: Role
    text: str


@dataclass
class OutputFile:
    name: str
    content: str


@dataclass
class CombineResult:
    """Outcome of one combination action.

    ``payload`` holds the UTF-8 transcript for a single output or the ZIP
    archive for several; it is empty unless ``status`` is ``ready``.
    """

    status: str
    message: str
    name: str | None = None
    payload: bytes = b""
    files: list[OutputFile] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_READY

    @property
    def is_archive(self) -> bool:
        return self.ok and len(self.files) > 1


class CombineError(Exception):
    """Raised when a batch cannot be combined (e.g. an unreadable input)."""


# ---------------------------------------------------------------------------
# Track parsing and text normalization
# ---------------------------------------------------------------------------

def _timecode_to_ms(h: str, m: str, s: str, ms: str) -> int:
    return ((int(h) * 60 + int(m)) * 60 + int(s)) * 1000 + int(ms)


def normalize_text(text: str) -> str:
    """Strip markup, styling directives and whitespace artifacts from cue text.

    Idempotent: ``normalize_text(normalize_text(x)) == normalize_text(x)``.
    """
    out = _HTML_TAG_RE.sub("", text)
    out = _STYLE_DIRECTIVE_RE.sub("", out)
    out = out.replace("\u200b", "")
    out = _TRAILING_SPACE_RE.sub("", out)
    out = _HORIZONTAL_SPACE_RE.sub(" ", out)
    out = _BLANK_LINES_RE.sub("\n", out)
    return out.strip()


def parse_srt_blocks(content: str) -> list[TimedBlock]:
    """Parse SRT content into timed text blocks, in input order.

    Index lines are optional. Lines that are neither an index nor a
    timecode are skipped, as are cues whose text normalizes to nothing.
    """
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    blocks: list[TimedBlock] = []
    skipped = 0
    i = 0
    while i < len(lines):
        if INDEX_LINE_RE.fullmatch(lines[i].strip()):
            i += 1

        match = TIMECODE_RE.search(lines[i]) if i < len(lines) else None
        if not match:
            i += 1
            continue
        start_ms = _timecode_to_ms(*match.groups()[:4])
        i += 1

        text_lines = []
        while i < len(lines) and lines[i].strip():
            text_lines.append(lines[i])
            i += 1
        while i < len(lines) and not lines[i].strip():
            i += 1

        text = normalize_text("\n".join(text_lines))
        if text:
            blocks.append(TimedBlock(start_ms=start_ms, text=text))
        else:
            skipped += 1

    if skipped:
        _log(f"skipped {skipped} empty cue(s)")
    return blocks


# ---------------------------------------------------------------------------
# Tagging
# ---------------------------------------------------------------------------

def _split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def tag_descriptive_blocks(blocks: list[TimedBlock]) -> list[Entry]:
    """Tag each block as on-screen text (explicit marker) or description."""
    entries = []
    for block in blocks:
        lines = _split_lines(block.text)
        if lines and ON_SCREEN_PREFIX_RE.match(lines[0]):
            lines[0] = ON_SCREEN_PREFIX_RE.sub("", lines[0], count=1).strip()
            role = Role.ON_SCREEN_TEXT
        else:
            role = Role.DESCRIPTION
        text = " ".join(line for line in lines if line)
        entries.append(Entry(start_ms=block.start_ms, role=role, text=text))
    return entries


def tag_spoken_blocks(blocks: list[TimedBlock]) -> list[Entry]:
    return [
        Entry(start_ms=b.start_ms, role=Role.SPEAKER, text=" ".join(_split_lines(b.text)))
        for b in blocks
    ]


# ---------------------------------------------------------------------------
# Merge engine
# ---------------------------------------------------------------------------

def comparison_key(text: str) -> str:
    """Case and punctuation agnostic form of ``text`` used for dedup."""
    lowered = ON_SCREEN_ANYWHERE_RE.sub("", text.lower())
    return _NON_ALNUM_RE.sub("", lowered)


def order_entries(entries: list[Entry]) -> list[Entry]:
    """Stable sort by start time, then Description, On-screen text, Speaker."""
    return sorted(entries, key=lambda e: (e.start_ms, e.role.priority))


def dedupe_near_duplicates(entries: list[Entry], window_ms: int = DEDUP_WINDOW_MS) -> list[Entry]:
    """Drop entries whose comparison key repeats within ``window_ms``.

    ``entries`` must already be ordered. Each candidate is compared against
    kept entries from the most recent backwards, stopping once the gap
    exceeds the window; the first match decides. A Speaker candidate takes
    the place of a matching non-Speaker entry.
    """
    kept: list[Entry] = []
    keys: list[str] = []
    for entry in entries:
        key = comparison_key(entry.text)
        duplicate = False
        for j in range(len(kept) - 1, -1, -1):
            if entry.start_ms - kept[j].start_ms > window_ms:
                break
            if keys[j] == key:
                if kept[j].role is not Role.SPEAKER and entry.role is Role.SPEAKER:
                    kept[j] = entry
                duplicate = True
                break
        if not duplicate:
            kept.append(entry)
            keys.append(key)
    return kept


def merge_adjacent_speakers(entries: list[Entry]) -> list[Entry]:
    """Join runs of consecutive Speaker entries into one entry.

    Entries are copied; the caller's list is left untouched.
    """
    merged: list[Entry] = []
    for entry in entries:
        last = merged[-1] if merged else None
        if last is not None and last.role is Role.SPEAKER and entry.role is Role.SPEAKER:
            last.text = _WHITESPACE_RE.sub(" ", f"{last.text} {entry.text}").strip()
        else:
            merged.append(replace(entry))
    return merged


def merge_entries(entries: list[Entry], window_ms: int = DEDUP_WINDOW_MS) -> list[Entry]:
    ordered = order_entries(entries)
    deduped = dedupe_near_duplicates(ordered, window_ms)
    merged = merge_adjacent_speakers(deduped)
    _log(
        f"merge: {len(ordered)} entries -> {len(deduped)} after dedup"
        f" -> {len(merged)} after speaker merge"
    )
    return merged


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_transcript(entries: list[Entry]) -> str:
    return "\n\n".join(f"{e.role.label}: {e.text}" for e in entries)


def combine_transcripts(spoken_srt: str, descriptive_srt: str) -> str:
    """Full pipeline for one pair of tracks; returns the plain-text transcript."""
    spoken = tag_spoken_blocks(parse_srt_blocks(spoken_srt))
    descriptive = tag_descriptive_blocks(parse_srt_blocks(descriptive_srt))
    _log(f"parsed {len(spoken)} spoken and {len(descriptive)} descriptive block(s)")
    return render_transcript(merge_entries(spoken + descriptive))


# ---------------------------------------------------------------------------
# Identifiers and pairing
# ---------------------------------------------------------------------------

def _id_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"{re.escape(prefix)}-([0-9]{{3}})([a-zA-Z])?", re.IGNORECASE)


def extract_id(text: str | None, prefix: str = DEFAULT_ID_PREFIX) -> str | None:
    """Return the canonical identifier (e.g. ``YTP26-042a``) found in ``text``."""
    if not text:
        return None
    match = _id_pattern(prefix).search(text)
    if not match:
        return None
    digits, letter = match.groups()
    return f"{prefix}-{digits}{(letter or '').lower()}"


def resolve_id(name: str, content: str, prefix: str = DEFAULT_ID_PREFIX) -> str | None:
    """Identifier from the filename first, falling back to the content."""
    return extract_id(name, prefix) or extract_id(content, prefix)


def build_output_filename(spoken_name: str, spoken_content: str, prefix: str = DEFAULT_ID_PREFIX) -> str:
    ident = resolve_id(spoken_name, spoken_content, prefix)
    if ident:
        return f"{ident}{TRANSCRIPT_SUFFIX}"
    return DEFAULT_OUTPUT_NAME


def pair_and_combine(
    spoken_inputs: list[tuple[str, str]],
    descriptive_inputs: list[tuple[str, str]],
    prefix: str = DEFAULT_ID_PREFIX,
) -> list[OutputFile]:
    """Combine every spoken input with each descriptive input sharing its ID."""
    by_id: dict[str, list[tuple[str, str]]] = {}
    for name, content in descriptive_inputs:
        ident = resolve_id(name, content, prefix)
        if not ident:
            _log(f"no {prefix} ID in descriptive input {name}; ignored")
            continue
        by_id.setdefault(ident, []).append((name, content))

    outputs = []
    for name, content in spoken_inputs:
        ident = resolve_id(name, content, prefix)
        if not ident:
            _log(f"no {prefix} ID in spoken input {name}; skipped")
            continue
        matches = by_id.get(ident, [])
        if not matches:
            _log(f"no descriptive track for {ident} ({name})")
        for desc_name, desc_content in matches:
            _log(f"combining {name} + {desc_name} as {ident}")
            outputs.append(
                OutputFile(
                    name=f"{ident}{TRANSCRIPT_SUFFIX}",
                    content=combine_transcripts(content, desc_content),
                )
            )
    return outputs


def combine_batch(
    spoken_inputs: list[tuple[str, str]],
    descriptive_inputs: list[tuple[str, str]],
    prefix: str = DEFAULT_ID_PREFIX,
    timestamp: datetime | None = None,
) -> CombineResult:
    """Pair inputs by identifier and package the results.

    One output is returned as UTF-8 text, several as a store-only ZIP named
    ``Combined_<count>_files.zip``. A fault anywhere in the batch yields a
    ``failed`` result and no payload.
    """
    try:
        outputs = pair_and_combine(spoken_inputs, descriptive_inputs, prefix)
        if not outputs:
            return CombineResult(status=STATUS_NO_PAIRS, message=f"No matching pairs by {prefix} ID.")
        if len(outputs) == 1:
            only = outputs[0]
            return CombineResult(
                status=STATUS_READY,
                message="Ready: 1 file",
                name=only.name,
                payload=only.content.encode("utf-8"),
                files=outputs,
            )
        return CombineResult(
            status=STATUS_READY,
            message=f"Ready: {len(outputs)} files",
            name=f"Combined_{len(outputs)}_files.zip",
            payload=build_zip(outputs, timestamp=timestamp),
            files=outputs,
        )
    except Exception as e:
        return CombineResult(status=STATUS_FAILED, message=FAILURE_MESSAGE, error=e)


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------

def read_inputs(paths: list[Path]) -> list[tuple[str, str]]:
    """Read each path as UTF-8 text (BOM tolerated) into ``(name, content)``."""
    inputs = []
    for path in paths:
        try:
            content = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise CombineError(f"cannot read {path}: {e}") from e
        inputs.append((path.name, content))
    return inputs


def write_result(result: CombineResult, output_dir: Path) -> Path:
    if not result.ok or result.name is None:
        raise ValueError(f"nothing to write for a {result.status} result")
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / result.name
    output_path.write_bytes(result.payload)
    return output_path


def _resolve_prefix(value: str | None) -> str:
    return value or os.environ.get("TRANSCRIPT_ID_PREFIX") or DEFAULT_ID_PREFIX


def _resolve_output_dir(value: Path | None) -> Path:
    if value is not None:
        return value
    return Path(os.environ.get("TRANSCRIPT_OUTPUT_DIR") or ".")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def combine_pair(
    spoken_path: Path,
    descriptive_path: Path,
    output_path: Path | None,
    output_dir: Path,
    prefix: str,
) -> int:
    try:
        (spoken_name, spoken), (_, descriptive) = read_inputs([spoken_path, descriptive_path])
    except CombineError as e:
        print(f"error: {FAILURE_MESSAGE} {e}", file=sys.stderr)
        return 1

    transcript = combine_transcripts(spoken, descriptive)

    if output_path is not None and str(output_path) == "-":
        print(transcript)
        return 0

    if output_path is None:
        output_path = output_dir / build_output_filename(spoken_name, spoken, prefix)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(transcript, encoding="utf-8")
    except OSError as e:
        print(f"error: {FAILURE_MESSAGE} cannot write {output_path}: {e}", file=sys.stderr)
        return 1
    _info(f"Combined {spoken_path.name} + {descriptive_path.name} -> {output_path}")
    return 0


def combine_files(
    spoken_paths: list[Path],
    descriptive_paths: list[Path],
    output_dir: Path,
    prefix: str,
) -> int:
    try:
        spoken = read_inputs(spoken_paths)
        descriptive = read_inputs(descriptive_paths)
    except CombineError as e:
        print(f"error: {FAILURE_MESSAGE} {e}", file=sys.stderr)
        return 1

    result = combine_batch(spoken, descriptive, prefix)
    if result.status == STATUS_FAILED:
        print(f"error: {result.message} {result.error}", file=sys.stderr)
        return 1
    if result.status == STATUS_NO_PAIRS:
        print(f"error: {result.message}", file=sys.stderr)
        return 1

    try:
        output_path = write_result(result, output_dir)
    except OSError as e:
        print(f"error: {FAILURE_MESSAGE} cannot write to {output_dir}: {e}", file=sys.stderr)
        return 1
    _info(f"{result.message} -> {output_path}")
    return 0


def show_ids(paths: list[Path], prefix: str) -> int:
    try:
        inputs = read_inputs(paths)
    except CombineError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    for name, content in inputs:
        print(f"{name}\t{resolve_id(name, content, prefix) or '-'}")
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))

    parser = argparse.ArgumentParser(
        description="Combine spoken and descriptive SRT tracks into a plain-text transcript"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="show parsing, pairing and merge diagnostics",
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true",
        help="suppress informational output (errors are still printed)",
    )
    parser.add_argument(
        "--id-prefix", type=str, default=None,
        help=f"identifier prefix used for pairing (default: $TRANSCRIPT_ID_PREFIX or {DEFAULT_ID_PREFIX})",
    )
    parser.add_argument(
        "--output-dir", type=Path, default=None,
        help="directory for output files (default: $TRANSCRIPT_OUTPUT_DIR or .)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_combine = sub.add_parser("combine", help="Combine one spoken track with one descriptive track")
    p_combine.add_argument("spoken", type=Path, help="spoken dialog .srt file")
    p_combine.add_argument("descriptive", type=Path, help="descriptive captions .srt file")
    p_combine.add_argument("--output", type=Path, default=None, help="output .txt path, or - for stdout")

    p_batch = sub.add_parser("batch", help="Pair many tracks by identifier and combine each pair")
    p_batch.add_argument("--spoken", type=Path, nargs="+", required=True, help="spoken dialog .srt files")
    p_batch.add_argument("--descriptive", type=Path, nargs="+", required=True, help="descriptive .srt files")

    p_id = sub.add_parser("id", help="Show the identifier resolved for each file")
    p_id.add_argument("inputs", type=Path, nargs="+")

    args = parser.parse_args(argv)

    # Set module-level verbosity.
    global _verbose, _quiet
    _verbose = args.verbose
    _quiet = args.quiet

    prefix = _resolve_prefix(args.id_prefix)
    output_dir = _resolve_output_dir(args.output_dir)

    if args.command == "combine":
        return combine_pair(args.spoken, args.descriptive, args.output, output_dir, prefix)

    if args.command == "batch":
        return combine_files(args.spoken, args.descriptive, output_dir, prefix)

    if args.command == "id":
        return show_ids(args.inputs, prefix)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
