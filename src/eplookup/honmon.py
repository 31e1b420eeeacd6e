"""
Decoder for EPWING body text ("honmon").

Body text is a stream of two-byte units. Ordinary characters are 7-bit
JIS X 0208 pairs, external glyphs are pairs whose first byte has the high bit
set, and ``0x1F xx`` units are control codes, some of which carry fixed-size
arguments. :func:`decode_segment` walks such a stream, writes EUC-JP text into
an :class:`OutputAccumulator` and calls the hook set at every markup boundary.
Graphic, sound and movie spans are replaced by a bracketed label.

:func:`encode_dump` builds the raw stream from the ``<1F04>``/``<A121>``
notation used by ebdump-style text dumps.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from .hooks import OutputAccumulator, TextHookSet

ESCAPE = 0x1F

BEGIN_TEXT = 0x02
END_TEXT = 0x03
BEGIN_NARROW = 0x04
END_NARROW = 0x05
BEGIN_SUBSCRIPT = 0x06
END_SUBSCRIPT = 0x07
SET_INDENT = 0x09
NEWLINE = 0x0A
BEGIN_SUPERSCRIPT = 0x0E
END_SUPERSCRIPT = 0x0F
BEGIN_KEYWORD = 0x41
BEGIN_REFERENCE = 0x42
END_KEYWORD = 0x61
END_REFERENCE = 0x62
BEGIN_DECORATION = 0xE0
END_DECORATION = 0xE1

# Argument bytes following each control code; unlisted codes take none.
CONTROL_ARGUMENT_BYTES = {
    SET_INDENT: 2,
    0x1A: 2,
    0x1B: 2,
    0x1C: 2,
    BEGIN_KEYWORD: 2,
    END_REFERENCE: 6,
    0x63: 6,
    0x64: 6,
    BEGIN_DECORATION: 2,
}

# Media and graphic spans: begin code -> (end code, label written in place of
# the span). Their binary arguments are not text, so the whole span is skipped.
MEDIA_SPANS: dict[int, tuple[int, str]] = {
    0x14: (0x15, "[色見本]"),
    0x39: (0x59, "[動画]"),
    0x3C: (0x5C, "[図版]"),
    0x44: (0x64, "[図版]"),
    0x45: (0x65, "[図版]"),
    0x4A: (0x6A, "[音声]"),
    0x4B: (0x6B, "[図版]"),
    0x4C: (0x6C, "[図版]"),
    0x4D: (0x6D, "[図版]"),
    0x4F: (0x6F, "[図版]"),
}

# Narrow spans fold full-width ASCII to single bytes, except for the braces
# that delimit glyph references.
_UNFOLDED = frozenset("{}")

_DUMP_TOKEN_RE = re.compile(r"<([0-9A-Fa-f]{4})>")
_DUMP_POSITION_RE = re.compile(r"\[([0-9A-Fa-f]{1,8}):([0-9A-Fa-f]{1,4})\]")
_POSITION_CODES = {END_REFERENCE, 0x63, 0x64}


class MalformedTextError(ValueError):
    """Raised when a raw text segment is not a valid honmon stream."""


@dataclass
class DecodeResult:
    end: int
    stopped_at_end: bool
    truncated: bool


def _narrow_byte(euc_pair: bytes) -> bytes | None:
    try:
        char = euc_pair.decode("euc_jp")
    except UnicodeDecodeError:
        return None
    folded = unicodedata.normalize("NFKC", char)
    if len(folded) == 1 and 0x20 <= ord(folded) < 0x7F and folded not in _UNFOLDED:
        return folded.encode("ascii")
    return None


def _media_span_end(data: bytes, pos: int, end_code: int) -> int:
    """Return the offset just past the end code closing the span opened at ``pos``."""
    scan = pos + 2
    while scan + 1 < len(data):
        if data[scan] == ESCAPE and data[scan + 1] == end_code:
            end = scan + 2 + CONTROL_ARGUMENT_BYTES.get(end_code, 0)
            if end > len(data):
                break
            return end
        scan += 2
    raise MalformedTextError(f"Control code 1F{data[pos + 1]:02X} at {pos} is never closed")


def decode_segment(
    data: bytes,
    start: int,
    hooks: TextHookSet,
    out: OutputAccumulator,
    *,
    heading: bool = False,
) -> DecodeResult:
    """
    Decode one heading or body starting at ``start``.

    A body ends at ``1F03`` or at the ``1F02`` opening the next entry; a
    heading also ends at its first newline. Decoding stops early once ``out``
    has been truncated.
    """
    pos = start
    size = len(data)
    narrow = False
    while pos + 1 < size:
        if out.truncated:
            return DecodeResult(end=pos, stopped_at_end=False, truncated=True)
        first = data[pos]
        second = data[pos + 1]
        if first == ESCAPE:
            code = second
            if code in MEDIA_SPANS:
                end_code, label = MEDIA_SPANS[code]
                pos = _media_span_end(data, pos, end_code)
                out.append(label.encode("euc_jp"))
                continue
            arg_len = CONTROL_ARGUMENT_BYTES.get(code, 0)
            if pos + 2 + arg_len > size:
                raise MalformedTextError(f"Control code 1F{code:02X} at {pos} is cut short")
            if code == BEGIN_TEXT:
                if pos != start:
                    return DecodeResult(end=pos, stopped_at_end=True, truncated=False)
            elif code == END_TEXT:
                return DecodeResult(end=pos + 2, stopped_at_end=True, truncated=False)
            elif code == NEWLINE:
                if heading:
                    return DecodeResult(end=pos + 2, stopped_at_end=True, truncated=False)
                out.append(b"\n")
            elif code == BEGIN_NARROW:
                narrow = True
            elif code == END_NARROW:
                narrow = False
            elif code == BEGIN_SUBSCRIPT:
                hooks.begin_subscript(out)
            elif code == END_SUBSCRIPT:
                hooks.end_subscript(out)
            elif code == BEGIN_SUPERSCRIPT:
                hooks.begin_superscript(out)
            elif code == END_SUPERSCRIPT:
                hooks.end_superscript(out)
            elif code == BEGIN_KEYWORD:
                hooks.begin_keyword(out)
            elif code == END_KEYWORD:
                hooks.end_keyword(out)
            elif code == BEGIN_REFERENCE:
                hooks.begin_reference(out)
            elif code == END_REFERENCE:
                hooks.end_reference(out)
            elif code == BEGIN_DECORATION:
                hooks.begin_emphasis(out)
            elif code == END_DECORATION:
                hooks.end_emphasis(out)
            pos += 2 + arg_len
            continue
        if first >= 0xA1 and 0x21 <= second <= 0x7E:
            glyph = (first << 8) | second
            if narrow:
                hooks.narrow_font(out, glyph)
            else:
                hooks.wide_font(out, glyph)
        elif 0x21 <= first <= 0x7E and 0x21 <= second <= 0x7E:
            euc_pair = bytes((first | 0x80, second | 0x80))
            ascii_byte = _narrow_byte(euc_pair) if narrow else None
            out.append(ascii_byte if ascii_byte is not None else euc_pair)
        else:
            raise MalformedTextError(f"Unexpected bytes {first:02X}{second:02X} at {pos}")
        pos += 2
    return DecodeResult(end=pos, stopped_at_end=False, truncated=out.truncated)


def _encode_char(char: str) -> bytes:
    if char == " ":
        char = "　"
    elif 0x21 <= ord(char) < 0x7F:
        char = chr(ord(char) + 0xFEE0)
    elif "｡" <= char <= "ﾟ":
        # Half-width katakana has no two-byte JIS X 0208 code.
        char = unicodedata.normalize("NFKC", char)
    try:
        encoded = char.encode("euc_jp")
    except UnicodeEncodeError as exc:
        raise MalformedTextError(f"Character {char!r} is not in JIS X 0208") from exc
    if len(encoded) != 2 or encoded[0] < 0xA1 or encoded[1] < 0xA1:
        raise MalformedTextError(f"Character {char!r} is not in JIS X 0208")
    return bytes((encoded[0] & 0x7F, encoded[1] & 0x7F))


def encode_dump(text: str) -> bytes:
    """
    Build a raw honmon stream from dump notation.

    ``<XXXX>`` writes the two bytes ``XXXX`` verbatim (control codes and
    external glyphs), ``[page:offset]`` after ``<1F62>``, ``<1F63>`` or
    ``<1F64>`` writes the six-byte position argument, ``\\n`` becomes
    ``1F0A`` and every other character is stored as JIS X 0208, ASCII being
    widened to its full-width form.
    """
    raw = bytearray()
    pos = 0
    expect_position = False
    while pos < len(text):
        if expect_position:
            expect_position = False
            match = _DUMP_POSITION_RE.match(text, pos)
            if match is None:
                raise MalformedTextError(f"Missing [page:offset] after reference end at {pos}")
            raw.extend(bytes.fromhex(match.group(1).zfill(8) + match.group(2).zfill(4)))
            pos = match.end()
            continue
        match = _DUMP_TOKEN_RE.match(text, pos)
        if match is not None:
            value = bytes.fromhex(match.group(1))
            raw.extend(value)
            # Other control arguments are written as their own <XXXX> tokens.
            if value[0] == ESCAPE and value[1] in _POSITION_CODES:
                expect_position = True
            pos = match.end()
            continue
        char = text[pos]
        if char == "\n":
            raw.extend(bytes((ESCAPE, NEWLINE)))
        else:
            raw.extend(_encode_char(char))
        pos += 1
    if expect_position:
        raise MalformedTextError("Missing [page:offset] at end of text")
    return bytes(raw)


__all__ = [
    "BEGIN_TEXT",
    "ESCAPE",
    "END_TEXT",
    "NEWLINE",
    "CONTROL_ARGUMENT_BYTES",
    "MEDIA_SPANS",
    "DecodeResult",
    "MalformedTextError",
    "decode_segment",
    "encode_dump",
]
