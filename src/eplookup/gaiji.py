from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping

from importlib import resources

from .charset import clip_utf8
from .glyph_image import NARROW_GLYPH_SIZE, WIDE_GLYPH_SIZE, inline_image_markup

logger = logging.getLogger(__name__)

GAIJI_MAP_SUFFIX = ".map"
DEFAULT_PLACEHOLDER = "?"
GLYPH_REFERENCE_RE = re.compile(r"\{#([nw])([0-9A-F]{4})\}")
_MAP_SPLIT_RE = re.compile(r"[ \t]+")


class GlyphWidth(str, Enum):
    NARROW = "n"
    WIDE = "w"

    @property
    def size(self) -> tuple[int, int]:
        return NARROW_GLYPH_SIZE if self is GlyphWidth.NARROW else WIDE_GLYPH_SIZE


class GlyphPolicy(str, Enum):
    PLACEHOLDER = "placeholder"
    INLINE_IMAGE = "inline-image"


@dataclass(frozen=True)
class GlyphCode:
    """An external glyph: a row/cell code plus the font width it is drawn in."""

    code: int
    width: GlyphWidth

    @property
    def row(self) -> int:
        return self.code >> 8

    @property
    def cell(self) -> int:
        return self.code & 0xFF

    @property
    def reference(self) -> str:
        return f"{{#{self.width.value}{self.code:04X}}}"

    @classmethod
    def from_reference(cls, reference: str) -> "GlyphCode":
        match = GLYPH_REFERENCE_RE.fullmatch(reference)
        if match is None:
            raise ValueError(f"Not a glyph reference: {reference!r}")
        return cls(int(match.group(2), 16), GlyphWidth(match.group(1)))


@dataclass(frozen=True)
class SubstitutionEntry:
    glyph: GlyphCode
    codepoints: tuple[int, ...] | None = None

    @property
    def text(self) -> str | None:
        if self.codepoints is None:
            return None
        return "".join(chr(value) for value in self.codepoints)


class GlyphTable(Mapping[tuple[int, GlyphWidth], SubstitutionEntry]):
    """Read-only glyph substitution table keyed by ``(code, width)``."""

    def __init__(self, entries: Iterable[SubstitutionEntry] = (), *, name: str = "") -> None:
        self.name = name
        data = {(entry.glyph.code, entry.glyph.width): entry for entry in entries}
        self._entries = MappingProxyType(data)

    def __getitem__(self, key: tuple[int, GlyphWidth]) -> SubstitutionEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[tuple[int, GlyphWidth]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, glyph: GlyphCode) -> SubstitutionEntry | None:
        return self._entries.get((glyph.code, glyph.width))

    def __repr__(self) -> str:
        return f"GlyphTable(name={self.name!r}, entries={len(self)})"


EMPTY_TABLE = GlyphTable(name="")

GlyphBitmapSource = Callable[[GlyphCode], bytes | None]


def _parse_codepoints(value: str) -> tuple[int, ...] | None:
    if value == "-":
        return None
    codepoints: list[int] = []
    for part in value.split(","):
        part = part.strip()
        if len(part) < 2 or part[0] not in "uU":
            raise ValueError(f"Bad codepoint: {part!r}")
        codepoints.append(int(part[1:], 16))
    return tuple(codepoints)


def parse_gaiji_map(text: str, *, name: str = "") -> GlyphTable:
    """
    Parse an EBWin-style gaiji map.

    Each line is ``<h|z><code> <value>``: ``h`` for narrow (half-width)
    glyphs, ``z`` for wide ones. ``value`` is one or more comma-separated
    ``uXXXX`` codepoints, or ``-`` when the glyph has no safe Unicode
    equivalent. Blank lines, ``#`` comments and malformed lines are skipped.
    """
    entries: list[SubstitutionEntry] = []
    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        fields = _MAP_SPLIT_RE.split(line)
        if len(fields) < 2:
            continue
        key = fields[0].lower()
        if len(key) != 5 or key[0] not in "hz":
            logger.debug("Skipping gaiji map line %s:%d: %r", name, line_no, raw_line)
            continue
        width = GlyphWidth.NARROW if key[0] == "h" else GlyphWidth.WIDE
        try:
            code = int(key[1:], 16)
            codepoints = _parse_codepoints(fields[1])
        except ValueError:
            logger.debug("Skipping gaiji map line %s:%d: %r", name, line_no, raw_line)
            continue
        entries.append(SubstitutionEntry(GlyphCode(code, width), codepoints))
    return GlyphTable(entries, name=name)


def load_gaiji_map(path: Path) -> GlyphTable:
    return parse_gaiji_map(path.read_text(encoding="utf-8"), name=path.stem)


def _bundled_map_text(name: str) -> str | None:
    try:
        candidate = (
            resources.files("eplookup")
            .joinpath("data")
            .joinpath("gaiji")
            .joinpath(name + GAIJI_MAP_SUFFIX)
        )
        if not candidate.is_file():
            return None
        return candidate.read_text(encoding="utf-8")
    except (FileNotFoundError, ModuleNotFoundError, OSError):
        return None


def bundled_table_names() -> list[str]:
    try:
        folder = resources.files("eplookup").joinpath("data").joinpath("gaiji")
        names = [
            entry.name[: -len(GAIJI_MAP_SUFFIX)]
            for entry in folder.iterdir()
            if entry.name.endswith(GAIJI_MAP_SUFFIX)
        ]
    except (FileNotFoundError, ModuleNotFoundError, OSError):
        return []
    return sorted(names)


@lru_cache(maxsize=None)
def resolve_glyph_table(subbook_directory: str, gaiji_dir: Path | None = None) -> GlyphTable:
    """
    Return the glyph table for a subbook, loading it once per process.

    ``<gaiji_dir>/<NAME>.map`` takes precedence over the bundled table of the
    same name; a subbook without any table gets an empty one, which leaves
    every glyph reference untouched.
    """
    name = subbook_directory.strip().upper()
    if not name:
        return EMPTY_TABLE
    if gaiji_dir is not None:
        for candidate in (gaiji_dir / (name + GAIJI_MAP_SUFFIX), gaiji_dir / (name.lower() + GAIJI_MAP_SUFFIX)):
            if candidate.is_file():
                logger.debug("Loading gaiji map %s", candidate)
                return load_gaiji_map(candidate)
    text = _bundled_map_text(name)
    if text is not None:
        logger.debug("Loading bundled gaiji map %s", name)
        return parse_gaiji_map(text, name=name)
    logger.debug("No gaiji map for subbook %s", name)
    return GlyphTable(name=name)


def replace_gaiji(
    text: str,
    table: Mapping[tuple[int, GlyphWidth], SubstitutionEntry],
    *,
    policy: GlyphPolicy = GlyphPolicy.PLACEHOLDER,
    bitmaps: GlyphBitmapSource | None = None,
    placeholder: str = DEFAULT_PLACEHOLDER,
    capacity: int | None = None,
) -> str:
    """
    Replace glyph references in converted text.

    Known glyphs become their Unicode text; glyphs without an equivalent
    become ``placeholder`` or, under the inline-image policy, an ``<img>``
    fragment built from ``bitmaps``. References missing from ``table`` are
    kept as they are, so running this twice gives the same result.

    With ``capacity`` the UTF-8 size of the result is bounded. A replacement
    that does not fit is dropped whole together with everything after it,
    and plain text is cut on a character boundary outside any tag.
    """

    def _substitute(match: re.Match[str]) -> str:
        glyph = GlyphCode.from_reference(match.group(0))
        entry = table.get((glyph.code, glyph.width))
        if entry is None:
            return match.group(0)
        replacement = entry.text
        if replacement is not None:
            return replacement
        if policy is GlyphPolicy.INLINE_IMAGE and bitmaps is not None:
            bitmap = bitmaps(glyph)
            if bitmap is not None:
                try:
                    return inline_image_markup(bitmap, glyph.width.size)
                except ValueError as exc:
                    logger.warning("Cannot render glyph %s: %s", glyph.reference, exc)
        return placeholder

    if capacity is None:
        return GLYPH_REFERENCE_RE.sub(_substitute, text)

    def _pieces() -> Iterator[tuple[str, bool]]:
        pos = 0
        for match in GLYPH_REFERENCE_RE.finditer(text):
            yield text[pos : match.start()], False
            yield _substitute(match), True
            pos = match.end()
        yield text[pos:], False

    pieces: list[str] = []
    used = 0
    for piece, is_replacement in _pieces():
        size = len(piece.encode("utf-8"))
        if used + size > capacity:
            logger.warning("Substituted text exceeds %d bytes; dropping the rest", capacity)
            if not is_replacement:
                pieces.append(_clip_plain_text(piece, capacity - used))
            break
        pieces.append(piece)
        used += size
    return "".join(pieces)


def _clip_plain_text(text: str, budget: int) -> str:
    clipped = clip_utf8(text.encode("utf-8"), budget).decode("utf-8")
    # Never leave a tag opened by the hooks half written.
    if clipped.rfind("<") > clipped.rfind(">"):
        clipped = clipped[: clipped.rfind("<")]
    return clipped


__all__ = [
    "DEFAULT_PLACEHOLDER",
    "EMPTY_TABLE",
    "GAIJI_MAP_SUFFIX",
    "GLYPH_REFERENCE_RE",
    "GlyphBitmapSource",
    "GlyphCode",
    "GlyphPolicy",
    "GlyphTable",
    "GlyphWidth",
    "SubstitutionEntry",
    "bundled_table_names",
    "load_gaiji_map",
    "parse_gaiji_map",
    "replace_gaiji",
    "resolve_glyph_table",
]
