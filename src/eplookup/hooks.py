from __future__ import annotations

from enum import Enum
from typing import Iterable, Protocol

from .gaiji import GlyphCode, GlyphWidth

__all__ = [
    "MarkupCategory",
    "MARKUP_TAGS",
    "OutputAccumulator",
    "TextHookSet",
    "MarkupHooks",
]


class MarkupCategory(str, Enum):
    EMPHASIS = "emphasis"
    KEYWORD = "keyword"
    REFERENCE = "reference"
    SUBSCRIPT = "subscript"
    SUPERSCRIPT = "superscript"


MARKUP_TAGS: dict[MarkupCategory, tuple[bytes, bytes]] = {
    MarkupCategory.EMPHASIS: (b"<em>", b"</em>"),
    MarkupCategory.KEYWORD: (b"<KEYWORD>", b"</KEYWORD>"),
    MarkupCategory.REFERENCE: (b"<LINK>", b"</LINK>"),
    MarkupCategory.SUBSCRIPT: (b"<sub>", b"</sub>"),
    MarkupCategory.SUPERSCRIPT: (b"<sup>", b"</sup>"),
}


class OutputAccumulator:
    """
    Bounded byte buffer filled while a raw segment is decoded.

    Chunks are appended whole or not at all. Once a chunk has been refused
    the accumulator is marked ``truncated`` and ignores everything after it,
    so the buffer always ends on a complete character or tag.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self.truncated = False
        self._buffer = bytearray()

    def append(self, chunk: bytes) -> bool:
        if self.truncated:
            return False
        if len(chunk) > self.remaining:
            self.truncated = True
            return False
        self._buffer.extend(chunk)
        return True

    @property
    def remaining(self) -> int:
        return self.capacity - len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class TextHookSet(Protocol):
    """Callbacks a book invokes, in stream order, while decoding an entry."""

    def reset(self) -> None: ...

    def begin_emphasis(self, out: OutputAccumulator) -> None: ...

    def end_emphasis(self, out: OutputAccumulator) -> None: ...

    def begin_keyword(self, out: OutputAccumulator) -> None: ...

    def end_keyword(self, out: OutputAccumulator) -> None: ...

    def begin_reference(self, out: OutputAccumulator) -> None: ...

    def end_reference(self, out: OutputAccumulator) -> None: ...

    def begin_subscript(self, out: OutputAccumulator) -> None: ...

    def end_subscript(self, out: OutputAccumulator) -> None: ...

    def begin_superscript(self, out: OutputAccumulator) -> None: ...

    def end_superscript(self, out: OutputAccumulator) -> None: ...

    def narrow_font(self, out: OutputAccumulator, code: int) -> None: ...

    def wide_font(self, out: OutputAccumulator, code: int) -> None: ...


class MarkupHooks:
    """
    Hook set that writes ASCII tags for the opted-in markup categories.

    Font hooks are always active: they write the glyph's ``{#nXXXX}`` /
    ``{#wXXXX}`` reference for the substitution step. The reference carries
    the width class itself; ``font_width`` only reports the width of the last
    glyph seen since :meth:`reset` and is not consulted during substitution.
    """

    def __init__(self, categories: Iterable[MarkupCategory] = ()) -> None:
        self.categories = frozenset(MarkupCategory(category) for category in categories)
        self.font_width: GlyphWidth | None = None

    def reset(self) -> None:
        self.font_width = None

    def _emit(self, out: OutputAccumulator, category: MarkupCategory, closing: bool) -> None:
        if category not in self.categories:
            return
        out.append(MARKUP_TAGS[category][1 if closing else 0])

    def begin_emphasis(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.EMPHASIS, False)

    def end_emphasis(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.EMPHASIS, True)

    def begin_keyword(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.KEYWORD, False)

    def end_keyword(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.KEYWORD, True)

    def begin_reference(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.REFERENCE, False)

    def end_reference(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.REFERENCE, True)

    def begin_subscript(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.SUBSCRIPT, False)

    def end_subscript(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.SUBSCRIPT, True)

    def begin_superscript(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.SUPERSCRIPT, False)

    def end_superscript(self, out: OutputAccumulator) -> None:
        self._emit(out, MarkupCategory.SUPERSCRIPT, True)

    def narrow_font(self, out: OutputAccumulator, code: int) -> None:
        self.font_width = GlyphWidth.NARROW
        out.append(GlyphCode(code, GlyphWidth.NARROW).reference.encode("ascii"))

    def wide_font(self, out: OutputAccumulator, code: int) -> None:
        self.font_width = GlyphWidth.WIDE
        out.append(GlyphCode(code, GlyphWidth.WIDE).reference.encode("ascii"))
