from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Mapping

from .book import Book, BookError, Hit, Locator
from .charset import ConversionError, to_legacy, to_utf8
from .config import (
    MAX_CONVERTED_BYTES,
    MAX_HEADING_BYTES,
    MAX_HITS,
    MAX_LOOKUP_WORD_BYTES,
    MAX_TEXT_BYTES,
    LookupConfig,
)
from .gaiji import GlyphCode, GlyphWidth, SubstitutionEntry, replace_gaiji, resolve_glyph_table
from .hooks import MarkupHooks

logger = logging.getLogger(__name__)


class RenderState(str, Enum):
    IDLE = "idle"
    SEEK_HEADING = "seek-heading"
    READ_HEADING = "read-heading"
    CONVERT_HEADING = "convert-heading"
    SUBSTITUTE_HEADING = "substitute-heading"
    SEEK_BODY = "seek-body"
    READ_BODY = "read-body"
    CONVERT_BODY = "convert-body"
    SUBSTITUTE_BODY = "substitute-body"
    EMIT = "emit"
    FAILED = "failed"


class HitRenderError(RuntimeError):
    """Raised when one hit cannot be read or converted."""

    def __init__(self, index: int, state: RenderState, cause: Exception) -> None:
        super().__init__(f"Hit {index} failed during {state.value}: {cause}")
        self.index = index
        self.state = state
        self.cause = cause


@dataclass
class LookupResult:
    hit_count: int
    rendered: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


class OutputSink:
    """
    The single output file of a run.

    Opening truncates the file; every emitted hit is appended to the same
    handle, and :meth:`discard` empties it again when a run is aborted.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fh: BinaryIO | None = None

    def open(self) -> "OutputSink":
        self._fh = self.path.open("wb")
        return self

    def _handle(self) -> BinaryIO:
        if self._fh is None:
            raise RuntimeError("Output sink is not open")
        return self._fh

    def write(self, data: bytes) -> None:
        fh = self._handle()
        fh.write(data)
        fh.flush()

    def discard(self) -> None:
        fh = self._handle()
        fh.seek(0)
        fh.truncate()
        fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "OutputSink":
        if self._fh is None:
            self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EntryRenderer:
    """
    Drives hits through seek, read, convert and substitute.

    One renderer serves a whole run: the book has a single read cursor, so
    the heading and the body of a hit are processed strictly in sequence.
    """

    def __init__(
        self,
        book: Book,
        config: LookupConfig,
        *,
        glyph_table: Mapping[tuple[int, GlyphWidth], SubstitutionEntry] | None = None,
    ) -> None:
        self.book = book
        self.config = config
        self.hooks = MarkupHooks(config.markup_categories)
        if glyph_table is None:
            glyph_table = resolve_glyph_table(book.subbook_directory(), config.gaiji_dir)
        self.glyph_table = glyph_table
        self.state = RenderState.IDLE

    def _enter(self, state: RenderState) -> None:
        self.state = state

    def _glyph_bitmap(self, glyph: GlyphCode) -> bytes | None:
        try:
            if glyph.width is GlyphWidth.NARROW:
                return self.book.narrow_font_bitmap(glyph.code)
            return self.book.wide_font_bitmap(glyph.code)
        except BookError as exc:
            logger.debug("No bitmap for %s: %s", glyph.reference, exc)
            return None

    def _render_piece(self, locator: Locator, *, heading: bool) -> bytes:
        if heading:
            seek, read, convert, substitute = (
                RenderState.SEEK_HEADING,
                RenderState.READ_HEADING,
                RenderState.CONVERT_HEADING,
                RenderState.SUBSTITUTE_HEADING,
            )
        else:
            seek, read, convert, substitute = (
                RenderState.SEEK_BODY,
                RenderState.READ_BODY,
                RenderState.CONVERT_BODY,
                RenderState.SUBSTITUTE_BODY,
            )
        self._enter(seek)
        self.book.seek_text(locator)

        self._enter(read)
        self.hooks.reset()
        if heading:
            raw = self.book.read_heading(self.hooks, MAX_HEADING_BYTES)
        else:
            raw = self.book.read_text(self.hooks, MAX_TEXT_BYTES)

        self._enter(convert)
        converted = to_utf8(raw, capacity=MAX_CONVERTED_BYTES)

        self._enter(substitute)
        text = replace_gaiji(
            converted.decode("utf-8"),
            self.glyph_table,
            policy=self.config.glyph_policy,
            bitmaps=self._glyph_bitmap,
            capacity=MAX_CONVERTED_BYTES,
        )
        return text.encode("utf-8")

    def render(self, hit: Hit, index: int) -> bytes:
        """Return the heading line and body of ``hit`` as UTF-8."""
        parts: list[bytes] = []
        try:
            if self.config.include_heading:
                parts.append(self._render_piece(hit.heading, heading=True) + b"\n")
            if self.config.include_body:
                parts.append(self._render_piece(hit.text, heading=False))
        except (BookError, ConversionError) as exc:
            failed_in = self.state
            self._enter(RenderState.FAILED)
            raise HitRenderError(index, failed_in, exc) from exc
        return b"".join(parts)

    def emit(self, sink: OutputSink, data: bytes) -> None:
        self._enter(RenderState.EMIT)
        sink.write(data)
        self._enter(RenderState.IDLE)


def collect_hits(book: Book, capacity: int = MAX_HITS) -> list[Hit]:
    """Drain the book's hit list, batch by batch, until it reports no more hits."""
    hits: list[Hit] = []
    while True:
        batch = book.hit_list(capacity)
        if not batch:
            return hits
        hits.extend(batch)


def encode_lookup_word(word: str) -> bytes:
    return to_legacy(word.encode("utf-8"), capacity=MAX_LOOKUP_WORD_BYTES)


def select_hits(hit_count: int, config: LookupConfig) -> list[int]:
    if config.selected_hit is not None:
        if config.selected_hit >= hit_count:
            return []
        return [config.selected_hit]
    return list(range(min(hit_count, config.max_hits)))


def run_lookup(book: Book, config: LookupConfig, word: str, sink: OutputSink) -> LookupResult:
    """
    Search ``word`` and write every selected hit to ``sink``.

    The book must already be bound with its subbook selected. A hit that
    fails raises :class:`HitRenderError` unless ``skip_failed_hits`` is set,
    in which case it is logged and left out.
    """
    book.search_exactword(encode_lookup_word(word))
    hits = collect_hits(book)
    result = LookupResult(hit_count=len(hits))
    logger.debug("Found %d hits for %r", len(hits), word)

    if config.include_hit_count_banner:
        sink.write(f"{{HITS: {len(hits)}}}\n".encode("utf-8"))

    selected = select_hits(len(hits), config)
    if config.selected_hit is not None and not selected:
        logger.warning("Hit %d requested but only %d found", config.selected_hit, len(hits))
    show_index = (
        config.include_hit_index_banner
        and config.selected_hit is None
        and len(selected) > 1
    )

    renderer = EntryRenderer(book, config)
    for index in selected:
        try:
            data = renderer.render(hits[index], index)
        except HitRenderError as exc:
            if not config.skip_failed_hits:
                raise
            logger.warning("Skipping hit %d: %s", index, exc.cause)
            result.skipped.append(index)
            continue
        if show_index:
            data = f"{{ENTRY: {index}}}\n".encode("utf-8") + data
        renderer.emit(sink, data)
        result.rendered.append(index)
    return result


def write_subbook_title(book: Book, sink: OutputSink) -> str:
    title = book.subbook_title().split(b"\x00", 1)[0]
    converted = to_utf8(title, capacity=MAX_CONVERTED_BYTES)
    sink.write(converted)
    return converted.decode("utf-8")


__all__ = [
    "EntryRenderer",
    "HitRenderError",
    "LookupResult",
    "OutputSink",
    "RenderState",
    "collect_hits",
    "encode_lookup_word",
    "run_lookup",
    "select_hits",
    "write_subbook_title",
]
