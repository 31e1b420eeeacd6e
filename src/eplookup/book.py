from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Mapping, Protocol

from .hooks import OutputAccumulator, TextHookSet
from .honmon import BEGIN_TEXT, END_TEXT, ESCAPE, NEWLINE, MalformedTextError, decode_segment, encode_dump

logger = logging.getLogger(__name__)

BOOK_MANIFEST_FILENAME = "book.json"
BOOK_BACKEND_GROUP = "eplookup.books"
PAGE_SIZE = 2048
MAX_TITLE_LENGTH = 80


class BookError(RuntimeError):
    """Raised when the book cannot be bound, searched, seeked or read."""


@dataclass(frozen=True)
class Locator:
    page: int
    offset: int


@dataclass(frozen=True)
class Hit:
    heading: Locator
    text: Locator


class Book(Protocol):
    """Access to one bound dictionary, with a single shared read cursor."""

    @property
    def subbook_count(self) -> int: ...

    def set_subbook(self, index: int) -> None: ...

    def subbook_title(self) -> bytes: ...

    def subbook_directory(self) -> str: ...

    def search_exactword(self, word: bytes) -> None: ...

    def hit_list(self, capacity: int) -> list[Hit]: ...

    def seek_text(self, locator: Locator) -> None: ...

    def read_heading(self, hooks: TextHookSet, capacity: int) -> bytes: ...

    def read_text(self, hooks: TextHookSet, capacity: int) -> bytes: ...

    def narrow_font_bitmap(self, code: int) -> bytes: ...

    def wide_font_bitmap(self, code: int) -> bytes: ...

    def close(self) -> None: ...


def _offset_to_locator(offset: int) -> Locator:
    return Locator(page=offset // PAGE_SIZE + 1, offset=offset % PAGE_SIZE)


def _locator_to_offset(locator: Locator) -> int:
    return (locator.page - 1) * PAGE_SIZE + locator.offset


def _parse_fonts(payload: object) -> dict[int, bytes]:
    fonts: dict[int, bytes] = {}
    if not isinstance(payload, Mapping):
        return fonts
    for key, value in payload.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        try:
            fonts[int(key, 16)] = bytes.fromhex(value)
        except ValueError:
            continue
    return fonts


@dataclass
class JsonSubbook:
    title: str
    directory: str
    honmon: bytes
    index: dict[str, list[Hit]]
    narrow_fonts: dict[int, bytes] = field(default_factory=dict)
    wide_fonts: dict[int, bytes] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, object], position: int) -> "JsonSubbook":
        title = payload.get("title")
        directory = payload.get("directory")
        if not isinstance(title, str):
            title = ""
        if not isinstance(directory, str) or not directory:
            directory = f"SUBBOOK{position}"
        honmon = bytearray()
        index: dict[str, list[Hit]] = {}
        entries = payload.get("entries")
        if not isinstance(entries, list):
            entries = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            words = entry.get("words")
            heading = entry.get("heading")
            text = entry.get("text")
            if not isinstance(words, list) or not isinstance(heading, str) or not isinstance(text, str):
                continue
            heading_offset = len(honmon)
            honmon.extend(encode_dump(heading))
            honmon.extend(bytes((ESCAPE, NEWLINE)))
            text_offset = len(honmon)
            honmon.extend(bytes((ESCAPE, BEGIN_TEXT)))
            honmon.extend(encode_dump(text))
            honmon.extend(bytes((ESCAPE, END_TEXT)))
            hit = Hit(heading=_offset_to_locator(heading_offset), text=_offset_to_locator(text_offset))
            for word in words:
                if isinstance(word, str) and word:
                    index.setdefault(word, []).append(hit)
        fonts = payload.get("fonts")
        if not isinstance(fonts, Mapping):
            fonts = {}
        return cls(
            title=title,
            directory=directory.upper(),
            honmon=bytes(honmon),
            index=index,
            narrow_fonts=_parse_fonts(fonts.get("narrow")),
            wide_fonts=_parse_fonts(fonts.get("wide")),
        )


class JsonBook:
    """
    Book described by a ``book.json`` manifest.

    Each subbook lists its entries with the search words, heading and body
    in dump notation (see :func:`eplookup.honmon.encode_dump`) plus optional
    glyph bitmaps as hex strings. The entries are compiled into one raw
    honmon stream per subbook and read back through the same decoder a real
    EPWING body would go through.
    """

    def __init__(self, path: Path, subbooks: list[JsonSubbook]) -> None:
        self.path = path
        self._subbooks = subbooks
        self._current: JsonSubbook | None = None
        self._pending_hits: list[Hit] | None = None
        self._cursor: int | None = None
        self._closed = False

    @classmethod
    def bind(cls, path: Path) -> "JsonBook":
        manifest = path / BOOK_MANIFEST_FILENAME if path.is_dir() else path
        try:
            raw = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise BookError(f"Failed to bind the book: {manifest}") from exc
        if not isinstance(raw, Mapping) or not isinstance(raw.get("subbooks"), list):
            raise BookError(f"{manifest.name} must contain a 'subbooks' array.")
        subbooks: list[JsonSubbook] = []
        for position, payload in enumerate(raw["subbooks"]):
            if not isinstance(payload, Mapping):
                continue
            try:
                subbooks.append(JsonSubbook.from_payload(payload, position))
            except MalformedTextError as exc:
                raise BookError(f"Subbook {position} of {manifest} is malformed: {exc}") from exc
        if not subbooks:
            raise BookError(f"No subbooks found in {manifest}")
        return cls(manifest.parent, subbooks)

    def _require_subbook(self) -> JsonSubbook:
        if self._closed:
            raise BookError("The book has been closed")
        if self._current is None:
            raise BookError("No current subbook")
        return self._current

    @property
    def subbook_count(self) -> int:
        return len(self._subbooks)

    def set_subbook(self, index: int) -> None:
        if not 0 <= index < len(self._subbooks):
            raise BookError(f"No such subbook: {index}")
        self._current = self._subbooks[index]
        self._pending_hits = None
        self._cursor = None

    def subbook_title(self) -> bytes:
        subbook = self._require_subbook()
        encoded = subbook.title.encode("euc_jp", errors="replace")[:MAX_TITLE_LENGTH]
        return encoded.ljust(MAX_TITLE_LENGTH, b"\x00")

    def subbook_directory(self) -> str:
        return self._require_subbook().directory

    def search_exactword(self, word: bytes) -> None:
        subbook = self._require_subbook()
        try:
            key = word.decode("euc_jp")
        except UnicodeDecodeError as exc:
            raise BookError("Search word is not valid EUC-JP") from exc
        if not key:
            raise BookError("Empty search word")
        self._pending_hits = list(subbook.index.get(key, []))

    def hit_list(self, capacity: int) -> list[Hit]:
        self._require_subbook()
        if self._pending_hits is None:
            raise BookError("No search has been performed")
        if capacity < 1:
            raise BookError(f"Bad hit list capacity: {capacity}")
        batch = self._pending_hits[:capacity]
        del self._pending_hits[:capacity]
        return batch

    def seek_text(self, locator: Locator) -> None:
        subbook = self._require_subbook()
        offset = _locator_to_offset(locator)
        if locator.page < 1 or not 0 <= offset < len(subbook.honmon):
            raise BookError(f"Cannot seek to page {locator.page}, offset {locator.offset}")
        self._cursor = offset

    def _read(self, hooks: TextHookSet, capacity: int, *, heading: bool) -> bytes:
        subbook = self._require_subbook()
        if self._cursor is None:
            raise BookError("Read before seek")
        out = OutputAccumulator(capacity)
        try:
            result = decode_segment(subbook.honmon, self._cursor, hooks, out, heading=heading)
        except MalformedTextError as exc:
            raise BookError(str(exc)) from exc
        if result.truncated:
            logger.warning("Read truncated at %d bytes", capacity)
        elif not result.stopped_at_end:
            logger.debug("Text at offset %d runs to the end of the subbook", self._cursor)
        self._cursor = result.end
        return out.getvalue()

    def read_heading(self, hooks: TextHookSet, capacity: int) -> bytes:
        return self._read(hooks, capacity, heading=True)

    def read_text(self, hooks: TextHookSet, capacity: int) -> bytes:
        return self._read(hooks, capacity, heading=False)

    def narrow_font_bitmap(self, code: int) -> bytes:
        try:
            return self._require_subbook().narrow_fonts[code]
        except KeyError:
            raise BookError(f"No narrow glyph bitmap for {code:04X}") from None

    def wide_font_bitmap(self, code: int) -> bytes:
        try:
            return self._require_subbook().wide_fonts[code]
        except KeyError:
            raise BookError(f"No wide glyph bitmap for {code:04X}") from None

    def close(self) -> None:
        self._closed = True
        self._current = None


def open_book(path: Path) -> Book:
    """
    Bind the book at ``path``.

    Backends registered under the ``eplookup.books`` entry point group are
    tried first; each is a callable taking the path and returning a book, or
    ``None`` when it does not recognise the directory. A ``book.json``
    manifest is handled by :class:`JsonBook`.
    """
    if not path.exists():
        raise BookError(f"Book path not found: {path}")
    for entry_point in metadata.entry_points(group=BOOK_BACKEND_GROUP):
        try:
            factory = entry_point.load()
        except Exception as exc:
            logger.warning("Cannot load book backend %s: %s", entry_point.name, exc)
            continue
        book = factory(path)
        if book is not None:
            logger.debug("Bound %s with backend %s", path, entry_point.name)
            return book
    if path.is_file() or (path / BOOK_MANIFEST_FILENAME).exists():
        return JsonBook.bind(path)
    raise BookError(f"No book backend can open {path}")


__all__ = [
    "BOOK_BACKEND_GROUP",
    "BOOK_MANIFEST_FILENAME",
    "MAX_TITLE_LENGTH",
    "PAGE_SIZE",
    "Book",
    "BookError",
    "Hit",
    "JsonBook",
    "JsonSubbook",
    "Locator",
    "open_book",
]
