from .book import Book, BookError, Hit, JsonBook, Locator, open_book
from .charset import CapacityError, ConversionError, convert_encoding, to_legacy, to_utf8
from .config import LookupConfig
from .gaiji import GlyphCode, GlyphPolicy, GlyphTable, GlyphWidth, replace_gaiji, resolve_glyph_table
from .hooks import MarkupCategory, MarkupHooks, OutputAccumulator, TextHookSet
from .renderer import EntryRenderer, HitRenderError, OutputSink, run_lookup

__all__ = [
    "Book",
    "BookError",
    "Hit",
    "JsonBook",
    "Locator",
    "open_book",
    "CapacityError",
    "ConversionError",
    "convert_encoding",
    "to_legacy",
    "to_utf8",
    "LookupConfig",
    "GlyphCode",
    "GlyphPolicy",
    "GlyphTable",
    "GlyphWidth",
    "replace_gaiji",
    "resolve_glyph_table",
    "MarkupCategory",
    "MarkupHooks",
    "OutputAccumulator",
    "TextHookSet",
    "EntryRenderer",
    "HitRenderError",
    "OutputSink",
    "run_lookup",
]
