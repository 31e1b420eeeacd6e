from __future__ import annotations

from pathlib import Path

import pytest

from eplookup.book import BookError, JsonBook, Locator
from eplookup.charset import ConversionError
from eplookup.config import MAX_CONVERTED_BYTES, LookupConfig
from eplookup.gaiji import GlyphPolicy
from eplookup.hooks import TextHookSet
from eplookup.renderer import (
    EntryRenderer,
    HitRenderError,
    OutputSink,
    RenderState,
    collect_hits,
    run_lookup,
    select_hits,
    write_subbook_title,
)

from conftest import write_book

RAIN = "あめ【雨】\nあめ【雨】\n空から降る水滴。"
CANDY = "あめ【飴】\nあめ【飴】\n菓子の一種。→糖"
HEAVEN = "あめ【天】\nあめ【天】\n空。(cf.é)?"


class _FlakyBook(JsonBook):
    failing: set[Locator] = set()
    garbled: set[Locator] = set()

    def seek_text(self, locator: Locator) -> None:
        if locator in self.failing:
            raise BookError("Failed to seek the subbook")
        self._last_seek = locator
        super().seek_text(locator)

    def read_text(self, hooks: TextHookSet, capacity: int) -> bytes:
        data = super().read_text(hooks, capacity)
        if self._last_seek in self.garbled:
            return b"\xa4"
        return data


def _lookup(book, config: LookupConfig, tmp_path: Path, word: str = "あめ"):
    out_path = tmp_path / "out.txt"
    with OutputSink(out_path) as sink:
        result = run_lookup(book, config, word, sink)
    return result, out_path.read_text(encoding="utf-8")


def _hits(book: JsonBook, word: str = "あめ"):
    book.search_exactword(word.encode("euc_jp"))
    return collect_hits(book)


def test_all_hits_are_written_in_order(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    result, text = _lookup(bound_book, LookupConfig(gaiji_dir=gaiji_dir), tmp_path)
    assert result.hit_count == 3
    assert result.rendered == [0, 1, 2]
    assert text == RAIN + CANDY + HEAVEN


def test_hit_count_banner_is_first_line(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, include_hit_count_banner=True)
    _, text = _lookup(bound_book, config, tmp_path)
    assert text.splitlines()[0] == "{HITS: 3}"


def test_hit_index_banners(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, include_hit_index_banner=True)
    _, text = _lookup(bound_book, config, tmp_path)
    assert text == "{ENTRY: 0}\n" + RAIN + "{ENTRY: 1}\n" + CANDY + "{ENTRY: 2}\n" + HEAVEN


def test_single_hit_has_no_index_banner(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, include_hit_index_banner=True)
    _, text = _lookup(bound_book, config, tmp_path, word="飴")
    assert text == CANDY


@pytest.mark.parametrize("hit_num", [True, False])
def test_selected_hit_is_isolated(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path, hit_num: bool) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, selected_hit=1, include_hit_index_banner=hit_num)
    result, text = _lookup(bound_book, config, tmp_path)
    assert result.rendered == [1]
    assert text == CANDY
    assert "{ENTRY:" not in text


def test_selected_hit_ignores_max_hits(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, selected_hit=2, max_hits=1)
    _, text = _lookup(bound_book, config, tmp_path)
    assert text == HEAVEN


def test_selected_hit_out_of_range_writes_nothing(bound_book: JsonBook, tmp_path: Path) -> None:
    config = LookupConfig(selected_hit=5, include_hit_count_banner=True)
    result, text = _lookup(bound_book, config, tmp_path)
    assert result.rendered == []
    assert text == "{HITS: 3}\n"


def test_max_hits_limits_output(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, max_hits=2, include_hit_count_banner=True)
    result, text = _lookup(bound_book, config, tmp_path)
    assert result.rendered == [0, 1]
    assert text == "{HITS: 3}\n" + RAIN + CANDY


def test_heading_and_body_toggles(bound_book: JsonBook, tmp_path: Path) -> None:
    _, headings = _lookup(bound_book, LookupConfig(include_body=False), tmp_path)
    assert headings == "あめ【雨】\nあめ【飴】\nあめ【天】\n"
    _, bodies = _lookup(bound_book, LookupConfig(include_heading=False), tmp_path, word="雨")
    assert bodies == "あめ【雨】\n空から降る水滴。"


def test_no_hits(bound_book: JsonBook, tmp_path: Path) -> None:
    result, text = _lookup(bound_book, LookupConfig(include_hit_count_banner=True), tmp_path, word="ゆき")
    assert result.hit_count == 0
    assert text == "{HITS: 0}\n"


def test_enabled_markup_reaches_output(bound_book: JsonBook, tmp_path: Path) -> None:
    config = LookupConfig(emphasis=True, keyword=True, reference=True, include_heading=False)
    _, text = _lookup(bound_book, config, tmp_path, word="飴")
    assert text == "あめ【飴】\n<KEYWORD>菓子</KEYWORD>の一種。<LINK>→糖</LINK>"
    _, text = _lookup(bound_book, config, tmp_path, word="雨")
    assert text == "あめ【雨】\n<em>空</em>から降る水滴。"


def test_subscript_and_superscript_markup(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, subscript=True, superscript=True)
    _, text = _lookup(bound_book, config, tmp_path, word="かぜ")
    assert text == "かぜ【風】\n風。<sub>２</sub>と<sup>３</sup>"


def test_heading_glyphs_are_substituted(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, include_body=False)
    _, text = _lookup(bound_book, config, tmp_path, word="かぜ")
    assert text == "かぜ【風】\n"


def test_glyphs_without_table_pass_through(bound_book: JsonBook, tmp_path: Path) -> None:
    config = LookupConfig(include_heading=False)
    _, text = _lookup(bound_book, config, tmp_path, word="天")
    assert text == "あめ【天】\n空。(cf.{#nA121}){#wA122}"


def test_inline_image_policy(bound_book: JsonBook, gaiji_dir: Path, tmp_path: Path) -> None:
    config = LookupConfig(gaiji_dir=gaiji_dir, glyph_policy=GlyphPolicy.INLINE_IMAGE, include_heading=False)
    _, text = _lookup(bound_book, config, tmp_path, word="天")
    assert text.startswith("あめ【天】\n空。(cf.é)")
    assert text.endswith('width="16" height="16" alt="">')
    assert '<img class="gaiji" src="data:image/png;base64,' in text


def test_collect_hits_drains_small_batches(bound_book: JsonBook) -> None:
    bound_book.search_exactword("あめ".encode("euc_jp"))
    assert len(collect_hits(bound_book, capacity=1)) == 3


def test_select_hits() -> None:
    assert select_hits(3, LookupConfig()) == [0, 1, 2]
    assert select_hits(3, LookupConfig(max_hits=1)) == [0]
    assert select_hits(3, LookupConfig(selected_hit=2)) == [2]
    assert select_hits(3, LookupConfig(selected_hit=3)) == []


def test_renderer_state_machine_returns_to_idle(bound_book: JsonBook, tmp_path: Path) -> None:
    hits = _hits(bound_book)
    renderer = EntryRenderer(bound_book, LookupConfig())
    assert renderer.state is RenderState.IDLE
    data = renderer.render(hits[0], 0)
    assert renderer.state is RenderState.SUBSTITUTE_BODY
    with OutputSink(tmp_path / "out.txt") as sink:
        renderer.emit(sink, data)
    assert renderer.state is RenderState.IDLE


def test_font_width_is_reset_between_reads(bound_book: JsonBook) -> None:
    hits = _hits(bound_book, "天")
    renderer = EntryRenderer(bound_book, LookupConfig(include_heading=False))
    renderer.render(hits[0], 0)
    assert renderer.hooks.font_width is not None
    renderer = EntryRenderer(bound_book, LookupConfig(include_body=False))
    renderer.render(hits[0], 0)
    assert renderer.hooks.font_width is None


def test_failed_hit_aborts_run_by_default(book_path: Path, tmp_path: Path) -> None:
    book = _FlakyBook.bind(book_path)
    book.set_subbook(0)
    hits = _hits(book)
    book.failing = {hits[1].text}
    with pytest.raises(HitRenderError) as excinfo:
        _lookup(book, LookupConfig(), tmp_path)
    assert excinfo.value.index == 1
    assert excinfo.value.state is RenderState.SEEK_BODY
    assert isinstance(excinfo.value.cause, BookError)


def test_failed_hit_is_skipped_when_configured(book_path: Path, gaiji_dir: Path, tmp_path: Path) -> None:
    book = _FlakyBook.bind(book_path)
    book.set_subbook(0)
    hits = _hits(book)
    book.failing = {hits[1].text}
    config = LookupConfig(gaiji_dir=gaiji_dir, skip_failed_hits=True, include_hit_index_banner=True)
    result, text = _lookup(book, config, tmp_path)
    assert result.rendered == [0, 2]
    assert result.skipped == [1]
    assert text == "{ENTRY: 0}\n" + RAIN + "{ENTRY: 2}\n" + HEAVEN


def test_conversion_failure_is_reported_per_hit(book_path: Path, tmp_path: Path) -> None:
    book = _FlakyBook.bind(book_path)
    book.set_subbook(0)
    hits = _hits(book)
    book.garbled = {hits[0].text}
    with pytest.raises(HitRenderError) as excinfo:
        _lookup(book, LookupConfig(), tmp_path)
    assert excinfo.value.state is RenderState.CONVERT_BODY
    assert isinstance(excinfo.value.cause, ConversionError)


def test_unencodable_lookup_word(bound_book: JsonBook, tmp_path: Path) -> None:
    with pytest.raises(ConversionError):
        _lookup(bound_book, LookupConfig(), tmp_path, word="😀")


def test_sink_discard_empties_file(tmp_path: Path) -> None:
    path = tmp_path / "out.txt"
    path.write_text("stale", encoding="utf-8")
    with OutputSink(path) as sink:
        assert path.read_bytes() == b""
        sink.write(b"partial")
        sink.discard()
    assert path.read_bytes() == b""


def test_write_subbook_title(bound_book: JsonBook, tmp_path: Path) -> None:
    path = tmp_path / "title.txt"
    with OutputSink(path) as sink:
        assert write_subbook_title(bound_book, sink) == "テスト辞典"
    assert path.read_text(encoding="utf-8") == "テスト辞典"


def test_inline_images_past_capacity_are_dropped_whole(gaiji_dir: Path, tmp_path: Path) -> None:
    subbook = {
        "title": "図鑑",
        "directory": "testdict",
        "entries": [{"words": ["本"], "heading": "本", "text": "本" + "<A122>" * 1200}],
        "fonts": {"wide": {"A122": "ffff" + "0000" * 15}},
    }
    book = JsonBook.bind(write_book(tmp_path / "images", [subbook]))
    book.set_subbook(0)
    config = LookupConfig(gaiji_dir=gaiji_dir, glyph_policy=GlyphPolicy.INLINE_IMAGE, include_heading=False)
    _, text = _lookup(book, config, tmp_path, word="本")
    assert len(text.encode("utf-8")) <= MAX_CONVERTED_BYTES
    assert text.startswith("本<img")
    assert text.endswith('alt="">')
    assert 0 < text.count("<img") == text.count('alt="">') < 1200


def test_literal_braces_in_narrow_text_are_not_glyphs(gaiji_dir: Path, tmp_path: Path) -> None:
    subbook = {
        "title": "t",
        "directory": "testdict",
        "entries": [{"words": ["括弧"], "heading": "括弧", "text": "<1F04>{#nA121}<1F05>"}],
    }
    book = JsonBook.bind(write_book(tmp_path / "braces", [subbook]))
    book.set_subbook(0)
    config = LookupConfig(gaiji_dir=gaiji_dir, include_heading=False)
    _, text = _lookup(book, config, tmp_path, word="括弧")
    assert text == "｛#nA121｝"
