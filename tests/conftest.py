from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator

import pytest

from eplookup.book import JsonBook

RAIN_TEXT = "あめ【雨】\n<1FE0><0100>空<1FE1>から降る水滴。"
CANDY_TEXT = "あめ【飴】\n<1F41><0100>菓子<1F61>の一種。<1F42>→糖<1F62>[00000002:0010]"
HEAVEN_TEXT = "あめ【天】\n空。<1F04>(cf.<A121>)<1F05><A122>"
WIND_TEXT = "風。<1F06>2<1F07>と<1F0E>3<1F0F>"

SAMPLE_SUBBOOKS = [
    {
        "title": "テスト辞典",
        "directory": "testdict",
        "entries": [
            {"words": ["あめ", "雨"], "heading": "あめ【雨】", "text": RAIN_TEXT},
            {"words": ["あめ", "飴"], "heading": "あめ【飴】", "text": CANDY_TEXT},
            {"words": ["あめ", "天"], "heading": "あめ【天】", "text": HEAVEN_TEXT},
            {"words": ["かぜ"], "heading": "かぜ【<A121>】", "text": WIND_TEXT},
        ],
        "fonts": {
            "narrow": {"A121": "ff" + "00" * 15},
            "wide": {"A122": "ffff" + "0000" * 15},
        },
    },
    {"title": "第二巻", "directory": "SECOND", "entries": []},
]

SAMPLE_GAIJI_MAP = "# test table\nhA121\tu00E9\nzA121\tu98A8\nzA122\t-\n"


def write_book(root: Path, subbooks: list[dict[str, object]]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "book.json").write_text(
        json.dumps({"subbooks": subbooks}, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return root


@pytest.fixture
def book_path(tmp_path: Path) -> Path:
    return write_book(tmp_path / "book", SAMPLE_SUBBOOKS)


@pytest.fixture
def gaiji_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "gaiji"
    folder.mkdir()
    (folder / "TESTDICT.map").write_text(SAMPLE_GAIJI_MAP, encoding="utf-8")
    return folder


@pytest.fixture
def bound_book(book_path: Path) -> Iterator[JsonBook]:
    book = JsonBook.bind(book_path)
    book.set_subbook(0)
    yield book
    book.close()
