from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .gaiji import GlyphPolicy
from .hooks import MarkupCategory

MAX_HITS = 50
MAX_HEADING_BYTES = 1024
MAX_TEXT_BYTES = 64 * 1024
MAX_CONVERTED_BYTES = 128 * 1024
MAX_LOOKUP_WORD_BYTES = 256

GAIJI_DIR_ENV = "EPLOOKUP_GAIJI_DIR"
CONFIG_TABLE = "eplookup"


class ConfigError(ValueError):
    """Raised when lookup settings are out of range or cannot be parsed."""


@dataclass(frozen=True)
class LookupConfig:
    """Settings for one lookup run. Built once and never mutated."""

    emphasis: bool = False
    keyword: bool = False
    reference: bool = False
    subscript: bool = False
    superscript: bool = False
    glyph_policy: GlyphPolicy = GlyphPolicy.PLACEHOLDER
    max_hits: int = MAX_HITS
    selected_hit: int | None = None
    include_heading: bool = True
    include_body: bool = True
    include_hit_count_banner: bool = False
    include_hit_index_banner: bool = False
    subbook_index: int = 0
    skip_failed_hits: bool = False
    gaiji_dir: Path | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.max_hits <= MAX_HITS:
            raise ConfigError(f"max_hits must be between 1 and {MAX_HITS}")
        if self.selected_hit is not None and self.selected_hit < 0:
            raise ConfigError("selected_hit must be >= 0")
        if self.subbook_index < 0:
            raise ConfigError("subbook_index must be >= 0")
        if not isinstance(self.glyph_policy, GlyphPolicy):
            object.__setattr__(self, "glyph_policy", parse_glyph_policy(self.glyph_policy))

    @property
    def markup_categories(self) -> frozenset[MarkupCategory]:
        enabled = {
            MarkupCategory.EMPHASIS: self.emphasis,
            MarkupCategory.KEYWORD: self.keyword,
            MarkupCategory.REFERENCE: self.reference,
            MarkupCategory.SUBSCRIPT: self.subscript,
            MarkupCategory.SUPERSCRIPT: self.superscript,
        }
        return frozenset(category for category, on in enabled.items() if on)

    def with_overrides(self, **changes: Any) -> "LookupConfig":
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def parse_glyph_policy(value: object) -> GlyphPolicy:
    """Accept a policy name or the numeric ``0``/``1`` form."""
    if isinstance(value, GlyphPolicy):
        return value
    text = str(value).strip().lower()
    if text in {"0", "placeholder", "default"}:
        return GlyphPolicy.PLACEHOLDER
    if text in {"1", "inline-image", "image", "html-img"}:
        return GlyphPolicy.INLINE_IMAGE
    raise ConfigError(f"Unknown glyph policy: {value!r}")


def default_gaiji_dir() -> Path | None:
    env_dir = os.environ.get(GAIJI_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return None


def _coerce(name: str, value: object) -> object:
    if name == "glyph_policy":
        return parse_glyph_policy(value)
    if name == "gaiji_dir":
        if not isinstance(value, str) or not value:
            raise ConfigError("gaiji_dir must be a path string")
        return Path(value).expanduser()
    if name in {"max_hits", "selected_hit", "subbook_index"}:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{name} must be an integer")
        return value
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false")
    return value


def config_from_mapping(payload: Mapping[str, object], base: LookupConfig | None = None) -> LookupConfig:
    known = {item.name for item in fields(LookupConfig)}
    changes: dict[str, object] = {}
    for key, value in payload.items():
        name = key.replace("-", "_")
        if name not in known:
            raise ConfigError(f"Unknown setting: {key}")
        changes[name] = _coerce(name, value)
    return replace(base or LookupConfig(), **changes)


def load_config_file(path: Path, base: LookupConfig | None = None) -> LookupConfig:
    """
    Read settings from the ``[eplookup]`` table of a TOML file.

    Keys match :class:`LookupConfig` field names; dashes are accepted in
    place of underscores.
    """
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    table = data.get(CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{CONFIG_TABLE}] in {path.name} must be a table")
    return config_from_mapping(table, base)


__all__ = [
    "CONFIG_TABLE",
    "GAIJI_DIR_ENV",
    "MAX_CONVERTED_BYTES",
    "MAX_HEADING_BYTES",
    "MAX_HITS",
    "MAX_LOOKUP_WORD_BYTES",
    "MAX_TEXT_BYTES",
    "ConfigError",
    "LookupConfig",
    "config_from_mapping",
    "default_gaiji_dir",
    "load_config_file",
    "parse_glyph_policy",
]
