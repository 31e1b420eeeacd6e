from __future__ import annotations

LEGACY_CHARSET = "EUC-JP"
UTF8_CHARSET = "UTF-8"

_CODECS = {
    "EUC-JP": "euc_jp",
    "EUCJP": "euc_jp",
    "EUC_JP": "euc_jp",
    "UTF-8": "utf-8",
    "UTF8": "utf-8",
}


class CapacityError(RuntimeError):
    """Raised when a fixed-capacity buffer cannot hold the data written to it."""


class ConversionError(ValueError):
    """Raised when bytes cannot be converted between charsets."""


class ConversionCapacityError(ConversionError, CapacityError):
    """Raised when converted text does not fit the destination capacity."""


def _codec_for(charset: str) -> str:
    codec = _CODECS.get(charset.strip().upper())
    if codec is None:
        raise ConversionError(f"Unsupported charset: {charset}")
    return codec


def convert_encoding(
    data: bytes,
    *,
    to: str,
    source: str,
    capacity: int | None = None,
) -> bytes:
    """Convert ``data`` from ``source`` to ``to``.

    The whole of ``data`` is converted; embedded NUL bytes are kept. Raises
    :class:`ConversionError` when a sequence cannot be represented and
    :class:`ConversionCapacityError` when the result exceeds ``capacity``.
    """
    source_codec = _codec_for(source)
    target_codec = _codec_for(to)
    try:
        text = bytes(data).decode(source_codec)
    except UnicodeDecodeError as exc:
        raise ConversionError(
            f"Invalid {source} sequence at byte {exc.start}: {bytes(data)[exc.start:exc.end]!r}"
        ) from exc
    try:
        converted = text.encode(target_codec)
    except UnicodeEncodeError as exc:
        raise ConversionError(
            f"Character {text[exc.start:exc.end]!r} cannot be represented in {to}"
        ) from exc
    if capacity is not None and len(converted) > capacity:
        raise ConversionCapacityError(
            f"Converted text needs {len(converted)} bytes; capacity is {capacity}"
        )
    return converted


def to_utf8(data: bytes, *, capacity: int | None = None) -> bytes:
    return convert_encoding(data, to=UTF8_CHARSET, source=LEGACY_CHARSET, capacity=capacity)


def to_legacy(data: bytes, *, capacity: int | None = None) -> bytes:
    return convert_encoding(data, to=LEGACY_CHARSET, source=UTF8_CHARSET, capacity=capacity)


def clip_utf8(data: bytes, capacity: int) -> bytes:
    """Cut UTF-8 ``data`` to at most ``capacity`` bytes on a character boundary."""
    if len(data) <= capacity:
        return data
    end = max(capacity, 0)
    # Step back over continuation bytes (10xxxxxx) to the start of the cut character.
    while end > 0 and (data[end] & 0xC0) == 0x80:
        end -= 1
    return data[:end]


__all__ = [
    "LEGACY_CHARSET",
    "UTF8_CHARSET",
    "CapacityError",
    "ConversionError",
    "ConversionCapacityError",
    "clip_utf8",
    "convert_encoding",
    "to_legacy",
    "to_utf8",
]
