from __future__ import annotations

import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

import tomllib

from .book import BookError, open_book
from .charset import ConversionError
from .config import (
    MAX_HITS,
    ConfigError,
    LookupConfig,
    default_gaiji_dir,
    load_config_file,
    parse_glyph_policy,
)
from .logging_utils import configure_logging, report_error
from .renderer import HitRenderError, OutputSink, run_lookup, write_subbook_title

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BOOK_ERROR = 1
EXIT_USAGE = 2
EXIT_CONVERSION_ERROR = 3
EXIT_INPUT_ERROR = 4


class LookupInputError(RuntimeError):
    """Raised when the lookup word cannot be read from the input file."""


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("eplookup")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return number


def _max_hits(value: str) -> int:
    number = _non_negative_int(value)
    if not 1 <= number <= MAX_HITS:
        raise argparse.ArgumentTypeError(f"must be between 1 and {MAX_HITS}")
    return number


def _glyph_policy(value: str):
    try:
        return parse_glyph_policy(value)
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="eplookup",
        description="Perform an exact search for a word in an EPWING book and write the entries as UTF-8.",
    )
    ap.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"eplookup {__version__}",
    )
    ap.add_argument(
        "book_path",
        help='Directory that contains the book (EPWING "CATALOG(S)" or a book.json manifest).',
    )
    ap.add_argument(
        "input_file",
        help="File whose first line is the word to look up (UTF-8).",
    )
    ap.add_argument(
        "output_file",
        help="File that receives the lookup text (UTF-8). Truncated at start.",
    )
    ap.add_argument("--config", help="TOML file with an [eplookup] settings table.")
    ap.add_argument(
        "--emphasis",
        action="store_true",
        default=None,
        help="Place <em></em> tags around bold/emphasized text.",
    )
    ap.add_argument(
        "--keyword",
        action="store_true",
        default=None,
        help="Place <KEYWORD></KEYWORD> tags around keywords.",
    )
    ap.add_argument(
        "--link",
        dest="reference",
        action="store_true",
        default=None,
        help="Place <LINK></LINK> tags around links/references.",
    )
    ap.add_argument(
        "--html-sub",
        dest="subscript",
        action="store_true",
        default=None,
        help="Place <sub></sub> tags around subscript text.",
    )
    ap.add_argument(
        "--html-sup",
        dest="superscript",
        action="store_true",
        default=None,
        help="Place <sup></sup> tags around superscript text.",
    )
    ap.add_argument(
        "--gaiji",
        dest="glyph_policy",
        type=_glyph_policy,
        default=None,
        help=(
            "Gaiji without a Unicode equivalent: 0/placeholder replaces them with '?' (default); "
            "1/inline-image embeds them as base64 <img> tags."
        ),
    )
    ap.add_argument(
        "--gaiji-dir",
        help="Directory with <SUBBOOK>.map gaiji tables (overrides EPLOOKUP_GAIJI_DIR).",
    )
    ap.add_argument(
        "--hit",
        dest="selected_hit",
        type=_non_negative_int,
        default=None,
        help="Output only this hit (starting at 0). Default outputs all hits.",
    )
    ap.add_argument(
        "--hit-num",
        dest="include_hit_index_banner",
        action="store_true",
        default=None,
        help="Print {ENTRY: n} above each hit when several hits are output.",
    )
    ap.add_argument(
        "--max-hits",
        type=_max_hits,
        default=None,
        help=f"Number of hits to output when --hit is not given. Default is {MAX_HITS}.",
    )
    ap.add_argument(
        "--no-header",
        dest="include_heading",
        action="store_false",
        default=None,
        help="Don't print the headings.",
    )
    ap.add_argument(
        "--no-text",
        dest="include_body",
        action="store_false",
        default=None,
        help="Don't print the text.",
    )
    ap.add_argument(
        "--show-count",
        dest="include_hit_count_banner",
        action="store_true",
        default=None,
        help="Print {HITS: n} on the first line of the output file.",
    )
    ap.add_argument(
        "--skip-failed-hits",
        action="store_true",
        default=None,
        help="Leave out hits that cannot be read or converted instead of aborting.",
    )
    ap.add_argument(
        "--subbook",
        dest="subbook_index",
        type=_non_negative_int,
        default=None,
        help="Subbook to use. Default is 0.",
    )
    ap.add_argument(
        "--title",
        action="store_true",
        help="Write the title of the subbook instead of performing a search.",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return ap


def build_config(args: argparse.Namespace) -> LookupConfig:
    base = LookupConfig(gaiji_dir=default_gaiji_dir())
    if args.config:
        base = load_config_file(Path(args.config).expanduser(), base)
    return base.with_overrides(
        emphasis=args.emphasis,
        keyword=args.keyword,
        reference=args.reference,
        subscript=args.subscript,
        superscript=args.superscript,
        glyph_policy=args.glyph_policy,
        gaiji_dir=Path(args.gaiji_dir).expanduser() if args.gaiji_dir else None,
        selected_hit=args.selected_hit,
        include_hit_index_banner=args.include_hit_index_banner,
        max_hits=args.max_hits,
        include_heading=args.include_heading,
        include_body=args.include_body,
        include_hit_count_banner=args.include_hit_count_banner,
        skip_failed_hits=args.skip_failed_hits,
        subbook_index=args.subbook_index,
    )


def read_lookup_word(path: Path) -> str:
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            line = fh.readline()
    except OSError as exc:
        raise LookupInputError(f'Could not open input file: "{path}"') from exc
    except UnicodeDecodeError as exc:
        raise LookupInputError(f'Input file is not UTF-8: "{path}"') from exc
    word = line.rstrip("\r\n")
    if not word:
        raise LookupInputError(f'Could not read word from input file: "{path}"')
    return word


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug)

    try:
        config = build_config(args)
    except ConfigError as exc:
        report_error(str(exc))
        return EXIT_USAGE

    try:
        sink = OutputSink(Path(args.output_file)).open()
    except OSError as exc:
        report_error(f"Could not open output file: {exc}")
        return EXIT_INPUT_ERROR

    with sink:
        try:
            book = open_book(Path(args.book_path))
        except BookError as exc:
            report_error(str(exc))
            return EXIT_BOOK_ERROR
        try:
            book.set_subbook(config.subbook_index)
            if args.title:
                write_subbook_title(book, sink)
                return EXIT_OK
            word = read_lookup_word(Path(args.input_file))
            result = run_lookup(book, config, word, sink)
            logger.debug(
                "Rendered hits %s, skipped %s (of %d)",
                result.rendered,
                result.skipped,
                result.hit_count,
            )
        except LookupInputError as exc:
            report_error(str(exc))
            return EXIT_INPUT_ERROR
        except HitRenderError as exc:
            sink.discard()
            report_error(str(exc))
            return EXIT_CONVERSION_ERROR if isinstance(exc.cause, ConversionError) else EXIT_BOOK_ERROR
        except ConversionError as exc:
            sink.discard()
            report_error(f"Encoding conversion failed: {exc}")
            return EXIT_CONVERSION_ERROR
        except BookError as exc:
            sink.discard()
            report_error(str(exc))
            return EXIT_BOOK_ERROR
        finally:
            book.close()
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
