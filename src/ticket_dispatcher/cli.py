from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ticket_dispatcher.services.errors import BodyExtractionError
from ticket_dispatcher.services.mime_body import decode_body, read_message
from ticket_dispatcher.services.quote_folder import fold_quotes


def render_file(path: Path, quotes: str = "keep") -> str:
    message = read_message(path.read_bytes())
    body = decode_body(message.headers, message.body)
    if quotes == "keep":
        return body
    return fold_quotes(body, discard_quotes=quotes == "discard")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the Markdown body extracted from a stored email.")
    parser.add_argument("path", type=Path, help="RFC 822 message file, e.g. an object saved by SES.")
    parser.add_argument(
        "--quotes",
        choices=("keep", "fold", "discard"),
        default="keep",
        help="What to do with a trailing quoted reply (default: keep it untouched).",
    )
    args = parser.parse_args(argv)

    try:
        print(render_file(args.path, args.quotes))
    except OSError as exc:
        print(f"error opening file: {exc}", file=sys.stderr)
        return 1
    except BodyExtractionError as exc:
        print(f"error extracting body: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
