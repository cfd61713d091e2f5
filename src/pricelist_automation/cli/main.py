from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from typing import Optional, Sequence

from ..config import load_settings
from ..domain.errors import ConfigurationError, PriceListError
from ..domain.models import RawImage
from ..logging import configure_logging, get_logger
from ..orchestrator.analyze import build_analyzer
from ..pipeline.recover import recover_detailed

LOG = get_logger("cli-main")

DEFAULT_OUTPUT = "price-list.json"


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def _write_or_print(text: str, output: Optional[str]) -> None:
    if not output:
        print(text)
        return
    path = expand_abs(output)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
        f.write("\n")
    LOG.info(f"Wrote: {path}")


def _add_analyze_cli(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("analyze", help="Extract a price list from one image.")
    p.add_argument("--image", required=True, help="Path to the price-list photo or scan")
    p.add_argument("--media-type", help="Override the media type guessed from the file name")
    p.add_argument(
        "--output",
        nargs="?",
        const=DEFAULT_OUTPUT,
        help=f"Write JSON to a file instead of stdout (default name: {DEFAULT_OUTPUT})",
    )
    p.add_argument("--model", help="Model id (defaults to PRICELIST_MODEL or gpt-4o)")
    p.add_argument("--quality", type=float, help="Re-encode quality in (0, 1]")
    p.add_argument("--max-width", type=int)
    p.add_argument("--max-height", type=int)
    p.add_argument("--no-compress", action="store_true", help="Send the original image bytes")

    def _analyze(ns: argparse.Namespace) -> int:
        settings = load_settings(os.getcwd())
        overrides = {
            "model": ns.model,
            "quality": ns.quality,
            "max_width": ns.max_width,
            "max_height": ns.max_height,
        }
        settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
        try:
            image = RawImage.from_path(expand_abs(ns.image), media_type=ns.media_type)
        except OSError as exc:
            LOG.error(f"Could not read image: {exc}")
            return 2
        try:
            analyzer = build_analyzer(settings, compress_images=not ns.no_compress)
            result = analyzer.analyze(image)
        except ConfigurationError as exc:
            LOG.error(f"Invalid option: {exc.detail}")
            return 2
        except PriceListError as exc:
            LOG.error(f"{exc.user_message} [{exc.code}: {exc.detail}]")
            return 1
        for warning in result.warnings:
            LOG.warning(warning)
        _write_or_print(result.price_list.to_json(indent=2), ns.output)
        return 0

    p.set_defaults(handler=_analyze)


def _add_recover_cli(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("recover", help="Parse a saved model reply into a price list (offline).")
    p.add_argument("--reply", help="File containing the model reply (default: stdin)")
    p.add_argument("--output", nargs="?", const=DEFAULT_OUTPUT)

    def _recover(ns: argparse.Namespace) -> int:
        try:
            if ns.reply:
                with open(expand_abs(ns.reply), "r", encoding="utf-8") as f:
                    text = f.read()
            else:
                text = sys.stdin.read()
        except (OSError, UnicodeDecodeError) as exc:
            LOG.error(f"Could not read model reply: {exc}")
            return 2
        try:
            recovery = recover_detailed(text)
        except PriceListError as exc:
            LOG.error(f"{exc.user_message} [{exc.code}: {exc.detail}]")
            return 1
        LOG.info(f"Recovered via '{recovery.strategy}' strategy")
        _write_or_print(recovery.price_list.to_json(indent=2), ns.output)
        return 0

    p.set_defaults(handler=_recover)


def _add_serve_cli(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("serve", help="Run the single-session HTTP API.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8001)
    p.add_argument("--log-level", default="info")
    p.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..frontend import create_app
        import uvicorn

        configure_logging(ns.log_level)
        app = create_app(allow_origins=ns.allow_origins)
        uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
        return 0

    p.set_defaults(handler=_serve)


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="pricelist-auto",
        description="Turn a photographed price list into structured JSON using a vision model.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_analyze_cli(subparsers)
    _add_recover_cli(subparsers)
    _add_serve_cli(subparsers)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
