from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .collectors.ddp_client import DdpClient
from .config import DEFAULT_TIMEOUT_MS, URL_ENV_VAR, DumpConfig, resolve_config
from .exporter import Exporter
from .state import DumpSession
from .types import SUPPORTED_DDP_VERSIONS, ConfigError, DdpConnectionError
from .version import __version__


LOGGER = logging.getLogger("ddp_dump")

USAGE = "ddp-dump [options] [collection(s) to subscribe ...]"

DESCRIPTION = "Dumps Meteor collections by using Meteor's DDP (Distributed Data Protocol)."

EPILOG = """\
Examples:
  Dump all collections of the local Meteor WebSocket server:
    ddp-dump --all
    ddp-dump --all > all_collections.json
    ddp-dump --all -o col_%s.json

  Dump a specific collection:
    ddp-dump cats > cats.json
    ddp-dump -h localhost -p 80 cats > cats.json
    ddp-dump -u ws://local cats --all -o cats_and_others.json
    ddp-dump -h example.org --ssl dogs > dogs.json
    ddp-dump -u wss://example.org lizards -o %s.json

  Merge multiple collections to one JSON:
    ddp-dump -h meteor.local cats dogs lizards > cute_animals.json
    ddp-dump -h meteor.local cats dogs lizards -o cute_animals.json

  Save collections to separate JSON files:
    ddp-dump -h meteor.local -o cats.json -o birds.json cats birds
    ddp-dump -h meteor.local -o %s.json cats birds
"""


def build_parser() -> argparse.ArgumentParser:
    # -h is --host, so argparse's own help flag is replaced by -?/--help
    ap = argparse.ArgumentParser(
        prog="ddp-dump",
        usage=USAGE,
        description=DESCRIPTION,
        epilog=EPILOG,
        add_help=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("collections", nargs="*", help="Collections to subscribe to")
    ap.add_argument("-u", "--url", default=None, help=f"Websocket endpoint URL (env: {URL_ENV_VAR})")
    ap.add_argument("-h", "--host", default=None, help="Hostname - default: localhost")
    ap.add_argument("-p", "--port", type=int, default=None, help="Port - default: 80 or 443 if SSL is set")
    ap.add_argument("-s", "--ssl", action="store_true", help="Use SSL (wss://)")
    ap.add_argument("-a", "--all", action="store_true", help="Include all collections that are received")
    ap.add_argument(
        "-o",
        "--output",
        action="append",
        default=[],
        help=(
            "Output JSON file(s), otherwise dump to stdout (repeatable). "
            "%%s is replaced by the collection name; with a single plain file "
            "all collections are merged into one JSON structure"
        ),
    )
    ap.add_argument(
        "-t",
        "--timeout",
        type=int,
        default=None,
        help=f"How long to wait for data after the last message (ms) - default: {DEFAULT_TIMEOUT_MS} with --all, otherwise 0",
    )
    ap.add_argument("-c", "--compress", action="store_true", help="Compress JSON")
    ap.add_argument("-d", "--ddpv", choices=list(SUPPORTED_DDP_VERSIONS), default="1", help="DDP protocol version - default: 1")
    ap.add_argument("-k", "--sockjs", action="store_true", help="Use the SockJS protocol")
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose mode")
    ap.add_argument("--debug", action="store_true", help="Debug mode (log every DDP message)")
    ap.add_argument("-V", "--version", action="version", version=__version__, help="Display version information and exit")
    ap.add_argument("-?", "--help", action="help", help="Display this help message and exit")
    return ap


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def config_from_args(args: argparse.Namespace) -> DumpConfig:
    return resolve_config(
        collections=args.collections,
        url=args.url,
        host=args.host,
        port=args.port,
        ssl=args.ssl,
        outputs=args.output,
        capture_all=args.all,
        timeout_ms=args.timeout,
        compress=args.compress,
        ddp_version=args.ddpv,
        sockjs=args.sockjs,
        verbose=args.verbose,
        debug=args.debug,
    )


def connection_info(cfg: DumpConfig, url: str) -> str:
    return "Connecting to: %s (DDP Version %s)%s" % (
        url,
        cfg.ddp_version,
        " (SockJS enabled)" if cfg.sockjs else "",
    )


async def run_dump(session: DumpSession) -> int:
    cfg = session.config
    client = DdpClient(cfg)
    LOGGER.info(connection_info(cfg, client.url))

    try:
        result = await Exporter(session, client).run()
    except DdpConnectionError as e:
        LOGGER.error("DDP connection failed: %s", e)
        return 1

    if result.failed_subscriptions:
        LOGGER.info("%d subscription(s) failed", len(result.failed_subscriptions))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_intermixed_args(argv)
    setup_logging(verbose=args.verbose, debug=args.debug)

    try:
        # ambiguous outputs are rejected before connecting
        session = DumpSession.from_config(config_from_args(args))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        if not args.collections and not args.all:
            print(f"\nUsage: {USAGE}", file=sys.stderr)
            print("\nTry `ddp-dump --help` for more information.", file=sys.stderr)
        return 1

    return asyncio.run(run_dump(session))


if __name__ == "__main__":
    raise SystemExit(main())
