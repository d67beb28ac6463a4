"""Entry point: python -m sselink URL"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys

from .client.cancel import CancelToken
from .client.subscription import Subscription
from .config import ClientConfig
from .errors import SSEError
from .logging_config import setup_logging
from .parse.messages import EventSourceMessage


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME:VALUE, got {value!r}")
    return name.strip(), header_value.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sselink", description="Tail a Server-Sent Events stream")
    parser.add_argument("url", help="Event stream URL")
    parser.add_argument("-H", "--header", action="append", type=_parse_header, default=[],
                        help="Request header as NAME:VALUE (repeatable)")
    parser.add_argument("-X", "--method", default="GET", help="HTTP method (default: GET)")
    parser.add_argument("-d", "--data", default=None, help="Request body")
    parser.add_argument("--last-event-id", default=None, help="Resume after this event id")
    parser.add_argument("--once", action="store_true", help="Exit on the first error instead of reconnecting")
    parser.add_argument("--raw", action="store_true", help="Print records in SSE wire format")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--log-dir", default=None, help="Also write JSON logs to this directory")
    return parser


def format_message(message: EventSourceMessage, raw: bool = False) -> str:
    if raw:
        return message.to_bytes().decode()
    return json.dumps({
        "id": message.id,
        "event": message.event,
        "data": message.data,
        "retry": message.retry,
    }) + "\n"


async def _run(args: argparse.Namespace, config: ClientConfig) -> int:
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except NotImplementedError:
        pass  # Windows: KeyboardInterrupt is handled in main()

    headers = dict(args.header)
    if args.last_event_id is not None:
        headers["last-event-id"] = args.last_event_id

    def on_message(message: EventSourceMessage) -> None:
        sys.stdout.write(format_message(message, raw=args.raw))
        sys.stdout.flush()

    def on_error(error: SSEError) -> None:
        print(f"sselink: {error}", file=sys.stderr)
        if args.once:
            raise error

    subscription = Subscription(
        args.url,
        method=args.method,
        headers=headers,
        body=args.data,
        on_message=on_message,
        on_error=on_error,
        signal=token,
        config=config,
    )
    try:
        await subscription.run()
    except SSEError:
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    config = ClientConfig()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_dir:
        config.log_dir = args.log_dir

    setup_logging(config.log_dir, config.log_level)

    try:
        status = asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        status = 130
    sys.exit(status)


if __name__ == "__main__":
    main()
