"""ota-updater-client: control and monitor the update service."""

import argparse
import os
import signal
import sys
import threading
from datetime import datetime
from typing import Optional

from ota_updater.client.client import DEFAULT_SERVICE_URL, UpdaterClient
from ota_updater.errors import ErrorCode, UpdaterError
from ota_updater.models.status import PhaseEnum


def progress_bar(progress: int, width: int = 20) -> str:
    filled = max(0, min(width, progress * width // 100))
    return "[" + "#" * filled + "." * (width - filled) + "]"


def format_status_line(phase: PhaseEnum, details: str, progress: Optional[int]) -> str:
    line = f"[{datetime.now():%H:%M:%S}] {phase.value}"
    if details:
        line += f" | {details}"
    if progress is not None:
        line += f" | {progress}% {progress_bar(progress)}"
    return line


def cmd_status(client: UpdaterClient, args) -> None:
    snapshot = client.get_status()
    print("Update Status")
    print(f"  Status:   {snapshot.phase.value}")
    if snapshot.details:
        print(f"  Details:  {snapshot.details}")
    if snapshot.progress_or_none is not None:
        print(f"  Progress: {snapshot.progress}% {progress_bar(snapshot.progress)}")


def cmd_watch(client: UpdaterClient, args) -> None:
    stop_event = threading.Event()

    def _stop(signum, frame):
        stop_event.set()

    previous = {
        sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    print("Watching for status updates... (Ctrl+C to exit)")
    try:
        client.watch_status(
            lambda phase, details, progress: print(
                format_status_line(phase, details, progress), flush=True
            ),
            stop_event=stop_event,
        )
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def cmd_install_file(client: UpdaterClient, args) -> None:
    print(f"Installing update from file: {args.path}")
    print(client.install_from_file(args.path))


def cmd_install_url(client: UpdaterClient, args) -> None:
    print(f"Downloading and installing update from: {args.url}")
    print(client.install_from_url(args.url))


def cmd_pending_update(client: UpdaterClient, args) -> None:
    pending = client.get_pending_update()
    print("PENDING UPDATE")
    print(f"  Version: {pending.version}")
    print(f"  Source:  {pending.source}")
    print("CHANGELOG")
    for line in pending.changelog.splitlines():
        print(f"  {line}")
    print("Use 'ota-updater-client accept' to install or 'ota-updater-client reject' to cancel")


def cmd_accept(client: UpdaterClient, args) -> None:
    print(client.confirm_update(True))
    print("Installation will proceed...")


def cmd_reject(client: UpdaterClient, args) -> None:
    print(client.confirm_update(False))
    print("Update has been rejected.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ota-updater-client",
        description="Control and monitor the OTA update service",
    )
    parser.add_argument(
        "--url",
        default=os.environ.get("OTA_UPDATER_URL", DEFAULT_SERVICE_URL),
        help="Base URL of the update service (env OTA_UPDATER_URL)",
    )
    parser.add_argument("--timeout", type=float, default=10.0, help="Request timeout in seconds")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show the current update status").set_defaults(func=cmd_status)
    sub.add_parser("watch", help="Print status changes until interrupted").set_defaults(func=cmd_watch)

    p = sub.add_parser("install-file", help="Install an update from a local file")
    p.add_argument("path", help="Path to the update package")
    p.set_defaults(func=cmd_install_file)

    p = sub.add_parser("install-url", help="Download and install an update from a URL")
    p.add_argument("url", help="URL to download the update from")
    p.set_defaults(func=cmd_install_url)

    sub.add_parser(
        "pending-update", help="Show the update awaiting confirmation"
    ).set_defaults(func=cmd_pending_update)
    sub.add_parser("accept", help="Accept the pending update").set_defaults(func=cmd_accept)
    sub.add_parser("reject", help="Reject the pending update").set_defaults(func=cmd_reject)
    return parser


def main(argv: Optional[list] = None) -> int:
    """Run one command; the exit status is the absolute error code (0 on success)."""
    args = build_parser().parse_args(argv)
    try:
        with UpdaterClient(args.url, timeout=args.timeout) as client:
            args.func(client, args)
    except UpdaterError as e:
        print(f"Error ({e.code.name}): {e}", file=sys.stderr)
        return abs(int(e.code))
    return int(ErrorCode.OK)


if __name__ == "__main__":
    sys.exit(main())
