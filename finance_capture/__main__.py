"""
Command line entry point.

    python -m finance_capture text "coffee at Starbucks 4.50 dollars"
    python -m finance_capture scan receipt.jpg
    python -m finance_capture listen --seconds 8
    python -m finance_capture list --limit 20
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from finance_capture.models.event import FinanceEvent, TranscriptFinal
from finance_capture.orchestrator import (
    CaptureSession,
    FinanceCaptureFlow,
    create_app_components,
)
from finance_capture.services.speech import CaptureError
from finance_capture.services.storage import SQLiteEventStorage


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="finance_capture",
        description="Capture a finance event from speech, a receipt scan or text",
    )
    p.add_argument("--no-storage", action="store_true",
                   help="Run the pipeline without writing to the local store")
    sub = p.add_subparsers(dest="command", required=True)

    text = sub.add_parser("text", help="Extract an event from a typed transcript")
    text.add_argument("transcript", help="What was spent or received")

    scan = sub.add_parser("scan", help="Extract an event from scanned receipt pages")
    scan.add_argument("pages", nargs="+", type=Path, help="Page images; only the first is read")

    listen = sub.add_parser("listen", help="Record from the microphone, then extract")
    listen.add_argument("--seconds", type=float, default=8.0,
                        help="Stop recording after this many seconds")

    list_cmd = sub.add_parser("list", help="Show the most recent saved events")
    list_cmd.add_argument("--limit", type=int, default=20)

    return p.parse_args(argv)


def _dump(data) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)


def _report(session: CaptureSession, event: Optional[FinanceEvent]) -> int:
    if event is None:
        print(session.error_message or "Capture failed.", file=sys.stderr)
        return 1
    print(_dump(event.model_dump(mode="json")))
    return 0


async def _listen(flow: FinanceCaptureFlow, session: CaptureSession, seconds: float) -> Optional[FinanceEvent]:
    await flow.start_recording(session)

    async def follow() -> None:
        async for item in flow.transcript_updates(session):
            if not isinstance(item, TranscriptFinal):
                print(f"\r… {item.text}", end="", file=sys.stderr, flush=True)
        print(file=sys.stderr)

    follower = asyncio.create_task(follow())
    # The recognizer may end the recording on its own
    await asyncio.wait({follower}, timeout=seconds)
    event = await flow.stop_recording_and_extract(session)
    await follower
    return event


async def _amain(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    flow, sqlite_client = create_app_components(use_storage=not args.no_storage)
    if sqlite_client is not None:
        await sqlite_client.init_schema()

    try:
        if args.command == "list":
            if sqlite_client is None:
                print("The local store is disabled (--no-storage).", file=sys.stderr)
                return 1
            storage = SQLiteEventStorage(sqlite_client)
            events = await storage.list_events(limit=args.limit)
            print(_dump([e.model_dump(mode="json") for e in events]))
            return 0

        session = flow.new_session()
        if args.command == "text":
            event = await flow.extract_from_text(session, args.transcript)
        elif args.command == "scan":
            pages = [path.read_bytes() for path in args.pages]
            event = await flow.scan_and_extract(session, pages)
        else:
            try:
                event = await _listen(flow, session, args.seconds)
            except CaptureError as e:
                print(str(e), file=sys.stderr)
                return 1
        return _report(session, event)
    finally:
        if sqlite_client is not None:
            await sqlite_client.dispose()


def main() -> None:  # pragma: no cover
    try:
        sys.exit(asyncio.run(_amain()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    main()
