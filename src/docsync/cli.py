"""Command line entry point.

Usage:
    docsync sources
    docsync sync [--source ID] [--reset] [--no-push]
    docsync status [RUN_ID]
    docsync serve [--port PORT]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from docsync.config import SyncSettings
from docsync.errors import DocSyncError
from docsync.sync.orchestrator import SyncOptions, SyncOrchestrator
from docsync.sync.status import PublishStatusStore

logger = logging.getLogger("docsync")


def _configure_logging(verbose: bool) -> None:
    # stdout carries command output only
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


async def _sync(orchestrator: SyncOrchestrator, options: SyncOptions) -> int:
    report = await orchestrator.run(options)
    _print_json(report.to_dict())

    if report.publish is not None:
        logger.info("Waiting for snapshot publish of run %s...", report.run_id)
        record = await report.publish.wait()
        if record is not None:
            _print_json({"publish": record.model_dump(mode="json", by_alias=True)})

    return 0 if report.success else 1


def cmd_sources(settings: SyncSettings, _args: argparse.Namespace) -> int:
    orchestrator = SyncOrchestrator.from_settings(settings)
    _print_json(orchestrator.registry.describe())
    return 0


def cmd_sync(settings: SyncSettings, args: argparse.Namespace) -> int:
    orchestrator = SyncOrchestrator.from_settings(settings)
    options = SyncOptions(reset=args.reset, push=not args.no_push, source_filter=args.source)
    return asyncio.run(_sync(orchestrator, options))


def cmd_status(settings: SyncSettings, args: argparse.Namespace) -> int:
    store = PublishStatusStore(settings.status_path)
    if args.run_id:
        record = store.get(args.run_id)
        if record is None:
            print(f"ERROR: no publish recorded for run {args.run_id}", file=sys.stderr)
            return 1
        _print_json(record.model_dump(mode="json", by_alias=True))
    else:
        _print_json({"runs": [r.model_dump(mode="json", by_alias=True) for r in store.list_recent(args.limit)]})
    return 0


def cmd_serve(settings: SyncSettings, args: argparse.Namespace) -> int:
    from docsync.server import SyncServer

    if args.port:
        settings = settings.model_copy(update={"server_port": args.port})
    server = SyncServer(SyncOrchestrator.from_settings(settings), settings)
    try:
        asyncio.run(server.run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docsync", description="Sync documentation sources into a snapshot repo")
    parser.add_argument("--config", type=Path, help="Source config file (YAML or JSON)")
    parser.add_argument("--scratch-root", type=Path, help="Parent directory for run workspaces")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sources", help="List configured sources").set_defaults(func=cmd_sources)

    sync = sub.add_parser("sync", help="Run one sync and publish the snapshot")
    sync.add_argument("--source", help="Only sync the source with this id")
    sync.add_argument("--reset", action="store_true", help="Start from an empty docs folder")
    sync.add_argument("--no-push", action="store_true", help="Skip the snapshot publish")
    sync.set_defaults(func=cmd_sync)

    status = sub.add_parser("status", help="Show snapshot publish status")
    status.add_argument("run_id", nargs="?", help="Run id (default: recent runs)")
    status.add_argument("--limit", type=int, default=20, help="Number of recent runs")
    status.set_defaults(func=cmd_status)

    serve = sub.add_parser("serve", help="Run the HTTP trigger server")
    serve.add_argument("--port", type=int, help="Override the listen port")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    overrides: dict[str, object] = {}
    if args.config:
        overrides["sources_path"] = args.config
    if args.scratch_root:
        overrides["scratch_root"] = args.scratch_root

    try:
        settings = SyncSettings.from_env(**overrides)
        return int(args.func(settings, args))
    except (DocSyncError, ValidationError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
