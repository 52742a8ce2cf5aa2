from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from artifact_tracker.config import YamlConfigLoader
from artifact_tracker.config.models import AppConfig, ConfigLoadRequest
from artifact_tracker.logging import init_logging
from artifact_tracker.upstream.client import GitHubClient
from artifact_tracker.web.app import build_services, create_app

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="artifact-tracker", description="Server artifact tracker")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Serve for N seconds then exit (useful for smoke testing).",
    )

    # Command: refresh
    subparsers.add_parser("refresh", help="Aggregate artifacts once and log a summary")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _serve(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    logger.info(
        "Starting HTTP API. host=%s port=%s repository=%s",
        config.server.host,
        config.server.port,
        config.github.repository,
    )

    runner = web.AppRunner(create_app(config))
    await runner.setup()
    site = web.TCPSite(runner, host=config.server.host, port=config.server.port)
    try:
        await site.start()
        if args.run_seconds is not None:
            await asyncio.sleep(args.run_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        logger.info("HTTP API stopped.")


async def _refresh(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    logger.info("Starting one-off artifact refresh. repository=%s", config.github.repository)

    async with GitHubClient(config.github) as client:
        services = build_services(config, client=client)
        snapshot = await services.artifacts.refresh()

    for platform in ("windows", "linux"):
        records = snapshot.dataset.platform(platform)
        statuses: dict[str, int] = {}
        for record in records.values():
            statuses[record.support_status] = statuses.get(record.support_status, 0) + 1
        logger.info(
            "Artifact summary. platform=%s source=%s versions=%d statuses=%s",
            platform,
            snapshot.source,
            len(records),
            statuses,
        )


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        await _serve(args)
    elif args.command == "refresh":
        await _refresh(args)


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
