"""SupplyDesk entrypoint -- wires all components together and starts the server.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from core.bus import AsyncIOBus
from core.config import AppConfig, load_config
from core.data.memory import MemoryAuditSink
from core.data.store import SQLiteAuditSink
from core.domain_events import DomainEvents
from core.metrics import RequestMetrics
from listeners.approval_timeouts import ApprovalTimeoutWatcher
from listeners.dev_capture import DevEventBuffer, attach_dev_capture
from listeners.event_log import attach_event_log
from server import create_app


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quiet down noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SupplyDesk supply-management backend")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.supplydesk/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.supplydesk/.env)",
    )
    return parser.parse_args()


def build_audit_sink(config: AppConfig) -> SQLiteAuditSink | MemoryAuditSink:
    """Instantiate the audit sink selected by config.audit.backend."""
    if config.audit.backend == "memory":
        return MemoryAuditSink()
    return SQLiteAuditSink(config.audit_db_path)


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Initialize all components and start the server."""
    config = load_config(config_path=config_path, env_path=env_path)
    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    logger = logging.getLogger("supplydesk")
    logger.info("Configuration loaded from %s", config.home_path)

    # Core infrastructure
    audit_sink = build_audit_sink(config)
    bus = AsyncIOBus(audit_sink=audit_sink)
    events = DomainEvents(bus)
    metrics = RequestMetrics()

    # Built-in listeners
    approval_timeouts = ApprovalTimeoutWatcher(
        bus=bus,
        events=events,
        ttl=config.approvals.ttl_delta,
    )

    dev_buffer: DevEventBuffer | None = None
    if config.dev.capture_events:
        dev_buffer = DevEventBuffer(capacity=config.dev.buffer_size)
        attach_dev_capture(bus, dev_buffer)
    if config.dev.log_events:
        attach_event_log(bus)

    logger.info("Event bus ready with %d listener(s)", bus.subscriber_count())

    # Create HTTP server
    app = create_app(
        config=config,
        events=events,
        audit_sink=audit_sink,
        metrics=metrics,
        dev_buffer=dev_buffer,
    )

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()

    logger.info(
        "SupplyDesk running at http://%s:%d (audit backend: %s)",
        config.server.host,
        config.server.port,
        audit_sink.name,
    )

    # Run until interrupted
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await approval_timeouts.stop()
        await runner.cleanup()
        audit_sink.close()
        logger.info("SupplyDesk stopped")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
