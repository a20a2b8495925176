"""
PlanDB Server - Main entry point.

This module starts the PlanDB server with all components:
- Key-value store connection (plan records)
- Index publisher (search-index notifications, optional)
- HTTP server (REST API)

Usage:
    python -m dbaas.plandb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Server connects to the key-value store before accepting requests
    - An unreachable index backend does not stop the server; notifications
      are best-effort
    - Graceful shutdown stops the HTTP listener before closing backends

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import start_http_server, validate_plan
from .config import ServerConfig
from .events import IndexConnectionError, IndexPublisher, create_index_publisher
from .kv import KeyValueStore, create_kv_store
from .plans import PlanStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """PlanDB Server orchestrator.

    Manages the lifecycle of all server components:
    - Key-value store connection
    - Index publisher
    - HTTP server

    Attributes:
        config: Server configuration
        kv: Key-value store instance
        publisher: Index publisher instance (None when disabled)
        store: Plan store serving the API

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.kv: KeyValueStore | None = None
        self.publisher: IndexPublisher | None = None
        self.store: PlanStore | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting PlanDB server")
        self.config.log_config()

        try:
            self.kv = create_kv_store(self.config)
            await self.kv.connect()
            logger.info("Key-value store connected")

            self.publisher = create_index_publisher(self.config)
            if self.publisher is not None:
                try:
                    await self.publisher.connect()
                    logger.info("Index publisher connected")
                except IndexConnectionError as e:
                    logger.warning(f"Index publisher unavailable, notifications will fail: {e}")

            self.store = PlanStore(
                self.kv,
                publisher=self.publisher,
                max_attempts=self.config.store.max_attempts,
                retry_backoff_ms=self.config.store.retry_backoff_ms,
                validator=validate_plan,
            )

            self._runner = await start_http_server(self.store, self.config.http)

            self._running = True
            logger.info("PlanDB server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully. Safe to call after a failed start."""
        if self.kv is None:
            return

        logger.info("Stopping PlanDB server")

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.publisher:
            await self.publisher.close()

        await self.kv.close()
        self.kv = None

        self._running = False
        logger.info("PlanDB server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create server
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
